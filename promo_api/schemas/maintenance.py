# promo_api/schemas/maintenance.py
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel


class ExpireResponse(BaseModel):
    expired_count: int
    listing_ids: List[int]


class DailyResetResponse(BaseModel):
    reset_count: int


class DailyBoostResponse(BaseModel):
    boosted_count: int
    listing_ids: List[int]


class MaintenanceRunResponse(BaseModel):
    expire: Optional[ExpireResponse] = None
    daily_boost: Optional[DailyBoostResponse] = None
    daily_reset: Optional[DailyResetResponse] = None
