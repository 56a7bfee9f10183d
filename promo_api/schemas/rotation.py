# promo_api/schemas/rotation.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class RotatedListingOut(BaseModel):
    listing_id: int
    promotion_id: int
    promotion_type: str
    title: str
    category: Optional[str] = None
    price: Optional[float] = None
    expires_at: datetime
    impressions: int
    rotation_score: int


class RotationResponse(BaseModel):
    promotion_type: str
    category: Optional[str] = None
    slots: int
    listings: List[RotatedListingOut]


class RotationStatOut(BaseModel):
    promotion_id: int
    listing_id: int
    title: str
    category: Optional[str] = None
    promotion_type: str
    impressions: int
    rotation_score: int
    last_shown_at: Optional[datetime] = None
    created_at: datetime
    expires_at: datetime
    avg_daily_impressions: float
    hours_since_shown: Optional[float] = None
    show_status: str


class RotationStatsResponse(BaseModel):
    count: int
    stats: List[RotationStatOut]
