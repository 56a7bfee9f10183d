# promo_api/schemas/payment.py
from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field


class CheckoutRequest(BaseModel):
    listing_id: int = Field(ge=1)
    promotion_types: List[str] = Field(min_length=1)
    customer_name: str = Field(min_length=1, max_length=200)
    customer_email: EmailStr
    customer_phone: str = Field(min_length=5, max_length=20)


class CheckoutResponse(BaseModel):
    action: str
    total: float
    fields: Dict[str, str]


class PaymentAck(BaseModel):
    status: str
    activated: bool
    replayed: bool = False
    listing_id: Optional[int] = None
