# promo_api/schemas/promotion.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class QuoteRequest(BaseModel):
    promotion_types: List[str] = Field(min_length=1)


class QuoteLineOut(BaseModel):
    promotion_type: str
    list_price: float
    discount: float
    amount: float
    duration_days: int


class QuoteResponse(BaseModel):
    promotion_types: List[str]
    subtotal: float
    discount: float
    total: float
    currency: str
    lines: List[QuoteLineOut]


class PricingEntry(BaseModel):
    promotion_type: str
    price: float
    duration_days: int


class PricingResponse(BaseModel):
    currency: str
    promotions: List[PricingEntry]
    bundle_discounts: dict


class BundleActivationRequest(BaseModel):
    listing_id: int = Field(ge=1)
    promotion_types: List[str] = Field(min_length=1)
    payment_reference: str = Field(min_length=1, max_length=128)


class ActivatedPromotionOut(BaseModel):
    promotion_id: int
    promotion_type: str
    action: str
    amount_paid: float
    expires_at: datetime


class BundleActivationResponse(BaseModel):
    listing_id: int
    payment_reference: str
    replayed: bool
    total: float
    promotions: List[ActivatedPromotionOut]


class PromotionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    listing_id: int
    promotion_type: str
    amount_paid: float
    payment_reference: Optional[str] = None
    created_at: datetime
    renewed_at: Optional[datetime] = None
    expires_at: datetime
    is_active: bool
    impressions: int
    rotation_score: int
    last_shown_at: Optional[datetime] = None

    @field_validator("promotion_type", mode="before")
    @classmethod
    def _enum_value(cls, v):
        return getattr(v, "value", v)


class ListingPromotionsResponse(BaseModel):
    listing_id: int
    active: List[PromotionOut]
    history: List[PromotionOut]


class FairShareResponse(BaseModel):
    listing_id: int
    promotion_id: int
    promotion_type: str
    total_competing_ads: int
    slots_available: int
    fair_share_percentage: float
    impressions: int
    rotation_score: int
    avg_daily_impressions: float
    last_shown: Optional[datetime] = None
    expires_at: datetime
    status: str


class PromotedListingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    category: Optional[str] = None
    price: Optional[float] = None
    is_featured: bool
    featured_until: Optional[datetime] = None
    is_top_spot: bool
    top_spot_until: Optional[datetime] = None
    is_boosted: bool
    boosted_until: Optional[datetime] = None
    is_urgent: bool
    urgent_until: Optional[datetime] = None
    boost_score: int
    created_at: datetime


class PromotedListingsResponse(BaseModel):
    category: Optional[str] = None
    limit: int
    offset: int
    listings: List[PromotedListingOut]
