# promo_api/services/reporting.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from promo_api.core.clock import utcnow
from promo_api.core.exceptions import NotFoundError
from promo_api.models import PROMOTION_TYPE_ORDER, Listing, Promotion, PromotionType
from promo_api.services.promotion_store import PromotionStore
from promo_api.services.rotation import RotationConfig, hours_since

NEVER_SHOWN = "Never shown"
SHOWN_RECENTLY = "Shown recently"
SHOWN_TODAY = "Shown today"
SHOWN_YESTERDAY = "Shown yesterday"
NOT_SHOWN_RECENTLY = "Not shown recently"


def show_status(hours_since_shown: Optional[float]) -> str:
    if hours_since_shown is None:
        return NEVER_SHOWN
    if hours_since_shown < 1:
        return SHOWN_RECENTLY
    if hours_since_shown < 6:
        return SHOWN_TODAY
    if hours_since_shown < 24:
        return SHOWN_YESTERDAY
    return NOT_SHOWN_RECENTLY


def avg_daily_impressions(promotion: Promotion, now: datetime) -> float:
    days = (now - promotion.created_at).total_seconds() / 86400
    return round(promotion.impressions / max(days, 1), 2)


@dataclass(frozen=True)
class FairShareReport:
    listing_id: int
    promotion_id: int
    promotion_type: PromotionType
    total_competing_ads: int
    slots_available: int
    fair_share_percentage: float
    impressions: int
    rotation_score: int
    avg_daily_impressions: float
    last_shown: Optional[datetime]
    expires_at: datetime
    status: str


@dataclass(frozen=True)
class RotationStat:
    promotion_id: int
    listing_id: int
    title: str
    category: Optional[str]
    promotion_type: PromotionType
    impressions: int
    rotation_score: int
    last_shown_at: Optional[datetime]
    created_at: datetime
    expires_at: datetime
    avg_daily_impressions: float
    hours_since_shown: Optional[float]
    show_status: str


@dataclass(frozen=True)
class ListingPromotions:
    listing_id: int
    active: List[Promotion]
    history: List[Promotion]


async def fair_share_report(
    session: AsyncSession,
    listing_id: int,
    config: Optional[RotationConfig] = None,
    promotion_type: Optional[PromotionType] = None,
    now: Optional[datetime] = None,
) -> FairShareReport:
    """Advertiser-facing estimate of how often a listing's promotion gets a slot."""
    config = config or RotationConfig.from_settings()
    now = now or utcnow()
    store = PromotionStore(session)

    active = {PromotionType(p.promotion_type): p for p in await store.active_for_listing(listing_id, now)}
    if promotion_type is not None:
        promotion = active.get(PromotionType(promotion_type))
    else:
        promotion = next((active[t] for t in PROMOTION_TYPE_ORDER if t in active), None)

    if promotion is None:
        raise NotFoundError(
            message=f"No active promotion for listing {listing_id}",
            code="PROMOTION_NOT_FOUND",
            details={
                "listing_id": listing_id,
                "promotion_type": promotion_type.value if promotion_type else None,
            },
        )

    kind = PromotionType(promotion.promotion_type)
    total = await store.count_active(kind, now)
    slots = config.slots_for(kind)
    percentage = min(100.0, slots / total * 100) if total else 100.0

    return FairShareReport(
        listing_id=listing_id,
        promotion_id=promotion.id,
        promotion_type=kind,
        total_competing_ads=total,
        slots_available=slots,
        fair_share_percentage=round(percentage, 1),
        impressions=promotion.impressions,
        rotation_score=promotion.rotation_score,
        avg_daily_impressions=avg_daily_impressions(promotion, now),
        last_shown=promotion.last_shown_at,
        expires_at=promotion.expires_at,
        status=show_status(hours_since(promotion.last_shown_at, now)),
    )


async def rotation_stats(
    session: AsyncSession,
    promotion_type: Optional[PromotionType] = None,
    now: Optional[datetime] = None,
) -> List[RotationStat]:
    now = now or utcnow()
    store = PromotionStore(session)

    stats: List[RotationStat] = []
    for promotion, listing in await store.active_with_listing(now, promotion_type):
        staleness = hours_since(promotion.last_shown_at, now)
        stats.append(
            RotationStat(
                promotion_id=promotion.id,
                listing_id=listing.id,
                title=listing.title,
                category=listing.category,
                promotion_type=PromotionType(promotion.promotion_type),
                impressions=promotion.impressions,
                rotation_score=promotion.rotation_score,
                last_shown_at=promotion.last_shown_at,
                created_at=promotion.created_at,
                expires_at=promotion.expires_at,
                avg_daily_impressions=avg_daily_impressions(promotion, now),
                hours_since_shown=round(staleness, 2) if staleness is not None else None,
                show_status=show_status(staleness),
            )
        )
    return stats


async def listing_promotions(
    session: AsyncSession,
    listing_id: int,
    now: Optional[datetime] = None,
) -> ListingPromotions:
    now = now or utcnow()
    store = PromotionStore(session)

    if await store.get_listing(listing_id) is None:
        raise NotFoundError(
            message=f"Listing {listing_id} not found",
            code="LISTING_NOT_FOUND",
            details={"listing_id": listing_id},
        )

    history = await store.all_for_listing(listing_id)
    active = [p for p in history if p.is_active and p.expires_at > now]
    return ListingPromotions(listing_id=listing_id, active=active, history=history)


async def promoted_listings(
    session: AsyncSession,
    category: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> List[Listing]:
    """
    Listings ordered for display: featured, top spot, boosted (newest boost
    first), then everything else newest first.

    Reads only the projected flags, so it reflects the last projection write.
    """
    store = PromotionStore(session)
    return await store.promoted_order(category, limit=limit, offset=offset)
