# promo_api/services/projection.py
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from promo_api.core.clock import utcnow
from promo_api.core.logging import get_structlog_logger
from promo_api.models import Promotion, PromotionType
from promo_api.services.promotion_store import PromotionStore

logger = get_structlog_logger()

# promotion type -> (flag column, until column)
PROJECTION_COLUMNS = {
    PromotionType.FEATURED: ("is_featured", "featured_until"),
    PromotionType.TOP_SPOT: ("is_top_spot", "top_spot_until"),
    PromotionType.BOOST: ("is_boosted", "boosted_until"),
    PromotionType.URGENT: ("is_urgent", "urgent_until"),
}


@dataclass(frozen=True)
class ListingProjection:
    is_featured: bool = False
    featured_until: Optional[datetime] = None
    is_top_spot: bool = False
    top_spot_until: Optional[datetime] = None
    is_boosted: bool = False
    boosted_until: Optional[datetime] = None
    is_urgent: bool = False
    urgent_until: Optional[datetime] = None
    boost_score: int = 0

    def as_values(self) -> Dict[str, Any]:
        return asdict(self)


def epoch_millis(moment: datetime) -> int:
    return int(moment.replace(tzinfo=timezone.utc).timestamp() * 1000)


def compute_projection(promotions: Iterable[Promotion], now: datetime) -> ListingProjection:
    """
    Derive a listing's promotion flags from its promotion rows.

    Starts from all flags cleared and applies every active, unexpired row.
    """
    values: Dict[str, Any] = ListingProjection().as_values()

    for promotion in promotions:
        if not promotion.is_active or promotion.expires_at <= now:
            continue

        promotion_type = PromotionType(promotion.promotion_type)
        flag, until = PROJECTION_COLUMNS[promotion_type]
        values[flag] = True
        if values[until] is None or promotion.expires_at > values[until]:
            values[until] = promotion.expires_at

        if promotion_type == PromotionType.BOOST:
            # Recency tiebreaker for boosted listing order only
            values["boost_score"] = epoch_millis(now)

    return ListingProjection(**values)


async def refresh_listing_projection(
    store: PromotionStore,
    listing_id: int,
    now: Optional[datetime] = None,
) -> ListingProjection:
    """Recompute and write the projection for one listing in a single UPDATE."""
    now = now or utcnow()
    promotions = await store.active_for_listing(listing_id, now)
    projection = compute_projection(promotions, now)
    await store.write_projection(listing_id, projection.as_values())

    logger.debug(
        "projection.refreshed",
        listing_id=listing_id,
        active=[PromotionType(p.promotion_type).value for p in promotions],
    )
    return projection
