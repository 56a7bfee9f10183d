# promo_api/services/maintenance.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from promo_api.core.clock import utcnow
from promo_api.core.logging import get_structlog_logger
from promo_api.models import PromotionType
from promo_api.services.projection import refresh_listing_projection
from promo_api.services.promotion_store import PromotionStore

logger = get_structlog_logger()


@dataclass(frozen=True)
class ExpirySweepResult:
    expired_count: int
    listing_ids: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class DailyResetResult:
    reset_count: int


@dataclass(frozen=True)
class DailyBoostResult:
    boosted_count: int
    listing_ids: List[int] = field(default_factory=list)


async def expire_promotions(
    session: AsyncSession,
    now: Optional[datetime] = None,
    timeout: Optional[float] = None,
) -> ExpirySweepResult:
    """
    Deactivate every active promotion whose expires_at has passed and
    re-project the listings that owned them.

    Safe to re-run: a second sweep with nothing newly expired changes nothing.
    """
    now = now or utcnow()
    store = PromotionStore(session, timeout=timeout)

    try:
        expired = await store.expired_active(now)
        if not expired:
            logger.info("maintenance.expired", expired_count=0)
            return ExpirySweepResult(expired_count=0)

        expired_count = await store.deactivate_expired([promotion_id for promotion_id, _ in expired], now)

        listing_ids = sorted({listing_id for _, listing_id in expired})
        for listing_id in listing_ids:
            await refresh_listing_projection(store, listing_id, now)

        await store.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(
        "maintenance.expired",
        expired_count=expired_count,
        listing_ids=listing_ids,
    )
    return ExpirySweepResult(expired_count=expired_count, listing_ids=listing_ids)


async def reset_daily_rotation_scores(
    session: AsyncSession,
    now: Optional[datetime] = None,
    timeout: Optional[float] = None,
) -> DailyResetResult:
    """Zero rotation_score on active, unexpired promotions. Impressions are untouched."""
    now = now or utcnow()
    store = PromotionStore(session, timeout=timeout)

    try:
        reset_count = await store.reset_rotation_scores(now)
        await store.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info("maintenance.daily_reset", reset_count=reset_count)
    return DailyResetResult(reset_count=reset_count)


async def apply_daily_boost(
    session: AsyncSession,
    now: Optional[datetime] = None,
    timeout: Optional[float] = None,
) -> DailyBoostResult:
    """Refresh boost_score for listings with a live boost by re-projecting them."""
    now = now or utcnow()
    store = PromotionStore(session, timeout=timeout)

    try:
        listing_ids = await store.listings_with_active(PromotionType.BOOST, now)
        for listing_id in listing_ids:
            await refresh_listing_projection(store, listing_id, now)
        await store.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info("maintenance.daily_boost", boosted_count=len(listing_ids))
    return DailyBoostResult(boosted_count=len(listing_ids), listing_ids=listing_ids)
