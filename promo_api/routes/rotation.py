# promo_api/routes/rotation.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from promo_api.core.logging import get_structlog_logger
from promo_api.db.session import get_session
from promo_api.models import PromotionType
from promo_api.schemas.rotation import (
    RotatedListingOut,
    RotationResponse,
    RotationStatOut,
    RotationStatsResponse,
)
from promo_api.services.reporting import rotation_stats
from promo_api.services.rotation import RotationConfig, RotationScheduler

logger = get_structlog_logger(__name__)

router = APIRouter(prefix="/rotation", tags=["rotation"])


def get_rotation_config() -> RotationConfig:
    return RotationConfig.from_settings()


@router.get("/stats", response_model=RotationStatsResponse)
async def get_rotation_stats(
    promotion_type: Optional[PromotionType] = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> RotationStatsResponse:
    """Exposure statistics for every live promotion, for monitoring."""
    stats = await rotation_stats(session, promotion_type)
    return RotationStatsResponse(
        count=len(stats),
        stats=[
            RotationStatOut(
                promotion_id=s.promotion_id,
                listing_id=s.listing_id,
                title=s.title,
                category=s.category,
                promotion_type=s.promotion_type.value,
                impressions=s.impressions,
                rotation_score=s.rotation_score,
                last_shown_at=s.last_shown_at,
                created_at=s.created_at,
                expires_at=s.expires_at,
                avg_daily_impressions=s.avg_daily_impressions,
                hours_since_shown=s.hours_since_shown,
                show_status=s.show_status,
            )
            for s in stats
        ],
    )


@router.get("/{promotion_type}", response_model=RotationResponse)
async def select_rotation(
    promotion_type: PromotionType,
    category: Optional[str] = Query(default=None, max_length=100),
    slots: Optional[int] = Query(default=None, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
    config: RotationConfig = Depends(get_rotation_config),
) -> RotationResponse:
    """
    Pick the promoted listings to render for one placement type.

    A 503 here means the caller should render the unpromoted order.
    """
    scheduler = RotationScheduler(session, config)
    selected = await scheduler.select(promotion_type, category=category, slots=slots)

    return RotationResponse(
        promotion_type=promotion_type.value,
        category=category,
        slots=slots or config.slots_for(promotion_type),
        listings=[
            RotatedListingOut(
                listing_id=item.listing_id,
                promotion_id=item.promotion_id,
                promotion_type=item.promotion_type.value,
                title=item.title,
                category=item.category,
                price=float(item.price) if item.price is not None else None,
                expires_at=item.expires_at,
                impressions=item.impressions,
                rotation_score=item.rotation_score,
            )
            for item in selected
        ],
    )
