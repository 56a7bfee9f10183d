# promo_api/routes/maintenance.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from promo_api.core.logging import get_structlog_logger
from promo_api.db.session import get_session
from promo_api.schemas.maintenance import (
    DailyBoostResponse,
    DailyResetResponse,
    ExpireResponse,
    MaintenanceRunResponse,
)
from promo_api.services.auth import require_maintenance_secret
from promo_api.services.maintenance import (
    apply_daily_boost,
    expire_promotions,
    reset_daily_rotation_scores,
)

logger = get_structlog_logger(__name__)

router = APIRouter(
    prefix="/maintenance",
    tags=["maintenance"],
    dependencies=[Depends(require_maintenance_secret)],
)


@router.post("/expire", response_model=ExpireResponse)
async def run_expiry_sweep(session: AsyncSession = Depends(get_session)) -> ExpireResponse:
    result = await expire_promotions(session)
    return ExpireResponse(expired_count=result.expired_count, listing_ids=result.listing_ids)


@router.post("/daily-reset", response_model=DailyResetResponse)
async def run_daily_reset(session: AsyncSession = Depends(get_session)) -> DailyResetResponse:
    result = await reset_daily_rotation_scores(session)
    return DailyResetResponse(reset_count=result.reset_count)


@router.post("/daily-boost", response_model=DailyBoostResponse)
async def run_daily_boost(session: AsyncSession = Depends(get_session)) -> DailyBoostResponse:
    result = await apply_daily_boost(session)
    return DailyBoostResponse(boosted_count=result.boosted_count, listing_ids=result.listing_ids)


@router.post("/run", response_model=MaintenanceRunResponse)
async def run_all(session: AsyncSession = Depends(get_session)) -> MaintenanceRunResponse:
    """Expire, then refresh boosts, then reset the day-scoped counters."""
    expired = await expire_promotions(session)
    boosted = await apply_daily_boost(session)
    reset = await reset_daily_rotation_scores(session)

    logger.info(
        "maintenance.run_completed",
        expired_count=expired.expired_count,
        boosted_count=boosted.boosted_count,
        reset_count=reset.reset_count,
    )
    return MaintenanceRunResponse(
        expire=ExpireResponse(expired_count=expired.expired_count, listing_ids=expired.listing_ids),
        daily_boost=DailyBoostResponse(boosted_count=boosted.boosted_count, listing_ids=boosted.listing_ids),
        daily_reset=DailyResetResponse(reset_count=reset.reset_count),
    )
