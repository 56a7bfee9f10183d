# promo_api/routes/promotions.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from promo_api.core.logging import get_structlog_logger
from promo_api.db.session import get_session
from promo_api.models import PROMOTION_TYPE_ORDER, PromotionType
from promo_api.routes.rotation import get_rotation_config
from promo_api.schemas.promotion import (
    ActivatedPromotionOut,
    BundleActivationRequest,
    BundleActivationResponse,
    FairShareResponse,
    ListingPromotionsResponse,
    PricingEntry,
    PricingResponse,
    PromotedListingOut,
    PromotedListingsResponse,
    PromotionOut,
    QuoteLineOut,
    QuoteRequest,
    QuoteResponse,
)
from promo_api.services.activation import activate_bundle
from promo_api.services.auth import require_maintenance_secret
from promo_api.services.pricing import BundleQuote, PricingTable, quote_bundle
from promo_api.services.reporting import fair_share_report, listing_promotions, promoted_listings
from promo_api.services.rotation import RotationConfig

logger = get_structlog_logger(__name__)

router = APIRouter(prefix="/promotions", tags=["promotions"])


def get_pricing() -> PricingTable:
    return PricingTable.from_settings()


def quote_to_response(quote: BundleQuote) -> QuoteResponse:
    return QuoteResponse(
        promotion_types=[t.value for t in quote.promotion_types],
        subtotal=float(quote.subtotal),
        discount=float(quote.discount),
        total=float(quote.total),
        currency=quote.currency,
        lines=[
            QuoteLineOut(
                promotion_type=line.promotion_type.value,
                list_price=float(line.list_price),
                discount=float(line.discount),
                amount=float(line.amount),
                duration_days=line.duration_days,
            )
            for line in quote.lines
        ],
    )


@router.get("/pricing", response_model=PricingResponse)
async def get_pricing_catalog(pricing: PricingTable = Depends(get_pricing)) -> PricingResponse:
    return PricingResponse(
        currency=pricing.currency,
        promotions=[
            PricingEntry(
                promotion_type=t.value,
                price=float(pricing.prices[t]),
                duration_days=pricing.durations_days[t],
            )
            for t in PROMOTION_TYPE_ORDER
        ],
        bundle_discounts={str(size): float(amount) for size, amount in sorted(pricing.bundle_discounts.items())},
    )


@router.post("/quote", response_model=QuoteResponse)
async def create_quote(
    payload: QuoteRequest,
    pricing: PricingTable = Depends(get_pricing),
) -> QuoteResponse:
    return quote_to_response(quote_bundle(payload.promotion_types, pricing))


@router.post(
    "/bundles",
    response_model=BundleActivationResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_maintenance_secret)],
)
async def confirm_bundle(
    payload: BundleActivationRequest,
    session: AsyncSession = Depends(get_session),
    pricing: PricingTable = Depends(get_pricing),
) -> BundleActivationResponse:
    """Confirmed-payment hook for collaborators that verified the payment themselves."""
    result = await activate_bundle(
        session,
        payload.listing_id,
        payload.promotion_types,
        payload.payment_reference,
        pricing=pricing,
        provider="internal",
    )
    return BundleActivationResponse(
        listing_id=result.listing_id,
        payment_reference=result.payment_reference,
        replayed=result.replayed,
        total=float(result.quote.total),
        promotions=[
            ActivatedPromotionOut(
                promotion_id=p.promotion_id,
                promotion_type=p.promotion_type.value,
                action=p.action,
                amount_paid=p.amount_paid,
                expires_at=p.expires_at,
            )
            for p in result.promotions
        ],
    )


@router.get("/listings", response_model=PromotedListingsResponse)
async def get_promoted_listings(
    category: Optional[str] = Query(default=None, max_length=100),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),
) -> PromotedListingsResponse:
    """Listings in promotion display order, straight from the projection."""
    listings = await promoted_listings(session, category, limit=limit, offset=offset)
    return PromotedListingsResponse(
        category=category,
        limit=limit,
        offset=offset,
        listings=[PromotedListingOut.model_validate(listing) for listing in listings],
    )


@router.get("/listings/{listing_id}", response_model=ListingPromotionsResponse)
async def get_listing_promotions(
    listing_id: int,
    session: AsyncSession = Depends(get_session),
) -> ListingPromotionsResponse:
    result = await listing_promotions(session, listing_id)
    return ListingPromotionsResponse(
        listing_id=result.listing_id,
        active=[PromotionOut.model_validate(p) for p in result.active],
        history=[PromotionOut.model_validate(p) for p in result.history],
    )


@router.get("/listings/{listing_id}/fair-share", response_model=FairShareResponse)
async def get_fair_share(
    listing_id: int,
    promotion_type: Optional[PromotionType] = Query(default=None),
    session: AsyncSession = Depends(get_session),
    config: RotationConfig = Depends(get_rotation_config),
) -> FairShareResponse:
    report = await fair_share_report(session, listing_id, config, promotion_type)
    return FairShareResponse(
        listing_id=report.listing_id,
        promotion_id=report.promotion_id,
        promotion_type=report.promotion_type.value,
        total_competing_ads=report.total_competing_ads,
        slots_available=report.slots_available,
        fair_share_percentage=report.fair_share_percentage,
        impressions=report.impressions,
        rotation_score=report.rotation_score,
        avg_daily_impressions=report.avg_daily_impressions,
        last_shown=report.last_shown,
        expires_at=report.expires_at,
        status=report.status,
    )
