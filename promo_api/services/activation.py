# promo_api/services/activation.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from promo_api.core.clock import utcnow
from promo_api.core.exceptions import NotFoundError, PaymentVerificationError, StorageError
from promo_api.core.logging import get_structlog_logger
from promo_api.models import Promotion, PromotionType
from promo_api.services.pricing import BundleQuote, PricingTable, quote_bundle
from promo_api.services.projection import ListingProjection, refresh_listing_projection
from promo_api.services.promotion_store import PromotionStore

logger = get_structlog_logger()

MAX_ACTIVATION_ATTEMPTS = 3


@dataclass(frozen=True)
class ActivatedPromotion:
    promotion_id: int
    promotion_type: PromotionType
    action: str  # created | extended | replaced | unchanged
    amount_paid: float
    expires_at: datetime


@dataclass(frozen=True)
class BundleActivationResult:
    listing_id: int
    payment_reference: str
    replayed: bool
    quote: BundleQuote
    promotions: List[ActivatedPromotion]
    projection: Optional[ListingProjection] = None


async def activate_bundle(
    session: AsyncSession,
    listing_id: int,
    promotion_types: Iterable[str],
    payment_reference: str,
    now: Optional[datetime] = None,
    pricing: Optional[PricingTable] = None,
    provider: Optional[str] = None,
    timeout: Optional[float] = None,
) -> BundleActivationResult:
    """
    Materialize a paid bundle of promotions for a listing.

    Idempotent on payment_reference: a re-delivered confirmation returns the
    current rows without writing. A reference already recorded for another
    listing or type set is rejected with PaymentVerificationError. An active, unexpired row of the same type is
    extended in place instead of duplicated. Rows, ledger entry and listing
    projection commit together; on a concurrent duplicate the transaction is
    rolled back and retried against the winner's state.
    """
    quote = quote_bundle(promotion_types, pricing)
    store = PromotionStore(session, timeout=timeout)

    for attempt in range(1, MAX_ACTIVATION_ATTEMPTS + 1):
        try:
            return await _activate_once(store, listing_id, quote, payment_reference, now or utcnow(), provider)
        except IntegrityError as e:
            await session.rollback()
            logger.warning(
                "activation.conflict",
                listing_id=listing_id,
                payment_reference=payment_reference,
                attempt=attempt,
                error=str(e.orig) if e.orig else str(e),
            )
        except Exception:
            await session.rollback()
            raise

    raise StorageError(
        message="Bundle activation kept conflicting with concurrent writes",
        code="ACTIVATION_CONFLICT",
        details={"listing_id": listing_id, "payment_reference": payment_reference},
    )


async def _activate_once(
    store: PromotionStore,
    listing_id: int,
    quote: BundleQuote,
    payment_reference: str,
    now: datetime,
    provider: Optional[str],
) -> BundleActivationResult:
    listing = await store.get_listing(listing_id)
    if listing is None:
        raise NotFoundError(
            message=f"Listing {listing_id} not found",
            code="LISTING_NOT_FOUND",
            details={"listing_id": listing_id},
        )

    existing_payment = await store.get_payment(payment_reference)
    if existing_payment is not None:
        recorded_types = {t for t in existing_payment.promotion_types.split(",") if t}
        if existing_payment.listing_id != listing_id or recorded_types != {t.value for t in quote.promotion_types}:
            logger.warning(
                "activation.reference_reused",
                listing_id=listing_id,
                payment_reference=payment_reference,
                recorded_listing_id=existing_payment.listing_id,
                recorded_types=sorted(recorded_types),
            )
            raise PaymentVerificationError(
                message="Payment reference was already used for a different bundle",
                code="PAYMENT_REFERENCE_REUSED",
                details={
                    "payment_reference": payment_reference,
                    "listing_id": listing_id,
                    "recorded_listing_id": existing_payment.listing_id,
                },
            )

        active = {PromotionType(p.promotion_type): p for p in await store.active_for_listing(listing_id, now)}
        promotions = [
            _summary(active[t], "unchanged")
            for t in quote.promotion_types
            if t in active
        ]
        logger.info(
            "activation.replayed",
            listing_id=listing_id,
            payment_reference=payment_reference,
        )
        return BundleActivationResult(
            listing_id=listing_id,
            payment_reference=payment_reference,
            replayed=True,
            quote=quote,
            promotions=promotions,
        )

    await store.record_payment(payment_reference, listing_id, quote.promotion_types, quote.total, now, provider)

    results: List[ActivatedPromotion] = []
    for line in quote.lines:
        expires_at = now + timedelta(days=line.duration_days)
        current = await store.active_row(listing_id, line.promotion_type)

        if current is not None and current.expires_at > now:
            await store.extend_promotion(current.id, line.amount, payment_reference, now, expires_at)
            action, promotion_id = "extended", current.id
        else:
            action = "created"
            if current is not None:
                # Active flag still set but past expiry; the sweeper has not run yet
                await store.deactivate([current.id])
                action = "replaced"
            promotion = await store.insert_promotion(
                listing_id, line.promotion_type, line.amount, payment_reference, now, expires_at
            )
            promotion_id = promotion.id

        results.append(
            ActivatedPromotion(
                promotion_id=promotion_id,
                promotion_type=line.promotion_type,
                action=action,
                amount_paid=float(line.amount),
                expires_at=expires_at,
            )
        )

    projection = await refresh_listing_projection(store, listing_id, now)
    await store.commit()

    logger.info(
        "activation.completed",
        listing_id=listing_id,
        payment_reference=payment_reference,
        types=[t.value for t in quote.promotion_types],
        total=float(quote.total),
        actions={r.promotion_type.value: r.action for r in results},
    )

    return BundleActivationResult(
        listing_id=listing_id,
        payment_reference=payment_reference,
        replayed=False,
        quote=quote,
        promotions=results,
        projection=projection,
    )


def _summary(promotion: Promotion, action: str) -> ActivatedPromotion:
    return ActivatedPromotion(
        promotion_id=promotion.id,
        promotion_type=PromotionType(promotion.promotion_type),
        action=action,
        amount_paid=float(promotion.amount_paid),
        expires_at=promotion.expires_at,
    )
