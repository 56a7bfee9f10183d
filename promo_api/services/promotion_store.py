# promo_api/services/promotion_store.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from promo_api.core.config import settings
from promo_api.core.exceptions import StorageError, StorageTimeoutError
from promo_api.core.logging import get_structlog_logger
from promo_api.models import BundlePayment, Listing, Promotion, PromotionType

logger = get_structlog_logger()


@dataclass(frozen=True)
class RotationCandidate:
    promotion_id: int
    listing_id: int
    promotion_type: PromotionType
    title: str
    category: Optional[str]
    price: Optional[Decimal]
    impressions: int
    rotation_score: int
    last_shown_at: Optional[datetime]
    created_at: datetime
    expires_at: datetime


class PromotionStore:
    """
    Storage primitives for promotions, listings and the payment ledger.

    Every call is bounded by a timeout and driver failures surface as
    StorageError. IntegrityError is re-raised untouched so that callers
    relying on unique indexes can roll back and retry.
    """

    def __init__(self, session: AsyncSession, timeout: Optional[float] = None):
        self.session = session
        self.timeout = settings.storage_timeout_seconds if timeout is None else timeout

    async def _run(self, operation: str, awaitable: Awaitable[Any], timeout: Optional[float] = None) -> Any:
        limit = self.timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(awaitable, timeout=limit)
        except asyncio.TimeoutError as e:
            logger.error("store.timeout", operation=operation, timeout=limit)
            raise StorageTimeoutError(details={"operation": operation, "timeout": limit}) from e
        except IntegrityError:
            raise
        except (SQLAlchemyError, OSError) as e:
            logger.error("store.error", operation=operation, error=str(e))
            raise StorageError(details={"operation": operation, "error": str(e)}) from e

    # Transactions

    async def commit(self) -> None:
        await self._run("commit", self.session.commit())

    async def rollback(self) -> None:
        await self._run("rollback", self.session.rollback())

    # Listings

    async def get_listing(self, listing_id: int) -> Optional[Listing]:
        result = await self._run(
            "get_listing",
            self.session.execute(
                select(Listing)
                .where(Listing.id == listing_id)
                .execution_options(populate_existing=True)
            ),
        )
        return result.scalar_one_or_none()

    async def write_projection(self, listing_id: int, values: Dict[str, Any]) -> int:
        result = await self._run(
            "write_projection",
            self.session.execute(
                update(Listing)
                .where(Listing.id == listing_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            ),
        )
        return result.rowcount

    async def promoted_order(
        self,
        category: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Listing]:
        """Listings in display order, read from the projection columns."""
        query = (
            select(Listing)
            .order_by(
                Listing.is_featured.desc(),
                Listing.is_top_spot.desc(),
                Listing.is_boosted.desc(),
                Listing.boost_score.desc(),
                Listing.created_at.desc(),
                Listing.id.desc(),
            )
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        if category:
            query = query.where(Listing.category == category)

        result = await self._run("promoted_order", self.session.execute(query))
        return list(result.scalars().all())

    # Promotions

    async def rotation_candidates(
        self,
        promotion_type: PromotionType,
        now: datetime,
        category: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> List[RotationCandidate]:
        query = (
            select(
                Promotion.id,
                Promotion.listing_id,
                Promotion.promotion_type,
                Listing.title,
                Listing.category,
                Listing.price,
                Promotion.impressions,
                Promotion.rotation_score,
                Promotion.last_shown_at,
                Promotion.created_at,
                Promotion.expires_at,
            )
            .join(Listing, Listing.id == Promotion.listing_id)
            .where(
                Promotion.promotion_type == promotion_type,
                Promotion.is_active.is_(True),
                Promotion.expires_at > now,
            )
            .order_by(Promotion.id)
        )
        if category:
            query = query.where(Listing.category == category)

        result = await self._run("rotation_candidates", self.session.execute(query), timeout)
        return [RotationCandidate(*row) for row in result.all()]

    async def record_impressions(
        self,
        promotion_ids: Sequence[int],
        now: datetime,
        timeout: Optional[float] = None,
    ) -> int:
        """Relative increment of the display counters for the given rows."""
        if not promotion_ids:
            return 0

        result = await self._run(
            "record_impressions",
            self.session.execute(
                update(Promotion)
                .where(Promotion.id.in_(list(promotion_ids)))
                .values(
                    impressions=Promotion.impressions + 1,
                    rotation_score=Promotion.rotation_score + 1,
                    last_shown_at=now,
                )
                .execution_options(synchronize_session=False)
            ),
            timeout,
        )
        return result.rowcount

    async def active_for_listing(self, listing_id: int, now: datetime) -> List[Promotion]:
        result = await self._run(
            "active_for_listing",
            self.session.execute(
                select(Promotion)
                .where(
                    Promotion.listing_id == listing_id,
                    Promotion.is_active.is_(True),
                    Promotion.expires_at > now,
                )
                .order_by(Promotion.id)
                .execution_options(populate_existing=True)
            ),
        )
        return list(result.scalars().all())

    async def all_for_listing(self, listing_id: int) -> List[Promotion]:
        result = await self._run(
            "all_for_listing",
            self.session.execute(
                select(Promotion)
                .where(Promotion.listing_id == listing_id)
                .order_by(Promotion.created_at.desc(), Promotion.id.desc())
                .execution_options(populate_existing=True)
            ),
        )
        return list(result.scalars().all())

    async def active_row(self, listing_id: int, promotion_type: PromotionType) -> Optional[Promotion]:
        """The row holding the active slot for (listing, type), expired or not."""
        result = await self._run(
            "active_row",
            self.session.execute(
                select(Promotion).where(
                    Promotion.listing_id == listing_id,
                    Promotion.promotion_type == promotion_type,
                    Promotion.is_active.is_(True),
                )
                .execution_options(populate_existing=True)
            ),
        )
        return result.scalar_one_or_none()

    async def insert_promotion(
        self,
        listing_id: int,
        promotion_type: PromotionType,
        amount_paid: Decimal,
        payment_reference: Optional[str],
        now: datetime,
        expires_at: datetime,
    ) -> Promotion:
        promotion = Promotion(
            listing_id=listing_id,
            promotion_type=promotion_type,
            amount_paid=amount_paid,
            payment_reference=payment_reference,
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
            is_active=True,
            impressions=0,
            rotation_score=0,
        )
        self.session.add(promotion)
        await self._run("insert_promotion", self.session.flush())
        return promotion

    async def extend_promotion(
        self,
        promotion_id: int,
        amount_paid: Decimal,
        payment_reference: Optional[str],
        now: datetime,
        expires_at: datetime,
    ) -> int:
        result = await self._run(
            "extend_promotion",
            self.session.execute(
                update(Promotion)
                .where(Promotion.id == promotion_id, Promotion.is_active.is_(True))
                .values(
                    expires_at=expires_at,
                    renewed_at=now,
                    amount_paid=amount_paid,
                    payment_reference=payment_reference,
                )
                .execution_options(synchronize_session=False)
            ),
        )
        return result.rowcount

    async def deactivate(self, promotion_ids: Sequence[int]) -> int:
        if not promotion_ids:
            return 0

        result = await self._run(
            "deactivate",
            self.session.execute(
                update(Promotion)
                .where(Promotion.id.in_(list(promotion_ids)), Promotion.is_active.is_(True))
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            ),
        )
        return result.rowcount

    async def expired_active(self, now: datetime) -> List[Tuple[int, int]]:
        """(promotion_id, listing_id) of rows still active past their expiry."""
        result = await self._run(
            "expired_active",
            self.session.execute(
                select(Promotion.id, Promotion.listing_id)
                .where(Promotion.is_active.is_(True), Promotion.expires_at <= now)
                .order_by(Promotion.id)
            ),
        )
        return [(row[0], row[1]) for row in result.all()]

    async def deactivate_expired(self, promotion_ids: Sequence[int], now: datetime) -> int:
        if not promotion_ids:
            return 0

        result = await self._run(
            "deactivate_expired",
            self.session.execute(
                update(Promotion)
                .where(
                    Promotion.id.in_(list(promotion_ids)),
                    Promotion.is_active.is_(True),
                    Promotion.expires_at <= now,
                )
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            ),
        )
        return result.rowcount

    async def reset_rotation_scores(self, now: datetime) -> int:
        result = await self._run(
            "reset_rotation_scores",
            self.session.execute(
                update(Promotion)
                .where(Promotion.is_active.is_(True), Promotion.expires_at > now)
                .values(rotation_score=0)
                .execution_options(synchronize_session=False)
            ),
        )
        return result.rowcount

    async def listings_with_active(self, promotion_type: PromotionType, now: datetime) -> List[int]:
        result = await self._run(
            "listings_with_active",
            self.session.execute(
                select(Promotion.listing_id)
                .where(
                    Promotion.promotion_type == promotion_type,
                    Promotion.is_active.is_(True),
                    Promotion.expires_at > now,
                )
                .distinct()
                .order_by(Promotion.listing_id)
            ),
        )
        return list(result.scalars().all())

    async def count_active(self, promotion_type: PromotionType, now: datetime) -> int:
        result = await self._run(
            "count_active",
            self.session.execute(
                select(func.count(Promotion.id)).where(
                    Promotion.promotion_type == promotion_type,
                    Promotion.is_active.is_(True),
                    Promotion.expires_at > now,
                )
            ),
        )
        return int(result.scalar_one())

    async def active_with_listing(
        self,
        now: datetime,
        promotion_type: Optional[PromotionType] = None,
    ) -> List[Tuple[Promotion, Listing]]:
        query = (
            select(Promotion, Listing)
            .join(Listing, Listing.id == Promotion.listing_id)
            .where(Promotion.is_active.is_(True), Promotion.expires_at > now)
            .order_by(Promotion.promotion_type, Promotion.id)
            .execution_options(populate_existing=True)
        )
        if promotion_type is not None:
            query = query.where(Promotion.promotion_type == promotion_type)

        result = await self._run("active_with_listing", self.session.execute(query))
        return [(row[0], row[1]) for row in result.all()]

    # Payment ledger

    async def get_payment(self, payment_reference: str) -> Optional[BundlePayment]:
        result = await self._run(
            "get_payment",
            self.session.execute(
                select(BundlePayment).where(BundlePayment.payment_reference == payment_reference)
            ),
        )
        return result.scalar_one_or_none()

    async def record_payment(
        self,
        payment_reference: str,
        listing_id: int,
        promotion_types: Sequence[PromotionType],
        amount: Decimal,
        now: datetime,
        provider: Optional[str] = None,
    ) -> BundlePayment:
        payment = BundlePayment(
            payment_reference=payment_reference,
            listing_id=listing_id,
            promotion_types=",".join(t.value for t in promotion_types),
            amount=amount,
            provider=provider,
            created_at=now,
            updated_at=now,
        )
        self.session.add(payment)
        await self._run("record_payment", self.session.flush())
        return payment
