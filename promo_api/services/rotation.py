# promo_api/services/rotation.py
from __future__ import annotations

import hashlib
import random
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from promo_api.core.clock import utcnow
from promo_api.core.config import Settings, settings
from promo_api.core.exceptions import ValidationError
from promo_api.core.logging import get_structlog_logger
from promo_api.models import PromotionType
from promo_api.services.promotion_store import PromotionStore, RotationCandidate

logger = get_structlog_logger()

T = TypeVar("T")

LCG_MULTIPLIER = 9301
LCG_INCREMENT = 49297
LCG_MODULUS = 233280


@dataclass(frozen=True)
class RotationConfig:
    """Rotation tuning. Immutable; build a new one to change behaviour."""

    featured_slots: int = 2
    top_spot_slots: int = 2
    boost_slots: int = 10
    urgent_slots: int = 10
    rotation_interval_hours: int = 1
    impression_weight: float = 0.1
    random_factor: float = 10.0
    never_shown_hours: float = 1000.0

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "RotationConfig":
        return cls(
            featured_slots=config.featured_slots,
            top_spot_slots=config.top_spot_slots,
            boost_slots=config.boost_slots,
            urgent_slots=config.urgent_slots,
            rotation_interval_hours=config.rotation_interval_hours,
            impression_weight=config.impression_weight,
            random_factor=config.random_factor,
            never_shown_hours=config.never_shown_hours,
        )

    def slots_for(self, promotion_type: PromotionType) -> int:
        return {
            PromotionType.FEATURED: self.featured_slots,
            PromotionType.TOP_SPOT: self.top_spot_slots,
            PromotionType.BOOST: self.boost_slots,
            PromotionType.URGENT: self.urgent_slots,
        }[promotion_type]


@dataclass(frozen=True)
class RotatedListing:
    listing_id: int
    promotion_id: int
    promotion_type: PromotionType
    title: str
    category: Optional[str]
    price: Optional[Decimal]
    expires_at: datetime
    impressions: int
    rotation_score: int
    fairness_score: Optional[float] = None


def hours_since(moment: Optional[datetime], now: datetime) -> Optional[float]:
    if moment is None:
        return None
    return (now - moment).total_seconds() / 3600


def fairness_score(
    candidate: RotationCandidate,
    now: datetime,
    config: RotationConfig,
    jitter: float,
) -> float:
    """
    hours since last shown - impression_weight * impressions + jitter.

    rotation_score is deliberately not an input; it is a reporting signal.
    """
    staleness = hours_since(candidate.last_shown_at, now)
    if staleness is None:
        staleness = config.never_shown_hours
    return staleness - config.impression_weight * candidate.impressions + jitter


def rank_candidates(
    candidates: Sequence[RotationCandidate],
    slots: int,
    now: datetime,
    config: RotationConfig,
    rng: random.Random,
) -> List[tuple]:
    """Score every candidate and return the top ``slots`` as (candidate, score)."""
    scored = [
        (candidate, fairness_score(candidate, now, config, rng.random() * config.random_factor))
        for candidate in candidates
    ]
    scored.sort(key=lambda item: item[1], reverse=True)
    return scored[:slots]


def lcg_sequence(seed: int):
    value = seed % LCG_MODULUS
    while True:
        value = (value * LCG_MULTIPLIER + LCG_INCREMENT) % LCG_MODULUS
        yield value / LCG_MODULUS


def seeded_shuffle(items: Sequence[T], seed: int) -> List[T]:
    """Deterministic Fisher-Yates permutation driven by a linear congruential generator."""
    shuffled = list(items)
    draws = lcg_sequence(seed)
    index = len(shuffled)
    while index > 0:
        pick = int(next(draws) * index)
        index -= 1
        shuffled[index], shuffled[pick] = shuffled[pick], shuffled[index]
    return shuffled


def rotation_group(now: datetime, interval_hours: int) -> int:
    return now.hour // max(interval_hours, 1)


def boost_seed(candidates: Sequence[RotationCandidate], now: datetime, interval_hours: int) -> int:
    """Seed keyed by (day, hourly bucket, candidate set)."""
    ids = ",".join(str(c.promotion_id) for c in sorted(candidates, key=lambda c: c.promotion_id))
    material = f"{now.date().isoformat()}|{rotation_group(now, interval_hours)}|{ids}"
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()
    return int(digest[:16], 16) % LCG_MODULUS


class RotationScheduler:
    """
    Chooses which promoted listings fill the visible slots for a promotion type.

    The selected rows get a relative counter bump in the same call. Errors from
    the store propagate; an empty list only ever means "no eligible candidates".

    A selected promotion can expire before the caller renders it. That is
    expected: show it, the next expiry sweep clears it.
    """

    def __init__(
        self,
        session: AsyncSession,
        config: Optional[RotationConfig] = None,
        rng: Optional[random.Random] = None,
        timeout: Optional[float] = None,
    ):
        self.store = PromotionStore(session, timeout=timeout)
        self.config = config or RotationConfig.from_settings()
        self.rng = rng or random.Random()

    async def select(
        self,
        promotion_type: PromotionType,
        category: Optional[str] = None,
        slots: Optional[int] = None,
        now: Optional[datetime] = None,
        timeout: Optional[float] = None,
    ) -> List[RotatedListing]:
        promotion_type = PromotionType(promotion_type)
        now = now or utcnow()
        slots = self.config.slots_for(promotion_type) if slots is None else slots
        if slots < 1:
            raise ValidationError(
                message="slots must be a positive integer",
                code="INVALID_SLOTS",
                details={"slots": slots},
            )

        start = time.perf_counter()
        candidates = await self.store.rotation_candidates(promotion_type, now, category, timeout=timeout)
        if not candidates:
            return []

        scores: Dict[int, float] = {}
        if promotion_type == PromotionType.BOOST:
            seed = boost_seed(candidates, now, self.config.rotation_interval_hours)
            selected = seeded_shuffle(candidates, seed)[:slots]
        elif len(candidates) <= slots:
            selected = list(candidates)
        else:
            ranked = rank_candidates(candidates, slots, now, self.config, self.rng)
            selected = [candidate for candidate, _ in ranked]
            scores = {candidate.promotion_id: score for candidate, score in ranked}

        await self.store.record_impressions([c.promotion_id for c in selected], now, timeout=timeout)
        await self.store.commit()

        logger.info(
            "rotation.selected",
            promotion_type=promotion_type.value,
            category=category,
            candidates=len(candidates),
            slots=slots,
            selected=[c.listing_id for c in selected],
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )

        return [
            RotatedListing(
                listing_id=c.listing_id,
                promotion_id=c.promotion_id,
                promotion_type=promotion_type,
                title=c.title,
                category=c.category,
                price=c.price,
                expires_at=c.expires_at,
                impressions=c.impressions + 1,
                rotation_score=c.rotation_score + 1,
                fairness_score=scores.get(c.promotion_id),
            )
            for c in selected
        ]
