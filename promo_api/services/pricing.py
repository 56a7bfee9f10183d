# promo_api/services/pricing.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from promo_api.core.config import Settings, settings
from promo_api.core.exceptions import ValidationError
from promo_api.models import PROMOTION_TYPE_ORDER, PromotionType

CENT = Decimal("0.01")


@dataclass(frozen=True)
class PricingTable:
    """List prices, validity periods and bundle-size discounts."""

    prices: Dict[PromotionType, Decimal]
    durations_days: Dict[PromotionType, int]
    bundle_discounts: Dict[int, Decimal] = field(default_factory=dict)
    currency: str = "LKR"

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "PricingTable":
        prices = config.prices()
        durations = config.durations()
        try:
            return cls(
                prices={t: prices[t.value] for t in PromotionType},
                durations_days={t: durations[t.value] for t in PromotionType},
                bundle_discounts=config.bundle_discounts(),
                currency=config.currency,
            )
        except KeyError as e:
            raise ValidationError(
                message=f"Pricing is not configured for promotion type {e.args[0]!r}",
                code="PRICING_NOT_CONFIGURED",
            ) from e

    def duration(self, promotion_type: PromotionType) -> timedelta:
        return timedelta(days=self.durations_days[promotion_type])

    def discount_for(self, size: int) -> Decimal:
        if size < 2:
            return Decimal("0")
        # Largest configured step not above the bundle size
        steps = [n for n in self.bundle_discounts if n <= size]
        if not steps:
            return Decimal("0")
        return self.bundle_discounts[max(steps)]


@dataclass(frozen=True)
class QuoteLine:
    promotion_type: PromotionType
    list_price: Decimal
    discount: Decimal
    amount: Decimal
    duration_days: int


@dataclass(frozen=True)
class BundleQuote:
    promotion_types: Tuple[PromotionType, ...]
    subtotal: Decimal
    discount: Decimal
    total: Decimal
    currency: str
    lines: Tuple[QuoteLine, ...]

    def line_for(self, promotion_type: PromotionType) -> QuoteLine:
        for line in self.lines:
            if line.promotion_type == promotion_type:
                return line
        raise KeyError(promotion_type)

    def durations(self) -> Dict[PromotionType, timedelta]:
        return {line.promotion_type: timedelta(days=line.duration_days) for line in self.lines}


def parse_promotion_types(raw: Iterable[str]) -> Tuple[PromotionType, ...]:
    """
    Normalize a requested set of promotion types.

    Duplicates collapse and the result follows display order. Raises
    ValidationError for an empty set or an unknown type.
    """
    requested = set()
    unknown: List[str] = []
    for item in raw:
        value = item.value if isinstance(item, PromotionType) else str(item).strip().lower()
        if not value:
            continue
        try:
            requested.add(PromotionType(value))
        except ValueError:
            unknown.append(value)

    if unknown:
        raise ValidationError(
            message=f"Unknown promotion type: {', '.join(sorted(unknown))}",
            code="UNKNOWN_PROMOTION_TYPE",
            details={"unknown": sorted(unknown), "allowed": [t.value for t in PROMOTION_TYPE_ORDER]},
        )
    if not requested:
        raise ValidationError(
            message="At least one promotion type is required",
            code="EMPTY_PROMOTION_SET",
        )

    return tuple(t for t in PROMOTION_TYPE_ORDER if t in requested)


def quote_bundle(types: Iterable[str], pricing: Optional[PricingTable] = None) -> BundleQuote:
    """
    Price a bundle of promotion types.

    total = sum(list prices) - discount(bundle size). The discount is spread
    over the lines in proportion to their list price, with the rounding
    remainder on the last line, so line amounts always add up to the total.
    """
    pricing = pricing or PricingTable.from_settings()
    promotion_types = parse_promotion_types(types)

    list_prices = [pricing.prices[t] for t in promotion_types]
    subtotal = sum(list_prices, Decimal("0"))
    discount = min(pricing.discount_for(len(promotion_types)), subtotal)
    total = subtotal - discount

    lines: List[QuoteLine] = []
    allocated = Decimal("0")
    for index, promotion_type in enumerate(promotion_types):
        list_price = list_prices[index]
        if index == len(promotion_types) - 1:
            share = discount - allocated
        else:
            share = (discount * list_price / subtotal).quantize(CENT, rounding=ROUND_HALF_UP) if subtotal else Decimal("0")
        allocated += share
        lines.append(
            QuoteLine(
                promotion_type=promotion_type,
                list_price=list_price,
                discount=share,
                amount=list_price - share,
                duration_days=pricing.durations_days[promotion_type],
            )
        )

    return BundleQuote(
        promotion_types=promotion_types,
        subtotal=subtotal,
        discount=discount,
        total=total,
        currency=pricing.currency,
        lines=tuple(lines),
    )
