# promo_api/models/__init__.py
"""
SQLAlchemy ORM models for database entities.
"""

from promo_api.models.bundle_payment import BundlePayment
from promo_api.models.listing import Listing
from promo_api.models.promotion import PROMOTION_TYPE_ORDER, Promotion, PromotionType

__all__ = [
    "BundlePayment",
    "Listing",
    "PROMOTION_TYPE_ORDER",
    "Promotion",
    "PromotionType",
]
