# promo_api/services/__init__.py
"""
Business logic services organized by domain functionality.
"""

from promo_api.services.activation import BundleActivationResult, activate_bundle
from promo_api.services.maintenance import (
    apply_daily_boost,
    expire_promotions,
    reset_daily_rotation_scores,
)
from promo_api.services.pricing import PricingTable, quote_bundle
from promo_api.services.rotation import RotationConfig, RotationScheduler

__all__ = [
    # Activation
    "BundleActivationResult",
    "activate_bundle",
    # Maintenance
    "apply_daily_boost",
    "expire_promotions",
    "reset_daily_rotation_scores",
    # Pricing
    "PricingTable",
    "quote_bundle",
    # Rotation
    "RotationConfig",
    "RotationScheduler",
]
