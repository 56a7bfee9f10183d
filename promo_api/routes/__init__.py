# promo_api/routes/__init__.py
"""
API route handlers organized by domain.
"""

from promo_api.routes.health import router as health_router
from promo_api.routes.maintenance import router as maintenance_router
from promo_api.routes.payments import router as payments_router
from promo_api.routes.promotions import router as promotions_router
from promo_api.routes.rotation import router as rotation_router

__all__ = [
    "health_router",
    "maintenance_router",
    "payments_router",
    "promotions_router",
    "rotation_router",
]
