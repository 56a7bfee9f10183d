# promo_api/core/__init__.py
"""
Core package for configuration, logging, errors and shared utilities.
"""

from promo_api.core.clock import utcnow
from promo_api.core.config import Settings, settings
from promo_api.core.logging import configure_structlog, get_structlog_logger

__all__ = [
    "Settings",
    "settings",
    "configure_structlog",
    "get_structlog_logger",
    "utcnow",
]
