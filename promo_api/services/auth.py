# promo_api/services/auth.py
from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Header

from promo_api.core.config import settings
from promo_api.core.exceptions import AuthenticationError
from promo_api.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)


def require_maintenance_secret(authorization: Optional[str] = Header(default=None)) -> None:
    """Shared-secret guard for cron and internal hooks: ``Authorization: Bearer <secret>``."""
    secret = settings.maintenance_secret
    if not secret:
        logger.error("auth.maintenance_secret_missing")
        raise AuthenticationError(
            message="Maintenance endpoints are disabled",
            code="MAINTENANCE_DISABLED",
        )

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip().encode(), secret.encode()):
        logger.warning("auth.maintenance_rejected")
        raise AuthenticationError(message="Invalid maintenance credentials", code="UNAUTHORIZED")
