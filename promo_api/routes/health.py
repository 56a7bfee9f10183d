# promo_api/routes/health.py
from __future__ import annotations

import time
from typing import Any, Dict

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from promo_api.core.clock import utcnow
from promo_api.core.config import settings
from promo_api.core.logging import get_structlog_logger
from promo_api.db.session import health_check as database_health_check
from promo_api.services.redis import health_check as redis_health_check

logger = get_structlog_logger()

router = APIRouter(tags=["health"])

SERVICE_NAME = "promotions-api"
SERVICE_VERSION = "1.0.0"
STARTED_AT = time.time()


class HealthCheckResponse(BaseModel):
    status: str
    service: str
    environment: str
    version: str
    timestamp: str
    uptime: float


@router.get("/health", response_model=HealthCheckResponse)
async def health() -> HealthCheckResponse:
    """Liveness: the process is up and serving."""
    return HealthCheckResponse(
        status="healthy",
        service=SERVICE_NAME,
        environment=settings.environment,
        version=SERVICE_VERSION,
        timestamp=utcnow().isoformat(),
        uptime=round(time.time() - STARTED_AT, 2),
    )


@router.get("/health/ready")
async def readiness() -> JSONResponse:
    """Readiness: database reachable; Redis reported but only required in production."""
    checks: Dict[str, Dict[str, Any]] = {
        "database": await database_health_check(),
    }
    if not settings.is_testing:
        checks["redis"] = await redis_health_check()

    required = ["database"] + (["redis"] if settings.is_production else [])
    ready = all(checks[name].get("status") == "healthy" for name in required)

    if not ready:
        logger.warning("health.not_ready", checks=checks)

    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if ready else "not_ready",
            "timestamp": utcnow().isoformat(),
            "checks": checks,
        },
    )
