# promo_api/middleware/rate_limiter.py
from __future__ import annotations

import time
from typing import Tuple

from fastapi import Request, status
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware

from promo_api.core.config import settings
from promo_api.core.exceptions import RateLimitError, ServiceUnavailableError
from promo_api.core.logging import get_structlog_logger
from promo_api.services.redis import get_redis_client

logger = get_structlog_logger()


class RateLimitingMiddleware(BaseHTTPMiddleware):
    """Fixed-window rate limiting backed by Redis. Fails open when Redis is down."""

    def __init__(self, app):
        super().__init__(app)
        self.rate_limit_requests = settings.rate_limit_requests
        self.rate_limit_period = settings.rate_limit_period

        self.exempt_paths = [
            f"{settings.api_prefix}/health",
            f"{settings.api_prefix}/health/ready",
            "/metrics",
            "/docs",
            "/redoc",
            "/openapi.json",
        ]

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        client_id = self._get_client_id(request)
        allowed, remaining, reset_time = await self._check_rate_limit(client_id)

        if not allowed:
            retry_after = max(0, reset_time - int(time.time()))
            logger.warning(
                "rate_limit.exceeded",
                client_id=client_id,
                path=request.url.path,
                method=request.method,
                retry_after=retry_after,
            )
            error = RateLimitError(
                retry_after=retry_after,
                details={
                    "limit": self.rate_limit_requests,
                    "period": self.rate_limit_period,
                    "retry_after": retry_after,
                },
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content=error.to_dict(),
                headers={"Retry-After": str(retry_after)},
            )

        response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(self.rate_limit_requests)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset"] = str(reset_time)

        return response

    def _get_client_id(self, request: Request) -> str:
        client_ip = request.client.host if request.client else "unknown"
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            client_ip = forwarded_for.split(",")[0].strip()
        return f"ip:{client_ip}"

    async def _check_rate_limit(self, client_id: str) -> Tuple[bool, int, int]:
        window = int(time.time() // self.rate_limit_period)
        key = f"ratelimit:{client_id}:{window}"
        reset_time = (window + 1) * self.rate_limit_period

        try:
            client = await get_redis_client()
            async with client.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, self.rate_limit_period)
                results = await pipe.execute()
            current_count = results[0]
        except (ServiceUnavailableError, RedisError, OSError) as e:
            logger.error("rate_limit.error", error=str(e), client_id=client_id[:50])
            return True, self.rate_limit_requests, reset_time

        remaining = max(0, self.rate_limit_requests - current_count)
        return current_count <= self.rate_limit_requests, remaining, reset_time
