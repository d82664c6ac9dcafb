"""
Rate Limiting Middleware

Per-organization request budget kept in Redis.

ALGORITHM: fixed one-minute windows. One INCR per request on the key
``rate_limit:<tenant_id>:<window>``; the key expires with its window.
Bursts of up to twice the budget are possible across a window boundary,
which is acceptable for abuse protection.

Requests without a resolved organization (platform domain) and the
docs/health paths are not limited.

TRADEOFF: when Redis is unreachable requests are let through. Availability
of voucher redemption beats strict limiting.
"""
import time
from typing import Optional, Tuple

import redis
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from voucherhub.config import get_settings
from voucherhub.utils.logging import get_logger, log_security_event

logger = get_logger(__name__)

WINDOW_SECONDS = 60


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Fixed-window limiter keyed by organization id.

    ``redis_client`` can be injected (tests pass a fake); otherwise one is
    built from REDIS_URL on first use.
    """

    def __init__(self, app, redis_client=None, limit_per_minute: Optional[int] = None):
        super().__init__(app)
        settings = get_settings()
        self.enabled = settings.RATE_LIMIT_ENABLED
        self.limit = limit_per_minute or settings.RATE_LIMIT_PER_MINUTE
        self.redis_client = redis_client
        self.redis_url = settings.REDIS_URL

        self.excluded_paths = [
            "/docs",
            "/redoc",
            "/openapi.json",
            "/health",
        ]

    def _client(self):
        if self.redis_client is None:
            self.redis_client = redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
        return self.redis_client

    async def dispatch(self, request: Request, call_next):
        if not self.enabled:
            return await call_next(request)

        if any(request.url.path.startswith(path) for path in self.excluded_paths):
            return await call_next(request)

        # Set by TenantMiddleware, which runs first
        tenant = getattr(request.state, "tenant", None)
        if tenant is None:
            return await call_next(request)

        allowed, retry_after = self._check_rate_limit(tenant.id)

        if not allowed:
            log_security_event(
                "rate_limit_exceeded",
                {"tenant_id": tenant.id, "path": request.url.path},
                logger,
            )
            return JSONResponse(
                status_code=429,
                content={
                    "detail": "Rate limit exceeded. Please try again later.",
                    "type": "rate_limit_exceeded",
                    "retry_after": retry_after,
                },
                headers={"Retry-After": str(retry_after)},
            )

        return await call_next(request)

    def _check_rate_limit(self, tenant_id: str, now: Optional[float] = None) -> Tuple[bool, int]:
        """
        Count this request against the tenant's current window.

        Returns: (allowed, retry_after_seconds)
        """
        now = time.time() if now is None else now
        window = int(now // WINDOW_SECONDS)
        key = f"rate_limit:{tenant_id}:{window}"

        try:
            client = self._client()
            count = client.incr(key)
            if count == 1:
                client.expire(key, WINDOW_SECONDS)
        except redis.RedisError as e:
            logger.error(f"Redis error in rate limiting: {e}")
            return True, 0

        if int(count) > self.limit:
            retry_after = max(1, int((window + 1) * WINDOW_SECONDS - now))
            return False, retry_after
        return True, 0
