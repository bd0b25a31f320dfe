from __future__ import annotations

import hashlib
import logging
import time
from typing import Awaitable, Callable

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from deployhub.core.config import settings
from deployhub.db.redis import redis_client

logger = logging.getLogger(__name__)

_EXEMPT_PREFIXES = ("/health", "/metrics")


class RedisRateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limit_per_minute: int | None = None):
        super().__init__(app)
        self.limit_per_minute = settings.rate_limit_per_minute if limit_per_minute is None else limit_per_minute

    @staticmethod
    def _resolve_subject(request: Request) -> str:
        """
        Prefer the presented credential when available, else the client IP.
        Public distribution traffic is always anonymous, so it buckets by IP.
        """
        auth = (request.headers.get("authorization") or "").strip()
        if auth.lower().startswith("bearer "):
            token = auth[7:].strip()
            if token:
                # Do not parse claims here; just isolate per presented token.
                return f"jwt:{hashlib.sha256(token.encode()).hexdigest()[:32]}"

        forwarded = (request.headers.get("x-forwarded-for") or "").strip()
        if forwarded:
            return f"ip:{forwarded.split(',')[0].strip()}"

        real_ip = (request.headers.get("x-real-ip") or "").strip()
        if real_ip:
            return f"ip:{real_ip}"

        ip = request.client.host if request.client else "unknown"
        return f"ip:{ip}"

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable]):
        if self.limit_per_minute <= 0 or request.url.path.startswith(_EXEMPT_PREFIXES):
            return await call_next(request)

        subject = self._resolve_subject(request)
        minute_bucket = int(time.time() // 60)
        key = f"rl:{subject}:{minute_bucket}"

        try:
            count = await redis_client.incr(key)
            if count == 1:
                await redis_client.expire(key, 65)
            if count > self.limit_per_minute:
                return JSONResponse(
                    status_code=429,
                    content={"error": "RateLimited", "message": "Rate limit exceeded"},
                    headers={"Retry-After": "60"},
                )
        except Exception:
            # Fail-open when Redis is unavailable.
            logger.debug("Rate limiter unavailable; allowing %s", request.url.path, exc_info=True)

        return await call_next(request)
