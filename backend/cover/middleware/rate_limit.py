"""
Redis-backed sliding window rate limiter.

Counts requests per client per minute in a sorted set. Redis trouble never
blocks traffic: the limiter fails open. A limit of 0 turns it off.
"""

import time
import logging

from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

import redis.asyncio as aioredis

from cover.api.errors import ErrorKey
from cover.config import settings

logger = logging.getLogger(__name__)

EXEMPT_PATHS = frozenset({"/health", "/metrics"})


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limit: int | None = None, window: int = 60):
        super().__init__(app)
        self._redis: aioredis.Redis | None = None
        self.limit = settings.rate_limit_per_minute if limit is None else limit
        self.window = window

    async def _get_redis(self) -> aioredis.Redis | None:
        if self._redis is None:
            try:
                self._redis = aioredis.from_url(settings.redis_url, decode_responses=True)
                await self._redis.ping()
            except (RedisError, OSError) as exc:
                logger.warning("Rate limiter: Redis unavailable (%s), passing through", exc)
                self._redis = None
        return self._redis

    def _client_key(self, request: Request) -> str:
        # Authenticated callers are limited per token, anonymous ones per address.
        auth = request.headers.get("Authorization", "")
        if auth.startswith("Bearer "):
            return f"ratelimit:token:{auth[7:][-16:]}"
        client_ip = request.client.host if request.client else "unknown"
        return f"ratelimit:ip:{client_ip}"

    async def dispatch(self, request: Request, call_next):
        if self.limit <= 0 or request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        r = await self._get_redis()
        if r is None:
            return await call_next(request)

        now = time.time()
        key = self._client_key(request)

        try:
            pipe = r.pipeline()
            pipe.zremrangebyscore(key, 0, now - self.window)
            pipe.zadd(key, {str(now): now})
            pipe.zcard(key)
            pipe.expire(key, self.window)
            results = await pipe.execute()
            request_count = results[2]
        except (RedisError, OSError) as exc:
            logger.warning("Rate limiter Redis error: %s", exc)
            return await call_next(request)

        if request_count > self.limit:
            logger.warning("Rate limit exceeded for %s", key)
            return JSONResponse(
                status_code=429,
                content={
                    "key": ErrorKey.RATE_LIMITED.value,
                    "status": 429,
                    "message": "Too many requests. Please try again later.",
                },
                headers={"Retry-After": str(self.window)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.limit - request_count))
        return response
