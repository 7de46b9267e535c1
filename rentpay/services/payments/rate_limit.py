"""Per-client request ceiling for STK push initiation."""

import redis
from starlette.requests import Request

from rentpay.common.config import settings
from rentpay.common.errors import RateLimited
from rentpay.common.logging import logger
from rentpay.common.metrics import rate_limited_total


def get_client_ip(request: Request) -> str:
    """Client IP, honouring X-Forwarded-For only from trusted proxies."""

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        trusted = settings.trusted_proxy_ips_set
        if trusted and request.client and request.client.host in trusted:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"


class FixedWindowRateLimiter:
    """At most `limit` hits per key within each `window_seconds` window."""

    def __init__(self, rdb: redis.Redis, limit: int, window_seconds: int, prefix: str = "stkpush") -> None:
        self.rdb = rdb
        self.limit = limit
        self.window_seconds = window_seconds
        self.prefix = prefix

    def hit(self, client_key: str) -> None:
        """Count one request; raise `RateLimited` once the ceiling is passed."""

        key = f"{self.prefix}:{client_key}"
        try:
            current = self.rdb.incr(key)
            if current == 1:
                self.rdb.expire(key, self.window_seconds)
        except redis.RedisError as exc:
            logger.warning("rate limiter unavailable, allowing request: %s", exc)
            return
        if current > self.limit:
            rate_limited_total.labels(service=settings.service_name).inc()
            logger.warning("rate limit exceeded client=%s count=%s", client_key, current)
            raise RateLimited("Too many requests, try again later")
