"""Process-wide cache for the Daraja OAuth access token."""

import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from rentpay.common.config import settings
from rentpay.common.errors import PaymentError
from rentpay.common.logging import logger
from rentpay.common.metrics import token_refresh_total


@dataclass(frozen=True)
class AccessToken:
    value: str
    expires_at: float


class AccessTokenCache:
    """Returns a live bearer token, exchanging credentials only on a miss.

    The cached `AccessToken` is immutable and replaced with a single attribute
    assignment, so readers never see a token paired with another token's
    expiry. Concurrent misses may each refresh; the exchange is idempotent.
    A failed refresh leaves the previous entry untouched.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[tuple[str, int]]],
        ttl_seconds: int = 3500,
        expiry_margin_seconds: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetch = fetch
        self.ttl_seconds = ttl_seconds
        self.expiry_margin_seconds = expiry_margin_seconds
        self._clock = clock
        self._current: AccessToken | None = None

    def peek(self) -> AccessToken | None:
        """Current entry if still live, without refreshing."""

        current = self._current
        if current is not None and self._clock() < current.expires_at:
            return current
        return None

    async def get_token(self) -> str:
        current = self.peek()
        if current is not None:
            return current.value

        try:
            token, expires_in = await self._fetch()
        except PaymentError:
            token_refresh_total.labels(service=settings.service_name, result="failure").inc()
            logger.error("access token refresh failed")
            raise
        # Cache for less than the advertised lifetime to absorb clock skew.
        lifetime = min(self.ttl_seconds, max(0, expires_in - self.expiry_margin_seconds))
        self._current = AccessToken(value=token, expires_at=self._clock() + lifetime)
        token_refresh_total.labels(service=settings.service_name, result="success").inc()
        logger.info("access token refreshed cache_seconds=%s", lifetime)
        return token
