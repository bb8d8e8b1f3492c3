"""Access token values and the shared token cache.

The cache is the only mutable state the authenticating transports share across
requests. It exposes two operations:

- get_or_refresh: return the cached token, exchanging a new one first if the
  cached one is unusable. Check, exchange and update happen under one lock.
- invalidate: drop the cached token, but only if it is still the one the
  caller saw rejected.

The cached value is a frozen CachedToken that is swapped as a whole, so its
value and expiry always belong to the same exchange.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from loguru import logger


@dataclass(frozen=True)
class AccessToken:
    """Result of a successful token exchange.

    Attributes:
        value: The OAuth2 access token.
        expires_in: Remaining lifetime in seconds, as reported by the server.
    """

    value: str
    expires_in: int


@dataclass(frozen=True)
class CachedToken:
    """Access token held by a transport.

    Attributes:
        value: The OAuth2 access token, empty until the first exchange.
        expires_at: Unix timestamp after which the token is considered expired.
    """

    value: str = ""
    expires_at: float = 0.0

    def is_usable(self, now: float) -> bool:
        """Check whether the token can be sent at time ``now``."""
        return bool(self.value) and now < self.expires_at

    @classmethod
    def from_access_token(cls, token: AccessToken, issued_at: float) -> CachedToken:
        """Anchor a freshly exchanged token's lifetime at ``issued_at``."""
        return cls(value=token.value, expires_at=issued_at + token.expires_in)


EMPTY_TOKEN = CachedToken()


class TokenCache:
    """Thread-safe cell holding the current CachedToken."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._token = EMPTY_TOKEN

    @property
    def current(self) -> CachedToken:
        """Snapshot of the cached token (for inspection and tests)."""
        return self._token

    def get_or_refresh(self, now: float, fetch: Callable[[], AccessToken]) -> CachedToken:
        """Return a token usable at ``now``, calling ``fetch`` if needed.

        Exceptions raised by ``fetch`` propagate and leave the cache unchanged.
        """
        with self._lock:
            if self._token.is_usable(now):
                return self._token
            logger.debug("Cached access token unusable, exchanging assertion")
            token = CachedToken.from_access_token(fetch(), issued_at=now)
            self._token = token
            logger.info(
                "Obtained access token",
                extra={"expires_in": int(token.expires_at - now)},
            )
            return token

    def invalidate(self, value: str) -> bool:
        """Drop the cached token if it still holds ``value``.

        Returns True if the cache was cleared. A token refreshed concurrently
        by another request is left in place.
        """
        with self._lock:
            if self._token.value != value:
                return False
            self._token = EMPTY_TOKEN
            return True


class AsyncTokenCache:
    """asyncio counterpart of TokenCache."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._token = EMPTY_TOKEN

    @property
    def current(self) -> CachedToken:
        return self._token

    async def get_or_refresh(
        self, now: float, fetch: Callable[[], Awaitable[AccessToken]]
    ) -> CachedToken:
        async with self._lock:
            if self._token.is_usable(now):
                return self._token
            logger.debug("Cached access token unusable, exchanging assertion")
            token = CachedToken.from_access_token(await fetch(), issued_at=now)
            self._token = token
            logger.info(
                "Obtained access token",
                extra={"expires_in": int(token.expires_at - now)},
            )
            return token

    async def invalidate(self, value: str) -> bool:
        async with self._lock:
            if self._token.value != value:
                return False
            self._token = EMPTY_TOKEN
            return True
