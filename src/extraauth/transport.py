"""Authenticating transports for httpx.

OAuth2Transport and AsyncOAuth2Transport wrap another httpx transport and make
every request carry a valid bearer token:

1. The token is exchanged lazily on the first request and whenever the cached
   one has expired.
2. A 401 from the server invalidates the cached token and the request is sent
   once more with a freshly exchanged one.
3. A second 401 is returned to the caller as a normal response.

Token exchange failures abort the request with AuthorizationFailedError before
anything is sent. Failures of the wrapped transport are raised as
DelegateExecutionError and are never retried.
"""

from __future__ import annotations

import time
from collections.abc import Callable

import httpx
from loguru import logger

from extraauth.exceptions import (
    AuthorizationFailedError,
    DelegateExecutionError,
    TokenExchangeError,
)
from extraauth.provider import AsyncTokenProvider, TokenProvider
from extraauth.tokens import AsyncTokenCache, CachedToken, TokenCache

# Number of times a request is re-sent after a 401
DEFAULT_MAX_RETRIES = 1

Clock = Callable[[], float]


def _authorized_request(request: httpx.Request, token: CachedToken) -> httpx.Request:
    """Build the request for one attempt, carrying the bearer token.

    The caller's request is never modified, so one request object may be sent
    from several threads or tasks at once.
    """
    headers = request.headers.copy()
    headers["Authorization"] = f"Bearer {token.value}"
    return httpx.Request(
        request.method,
        request.url,
        headers=headers,
        stream=request.stream,
        extensions=request.extensions,
    )


class OAuth2Transport(httpx.BaseTransport):
    """httpx transport that attaches and refreshes OAuth2 bearer tokens.

    One instance may be shared by any number of threads; the cached token is
    held in a TokenCache.
    """

    def __init__(
        self,
        provider: TokenProvider,
        transport: httpx.BaseTransport | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        clock: Clock = time.time,
    ) -> None:
        """Initialize the transport.

        Args:
            provider: Source of fresh access tokens
            transport: Transport that actually sends requests
                (defaults to httpx.HTTPTransport)
            max_retries: Re-sends allowed after a 401
            clock: Returns the current Unix time
        """
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self._provider = provider
        self._transport = transport or httpx.HTTPTransport()
        self._max_retries = max_retries
        self._clock = clock
        self._cache = TokenCache()

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def cached_token(self) -> CachedToken:
        return self._cache.current

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        now = self._clock()
        # the body is sent up to twice
        request.read()

        attempts = 1 + self._max_retries
        for attempt in range(1, attempts + 1):
            try:
                token = self._cache.get_or_refresh(now, self._provider.fetch)
            except TokenExchangeError as e:
                raise AuthorizationFailedError(e) from e

            try:
                response = self._transport.handle_request(_authorized_request(request, token))
            except httpx.TransportError as e:
                raise DelegateExecutionError(f"request failed: {e}") from e

            if response.status_code != httpx.codes.UNAUTHORIZED or attempt == attempts:
                return response

            logger.info(
                "Access token rejected, retrying with a fresh token",
                extra={"url": str(request.url), "attempt": attempt},
            )
            response.close()
            self._cache.invalidate(token.value)

        # unreachable: the final attempt always returns
        raise AssertionError("retry loop exited without a response")

    def close(self) -> None:
        self._transport.close()
        close_provider = getattr(self._provider, "close", None)
        if callable(close_provider):
            close_provider()


class AsyncOAuth2Transport(httpx.AsyncBaseTransport):
    """asyncio counterpart of OAuth2Transport."""

    def __init__(
        self,
        provider: AsyncTokenProvider,
        transport: httpx.AsyncBaseTransport | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        clock: Clock = time.time,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self._provider = provider
        self._transport = transport or httpx.AsyncHTTPTransport()
        self._max_retries = max_retries
        self._clock = clock
        self._cache = AsyncTokenCache()

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def cached_token(self) -> CachedToken:
        return self._cache.current

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        now = self._clock()
        await request.aread()

        attempts = 1 + self._max_retries
        for attempt in range(1, attempts + 1):
            try:
                token = await self._cache.get_or_refresh(now, self._provider.fetch)
            except TokenExchangeError as e:
                raise AuthorizationFailedError(e) from e

            try:
                response = await self._transport.handle_async_request(
                    _authorized_request(request, token)
                )
            except httpx.TransportError as e:
                raise DelegateExecutionError(f"request failed: {e}") from e

            if response.status_code != httpx.codes.UNAUTHORIZED or attempt == attempts:
                return response

            logger.info(
                "Access token rejected, retrying with a fresh token",
                extra={"url": str(request.url), "attempt": attempt},
            )
            await response.aclose()
            await self._cache.invalidate(token.value)

        raise AssertionError("retry loop exited without a response")

    async def aclose(self) -> None:
        await self._transport.aclose()
        close_provider = getattr(self._provider, "aclose", None)
        if callable(close_provider):
            await close_provider()
