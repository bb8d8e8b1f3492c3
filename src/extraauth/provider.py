"""JWT-bearer token providers.

A token provider trades a signed JWT assertion for a short-lived OAuth2 access
token. Providers are stateless per call: caching lives in the transport.

Defines the provider protocols and implementations:
- JWTBearerTokenProvider: exchanges over a synchronous httpx.Client
- AsyncJWTBearerTokenProvider: exchanges over an httpx.AsyncClient
"""

from __future__ import annotations

import ssl
from typing import Any, Protocol, runtime_checkable

import certifi
import httpx
from loguru import logger

from extraauth.exceptions import (
    ExchangeDecodeError,
    ExchangeEmptyTokenError,
    ExchangeNetworkError,
    ExchangeRejectedError,
)
from extraauth.tokens import AccessToken

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
JWT_BEARER_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"
DEFAULT_TIMEOUT = 60


@runtime_checkable
class TokenProvider(Protocol):
    """Anything that can produce a fresh access token."""

    def fetch(self) -> AccessToken: ...


@runtime_checkable
class AsyncTokenProvider(Protocol):
    """Anything that can produce a fresh access token asynchronously."""

    async def fetch(self) -> AccessToken: ...


def exchange_params(assertion: str) -> dict[str, str]:
    """Form parameters for a JWT-bearer grant."""
    return {"grant_type": JWT_BEARER_GRANT_TYPE, "assertion": assertion}


def parse_token_response(response: httpx.Response) -> AccessToken:
    """Decode a token endpoint response into an AccessToken.

    Google reports grant failures as ``400 {"error": "invalid_grant", ...}``,
    so the body is inspected before the status code.

    Raises:
        ExchangeDecodeError: Body is not a JSON object of the expected shape.
        ExchangeRejectedError: Body carries a non-empty ``error`` field.
        ExchangeEmptyTokenError: No error reported but no token either.
    """
    try:
        body: Any = response.json()
    except ValueError as e:
        raise ExchangeDecodeError(
            f"failed to decode token response (HTTP {response.status_code}): {e}"
        ) from e

    if not isinstance(body, dict):
        raise ExchangeDecodeError(
            f"failed to decode token response: expected a JSON object, got {type(body).__name__}"
        )

    error = body.get("error") or ""
    if not isinstance(error, str):
        raise ExchangeDecodeError("failed to decode token response: 'error' is not a string")
    if error:
        raise ExchangeRejectedError(error, str(body.get("error_description") or ""))

    if response.is_error:
        raise ExchangeDecodeError(
            f"token endpoint returned HTTP {response.status_code} without an error code"
        )

    access_token = body.get("access_token") or ""
    if not isinstance(access_token, str):
        raise ExchangeDecodeError(
            "failed to decode token response: 'access_token' is not a string"
        )
    if not access_token:
        raise ExchangeEmptyTokenError()

    expires_in = body.get("expires_in")
    # bool is an int subclass
    if not isinstance(expires_in, int) or isinstance(expires_in, bool):
        raise ExchangeDecodeError(
            "failed to decode token response: 'expires_in' is missing or not an integer"
        )

    return AccessToken(value=access_token, expires_in=expires_in)


def _default_ssl_context() -> ssl.SSLContext:
    return ssl.create_default_context(cafile=certifi.where())


class JWTBearerTokenProvider:
    """Exchanges a signed JWT assertion at an OAuth2 token endpoint.

    The assertion is bound at construction; each fetch() performs exactly one
    form-encoded POST and never retries.
    """

    def __init__(
        self,
        assertion: str,
        token_url: str = GOOGLE_TOKEN_URL,
        client: httpx.Client | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            assertion: Signed JWT whose audience is ``token_url``
            token_url: OAuth2 token endpoint
            client: HTTP client to POST with. Must not be an authenticated
                client. A new one is created (and owned) if omitted.
            timeout: Request timeout in seconds for the owned client
            transport: Transport for the owned client; ignored with ``client``
        """
        self._assertion = assertion
        self._token_url = token_url
        self._owns_client = client is None
        self._client = client or httpx.Client(
            transport=transport, timeout=timeout, verify=_default_ssl_context()
        )

    @property
    def token_url(self) -> str:
        return self._token_url

    def fetch(self) -> AccessToken:
        """Exchange the assertion for an access token."""
        logger.debug("Exchanging JWT assertion", extra={"token_url": self._token_url})
        try:
            response = self._client.post(self._token_url, data=exchange_params(self._assertion))
        except httpx.HTTPError as e:
            logger.warning("Token endpoint unreachable", extra={"reason": str(e)})
            raise ExchangeNetworkError(f"failed to contact OAuth2 service: {e}") from e
        return _parse_logged(response)

    def close(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._owns_client:
            self._client.close()


class AsyncJWTBearerTokenProvider:
    """asyncio counterpart of JWTBearerTokenProvider."""

    def __init__(
        self,
        assertion: str,
        token_url: str = GOOGLE_TOKEN_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._assertion = assertion
        self._token_url = token_url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            transport=transport, timeout=timeout, verify=_default_ssl_context()
        )

    @property
    def token_url(self) -> str:
        return self._token_url

    async def fetch(self) -> AccessToken:
        logger.debug("Exchanging JWT assertion", extra={"token_url": self._token_url})
        try:
            response = await self._client.post(
                self._token_url, data=exchange_params(self._assertion)
            )
        except httpx.HTTPError as e:
            logger.warning("Token endpoint unreachable", extra={"reason": str(e)})
            raise ExchangeNetworkError(f"failed to contact OAuth2 service: {e}") from e
        return _parse_logged(response)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _parse_logged(response: httpx.Response) -> AccessToken:
    try:
        return parse_token_response(response)
    except ExchangeRejectedError as e:
        logger.warning(
            "Token exchange rejected",
            extra={"error": e.error, "status_code": response.status_code},
        )
        raise
