"""Factories for authenticated httpx clients.

Example:
    from extraauth import client_for_service_account

    with client_for_service_account("sa.json") as client:
        response = client.get("https://sheets.googleapis.com/v4/spreadsheets/ID")
"""

from __future__ import annotations

import ssl
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import certifi
import httpx

from extraauth.assertion import assertion_from_service_account_file
from extraauth.config import Settings, get_settings
from extraauth.provider import AsyncJWTBearerTokenProvider, JWTBearerTokenProvider
from extraauth.transport import AsyncOAuth2Transport, OAuth2Transport


def _ssl_context() -> ssl.SSLContext:
    return ssl.create_default_context(cafile=certifi.where())


def client_for_jwt(
    assertion: str,
    transport: httpx.BaseTransport | None = None,
    settings: Settings | None = None,
    **client_kwargs: Any,
) -> httpx.Client:
    """Create an httpx.Client whose requests carry OAuth2 bearer tokens.

    Args:
        assertion: Signed JWT exchanged for access tokens
        transport: Transport to wrap. Token exchanges use it too, through a
            separate unauthenticated client. Defaults to httpx.HTTPTransport.
        settings: Token endpoint, timeout and retry settings
            (defaults to get_settings())
        **client_kwargs: Passed through to httpx.Client

    Returns:
        A client to use like any other httpx.Client
    """
    settings = settings or get_settings()
    inner = transport or httpx.HTTPTransport(verify=_ssl_context())

    provider = JWTBearerTokenProvider(
        assertion,
        token_url=settings.token_url,
        timeout=settings.timeout,
        transport=inner,
    )
    auth_transport = OAuth2Transport(provider, transport=inner, max_retries=settings.max_retries)

    client_kwargs.setdefault("timeout", settings.timeout)
    return httpx.Client(transport=auth_transport, **client_kwargs)


def async_client_for_jwt(
    assertion: str,
    transport: httpx.AsyncBaseTransport | None = None,
    settings: Settings | None = None,
    **client_kwargs: Any,
) -> httpx.AsyncClient:
    """asyncio counterpart of client_for_jwt."""
    settings = settings or get_settings()
    inner = transport or httpx.AsyncHTTPTransport(verify=_ssl_context())

    provider = AsyncJWTBearerTokenProvider(
        assertion,
        token_url=settings.token_url,
        timeout=settings.timeout,
        transport=inner,
    )
    auth_transport = AsyncOAuth2Transport(
        provider, transport=inner, max_retries=settings.max_retries
    )

    client_kwargs.setdefault("timeout", settings.timeout)
    return httpx.AsyncClient(transport=auth_transport, **client_kwargs)


def client_for_service_account(
    path: str | Path | None = None,
    scopes: Sequence[str] | None = None,
    subject: str | None = None,
    transport: httpx.BaseTransport | None = None,
    settings: Settings | None = None,
    **client_kwargs: Any,
) -> httpx.Client:
    """Create an authenticated client from a service account key file.

    ``path`` and ``scopes`` default to EXTRAAUTH_SERVICE_ACCOUNT_FILE and
    EXTRAAUTH_SCOPES.
    """
    settings = settings or get_settings()
    key_path = path or settings.service_account_file
    if not key_path:
        raise ValueError(
            "No service account file. Pass path or set EXTRAAUTH_SERVICE_ACCOUNT_FILE."
        )

    assertion = assertion_from_service_account_file(
        key_path,
        scopes or settings.get_scopes(),
        subject=subject,
        audience=settings.token_url,
    )
    return client_for_jwt(assertion, transport=transport, settings=settings, **client_kwargs)
