"""Exceptions raised by extraauth.

Token exchange failures are distinct types so callers can log precise
diagnostics. When one surfaces from a request made through the authenticating
transport it is wrapped in AuthorizationFailedError.
"""

from __future__ import annotations


class ExtraAuthError(Exception):
    """Base exception for extraauth errors."""


class TokenExchangeError(ExtraAuthError):
    """Base exception for JWT-bearer token exchange failures."""


class ExchangeNetworkError(TokenExchangeError):
    """Raised when the token endpoint could not be reached."""


class ExchangeDecodeError(TokenExchangeError):
    """Raised when the token endpoint response has an unexpected shape."""


class ExchangeRejectedError(TokenExchangeError):
    """Raised when the token endpoint reports an explicit error."""

    def __init__(self, error: str, description: str = "") -> None:
        self.error = error
        self.description = description
        message = f"token endpoint rejected the assertion: {error}"
        if description:
            message = f"{message} ({description})"
        super().__init__(message)


class ExchangeEmptyTokenError(TokenExchangeError):
    """Raised when the token endpoint reports success but no access token."""

    def __init__(self) -> None:
        super().__init__("no access token received")


class AuthorizationFailedError(ExtraAuthError):
    """Raised when a request could not be authorized.

    The underlying TokenExchangeError is available as ``__cause__``.
    """

    def __init__(self, cause: TokenExchangeError) -> None:
        super().__init__(f"authorization failed: {cause}")


class DelegateExecutionError(ExtraAuthError):
    """Raised when the wrapped transport fails outright.

    The original httpx.TransportError is available as ``__cause__``.
    """


class AssertionBuildError(ExtraAuthError):
    """Raised when a JWT assertion cannot be built from service account data."""
