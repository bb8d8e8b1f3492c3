"""extraauth - OAuth2 JWT-bearer authentication for httpx clients.

Requests sent through an extraauth client carry a bearer token obtained by
exchanging a signed JWT assertion. Tokens are cached per client, refreshed
when they expire, and a request rejected with 401 is retried once with a
freshly exchanged token.

Example:
    from extraauth import client_for_jwt

    with client_for_jwt(signed_jwt) as client:
        response = client.get("https://sheets.googleapis.com/v4/spreadsheets/ID")
"""

__version__ = "0.1.0"

from extraauth.assertion import (
    DRIVE_READONLY_SCOPE,
    SPREADSHEETS_READONLY_SCOPE,
    SPREADSHEETS_SCOPE,
    assertion_from_service_account_file,
    assertion_from_service_account_info,
    build_assertion,
)
from extraauth.client import (
    async_client_for_jwt,
    client_for_jwt,
    client_for_service_account,
)
from extraauth.config import Settings, get_settings
from extraauth.exceptions import (
    AssertionBuildError,
    AuthorizationFailedError,
    DelegateExecutionError,
    ExchangeDecodeError,
    ExchangeEmptyTokenError,
    ExchangeNetworkError,
    ExchangeRejectedError,
    ExtraAuthError,
    TokenExchangeError,
)
from extraauth.provider import (
    GOOGLE_TOKEN_URL,
    AsyncJWTBearerTokenProvider,
    AsyncTokenProvider,
    JWTBearerTokenProvider,
    TokenProvider,
)
from extraauth.tokens import AccessToken, CachedToken
from extraauth.transport import (
    DEFAULT_MAX_RETRIES,
    AsyncOAuth2Transport,
    OAuth2Transport,
)

__all__ = [
    "DEFAULT_MAX_RETRIES",
    "DRIVE_READONLY_SCOPE",
    "GOOGLE_TOKEN_URL",
    "SPREADSHEETS_READONLY_SCOPE",
    "SPREADSHEETS_SCOPE",
    "AccessToken",
    "AssertionBuildError",
    "AsyncJWTBearerTokenProvider",
    "AsyncOAuth2Transport",
    "AsyncTokenProvider",
    "AuthorizationFailedError",
    "CachedToken",
    "DelegateExecutionError",
    "ExchangeDecodeError",
    "ExchangeEmptyTokenError",
    "ExchangeNetworkError",
    "ExchangeRejectedError",
    "ExtraAuthError",
    "JWTBearerTokenProvider",
    "OAuth2Transport",
    "Settings",
    "TokenExchangeError",
    "TokenProvider",
    "__version__",
    "assertion_from_service_account_file",
    "assertion_from_service_account_info",
    "async_client_for_jwt",
    "build_assertion",
    "client_for_jwt",
    "client_for_service_account",
    "get_settings",
]
