"""Building signed JWT assertions from service account keys.

The JWT-bearer grant takes a JWT signed by the service account's private key,
with the token endpoint as audience and the requested scopes as a claim.
"""

from __future__ import annotations

import json
import time
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from google.auth import crypt, jwt

from extraauth.exceptions import AssertionBuildError
from extraauth.provider import GOOGLE_TOKEN_URL

SPREADSHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"
SPREADSHEETS_READONLY_SCOPE = "https://www.googleapis.com/auth/spreadsheets.readonly"
DRIVE_READONLY_SCOPE = "https://www.googleapis.com/auth/drive.readonly"

# Scopes of the retired GData spreadsheet feeds
LEGACY_SPREADSHEET_SCOPES = (
    "https://spreadsheets.google.com/feeds",
    "https://docs.google.com/feeds",
)

# Google rejects assertions valid for longer than an hour
MAX_ASSERTION_LIFETIME = 3600


def build_assertion(
    signer: crypt.Signer,
    issuer: str,
    scopes: Sequence[str],
    audience: str = GOOGLE_TOKEN_URL,
    subject: str | None = None,
    lifetime: int = MAX_ASSERTION_LIFETIME,
    now: float | None = None,
) -> str:
    """Sign a JWT-bearer assertion.

    Args:
        signer: Signer holding the service account private key
        issuer: Service account email
        scopes: OAuth2 scopes requested for the access token
        audience: Token endpoint the assertion will be exchanged at
        subject: User to impersonate (domain-wide delegation)
        lifetime: Seconds the assertion stays valid
        now: Issue time as a Unix timestamp (defaults to the current time)

    Returns:
        The encoded JWT
    """
    if not scopes:
        raise AssertionBuildError("at least one scope is required")
    if not 0 < lifetime <= MAX_ASSERTION_LIFETIME:
        raise AssertionBuildError(
            f"lifetime must be between 1 and {MAX_ASSERTION_LIFETIME} seconds"
        )

    issued_at = int(now if now is not None else time.time())
    payload: dict[str, Any] = {
        "iss": issuer,
        "scope": " ".join(scopes),
        "aud": audience,
        "iat": issued_at,
        "exp": issued_at + lifetime,
    }
    if subject:
        payload["sub"] = subject

    return jwt.encode(signer, payload).decode("ascii")


def assertion_from_service_account_info(
    info: Mapping[str, Any],
    scopes: Sequence[str],
    subject: str | None = None,
    audience: str | None = None,
) -> str:
    """Sign an assertion with a parsed service account key.

    The audience defaults to the key's ``token_uri``.
    """
    issuer = info.get("client_email")
    if not issuer:
        raise AssertionBuildError("service account info has no client_email")

    try:
        signer = crypt.RSASigner.from_service_account_info(info)
    except ValueError as e:
        raise AssertionBuildError(f"invalid service account key: {e}") from e

    return build_assertion(
        signer,
        issuer=issuer,
        scopes=scopes,
        audience=audience or info.get("token_uri") or GOOGLE_TOKEN_URL,
        subject=subject,
    )


def assertion_from_service_account_file(
    path: str | Path,
    scopes: Sequence[str],
    subject: str | None = None,
    audience: str | None = None,
) -> str:
    """Sign an assertion with a service account JSON key file."""
    key_path = Path(path).expanduser()
    try:
        info = json.loads(key_path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise AssertionBuildError(f"service account file not found: {key_path}") from e
    except (OSError, json.JSONDecodeError) as e:
        raise AssertionBuildError(f"cannot read service account file {key_path}: {e}") from e

    if not isinstance(info, dict):
        raise AssertionBuildError(f"service account file {key_path} is not a JSON object")

    return assertion_from_service_account_info(info, scopes, subject=subject, audience=audience)
