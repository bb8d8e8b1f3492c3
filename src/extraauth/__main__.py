"""CLI entry point for extraauth.

Usage:
    python -m extraauth token --service-account sa.json [--scope SCOPE ...]
    python -m extraauth get <url> --service-account sa.json [--scope SCOPE ...]
"""

from __future__ import annotations

import argparse
import sys

from loguru import logger

from extraauth.assertion import assertion_from_service_account_file
from extraauth.client import client_for_service_account
from extraauth.config import Settings, get_settings
from extraauth.exceptions import (
    AssertionBuildError,
    AuthorizationFailedError,
    DelegateExecutionError,
    TokenExchangeError,
)
from extraauth.logging import setup_logging
from extraauth.provider import JWTBearerTokenProvider

EXIT_OK = 0
EXIT_HTTP_ERROR = 1
EXIT_AUTH_ERROR = 2


def _scopes(args: argparse.Namespace, settings: Settings) -> list[str]:
    return args.scope or settings.get_scopes()


def cmd_token(args: argparse.Namespace, settings: Settings) -> int:
    """Exchange a service account assertion and report the token lifetime."""
    key_path = args.service_account or settings.service_account_file
    if not key_path:
        print(
            "Error: No service account file. "
            "Pass --service-account or set EXTRAAUTH_SERVICE_ACCOUNT_FILE.",
            file=sys.stderr,
        )
        return EXIT_AUTH_ERROR

    try:
        assertion = assertion_from_service_account_file(
            key_path,
            _scopes(args, settings),
            subject=args.subject,
            audience=settings.token_url,
        )
    except AssertionBuildError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_AUTH_ERROR

    provider = JWTBearerTokenProvider(
        assertion, token_url=settings.token_url, timeout=settings.timeout
    )
    try:
        token = provider.fetch()
    except TokenExchangeError as e:
        print(f"Authorization failed: {e}", file=sys.stderr)
        return EXIT_AUTH_ERROR
    finally:
        provider.close()

    print(f"Token expires in {token.expires_in} seconds")
    if args.show_token:
        print(token.value)
    return EXIT_OK


def cmd_get(args: argparse.Namespace, settings: Settings) -> int:
    """Perform an authenticated GET and write the body to stdout."""
    try:
        client = client_for_service_account(
            args.service_account or None,
            scopes=args.scope or None,
            subject=args.subject,
            settings=settings,
        )
    except (AssertionBuildError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_AUTH_ERROR

    with client:
        try:
            response = client.get(args.url)
        except AuthorizationFailedError as e:
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_AUTH_ERROR
        except DelegateExecutionError as e:
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_HTTP_ERROR

    sys.stdout.write(response.text)
    if response.is_error:
        logger.warning("Request failed", extra={"status_code": response.status_code})
        print(f"HTTP {response.status_code} {response.reason_phrase}", file=sys.stderr)
        return EXIT_HTTP_ERROR
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="extraauth",
        description="Google API access with JWT-bearer OAuth2 tokens",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_credential_args(sub: argparse.ArgumentParser) -> None:
        sub.add_argument(
            "--service-account",
            default="",
            help="Service account JSON key file (default: EXTRAAUTH_SERVICE_ACCOUNT_FILE)",
        )
        sub.add_argument(
            "--scope",
            action="append",
            help="OAuth2 scope to request; repeatable (default: EXTRAAUTH_SCOPES)",
        )
        sub.add_argument("--subject", help="User to impersonate (domain-wide delegation)")

    token_parser = subparsers.add_parser("token", help="Exchange an assertion for a token")
    add_credential_args(token_parser)
    token_parser.add_argument(
        "--show-token", action="store_true", help="Print the access token itself"
    )

    get_parser = subparsers.add_parser("get", help="Perform an authenticated GET")
    get_parser.add_argument("url", help="URL to fetch")
    add_credential_args(get_parser)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(
        json_logs=settings.json_logs,
        log_level="DEBUG" if args.verbose else settings.log_level,
    )

    if args.command == "token":
        return cmd_token(args, settings)
    return cmd_get(args, settings)


if __name__ == "__main__":
    sys.exit(main())
