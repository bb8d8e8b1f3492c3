"""Unit tests for OAuth2Transport."""

from __future__ import annotations

import threading

import httpx
import pytest

from extraauth.exceptions import (
    AuthorizationFailedError,
    DelegateExecutionError,
    ExchangeNetworkError,
    ExchangeRejectedError,
)
from extraauth.tokens import AccessToken
from extraauth.transport import DEFAULT_MAX_RETRIES, OAuth2Transport
from tests.fakes import FakeClock, FakeTokenProvider, RecordingHandler

URL = "https://sheets.googleapis.com/v4/spreadsheets/abc"


def make_transport(
    handler: RecordingHandler,
    provider: FakeTokenProvider | None = None,
    clock: FakeClock | None = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> OAuth2Transport:
    return OAuth2Transport(
        provider or FakeTokenProvider(),
        transport=httpx.MockTransport(handler),
        max_retries=max_retries,
        clock=clock or FakeClock(),
    )


class TestTokenAcquisition:
    """Tests for lazy token exchange and caching."""

    def test_first_request_exchanges_token(self) -> None:
        """An empty cache triggers exactly one exchange before sending."""
        provider = FakeTokenProvider()
        handler = RecordingHandler()
        transport = make_transport(handler, provider)

        response = transport.handle_request(httpx.Request("GET", URL))

        assert response.status_code == 200
        assert provider.calls == 1
        assert handler.authorizations == ["Bearer T1"]

    def test_unexpired_token_is_reused(self) -> None:
        """A second request within the token lifetime makes no exchange."""
        provider = FakeTokenProvider()
        handler = RecordingHandler()
        transport = make_transport(handler, provider)

        transport.handle_request(httpx.Request("GET", URL))
        transport.handle_request(httpx.Request("GET", URL))

        assert provider.calls == 1
        assert handler.authorizations == ["Bearer T1", "Bearer T1"]

    def test_expired_token_is_refreshed(self) -> None:
        """A request at or past expiry exchanges a new token."""
        provider = FakeTokenProvider(expires_in=3600)
        handler = RecordingHandler()
        clock = FakeClock()
        transport = make_transport(handler, provider, clock)

        transport.handle_request(httpx.Request("GET", URL))
        clock.advance(3600)
        transport.handle_request(httpx.Request("GET", URL))

        assert provider.calls == 2
        assert handler.authorizations == ["Bearer T1", "Bearer T2"]
        assert transport.cached_token.value == "T2"
        assert transport.cached_token.expires_at == clock.now + 3600

    def test_token_just_before_expiry_is_reused(self) -> None:
        """A token is still sent one second before it expires."""
        provider = FakeTokenProvider(expires_in=3600)
        clock = FakeClock()
        transport = make_transport(RecordingHandler(), provider, clock)

        transport.handle_request(httpx.Request("GET", URL))
        clock.advance(3599)
        transport.handle_request(httpx.Request("GET", URL))

        assert provider.calls == 1

    def test_expiry_anchored_at_request_start(self) -> None:
        """Expiry is computed from the time captured before the exchange."""
        clock = FakeClock(now=1000.0)

        class SlowProvider(FakeTokenProvider):
            def fetch(self) -> AccessToken:
                clock.advance(30)
                return super().fetch()

        transport = make_transport(RecordingHandler(), SlowProvider(expires_in=60), clock)
        transport.handle_request(httpx.Request("GET", URL))

        assert transport.cached_token.expires_at == 1060.0


class TestUnauthorizedRetry:
    """Tests for the single retry after a 401."""

    def test_401_then_200_refreshes_and_returns_success(self) -> None:
        """The rejected token is replaced and the retry's response returned."""
        provider = FakeTokenProvider()
        handler = RecordingHandler(statuses=[401, 200])
        transport = make_transport(handler, provider)

        response = transport.handle_request(httpx.Request("GET", URL))

        assert response.status_code == 200
        assert provider.calls == 2
        assert handler.authorizations == ["Bearer T1", "Bearer T2"]
        assert transport.cached_token.value == "T2"

    def test_401_on_retry_is_returned_as_response(self) -> None:
        """A second 401 is returned to the caller, with no third attempt."""
        provider = FakeTokenProvider()
        handler = RecordingHandler(statuses=[401, 401, 200])
        transport = make_transport(handler, provider)

        response = transport.handle_request(httpx.Request("GET", URL))
        response.read()

        assert response.status_code == 401
        assert response.text == "response 2"
        assert handler.calls == 2
        assert provider.calls == 2

    def test_401_with_unexpired_token_forces_refresh(self) -> None:
        """A cached token rejected by the server is not sent again."""
        provider = FakeTokenProvider()
        handler = RecordingHandler(statuses=[200, 401, 200])
        transport = make_transport(handler, provider)

        transport.handle_request(httpx.Request("GET", URL))
        response = transport.handle_request(httpx.Request("GET", URL))

        assert response.status_code == 200
        assert handler.authorizations == ["Bearer T1", "Bearer T1", "Bearer T2"]

    def test_other_error_statuses_pass_through(self) -> None:
        """Non-401 errors are returned untouched without retrying."""
        for status in (403, 404, 500):
            provider = FakeTokenProvider()
            handler = RecordingHandler(statuses=[status])
            transport = make_transport(handler, provider)

            response = transport.handle_request(httpx.Request("GET", URL))

            assert response.status_code == status
            assert handler.calls == 1
            assert provider.calls == 1

    def test_zero_retries_returns_first_401(self) -> None:
        """With max_retries=0 the first 401 is returned."""
        handler = RecordingHandler(statuses=[401, 200])
        transport = make_transport(handler, max_retries=0)

        response = transport.handle_request(httpx.Request("GET", URL))

        assert response.status_code == 401
        assert handler.calls == 1

    def test_negative_retries_rejected(self) -> None:
        """max_retries must not be negative."""
        with pytest.raises(ValueError, match="max_retries"):
            make_transport(RecordingHandler(), max_retries=-1)

    def test_retry_resends_request_body(self) -> None:
        """The request body is sent again on the retry."""
        bodies: list[bytes] = []
        statuses = iter([401, 200])

        def responder(request: httpx.Request) -> httpx.Response:
            bodies.append(request.content)
            return httpx.Response(next(statuses))

        handler = RecordingHandler(responder=responder)
        transport = make_transport(handler)

        with httpx.Client(transport=transport) as client:
            response = client.post(URL, content=b"a,b\n1,2\n")

        assert response.status_code == 200
        assert bodies == [b"a,b\n1,2\n", b"a,b\n1,2\n"]


class TestExchangeFailures:
    """Tests for token exchange errors surfacing from a request."""

    def test_exchange_failure_aborts_before_sending(self) -> None:
        """The wrapped transport is never called when the exchange fails."""
        provider = FakeTokenProvider(fail_with=ExchangeRejectedError("invalid_grant"))
        handler = RecordingHandler()
        transport = make_transport(handler, provider)

        with pytest.raises(AuthorizationFailedError, match="invalid_grant") as exc_info:
            transport.handle_request(httpx.Request("GET", URL))

        assert handler.calls == 0
        assert isinstance(exc_info.value.__cause__, ExchangeRejectedError)
        assert str(exc_info.value).startswith("authorization failed: ")

    def test_exchange_failure_leaves_cache_empty(self) -> None:
        """A failed exchange does not change the cached token."""
        provider = FakeTokenProvider(fail_with=ExchangeNetworkError("down"))
        transport = make_transport(RecordingHandler(), provider)

        with pytest.raises(AuthorizationFailedError):
            transport.handle_request(httpx.Request("GET", URL))

        assert transport.cached_token.value == ""

    def test_exchange_failure_on_retry_raises(self) -> None:
        """A failed re-exchange after a 401 aborts without a second send."""

        class FailsAfterFirst(FakeTokenProvider):
            def fetch(self) -> AccessToken:
                if self.calls >= 1:
                    self.fail_with = ExchangeNetworkError("down")
                return super().fetch()

        handler = RecordingHandler(statuses=[401])
        transport = make_transport(handler, FailsAfterFirst())

        with pytest.raises(AuthorizationFailedError, match="down"):
            transport.handle_request(httpx.Request("GET", URL))

        assert handler.calls == 1


class TestDelegateFailures:
    """Tests for failures of the wrapped transport."""

    def test_transport_error_is_wrapped_and_not_retried(self) -> None:
        """An httpx.TransportError becomes DelegateExecutionError."""
        calls = 0

        def responder(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            raise httpx.ConnectError("connection refused", request=request)

        transport = make_transport(RecordingHandler(responder=responder))

        with pytest.raises(DelegateExecutionError, match="connection refused") as exc_info:
            transport.handle_request(httpx.Request("GET", URL))

        assert calls == 1
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


class TestHeaderIsolation:
    """Tests that the caller's headers are never modified."""

    def test_headers_restored_after_success(self) -> None:
        """The request carries its original headers after the call."""
        handler = RecordingHandler()
        transport = make_transport(handler)
        request = httpx.Request("GET", URL, headers={"X-Trace": "abc"})
        original = request.headers

        transport.handle_request(request)

        assert request.headers is original
        assert "Authorization" not in request.headers
        assert request.headers["X-Trace"] == "abc"

    def test_headers_restored_after_retry(self) -> None:
        """Retries leave the caller's headers untouched."""
        handler = RecordingHandler(statuses=[401, 401])
        transport = make_transport(handler)
        request = httpx.Request("GET", URL, headers={"X-Trace": "abc"})
        before = dict(request.headers)

        transport.handle_request(request)

        assert dict(request.headers) == before

    def test_headers_restored_after_exchange_failure(self) -> None:
        """Early exits restore the headers too."""
        provider = FakeTokenProvider(fail_with=ExchangeNetworkError("down"))
        transport = make_transport(RecordingHandler(), provider)
        request = httpx.Request("GET", URL)
        original = request.headers

        with pytest.raises(AuthorizationFailedError):
            transport.handle_request(request)

        assert request.headers is original
        assert "Authorization" not in request.headers

    def test_other_headers_are_sent(self) -> None:
        """The Authorization header is added next to existing headers."""
        seen: list[httpx.Headers] = []

        def responder(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.copy())
            return httpx.Response(200)

        transport = make_transport(RecordingHandler(responder=responder))
        transport.handle_request(httpx.Request("GET", URL, headers={"Accept": "text/csv"}))

        assert seen[0]["Accept"] == "text/csv"
        assert seen[0]["Authorization"] == "Bearer T1"

    def test_retry_sends_single_authorization_header(self) -> None:
        """Each attempt carries exactly one Authorization header."""
        seen: list[list[str]] = []
        statuses = iter([401, 200])

        def responder(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get_list("Authorization"))
            return httpx.Response(next(statuses))

        transport = make_transport(RecordingHandler(responder=responder))
        transport.handle_request(httpx.Request("GET", URL))

        assert seen == [["Bearer T1"], ["Bearer T2"]]

    def test_headers_restored_after_transport_error(self) -> None:
        """A failing wrapped transport leaves the caller's headers untouched."""

        def responder(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        transport = make_transport(RecordingHandler(responder=responder))
        request = httpx.Request("GET", URL, headers={"X-Trace": "abc"})
        original = request.headers
        before = dict(request.headers)

        with pytest.raises(DelegateExecutionError):
            transport.handle_request(request)

        assert request.headers is original
        assert dict(request.headers) == before

    def test_shared_request_sent_from_two_threads(self) -> None:
        """One request object in flight on two threads keeps its headers.

        The first call is still inside the wrapped transport while the second
        one is sent, and returns before the second one finishes.
        """
        lock = threading.Lock()
        seen: list[str | None] = []
        first_in_flight = threading.Event()
        second_in_flight = threading.Event()
        first_returned = threading.Event()

        def handler(request: httpx.Request) -> httpx.Response:
            with lock:
                index = len(seen)
                seen.append(request.headers.get("Authorization"))
            if index == 0:
                first_in_flight.set()
                second_in_flight.wait(timeout=5)
            else:
                second_in_flight.set()
                first_returned.wait(timeout=5)
            return httpx.Response(200)

        transport = OAuth2Transport(
            FakeTokenProvider(), transport=httpx.MockTransport(handler), clock=FakeClock()
        )
        shared = httpx.Request("GET", URL, headers={"X-Trace": "abc"})
        before = dict(shared.headers)
        statuses: list[int] = []

        def first() -> None:
            statuses.append(transport.handle_request(shared).status_code)
            first_returned.set()

        def second() -> None:
            statuses.append(transport.handle_request(shared).status_code)

        first_thread = threading.Thread(target=first)
        first_thread.start()
        assert first_in_flight.wait(timeout=5)
        second_thread = threading.Thread(target=second)
        second_thread.start()
        first_thread.join(timeout=5)
        second_thread.join(timeout=5)

        assert statuses == [200, 200]
        assert seen == ["Bearer T1", "Bearer T1"]
        assert dict(shared.headers) == before


class TestConcurrency:
    """Tests for sharing one transport across threads."""

    def test_concurrent_requests_share_one_exchange(self) -> None:
        """Threads racing on an empty cache trigger a single exchange."""
        provider = FakeTokenProvider()
        handler = RecordingHandler()
        transport = make_transport(handler, provider)
        barrier = threading.Barrier(8)
        errors: list[Exception] = []

        def worker() -> None:
            try:
                barrier.wait()
                transport.handle_request(httpx.Request("GET", URL))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert provider.calls == 1
        assert handler.authorizations == ["Bearer T1"] * 8

    def test_stale_invalidation_keeps_newer_token(self) -> None:
        """A 401 for an old token does not discard a newer cached token."""
        provider = FakeTokenProvider()
        transport = make_transport(RecordingHandler(), provider)
        transport.handle_request(httpx.Request("GET", URL))

        cache = transport._cache
        assert cache.invalidate("T0") is False
        assert cache.current.value == "T1"
        assert cache.invalidate("T1") is True
        assert cache.current.value == ""


class TestClientIntegration:
    """Tests through a regular httpx.Client."""

    def test_client_requests_are_authenticated(self) -> None:
        """An httpx.Client using the transport sends bearer tokens."""
        handler = RecordingHandler()
        transport = make_transport(handler)

        with httpx.Client(transport=transport) as client:
            response = client.get(URL, headers={"Accept": "application/json"})

        assert response.status_code == 200
        assert handler.authorizations == ["Bearer T1"]
        assert "Authorization" not in response.request.headers
