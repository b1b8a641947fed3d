"""
End-to-end tests for src/api_engine/client.py.

The client is wired with FakeTransport and FakeAuthenticator so the whole
path (session manager → request pipeline → poll loop) runs without a network.
"""

from __future__ import annotations

import asyncio
import json

import pytest

from src.api_engine.client import ApiClient
from src.api_engine.errors import (
    ApiFailure,
    AuthenticationError,
    Cancelled,
    PollTimeout,
    TransportError,
)
from src.api_engine.executor import build_request
from src.api_engine.models import utc_now
from src.api_engine.retry import CheckResult

from .conftest import FakeAuthenticator, FakeTransport, json_response


def _status(state: str, **extra) -> bytes:
    return json.dumps({"state": state, **extra}).encode()


def _is_done(body):
    return body["state"] == "COMPLETE"


def _is_failed(body):
    return body["state"] == "FAILED"


@pytest.fixture
def live_authenticator():
    # Sessions anchored to the real clock, which the client's manager uses
    return FakeAuthenticator(now=utc_now())


def _client(config, credentials, transport, authenticator):
    return ApiClient(config, credentials, transport=transport, authenticator=authenticator)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class TestClientRequests:
    """Tests for the request verbs, login and lifecycle."""

    @pytest.mark.asyncio
    async def test_get_decodes_json_and_authenticates_lazily(
        self, config, credentials, live_authenticator
    ):
        """The first get authenticates, then returns the decoded body."""
        transport = FakeTransport([json_response(200, b'{"id": "N:user:1"}')])
        api = _client(config, credentials, transport, live_authenticator)

        assert not api.has_session
        assert await api.get("/user/") == {"id": "N:user:1"}
        assert api.has_session
        assert live_authenticator.calls == 1
        assert transport.requests[0].headers["X-SESSION-ID"] == "token-1"

    @pytest.mark.asyncio
    async def test_post_sends_payload_and_params(self, config, credentials, live_authenticator):
        """post sends params and a JSON payload."""
        transport = FakeTransport([json_response(201, b'{"id": "job-1"}')])
        api = _client(config, credentials, transport, live_authenticator)

        job = await api.post("/jobs", params={"append": True}, payload={"kind": "import"})

        request = transport.requests[0]
        assert job == {"id": "job-1"}
        assert request.method == "POST"
        assert request.params == (("append", "true"),)
        assert json.loads(request.body) == {"kind": "import"}

    @pytest.mark.asyncio
    async def test_delete_with_empty_body(self, config, credentials, live_authenticator):
        """An empty 204 body decodes to None."""
        transport = FakeTransport([json_response(204, b"")])
        api = _client(config, credentials, transport, live_authenticator)
        assert await api.delete("/datasets/1") is None

    @pytest.mark.asyncio
    async def test_requests_share_one_session(self, config, credentials, live_authenticator):
        """Concurrent requests share one exchange and one token."""
        transport = FakeTransport([], default=json_response(200, b"{}"))
        api = _client(config, credentials, transport, live_authenticator)

        await asyncio.gather(*(api.get(f"/items/{n}") for n in range(8)))

        assert live_authenticator.calls == 1
        assert {r.headers["Authorization"] for r in transport.requests} == {"Bearer token-1"}

    @pytest.mark.asyncio
    async def test_login_forces_new_session(self, config, credentials, live_authenticator):
        """login always performs a fresh exchange."""
        api = _client(config, credentials, FakeTransport(), live_authenticator)
        first = await api.login()
        second = await api.login()
        assert (first.token, second.token) == ("token-1", "token-2")

    @pytest.mark.asyncio
    async def test_login_failure(self, config, credentials):
        """A failed login raises AuthenticationError and leaves no session."""
        failing = FakeAuthenticator(fail_with=AuthenticationError("invalid api key", 401))
        api = _client(config, credentials, FakeTransport(), failing)
        with pytest.raises(AuthenticationError):
            await api.login()
        assert api.current_organization is None

    @pytest.mark.asyncio
    async def test_context_manager_closes_transport(self, config, credentials, live_authenticator):
        """Leaving the async context closes the transport."""
        transport = FakeTransport()
        async with _client(config, credentials, transport, live_authenticator):
            pass
        assert transport.closed


# ---------------------------------------------------------------------------
# wait_for
# ---------------------------------------------------------------------------

class TestWaitFor:
    """Tests for wait_for over a status route."""

    @pytest.mark.asyncio
    async def test_polls_status_route_until_complete(self, config, credentials, live_authenticator):
        """The status route is polled until is_done holds."""
        transport = FakeTransport([
            json_response(200, _status("RUNNING")),
            json_response(200, _status("RUNNING")),
            json_response(200, _status("COMPLETE", rows=12)),
        ])
        api = _client(config, credentials, transport, live_authenticator)

        result = await api.wait_for("job-7", "/jobs/{job}/status", _is_done, _is_failed)

        assert result == {"state": "COMPLETE", "rows": 12}
        assert [r.path for r in transport.requests] == ["/jobs/job-7/status"] * 3

    @pytest.mark.asyncio
    async def test_failed_job_raises_api_failure(self, config, credentials, live_authenticator):
        """is_failed → ApiFailure without a status code."""
        transport = FakeTransport([
            json_response(200, _status("RUNNING")),
            json_response(200, _status("FAILED")),
        ])
        api = _client(config, credentials, transport, live_authenticator)

        with pytest.raises(ApiFailure) as excinfo:
            await api.wait_for("job-7", "/jobs/{job}/status", _is_done, _is_failed)

        assert excinfo.value.status_code is None
        assert "FAILED" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_uses_configured_attempt_budget(self, config, credentials, live_authenticator):
        """Without poll options the configured attempt budget applies."""
        transport = FakeTransport([], default=json_response(200, _status("RUNNING")))
        api = _client(config, credentials, transport, live_authenticator)

        with pytest.raises(PollTimeout) as excinfo:
            await api.wait_for("job-7", "/jobs/{job}/status", _is_done, _is_failed)

        assert excinfo.value.attempts == config.max_poll_attempts
        assert len(transport.requests) == config.max_poll_attempts

    @pytest.mark.asyncio
    async def test_transient_status_errors_are_retried(self, config, credentials, live_authenticator):
        """503 and 429 from the status route are retried."""
        transport = FakeTransport([
            json_response(503, b'{"message": "maintenance"}'),
            json_response(429, b""),
            json_response(200, _status("COMPLETE")),
        ])
        api = _client(config, credentials, transport, live_authenticator)
        result = await api.wait_for("job-7", "/jobs/{job}/status", _is_done, _is_failed)
        assert result["state"] == "COMPLETE"

    @pytest.mark.asyncio
    async def test_missing_job_fails_fast(self, config, credentials, live_authenticator):
        """A 404 from the status route ends the wait immediately."""
        transport = FakeTransport([json_response(404, b"no such job")])
        api = _client(config, credentials, transport, live_authenticator)

        with pytest.raises(ApiFailure) as excinfo:
            await api.wait_for("job-7", "/jobs/{job}/status", _is_done, _is_failed)

        assert excinfo.value.status_code == 404
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_poll_options_override_config(self, config, credentials, live_authenticator):
        """Explicit poll options override the configured budget."""
        transport = FakeTransport([], default=json_response(200, _status("RUNNING")))
        api = _client(config, credentials, transport, live_authenticator)

        with pytest.raises(PollTimeout):
            await api.wait_for(
                "job-7", "/jobs/{job}/status", _is_done, _is_failed, max_attempts=2,
            )

        assert len(transport.requests) == 2

    @pytest.mark.asyncio
    async def test_cancel_event(self, config, credentials, live_authenticator):
        """A set cancel event dispatches nothing."""
        cancel = asyncio.Event()
        cancel.set()
        transport = FakeTransport()
        api = _client(config, credentials, transport, live_authenticator)

        with pytest.raises(Cancelled):
            await api.wait_for(
                "job-7", "/jobs/{job}/status", _is_done, _is_failed, cancel_event=cancel,
            )

        assert transport.requests == []


class TestPoll:
    """Tests for ApiClient.poll with a caller-supplied check."""

    @pytest.mark.asyncio
    async def test_custom_check_fn(self, config, credentials, live_authenticator):
        """poll drives a caller-supplied check_fn."""
        api = _client(config, credentials, FakeTransport(), live_authenticator)
        results = iter([CheckResult.still_running(), CheckResult.done("ready")])

        async def check(job_handle):
            return next(results)

        assert await api.poll("upload-1", check) == "ready"


# ---------------------------------------------------------------------------
# Unreachable service
# ---------------------------------------------------------------------------

class TestUnreachableService:
    """Tests for a transport that raises outside the error model."""

    @pytest.mark.asyncio
    async def test_execute_raises_authentication_error(self, config, credentials):
        """A raw ConnectionError during the first exchange stays inside ApiError."""
        transport = FakeTransport([], default=ConnectionError("refused"))
        api = ApiClient(config, credentials, transport=transport)

        with pytest.raises(AuthenticationError) as excinfo:
            await api.execute(build_request("GET", "/user/"))

        assert isinstance(excinfo.value.__cause__, TransportError)
        assert not api.has_session

    @pytest.mark.asyncio
    async def test_login_raises_authentication_error(self, config, credentials):
        """login reports an unreachable auth endpoint as AuthenticationError."""
        api = ApiClient(config, credentials, transport=FakeTransport([ConnectionError("refused")]))
        with pytest.raises(AuthenticationError):
            await api.login()

    @pytest.mark.asyncio
    async def test_poll_retries_then_times_out(self, config, credentials):
        """Each attempt fails transiently and the loop ends in PollTimeout."""
        transport = FakeTransport([], default=ConnectionError("refused"))
        api = ApiClient(config, credentials, transport=transport)

        async def check(job_handle):
            await api.execute(build_request("GET", f"/jobs/{job_handle}"))
            return CheckResult.done("unreachable")

        with pytest.raises(PollTimeout) as excinfo:
            await api.poll("job-7", check, max_attempts=3)

        assert excinfo.value.attempts == 3
        assert isinstance(excinfo.value.last_error, AuthenticationError)
        assert [r.path for r in transport.requests] == [config.auth_path] * 3
