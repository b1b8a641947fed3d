"""
Shared pytest fixtures for the engine tests.

FakeTransport replays a scripted list of outcomes (Response objects or
exceptions) and records every request it receives, so tests can assert both
on results and on exactly how many dispatches happened.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from src.api_engine.config import ClientConfig
from src.api_engine.models import Credentials, Request, Response, Session

# Fixed reference instant for every clock-dependent test
NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeTransport:
    """Transport that returns (or raises) scripted outcomes in order."""

    def __init__(self, outcomes=None, default=None):
        self.outcomes = list(outcomes or [])
        self.default = default
        self.requests: list[Request] = []
        self.closed = False

    async def send(self, request: Request) -> Response:
        self.requests.append(request)
        await asyncio.sleep(0)
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if outcome is None:
            raise AssertionError(f"unexpected request: {request.method} {request.path}")
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def aclose(self) -> None:
        self.closed = True


class FakeAuthenticator:
    """Authenticator issuing numbered tokens; counts exchanges."""

    def __init__(self, lifetime: timedelta = timedelta(hours=1), now=NOW, fail_with=None):
        self.lifetime = lifetime
        self.now = now
        self.fail_with = fail_with
        self.calls = 0

    async def __call__(self, credentials: Credentials) -> Session:
        self.calls += 1
        # Yield a few times so concurrent callers can pile up behind us
        for _ in range(3):
            await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with
        return Session(token=f"token-{self.calls}", expires_at=self.now + self.lifetime)


class Clock:
    """Settable clock for session expiry tests."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


def json_response(status_code: int = 200, body: bytes = b"{}") -> Response:
    return Response(status_code=status_code, headers={"Content-Type": "application/json"}, body=body)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def credentials():
    return Credentials(api_key="key-123", api_secret="secret-456")


@pytest.fixture
def config():
    return ClientConfig(
        base_url="https://api.example.test",
        timeout=5.0,
        poll_interval=0.0,
        max_poll_attempts=5,
    )


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def authenticator():
    return FakeAuthenticator()
