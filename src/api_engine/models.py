"""
Value types passed between the engine components.

Credentials and Session belong to the session manager; Request and Response
are the unit of work of the request pipeline and the transport.  All of them
are immutable: a refreshed session or an authenticated request is a new
object, never an edited one.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from config.api_config import ENV_VAR_API_KEY, ENV_VAR_API_SECRET


def utc_now() -> datetime:
    """Timezone-aware current time; the default clock of the session manager."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Credentials:
    """API key/secret pair supplied once at client construction."""

    api_key: str
    api_secret: str = field(repr=False)

    def __post_init__(self) -> None:
        if not self.api_key or not self.api_secret:
            raise ValueError("Both api_key and api_secret are required.")

    @classmethod
    def from_env(cls) -> Credentials:
        """
        Read the key/secret pair from ``API_ENGINE_API_KEY`` and
        ``API_ENGINE_API_SECRET``.

        Raises:
            ValueError: If either variable is unset or empty.
        """
        values = {}
        for field_name, env_var in (
            ("api_key", ENV_VAR_API_KEY),
            ("api_secret", ENV_VAR_API_SECRET),
        ):
            value = os.getenv(env_var)
            if not value:
                raise ValueError(
                    f"API credentials not found. Set the '{env_var}' environment "
                    f"variable before creating a client."
                )
            values[field_name] = value
        return cls(**values)


@dataclass(frozen=True)
class Session:
    """
    A time-limited session token.

    Attributes:
        token: Opaque token attached to every authenticated request.
        expires_at: Timezone-aware instant after which the token is invalid.
        organization: Organization the session is scoped to, if the
            authentication endpoint reported one.
    """

    token: str = field(repr=False)
    expires_at: datetime
    organization: str | None = None

    def is_valid(self, now: datetime | None = None, leeway: float = 0.0) -> bool:
        """True when ``now + leeway`` is still before ``expires_at``."""
        now = now or utc_now()
        return now + timedelta(seconds=leeway) < self.expires_at

    def seconds_remaining(self, now: datetime | None = None) -> float:
        now = now or utc_now()
        return (self.expires_at - now).total_seconds()


@dataclass(frozen=True)
class Request:
    """
    A single outbound call.

    ``path`` is relative to the configured base URL.  ``params`` holds query
    parameters as ordered (name, value) pairs.
    """

    method: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes | None = None
    params: tuple[tuple[str, str], ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "headers", dict(self.headers))

    def with_headers(self, extra: Mapping[str, str]) -> Request:
        """Return a copy with ``extra`` merged over the existing headers."""
        return replace(self, headers={**self.headers, **extra})


@dataclass(frozen=True)
class Response:
    """Raw transport result: status code, headers, and body bytes."""

    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """
        Decode the body as JSON.

        An empty body decodes to ``None`` rather than raising, so endpoints
        that answer with no content can share the JSON code path.

        Raises:
            ValueError: The body is not valid JSON.
        """
        if not self.body.strip():
            return None
        return json.loads(self.body)
