"""
Client configuration, request defaults, and retry classification tables.

All constants used across the engine modules are centralized here so that
config is separated from logic.  Environment endpoints live in the top-level
``config/api_config.py`` package and are imported from there.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from config.api_config import (
    AUTH_PATH,
    DEFAULT_ENVIRONMENT,
    ENV_VAR_BASE_URL,
    ENV_VAR_ENVIRONMENT,
    ENV_VAR_MAX_POLL_ATTEMPTS,
    ENV_VAR_POLL_DEADLINE,
    ENV_VAR_POLL_INTERVAL,
    ENV_VAR_TIMEOUT,
    ENVIRONMENT_ALIASES,
    ENVIRONMENTS,
)

# ---------------------------------------------------------------------------
# Request defaults
# ---------------------------------------------------------------------------

REQUEST_TIMEOUT_SECONDS: float = 60.0   # per-dispatch transport deadline
POLL_INTERVAL_SECONDS: float = 2.0      # default wait between poll attempts
MAX_POLL_ATTEMPTS: int = 20             # default overall poll budget
SESSION_LEEWAY_SECONDS: float = 30.0    # refresh this long before expiry
USER_AGENT: str = "api-engine/0.1"

# ---------------------------------------------------------------------------
# Header names
# ---------------------------------------------------------------------------

AUTHORIZATION_HEADER: str = "Authorization"
SESSION_ID_HEADER: str = "X-SESSION-ID"
CONTENT_TYPE_HEADER: str = "Content-Type"
JSON_CONTENT_TYPE: str = "application/json"

# ---------------------------------------------------------------------------
# Status classification
# ---------------------------------------------------------------------------

ALL_METHODS: frozenset[str] = frozenset({
    "GET", "POST", "PUT", "DELETE", "HEAD", "OPTIONS", "CONNECT", "PATCH", "TRACE",
})
NON_IDEMPOTENT_METHODS: frozenset[str] = frozenset({"POST", "DELETE"})
IDEMPOTENT_METHODS: frozenset[str] = ALL_METHODS - NON_IDEMPOTENT_METHODS

# Status codes that cannot be resolved by the server side alone; they are
# classified as authentication failures.
AUTHENTICATION_STATUS_CODES: frozenset[int] = frozenset({401, 403})

# Status code → methods for which the failure is considered transient.
# Only the poll loop consults this table; ``execute`` never retries on it.
RETRYABLE_STATUS_CODES: dict[int, frozenset[str]] = {
    429: ALL_METHODS,          # too many requests
    503: ALL_METHODS,          # service unavailable
    502: IDEMPOTENT_METHODS,   # bad gateway
    504: IDEMPOTENT_METHODS,   # gateway timeout
}


# ---------------------------------------------------------------------------
# Environment resolution
# ---------------------------------------------------------------------------

def parse_environment(name: str) -> str:
    """
    Normalize an environment name to its canonical form.

    Args:
        name: Environment name or alias (``'dev'``, ``'prod'``, ...), any case.

    Returns:
        One of the keys of ``ENVIRONMENTS``.

    Raises:
        ValueError: If the name is not a recognized environment or alias.
    """
    canonical = ENVIRONMENT_ALIASES.get(name.strip().lower())
    if canonical is None:
        raise ValueError(f"invalid environment string: {name!r}")
    return canonical


def environment_url(name: str) -> str:
    """
    Return the base URL for an environment.

    The ``local`` environment has no fixed URL; it is read from the variable
    named by its ``url_env`` entry.

    Raises:
        ValueError: Unknown environment, or the local URL variable is unset.
    """
    env = ENVIRONMENTS[parse_environment(name)]
    if env["url"]:
        return env["url"]

    url = os.getenv(env["url_env"])
    if not url:
        raise ValueError(
            f"Base URL not found. Set the '{env['url_env']}' environment "
            f"variable to use the '{name}' environment."
        )
    return url


# ---------------------------------------------------------------------------
# Client configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ClientConfig:
    """
    Options recognized at client construction.

    Attributes:
        base_url: Target host, e.g. ``https://api.pennsieve.io``.
        timeout: Per-dispatch deadline in seconds, enforced by the transport.
        poll_interval: Default wait between poll attempts, in seconds.
        max_poll_attempts: Default attempt budget for the poll loop
            (``None`` to rely on ``poll_deadline`` alone).
        poll_deadline: Default wall-clock budget for the poll loop, in
            seconds (``None`` for no deadline).
        auth_path: Route of the key/secret exchange endpoint.
        session_leeway: Seconds before expiry at which a session is treated
            as expired.
        user_agent: Value of the ``User-Agent`` header.
        default_headers: Extra headers attached to every request.
    """

    base_url: str = field(default_factory=lambda: environment_url(DEFAULT_ENVIRONMENT))
    timeout: float = REQUEST_TIMEOUT_SECONDS
    poll_interval: float = POLL_INTERVAL_SECONDS
    max_poll_attempts: int | None = MAX_POLL_ATTEMPTS
    poll_deadline: float | None = None
    auth_path: str = AUTH_PATH
    session_leeway: float = SESSION_LEEWAY_SECONDS
    user_agent: str = USER_AGENT
    default_headers: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ValueError("base_url must not be empty")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")
        if self.poll_interval < 0:
            raise ValueError(f"poll_interval must be >= 0, got {self.poll_interval}")
        if self.max_poll_attempts is None and self.poll_deadline is None:
            raise ValueError("at least one of max_poll_attempts / poll_deadline is required")
        if self.max_poll_attempts is not None and self.max_poll_attempts < 1:
            raise ValueError(f"max_poll_attempts must be >= 1, got {self.max_poll_attempts}")

    @classmethod
    def for_environment(cls, name: str, **overrides) -> ClientConfig:
        """Build a config whose ``base_url`` comes from a named environment."""
        return cls(base_url=environment_url(name), **overrides)

    @classmethod
    def from_env(cls) -> ClientConfig:
        """
        Build a config from ``API_ENGINE_*`` environment variables.

        ``API_ENGINE_BASE_URL`` wins over ``API_ENGINE_ENV``; unset numeric
        variables fall back to the module defaults.
        """
        base_url = os.getenv(ENV_VAR_BASE_URL) or environment_url(
            os.getenv(ENV_VAR_ENVIRONMENT, DEFAULT_ENVIRONMENT)
        )
        deadline = os.getenv(ENV_VAR_POLL_DEADLINE)
        return cls(
            base_url=base_url,
            timeout=float(os.getenv(ENV_VAR_TIMEOUT, REQUEST_TIMEOUT_SECONDS)),
            poll_interval=float(os.getenv(ENV_VAR_POLL_INTERVAL, POLL_INTERVAL_SECONDS)),
            max_poll_attempts=int(os.getenv(ENV_VAR_MAX_POLL_ATTEMPTS, MAX_POLL_ATTEMPTS)),
            poll_deadline=float(deadline) if deadline else None,
        )

    def url_for(self, path: str) -> str:
        """Join ``base_url`` and a route, tolerating missing/extra slashes."""
        if not path.startswith("/"):
            path = "/" + path
        return self.base_url.rstrip("/") + path
