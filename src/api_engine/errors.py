"""
Unified error model for the request pipeline and the poll loop.

Every fallible engine operation either returns a value or raises exactly one
subclass of :class:`ApiError`:

  TransportError       - the request never produced a response
  AuthenticationError  - credentials or session token rejected (401/403)
  ApiFailure           - any other non-2xx response, or a job reported failed
  PollTimeout          - the poll loop exhausted its attempt or time budget
  Cancelled            - the caller cancelled a poll loop
"""

from __future__ import annotations

import json

from .config import AUTHENTICATION_STATUS_CODES, RETRYABLE_STATUS_CODES
from .models import Response

# Keys searched, in order, for a server-supplied error message
MESSAGE_KEYS: tuple[str, ...] = ("message", "error", "detail", "errorMessage")


class ApiError(Exception):
    """Base class of every error raised by the engine."""

    kind: str = "api_error"


class TransportError(ApiError):
    """The transport failed before a response was received."""

    kind = "transport"

    def __init__(self, cause: BaseException | str):
        self.cause = cause
        super().__init__(f"transport error: {cause}")


class AuthenticationError(ApiError):
    """The credentials or the session token were rejected."""

    kind = "authentication"

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        self.message = message
        prefix = f"authentication failed ({status_code})" if status_code else "authentication failed"
        super().__init__(f"{prefix}: {message}")


class ApiFailure(ApiError):
    """The server rejected the request or reported a job as failed."""

    kind = "api_failure"

    def __init__(self, status_code: int | None, message: str = ""):
        self.status_code = status_code
        self.message = message
        if status_code is None:
            super().__init__(f"api error: {message}")
        else:
            super().__init__(f"api error: {status_code} {message}".rstrip())

    def is_retryable(self, method: str) -> bool:
        """
        True when the status is transient for ``method``.

        429 and 503 are transient for every method; 502 and 504 only for
        idempotent methods.
        """
        return method.upper() in RETRYABLE_STATUS_CODES.get(self.status_code, frozenset())


class PollTimeout(ApiError):
    """
    A poll loop gave up waiting.

    Attributes:
        attempts: Number of checks that were dispatched.
        elapsed: Wall-clock seconds spent in the loop.
        budget: ``'attempts'`` or ``'deadline'``, whichever limit was hit.
        last_error: The last transient error observed, if any.
    """

    kind = "timeout"

    def __init__(
        self,
        attempts: int,
        elapsed: float,
        budget: str,
        last_error: ApiError | None = None,
    ):
        self.attempts = attempts
        self.elapsed = elapsed
        self.budget = budget
        self.last_error = last_error
        detail = f"; last error: {last_error}" if last_error else ""
        super().__init__(
            f"gave up waiting after {attempts} attempts in {elapsed:.1f}s "
            f"({budget} budget exceeded){detail}"
        )


class Cancelled(ApiError):
    """The caller cancelled the operation between iterations."""

    kind = "cancelled"

    def __init__(self, attempts: int = 0):
        self.attempts = attempts
        super().__init__(f"cancelled after {attempts} attempts")


# Alias matching the taxonomy name used in caller-facing documentation
Timeout = PollTimeout


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def extract_message(response: Response) -> str:
    """
    Return the server-supplied error message of a response.

    Looks for a known message key in a JSON object body; falls back to the
    raw body text, and to an empty string for an empty body.
    """
    text = response.text.strip()
    if not text:
        return ""
    try:
        payload = json.loads(text)
    except ValueError:
        return text

    if isinstance(payload, dict):
        for key in MESSAGE_KEYS:
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    return text


def classify_response(response: Response) -> ApiError | None:
    """
    Classify a transport response into the error model.

    Args:
        response: Response produced by the transport.

    Returns:
        ``None`` for a successful (non-4xx/5xx) response, otherwise the
        :class:`AuthenticationError` or :class:`ApiFailure` describing it.
        The error is returned, not raised, so callers decide whether to retry.
    """
    status = response.status_code
    if status < 400:
        return None
    if status in AUTHENTICATION_STATUS_CODES:
        return AuthenticationError(extract_message(response) or "unauthorized", status)
    return ApiFailure(status, extract_message(response))

