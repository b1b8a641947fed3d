"""
Poll-until-done loop for server-side long-running jobs.

The loop is an explicit state machine over :class:`PollState`:

    PENDING → PENDING | SUCCEEDED | FAILED | TIMED_OUT | CANCELLED

Each iteration checks for cancellation, checks the attempt/time budget, then
awaits the caller's ``check_fn``.  The check reports one of three outcomes
(see :class:`CheckResult`): still running, done with a value, or failed on
the server side.

Errors raised *by* the check are split in two:
  - transient (transport failure, authentication failure, or a retryable
    status such as 429/503): the attempt is counted and the loop waits and
    tries again; if the budget runs out first, :class:`PollTimeout` is raised
    with the last transient error attached.
  - anything else: propagated immediately.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, TypeVar, Union

from .errors import (
    ApiError,
    ApiFailure,
    AuthenticationError,
    Cancelled,
    PollTimeout,
    TransportError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Loop state
# ---------------------------------------------------------------------------

class PollStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not PollStatus.PENDING


@dataclass(frozen=True)
class CheckResult(Generic[T]):
    """
    Outcome of one status check, built with the class constructors::

        CheckResult.still_running()
        CheckResult.done(value)
        CheckResult.failed("conversion error", status_code=None)
    """

    outcome: str
    value: T | None = None
    message: str = ""
    status_code: int | None = None

    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"

    @classmethod
    def still_running(cls, value: Any = None) -> CheckResult:
        return cls(cls.RUNNING, value=value)

    @classmethod
    def done(cls, value: T) -> CheckResult[T]:
        return cls(cls.DONE, value=value)

    @classmethod
    def failed(cls, message: str, status_code: int | None = None) -> CheckResult:
        return cls(cls.FAILED, message=message, status_code=status_code)


@dataclass
class PollState:
    """Mutable state of a single poll invocation; never shared."""

    job_handle: Any
    attempt: int = 0
    elapsed: float = 0.0
    last_result: Any = None
    last_error: ApiError | None = None
    status: PollStatus = PollStatus.PENDING


CheckFn = Callable[[Any], Awaitable[CheckResult]]
Interval = Union[float, Callable[[int], float]]


# ---------------------------------------------------------------------------
# Backoff and retry classification
# ---------------------------------------------------------------------------

def retry_delay(attempt: int, base: float = 0.5) -> float:
    """
    Linear backoff: ``base`` seconds times the attempt number.

    Pass as the ``interval`` of :func:`poll` to wait longer after each
    attempt (0.5 s, 1.0 s, 1.5 s, ...).

    Args:
        attempt: 1-based number of the attempt that just finished.
        base: Seconds added per attempt.
    """
    return base * attempt


def should_retry(error: ApiError, method: str = "GET") -> bool:
    """
    Decide whether an error raised by a status check is transient.

    Args:
        error: Error raised by the check.
        method: HTTP method of the status request, for the idempotency rule
            on 502/504.

    Returns:
        ``True`` for transport and authentication failures and for
        retryable statuses; ``False`` otherwise.
    """
    if isinstance(error, (TransportError, AuthenticationError)):
        return True
    if isinstance(error, ApiFailure):
        return error.is_retryable(method)
    return False


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------

async def poll(
    job_handle: Any,
    check_fn: CheckFn,
    interval: Interval = 0.0,
    max_attempts: int | None = None,
    deadline: float | None = None,
    cancel_event: asyncio.Event | None = None,
    on_attempt: Callable[[PollState], None] | None = None,
    method: str = "GET",
    clock: Callable[[], float] = time.monotonic,
) -> Any:
    """
    Repeatedly check a job until it reaches a terminal state.

    Args:
        job_handle: Opaque job identifier handed to ``check_fn``.
        check_fn: Coroutine function ``check_fn(job_handle) -> CheckResult``;
            normally issues a status request through the request pipeline.
        interval: Seconds between attempts, or a callable mapping the
            finished attempt number to seconds (e.g. :func:`retry_delay`).
        max_attempts: Maximum number of checks dispatched.
        deadline: Maximum wall-clock seconds spent in the loop.
        cancel_event: Set by the caller to stop the loop.  Observed before
            each dispatch and during waits; a check already in flight is
            allowed to finish.
        on_attempt: Called with the loop state after every attempt.
        method: HTTP method of the status request (see :func:`should_retry`).
        clock: Monotonic clock, injectable for tests.

    Returns:
        The value of the first ``CheckResult.done(value)``.

    Raises:
        ApiFailure: The check reported a server-side failure, or raised a
            non-retryable ApiFailure.
        PollTimeout: The attempt or time budget ran out.
        Cancelled: ``cancel_event`` was set.
        ValueError: Neither ``max_attempts`` nor ``deadline`` was given.
    """
    if max_attempts is None and deadline is None:
        raise ValueError("poll requires max_attempts or deadline to bound the loop")
    if max_attempts is not None and max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    state = PollState(job_handle=job_handle)
    started = clock()

    def exhausted() -> str | None:
        state.elapsed = clock() - started
        if max_attempts is not None and state.attempt >= max_attempts:
            return "attempts"
        if deadline is not None and state.elapsed >= deadline:
            return "deadline"
        return None

    def give_up(budget: str) -> PollTimeout:
        state.status = PollStatus.TIMED_OUT
        logger.warning(
            "Polling %s timed out after %d attempts (%s budget)",
            job_handle, state.attempt, budget,
        )
        error = PollTimeout(state.attempt, state.elapsed, budget, state.last_error)
        error.__cause__ = state.last_error
        return error

    while True:
        if cancel_event is not None and cancel_event.is_set():
            state.status = PollStatus.CANCELLED
            raise Cancelled(state.attempt)

        budget = exhausted()
        if budget:
            raise give_up(budget)

        state.attempt += 1
        logger.debug("Polling %s: attempt %d", job_handle, state.attempt)

        try:
            result = await check_fn(job_handle)
        except ApiError as exc:
            if not should_retry(exc, method):
                state.status = PollStatus.FAILED
                raise
            state.last_error = exc
            logger.warning(
                "Polling %s: attempt %d failed [%s]: %s",
                job_handle, state.attempt, exc.kind, exc,
            )
        else:
            state.last_result = result.value
            if result.outcome == CheckResult.DONE:
                state.status = PollStatus.SUCCEEDED
            elif result.outcome == CheckResult.FAILED:
                state.status = PollStatus.FAILED

        _notify(on_attempt, state)

        if state.status.is_terminal:
            if state.status is PollStatus.SUCCEEDED:
                return result.value
            raise ApiFailure(
                result.status_code,
                f"job {job_handle} failed: {result.message}",
            )

        budget = exhausted()
        if budget:
            raise give_up(budget)

        delay = interval(state.attempt) if callable(interval) else interval
        if deadline is not None:
            delay = min(delay, max(deadline - state.elapsed, 0.0))
        await _wait(delay, cancel_event)


def _notify(on_attempt: Callable[[PollState], None] | None, state: PollState) -> None:
    if on_attempt is not None:
        on_attempt(state)


async def _wait(delay: float, cancel_event: asyncio.Event | None) -> None:
    """Sleep ``delay`` seconds, returning early if ``cancel_event`` is set."""
    if cancel_event is None:
        await asyncio.sleep(delay)
        return
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        pass  # interval elapsed without cancellation
