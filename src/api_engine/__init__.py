"""
src/api_engine: asynchronous request/retry engine for API clients.

Module layout
-------------
config.py     ClientConfig, request defaults, header names, retryable statuses
models.py     Credentials, Session, Request, Response value types
errors.py     ApiError taxonomy and response classification
parser.py     JSON decoding, session payload and JWT claim parsing
transport.py  Transport protocol and the requests-backed default transport
session.py    credential exchange and coalesced session refresh
executor.py   request construction and authenticated dispatch
retry.py      poll-until-done loop, backoff, transient-error rules
client.py     ApiClient facade wiring the above together

Public interface
----------------
Build a client and call an endpoint:
    async with ApiClient(ClientConfig.from_env(), credentials) as api:
        await api.get("/user/")

Execute a prepared request:
    await api.execute(build_request("POST", "/jobs", payload={...}))

Wait for a server-side job:
    await api.poll(job_id, check_fn, max_attempts=10)
    await api.wait_for(job_id, "/jobs/{job}", is_done=..., is_failed=...)
"""

from .client import ApiClient
from .config import ClientConfig, environment_url, parse_environment
from .errors import (
    ApiError,
    ApiFailure,
    AuthenticationError,
    Cancelled,
    PollTimeout,
    Timeout,
    TransportError,
    classify_response,
)
from .executor import RequestPipeline, build_request, route
from .models import Credentials, Request, Response, Session
from .retry import CheckResult, PollState, PollStatus, poll, retry_delay, should_retry
from .session import SessionManager, TokenExchange
from .transport import RequestsTransport, Transport

__all__ = [
    # Client
    "ApiClient",
    "ClientConfig",
    "environment_url",
    "parse_environment",
    # Value types
    "Credentials",
    "Session",
    "Request",
    "Response",
    # Errors
    "ApiError",
    "TransportError",
    "AuthenticationError",
    "ApiFailure",
    "PollTimeout",
    "Timeout",
    "Cancelled",
    "classify_response",
    # Components
    "Transport",
    "RequestsTransport",
    "SessionManager",
    "TokenExchange",
    "RequestPipeline",
    "build_request",
    "route",
    # Polling
    "poll",
    "CheckResult",
    "PollState",
    "PollStatus",
    "retry_delay",
    "should_retry",
]
