"""
Request construction and authenticated dispatch.

Design notes:
- Templates passed to :meth:`RequestPipeline.execute` carry no
  authentication headers; the pipeline attaches the current session token
  to a copy of the template for each dispatch.
- A 401/403 answer is retried exactly once, after forcing a session refresh.
  A second rejection is surfaced unchanged.
- No other status is retried here; transient 5xx handling belongs to the
  poll loop or the caller.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Iterable, Mapping

from .config import (
    AUTHORIZATION_HEADER,
    CONTENT_TYPE_HEADER,
    JSON_CONTENT_TYPE,
    SESSION_ID_HEADER,
)
from .errors import ApiError, AuthenticationError, TransportError, classify_response
from .models import Request, Response, Session
from .parser import decode_json
from .session import SessionManager
from .transport import Transport

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request construction
# ---------------------------------------------------------------------------

def route(template: str, **ids: Any) -> str:
    """
    Fill a route template with identifiers.

    Example::

        route("/datasets/{id}/packages", id="N:dataset:1234")
    """
    return template.format(**{name: str(value) for name, value in ids.items()})


def build_request(
    method: str,
    path: str,
    params: Mapping[str, Any] | Iterable[tuple[str, Any]] | None = None,
    payload: Any = None,
    headers: Mapping[str, str] | None = None,
) -> Request:
    """
    Construct an unauthenticated request template.

    Args:
        method: HTTP method, any case.
        path: Route relative to the base URL.
        params: Query parameters as a mapping or (name, value) pairs.
            Boolean values are sent as ``'true'``/``'false'``.
        payload: JSON-serializable body; ``None`` sends no body.
        headers: Extra headers.

    Returns:
        A :class:`Request` with ``Content-Type: application/json`` set when a
        payload is present.
    """
    pairs = params.items() if isinstance(params, Mapping) else (params or ())
    query = tuple(
        (str(name), _param_value(value)) for name, value in pairs if value is not None
    )

    all_headers = dict(headers or {})
    body = None
    if payload is not None:
        body = json.dumps(payload).encode("utf-8")
        all_headers.setdefault(CONTENT_TYPE_HEADER, JSON_CONTENT_TYPE)

    return Request(method=method, path=path, headers=all_headers, body=body, params=query)


def _param_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def authenticate_request(request: Request, session: Session) -> Request:
    """Return a copy of ``request`` carrying ``session``'s token."""
    return request.with_headers({
        AUTHORIZATION_HEADER: f"Bearer {session.token}",
        SESSION_ID_HEADER: session.token,
    })


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class RequestPipeline:
    """
    Authenticate, dispatch, and classify single requests.

    Args:
        transport: Transport collaborator used for every dispatch.
        sessions: Session manager supplying valid tokens.
    """

    def __init__(self, transport: Transport, sessions: SessionManager):
        self._transport = transport
        self._sessions = sessions

    async def execute(self, template: Request) -> Response:
        """
        Execute ``template`` with the current session token.

        Returns:
            The successful (non-4xx/5xx) response.

        Raises:
            AuthenticationError: No session could be obtained, or the request
                was rejected twice.
            ApiFailure: The server answered with any other error status.
            TransportError: The transport could not produce a response.
        """
        session = await self._sessions.get_valid_session()
        try:
            return await self._dispatch(template, session)
        except AuthenticationError as first:
            logger.warning(
                "%s %s rejected (%s); refreshing session and retrying once",
                template.method, template.path, first.status_code,
            )
            session = await self._sessions.refresh_after_rejection(session)
            return await self._dispatch(template, session)

    async def execute_json(self, template: Request) -> Any:
        """Execute ``template`` and decode the response body as JSON."""
        return decode_json(await self.execute(template))

    async def _dispatch(self, template: Request, session: Session) -> Response:
        request = authenticate_request(template, session)

        start = time.monotonic()
        try:
            response = await self._transport.send(request)
        except ApiError:
            raise
        except Exception as exc:
            raise TransportError(exc) from exc
        latency = round(time.monotonic() - start, 3)

        logger.debug(
            "%s %s -> %s (%.3fs)",
            request.method, request.path, response.status_code, latency,
        )

        error = classify_response(response)
        if error is not None:
            raise error
        return response
