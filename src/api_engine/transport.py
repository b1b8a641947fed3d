"""
Transport collaborator: the seam between the engine and an HTTP library.

The engine only needs ``await transport.send(request) -> Response``.  The
default implementation runs a blocking ``requests.Session`` in a worker
thread so a dispatch suspends the calling coroutine without blocking the
event loop.  Connection pooling and TLS are left to ``requests``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable

import requests

from .config import REQUEST_TIMEOUT_SECONDS, ClientConfig
from .errors import TransportError
from .models import Request, Response

logger = logging.getLogger(__name__)


@runtime_checkable
class Transport(Protocol):
    """Consumed interface of the request pipeline and the session manager."""

    async def send(self, request: Request) -> Response:
        """Dispatch one request; raise on failure to obtain a response."""
        ...

    async def aclose(self) -> None:
        ...


class RequestsTransport:
    """
    :class:`Transport` backed by a shared ``requests.Session``.

    Args:
        config: Supplies ``base_url``, ``timeout``, the user agent and any
            default headers.
        session: Optional pre-built ``requests.Session`` (e.g. with adapters
            mounted); one is created when omitted.
    """

    def __init__(self, config: ClientConfig, session: requests.Session | None = None):
        self._config = config
        self._session = session or requests.Session()
        self._session.headers["User-Agent"] = config.user_agent
        self._session.headers.update(config.default_headers)

    async def send(self, request: Request) -> Response:
        """
        Dispatch ``request`` and return the raw response.

        Raises:
            TransportError: Connection failure, transport timeout, or any
                other ``requests`` exception.  HTTP error statuses are *not*
                raised here; classification is the pipeline's job.
        """
        try:
            return await asyncio.to_thread(self._send_blocking, request)
        except requests.RequestException as exc:
            logger.debug("transport failure on %s %s: %s", request.method, request.path, exc)
            raise TransportError(exc) from exc

    def _send_blocking(self, request: Request) -> Response:
        raw = self._session.request(
            request.method,
            self._config.url_for(request.path),
            params=list(request.params) or None,
            headers=dict(request.headers),
            data=request.body,
            timeout=self._config.timeout or REQUEST_TIMEOUT_SECONDS,
        )
        return Response(
            status_code=raw.status_code,
            headers=dict(raw.headers),
            body=raw.content,
        )

    async def aclose(self) -> None:
        self._session.close()
