"""
Caller-facing client: wires configuration, transport, session manager,
request pipeline, and poll loop together.

Typical use::

    async with ApiClient(ClientConfig.for_environment("prod"), credentials) as api:
        job = await api.post("/jobs", payload={"kind": "import"})
        result = await api.wait_for(
            job["id"],
            status_path="/jobs/{job}/status",
            is_done=lambda body: body["state"] == "COMPLETE",
            is_failed=lambda body: body["state"] == "FAILED",
        )
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from .config import ClientConfig
from .errors import ApiFailure
from .executor import RequestPipeline, build_request, route
from .models import Credentials, Request, Response, Session
from .parser import decode_json
from .retry import CheckFn, CheckResult, Interval, PollState, poll
from .session import Authenticator, SessionManager, TokenExchange
from .transport import RequestsTransport, Transport

logger = logging.getLogger(__name__)

Params = Optional[Union[Mapping[str, Any], Iterable[tuple[str, Any]]]]


class ApiClient:
    """
    Asynchronous API client.

    Args:
        config: Client configuration.
        credentials: API key/secret pair exchanged for session tokens.
        transport: Transport collaborator; defaults to
            :class:`RequestsTransport`.
        authenticator: Credential exchange; defaults to
            :class:`TokenExchange` against ``config.auth_path``.
    """

    def __init__(
        self,
        config: ClientConfig,
        credentials: Credentials,
        transport: Transport | None = None,
        authenticator: Authenticator | None = None,
    ):
        self.config = config
        self.transport = transport or RequestsTransport(config)
        self.sessions = SessionManager(
            credentials,
            authenticator or TokenExchange(self.transport, config),
            leeway=config.session_leeway,
        )
        self.pipeline = RequestPipeline(self.transport, self.sessions)

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.transport.aclose()

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def login(self) -> Session:
        """Authenticate now, replacing any cached session."""
        return await self.sessions.get_valid_session(force_refresh=True)

    async def get_valid_session(self) -> Session:
        return await self.sessions.get_valid_session()

    @property
    def has_session(self) -> bool:
        return self.sessions.has_session

    @property
    def current_organization(self) -> str | None:
        session = self.sessions.session
        return session.organization if session else None

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def execute(self, template: Request) -> Response:
        return await self.pipeline.execute(template)

    async def request(
        self,
        method: str,
        path: str,
        params: Params = None,
        payload: Any = None,
    ) -> Any:
        """Build, execute, and JSON-decode one request."""
        template = build_request(method, path, params=params, payload=payload)
        return await self.pipeline.execute_json(template)

    async def get(self, path: str, params: Params = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, params: Params = None, payload: Any = None) -> Any:
        return await self.request("POST", path, params=params, payload=payload)

    async def put(self, path: str, params: Params = None, payload: Any = None) -> Any:
        return await self.request("PUT", path, params=params, payload=payload)

    async def delete(self, path: str, params: Params = None, payload: Any = None) -> Any:
        return await self.request("DELETE", path, params=params, payload=payload)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def poll(
        self,
        job_handle: Any,
        check_fn: CheckFn,
        interval: Interval | None = None,
        max_attempts: int | None = None,
        deadline: float | None = None,
        cancel_event: asyncio.Event | None = None,
        on_attempt: Callable[[PollState], None] | None = None,
    ) -> Any:
        """
        Poll ``check_fn`` until the job finishes.

        Budget arguments left as ``None`` fall back to the client
        configuration; when both are omitted, both configured budgets apply.
        """
        if max_attempts is None and deadline is None:
            max_attempts = self.config.max_poll_attempts
            deadline = self.config.poll_deadline

        return await poll(
            job_handle,
            check_fn,
            interval=self.config.poll_interval if interval is None else interval,
            max_attempts=max_attempts,
            deadline=deadline,
            cancel_event=cancel_event,
            on_attempt=on_attempt,
        )

    def status_check(
        self,
        status_path: str,
        is_done: Callable[[Any], bool],
        is_failed: Callable[[Any], bool] | None = None,
        failure_message: Callable[[Any], str] | None = None,
    ) -> CheckFn:
        """
        Build a ``check_fn`` that GETs a status route and classifies its body.

        Args:
            status_path: Route template; ``{job}`` is replaced with the job
                handle.
            is_done: Predicate on the decoded body; the body is the result.
            is_failed: Predicate on the decoded body signalling a
                server-side job failure.
            failure_message: Extracts a failure message from the body.
        """

        async def check(job_handle: Any) -> CheckResult:
            body = decode_json(
                await self.pipeline.execute(build_request("GET", route(status_path, job=job_handle)))
            )
            if is_failed is not None and is_failed(body):
                message = failure_message(body) if failure_message else str(body)
                return CheckResult.failed(message)
            if is_done(body):
                return CheckResult.done(body)
            return CheckResult.still_running(body)

        return check

    async def wait_for(
        self,
        job_handle: Any,
        status_path: str,
        is_done: Callable[[Any], bool],
        is_failed: Callable[[Any], bool] | None = None,
        **poll_options: Any,
    ) -> Any:
        """
        Poll a status route until ``is_done`` or ``is_failed`` holds.

        Returns:
            The decoded body of the status response that satisfied ``is_done``.

        Raises:
            ApiFailure: ``is_failed`` held, or the status route answered with a
                non-retryable error.
            PollTimeout, Cancelled: See :meth:`poll`.
        """
        check = self.status_check(status_path, is_done, is_failed)
        try:
            return await self.poll(job_handle, check, **poll_options)
        except ApiFailure as exc:
            logger.warning("Job %s did not complete: %s", job_handle, exc)
            raise
