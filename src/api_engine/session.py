"""
Credential exchange and session-token lifecycle.

The session cache is the one piece of mutable state shared by every request
issued through a client.  Rules:

- A cached session is handed out while ``now + leeway < expires_at``.
- At most one key/secret exchange is in flight per manager; callers that find
  the session expired while an exchange is running await that exchange's
  result instead of starting their own.
- A successful exchange replaces the cached session in one assignment.  A
  failed exchange leaves the previous session in place and raises
  :class:`AuthenticationError` to every caller waiting on it.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Awaitable, Callable

from config.api_config import AUTH_REQUEST_KEYS

from .config import CONTENT_TYPE_HEADER, JSON_CONTENT_TYPE, SESSION_LEEWAY_SECONDS, ClientConfig
from .errors import ApiError, AuthenticationError, TransportError, classify_response
from .models import Credentials, Request, Session, utc_now
from .parser import decode_json, parse_session
from .transport import Transport

logger = logging.getLogger(__name__)

# Exchanges credentials for a session; raises on failure.
Authenticator = Callable[[Credentials], Awaitable[Session]]


class TokenExchange:
    """
    Default :data:`Authenticator`: POST the key/secret pair to the
    authentication endpoint and decode the session from its response.

    Args:
        transport: Transport used for the (unauthenticated) exchange call.
        config: Supplies ``auth_path``.
        clock: Reference time for relative token lifetimes.
    """

    def __init__(
        self,
        transport: Transport,
        config: ClientConfig,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._transport = transport
        self._config = config
        self._clock = clock

    async def __call__(self, credentials: Credentials) -> Session:
        body = json.dumps({
            AUTH_REQUEST_KEYS["api_key"]: credentials.api_key,
            AUTH_REQUEST_KEYS["api_secret"]: credentials.api_secret,
        }).encode("utf-8")
        request = Request(
            method="POST",
            path=self._config.auth_path,
            headers={CONTENT_TYPE_HEADER: JSON_CONTENT_TYPE},
            body=body,
        )

        try:
            response = await self._transport.send(request)
        except ApiError:
            raise
        except Exception as exc:
            raise TransportError(exc) from exc

        error = classify_response(response)
        if error is not None:
            if isinstance(error, AuthenticationError):
                raise error
            raise AuthenticationError(str(error), response.status_code) from error

        try:
            return parse_session(decode_json(response), now=self._clock())
        except (ValueError, TypeError, OverflowError) as exc:
            raise AuthenticationError(f"invalid authentication response: {exc}") from exc


class SessionManager:
    """
    Owns the credentials and the cached :class:`Session`.

    Args:
        credentials: Key/secret pair; never leaves this object except through
            the authenticator.
        authenticator: Coroutine function performing the exchange.
        leeway: Seconds before expiry at which the cached session is
            considered expired.
        clock: Returns the current timezone-aware time.
    """

    def __init__(
        self,
        credentials: Credentials,
        authenticator: Authenticator,
        leeway: float = SESSION_LEEWAY_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._credentials = credentials
        self._authenticator = authenticator
        self._leeway = leeway
        self._clock = clock
        self._session: Session | None = None
        self._refresh: asyncio.Task | None = None

    @property
    def session(self) -> Session | None:
        """The cached session, valid or not, without triggering a refresh."""
        return self._session

    @property
    def has_session(self) -> bool:
        return self._session is not None

    def set_session(self, session: Session | None) -> None:
        """Install a session obtained elsewhere (or clear it with ``None``)."""
        self._session = session

    def invalidate(self, session: Session) -> None:
        """Drop the cached session if it is still ``session``."""
        if self._session is session:
            self._session = None

    async def authenticate(self, credentials: Credentials | None = None) -> Session:
        """
        Exchange credentials for a new session.

        Does not touch the cache; :meth:`get_valid_session` does that.

        Raises:
            AuthenticationError: The exchange failed for any reason.
        """
        credentials = credentials or self._credentials
        try:
            return await self._authenticator(credentials)
        except AuthenticationError:
            raise
        except ApiError as exc:
            raise AuthenticationError(f"error initiating authentication: {exc}") from exc

    async def get_valid_session(self, force_refresh: bool = False) -> Session:
        """
        Return a session that is valid now, refreshing it if necessary.

        Args:
            force_refresh: Ignore the cached session and refresh (still
                joining a refresh that is already in flight).

        Raises:
            AuthenticationError: A refresh was needed and failed.
        """
        session = self._session
        if not force_refresh and session is not None and session.is_valid(self._clock(), self._leeway):
            return session
        return await self._coalesced_refresh()

    async def refresh_after_rejection(self, rejected: Session) -> Session:
        """
        Return a session other than ``rejected``, refreshing if needed.

        Called after the server answered 401/403 to a request carrying
        ``rejected``.  If another caller already installed a newer valid
        session, that one is returned without a new exchange.
        """
        self.invalidate(rejected)
        current = self._session
        if current is not None and current is not rejected and current.is_valid(self._clock(), self._leeway):
            return current
        return await self._coalesced_refresh()

    async def _coalesced_refresh(self) -> Session:
        if self._refresh is None:
            self._refresh = asyncio.create_task(self._run_refresh())
            self._refresh.add_done_callback(_retrieve_exception)
        # shield: a cancelled waiter must not cancel the exchange others await
        return await asyncio.shield(self._refresh)

    async def _run_refresh(self) -> Session:
        try:
            logger.info("Refreshing session token")
            session = await self.authenticate()
            self._session = session
            logger.info(
                "Session refreshed; expires in %.0fs",
                session.seconds_remaining(self._clock()),
            )
            return session
        except AuthenticationError as exc:
            logger.warning("Session refresh failed: %s", exc)
            raise
        finally:
            self._refresh = None


def _retrieve_exception(task: asyncio.Task) -> None:
    # Marks a failed refresh as retrieved when every waiter was cancelled
    if not task.cancelled():
        task.exception()
