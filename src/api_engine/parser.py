"""
Response decoding: JSON bodies, session payloads, and JWT claims.

No I/O occurs here; all functions are pure transformations of bytes/dicts to
support easy unit testing.
"""

from __future__ import annotations

import base64
import json
from datetime import datetime, timedelta, timezone
from typing import Any

from config.api_config import (
    AUTH_EXPIRES_AT_KEYS,
    AUTH_EXPIRES_IN_KEYS,
    AUTH_ORGANIZATION_KEYS,
    AUTH_TOKEN_KEYS,
)

from .errors import ApiFailure
from .models import Response, Session, utc_now


def first_present(payload: dict, keys: tuple[str, ...]) -> Any:
    """Return the value of the first key in ``keys`` present and non-null."""
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return None


def decode_json(response: Response) -> Any:
    """
    Decode a successful response body as JSON.

    Empty bodies decode to ``None``.

    Raises:
        ApiFailure: The body is not valid JSON.  The status code of the
            response is kept so the caller can still see what the server
            answered.
    """
    try:
        return response.json()
    except ValueError as exc:
        raise ApiFailure(
            response.status_code,
            f"invalid JSON in response body: {exc}",
        ) from exc


def decode_jwt_claims(token: str) -> dict:
    """
    Decode the claims segment of a JWT without verifying its signature.

    Used only to read ``exp`` and organization claims from tokens the server
    just issued to us.

    Raises:
        ValueError: The token is not a three-segment JWT or its payload is
            not a JSON object.
    """
    parts = token.split(".")
    if len(parts) != 3:
        raise ValueError("token is not a JWT (expected 3 segments)")

    segment = parts[1]
    segment += "=" * (-len(segment) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(segment))
    except (ValueError, TypeError) as exc:
        raise ValueError(f"undecodable JWT payload: {exc}") from exc

    if not isinstance(claims, dict):
        raise ValueError("JWT payload is not a JSON object")
    return claims


def parse_session(payload: Any, now: datetime | None = None) -> Session:
    """
    Build a :class:`Session` from an authentication endpoint response.

    Expiry is taken, in order of preference, from a relative lifetime
    (``expiresIn``), an absolute epoch timestamp (``exp``), or the ``exp``
    claim of the token itself when the token is a JWT.

    Args:
        payload: Decoded JSON body of the authentication response.
        now: Reference time for relative lifetimes (defaults to UTC now).

    Returns:
        A new Session.

    Raises:
        ValueError: No token, or no way to determine the expiry.
        OverflowError: The expiry is too far out to represent.
    """
    if not isinstance(payload, dict):
        raise ValueError(f"authentication response is not an object: {payload!r}")

    token = first_present(payload, AUTH_TOKEN_KEYS)
    if not isinstance(token, str) or not token:
        raise ValueError("authentication response has no session token")

    now = now or utc_now()
    organization = first_present(payload, AUTH_ORGANIZATION_KEYS)

    expires_in = first_present(payload, AUTH_EXPIRES_IN_KEYS)
    if expires_in is not None:
        expires_at = now + timedelta(seconds=float(expires_in))
    else:
        exp = first_present(payload, AUTH_EXPIRES_AT_KEYS)
        if exp is None:
            claims = decode_jwt_claims(token)
            exp = claims.get("exp")
            if organization is None:
                organization = claims.get("custom:organization_node_id")
        if exp is None:
            raise ValueError("authentication response has no expiration")
        expires_at = datetime.fromtimestamp(float(exp), tz=timezone.utc)

    return Session(
        token=token,
        expires_at=expires_at,
        organization=str(organization) if organization is not None else None,
    )
