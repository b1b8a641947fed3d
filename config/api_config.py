"""
API environment and authentication configuration.

This is the AUTHORITATIVE source for environment endpoints.
src/api_engine/config.py imports from here; do not maintain parallel copies.

ENVIRONMENT VARIABLES RECOGNIZED:
    API_ENGINE_ENV          - environment name (local / nonproduction / production)
    API_ENGINE_API_LOC      - base URL for the 'local' environment (required there)
    API_ENGINE_API_KEY      - API key exchanged for a session token
    API_ENGINE_API_SECRET   - API secret paired with the key
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Environments
# ---------------------------------------------------------------------------
#
# Fields:
#   url      - Base URL of the API for that environment, or None when the URL
#              is read from ``url_env`` at resolution time
#   url_env  - Environment variable holding the URL (local only)

ENVIRONMENTS: dict[str, dict] = {
    "local": {
        "url": None,
        "url_env": "API_ENGINE_API_LOC",
    },
    "nonproduction": {
        "url": "https://api.pennsieve.net",
        "url_env": None,
    },
    "production": {
        "url": "https://api.pennsieve.io",
        "url_env": None,
    },
}

# Accepted spellings → canonical environment name
ENVIRONMENT_ALIASES: dict[str, str] = {
    "dev": "nonproduction",
    "development": "nonproduction",
    "non-prod": "nonproduction",
    "nonprod": "nonproduction",
    "nonproduction": "nonproduction",
    "local": "local",
    "prod": "production",
    "production": "production",
}

DEFAULT_ENVIRONMENT: str = "production"

# ---------------------------------------------------------------------------
# Environment variable names
# ---------------------------------------------------------------------------

ENV_VAR_ENVIRONMENT: str = "API_ENGINE_ENV"
ENV_VAR_API_KEY: str = "API_ENGINE_API_KEY"
ENV_VAR_API_SECRET: str = "API_ENGINE_API_SECRET"
ENV_VAR_BASE_URL: str = "API_ENGINE_BASE_URL"
ENV_VAR_TIMEOUT: str = "API_ENGINE_TIMEOUT"
ENV_VAR_POLL_INTERVAL: str = "API_ENGINE_POLL_INTERVAL"
ENV_VAR_MAX_POLL_ATTEMPTS: str = "API_ENGINE_MAX_POLL_ATTEMPTS"
ENV_VAR_POLL_DEADLINE: str = "API_ENGINE_POLL_DEADLINE"

# ---------------------------------------------------------------------------
# Authentication endpoint
# ---------------------------------------------------------------------------
# Wire schema of the key/secret exchange.  Request body keys and the response
# keys searched (in order) for the token and its lifetime.

AUTH_PATH: str = "/account/api/session"
AUTH_REQUEST_KEYS: dict[str, str] = {
    "api_key": "apiKey",
    "api_secret": "apiSecret",
}
AUTH_TOKEN_KEYS: tuple[str, ...] = ("sessionToken", "session_token", "token")
AUTH_EXPIRES_IN_KEYS: tuple[str, ...] = ("expiresIn", "expires_in")
AUTH_EXPIRES_AT_KEYS: tuple[str, ...] = ("exp", "expiresAt")
AUTH_ORGANIZATION_KEYS: tuple[str, ...] = ("organization", "organizationId")
