"""
Bearer-credential acquisition for the Copilot chat endpoint.

Flow:
  1. Resolve a GitHub token (environment variable or the cached
     ``Asset/token.json``).
  2. Exchange it for a short-lived Copilot API token.
  3. Cache the Copilot token and refresh it ~60 s before it expires.

Obtaining the GitHub token in the first place (OAuth device flow) is the
host application's job.
"""

import json
import logging
import os
import time

import requests

from .paths import asset_path

log = logging.getLogger("copilot_chat")

COPILOT_TOKEN_URL = "https://api.github.com/copilot_internal/v2/token"

# Where the GitHub token is cached between sessions.
TOKEN_FILE = asset_path("token.json")

#: Environment variables checked (in order) before the token file.
TOKEN_ENV_VARS: tuple[str, ...] = ("COPILOT_GITHUB_TOKEN", "GITHUB_TOKEN")

#: Refresh the Copilot token this many seconds before it expires.
REFRESH_MARGIN_S = 60


class AuthError(Exception):
    """No valid bearer credential could be obtained."""


# ---------------------------------------------------------------------------
# Copilot token exchange
# ---------------------------------------------------------------------------

def get_copilot_token(github_token: str) -> tuple[str, int]:
    """
    Exchange a GitHub token for a short-lived Copilot API bearer token.

    Returns
    -------
    (copilot_token, expires_at_unix_timestamp)
    """
    headers = {
        "Authorization": f"token {github_token}",
        "Accept": "application/json",
        "User-Agent":    "GitHubCopilotChat/0.22.2",
        "Editor-Version": "vscode/1.97.0",
        "Editor-Plugin-Version": "copilot-chat/0.22.2",
    }

    log.debug("[AUTH] GET %s  (token prefix = %s…  len = %d)",
              COPILOT_TOKEN_URL, github_token[:8], len(github_token))

    response = requests.get(COPILOT_TOKEN_URL, headers=headers, timeout=15)

    log.debug("[AUTH] Copilot token-exchange response: %s",
              response.status_code)

    if response.status_code in (401, 403):
        raise AuthError(
            f"Copilot token exchange failed (HTTP {response.status_code}).\n"
            f"Response: {response.text[:500]}\n\n"
            f"Possible causes:\n"
            f"  • GitHub Copilot subscription may not be active\n"
            f"  • The GitHub token may lack Copilot scopes or be revoked"
        )

    response.raise_for_status()
    data = response.json()
    log.debug("[AUTH] Copilot bearer token obtained — expires_at=%s",
              data.get("expires_at", "?"))
    return data["token"], int(data.get("expires_at", 0))


# ---------------------------------------------------------------------------
# Persistent GitHub token storage
# ---------------------------------------------------------------------------

def load_token(path: str | None = None) -> str | None:
    """Load the GitHub token from disk, returning ``None`` if absent."""
    path = path or TOKEN_FILE
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        return data.get("github_token")
    return None


def resolve_github_token(path: str | None = None) -> str | None:
    """Return the GitHub token from the environment or the token file."""
    for name in TOKEN_ENV_VARS:
        value = os.environ.get(name, "").strip()
        if value:
            log.debug("[AUTH] Using GitHub token from $%s", name)
            return value
    return load_token(path)


# ---------------------------------------------------------------------------
# Credential providers
# ---------------------------------------------------------------------------

class CredentialProvider:
    """Caches the Copilot bearer token and refreshes it before expiry."""

    def __init__(self, github_token: str | None, exchange=get_copilot_token,
                 clock=time.time) -> None:
        self._github_token = github_token
        self._exchange = exchange
        self._clock = clock
        self._copilot_token: str = ""
        self._token_expires_at: int = 0

    def invalidate(self) -> None:
        """Drop the cached bearer token so the next call refreshes it."""
        self._copilot_token = ""
        self._token_expires_at = 0

    def check_and_refresh_token(self) -> str:
        """Return a valid bearer token, refreshing it when needed.

        Raises
        ------
        AuthError
            When there is no GitHub token, the exchange fails, or it
            returns an empty token.
        """
        now = self._clock()
        if self._copilot_token and now < self._token_expires_at - REFRESH_MARGIN_S:
            return self._copilot_token

        if not self._github_token:
            raise AuthError(
                "No GitHub token available. Set $COPILOT_GITHUB_TOKEN or "
                "save a token to Asset/token.json."
            )

        log.debug("[AUTH] Copilot token expired or missing (now=%.0f, "
                  "expires=%.0f). Refreshing…", now, self._token_expires_at)
        try:
            token, expires_at = self._exchange(self._github_token)
        except AuthError:
            self.invalidate()
            raise
        except requests.HTTPError as exc:
            self.invalidate()
            status = exc.response.status_code if exc.response is not None else "?"
            raise AuthError(
                f"Copilot token refresh failed (HTTP {status}). "
                f"Your GitHub token may be expired or lack the 'copilot' scope."
            ) from exc
        except Exception as exc:
            self.invalidate()
            raise AuthError(
                f"Copilot token refresh failed: {type(exc).__name__}: {exc}\n"
                f"Check network connectivity and GitHub token validity."
            ) from exc

        if not token:
            self.invalidate()
            raise AuthError("Failed to get a valid access token")

        self._copilot_token = token
        self._token_expires_at = expires_at
        log.debug("[AUTH] New Copilot token valid until %d", expires_at)
        return token


class StaticCredentialProvider:
    """Returns a fixed, pre-issued bearer token."""

    def __init__(self, token: str) -> None:
        self._token = token

    def check_and_refresh_token(self) -> str:
        if not self._token:
            raise AuthError("Failed to get a valid access token")
        return self._token
