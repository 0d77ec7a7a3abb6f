from __future__ import annotations
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict
from urllib.parse import urlencode, urlparse

import httpx

from playlist_sync.core.config import settings
from playlist_sync.services.state import create_state

GOOGLE_AUTH_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_ENDPOINT = "https://oauth2.googleapis.com/revoke"
GOOGLE_USERINFO_ENDPOINT = "https://openidconnect.googleapis.com/v1/userinfo"

SCOPES = [
    "https://www.googleapis.com/auth/youtube",
    "https://www.googleapis.com/auth/userinfo.email",
]

# Google omits expires_in on some error-free responses; access tokens live an hour.
DEFAULT_EXPIRES_IN = 3600


class GoogleOAuthError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def _ensure_client_config() -> None:
    if not settings.GOOGLE_CLIENT_ID or not settings.GOOGLE_CLIENT_SECRET:
        raise GoogleOAuthError("Missing GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET in environment")


def _validate_redirect_host(redirect_uri: str) -> None:
    host = urlparse(redirect_uri).hostname or ""
    if host not in settings.ALLOWED_REDIRECT_HOSTS:
        raise ValueError(f"redirect_uri host '{host}' is not allowed")


def _expires_at_ms(payload: Dict[str, Any]) -> int:
    expires_in = int(payload.get("expires_in") or DEFAULT_EXPIRES_IN)
    return int(time.time() * 1000) + expires_in * 1000


@asynccontextmanager
async def _client(client: httpx.AsyncClient | None, timeout: float = 15.0) -> AsyncIterator[httpx.AsyncClient]:
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=timeout) as owned:
        yield owned


def build_consent_url(redirect_uri: str, initiator: str = "admin") -> str:
    """
    Google consent URL for linking the channel account.
    `prompt=consent` + offline access so a refresh_token is always issued.
    """
    _ensure_client_config()
    _validate_redirect_host(redirect_uri)

    params = {
        "client_id": settings.GOOGLE_CLIENT_ID,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(SCOPES),
        "state": create_state(initiator),
        "access_type": "offline",
        "include_granted_scopes": "true",
        "prompt": "consent",
    }
    return f"{GOOGLE_AUTH_ENDPOINT}?{urlencode(params)}"


async def exchange_code_for_tokens(
    code: str, redirect_uri: str, *, client: httpx.AsyncClient | None = None
) -> Dict[str, Any]:
    """
    Exchange authorization code for tokens.
    Returns: {access_token, refresh_token?, expires_at_ms, scope, token_type}
    """
    _ensure_client_config()
    _validate_redirect_host(redirect_uri)

    data = {
        "code": code,
        "client_id": settings.GOOGLE_CLIENT_ID,
        "client_secret": settings.GOOGLE_CLIENT_SECRET,
        "redirect_uri": redirect_uri,
        "grant_type": "authorization_code",
    }

    async with _client(client) as http:
        resp = await http.post(GOOGLE_TOKEN_ENDPOINT, data=data)

    if resp.status_code != 200:
        raise GoogleOAuthError(f"token exchange failed: {resp.status_code} {resp.text[:200]}", resp.status_code)

    j = resp.json()
    return {
        "access_token": j.get("access_token"),
        "refresh_token": j.get("refresh_token"),  # may be absent on re-consent
        "expires_at_ms": _expires_at_ms(j),
        "scope": j.get("scope"),
        "token_type": j.get("token_type"),
    }


async def refresh_access_token(refresh_token: str, *, client: httpx.AsyncClient | None = None) -> Dict[str, Any]:
    """
    Use refresh_token to get a fresh access_token.
    Returns: {access_token, expires_at_ms, scope?, token_type}
    """
    _ensure_client_config()
    if not refresh_token:
        raise ValueError("refresh_token required")

    data = {
        "client_id": settings.GOOGLE_CLIENT_ID,
        "client_secret": settings.GOOGLE_CLIENT_SECRET,
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    }

    async with _client(client) as http:
        resp = await http.post(GOOGLE_TOKEN_ENDPOINT, data=data)

    if resp.status_code != 200:
        raise GoogleOAuthError(f"refresh failed: {resp.status_code} {resp.text[:200]}", resp.status_code)

    j = resp.json()
    if not j.get("access_token"):
        raise GoogleOAuthError("refresh response carried no access_token", resp.status_code)

    return {
        "access_token": j["access_token"],
        "expires_at_ms": _expires_at_ms(j),
        "scope": j.get("scope"),
        "token_type": j.get("token_type"),
    }


async def fetch_account_email(access_token: str, *, client: httpx.AsyncClient | None = None) -> str:
    """The linked account is keyed by its Google e-mail."""
    headers = {"Authorization": f"Bearer {access_token}"}
    async with _client(client, timeout=10.0) as http:
        resp = await http.get(GOOGLE_USERINFO_ENDPOINT, headers=headers)

    if resp.status_code != 200:
        raise GoogleOAuthError(f"userinfo failed: {resp.status_code} {resp.text[:200]}", resp.status_code)

    email = resp.json().get("email")
    if not email:
        raise GoogleOAuthError("userinfo response carried no email")
    return email


async def revoke_token(token: str, *, client: httpx.AsyncClient | None = None) -> bool:
    """
    Google OAuth2 token revocation.
    Returns True if Google says OK or already-revoked (200 or 400).
    """
    headers = {"Content-Type": "application/x-www-form-urlencoded"}
    async with _client(client, timeout=10.0) as http:
        r = await http.post(GOOGLE_REVOKE_ENDPOINT, data={"token": token}, headers=headers)

    return r.status_code in (200, 400)
