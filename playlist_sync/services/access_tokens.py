from __future__ import annotations
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict

from playlist_sync.core.config import settings
from playlist_sync.services.google_oauth import GoogleOAuthError, refresh_access_token
from playlist_sync.services.tokens import CredentialStore

log = logging.getLogger("playlist_sync.tokens")

Refresher = Callable[[str], Awaitable[Dict[str, Any]]]


class AuthError(Exception):
    """The linked account cannot be used; a person has to re-link it."""

class NotLinkedError(AuthError): ...
class RefreshFailedError(AuthError): ...


@dataclass(frozen=True)
class AccessCredential:
    account_id: str
    access_token: str
    expires_at_ms: int


def _now_ms() -> int:
    return int(time.time() * 1000)


class TokenManager:
    def __init__(
        self,
        store: CredentialStore,
        *,
        refresher: Refresher = refresh_access_token,
        clock: Callable[[], int] = _now_ms,
        safety_margin_ms: int | None = None,
    ):
        self.store = store
        self.refresher = refresher
        self.clock = clock
        if safety_margin_ms is None:
            safety_margin_ms = settings.TOKEN_SAFETY_MARGIN_SECONDS * 1000
        self.safety_margin_ms = safety_margin_ms

    async def ensure_valid_credential(self, account_id: str) -> AccessCredential:
        """
        Returns an access token that stays valid for at least the safety margin.
        Refreshes and persists when the stored one is (nearly) expired.
        """
        stored = self.store.get(account_id)
        if stored is None:
            raise NotLinkedError(f"no YouTube account linked as {account_id}")

        if stored.access_token and self.clock() < stored.expires_at_ms - self.safety_margin_ms:
            return AccessCredential(account_id, stored.access_token, stored.expires_at_ms)

        if not stored.refresh_token:
            raise RefreshFailedError("stored refresh_token is missing or unreadable; account must be re-linked")

        log.info("refreshing access token", extra={"account_id": account_id})
        try:
            new = await self.refresher(stored.refresh_token)
        except GoogleOAuthError as e:
            log.warning("token refresh rejected", extra={"account_id": account_id, "status": e.status_code})
            raise RefreshFailedError(f"refresh rejected by Google: {e}") from e

        self.store.update_access_token(
            account_id,
            access_token=new["access_token"],
            expires_at_ms=new["expires_at_ms"],
        )
        return AccessCredential(account_id, new["access_token"], new["expires_at_ms"])
