from __future__ import annotations
import json
from dataclasses import dataclass
from sqlalchemy.orm import Session

from playlist_sync.db.models import OAuthCredential
from playlist_sync.services.crypto import decrypt_str, encrypt_str


@dataclass(frozen=True)
class StoredCredential:
    account_id: str
    access_token: str | None   # None when the ciphertext no longer decrypts
    refresh_token: str | None
    expires_at_ms: int


class CredentialStore:
    """
    Per-account OAuth tokens, encrypted at rest.
    Writes are last-writer-wins; each method commits on its own.
    """

    def __init__(self, db: Session):
        self.db = db

    def _row(self, account_id: str) -> OAuthCredential | None:
        return self.db.query(OAuthCredential).filter(OAuthCredential.account_id == account_id).one_or_none()

    def get(self, account_id: str) -> StoredCredential | None:
        row = self._row(account_id)
        if row is None:
            return None
        return StoredCredential(
            account_id=row.account_id,
            access_token=decrypt_str(row.access_token_enc),
            refresh_token=decrypt_str(row.refresh_token_enc),
            expires_at_ms=row.expires_at_ms,
        )

    def save(
        self,
        account_id: str,
        *,
        access_token: str,
        refresh_token: str | None,
        expires_at_ms: int,
        scope: str | None = None,  # Google returns space-delimited string
    ) -> OAuthCredential:
        scopes_json = json.dumps(scope.split() if scope else [])

        row = self._row(account_id)
        if row is None:
            if not refresh_token:
                raise ValueError("refresh_token required when linking a new account")
            row = OAuthCredential(
                account_id=account_id,
                access_token_enc=encrypt_str(access_token),
                refresh_token_enc=encrypt_str(refresh_token),
                expires_at_ms=expires_at_ms,
                scopes_json=scopes_json,
            )
            self.db.add(row)
        else:
            row.access_token_enc = encrypt_str(access_token)
            if refresh_token:
                row.refresh_token_enc = encrypt_str(refresh_token)
            row.expires_at_ms = expires_at_ms
            row.scopes_json = scopes_json

        self.db.commit()
        self.db.refresh(row)
        return row

    def update_access_token(self, account_id: str, *, access_token: str, expires_at_ms: int) -> None:
        """Token and expiry go out in a single commit."""
        row = self._row(account_id)
        if row is None:
            raise LookupError(f"no credential for {account_id}")
        row.access_token_enc = encrypt_str(access_token)
        row.expires_at_ms = expires_at_ms
        self.db.commit()

    def delete(self, account_id: str) -> bool:
        row = self._row(account_id)
        if row is None:
            return False
        self.db.delete(row)
        self.db.commit()
        return True

    def latest_account_id(self) -> str | None:
        row = (
            self.db.query(OAuthCredential)
            .order_by(OAuthCredential.created_at.desc(), OAuthCredential.id.desc())
            .first()
        )
        return row.account_id if row else None

    def account_ids(self) -> list[str]:
        return [r.account_id for r in self.db.query(OAuthCredential.account_id).all()]
