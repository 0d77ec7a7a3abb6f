from __future__ import annotations
import logging
import time
from typing import List, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from playlist_sync.core.config import settings
from playlist_sync.db.session import get_db
from playlist_sync.security.internal import require_internal
from playlist_sync.security.ratelimit import limit_by_api_key
from playlist_sync.services.google_oauth import (
    GoogleOAuthError,
    build_consent_url,
    exchange_code_for_tokens,
    fetch_account_email,
    revoke_token,
)
from playlist_sync.services.state import StateError, verify_state
from playlist_sync.services.tokens import CredentialStore

log = logging.getLogger("playlist_sync.auth")

router = APIRouter(prefix="/auth/youtube", tags=["youtube-oauth"])

def _redirect_uri() -> str:
    # single source of truth for the callback URL
    base = settings.GOOGLE_REDIRECT_BASE.rstrip("/")
    return f"{base}/auth/youtube/callback"

class AuthURLResp(BaseModel):
    auth_url: str

class ConnectResp(BaseModel):
    connected: bool
    email: str

class StatusResp(BaseModel):
    connected: bool
    email: Optional[str] = None
    token_expired: Optional[bool] = None

class DisconnectReq(BaseModel):
    account_id: Optional[str] = None

class DisconnectResp(BaseModel):
    disconnected: List[str]


@router.get(
    "/url",
    response_model=AuthURLResp,
    summary="Consent URL for linking the YouTube channel account",
    dependencies=[Depends(require_internal), Depends(limit_by_api_key)],
)
def auth_url(initiator: str = Query("admin", min_length=1)):
    try:
        return {"auth_url": build_consent_url(redirect_uri=_redirect_uri(), initiator=initiator)}
    except (GoogleOAuthError, StateError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/callback", response_model=ConnectResp, summary="OAuth callback: exchange code and store tokens")
async def auth_callback(
    code: str = Query(..., min_length=1),
    state: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
):
    try:
        verify_state(state)
    except StateError as e:
        raise HTTPException(status_code=400, detail=f"invalid state: {e}")

    try:
        token_data = await exchange_code_for_tokens(code=code, redirect_uri=_redirect_uri())
        access_token = token_data.get("access_token")
        if not access_token:
            raise HTTPException(status_code=400, detail="no access_token in response")
        email = await fetch_account_email(access_token)
    except (GoogleOAuthError, httpx.HTTPError) as e:
        raise HTTPException(status_code=400, detail=f"token exchange failed: {e}")

    store = CredentialStore(db)
    refresh_token = token_data.get("refresh_token")
    if not refresh_token and store.get(email) is None:
        # without offline access the sync could never refresh
        raise HTTPException(status_code=400, detail="Google returned no refresh_token; retry with consent")

    store.save(
        email,
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at_ms=token_data["expires_at_ms"],
        scope=token_data.get("scope"),
    )
    log.info("youtube account linked", extra={"account_id": email})
    return {"connected": True, "email": email}


@router.get(
    "/status",
    response_model=StatusResp,
    summary="Whether a YouTube account is linked",
    dependencies=[Depends(require_internal), Depends(limit_by_api_key)],
)
def status(db: Session = Depends(get_db)):
    store = CredentialStore(db)
    account_id = store.latest_account_id()
    if account_id is None:
        return StatusResp(connected=False)
    cred = store.get(account_id)
    return StatusResp(
        connected=True,
        email=account_id,
        token_expired=cred.expires_at_ms <= int(time.time() * 1000),
    )


@router.post(
    "/disconnect",
    response_model=DisconnectResp,
    summary="Revoke and forget linked account(s); all of them when none is named",
    dependencies=[Depends(require_internal), Depends(limit_by_api_key)],
)
async def disconnect(payload: DisconnectReq | None = None, db: Session = Depends(get_db)):
    store = CredentialStore(db)
    wanted = (payload.account_id or "").strip() if payload else ""
    account_ids = [wanted] if wanted else store.account_ids()

    removed: List[str] = []
    for account_id in account_ids:
        cred = store.get(account_id)
        if cred is None:
            continue
        token = cred.refresh_token or cred.access_token
        if token:
            try:
                await revoke_token(token)
            except httpx.HTTPError as e:
                # the local row goes regardless; Google expires unused grants itself
                log.warning("revoke failed", extra={"account_id": account_id, "reason": repr(e)})
        store.delete(account_id)
        removed.append(account_id)

    return DisconnectResp(disconnected=removed)
