from __future__ import annotations
from datetime import datetime, timezone
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, model_validator
from sqlalchemy.orm import Session

from playlist_sync.db.session import get_db
from playlist_sync.security.internal import require_internal
from playlist_sync.security.ratelimit import limit_by_api_key, limit_sync_triggers
from playlist_sync.services.access_tokens import AuthError, NotLinkedError
from playlist_sync.services.playlist_cache import PlaylistCache
from playlist_sync.services.sync import SyncLogStore, run_sync
from playlist_sync.services.tokens import CredentialStore

router = APIRouter(prefix="/admin/youtube", tags=["youtube-sync"])


class SyncReq(BaseModel):
    type: Literal["all", "country", "category"]
    country_code: Optional[str] = None
    category: Optional[str] = None

    @model_validator(mode="after")
    def _scope_fields(self):
        if self.type in ("country", "category") and not self.country_code:
            raise ValueError("country_code is required for country and category sync")
        if self.type == "category" and not self.category:
            raise ValueError("category is required for category sync")
        return self


class GroupErrorOut(BaseModel):
    country_code: str
    category: str
    kind: str
    message: str


class SyncResp(BaseModel):
    success: bool
    status: str
    playlists_created: int
    playlists_updated: int
    videos_added: int
    quota_units: int
    errors: List[str]
    group_errors: List[GroupErrorOut]
    skipped_videos: List[str]
    timestamp: datetime


class PlaylistOut(BaseModel):
    country_code: str
    category: str
    playlist_id: str
    playlist_name: str
    playlist_url: str
    last_synced_at: Optional[datetime] = None


class SyncLogOut(BaseModel):
    id: int
    sync_type: str
    country_code: Optional[str] = None
    category: Optional[str] = None
    videos_synced: int
    playlists_created: int
    playlists_updated: int
    quota_units: int
    status: str
    error_message: Optional[str] = None
    synced_at: datetime


@router.post(
    "/sync",
    response_model=SyncResp,
    summary="Mirror approved videos into per-country/category playlists",
    dependencies=[Depends(require_internal), Depends(limit_sync_triggers)],
)
async def trigger_sync(payload: SyncReq, db: Session = Depends(get_db)):
    account_id = CredentialStore(db).latest_account_id()
    if account_id is None:
        raise HTTPException(status_code=401, detail="YouTube not connected. Please authenticate first.")

    try:
        result = await run_sync(
            db,
            scope=payload.type,
            account_id=account_id,
            country_code=payload.country_code,
            category=payload.category,
        )
    except NotLinkedError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AuthError as e:
        raise HTTPException(status_code=409, detail=f"reconnect required: {e}")

    return SyncResp(
        success=result.success,
        status=result.status,
        playlists_created=result.playlists_created,
        playlists_updated=result.playlists_updated,
        videos_added=result.videos_added,
        quota_units=result.quota_units,
        errors=[str(e) for e in result.errors],
        group_errors=[
            GroupErrorOut(country_code=e.key.country_code, category=e.key.category, kind=e.kind, message=e.message)
            for e in result.errors
        ],
        skipped_videos=[s.video_id for s in result.skipped],
        timestamp=datetime.now(timezone.utc),
    )


@router.get(
    "/playlists",
    response_model=List[PlaylistOut],
    summary="Cached playlist per country/category",
    dependencies=[Depends(require_internal), Depends(limit_by_api_key)],
)
def list_playlists(db: Session = Depends(get_db)):
    return [
        PlaylistOut(
            country_code=r.country_code,
            category=r.category,
            playlist_id=r.youtube_playlist_id,
            playlist_name=r.playlist_name,
            playlist_url=r.playlist_url,
            last_synced_at=r.last_synced_at,
        )
        for r in PlaylistCache(db).list()
    ]


@router.get(
    "/logs",
    response_model=List[SyncLogOut],
    summary="Recent sync runs, newest first",
    dependencies=[Depends(require_internal), Depends(limit_by_api_key)],
)
def sync_logs(limit: int = Query(20, ge=1, le=200), db: Session = Depends(get_db)):
    return [SyncLogOut.model_validate(row, from_attributes=True) for row in SyncLogStore(db).recent(limit)]
