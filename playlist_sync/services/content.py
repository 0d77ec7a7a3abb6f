from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Protocol

from sqlalchemy.orm import Session

from playlist_sync.db.models import VideoSubmission
from playlist_sync.services.naming import GroupingKey


@dataclass(frozen=True)
class SourceItem:
    key: GroupingKey
    video_id: str


class ContentSource(Protocol):
    def eligible_items(self, country_code: Optional[str] = None, category: Optional[str] = None) -> List[SourceItem]: ...


class SqlContentSource:
    """Approved, sync-enabled submissions from the content datastore."""

    def __init__(self, db: Session):
        self.db = db

    def eligible_items(self, country_code: Optional[str] = None, category: Optional[str] = None) -> List[SourceItem]:
        q = self.db.query(VideoSubmission).filter(
            VideoSubmission.status == "approved",
            VideoSubmission.youtube_sync_enabled.is_(True),
        )
        if country_code:
            q = q.filter(VideoSubmission.country_code == country_code)
        if category:
            q = q.filter(VideoSubmission.category == category)
        rows = q.order_by(VideoSubmission.created_at, VideoSubmission.id).all()
        return [SourceItem(GroupingKey(r.country_code, r.category), r.youtube_video_id) for r in rows]


def group_items(items: Iterable[SourceItem]) -> Dict[GroupingKey, List[str]]:
    groups: Dict[GroupingKey, List[str]] = {}
    for item in items:
        groups.setdefault(item.key, []).append(item.video_id)
    return groups
