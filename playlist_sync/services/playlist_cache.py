from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from playlist_sync.db.models import PlaylistCacheRow
from playlist_sync.services.naming import GroupingKey


@dataclass(frozen=True)
class CacheEntry:
    playlist_id: str
    name: str
    url: str
    last_synced_at: datetime | None = None


class PlaylistCache:
    """
    (country, category) -> YouTube playlist id. A memo over the remote
    playlists, not a source of truth: entries may point at deleted playlists.
    """

    def __init__(self, db: Session):
        self.db = db

    def _row(self, key: GroupingKey) -> PlaylistCacheRow | None:
        return (
            self.db.query(PlaylistCacheRow)
            .filter(PlaylistCacheRow.country_code == key.country_code, PlaylistCacheRow.category == key.category)
            .one_or_none()
        )

    def get(self, key: GroupingKey) -> CacheEntry | None:
        # always read the committed row; another run may have written it
        self.db.expire_all()
        row = self._row(key)
        if row is None:
            return None
        return CacheEntry(row.youtube_playlist_id, row.playlist_name, row.playlist_url, row.last_synced_at)

    def put(self, key: GroupingKey, entry: CacheEntry) -> None:
        """Upsert on the grouping key, last writer wins."""
        # the remote id is unique too; drop a stale row that still claims it
        self.db.query(PlaylistCacheRow).filter(
            PlaylistCacheRow.youtube_playlist_id == entry.playlist_id,
            (PlaylistCacheRow.country_code != key.country_code) | (PlaylistCacheRow.category != key.category),
        ).delete(synchronize_session=False)

        row = self._row(key)
        if row is None:
            row = PlaylistCacheRow(country_code=key.country_code, category=key.category)
            self.db.add(row)
        row.youtube_playlist_id = entry.playlist_id
        row.playlist_name = entry.name
        row.playlist_url = entry.url
        row.last_synced_at = entry.last_synced_at
        try:
            self.db.commit()
        except IntegrityError:
            # lost an insert race for the same key; overwrite the winner's row
            self.db.rollback()
            row = self._row(key)
            if row is None:
                raise
            row.youtube_playlist_id = entry.playlist_id
            row.playlist_name = entry.name
            row.playlist_url = entry.url
            row.last_synced_at = entry.last_synced_at
            self.db.commit()

    def invalidate(self, key: GroupingKey, playlist_id: str | None = None) -> bool:
        """With `playlist_id`, only drops the row if it still points at that playlist."""
        q = self.db.query(PlaylistCacheRow).filter(
            PlaylistCacheRow.country_code == key.country_code, PlaylistCacheRow.category == key.category
        )
        if playlist_id is not None:
            q = q.filter(PlaylistCacheRow.youtube_playlist_id == playlist_id)
        n = q.delete(synchronize_session=False)
        self.db.commit()
        return n > 0

    def touch(self, key: GroupingKey, when: datetime | None = None) -> None:
        row = self._row(key)
        if row is None:
            return
        row.last_synced_at = when or datetime.utcnow()
        self.db.commit()

    def list(self) -> List[PlaylistCacheRow]:
        return (
            self.db.query(PlaylistCacheRow)
            .order_by(PlaylistCacheRow.country_code, PlaylistCacheRow.category)
            .all()
        )
