from __future__ import annotations
import logging
from dataclasses import dataclass

from playlist_sync.core.config import settings
from playlist_sync.services.leases import LeaseManager, LeaseUnavailable
from playlist_sync.services.naming import GroupingKey, playlist_description, playlist_title, playlist_url
from playlist_sync.services.playlist_cache import CacheEntry, PlaylistCache
from playlist_sync.services.youtube import YouTubeApiError, YouTubeClient

log = logging.getLogger("playlist_sync.resolver")


class ResolveError(Exception):
    """No playlist could be found or created for a grouping key."""

    def __init__(self, key: GroupingKey, cause: Exception):
        super().__init__(f"{key}: {cause}")
        self.key = key
        self.cause = cause


@dataclass(frozen=True)
class Resolution:
    playlist_id: str
    created: bool = False


class PlaylistResolver:
    def __init__(
        self,
        client: YouTubeClient,
        cache: PlaylistCache,
        leases: LeaseManager,
        *,
        privacy_status: str | None = None,
    ):
        self.client = client
        self.cache = cache
        self.leases = leases
        self.privacy_status = privacy_status or settings.PLAYLIST_PRIVACY_STATUS

    async def resolve(self, key: GroupingKey) -> Resolution:
        """
        Cached id if YouTube still has it, else a playlist with the
        deterministic title (found by search or freshly created).
        Auth errors pass through; everything else becomes ResolveError.
        """
        try:
            hit = await self._cached_alive(key)
            if hit:
                return Resolution(hit)
            async with self.leases.hold(key.lease_key):
                # a concurrent run may have resolved this key while we waited
                hit = await self._cached_alive(key)
                if hit:
                    return Resolution(hit)
                return await self._search_or_create(key)
        except (YouTubeApiError, LeaseUnavailable) as e:
            raise ResolveError(key, e) from e

    async def _cached_alive(self, key: GroupingKey) -> str | None:
        entry = self.cache.get(key)
        if entry is None:
            return None
        if await self.client.playlist_exists(entry.playlist_id):
            return entry.playlist_id
        log.warning(
            "cached playlist is gone on YouTube; dropping cache entry",
            extra={"sync_key": str(key), "playlist_id": entry.playlist_id},
        )
        self.cache.invalidate(key, entry.playlist_id)
        return None

    async def _search_or_create(self, key: GroupingKey) -> Resolution:
        title = playlist_title(key)

        match = next((p for p in await self.client.list_playlists() if p.title == title), None)
        if match:
            # includes playlists someone created by hand under the same title
            log.info("adopting existing playlist", extra={"sync_key": str(key), "playlist_id": match.id})
            self._remember(key, match.id, title)
            return Resolution(match.id)

        created = await self.client.create_playlist(title, playlist_description(key), self.privacy_status)
        log.info("created playlist", extra={"sync_key": str(key), "playlist_id": created.id})
        self._remember(key, created.id, title)
        return Resolution(created.id, created=True)

    def _remember(self, key: GroupingKey, playlist_id: str, title: str) -> None:
        self.cache.put(key, CacheEntry(playlist_id=playlist_id, name=title, url=playlist_url(playlist_id)))
