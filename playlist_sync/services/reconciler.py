from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Iterable, List

from playlist_sync.services.youtube import QuotaExceededError, YouTubeApiError, YouTubeClient

log = logging.getLogger("playlist_sync.reconciler")


@dataclass(frozen=True)
class ItemFailure:
    video_id: str
    reason: str


@dataclass
class ReconcileResult:
    added: int = 0
    skipped: List[ItemFailure] = field(default_factory=list)


class QuotaStop(QuotaExceededError):
    """Quota ran out part-way through a playlist; carries what was already added."""

    def __init__(self, cause: QuotaExceededError, partial: ReconcileResult):
        super().__init__(str(cause), status=cause.status, reason=cause.reason)
        self.partial = partial


def missing_items(desired: Iterable[str], current: Iterable[str]) -> List[str]:
    """desired minus current, first-seen order, no duplicates."""
    have = set(current)
    out: List[str] = []
    for vid in desired:
        if vid not in have:
            have.add(vid)
            out.append(vid)
    return out


class PlaylistReconciler:
    """Additive only: never removes anything from a playlist."""

    def __init__(self, client: YouTubeClient):
        self.client = client

    async def reconcile(self, playlist_id: str, desired_ids: Iterable[str]) -> ReconcileResult:
        current = await self.client.list_playlist_video_ids(playlist_id)
        todo = missing_items(desired_ids, current)
        result = ReconcileResult()
        if not todo:
            return result

        log.info("adding videos", extra={"playlist_id": playlist_id, "count": len(todo)})
        for vid in todo:
            try:
                await self.client.add_video(playlist_id, vid)
            except QuotaExceededError as e:
                raise QuotaStop(e, result) from e
            except YouTubeApiError as e:
                # removed / private / region-blocked videos are rejected one by one
                log.warning("skipping video", extra={"playlist_id": playlist_id, "video_id": vid, "reason": str(e)})
                result.skipped.append(ItemFailure(vid, str(e)))
                continue
            result.added += 1
        return result
