"""
Minimal YouTube Data API v3 surface used by the playlist sync.

Only four calls are needed: list my playlists, list a playlist's items,
create a playlist, insert a playlist item. Every call asks the token source
for a fresh access token first, so a long run never sends an expired one.
"""
from __future__ import annotations
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List

import httpx

from playlist_sync.services.access_tokens import AuthError

log = logging.getLogger("playlist_sync.youtube")

YOUTUBE_API = "https://www.googleapis.com/youtube/v3"
PAGE_SIZE = 50

# documented unit cost per call
QUOTA_COSTS = {
    "playlists.list": 1,
    "playlistItems.list": 1,
    "playlists.insert": 50,
    "playlistItems.insert": 50,
}

QUOTA_REASONS = {
    "quotaExceeded",
    "dailyLimitExceeded",
    "rateLimitExceeded",
    "userRateLimitExceeded",
    "maxPlaylistExceeded",
}

QUOTA_RESET_HINT = (
    "YouTube API quota resets daily at midnight Pacific Time; "
    "playlist creation is capped per channel per day. Retry after the reset or "
    "request a quota increase: https://support.google.com/youtube/contact/yt_api_form"
)

TokenSource = Callable[[], Awaitable[str]]


class YouTubeApiError(Exception):
    def __init__(self, message: str, *, status: int | None = None, reason: str | None = None):
        super().__init__(message)
        self.status = status
        self.reason = reason

class QuotaExceededError(YouTubeApiError): ...
class PlaylistNotFound(YouTubeApiError): ...

class AuthorizationRevoked(AuthError):
    """YouTube rejected a token we believed valid (revoked or scope removed)."""


@dataclass(frozen=True)
class RemotePlaylist:
    id: str
    title: str


class QuotaMeter:
    """Tallies estimated quota units spent, per API method."""

    def __init__(self):
        self.calls: Counter[str] = Counter()

    def charge(self, method: str) -> None:
        self.calls[method] += 1

    @property
    def units(self) -> int:
        return sum(QUOTA_COSTS[m] * n for m, n in self.calls.items())


def _error_details(resp: httpx.Response) -> tuple[str | None, str]:
    try:
        err = resp.json().get("error") or {}
    except ValueError:
        return None, resp.text[:200]
    if not isinstance(err, dict):
        return None, str(err)[:200]
    reasons = [e.get("reason") for e in err.get("errors") or [] if isinstance(e, dict)]
    reason = next((r for r in reasons if r), None)
    return reason, err.get("message") or resp.text[:200]


def classify_error(resp: httpx.Response, method: str) -> Exception:
    reason, message = _error_details(resp)
    status = resp.status_code
    text = f"{method} failed: {status} {reason or ''} {message}".strip()

    if status == 401:
        return AuthorizationRevoked(f"YouTube rejected the access token ({message}); account must be re-linked")
    if status == 429 or (status == 403 and reason in QUOTA_REASONS):
        return QuotaExceededError(f"{text}. {QUOTA_RESET_HINT}", status=status, reason=reason)
    if status == 404 and reason in ("playlistNotFound", "notFound"):
        return PlaylistNotFound(text, status=status, reason=reason)
    return YouTubeApiError(text, status=status, reason=reason)


class YouTubeClient:
    def __init__(self, token_source: TokenSource, *, http: httpx.AsyncClient, meter: QuotaMeter | None = None):
        self.token_source = token_source
        self.http = http
        self.meter = meter or QuotaMeter()

    async def _call(self, method: str, verb: str, path: str, *,
                    params: Dict[str, Any], json: Dict[str, Any] | None = None) -> Dict[str, Any]:
        try:
            # a refresh Google rejects surfaces as AuthError; only network failures are caught here
            token = await self.token_source()
            self.meter.charge(method)
            resp = await self.http.request(
                verb,
                f"{YOUTUBE_API}/{path}",
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TransportError as e:
            raise YouTubeApiError(f"{method} transport error: {e!r}", reason="transport") from e

        if resp.status_code >= 400:
            raise classify_error(resp, method)
        try:
            return resp.json()
        except ValueError as e:
            raise YouTubeApiError(f"{method} returned a non-JSON body", status=resp.status_code,
                                  reason="malformed") from e

    async def list_playlists(self) -> List[RemotePlaylist]:
        """Every playlist owned by the linked channel (all pages)."""
        out: List[RemotePlaylist] = []
        page_token = None
        while True:
            params = {"part": "snippet", "mine": "true", "maxResults": PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            data = await self._call("playlists.list", "GET", "playlists", params=params)
            for item in data.get("items") or []:
                out.append(RemotePlaylist(id=item["id"], title=(item.get("snippet") or {}).get("title", "")))
            page_token = data.get("nextPageToken")
            if not page_token:
                return out

    async def playlist_exists(self, playlist_id: str) -> bool:
        """One-item read of the playlist; False only when YouTube says it is gone."""
        try:
            await self._call(
                "playlistItems.list", "GET", "playlistItems",
                params={"part": "id", "playlistId": playlist_id, "maxResults": 1},
            )
        except PlaylistNotFound:
            return False
        return True

    async def list_playlist_video_ids(self, playlist_id: str) -> List[str]:
        ids: List[str] = []
        page_token = None
        pages = 0
        while True:
            params = {"part": "contentDetails", "playlistId": playlist_id, "maxResults": PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            data = await self._call("playlistItems.list", "GET", "playlistItems", params=params)
            pages += 1
            for item in data.get("items") or []:
                vid = (item.get("contentDetails") or {}).get("videoId")
                if vid:
                    ids.append(vid)
            page_token = data.get("nextPageToken")
            if not page_token:
                log.debug("listed playlist items", extra={"playlist_id": playlist_id, "pages": pages, "count": len(ids)})
                return ids

    async def create_playlist(self, title: str, description: str, privacy_status: str = "public") -> RemotePlaylist:
        log.info("creating playlist", extra={"title": title, "privacy": privacy_status})
        data = await self._call(
            "playlists.insert", "POST", "playlists",
            params={"part": "snippet,status"},
            json={
                "snippet": {"title": title, "description": description},
                "status": {"privacyStatus": privacy_status},
            },
        )
        playlist_id = data.get("id")
        if not playlist_id:
            raise YouTubeApiError("playlists.insert returned no playlist id")
        return RemotePlaylist(id=playlist_id, title=(data.get("snippet") or {}).get("title", title))

    async def add_video(self, playlist_id: str, video_id: str) -> None:
        await self._call(
            "playlistItems.insert", "POST", "playlistItems",
            params={"part": "snippet"},
            json={
                "snippet": {
                    "playlistId": playlist_id,
                    "resourceId": {"kind": "youtube#video", "videoId": video_id},
                }
            },
        )
