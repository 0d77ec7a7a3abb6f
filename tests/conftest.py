"""Shared pytest fixtures for test suite"""
import json
import os
import tempfile
from typing import Dict, Generator, List, Optional, Tuple

# Settings are read at import time; configure before importing the package.
os.environ.setdefault("ENCRYPTION_KEY", "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY=")
os.environ.setdefault("API_INTERNAL_KEY", "test-internal-key")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="playlist-sync-logs-"))

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from playlist_sync.db.models import Base, VideoSubmission
from playlist_sync.db.session import get_db
from playlist_sync.security.ratelimit import reset_counters
from playlist_sync.services.tokens import CredentialStore

API_KEY = "test-internal-key"
ACCOUNT = "channel@example.com"

test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Fresh in-memory database per test"""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """FastAPI test client bound to the test database"""
    from playlist_sync.main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    reset_counters()
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def api_headers() -> Dict[str, str]:
    return {"X-API-Key": API_KEY}


def link_account(db: Session, account_id: str = ACCOUNT, *, expires_at_ms: int = 2**53,
                 access_token: str = "access-1", refresh_token: str = "refresh-1") -> None:
    CredentialStore(db).save(
        account_id,
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at_ms=expires_at_ms,
        scope="https://www.googleapis.com/auth/youtube",
    )


def add_submission(db: Session, country_code: str, category: str, video_id: str, *,
                   status: str = "approved", sync_enabled: bool = True) -> None:
    db.add(VideoSubmission(
        country_code=country_code,
        category=category,
        youtube_video_id=video_id,
        status=status,
        youtube_sync_enabled=sync_enabled,
    ))
    db.commit()


@pytest.fixture
def linked_account(db_session: Session) -> str:
    link_account(db_session)
    return ACCOUNT


class FakeYouTube:
    """
    In-memory stand-in for the YouTube Data API, mounted through
    httpx.MockTransport so the real client code runs against it.
    """

    page_size = 50

    def __init__(self):
        self.playlists: Dict[str, Dict] = {}
        self.calls: List[Tuple[str, str]] = []
        self.tokens_seen: List[str] = []
        self.rejected_videos: Dict[str, Tuple[int, str]] = {}
        self.create_failures: Dict[str, Tuple[int, str]] = {}
        self.quota_exhausted = False
        self.insert_budget: Optional[int] = None
        self.revoked = False
        self._seq = 0

    # -- test helpers --------------------------------------------------------
    def add_playlist(self, title: str, video_ids: Optional[List[str]] = None, playlist_id: Optional[str] = None) -> str:
        self._seq += 1
        pid = playlist_id or f"PL{self._seq:04d}"
        self.playlists[pid] = {"title": title, "description": "", "items": list(video_ids or [])}
        return pid

    def count(self, method: str) -> int:
        return sum(1 for m, _ in self.calls if m == method)

    def items(self, playlist_id: str) -> List[str]:
        return self.playlists[playlist_id]["items"]

    def http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    # -- transport -----------------------------------------------------------
    @staticmethod
    def _error(status: int, reason: str, message: str = "error") -> httpx.Response:
        return httpx.Response(status, json={"error": {"code": status, "message": message,
                                                       "errors": [{"reason": reason, "message": message}]}})

    def _page(self, rows: List[Dict], request: httpx.Request) -> Dict:
        start = int(request.url.params.get("pageToken") or 0)
        size = int(request.url.params.get("maxResults") or self.page_size)
        body = {"items": rows[start:start + size]}
        if start + size < len(rows):
            body["nextPageToken"] = str(start + size)
        return body

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.rsplit("/", 1)[-1]
        method = f"{path}.{'list' if request.method == 'GET' else 'insert'}"
        self.calls.append((method, str(request.url)))
        self.tokens_seen.append(request.headers.get("Authorization", ""))

        if self.revoked:
            return self._error(401, "authError", "Invalid Credentials")
        if self.quota_exhausted:
            return self._error(403, "quotaExceeded", "The request cannot be completed because you have exceeded your quota.")

        if method == "playlists.list":
            rows = [{"id": pid, "snippet": {"title": p["title"]}} for pid, p in self.playlists.items()]
            return httpx.Response(200, json=self._page(rows, request))

        if method == "playlistItems.list":
            pid = request.url.params.get("playlistId")
            if pid not in self.playlists:
                return self._error(404, "playlistNotFound", "Playlist not found")
            rows = [{"id": f"{pid}-{i}", "contentDetails": {"videoId": v}}
                    for i, v in enumerate(self.playlists[pid]["items"])]
            return httpx.Response(200, json=self._page(rows, request))

        body = json.loads(request.content)
        if method == "playlists.insert":
            title = body["snippet"]["title"]
            if title in self.create_failures:
                status, reason = self.create_failures[title]
                return self._error(status, reason)
            pid = self.add_playlist(title)
            self.playlists[pid]["description"] = body["snippet"]["description"]
            self.playlists[pid]["privacy"] = body["status"]["privacyStatus"]
            return httpx.Response(200, json={"id": pid, "snippet": body["snippet"]})

        if method == "playlistItems.insert":
            pid = body["snippet"]["playlistId"]
            vid = body["snippet"]["resourceId"]["videoId"]
            if self.insert_budget is not None:
                if self.insert_budget <= 0:
                    return self._error(403, "quotaExceeded", "quota")
                self.insert_budget -= 1
            if vid in self.rejected_videos:
                status, reason = self.rejected_videos[vid]
                return self._error(status, reason)
            if pid not in self.playlists:
                return self._error(404, "playlistNotFound")
            self.playlists[pid]["items"].append(vid)
            return httpx.Response(200, json={"id": f"{pid}-{vid}"})

        return self._error(400, "badRequest", f"unexpected call {method}")


@pytest.fixture
def fake_youtube() -> FakeYouTube:
    return FakeYouTube()
