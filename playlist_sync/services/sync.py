"""
Playlist sync orchestration.

One run = one scope (everything / a country / a country+category). Items are
grouped by (country, category) and each group is resolved to a playlist and
topped up, strictly one group after another. Group failures are collected
into the result; only auth failures end the run early. Every run, however
it ends, appends exactly one row to youtube_sync_logs.
"""
from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import httpx
from sqlalchemy.orm import Session

from playlist_sync.core.config import settings
from playlist_sync.core.logging import run_context
from playlist_sync.db.models import SyncLog
from playlist_sync.services.access_tokens import AuthError, TokenManager
from playlist_sync.services.content import ContentSource, SqlContentSource, group_items
from playlist_sync.services.leases import LeaseManager, LeaseUnavailable
from playlist_sync.services.naming import GroupingKey
from playlist_sync.services.playlist_cache import PlaylistCache
from playlist_sync.services.reconciler import ItemFailure, PlaylistReconciler, QuotaStop
from playlist_sync.services.resolver import PlaylistResolver, ResolveError
from playlist_sync.services.tokens import CredentialStore
from playlist_sync.services.youtube import QuotaExceededError, QuotaMeter, YouTubeApiError, YouTubeClient

log = logging.getLogger("playlist_sync.sync")

SCOPE_ALL = "all"
SCOPE_COUNTRY = "country"
SCOPE_CATEGORY = "category"


@dataclass(frozen=True)
class GroupError:
    key: GroupingKey
    kind: str  # quota | remote | lease
    message: str

    def __str__(self) -> str:
        return f"{self.key}: {self.message}"


@dataclass
class SyncResult:
    scope: str
    country_code: Optional[str] = None
    category: Optional[str] = None
    playlists_created: int = 0
    playlists_updated: int = 0
    videos_added: int = 0
    groups: int = 0
    errors: List[GroupError] = field(default_factory=list)
    skipped: List[ItemFailure] = field(default_factory=list)
    quota_units: int = 0
    cancelled: bool = False
    aborted: Optional[str] = None

    @property
    def status(self) -> str:
        if self.aborted:
            return "failed"
        if self.errors and len(self.errors) >= self.groups:
            return "failed"
        # a cancelled run left groups untouched
        return "partial" if self.errors or self.cancelled else "success"

    @property
    def success(self) -> bool:
        return self.status == "success"

    def error_summary(self) -> Optional[str]:
        parts = [str(e) for e in self.errors]
        if self.aborted:
            parts.insert(0, self.aborted)
        if self.cancelled:
            parts.append("run cancelled before all groups were processed")
        return "; ".join(parts) or None


class SyncLogStore:
    def __init__(self, db: Session):
        self.db = db

    def append(self, result: SyncResult) -> SyncLog:
        row = SyncLog(
            sync_type=result.scope,
            country_code=result.country_code,
            category=result.category,
            videos_synced=result.videos_added,
            playlists_created=result.playlists_created,
            playlists_updated=result.playlists_updated,
            quota_units=result.quota_units,
            status=result.status,
            error_message=result.error_summary(),
        )
        self.db.add(row)
        self.db.commit()
        return row

    def recent(self, limit: int = 20) -> List[SyncLog]:
        return self.db.query(SyncLog).order_by(SyncLog.synced_at.desc(), SyncLog.id.desc()).limit(limit).all()


class SyncOrchestrator:
    def __init__(
        self,
        db: Session,
        *,
        tokens: TokenManager,
        http: httpx.AsyncClient,
        content: ContentSource | None = None,
        cache: PlaylistCache | None = None,
        leases: LeaseManager | None = None,
        sync_log: SyncLogStore | None = None,
    ):
        self.tokens = tokens
        self.http = http
        self.content = content or SqlContentSource(db)
        self.cache = cache or PlaylistCache(db)
        self.leases = leases or LeaseManager(db)
        self.sync_log = sync_log or SyncLogStore(db)

    async def sync_all(self, account_id: str, *, cancel: asyncio.Event | None = None) -> SyncResult:
        return await self._run(account_id, SyncResult(SCOPE_ALL), cancel)

    async def sync_country(self, account_id: str, country_code: str, *, cancel: asyncio.Event | None = None) -> SyncResult:
        return await self._run(account_id, SyncResult(SCOPE_COUNTRY, country_code=country_code.upper()), cancel)

    async def sync_category(
        self, account_id: str, country_code: str, category: str, *, cancel: asyncio.Event | None = None
    ) -> SyncResult:
        result = SyncResult(SCOPE_CATEGORY, country_code=country_code.upper(), category=category.lower())
        return await self._run(account_id, result, cancel)

    async def _run(self, account_id: str, result: SyncResult, cancel: asyncio.Event | None) -> SyncResult:
        with run_context():
            return await self._run_logged(account_id, result, cancel)

    async def _run_logged(self, account_id: str, result: SyncResult, cancel: asyncio.Event | None) -> SyncResult:
        meter = QuotaMeter()
        log.info("sync started", extra={"scope": result.scope, "country_code": result.country_code,
                                        "category": result.category})
        try:
            await self._sync_groups(account_id, result, meter, cancel)
        except AuthError as e:
            result.aborted = f"authentication failed: {e}"
            log.error("sync aborted: account must be re-linked", extra={"account_id": account_id, "reason": str(e)})
            raise
        except Exception as e:
            result.aborted = f"sync crashed: {e!r}"
            log.exception("sync crashed")
            raise
        finally:
            result.quota_units = meter.units
            self.sync_log.append(result)
            log.info(
                "sync finished",
                extra={"scope": result.scope, "status": result.status, "videos_added": result.videos_added,
                       "playlists_created": result.playlists_created, "playlists_updated": result.playlists_updated,
                       "errors": len(result.errors), "quota_units": result.quota_units},
            )
        return result

    async def _sync_groups(self, account_id: str, result: SyncResult, meter: QuotaMeter,
                           cancel: asyncio.Event | None) -> None:
        # fail fast before reading content when the account is unusable
        await self.tokens.ensure_valid_credential(account_id)

        async def token_source() -> str:
            return (await self.tokens.ensure_valid_credential(account_id)).access_token

        client = YouTubeClient(token_source, http=self.http, meter=meter)
        resolver = PlaylistResolver(client, self.cache, self.leases)
        reconciler = PlaylistReconciler(client)

        groups = group_items(self.content.eligible_items(result.country_code, result.category))
        for key, video_ids in groups.items():
            if cancel is not None and cancel.is_set():
                result.cancelled = True
                log.info("sync cancelled between groups", extra={"next_key": str(key)})
                break
            result.groups += 1
            await self._sync_group(key, video_ids, resolver, reconciler, result)

    async def _sync_group(self, key: GroupingKey, video_ids: List[str], resolver: PlaylistResolver,
                          reconciler: PlaylistReconciler, result: SyncResult) -> None:
        created = False
        try:
            resolution = await resolver.resolve(key)
            created = resolution.created
            if created:
                result.playlists_created += 1
            outcome = await reconciler.reconcile(resolution.playlist_id, video_ids)
        except QuotaStop as e:
            result.videos_added += e.partial.added
            result.skipped.extend(e.partial.skipped)
            if e.partial.added and not created:
                result.playlists_updated += 1
            self._group_failed(result, key, "quota", e)
            return
        except ResolveError as e:
            self._group_failed(result, key, _kind(e.cause), e.cause)
            return
        except YouTubeApiError as e:
            self._group_failed(result, key, _kind(e), e)
            return

        self.cache.touch(key)
        result.videos_added += outcome.added
        result.skipped.extend(outcome.skipped)
        if not created and outcome.added > 0:
            result.playlists_updated += 1
        log.info("group synced", extra={"sync_key": str(key), "created": created, "added": outcome.added,
                                        "skipped": len(outcome.skipped)})

    def _group_failed(self, result: SyncResult, key: GroupingKey, kind: str, err: Exception) -> None:
        log.warning("group failed", extra={"sync_key": str(key), "kind": kind, "reason": str(err)})
        result.errors.append(GroupError(key, kind, str(err)))


def _kind(err: Exception) -> str:
    if isinstance(err, QuotaExceededError):
        return "quota"
    if isinstance(err, LeaseUnavailable):
        return "lease"
    return "remote"


def build_orchestrator(db: Session, http: httpx.AsyncClient) -> SyncOrchestrator:
    return SyncOrchestrator(db, tokens=TokenManager(CredentialStore(db)), http=http)


async def run_sync(db: Session, *, scope: str, account_id: str,
                   country_code: str | None = None, category: str | None = None) -> SyncResult:
    """Entry point for the admin trigger: one httpx client per run."""
    async with httpx.AsyncClient(timeout=settings.YOUTUBE_HTTP_TIMEOUT_SECONDS) as http:
        orchestrator = build_orchestrator(db, http)
        if scope == SCOPE_ALL:
            return await orchestrator.sync_all(account_id)
        if scope == SCOPE_COUNTRY:
            return await orchestrator.sync_country(account_id, country_code)
        if scope == SCOPE_CATEGORY:
            return await orchestrator.sync_category(account_id, country_code, category)
    raise ValueError(f"unknown sync scope {scope!r}")
