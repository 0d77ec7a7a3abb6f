from __future__ import annotations
import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from playlist_sync.core.config import settings
from playlist_sync.db.models import SyncLease

log = logging.getLogger("playlist_sync.leases")


class LeaseUnavailable(Exception):
    def __init__(self, key: str, waited: float):
        super().__init__(f"another sync holds the lease for {key} (waited {waited:.0f}s)")
        self.key = key


class LeaseManager:
    """
    Expiring per-key leases in the database, shared by every process that
    uses the same DB. A lease row is taken by insert (unique key) or by
    overwriting an expired row; release deletes our own row only.
    """

    def __init__(
        self,
        db: Session,
        *,
        ttl_seconds: int | None = None,
        wait_seconds: float | None = None,
        poll_interval: float = 0.5,
        holder: str | None = None,
    ):
        self.db = db
        self.ttl = timedelta(seconds=ttl_seconds if ttl_seconds is not None else settings.LEASE_TTL_SECONDS)
        self.wait_seconds = wait_seconds if wait_seconds is not None else settings.LEASE_WAIT_SECONDS
        self.poll_interval = poll_interval
        self.holder = holder or uuid.uuid4().hex[:16]

    def try_acquire(self, key: str) -> bool:
        now = datetime.utcnow()
        self.db.add(SyncLease(lease_key=key, holder=self.holder, expires_at=now + self.ttl))
        try:
            self.db.commit()
            return True
        except IntegrityError:
            self.db.rollback()

        # held already; take it over if it expired (or is ours)
        res = self.db.execute(
            update(SyncLease)
            .where(SyncLease.lease_key == key)
            .where(or_(SyncLease.expires_at < now, SyncLease.holder == self.holder))
            .values(holder=self.holder, expires_at=now + self.ttl)
        )
        self.db.commit()
        return res.rowcount == 1

    def release(self, key: str) -> None:
        self.db.query(SyncLease).filter(
            SyncLease.lease_key == key, SyncLease.holder == self.holder
        ).delete(synchronize_session=False)
        self.db.commit()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        start = time.monotonic()
        while not self.try_acquire(key):
            waited = time.monotonic() - start
            if waited >= self.wait_seconds:
                raise LeaseUnavailable(key, waited)
            await asyncio.sleep(self.poll_interval)
        log.debug("lease acquired", extra={"lease_key": key, "holder": self.holder})
        try:
            yield
        finally:
            self.release(key)
