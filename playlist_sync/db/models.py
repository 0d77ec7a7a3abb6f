from __future__ import annotations
from datetime import datetime
from sqlalchemy import BigInteger, Boolean, Integer, String, DateTime, Text, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column
from .session import Base

class OAuthCredential(Base):
    """Linked YouTube account. Tokens are Fernet ciphertexts."""
    __tablename__ = "youtube_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    account_id: Mapped[str] = mapped_column(String(255), nullable=False)

    access_token_enc: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token_enc: Mapped[str] = mapped_column(Text, nullable=False)

    expires_at_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    scopes_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # list as JSON text

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("account_id", name="uq_youtube_tokens_account"),
    )


class PlaylistCacheRow(Base):
    __tablename__ = "youtube_playlists"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    country_code: Mapped[str] = mapped_column(String(8), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    youtube_playlist_id: Mapped[str] = mapped_column(String(64), nullable=False)
    playlist_name: Mapped[str] = mapped_column(Text, nullable=False)
    playlist_url: Mapped[str] = mapped_column(Text, nullable=False)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("country_code", "category", name="uq_youtube_playlists_key"),
        UniqueConstraint("youtube_playlist_id", name="uq_youtube_playlists_remote_id"),
    )


class SyncLog(Base):
    """Append-only audit row, one per orchestrator run."""
    __tablename__ = "youtube_sync_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sync_type: Mapped[str] = mapped_column(String(16), nullable=False)  # all | country | category
    country_code: Mapped[str | None] = mapped_column(String(8), nullable=True)
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    videos_synced: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    playlists_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    playlists_updated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    quota_units: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # success | partial | failed
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    synced_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_youtube_sync_logs_synced_at", "synced_at"),
    )


class SyncLease(Base):
    __tablename__ = "youtube_sync_leases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lease_key: Mapped[str] = mapped_column(String(128), nullable=False)
    holder: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("lease_key", name="uq_youtube_sync_leases_key"),
    )


class VideoSubmission(Base):
    # Owned by the content platform; only the columns the sync reads are mapped.
    __tablename__ = "video_submissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    country_code: Mapped[str] = mapped_column(String(8), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    youtube_video_id: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="pending", nullable=False)
    youtube_sync_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_video_submissions_sync", "status", "youtube_sync_enabled", "country_code", "category"),
    )
