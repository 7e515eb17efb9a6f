"""SQLModel database models and tables."""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
from sqlmodel import SQLModel, Field, Column, DateTime, JSON
from sqlalchemy import func


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Download(SQLModel, table=True):
    """A user's download, keyed by the torrent info hash.

    Belongs to exactly one user. name/magnet_url/tmdb_id record what the
    user asked for; the remaining status fields are overwritten by every
    reconciliation pass.
    """

    __tablename__ = "downloads"

    info_hash: str = Field(primary_key=True, max_length=64)
    user_id: str = Field(index=True, max_length=255)
    name: str = Field(default="Unknown", max_length=1000)
    magnet_url: str = Field(max_length=8000)
    category: str = Field(default="other", max_length=50)
    tmdb_id: Optional[str] = Field(default=None, max_length=50)
    save_path: Optional[str] = Field(default=None, max_length=1000)

    status: str = Field(default="queued", max_length=20)
    progress: int = Field(default=0)
    speed: str = Field(default="0 B/s", max_length=50)
    eta: str = Field(default="∞", max_length=50)
    size: str = Field(default="0 B", max_length=50)
    downloaded: str = Field(default="0 B", max_length=50)
    seeders: int = Field(default=0)
    leechers: int = Field(default=0)
    ratio: float = Field(default=0.0)
    orphaned: bool = Field(default=False)

    added_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), onupdate=func.now())
    )


class ActivityLog(SQLModel, table=True):
    """User action audit trail."""

    __tablename__ = "activity_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, max_length=255)
    action: str = Field(max_length=100)
    details: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )
