"""Pydantic models for torrent transfers and the merged per-user view.

TorrentInfo is the boundary envelope for one row of the torrent client's
live list. Its state string is native client vocabulary and must be mapped
through services.reconciler.map_torrent_state before it reaches a caller.
"""

from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field, field_validator


class DownloadStatus(str, Enum):
    """Closed status vocabulary exposed to API clients."""
    QUEUED = "queued"
    DOWNLOADING = "downloading"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"
    UNKNOWN = "unknown"


class TorrentInfo(BaseModel):
    """Live transfer as reported by the torrent client."""
    model_config = {"extra": "ignore"}

    hash: str
    name: str = ""
    state: str = ""
    progress: float = 0.0  # 0..1
    size: int = 0
    dlspeed: int = 0
    upspeed: int = 0
    eta: int = 0
    num_seeds: int = 0
    num_leechs: int = 0
    ratio: float = 0.0
    priority: int = 0
    category: str = ""
    save_path: str = ""
    added_on: int = 0
    completed_on: int = 0
    downloaded: int = 0
    uploaded: int = 0

    @field_validator("hash")
    @classmethod
    def normalize_hash(cls, v: str) -> str:
        return v.lower()


class DownloadView(BaseModel):
    """One entry of a user's merged download list.

    Display fields come from the live transfer; requested_name, tmdb_id,
    magnet_url and added_at are the user's original intent and are never
    overwritten by the torrent client's values.
    """
    hash: str
    name: str
    status: DownloadStatus
    state: str
    progress: int  # percent
    size: int
    size_formatted: str
    dlspeed: int
    dlspeed_formatted: str
    upspeed: int
    upspeed_formatted: str
    eta: int
    eta_formatted: str
    num_seeds: int
    num_leechs: int
    ratio: float
    priority: int
    category: str
    save_path: str
    added_on: int
    completed_on: int
    downloaded: int
    downloaded_formatted: str
    uploaded: int
    uploaded_formatted: str

    user_id: str
    requested_name: str
    tmdb_id: Optional[str] = None
    magnet_url: Optional[str] = None
    added_at: Optional[datetime] = None


class OrphanedDownload(BaseModel):
    """A local download with no matching live transfer after a pass."""
    hash: str
    name: str
    status: str
    progress: int
    user_id: str


class ReconcileResult(BaseModel):
    """Output of one reconciliation pass for one user."""
    views: List[DownloadView] = Field(default_factory=list)
    orphaned: List[OrphanedDownload] = Field(default_factory=list)
    changes: List[DownloadView] = Field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "torrents": [v.model_dump(mode="json") for v in self.views],
            "orphaned": [o.model_dump(mode="json") for o in self.orphaned],
            "total": len(self.views),
        }
