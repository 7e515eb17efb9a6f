"""Merge the torrent client's live list with a user's local downloads.

The store's download rows for one user are the ownership filter: a live
transfer whose hash the user does not own is skipped, never shown and never
used to create a row. Owned transfers are merged into a DownloadView and
the row is overwritten with the live status on every pass, changed or not.
Rows without a live transfer come back as orphans; deleting them is the
caller's decision.

Native torrent-client states stop here. map_torrent_state is total, so an
unrecognized state degrades to DownloadStatus.UNKNOWN instead of raising.
"""

import asyncio
from collections import defaultdict
from typing import Any, Awaitable, Dict, Iterable, List, Optional, Protocol, TypeVar

from core.logging import get_logger
from models.database import Download
from models.downloads import (
    DownloadStatus,
    DownloadView,
    OrphanedDownload,
    ReconcileResult,
    TorrentInfo,
)

logger = get_logger(__name__)

T = TypeVar("T")

# qBittorrent reports this ETA for "never".
INFINITE_ETA = 8640000

TORRENT_STATE_MAP: Dict[str, DownloadStatus] = {
    "downloading": DownloadStatus.DOWNLOADING,
    "metaDL": DownloadStatus.DOWNLOADING,
    "forcedDL": DownloadStatus.DOWNLOADING,
    "forcedMetaDL": DownloadStatus.DOWNLOADING,
    "stalledDL": DownloadStatus.DOWNLOADING,
    "checkingDL": DownloadStatus.DOWNLOADING,
    "uploading": DownloadStatus.COMPLETED,
    "stalledUP": DownloadStatus.COMPLETED,
    "forcedUP": DownloadStatus.COMPLETED,
    "queuedUP": DownloadStatus.COMPLETED,
    "checkingUP": DownloadStatus.COMPLETED,
    "pausedDL": DownloadStatus.PAUSED,
    "pausedUP": DownloadStatus.PAUSED,
    "stoppedDL": DownloadStatus.PAUSED,
    "stoppedUP": DownloadStatus.PAUSED,
    "error": DownloadStatus.ERROR,
    "missingFiles": DownloadStatus.ERROR,
    "queuedDL": DownloadStatus.QUEUED,
    "allocating": DownloadStatus.QUEUED,
    "checkingResumeData": DownloadStatus.QUEUED,
    "moving": DownloadStatus.QUEUED,
}


class DownloadStore(Protocol):
    """Subset of core.database.Database the reconciler writes through."""

    async def find_downloads(self, user_id: str, **filters: Any) -> List[Download]: ...

    async def update_download(self, info_hash: str, fields: Dict[str, Any]) -> Optional[Download]: ...


def map_torrent_state(state: str) -> DownloadStatus:
    status = TORRENT_STATE_MAP.get(state)
    if status is None:
        logger.warning("Unknown torrent state", state=state)
        return DownloadStatus.UNKNOWN
    return status


def format_bytes(num_bytes: float) -> str:
    """Human readable size, 1024 based: 1536 -> '1.5 KB'."""
    if not num_bytes or num_bytes <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    value = float(num_bytes)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {units[i]}"


def format_speed(bytes_per_second: float) -> str:
    return f"{format_bytes(bytes_per_second)}/s"


def format_eta(seconds: int) -> str:
    if seconds == INFINITE_ETA or seconds < 0:
        return "∞"
    if seconds == 0:
        return "0s"
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def merge_view(torrent: TorrentInfo, download: Download, status: DownloadStatus) -> DownloadView:
    """Display fields from the live transfer, intent fields from the local row."""
    return DownloadView(
        hash=torrent.hash,
        name=torrent.name or download.name,
        status=status,
        state=torrent.state,
        progress=round(torrent.progress * 100),
        size=torrent.size,
        size_formatted=format_bytes(torrent.size),
        dlspeed=torrent.dlspeed,
        dlspeed_formatted=format_speed(torrent.dlspeed),
        upspeed=torrent.upspeed,
        upspeed_formatted=format_speed(torrent.upspeed),
        eta=torrent.eta,
        eta_formatted=format_eta(torrent.eta),
        num_seeds=torrent.num_seeds,
        num_leechs=torrent.num_leechs,
        ratio=round(torrent.ratio, 2),
        priority=torrent.priority,
        category=download.category,
        save_path=torrent.save_path,
        added_on=torrent.added_on,
        completed_on=torrent.completed_on,
        downloaded=torrent.downloaded,
        downloaded_formatted=format_bytes(torrent.downloaded),
        uploaded=torrent.uploaded,
        uploaded_formatted=format_bytes(torrent.uploaded),
        user_id=download.user_id,
        requested_name=download.name,
        tmdb_id=download.tmdb_id,
        magnet_url=download.magnet_url,
        added_at=download.added_at,
    )


def status_fields(view: DownloadView) -> Dict[str, Any]:
    """Columns overwritten on the local row by a pass."""
    return {
        "status": view.status.value,
        "progress": view.progress,
        "speed": view.dlspeed_formatted,
        "eta": view.eta_formatted,
        "size": view.size_formatted,
        "downloaded": view.downloaded_formatted,
        "seeders": view.num_seeds,
        "leechers": view.num_leechs,
        "ratio": view.ratio,
        "orphaned": False,
    }


def _log_abandoned(task: "asyncio.Task[Any]") -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error("Reconciliation finished with an error after its caller left",
                     error=str(task.exception()))


class Reconciler:
    """Per-user reconciliation against a download store.

    Passes for the same user are serialized with a per-user lock; passes for
    different users never wait on each other. A pass runs as its own task
    shielded from the caller: a cancelled caller stops waiting, but the
    pass keeps the lock until its write-back is done.

    One lock is kept per user seen and never dropped; the set is bounded by
    the number of accounts.
    """

    def __init__(self, store: DownloadStore):
        self.store = store
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def _run_shielded(self, coro: Awaitable[T]) -> T:
        task = asyncio.ensure_future(coro)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            task.add_done_callback(_log_abandoned)
            raise

    async def reconcile(self, user_id: str, torrents: Iterable[TorrentInfo]) -> ReconcileResult:
        return await self._run_shielded(self._reconcile(user_id, list(torrents)))

    async def _reconcile(self, user_id: str, torrents: List[TorrentInfo]) -> ReconcileResult:
        async with self._locks[user_id]:
            owned = {d.info_hash.lower(): d for d in await self.store.find_downloads(user_id)}

            views: List[DownloadView] = []
            changes: List[DownloadView] = []
            updates: Dict[str, Dict[str, Any]] = {}
            seen = set()

            for torrent in torrents:
                download = owned.get(torrent.hash)
                if download is None or torrent.hash in seen:
                    continue
                seen.add(torrent.hash)

                view = merge_view(torrent, download, map_torrent_state(torrent.state))
                views.append(view)
                updates[torrent.hash] = status_fields(view)
                if view.status.value != download.status or view.progress != download.progress:
                    changes.append(view)

            await self._write_back(updates)

            orphaned = [
                OrphanedDownload(
                    hash=info_hash,
                    name=download.name,
                    status=download.status,
                    progress=download.progress,
                    user_id=download.user_id,
                )
                for info_hash, download in owned.items()
                if info_hash not in seen
            ]

        logger.debug(
            "Reconciled downloads",
            user_id=user_id,
            merged=len(views),
            changed=len(changes),
            orphaned=len(orphaned),
        )
        return ReconcileResult(views=views, orphaned=orphaned, changes=changes)

    async def mark_orphaned(self, user_id: str, hashes: Iterable[str]) -> int:
        """Flag the user's rows as orphaned. Rows owned by someone else are left alone."""
        return await self._run_shielded(self._mark_orphaned(user_id, [h.lower() for h in hashes]))

    async def _mark_orphaned(self, user_id: str, hashes: List[str]) -> int:
        async with self._locks[user_id]:
            owned = {d.info_hash.lower() for d in await self.store.find_downloads(user_id)}
            targets = [h for h in hashes if h in owned]
            await self._write_back({h: {"orphaned": True} for h in targets})
        return len(targets)

    async def _write_back(self, updates: Dict[str, Dict[str, Any]]) -> None:
        for info_hash, fields in updates.items():
            await self.store.update_download(info_hash, fields)
