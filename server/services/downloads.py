"""Download orchestration: torrent client + local rows + live updates."""

import base64
import binascii
import re
from typing import Any, Dict, List, Optional, Protocol

from core.config import Settings
from core.exceptions import ConflictError, NotFoundError, ValidationError
from core.logging import get_logger
from models.database import Download
from models.downloads import DownloadStatus
from services.broadcast_hub import BroadcastHub
from services.qbittorrent import CONTROL_ENDPOINTS, QBittorrentClient
from services.reconciler import Reconciler, format_bytes, format_speed
from services.registry import ServiceRegistry

logger = get_logger(__name__)

INFO_HASH_PATTERN = re.compile(r"xt=urn:btih:([a-fA-F0-9]{40}|[a-zA-Z2-7]{32})(?![a-zA-Z0-9])")
CATEGORIES = ("movie", "tv", "other")
LIST_FILTERS = ("all", "downloading", "seeding", "completed", "paused", "active", "inactive", "errored")

# Status written locally right after a control action, until the next pass.
ACTION_STATUS = {
    "pause": DownloadStatus.PAUSED,
    "resume": DownloadStatus.DOWNLOADING,
}


class DownloadRepository(Protocol):
    async def find_downloads(self, user_id: str, **filters: Any) -> List[Download]: ...
    async def get_download(self, info_hash: str) -> Optional[Download]: ...
    async def create_download(self, download: Download) -> Download: ...
    async def update_download(self, info_hash: str, fields: Dict[str, Any]) -> Optional[Download]: ...
    async def delete_download(self, info_hash: str) -> bool: ...
    async def log_activity(self, user_id: str, action: str,
                           details: Optional[Dict[str, Any]] = None) -> bool: ...
    async def get_activity(self, user_id: str, limit: int = 100) -> List[Dict[str, Any]]: ...


def normalize_info_hash(raw: str) -> str:
    """Lowercase 40-char hex form. Base32 (32 chars) is decoded, qBittorrent only reports hex."""
    if len(raw) == 32:
        try:
            return base64.b32decode(raw.upper()).hex()
        except binascii.Error:
            raise ValidationError("Invalid magnet URL - malformed base32 info hash")
    return raw.lower()


def extract_info_hash(magnet_url: str) -> str:
    """Info hash from a magnet link as lowercase hex. Raises ValidationError."""
    if not magnet_url or not magnet_url.startswith("magnet:?"):
        raise ValidationError("Invalid magnet URL")
    match = INFO_HASH_PATTERN.search(magnet_url)
    if match is None:
        raise ValidationError("Invalid magnet URL - cannot extract info hash")
    return normalize_info_hash(match.group(1))


def download_to_dict(download: Download) -> Dict[str, Any]:
    return download.model_dump(mode="json")


class DownloadService:
    """Per-user downloads backed by the torrent client."""

    def __init__(self, settings: Settings, store: DownloadRepository,
                 registry: ServiceRegistry, reconciler: Reconciler, hub: BroadcastHub):
        self.settings = settings
        self.store = store
        self.registry = registry
        self.reconciler = reconciler
        self.hub = hub

    def _client(self) -> QBittorrentClient:
        return self.registry.get_service("qbittorrent")

    def save_path_for(self, category: str) -> str:
        if category == "movie":
            return self.settings.movies_path
        if category == "tv":
            return self.settings.tv_path
        return self.settings.download_path

    async def _owned(self, user_id: str, info_hash: str) -> Download:
        download = await self.store.get_download(info_hash.lower())
        if download is None or download.user_id != user_id:
            raise NotFoundError("Download not found or access denied")
        return download

    async def add_torrent(
        self,
        user_id: str,
        magnet_url: str,
        title: Optional[str] = None,
        category: str = "other",
        save_path: Optional[str] = None,
        tmdb_id: Optional[str] = None,
        priority: int = 1,
        sequential_download: bool = False,
        first_last_piece_prio: bool = False,
    ) -> Download:
        if category not in CATEGORIES:
            raise ValidationError(f"Invalid category: {category}")
        if not 1 <= priority <= 7:
            raise ValidationError("Priority must be between 1 and 7")
        info_hash = extract_info_hash(magnet_url)

        if await self.store.get_download(info_hash) is not None:
            raise ConflictError("Torrent already exists in downloads")

        client = self._client()
        final_path = save_path or self.save_path_for(category)
        await client.add_torrent(
            magnet_url,
            save_path=final_path,
            category=category,
            priority=priority,
            sequential_download=sequential_download,
            first_last_piece_prio=first_last_piece_prio,
        )

        download = await self.store.create_download(Download(
            info_hash=info_hash,
            user_id=user_id,
            name=title or "Unknown",
            magnet_url=magnet_url,
            category=category,
            tmdb_id=tmdb_id,
            save_path=final_path,
            status=DownloadStatus.QUEUED.value,
        ))
        logger.info("Torrent added", user_id=user_id, info_hash=info_hash, category=category)

        await self.hub.broadcast_download_update(
            user_id, {"download": download_to_dict(download)}, event="download_added"
        )
        await self.store.log_activity(user_id, "download_added", {"hash": info_hash, "name": download.name})
        return download

    async def list_downloads(
        self,
        user_id: str,
        filter: str = "all",
        category: Optional[str] = None,
        sort: Optional[str] = "added_on",
        reverse: bool = True,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """One reconciliation pass for user_id.

        Orphans are only computed from an unfiltered list; a filtered list
        leaves out owned torrents that still exist.
        """
        if filter not in LIST_FILTERS:
            raise ValidationError(f"Invalid filter: {filter}")

        torrents = await self._client().list_torrents(
            filter=filter, category=category, sort=sort, reverse=reverse, limit=limit, offset=offset,
        )
        result = await self.reconciler.reconcile(user_id, torrents)

        for view in result.changes:
            await self.hub.broadcast_download_update(user_id, {
                "hash": view.hash,
                "status": view.status.value,
                "progress": view.progress,
                "speed": view.dlspeed_formatted,
            })

        complete_list = filter == "all" and not category and not limit and not offset
        orphaned = result.orphaned if complete_list else []
        if orphaned:
            await self.reconciler.mark_orphaned(user_id, [o.hash for o in orphaned])
            logger.info("Downloads missing from torrent client", user_id=user_id, count=len(orphaned))

        return {
            "torrents": [v.model_dump(mode="json") for v in result.views],
            "orphaned": [o.model_dump(mode="json") for o in orphaned],
            "total": len(result.views),
            "filter": filter,
            "category": category,
        }

    async def control_download(self, user_id: str, info_hash: str, action: str,
                               delete_files: bool = False) -> Dict[str, Any]:
        if action not in CONTROL_ENDPOINTS:
            raise ValidationError(f"Unknown torrent action: {action}")
        download = await self._owned(user_id, info_hash)

        await self._client().control(download.info_hash, action, delete_files=delete_files)

        if action == "delete":
            await self.store.delete_download(download.info_hash)
            status = "deleted"
        else:
            new_status = ACTION_STATUS.get(action)
            status = new_status.value if new_status else download.status
            await self.store.update_download(download.info_hash, {"status": status})

        await self.hub.broadcast_download_update(
            user_id,
            {"hash": download.info_hash, "action": action, "status": status},
            event="download_updated",
        )
        await self.store.log_activity(user_id, f"download_{action}", {"hash": download.info_hash})
        return {"hash": download.info_hash, "action": action, "status": status}

    async def delete_download(self, user_id: str, info_hash: str, delete_files: bool = False) -> Dict[str, Any]:
        return await self.control_download(user_id, info_hash, "delete", delete_files=delete_files)

    async def get_details(self, user_id: str, info_hash: str) -> Dict[str, Any]:
        download = await self._owned(user_id, info_hash)
        details = await self._client().details(download.info_hash)
        files = details.get("files") or []
        return {
            "hash": download.info_hash,
            "download": download_to_dict(download),
            "properties": details.get("properties"),
            "trackers": details.get("trackers"),
            "files": [
                {**f, "size_formatted": format_bytes(f.get("size", 0)),
                 "progress": round(f.get("progress", 0) * 100)}
                for f in files
            ],
        }

    async def transfer_info(self) -> Dict[str, Any]:
        info = await self._client().transfer_info()
        return {
            "dl_info_speed": format_speed(info.get("dl_info_speed", 0)),
            "up_info_speed": format_speed(info.get("up_info_speed", 0)),
            "dl_info_data": format_bytes(info.get("dl_info_data", 0)),
            "up_info_data": format_bytes(info.get("up_info_data", 0)),
            "dl_rate_limit": info.get("dl_rate_limit"),
            "up_rate_limit": info.get("up_rate_limit"),
            "dht_nodes": info.get("dht_nodes"),
            "connection_status": info.get("connection_status"),
        }

    async def history(self, user_id: str, limit: int = 100) -> Dict[str, Any]:
        """Stored downloads (orphans included) and recent activity. No upstream call."""
        downloads = await self.store.find_downloads(user_id)
        return {
            "downloads": [download_to_dict(d) for d in downloads],
            "activity": await self.store.get_activity(user_id, limit=limit),
        }

    async def summary(self, user_id: str) -> Dict[str, Any]:
        """Counts per status from the stored rows, for the dashboard."""
        downloads = await self.store.find_downloads(user_id)
        counts: Dict[str, int] = {}
        for download in downloads:
            counts[download.status] = counts.get(download.status, 0) + 1
        return {
            "total": len(downloads),
            "by_status": counts,
            "orphaned": sum(1 for d in downloads if d.orphaned),
        }
