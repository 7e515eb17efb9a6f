"""qBittorrent Web API client (v2)."""

import asyncio
from typing import Any, Dict, List, Optional

from core.exceptions import UpstreamError, ValidationError
from core.logging import get_logger
from models.downloads import TorrentInfo
from services.session_client import SessionClient

logger = get_logger(__name__)

CONTROL_ENDPOINTS = {
    "pause": "/api/v2/torrents/pause",
    "resume": "/api/v2/torrents/resume",
    "delete": "/api/v2/torrents/delete",
    "recheck": "/api/v2/torrents/recheck",
    "increasePrio": "/api/v2/torrents/increasePrio",
    "decreasePrio": "/api/v2/torrents/decreasePrio",
    "topPrio": "/api/v2/torrents/topPrio",
    "bottomPrio": "/api/v2/torrents/bottomPrio",
}


class QBittorrentClient(SessionClient):
    """Session-cookie client for the torrent client."""

    def __init__(self, base_url: str, username: str, password: str, **kwargs: Any):
        kwargs.setdefault("login_path", "/api/v2/auth/login")
        kwargs.setdefault("cookie_name", "SID")
        kwargs.setdefault("success_marker", "Ok.")
        super().__init__("qbittorrent", base_url, username, password, **kwargs)

    async def list_torrents(
        self,
        filter: str = "all",
        category: Optional[str] = None,
        sort: Optional[str] = None,
        reverse: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
        hashes: Optional[List[str]] = None,
    ) -> List[TorrentInfo]:
        """Live transfer list. Never cached."""
        params: Dict[str, Any] = {}
        if filter != "all":
            params["filter"] = filter
        if category:
            params["category"] = category
        if sort:
            params["sort"] = sort
        if reverse:
            params["reverse"] = "true"
        if limit:
            params["limit"] = limit
        if offset:
            params["offset"] = offset
        if hashes:
            params["hashes"] = "|".join(hashes)

        rows = await self.get("/api/v2/torrents/info", params=params or None)
        if not isinstance(rows, list):
            raise UpstreamError(self.name, "Unexpected torrent list payload")
        torrents = []
        for row in rows:
            try:
                torrents.append(TorrentInfo.model_validate(row))
            except ValueError as e:
                logger.warning("Skipping malformed torrent row", error=str(e))
        return torrents

    async def add_torrent(
        self,
        magnet_url: str,
        save_path: str,
        category: str = "other",
        priority: int = 1,
        sequential_download: bool = False,
        first_last_piece_prio: bool = False,
    ) -> None:
        data = {
            "urls": magnet_url,
            "savepath": save_path,
            "category": category,
            "priority": str(priority),
            "sequentialDownload": str(sequential_download).lower(),
            "firstLastPiecePrio": str(first_last_piece_prio).lower(),
        }
        result = await self.post("/api/v2/torrents/add", data=data)
        if isinstance(result, str) and result.strip() == "Fails.":
            raise UpstreamError(self.name, "Torrent was rejected")

    async def control(self, info_hash: str, action: str, delete_files: bool = False) -> None:
        """Run one control action against a single torrent."""
        endpoint = CONTROL_ENDPOINTS.get(action)
        if endpoint is None:
            raise ValidationError(f"Unknown torrent action: {action}")
        data = {"hashes": info_hash}
        if action == "delete":
            data["deleteFiles"] = str(delete_files).lower()
        await self.post(endpoint, data=data)

    async def properties(self, info_hash: str) -> Dict[str, Any]:
        return await self.get("/api/v2/torrents/properties", params={"hash": info_hash})

    async def trackers(self, info_hash: str) -> List[Dict[str, Any]]:
        return await self.get("/api/v2/torrents/trackers", params={"hash": info_hash})

    async def files(self, info_hash: str) -> List[Dict[str, Any]]:
        return await self.get("/api/v2/torrents/files", params={"hash": info_hash})

    async def details(self, info_hash: str) -> Dict[str, Any]:
        """Properties, trackers and files fetched concurrently."""
        properties, trackers, files = await asyncio.gather(
            self.properties(info_hash),
            self.trackers(info_hash),
            self.files(info_hash),
        )
        return {"properties": properties, "trackers": trackers, "files": files}

    async def transfer_info(self) -> Dict[str, Any]:
        return await self.get("/api/v2/transfer/info")

    async def preferences(self) -> Dict[str, Any]:
        return await self.get("/api/v2/app/preferences", cache=True, cache_ttl=300)
