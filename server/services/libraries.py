"""Jellyfin libraries: listing, browsing, search, stats, scans and cleanup."""

import asyncio
from typing import Any, Dict, List, Optional

from core.cache import CacheService
from core.logging import get_logger
from services.registry import ServiceRegistry

logger = get_logger(__name__)

ITEM_TYPES = "Movie,Series,Episode"
STAT_TYPES = {"movies": "Movie", "tv_shows": "Series", "music": "MusicAlbum"}


def summarize_libraries(folders: List[Dict[str, Any]]) -> Dict[str, Any]:
    libraries = [
        {"name": f.get("Name"), "type": f.get("CollectionType") or "mixed", "id": f.get("ItemId")}
        for f in folders
    ]
    return {"total": len(libraries), "libraries": libraries}


class LibraryService:
    """Library listings are cached in the "libraries" namespace; item queries are not."""

    def __init__(self, registry: ServiceRegistry, cache: CacheService):
        self.registry = registry
        self.cache = cache

    async def libraries(self) -> Dict[str, Any]:
        jellyfin = self.registry.get_service("jellyfin")
        folders = await jellyfin.get(
            "/Library/VirtualFolders",
            cache=True,
            cache_ttl=self.cache.ttl_for("libraries"),
            namespace="libraries",
        )
        return summarize_libraries(folders if isinstance(folders, list) else [])

    async def items(self, library_id: str, start_index: int = 0, limit: int = 100) -> Any:
        return await self.registry.get_service("jellyfin").get("/Items", params={
            "parentId": library_id,
            "startIndex": start_index,
            "limit": limit,
            "sortBy": "SortName",
            "sortOrder": "Ascending",
        })

    async def item(self, item_id: str) -> Any:
        return await self.registry.get_service("jellyfin").get(f"/Items/{item_id}")

    async def search(self, query: str, limit: int = 50) -> Any:
        return await self.registry.get_service("jellyfin").get("/Items", params={
            "searchTerm": query,
            "limit": limit,
            "recursive": "true",
            "includeItemTypes": ITEM_TYPES,
        })

    async def recently_added(self, limit: int = 20) -> Any:
        return await self.registry.get_service("jellyfin").get("/Items/Latest", params={
            "limit": limit,
            "includeItemTypes": ITEM_TYPES,
        })

    async def refresh(self, library_id: str) -> Dict[str, Any]:
        jellyfin = self.registry.get_service("jellyfin")
        await jellyfin.request("POST", f"/Items/{library_id}/Refresh")
        await self.cache.clear("libraries")
        logger.info("Library refresh requested", library_id=library_id)
        return {"id": library_id, "status": "refreshing"}

    async def server_info(self) -> Dict[str, Any]:
        info = await self.registry.get_service("jellyfin").get(
            "/System/Info",
            cache=True,
            cache_ttl=self.cache.ttl_for("libraries"),
            namespace="libraries",
        )
        return {
            "server_name": info.get("ServerName"),
            "version": info.get("Version"),
            "id": info.get("Id"),
            "operating_system": info.get("OperatingSystem"),
            "status": "online",
        }

    async def stats(self) -> Dict[str, int]:
        """Item totals per media type."""
        jellyfin = self.registry.get_service("jellyfin")

        async def count(item_type: str) -> int:
            result = await jellyfin.get("/Items", params={
                "includeItemTypes": item_type,
                "recursive": "true",
                "limit": 0,
            })
            return result.get("TotalRecordCount", 0) if isinstance(result, dict) else 0

        totals = await asyncio.gather(*(count(t) for t in STAT_TYPES.values()))
        return dict(zip(STAT_TYPES, totals))

    async def scan(self, library_id: Optional[str] = None) -> Dict[str, Any]:
        """Scan one library, or every library when no id is given."""
        if library_id:
            return await self.refresh(library_id)
        await self.registry.get_service("jellyfin").request("POST", "/Library/Refresh")
        await self.cache.clear("libraries")
        logger.info("Full library scan requested")
        return {"id": None, "status": "refreshing"}

    async def scan_status(self) -> Dict[str, Any]:
        tasks = await self.registry.get_service("jellyfin").get("/ScheduledTasks")
        scans = [
            {
                "id": t.get("Id"),
                "name": t.get("Name"),
                "state": t.get("State"),
                "progress": t.get("CurrentProgressPercentage") or 0,
            }
            for t in (tasks if isinstance(tasks, list) else [])
            if "Scan" in (t.get("Name") or "") or "RefreshLibrary" in (t.get("Key") or "")
        ]
        return {"scans": scans, "is_scanning": any(s["state"] == "Running" for s in scans)}

    async def clean(self, library_id: str) -> Dict[str, Any]:
        """Ask Jellyfin to drop entries whose media files are gone."""
        await self.registry.get_service("jellyfin").request(
            "POST", "/Library/DeleteMediaFiles", json={"ids": [library_id]}
        )
        await self.cache.clear("libraries")
        logger.info("Library clean requested", library_id=library_id)
        return {"id": library_id, "status": "cleaned"}
