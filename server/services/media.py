"""Media catalog, streaming availability and torrent search.

TMDB responses are cached per namespace (trending, popular, search,
details) with the TTLs from settings. Streaming availability is optional:
without Watchmode the lookup degrades to {"available": False}. Indexer
searches through Jackett are cached in the "indexer" namespace.
"""

import re
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.cache import CacheService
from core.exceptions import AuthenticationError, UpstreamError, ValidationError
from core.logging import get_logger
from services.downloads import INFO_HASH_PATTERN, normalize_info_hash
from services.registry import ServiceRegistry
from services.reconciler import format_bytes

logger = get_logger(__name__)

MEDIA_TYPES = ("movie", "tv")
TIME_WINDOWS = ("day", "week")
SORT_FIELDS = ("seeders", "size", "name", "date")

_QUALITY_PATTERN = re.compile(r"\b(2160p|4k|1080p|720p|480p)\b", re.IGNORECASE)
_TRUSTED_TAGS = re.compile(r"\[(rartv|eztv|ettv|rarbg|yts|axxo)\]", re.IGNORECASE)
_TRUSTED_TRACKERS = {"RARBG", "EZTV", "YTS", "1337x"}


def _check_type(media_type: str) -> None:
    if media_type not in MEDIA_TYPES:
        raise ValidationError("Type must be movie or tv")


def transform_torrent_result(item: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize one Jackett result row."""
    title = item.get("Title") or ""
    tracker = item.get("Tracker") or "Unknown"
    seeders = item.get("Seeders") or 0
    peers = item.get("Peers") or 0
    magnet = item.get("MagnetUri") or ""
    hash_match = INFO_HASH_PATTERN.search(magnet)
    quality_match = _QUALITY_PATTERN.search(title)
    size = item.get("Size") or 0
    return {
        "title": title,
        "size": size,
        "size_formatted": format_bytes(size),
        "seeders": seeders,
        "leechers": peers,
        "magnet_url": magnet,
        "download_url": item.get("Link") or "",
        "info_hash": normalize_info_hash(hash_match.group(1)) if hash_match else "",
        "indexer": tracker,
        "category": item.get("CategoryDesc") or "",
        "publish_date": item.get("PublishDate") or "",
        "quality": quality_match.group(1).lower() if quality_match else "unknown",
        "trusted": bool(_TRUSTED_TAGS.search(title)) or tracker in _TRUSTED_TRACKERS,
    }


class MediaService:
    def __init__(self, registry: ServiceRegistry, cache: CacheService):
        self.registry = registry
        self.cache = cache

    async def _cached(self, namespace: str, category: str, key: str,
                      fetch: Callable[[], Awaitable[Any]]) -> Dict[str, Any]:
        lookup = await self.cache.get_or_fetch(namespace, category, key, fetch)
        return {"data": lookup.payload, "cached": lookup.cached, "cache_time": lookup.created_at}

    async def trending(self, media_type: str = "movie", time_window: str = "week") -> Dict[str, Any]:
        _check_type(media_type)
        if time_window not in TIME_WINDOWS:
            raise ValidationError("Time window must be day or week")
        tmdb = self.registry.get_service("tmdb")
        return await self._cached(
            "trending", media_type, time_window,
            lambda: tmdb.get(f"/trending/{media_type}/{time_window}"),
        )

    async def popular(self, media_type: str = "movie", page: int = 1) -> Dict[str, Any]:
        _check_type(media_type)
        if not 1 <= page <= 500:
            raise ValidationError("Page must be between 1 and 500")
        tmdb = self.registry.get_service("tmdb")
        return await self._cached(
            "popular", media_type, str(page),
            lambda: tmdb.get(f"/{media_type}/popular", params={"page": page}),
        )

    async def search(self, query: str, media_type: str = "movie", page: int = 1,
                     year: Optional[int] = None) -> Dict[str, Any]:
        _check_type(media_type)
        query = (query or "").strip()
        if not query:
            raise ValidationError("Search query is required")
        tmdb = self.registry.get_service("tmdb")
        params: Dict[str, Any] = {"query": query, "page": page}
        if year:
            params["year" if media_type == "movie" else "first_air_date_year"] = year
        return await self._cached(
            "search", media_type, f"{query.lower()}:{page}:{year or '-'}",
            lambda: tmdb.get(f"/search/{media_type}", params=params),
        )

    async def details(self, media_type: str, tmdb_id: int) -> Dict[str, Any]:
        """TMDB details with streaming availability attached when it can be had."""
        _check_type(media_type)
        tmdb = self.registry.get_service("tmdb")
        result = await self._cached(
            "details", media_type, str(tmdb_id),
            lambda: tmdb.get(f"/{media_type}/{tmdb_id}"),
        )
        data = dict(result["data"]) if isinstance(result["data"], dict) else {"raw": result["data"]}
        data["streaming_availability"] = await self.availability(media_type, tmdb_id)
        result["data"] = data
        return result

    async def availability(self, media_type: str, tmdb_id: int) -> Dict[str, Any]:
        """Streaming sources. Never fails the caller for a missing or broken Watchmode."""
        _check_type(media_type)
        if not self.registry.is_service_available("watchmode"):
            return {"available": False, "sources": []}

        watchmode = self.registry.get_service("watchmode")
        try:
            result = await self._cached(
                "availability", media_type, str(tmdb_id),
                lambda: watchmode.get("/title/sources", params={
                    "source_ids": f"tmdb:{tmdb_id}",
                    "source_type": media_type,
                }),
            )
        except (AuthenticationError, UpstreamError) as e:
            logger.warning("Streaming availability lookup failed", tmdb_id=tmdb_id, error=e.message)
            return {"available": False, "sources": [], "error": e.message}

        sources = result["data"] if isinstance(result["data"], list) else []
        return {"available": bool(sources), "sources": sources}

    async def search_torrents(
        self,
        query: str,
        category: Optional[str] = None,
        min_seeders: int = 1,
        max_results: int = 50,
        sort_by: str = "seeders",
        sort_order: str = "desc",
    ) -> Dict[str, Any]:
        query = (query or "").strip()
        if not query:
            raise ValidationError("Search query is required")
        if sort_by not in SORT_FIELDS:
            raise ValidationError(f"Invalid sort field: {sort_by}")

        jackett = self.registry.get_service("jackett")
        params = {"Query": query, "Category": category or "2000,5000"}
        result = await self._cached(
            "indexer", "search", f"{query.lower()}:{params['Category']}",
            lambda: jackett.get("/api/v2.0/indexers/all/results", params=params),
        )

        payload = result["data"] if isinstance(result["data"], dict) else {}
        rows = payload.get("Results") or []
        results = [transform_torrent_result(row) for row in rows]
        results = [r for r in results if r["seeders"] >= min_seeders]
        results = self._sort(results, sort_by, sort_order == "desc")

        seen = set()
        unique: List[Dict[str, Any]] = []
        for item in results:
            if item["info_hash"]:
                if item["info_hash"] in seen:
                    continue
                seen.add(item["info_hash"])
            unique.append(item)
        unique = unique[:max_results]

        return {
            "results": unique,
            "total_results": len(unique),
            "query": query,
            "cached": result["cached"],
        }

    @staticmethod
    def _sort(results: List[Dict[str, Any]], sort_by: str, descending: bool) -> List[Dict[str, Any]]:
        keys = {
            "seeders": lambda r: r["seeders"],
            "size": lambda r: r["size"],
            "name": lambda r: r["title"].lower(),
            "date": lambda r: r["publish_date"],
        }
        return sorted(results, key=keys[sort_by], reverse=descending)
