"""Aggregate dashboard across independently failing services."""

import asyncio
from typing import Any, Awaitable, Callable, Dict

from core.exceptions import AuthenticationError, ConfigurationError, UpstreamError
from core.logging import get_logger
from services.containers import ContainerService
from services.downloads import DownloadService
from services.libraries import LibraryService

logger = get_logger(__name__)


class DashboardService:
    """One overview call; each section reports its own outcome."""

    def __init__(self, downloads: DownloadService, containers: ContainerService,
                 libraries: LibraryService):
        self.downloads = downloads
        self.containers = containers
        self.libraries = libraries

    async def overview(self, user_id: str) -> Dict[str, Any]:
        names = ("downloads", "containers", "libraries")
        sections = await asyncio.gather(
            self._section("downloads", lambda: self.downloads.list_downloads(user_id)),
            self._section("containers", self.containers.list_containers),
            self._section("libraries", self.libraries.libraries),
        )
        return dict(zip(names, sections))

    async def _section(self, name: str, load: Callable[[], Awaitable[Any]]) -> Dict[str, Any]:
        try:
            return {"status": "ok", "data": await load()}
        except ConfigurationError:
            return {"status": "unavailable"}
        except (AuthenticationError, UpstreamError) as e:
            logger.warning("Dashboard section failed", section=name, error=e.message)
            return {"status": "error", "error": e.message}
