"""Registry of configured upstream service clients.

One client per external service for the whole process. The registry is
created by the DI container and handed to whoever needs a client, so tests
can register fakes per service without touching module state. Callers ask
is_service_available() first and degrade when an optional service is not
configured; get_service() raises ConfigurationError otherwise.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TYPE_CHECKING

import httpx

from core.config import Settings
from core.exceptions import ConfigurationError
from core.logging import get_logger
from services.http_client import ServiceClient
from services.qbittorrent import QBittorrentClient

if TYPE_CHECKING:
    from core.cache import CacheService

logger = get_logger(__name__)


@dataclass
class ServiceConfig:
    name: str
    base_url: Optional[str]
    timeout: float
    cache_ttl: int
    enabled: bool
    health_path: str = "/"
    api_key: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def masked(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "base_url": self.base_url,
            "timeout": self.timeout,
            "cache_ttl": self.cache_ttl,
            "enabled": self.enabled,
            "api_key": "***" if self.api_key else None,
            "username": "***" if self.username else None,
            "password": "***" if self.password else None,
        }


def build_service_configs(settings: Settings) -> List[ServiceConfig]:
    """Service definitions derived from settings."""
    return [
        ServiceConfig(
            name="tmdb",
            base_url=settings.tmdb_url,
            api_key=settings.tmdb_api_key,
            timeout=settings.tmdb_timeout,
            cache_ttl=3600,
            enabled=bool(settings.tmdb_api_key),
            health_path="/configuration",
        ),
        ServiceConfig(
            name="watchmode",
            base_url=settings.watchmode_url,
            api_key=settings.watchmode_api_key,
            timeout=settings.watchmode_timeout,
            cache_ttl=86400,
            enabled=bool(settings.watchmode_api_key),
            health_path="/status/",
        ),
        ServiceConfig(
            name="jackett",
            base_url=settings.jackett_url,
            api_key=settings.jackett_api_key,
            timeout=settings.jackett_timeout,
            cache_ttl=900,
            enabled=bool(settings.jackett_url and settings.jackett_api_key),
            health_path="/api/v2.0/server/config",
        ),
        ServiceConfig(
            name="qbittorrent",
            base_url=settings.qbittorrent_url,
            username=settings.qbittorrent_username,
            password=settings.qbittorrent_password,
            timeout=settings.qbittorrent_timeout,
            cache_ttl=0,  # live data
            enabled=bool(settings.qbittorrent_url),
            health_path="/api/v2/app/version",
            extra={"session_ttl": settings.qbittorrent_session_ttl},
        ),
        ServiceConfig(
            name="portainer",
            base_url=settings.portainer_url,
            api_key=settings.portainer_api_key,
            timeout=settings.portainer_timeout,
            cache_ttl=300,
            enabled=bool(settings.portainer_url and settings.portainer_api_key),
            health_path="/api/status",
        ),
        ServiceConfig(
            name="jellyfin",
            base_url=settings.jellyfin_url,
            api_key=settings.jellyfin_api_key,
            timeout=settings.jellyfin_timeout,
            cache_ttl=600,
            enabled=bool(settings.jellyfin_url and settings.jellyfin_api_key),
            health_path="/System/Info",
        ),
        ServiceConfig(
            name="cloudcommander",
            base_url=settings.cloudcommander_url,
            username=settings.cloudcommander_username,
            password=settings.cloudcommander_password,
            timeout=settings.cloudcommander_timeout,
            cache_ttl=0,  # file operations
            enabled=bool(settings.cloudcommander_url),
            health_path="/api/v1/fs/",
        ),
    ]


class ServiceRegistry:
    """Holds one client per configured external service."""

    def __init__(self, settings: Settings, cache: Optional["CacheService"] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.cache = cache
        self._transport = transport
        self._services: Dict[str, ServiceClient] = {}
        self._configs: Dict[str, ServiceConfig] = {}
        self._retired: List[ServiceClient] = []

    async def startup(self) -> None:
        """Create clients for every enabled service."""
        for config in build_service_configs(self.settings):
            self._configs[config.name] = config
            if config.enabled:
                self._services[config.name] = self._create_client(config)
                logger.info("Initialized service client", service=config.name)
            else:
                logger.warning("Service disabled - missing configuration", service=config.name)
        logger.info("Service registry initialized", services=len(self._services))

    async def close(self) -> None:
        for client in [*self._services.values(), *self._retired]:
            await client.close()
        self._services.clear()
        self._retired.clear()

    def _create_client(self, config: ServiceConfig) -> ServiceClient:
        common = dict(
            timeout=config.timeout,
            cache=self.cache,
            cache_ttl=config.cache_ttl,
            transport=self._transport,
        )
        if config.name == "qbittorrent":
            return QBittorrentClient(
                config.base_url,
                config.username or "",
                config.password or "",
                session_ttl=config.extra.get("session_ttl", 3600),
                **common,
            )
        if config.name == "tmdb":
            return ServiceClient(config.name, config.base_url,
                                 headers={"Authorization": f"Bearer {config.api_key}"}, **common)
        if config.name == "watchmode":
            return ServiceClient(config.name, config.base_url,
                                 params={"apiKey": config.api_key}, **common)
        if config.name == "jackett":
            return ServiceClient(config.name, config.base_url,
                                 params={"apikey": config.api_key}, **common)
        if config.name == "portainer":
            return ServiceClient(config.name, config.base_url,
                                 headers={"X-API-Key": config.api_key}, **common)
        if config.name == "jellyfin":
            return ServiceClient(config.name, config.base_url,
                                 headers={"X-Emby-Token": config.api_key}, **common)
        auth = None
        if config.username and config.password:
            auth = httpx.BasicAuth(config.username, config.password)
        return ServiceClient(config.name, config.base_url, auth=auth, **common)

    def register(self, name: str, client: ServiceClient) -> None:
        """Install or replace the client for a service."""
        self._services[name] = client
        if name in self._configs:
            self._configs[name].enabled = True

    def disable(self, name: str) -> None:
        """Mark a service unavailable. The old client is closed on shutdown so in-flight calls can finish."""
        client = self._services.pop(name, None)
        if name in self._configs:
            self._configs[name].enabled = False
        if client is not None:
            self._retired.append(client)
        logger.info("Service disabled", service=name)

    def is_service_available(self, name: str) -> bool:
        return name in self._services

    def get_service(self, name: str) -> ServiceClient:
        client = self._services.get(name)
        if client is None:
            raise ConfigurationError(name)
        return client

    def available_services(self) -> List[str]:
        return list(self._services.keys())

    def service_configs(self) -> Dict[str, Dict[str, Any]]:
        """Service configuration with secrets masked."""
        return {name: config.masked() for name, config in self._configs.items()}

    async def health_check_all(self) -> Dict[str, Dict[str, Any]]:
        """Health-check every configured service concurrently. Never raises."""
        names = list(self._services.keys())
        checks = await asyncio.gather(*(
            self._services[name].health_check(
                self._configs[name].health_path if name in self._configs else "/"
            )
            for name in names
        ))
        results = dict(zip(names, checks))
        for name, config in self._configs.items():
            if name not in results:
                results[name] = {
                    "status": "unconfigured",
                    "message": "Service disabled or not configured",
                }
        return results
