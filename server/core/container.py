"""Dependency injection container for the application."""

from dependency_injector import containers, providers

from core.config import Settings
from core.database import Database
from core.cache import CacheService
from core.cleanup import CacheSweeper
from services.broadcast_hub import BroadcastHub
from services.containers import ContainerService
from services.dashboard import DashboardService
from services.downloads import DownloadService
from services.files import FileService
from services.libraries import LibraryService
from services.media import MediaService
from services.reconciler import Reconciler
from services.registry import ServiceRegistry
from services.user_auth import UserAuthService


class Container(containers.DeclarativeContainer):
    """Application dependency injection container."""

    settings = providers.Singleton(
        Settings,
    )

    database = providers.Singleton(
        Database,
        settings=settings
    )

    # Memory tier, written through to cache_entries
    cache = providers.Singleton(
        CacheService,
        settings=settings,
        database=database
    )

    cache_sweeper = providers.Singleton(
        CacheSweeper,
        cache=cache,
        settings=settings
    )

    registry = providers.Singleton(
        ServiceRegistry,
        settings=settings,
        cache=cache
    )

    hub = providers.Singleton(
        BroadcastHub
    )

    reconciler = providers.Singleton(
        Reconciler,
        store=database
    )

    user_auth_service = providers.Factory(
        UserAuthService,
        database=database,
        settings=settings
    )

    download_service = providers.Factory(
        DownloadService,
        settings=settings,
        store=database,
        registry=registry,
        reconciler=reconciler,
        hub=hub
    )

    media_service = providers.Factory(
        MediaService,
        registry=registry,
        cache=cache
    )

    container_service = providers.Factory(
        ContainerService,
        registry=registry,
        cache=cache
    )

    library_service = providers.Factory(
        LibraryService,
        registry=registry,
        cache=cache
    )

    file_service = providers.Factory(
        FileService,
        registry=registry
    )

    dashboard_service = providers.Factory(
        DashboardService,
        downloads=download_service,
        containers=container_service,
        libraries=library_service
    )


# Global container instance
container = Container()
