"""Health check utilities for the /health endpoint."""
import time
from typing import Dict, Any, TYPE_CHECKING

import psutil
from sqlalchemy import text

from core.logging import get_logger

if TYPE_CHECKING:
    from core.cache import CacheService
    from core.database import Database
    from services.broadcast_hub import BroadcastHub
    from services.registry import ServiceRegistry

logger = get_logger(__name__)

_startup_time: float = 0.0


def set_startup_time() -> None:
    """Record the application startup time. Call once during lifespan startup."""
    global _startup_time
    _startup_time = time.time()


def get_uptime() -> float:
    return time.time() - _startup_time if _startup_time else 0.0


def get_memory_mb() -> float:
    """Current process RSS in MB."""
    try:
        return psutil.Process().memory_info().rss / (1024 * 1024)
    except psutil.Error:
        return 0.0


def get_disk_percent(path: str = ".") -> float:
    try:
        return psutil.disk_usage(path).percent
    except (psutil.Error, OSError):
        return 0.0


async def check_database(database: "Database") -> bool:
    try:
        async with database.get_session() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("Database health check failed", error=str(e))
        return False


async def check_cache(cache: "CacheService") -> bool:
    """Round-trip a short-lived entry through the cache."""
    await cache.set("_health", "check", "roundtrip", "ok", ttl_seconds=10)
    record = await cache.get("_health", "check", "roundtrip")
    await cache.delete("_health", "check", "roundtrip")
    return record is not None and record.payload == "ok"


async def get_health_status(
    database: "Database",
    cache: "CacheService",
    registry: "ServiceRegistry",
    hub: "BroadcastHub",
) -> Dict[str, Any]:
    db_healthy = await check_database(database)
    cache_healthy = await check_cache(cache)

    return {
        "status": "healthy" if (db_healthy and cache_healthy) else "degraded",
        "uptime_seconds": round(get_uptime(), 1),
        "memory_mb": round(get_memory_mb(), 1),
        "disk_percent": round(get_disk_percent(), 1),
        "checks": {
            "database": db_healthy,
            "cache": cache_healthy,
        },
        "services": registry.available_services(),
        "websocket_connections": hub.connection_count(),
    }
