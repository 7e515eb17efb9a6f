"""System routes: upstream health, dashboard, cache administration."""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from core.cache import CacheService
from core.container import container
from middleware.auth import require_admin
from services.dashboard import DashboardService
from services.registry import ServiceRegistry

router = APIRouter(prefix="/api/system", tags=["system"])


def get_registry() -> ServiceRegistry:
    return container.registry()


def get_cache() -> CacheService:
    return container.cache()


def get_dashboard_service() -> DashboardService:
    return container.dashboard_service()


@router.get("/services")
async def service_health(registry: ServiceRegistry = Depends(get_registry)):
    """Health of every configured upstream."""
    return {
        "success": True,
        "data": {
            "health": await registry.health_check_all(),
            "configs": registry.service_configs(),
        },
    }


@router.get("/dashboard")
async def dashboard(
    request: Request,
    dashboard_service: DashboardService = Depends(get_dashboard_service)
):
    return {"success": True, "data": await dashboard_service.overview(request.state.user_id)}


@router.get("/cache")
async def cache_stats(cache: CacheService = Depends(get_cache)):
    return {"success": True, "data": cache.stats()}


@router.delete("/cache")
async def clear_cache(
    request: Request,
    namespace: Optional[str] = None,
    cache: CacheService = Depends(get_cache)
):
    require_admin(request)
    cleared = await cache.clear(namespace)
    return {"success": True, "data": {"cleared": cleared, "namespace": namespace}}


@router.get("/connections")
async def connection_stats(request: Request):
    hub = container.hub()
    return {"success": True, "data": {**hub.stats(), "mine": hub.connection_count(request.state.user_id)}}
