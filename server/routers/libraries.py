"""Jellyfin library routes."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from core.container import container
from middleware.auth import require_admin
from services.libraries import LibraryService

router = APIRouter(prefix="/api/libraries", tags=["libraries"])


def get_library_service() -> LibraryService:
    return container.library_service()


@router.get("")
async def list_libraries(libraries: LibraryService = Depends(get_library_service)):
    return {"success": True, "data": await libraries.libraries()}


@router.get("/info")
async def server_info(libraries: LibraryService = Depends(get_library_service)):
    return {"success": True, "data": await libraries.server_info()}


@router.get("/stats")
async def library_stats(libraries: LibraryService = Depends(get_library_service)):
    return {"success": True, "data": await libraries.stats()}


@router.post("/scan")
async def scan(
    request: Request,
    library_id: Optional[str] = None,
    libraries: LibraryService = Depends(get_library_service)
):
    require_admin(request)
    return {"success": True, "data": await libraries.scan(library_id)}


@router.get("/scan/status")
async def scan_status(libraries: LibraryService = Depends(get_library_service)):
    return {"success": True, "data": await libraries.scan_status()}


@router.get("/search")
async def search(
    query: str = Query(min_length=1, max_length=200),
    limit: int = Query(default=50, ge=1, le=200),
    libraries: LibraryService = Depends(get_library_service)
):
    return {"success": True, "data": await libraries.search(query, limit)}


@router.get("/recent")
async def recently_added(
    limit: int = Query(default=20, ge=1, le=100),
    libraries: LibraryService = Depends(get_library_service)
):
    return {"success": True, "data": await libraries.recently_added(limit)}


@router.get("/items/{item_id}")
async def item_details(item_id: str, libraries: LibraryService = Depends(get_library_service)):
    return {"success": True, "data": await libraries.item(item_id)}


@router.get("/{library_id}/items")
async def library_items(
    library_id: str,
    start_index: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    libraries: LibraryService = Depends(get_library_service)
):
    return {"success": True, "data": await libraries.items(library_id, start_index, limit)}


@router.post("/{library_id}/refresh")
async def refresh_library(
    request: Request,
    library_id: str,
    libraries: LibraryService = Depends(get_library_service)
):
    require_admin(request)
    return {"success": True, "data": await libraries.refresh(library_id)}


@router.post("/{library_id}/clean")
async def clean_library(
    request: Request,
    library_id: str,
    libraries: LibraryService = Depends(get_library_service)
):
    require_admin(request)
    return {"success": True, "data": await libraries.clean(library_id)}
