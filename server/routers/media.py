"""Media discovery routes (TMDB, Watchmode, Jackett)."""

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query

from core.container import container
from services.media import MediaService

router = APIRouter(prefix="/api/media", tags=["media"])

MediaType = Literal["movie", "tv"]


def get_media_service() -> MediaService:
    return container.media_service()


@router.get("/trending/{media_type}/{time_window}")
async def trending(
    media_type: MediaType,
    time_window: Literal["day", "week"],
    media: MediaService = Depends(get_media_service)
):
    return {"success": True, **await media.trending(media_type, time_window)}


@router.get("/popular/{media_type}")
async def popular(
    media_type: MediaType,
    page: int = Query(default=1, ge=1, le=500),
    media: MediaService = Depends(get_media_service)
):
    return {"success": True, **await media.popular(media_type, page)}


@router.get("/search/{media_type}")
async def search(
    media_type: MediaType,
    query: str = Query(min_length=1, max_length=200),
    page: int = Query(default=1, ge=1, le=500),
    year: Optional[int] = Query(default=None, ge=1900, le=2100),
    media: MediaService = Depends(get_media_service)
):
    return {"success": True, **await media.search(query, media_type, page, year)}


@router.get("/details/{media_type}/{tmdb_id}")
async def details(
    media_type: MediaType,
    tmdb_id: int,
    media: MediaService = Depends(get_media_service)
):
    return {"success": True, **await media.details(media_type, tmdb_id)}


@router.get("/availability/{media_type}/{tmdb_id}")
async def availability(
    media_type: MediaType,
    tmdb_id: int,
    media: MediaService = Depends(get_media_service)
):
    return {"success": True, "data": await media.availability(media_type, tmdb_id)}


@router.get("/torrents/search")
async def search_torrents(
    query: str = Query(min_length=1, max_length=200),
    category: Optional[str] = None,
    min_seeders: int = Query(default=1, ge=0),
    max_results: int = Query(default=50, ge=1, le=100),
    sort_by: Literal["seeders", "size", "name", "date"] = "seeders",
    sort_order: Literal["asc", "desc"] = "desc",
    media: MediaService = Depends(get_media_service)
):
    data = await media.search_torrents(query, category, min_seeders, max_results, sort_by, sort_order)
    return {"success": True, "data": data}
