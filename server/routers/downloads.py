"""Download routes: add, list (one reconciliation pass), control, details."""

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from core.container import container
from services.downloads import DownloadService

router = APIRouter(prefix="/api/downloads", tags=["downloads"])

ControlAction = Literal[
    "pause", "resume", "delete", "recheck", "increasePrio", "decreasePrio", "topPrio", "bottomPrio"
]


class AddTorrentRequest(BaseModel):
    magnet_url: str = Field(min_length=20)
    title: Optional[str] = None
    category: Literal["movie", "tv", "other"] = "other"
    save_path: Optional[str] = None
    tmdb_id: Optional[str] = None
    priority: int = Field(default=1, ge=1, le=7)
    sequential_download: bool = False
    first_last_piece_prio: bool = False


class ControlRequest(BaseModel):
    action: ControlAction
    delete_files: bool = False


def get_download_service() -> DownloadService:
    return container.download_service()


@router.post("")
async def add_torrent(
    body: AddTorrentRequest,
    request: Request,
    downloads: DownloadService = Depends(get_download_service)
):
    download = await downloads.add_torrent(
        request.state.user_id,
        body.magnet_url,
        title=body.title,
        category=body.category,
        save_path=body.save_path,
        tmdb_id=body.tmdb_id,
        priority=body.priority,
        sequential_download=body.sequential_download,
        first_last_piece_prio=body.first_last_piece_prio,
    )
    return {"success": True, "message": "Torrent added successfully",
            "data": {"download": download.model_dump(mode="json")}}


@router.get("")
async def list_downloads(
    request: Request,
    filter: str = "all",
    category: Optional[str] = None,
    sort: str = "added_on",
    reverse: bool = True,
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    downloads: DownloadService = Depends(get_download_service)
):
    data = await downloads.list_downloads(
        request.state.user_id, filter=filter, category=category, sort=sort,
        reverse=reverse, limit=limit, offset=offset,
    )
    return {"success": True, "data": data}


@router.get("/history")
async def download_history(
    request: Request,
    limit: int = Query(default=100, ge=1, le=1000),
    downloads: DownloadService = Depends(get_download_service)
):
    return {"success": True, "data": await downloads.history(request.state.user_id, limit=limit)}


@router.get("/transfer")
async def transfer_info(downloads: DownloadService = Depends(get_download_service)):
    return {"success": True, "data": {"transfer_info": await downloads.transfer_info()}}


@router.get("/{info_hash}")
async def download_details(
    info_hash: str,
    request: Request,
    downloads: DownloadService = Depends(get_download_service)
):
    return {"success": True, "data": await downloads.get_details(request.state.user_id, info_hash)}


@router.post("/{info_hash}/control")
async def control_download(
    info_hash: str,
    body: ControlRequest,
    request: Request,
    downloads: DownloadService = Depends(get_download_service)
):
    result = await downloads.control_download(
        request.state.user_id, info_hash, body.action, delete_files=body.delete_files
    )
    return {"success": True, "message": f"Torrent {body.action} successful", "data": result}


@router.delete("/{info_hash}")
async def delete_download(
    info_hash: str,
    request: Request,
    delete_files: bool = False,
    downloads: DownloadService = Depends(get_download_service)
):
    result = await downloads.delete_download(request.state.user_id, info_hash, delete_files=delete_files)
    return {"success": True, "data": result}
