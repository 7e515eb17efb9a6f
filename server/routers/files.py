"""File manager routes (Cloud Commander). Mutations are admin only."""

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from core.container import container
from middleware.auth import require_admin
from services.files import FileService

router = APIRouter(prefix="/api/files", tags=["files"])


class PathRequest(BaseModel):
    path: str = Field(min_length=1)


class RenameRequest(BaseModel):
    path: str = Field(min_length=1)
    new_path: str = Field(min_length=1)


def get_file_service() -> FileService:
    return container.file_service()


@router.get("")
async def list_directory(
    path: str = Query(default="/"),
    files: FileService = Depends(get_file_service)
):
    return {"success": True, "data": await files.list_directory(path)}


@router.get("/content")
async def read_file(path: str = Query(min_length=1), files: FileService = Depends(get_file_service)):
    return {"success": True, "data": await files.read_file(path)}


@router.post("/directory")
async def create_directory(
    request: Request,
    body: PathRequest,
    files: FileService = Depends(get_file_service)
):
    require_admin(request)
    return {"success": True, "data": await files.create_directory(body.path)}


@router.post("/rename")
async def rename(
    request: Request,
    body: RenameRequest,
    files: FileService = Depends(get_file_service)
):
    require_admin(request)
    return {"success": True, "data": await files.rename(body.path, body.new_path)}


@router.delete("")
async def remove(
    request: Request,
    path: str = Query(min_length=1),
    recursive: bool = False,
    files: FileService = Depends(get_file_service)
):
    require_admin(request)
    return {"success": True, "data": await files.remove(path, recursive)}
