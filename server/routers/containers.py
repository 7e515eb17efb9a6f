"""Docker container routes (Portainer)."""

from typing import Literal

from fastapi import APIRouter, Depends, Query, Request

from core.container import container
from middleware.auth import require_admin
from services.containers import ContainerService

router = APIRouter(prefix="/api/containers", tags=["containers"])


def get_container_service() -> ContainerService:
    return container.container_service()


@router.get("")
async def list_containers(
    all: bool = True,
    containers: ContainerService = Depends(get_container_service)
):
    return {"success": True, "data": await containers.list_containers(all=all)}


@router.get("/stacks")
async def list_stacks(containers: ContainerService = Depends(get_container_service)):
    return {"success": True, "data": await containers.list_stacks()}


@router.post("/stacks/{stack_id}/{action}")
async def control_stack(
    request: Request,
    stack_id: int,
    action: Literal["start", "stop", "restart"],
    containers: ContainerService = Depends(get_container_service)
):
    require_admin(request)
    return {"success": True, "data": await containers.control_stack(stack_id, action)}


@router.get("/{container_id}")
async def container_details(
    container_id: str,
    containers: ContainerService = Depends(get_container_service)
):
    return {"success": True, "data": await containers.get_container(container_id)}


@router.get("/{container_id}/logs")
async def container_logs(
    container_id: str,
    tail: int = Query(default=100, ge=1, le=5000),
    containers: ContainerService = Depends(get_container_service)
):
    return {"success": True, "data": {"logs": await containers.logs(container_id, tail)}}


@router.get("/{container_id}/stats")
async def container_stats(
    container_id: str,
    containers: ContainerService = Depends(get_container_service)
):
    return {"success": True, "data": await containers.stats(container_id)}


@router.post("/{container_id}/{action}")
async def control_container(
    request: Request,
    container_id: str,
    action: Literal["start", "stop", "restart"],
    containers: ContainerService = Depends(get_container_service)
):
    require_admin(request)
    return {"success": True, "data": await containers.control(container_id, action)}
