"""File management through Cloud Commander's /api/v1/fs."""

from typing import Any, Dict

from core.exceptions import ValidationError
from core.logging import get_logger
from services.registry import ServiceRegistry

logger = get_logger(__name__)

FS_ROOT = "/api/v1/fs"


def clean_path(path: str) -> str:
    """Absolute path without parent references. Raises ValidationError."""
    if not path or not path.startswith("/"):
        raise ValidationError("Path must be absolute")
    if ".." in path.split("/"):
        raise ValidationError("Path must not contain '..'")
    return path


class FileService:
    def __init__(self, registry: ServiceRegistry):
        self.registry = registry

    def _fs(self, path: str) -> str:
        return FS_ROOT + clean_path(path)

    async def list_directory(self, path: str = "/") -> Any:
        return await self.registry.get_service("cloudcommander").get(
            self._fs(path), params={"sort": "name", "order": "asc", "type": "directory"}
        )

    async def read_file(self, path: str) -> Any:
        return await self.registry.get_service("cloudcommander").get(self._fs(path), params={"type": "file"})

    async def create_directory(self, path: str) -> Dict[str, Any]:
        await self.registry.get_service("cloudcommander").request(
            "PUT", self._fs(path), params={"type": "directory"}
        )
        logger.info("Directory created", path=path)
        return {"path": path, "status": "created"}

    async def remove(self, path: str, recursive: bool = False) -> Dict[str, Any]:
        if clean_path(path) == "/":
            raise ValidationError("Refusing to remove the root directory")
        await self.registry.get_service("cloudcommander").request(
            "DELETE", self._fs(path), params={"recursive": "true" if recursive else "false"}
        )
        logger.info("Path removed", path=path, recursive=recursive)
        return {"path": path, "status": "removed"}

    async def rename(self, path: str, new_path: str) -> Dict[str, Any]:
        await self.registry.get_service("cloudcommander").request(
            "PATCH", self._fs(path), json={"to": clean_path(new_path)}
        )
        logger.info("Path renamed", path=path, new_path=new_path)
        return {"path": new_path, "status": "renamed"}
