"""Docker containers through Portainer.

Container lists are cached in the "containers" namespace; any control
action clears that namespace so the next list shows the new state.
"""

from typing import Any, Dict, List

from core.cache import CacheService
from core.exceptions import ValidationError
from core.logging import get_logger
from services.reconciler import format_bytes
from services.registry import ServiceRegistry

logger = get_logger(__name__)

CONTAINER_ACTIONS = ("start", "stop", "restart")
STACK_ACTIONS = ("start", "stop", "restart")
STACK_STATUS = {1: "active", 2: "inactive"}


def summarize_containers(containers: List[Dict[str, Any]]) -> Dict[str, Any]:
    items = []
    for c in containers:
        names = c.get("Names") or []
        items.append({
            "id": (c.get("Id") or "")[:12],
            "name": names[0].lstrip("/") if names else "",
            "image": c.get("Image"),
            "state": c.get("State"),
            "status": c.get("Status"),
        })
    return {
        "total": len(items),
        "running": sum(1 for c in items if c["state"] == "running"),
        "containers": items,
    }


def format_container_stats(stats: Dict[str, Any]) -> Dict[str, Any]:
    """CPU, memory, network and block IO totals from one Docker stats sample."""
    cpu = stats.get("cpu_stats") or {}
    precpu = stats.get("precpu_stats") or {}
    cpu_total = (cpu.get("cpu_usage") or {}).get("total_usage", 0)
    cpu_delta = cpu_total - (precpu.get("cpu_usage") or {}).get("total_usage", 0)
    system_delta = cpu.get("system_cpu_usage", 0) - precpu.get("system_cpu_usage", 0)
    cpu_percent = 0.0
    if cpu_delta > 0 and system_delta > 0:
        cpu_percent = round(cpu_delta / system_delta * (cpu.get("online_cpus") or 1) * 100, 2)

    memory = stats.get("memory_stats") or {}
    usage = memory.get("usage", 0)
    limit = memory.get("limit", 0)

    networks = (stats.get("networks") or {}).values()
    rx = sum(n.get("rx_bytes", 0) for n in networks)
    tx = sum(n.get("tx_bytes", 0) for n in networks)

    io = (stats.get("blkio_stats") or {}).get("io_service_bytes_recursive") or []
    read = sum(e.get("value", 0) for e in io if e.get("op") == "Read")
    write = sum(e.get("value", 0) for e in io if e.get("op") == "Write")

    return {
        "cpu_percent": cpu_percent,
        "memory": {
            "usage": format_bytes(usage),
            "limit": format_bytes(limit),
            "percent": round(usage / limit * 100, 2) if limit else 0.0,
        },
        "network": {"rx": format_bytes(rx), "tx": format_bytes(tx)},
        "block_io": {"read": format_bytes(read), "write": format_bytes(write)},
    }


def summarize_stack(stack: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": stack.get("Id"),
        "name": stack.get("Name"),
        "endpoint_id": stack.get("EndpointId"),
        "status": STACK_STATUS.get(stack.get("Status"), "unknown"),
        "created_at": stack.get("CreationDate"),
        "updated_at": stack.get("UpdateDate"),
    }


class ContainerService:
    def __init__(self, registry: ServiceRegistry, cache: CacheService):
        self.registry = registry
        self.cache = cache

    def _docker_path(self, suffix: str) -> str:
        endpoint_id = self.registry.settings.portainer_endpoint_id
        return f"/api/endpoints/{endpoint_id}/docker{suffix}"

    async def list_containers(self, all: bool = True) -> Dict[str, Any]:
        portainer = self.registry.get_service("portainer")
        containers = await portainer.get(
            self._docker_path("/containers/json"),
            params={"all": "true" if all else "false"},
            cache=True,
            cache_ttl=self.cache.ttl_for("containers"),
            namespace="containers",
        )
        return summarize_containers(containers if isinstance(containers, list) else [])

    async def get_container(self, container_id: str) -> Dict[str, Any]:
        portainer = self.registry.get_service("portainer")
        return await portainer.get(self._docker_path(f"/containers/{container_id}/json"))

    async def control(self, container_id: str, action: str) -> Dict[str, Any]:
        if action not in CONTAINER_ACTIONS:
            raise ValidationError(f"Unknown container action: {action}")
        portainer = self.registry.get_service("portainer")
        await portainer.request("POST", self._docker_path(f"/containers/{container_id}/{action}"))
        await self.cache.clear("containers")
        logger.info("Container action", container_id=container_id, action=action)
        return {"id": container_id, "action": action}

    async def logs(self, container_id: str, tail: int = 100) -> str:
        portainer = self.registry.get_service("portainer")
        response = await portainer.request(
            "GET",
            self._docker_path(f"/containers/{container_id}/logs"),
            params={"stdout": "true", "stderr": "true", "tail": tail},
        )
        return response.text

    async def stats(self, container_id: str) -> Dict[str, Any]:
        portainer = self.registry.get_service("portainer")
        sample = await portainer.get(
            self._docker_path(f"/containers/{container_id}/stats"), params={"stream": "false"}
        )
        return format_container_stats(sample if isinstance(sample, dict) else {})

    async def list_stacks(self) -> Dict[str, Any]:
        portainer = self.registry.get_service("portainer")
        stacks = await portainer.get(
            "/api/stacks",
            cache=True,
            cache_ttl=self.cache.ttl_for("containers"),
            namespace="containers",
        )
        items = [summarize_stack(s) for s in (stacks if isinstance(stacks, list) else [])]
        return {"total": len(items), "stacks": items}

    async def control_stack(self, stack_id: int, action: str) -> Dict[str, Any]:
        """Start or stop a stack. Restart is a stop followed by a start."""
        if action not in STACK_ACTIONS:
            raise ValidationError(f"Unknown stack action: {action}")
        portainer = self.registry.get_service("portainer")
        params = {"endpointId": self.registry.settings.portainer_endpoint_id}
        steps = ("stop", "start") if action == "restart" else (action,)
        for step in steps:
            await portainer.request("POST", f"/api/stacks/{stack_id}/{step}", params=params)
        await self.cache.clear("containers")
        logger.info("Stack action", stack_id=stack_id, action=action)
        return {"id": stack_id, "action": action}
