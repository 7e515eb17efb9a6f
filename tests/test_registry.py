import httpx
import pytest

from conftest import make_settings
from core.exceptions import ConfigurationError
from services.qbittorrent import QBittorrentClient
from services.registry import ServiceRegistry


def healthy(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"ok": True})


@pytest.fixture
async def registry():
    settings = make_settings(
        tmdb_api_key="tmdb-key",
        jackett_url="http://jackett.test",
        qbittorrent_url="http://qbt.test",
        qbittorrent_password="hunter2",
    )
    registry = ServiceRegistry(settings, transport=httpx.MockTransport(healthy))
    await registry.startup()
    yield registry
    await registry.close()


async def test_only_configured_services_are_available(registry):
    assert registry.is_service_available("tmdb")
    assert registry.is_service_available("qbittorrent")
    assert not registry.is_service_available("jackett")
    assert not registry.is_service_available("watchmode")
    assert isinstance(registry.get_service("qbittorrent"), QBittorrentClient)

    with pytest.raises(ConfigurationError) as exc_info:
        registry.get_service("jackett")
    assert exc_info.value.service == "jackett"


async def test_configs_mask_secrets(registry):
    configs = registry.service_configs()
    assert configs["tmdb"]["api_key"] == "***"
    assert configs["qbittorrent"]["password"] == "***"
    assert configs["watchmode"]["api_key"] is None
    assert "tmdb-key" not in str(configs)


async def test_health_check_covers_every_service(registry):
    results = await registry.health_check_all()

    assert results["tmdb"]["status"] == "healthy"
    assert results["jackett"]["status"] == "unconfigured"
    assert results["portainer"]["status"] == "unconfigured"


async def test_disable_removes_service(registry):
    registry.disable("tmdb")

    assert not registry.is_service_available("tmdb")
    assert registry.service_configs()["tmdb"]["enabled"] is False
    with pytest.raises(ConfigurationError):
        registry.get_service("tmdb")
