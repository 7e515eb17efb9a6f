import orjson
import pytest

from conftest import QBT_URL, FakeConnection
from core.exceptions import ConfigurationError, ConflictError, NotFoundError, ValidationError
from services.broadcast_hub import BroadcastHub
from services.downloads import DownloadService, extract_info_hash
from services.qbittorrent import QBittorrentClient
from services.reconciler import Reconciler
from services.registry import ServiceRegistry

HASH = "0123456789abcdef0123456789abcdef01234567"
MAGNET = f"magnet:?xt=urn:btih:{HASH.upper()}&dn=Dune"
# Same info hash, base32 encoded.
HASH_B32 = "AERUKZ4JVPG66AJDIVTYTK6N54ASGRLH"


@pytest.fixture
async def registry(settings, qbt):
    registry = ServiceRegistry(settings)
    registry.register("qbittorrent", QBittorrentClient(QBT_URL, "admin", "secret", transport=qbt.transport()))
    yield registry
    await registry.close()


@pytest.fixture
def hub():
    return BroadcastHub()


@pytest.fixture
def service(settings, store, registry, hub):
    return DownloadService(settings, store, registry, Reconciler(store), hub)


async def connect(hub, user_id):
    conn = FakeConnection()
    await hub.register(user_id, conn)
    return conn


def events(conn):
    return [orjson.loads(f)["event"] for f in conn.frames]


def test_extract_info_hash():
    assert extract_info_hash(MAGNET) == HASH
    assert extract_info_hash(f"magnet:?xt=urn:btih:{HASH_B32}&dn=Dune") == HASH
    assert extract_info_hash(f"magnet:?xt=urn:btih:{HASH_B32.lower()}") == HASH
    for bad in ["", "http://example.com/file.torrent", "magnet:?dn=nohash", "magnet:?xt=urn:btih:1234",
                f"magnet:?xt=urn:btih:{HASH}ff"]:
        with pytest.raises(ValidationError):
            extract_info_hash(bad)


async def test_add_creates_queued_row_and_notifies_owner(service, store, hub, qbt, settings):
    mine = await connect(hub, "u1")
    theirs = await connect(hub, "u2")

    download = await service.add_torrent("u1", MAGNET, title="Dune", category="movie", tmdb_id="438631")

    assert download.info_hash == HASH
    assert download.status == "queued"
    assert download.save_path == settings.movies_path
    assert store.rows[HASH].user_id == "u1"
    assert qbt.torrents[HASH]["save_path"] == settings.movies_path
    assert events(mine) == ["download_added"]
    assert theirs.frames == []
    assert store.activity[0]["action"] == "download_added"


async def test_add_rejects_bad_input(service, qbt):
    with pytest.raises(ValidationError):
        await service.add_torrent("u1", "not-a-magnet")
    with pytest.raises(ValidationError):
        await service.add_torrent("u1", MAGNET, category="music")
    with pytest.raises(ValidationError):
        await service.add_torrent("u1", MAGNET, priority=9)
    assert qbt.requests == []


async def test_duplicate_add_conflicts(service, store):
    await service.add_torrent("u1", MAGNET)
    with pytest.raises(ConflictError):
        await service.add_torrent("u2", MAGNET)
    assert store.rows[HASH].user_id == "u1"


async def test_list_broadcasts_once_per_change(service, hub, qbt):
    conn = await connect(hub, "u1")
    await service.add_torrent("u1", MAGNET, title="Dune")
    conn.frames.clear()

    listing = await service.list_downloads("u1")
    assert listing["total"] == 1
    assert listing["torrents"][0]["status"] == "queued"
    assert conn.frames == []

    qbt.torrents[HASH].update(state="downloading", progress=0.3, dlspeed=1024)
    listing = await service.list_downloads("u1")

    assert listing["torrents"][0]["status"] == "downloading"
    assert listing["torrents"][0]["progress"] == 30
    assert listing["torrents"][0]["requested_name"] == "Dune"
    assert len(conn.frames) == 1
    frame = orjson.loads(conn.frames[0])
    assert frame["event"] == "download_status_update"
    assert frame["data"] == {"hash": HASH, "status": "downloading", "progress": 30, "speed": "1 KB/s"}

    await service.list_downloads("u1")
    assert len(conn.frames) == 1


async def test_base32_magnet_is_reconciled_by_hex_hash(service, store, hub, qbt):
    conn = await connect(hub, "u1")
    download = await service.add_torrent("u1", f"magnet:?xt=urn:btih:{HASH_B32}&dn=Dune", title="Dune")
    conn.frames.clear()

    assert download.info_hash == HASH
    assert list(qbt.torrents) == [HASH]

    qbt.torrents[HASH].update(state="downloading", progress=0.5)
    listing = await service.list_downloads("u1")

    assert [t["hash"] for t in listing["torrents"]] == [HASH]
    assert listing["orphaned"] == []
    assert store.rows[HASH].status == "downloading"
    assert events(conn) == ["download_status_update"]

    with pytest.raises(ConflictError):
        await service.add_torrent("u1", MAGNET)


async def test_other_users_see_nothing(service, qbt):
    await service.add_torrent("u1", MAGNET)
    qbt.torrent("f" * 40, name="Someone else's")

    listing = await service.list_downloads("u2")

    assert listing["torrents"] == []
    assert listing["orphaned"] == []


async def test_control_requires_ownership(service, qbt):
    await service.add_torrent("u1", MAGNET)

    with pytest.raises(NotFoundError):
        await service.control_download("u2", HASH, "pause")
    with pytest.raises(NotFoundError):
        await service.control_download("u1", "e" * 40, "pause")
    assert qbt.actions == []


async def test_pause_updates_status_and_notifies(service, store, hub, qbt):
    await service.add_torrent("u1", MAGNET)
    conn = await connect(hub, "u1")

    result = await service.control_download("u1", HASH.upper(), "pause")

    assert result == {"hash": HASH, "action": "pause", "status": "paused"}
    assert qbt.actions == [("pause", HASH)]
    assert store.rows[HASH].status == "paused"
    assert events(conn) == ["download_updated"]


async def test_unknown_action_is_rejected(service):
    await service.add_torrent("u1", MAGNET)
    with pytest.raises(ValidationError):
        await service.control_download("u1", HASH, "explode")


async def test_delete_removes_row_and_transfer(service, store, qbt):
    await service.add_torrent("u1", MAGNET)

    result = await service.delete_download("u1", HASH, delete_files=True)

    assert result["status"] == "deleted"
    assert HASH not in store.rows
    assert HASH not in qbt.torrents


async def test_orphans_flagged_on_unfiltered_list_only(service, store, qbt):
    await service.add_torrent("u1", MAGNET, title="Dune")
    qbt.torrents.clear()

    filtered = await service.list_downloads("u1", filter="downloading")
    assert filtered["orphaned"] == []
    assert store.rows[HASH].orphaned is False

    listing = await service.list_downloads("u1")
    assert [o["hash"] for o in listing["orphaned"]] == [HASH]
    assert store.rows[HASH].orphaned is True

    history = await service.history("u1")
    assert history["downloads"][0]["info_hash"] == HASH


async def test_invalid_filter(service):
    with pytest.raises(ValidationError):
        await service.list_downloads("u1", filter="everything")


async def test_transfer_info_is_formatted(service):
    info = await service.transfer_info()
    assert info["dl_info_speed"] == "2 KB/s"
    assert info["dl_info_data"] == "1 MB"


async def test_summary_counts_by_status(service, store):
    store.add("1" * 40, "u1", status="downloading")
    store.add("2" * 40, "u1", status="completed")
    store.add("3" * 40, "u1", status="completed")
    store.add("4" * 40, "u2", status="paused")

    summary = await service.summary("u1")

    assert summary["total"] == 3
    assert summary["by_status"] == {"downloading": 1, "completed": 2}


async def test_unconfigured_torrent_client(settings, store, hub):
    service = DownloadService(settings, store, ServiceRegistry(settings), Reconciler(store), hub)
    with pytest.raises(ConfigurationError):
        await service.list_downloads("u1")
