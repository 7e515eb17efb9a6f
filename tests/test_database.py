import pytest

from conftest import FakeClock, make_settings
from core.cache import CacheService
from core.database import Database
from core.exceptions import ConflictError
from models.database import Download

HASH = "c" * 40


@pytest.fixture
async def database(tmp_path):
    settings = make_settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", cache_persistent=True)
    database = Database(settings)
    await database.startup()
    yield database
    await database.shutdown()


def new_download(user_id="u1", info_hash=HASH):
    return Download(info_hash=info_hash, user_id=user_id, name="Dune",
                    magnet_url=f"magnet:?xt=urn:btih:{info_hash}", category="movie")


async def test_download_lifecycle(database):
    await database.create_download(new_download())

    rows = await database.find_downloads("u1")
    assert [r.info_hash for r in rows] == [HASH]
    assert await database.find_downloads("u2") == []
    assert await database.find_downloads("u1", status="paused") == []

    updated = await database.update_download(HASH.upper(), {"status": "paused", "progress": 40})
    assert updated.status == "paused"
    assert (await database.get_download(HASH)).progress == 40

    assert await database.delete_download(HASH) is True
    assert await database.delete_download(HASH) is False
    assert await database.update_download(HASH, {"status": "paused"}) is None


async def test_duplicate_hash_conflicts(database):
    await database.create_download(new_download())
    with pytest.raises(ConflictError):
        await database.create_download(new_download(user_id="u2"))
    assert (await database.get_download(HASH)).user_id == "u1"


async def test_activity_is_per_user_and_newest_first(database):
    await database.log_activity("u1", "download_added", {"hash": HASH})
    await database.log_activity("u1", "download_pause", {"hash": HASH})
    await database.log_activity("u2", "download_added")

    activity = await database.get_activity("u1")

    assert [a["action"] for a in activity] == ["download_pause", "download_added"]
    assert activity[1]["details"] == {"hash": HASH}


async def test_cache_survives_restart(database):
    clock = FakeClock()
    first = CacheService(database.settings, database=database, clock=clock)
    await first.set("details", "movie", "42", {"title": "Answer"}, ttl_seconds=60)

    second = CacheService(database.settings, database=database, clock=clock)
    record = await second.get("details", "movie", "42")

    assert record is not None
    assert record.payload == {"title": "Answer"}

    clock.advance(60)
    assert await second.get("details", "movie", "42") is None
    assert await database.cleanup_expired_cache(now=clock()) == 1
