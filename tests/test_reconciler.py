import asyncio
import random

import pytest

from conftest import FakeStore
from models.downloads import DownloadStatus, TorrentInfo
from services.reconciler import (
    TORRENT_STATE_MAP,
    Reconciler,
    format_bytes,
    format_eta,
    map_torrent_state,
)

HASH_A = "a" * 40
HASH_B = "b" * 40
HASH_C = "c" * 40


def torrent(info_hash, state="downloading", progress=0.5, **fields):
    return TorrentInfo(hash=info_hash, state=state, progress=progress, **fields)


@pytest.fixture
def reconciler(store):
    return Reconciler(store)


async def test_unowned_transfers_are_skipped(store, reconciler):
    store.add(HASH_A, "u1")

    result = await reconciler.reconcile("u1", [torrent(HASH_A), torrent(HASH_B)])

    assert [v.hash for v in result.views] == [HASH_A]
    assert HASH_B not in store.rows
    assert [u[0] for u in store.updates] == [HASH_A]


async def test_other_users_rows_are_never_touched(store, reconciler):
    store.add(HASH_A, "u1", status="queued")

    result = await reconciler.reconcile("u2", [torrent(HASH_A, state="pausedDL")])

    assert result.views == []
    assert result.orphaned == []
    assert store.updates == []
    assert store.rows[HASH_A].status == "queued"


async def test_cross_user_isolation_randomized():
    rng = random.Random(1234)
    users = [f"user-{i}" for i in range(5)]
    states = list(TORRENT_STATE_MAP) + ["somethingNew", ""]

    for _ in range(25):
        store = FakeStore()
        reconciler = Reconciler(store)
        hashes = [f"{rng.getrandbits(160):040x}" for _ in range(rng.randint(1, 30))]
        owners = {h: rng.choice(users) for h in hashes}
        for h, owner in owners.items():
            store.add(h, owner)
        live = [torrent(h, state=rng.choice(states), progress=rng.random())
                for h in hashes if rng.random() < 0.8]
        live += [torrent(f"{rng.getrandbits(160):040x}") for _ in range(rng.randint(0, 5))]

        for user in users:
            store.updates.clear()
            result = await reconciler.reconcile(user, live)

            assert all(owners.get(v.hash) == user for v in result.views)
            assert all(v.user_id == user for v in result.views)
            assert all(owners[o.hash] == user for o in result.orphaned)
            assert all(owners.get(h) == user for h, _ in store.updates)

            expected_live = {t.hash for t in live if owners.get(t.hash) == user}
            assert {v.hash for v in result.views} == expected_live


def test_state_mapping_table():
    assert map_torrent_state("pausedDL") == DownloadStatus.PAUSED
    assert map_torrent_state("pausedUP") == DownloadStatus.PAUSED
    assert map_torrent_state("stalledUP") == DownloadStatus.COMPLETED
    assert map_torrent_state("metaDL") == DownloadStatus.DOWNLOADING
    assert map_torrent_state("missingFiles") == DownloadStatus.ERROR
    assert map_torrent_state("allocating") == DownloadStatus.QUEUED


@pytest.mark.parametrize("state", ["", "PAUSEDDL", "flying", "🙂", "unknown"])
def test_unknown_states_fall_back(state):
    assert map_torrent_state(state) == DownloadStatus.UNKNOWN


async def test_write_back_is_idempotent(store, reconciler):
    store.add(HASH_A, "u1", status="queued", progress=0)
    live = [torrent(HASH_A, state="downloading", progress=0.25, dlspeed=2048, eta=90)]

    first = await reconciler.reconcile("u1", live)
    second = await reconciler.reconcile("u1", live)

    assert len(store.updates) == 2
    assert store.updates[0] == store.updates[1]
    assert store.updates[0][1]["status"] == "downloading"
    assert store.updates[0][1]["progress"] == 25
    assert store.updates[0][1]["speed"] == "2 KB/s"
    assert store.updates[0][1]["eta"] == "1m 30s"
    assert [v.hash for v in first.changes] == [HASH_A]
    assert second.changes == []


async def test_orphans_are_reported_not_deleted(store, reconciler):
    store.add(HASH_A, "u1")
    store.add(HASH_B, "u1", name="Gone")

    result = await reconciler.reconcile("u1", [torrent(HASH_A)])

    assert [o.hash for o in result.orphaned] == [HASH_B]
    assert result.orphaned[0].name == "Gone"
    assert HASH_B in store.rows

    flagged = await reconciler.mark_orphaned("u1", [HASH_B, HASH_C])
    assert flagged == 1
    assert store.rows[HASH_B].orphaned is True


async def test_display_and_intent_fields_stay_distinct(store, reconciler):
    row = store.add(HASH_A, "u1", name="Dune")
    row.tmdb_id = "438631"

    result = await reconciler.reconcile("u1", [torrent(HASH_A, name="Dune.2021.2160p.WEB-DL")])
    view = result.views[0]

    assert view.name == "Dune.2021.2160p.WEB-DL"
    assert view.requested_name == "Dune"
    assert view.tmdb_id == "438631"
    assert store.rows[HASH_A].name == "Dune"


async def test_store_errors_propagate(reconciler, store):
    async def broken(user_id, **filters):
        raise RuntimeError("store down")

    store.find_downloads = broken
    with pytest.raises(RuntimeError):
        await reconciler.reconcile("u1", [torrent(HASH_A)])


class SlowStore(FakeStore):
    def __init__(self):
        super().__init__()
        self.log = []
        self.update_started = asyncio.Event()

    async def find_downloads(self, user_id, **filters):
        self.log.append(("find", user_id))
        await asyncio.sleep(0.01)
        return await super().find_downloads(user_id, **filters)

    async def update_download(self, info_hash, fields):
        self.log.append(("update", info_hash))
        self.update_started.set()
        await asyncio.sleep(0.02)
        return await super().update_download(info_hash, fields)


async def test_passes_for_same_user_are_serialized():
    store = SlowStore()
    store.add(HASH_A, "u1")
    reconciler = Reconciler(store)

    await asyncio.gather(
        reconciler.reconcile("u1", [torrent(HASH_A)]),
        reconciler.reconcile("u1", [torrent(HASH_A)]),
    )

    assert store.log == [("find", "u1"), ("update", HASH_A), ("find", "u1"), ("update", HASH_A)]


async def test_passes_for_different_users_overlap():
    store = SlowStore()
    store.add(HASH_A, "u1")
    store.add(HASH_B, "u2")
    reconciler = Reconciler(store)

    await asyncio.gather(
        reconciler.reconcile("u1", [torrent(HASH_A)]),
        reconciler.reconcile("u2", [torrent(HASH_B)]),
    )

    assert store.log[:2] == [("find", "u1"), ("find", "u2")]


async def test_write_back_survives_cancellation():
    store = SlowStore()
    store.add(HASH_A, "u1")
    store.add(HASH_B, "u1")
    reconciler = Reconciler(store)

    task = asyncio.create_task(reconciler.reconcile(
        "u1", [torrent(HASH_A, progress=1.0, state="uploading"),
               torrent(HASH_B, progress=1.0, state="uploading")]
    ))
    await store.update_started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    await asyncio.sleep(0.1)
    assert store.rows[HASH_A].status == "completed"
    assert store.rows[HASH_B].status == "completed"


async def test_cancelled_pass_keeps_lock_until_write_back_ends():
    store = SlowStore()
    store.add(HASH_A, "u1")
    store.add(HASH_B, "u1")
    reconciler = Reconciler(store)
    torrents = [torrent(HASH_A), torrent(HASH_B)]

    first = asyncio.create_task(reconciler.reconcile("u1", torrents))
    await store.update_started.wait()
    first.cancel()
    with pytest.raises(asyncio.CancelledError):
        await first

    await reconciler.reconcile("u1", torrents)

    assert store.log == [
        ("find", "u1"), ("update", HASH_A), ("update", HASH_B),
        ("find", "u1"), ("update", HASH_A), ("update", HASH_B),
    ]


@pytest.mark.parametrize("value,expected", [
    (0, "0 B"),
    (512, "512 B"),
    (1536, "1.5 KB"),
    (1048576, "1 MB"),
    (5 * 1024 ** 3, "5 GB"),
])
def test_format_bytes(value, expected):
    assert format_bytes(value) == expected


@pytest.mark.parametrize("seconds,expected", [
    (8640000, "∞"),
    (-1, "∞"),
    (0, "0s"),
    (45, "45s"),
    (125, "2m 5s"),
    (7260, "2h 1m"),
])
def test_format_eta(seconds, expected):
    assert format_eta(seconds) == expected
