"""Shared fixtures: settings, in-memory download store, fake qBittorrent, fake sockets."""

import asyncio
import base64
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs

import httpx
import pytest

from core.config import Settings
from core.exceptions import ConflictError
from models.database import Download

QBT_URL = "http://qbt.test"


def make_settings(**overrides: Any) -> Settings:
    values = {
        "jwt_secret_key": "test-secret-key-with-at-least-32-characters",
        "database_url": "sqlite+aiosqlite:///:memory:",
        "cache_persistent": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeStore:
    """In-memory stand-in for core.database.Database's download surface."""

    def __init__(self):
        self.rows: Dict[str, Download] = {}
        self.updates: List[tuple] = []
        self.activity: List[Dict[str, Any]] = []

    def add(self, info_hash: str, user_id: str, name: str = "Requested", status: str = "queued",
            progress: int = 0) -> Download:
        row = Download(
            info_hash=info_hash.lower(),
            user_id=user_id,
            name=name,
            magnet_url=f"magnet:?xt=urn:btih:{info_hash}",
            status=status,
            progress=progress,
        )
        self.rows[row.info_hash] = row
        return row

    async def find_downloads(self, user_id: str, **filters: Any) -> List[Download]:
        return [
            r for r in self.rows.values()
            if r.user_id == user_id and all(getattr(r, k) == v for k, v in filters.items())
        ]

    async def get_download(self, info_hash: str) -> Optional[Download]:
        return self.rows.get(info_hash.lower())

    async def create_download(self, download: Download) -> Download:
        if download.info_hash in self.rows:
            raise ConflictError(f"Download {download.info_hash} already exists")
        self.rows[download.info_hash] = download
        return download

    async def update_download(self, info_hash: str, fields: Dict[str, Any]) -> Optional[Download]:
        self.updates.append((info_hash, dict(fields)))
        row = self.rows.get(info_hash.lower())
        if row is None:
            return None
        for key, value in fields.items():
            setattr(row, key, value)
        return row

    async def delete_download(self, info_hash: str) -> bool:
        return self.rows.pop(info_hash.lower(), None) is not None

    async def log_activity(self, user_id: str, action: str,
                           details: Optional[Dict[str, Any]] = None) -> bool:
        self.activity.append({"user_id": user_id, "action": action, "details": details})
        return True

    async def get_activity(self, user_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        return [a for a in reversed(self.activity) if a["user_id"] == user_id][:limit]


class FakeConnection:
    """Hub connection that records frames, or fails every send."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.frames: List[str] = []
        self.closed = False

    async def send(self, message: str) -> None:
        if self.fail:
            raise ConnectionError("socket gone")
        self.frames.append(message)

    async def close(self) -> None:
        self.closed = True


class FakeQBittorrent:
    """Tiny qBittorrent Web API: session cookie login plus the torrent endpoints."""

    def __init__(self, username: str = "admin", password: str = "secret"):
        self.username = username
        self.password = password
        self.valid_sids: set = set()
        self.logins = 0
        self.torrents: Dict[str, Dict[str, Any]] = {}
        self.requests: List[httpx.Request] = []
        self.actions: List[tuple] = []

    def torrent(self, info_hash: str, **fields: Any) -> Dict[str, Any]:
        row = {
            "hash": info_hash.lower(), "name": fields.pop("name", "Torrent"),
            "state": "queuedDL", "progress": 0.0, "size": 0, "dlspeed": 0, "upspeed": 0,
            "eta": 8640000, "num_seeds": 0, "num_leechs": 0, "ratio": 0.0,
        }
        row.update(fields)
        self.torrents[row["hash"]] = row
        return row

    def expire_sessions(self) -> None:
        self.valid_sids.clear()

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()} if request.content else {}

        if path == "/api/v2/auth/login":
            self.logins += 1
            await asyncio.sleep(0.01)
            if form.get("username") != self.username or form.get("password") != self.password:
                return httpx.Response(200, text="Fails.")
            sid = f"sid-{self.logins}"
            self.valid_sids.add(sid)
            return httpx.Response(200, text="Ok.", headers={"set-cookie": f"SID={sid}; path=/"})

        cookie = request.headers.get("cookie", "")
        sid = cookie.split("SID=", 1)[1].split(";")[0] if "SID=" in cookie else None
        if sid not in self.valid_sids:
            return httpx.Response(403, text="Forbidden")

        if path == "/api/v2/torrents/info":
            return httpx.Response(200, json=list(self.torrents.values()))
        if path == "/api/v2/torrents/add":
            magnet = form["urls"]
            info_hash = magnet.split("btih:", 1)[1].split("&")[0]
            if len(info_hash) == 32:
                # qBittorrent reports base32 magnets by their hex hash.
                info_hash = base64.b32decode(info_hash.upper()).hex()
            self.torrent(info_hash, save_path=form.get("savepath", ""), category=form.get("category", ""))
            return httpx.Response(200, text="Ok.")
        if path.startswith("/api/v2/torrents/"):
            action = path.rsplit("/", 1)[1]
            self.actions.append((action, form.get("hashes")))
            if action == "delete":
                self.torrents.pop(form.get("hashes"), None)
            return httpx.Response(200, text="")
        if path == "/api/v2/transfer/info":
            return httpx.Response(200, json={"dl_info_speed": 2048, "up_info_speed": 0,
                                             "dl_info_data": 1048576, "up_info_data": 0,
                                             "connection_status": "connected"})
        return httpx.Response(404, text="Not Found")

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def qbt() -> FakeQBittorrent:
    return FakeQBittorrent()
