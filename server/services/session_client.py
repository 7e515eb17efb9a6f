"""Session-authenticated upstream client with transparent re-login.

Some upstreams (qBittorrent) hand out a time-bounded session cookie from a
login endpoint instead of accepting a static API key. SessionClient keeps
exactly one Session per service and:

1. logs in when there is no Session or it is older than its validity window,
2. sends the request with the Session's credential,
3. on a 401/403 invalidates the Session, logs in once more and retries once.
   A second auth failure is raised as AuthenticationError, never looped.

Only the login step is serialized (one asyncio.Lock per client), so N
concurrent callers without a Session cause a single login while the
requests themselves run in parallel.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx

from core.exceptions import AuthenticationError, UpstreamError
from core.logging import get_logger
from services.http_client import ServiceClient

logger = get_logger(__name__)


@dataclass(frozen=True)
class Session:
    """Credential obtained from one successful login."""
    service_name: str
    credential: Optional[str]
    obtained_at: float
    valid_duration_seconds: int

    def is_valid(self, now: float) -> bool:
        return now - self.obtained_at < self.valid_duration_seconds


class SessionClient(ServiceClient):
    """ServiceClient that authenticates through a login endpoint."""

    def __init__(
        self,
        name: str,
        base_url: str,
        username: str,
        password: str,
        login_path: str,
        session_ttl: int = 3600,
        cookie_name: str = "SID",
        success_marker: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
        **kwargs: Any,
    ):
        super().__init__(name, base_url, **kwargs)
        self.username = username
        self.password = password
        self.login_path = login_path
        self.session_ttl = session_ttl
        self.cookie_name = cookie_name
        self.success_marker = success_marker
        self._clock = clock
        self._session: Optional[Session] = None
        self._login_lock = asyncio.Lock()
        self.login_count = 0

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def invalidate(self, session: Optional[Session] = None) -> None:
        """Drop the current Session.

        With a session argument only that Session is dropped, so a caller
        holding a credential another caller already replaced does not throw
        away the fresh one.
        """
        if session is None or self._session is session:
            self._session = None

    async def ensure_authenticated(self) -> Session:
        """Return a usable Session, logging in if needed."""
        session = self._session
        if session is not None and session.is_valid(self._clock()):
            return session

        async with self._login_lock:
            session = self._session
            if session is not None and session.is_valid(self._clock()):
                return session
            self._session = await self._login()
            return self._session

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        session = await self.ensure_authenticated()
        try:
            return await self._send(method, path, **self._with_credential(session, kwargs))
        except AuthenticationError:
            logger.warning("Upstream session rejected, re-authenticating", service=self.name, path=path)
            self.invalidate(session)

        session = await self.ensure_authenticated()
        try:
            return await self._send(method, path, **self._with_credential(session, kwargs))
        except AuthenticationError:
            self.invalidate(session)
            raise

    async def _login(self) -> Session:
        """Call the login endpoint. Raises AuthenticationError and stores nothing on failure."""
        self.login_count += 1
        try:
            response = await self.client.post(
                self.login_path,
                data={"username": self.username, "password": self.password},
                headers={"Referer": self.base_url, "Origin": self.base_url},
            )
        except httpx.TimeoutException:
            raise UpstreamError(self.name, f"Login timed out after {self.timeout}s")
        except httpx.HTTPError as e:
            raise UpstreamError(self.name, f"Login request failed: {e}")

        if not response.is_success:
            logger.error("Upstream login failed", service=self.name, status_code=response.status_code)
            raise AuthenticationError(self.name, f"Login failed with HTTP {response.status_code}")

        if self.success_marker is not None and response.text.strip() != self.success_marker:
            logger.error("Upstream login rejected credentials", service=self.name)
            raise AuthenticationError(self.name, "Login failed: invalid credentials")

        credential = response.cookies.get(self.cookie_name)
        # The credential is sent explicitly per request, keep the jar empty.
        self.client.cookies.clear()

        logger.info("Upstream authentication successful", service=self.name)
        return Session(
            service_name=self.name,
            credential=credential,
            obtained_at=self._clock(),
            valid_duration_seconds=self.session_ttl,
        )

    def _with_credential(self, session: Session, kwargs: Dict[str, Any]) -> Dict[str, Any]:
        if session.credential is None:
            return kwargs
        headers = dict(kwargs.get("headers") or {})
        headers["Cookie"] = f"{self.cookie_name}={session.credential}"
        return {**kwargs, "headers": headers}

