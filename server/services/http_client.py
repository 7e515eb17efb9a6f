"""HTTP client for one upstream service.

Wraps a shared httpx.AsyncClient with the service's base URL, timeout and
header auth. Every upstream failure is mapped onto the application error
taxonomy: 401/403 become AuthenticationError, anything else that is not a
2xx (timeouts and transport errors included) becomes UpstreamError.
GET responses can be memoized through the TTL cache, using the service
name as the cache namespace unless another one is given.
"""

import time
from typing import Any, Dict, Optional, TYPE_CHECKING
from urllib.parse import urlencode

import httpx

from core.exceptions import AuthenticationError, UpstreamError
from core.logging import get_logger, log_api_call

if TYPE_CHECKING:
    from core.cache import CacheService

logger = get_logger(__name__)

AUTH_FAILURE_CODES = frozenset({401, 403})


def cache_key_for(params: Optional[Dict[str, Any]]) -> str:
    """Stable cache key for a set of query parameters."""
    if not params:
        return "-"
    return urlencode(sorted((k, v) for k, v in params.items() if v is not None))


class ServiceClient:
    """Async client for a header/API-key authenticated upstream."""

    def __init__(
        self,
        name: str,
        base_url: str,
        timeout: float = 15.0,
        cache: Optional["CacheService"] = None,
        cache_ttl: int = 0,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
        auth: Optional[httpx.Auth] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            headers=headers,
            params=params,
            auth=auth,
            transport=transport,
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Issue one request. Raises AuthenticationError or UpstreamError on failure."""
        return await self._send(method, path, **kwargs)

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        started = time.monotonic()
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.TimeoutException:
            log_api_call(logger, self.name, method, path, None, time.monotonic() - started, error="timeout")
            raise UpstreamError(self.name, f"Request timed out after {self.timeout}s")
        except httpx.HTTPError as e:
            log_api_call(logger, self.name, method, path, None, time.monotonic() - started, error=str(e))
            raise UpstreamError(self.name, f"Request failed: {e}")

        log_api_call(logger, self.name, method, path, response.status_code, time.monotonic() - started)

        if response.status_code in AUTH_FAILURE_CODES:
            raise AuthenticationError(self.name, f"Rejected with HTTP {response.status_code}")
        if not response.is_success:
            raise UpstreamError(
                self.name,
                f"HTTP {response.status_code} from {path}",
                upstream_status=response.status_code,
            )
        return response

    def decode(self, response: httpx.Response) -> Any:
        """JSON body when the upstream says so, text otherwise."""
        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            try:
                return response.json()
            except ValueError:
                raise UpstreamError(self.name, "Malformed JSON response")
        return response.text

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None,
                  cache: bool = False, cache_ttl: Optional[int] = None,
                  namespace: Optional[str] = None) -> Any:
        """GET and decode, optionally through the TTL cache."""
        async def fetch() -> Any:
            response = await self.request("GET", path, params=params)
            return self.decode(response)

        ttl = self.cache_ttl if cache_ttl is None else cache_ttl
        if not cache or self.cache is None or ttl <= 0:
            return await fetch()

        lookup = await self.cache.get_or_fetch(
            namespace or self.name, path, cache_key_for(params), fetch, ttl
        )
        if lookup.cached:
            log_api_call(logger, self.name, "GET", path, None, 0.0, cached=True)
        return lookup.payload

    async def post(self, path: str, **kwargs: Any) -> Any:
        return self.decode(await self.request("POST", path, **kwargs))

    async def put(self, path: str, **kwargs: Any) -> Any:
        return self.decode(await self.request("PUT", path, **kwargs))

    async def delete(self, path: str, **kwargs: Any) -> Any:
        return self.decode(await self.request("DELETE", path, **kwargs))

    async def health_check(self, path: str = "/") -> Dict[str, Any]:
        """Check that the upstream answers. Never raises."""
        started = time.monotonic()
        try:
            await self.request("GET", path)
            return {
                "status": "healthy",
                "response_time_ms": round((time.monotonic() - started) * 1000, 1),
            }
        except (AuthenticationError, UpstreamError) as e:
            return {"status": "unhealthy", "error": e.message}
