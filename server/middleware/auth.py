"""Authentication middleware for route protection."""

from typing import Optional

from fastapi import HTTPException, Request
from fastapi.responses import ORJSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.container import container
from core.logging import get_logger

logger = get_logger(__name__)

PUBLIC_PATHS = frozenset([
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
    "/api/auth/status",
    "/api/auth/login",
    "/api/auth/register",
    "/api/auth/logout",
])


def extract_token(request: Request, cookie_name: str) -> Optional[str]:
    """JWT from the session cookie, or from an Authorization: Bearer header."""
    token = request.cookies.get(cookie_name)
    if token:
        return token
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def require_admin(request: Request) -> None:
    if getattr(request.state, "role", None) != "admin":
        raise HTTPException(status_code=403, detail="Admin role required")


def _unauthorized(message: str) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=401,
        content={"success": False, "error": {"code": "AUTHENTICATION_ERROR", "message": message}},
    )


class AuthMiddleware(BaseHTTPMiddleware):
    """Rejects unauthenticated requests and sets request.state.user_id."""

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if path in PUBLIC_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        settings = container.settings()
        token = extract_token(request, settings.jwt_cookie_name)
        if not token:
            return _unauthorized("Not authenticated")

        payload = container.user_auth_service().verify_token(token)
        if not payload or not payload.get("sub"):
            logger.debug("Rejected request with invalid session", path=path)
            return _unauthorized("Invalid or expired session")

        request.state.user_id = str(payload["sub"])
        request.state.username = payload.get("username")
        request.state.role = payload.get("role", "team")

        return await call_next(request)
