"""Authentication routes for user login, registration, and session management."""

from fastapi import APIRouter, Depends, HTTPException, Response, Request
from pydantic import BaseModel, EmailStr, Field

from core.container import container
from core.config import Settings
from core.logging import get_logger
from middleware.auth import extract_token
from services.user_auth import UserAuthService

logger = get_logger(__name__)
router = APIRouter(prefix="/api/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    username: str = Field(min_length=3, max_length=50)
    email: EmailStr
    password: str
    role: str = "team"


class LoginRequest(BaseModel):
    username: str = Field(min_length=3, max_length=255, description="Username or email")
    password: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


def get_user_auth_service() -> UserAuthService:
    return container.user_auth_service()


def get_settings() -> Settings:
    return container.settings()


def _set_session_cookie(response: Response, settings: Settings, token: str) -> None:
    response.set_cookie(
        key=settings.jwt_cookie_name,
        value=token,
        httponly=True,
        secure=settings.jwt_cookie_secure,
        samesite=settings.jwt_cookie_samesite,
        max_age=settings.jwt_expire_minutes * 60
    )


@router.get("/status")
async def get_auth_status(
    request: Request,
    user_auth: UserAuthService = Depends(get_user_auth_service),
    settings: Settings = Depends(get_settings)
):
    """Auth mode, registration availability and the current user if any."""
    status = user_auth.get_auth_status()

    token = extract_token(request, settings.jwt_cookie_name)
    user = await user_auth.get_current_user(token) if token else None

    return {
        "auth_mode": status["auth_mode"],
        "authenticated": user is not None,
        "user": user.public() if user else None,
        "can_register": await user_auth.can_register()
    }


@router.post("/register")
async def register(
    request: RegisterRequest,
    response: Response,
    user_auth: UserAuthService = Depends(get_user_auth_service),
    settings: Settings = Depends(get_settings)
):
    """
    Register a new user.
    In single-owner mode, only the first user can register.
    """
    user, error = await user_auth.register(
        username=request.username,
        email=request.email,
        password=request.password,
        role=request.role
    )
    if error:
        raise HTTPException(status_code=400, detail=error)

    token = user_auth.create_access_token(user)
    _set_session_cookie(response, settings, token)
    return {"success": True, "user": user.public(), "token": token}


@router.post("/login")
async def login(
    request: LoginRequest,
    response: Response,
    user_auth: UserAuthService = Depends(get_user_auth_service),
    settings: Settings = Depends(get_settings)
):
    """Login with username or email. Sets an HttpOnly JWT cookie."""
    user, error = await user_auth.login(request.username, request.password)
    if error:
        raise HTTPException(status_code=401, detail=error)

    token = user_auth.create_access_token(user)
    _set_session_cookie(response, settings, token)
    return {"success": True, "user": user.public(), "token": token}


@router.post("/logout")
async def logout(response: Response, settings: Settings = Depends(get_settings)):
    response.delete_cookie(
        key=settings.jwt_cookie_name,
        httponly=True,
        secure=settings.jwt_cookie_secure,
        samesite=settings.jwt_cookie_samesite
    )
    return {"success": True}


@router.get("/me")
async def get_current_user(
    request: Request,
    user_auth: UserAuthService = Depends(get_user_auth_service),
):
    user = await user_auth.get_user_by_id(int(request.state.user_id))
    if not user:
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    return user.public()


@router.post("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    request: Request,
    user_auth: UserAuthService = Depends(get_user_auth_service),
):
    error = await user_auth.change_password(
        int(request.state.user_id), body.current_password, body.new_password
    )
    if error:
        raise HTTPException(status_code=400, detail=error)
    return {"success": True}
