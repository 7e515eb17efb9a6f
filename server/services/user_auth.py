"""User authentication service with JWT handling."""

import re
from datetime import datetime, timezone, timedelta
from typing import Optional, Dict, Any

from jose import jwt, JWTError
from sqlalchemy import func, or_
from sqlmodel import select

from core.config import Settings
from core.database import Database
from core.logging import get_logger
from models.auth import User, ROLES

logger = get_logger(__name__)

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{3,50}$")


def password_problem(password: str) -> Optional[str]:
    """Error message for a weak password, None when acceptable."""
    if len(password) < 8:
        return "Password must be at least 8 characters"
    if not (re.search(r"[a-z]", password) and re.search(r"[A-Z]", password) and re.search(r"\d", password)):
        return "Password must contain upper and lower case letters and a digit"
    return None


class UserAuthService:
    """Registration, login and JWT tokens."""

    def __init__(self, database: Database, settings: Settings):
        self.database = database
        self.settings = settings
        self._algorithm = "HS256"

    async def get_user_count(self) -> int:
        async with self.database.get_session() as session:
            result = await session.execute(select(func.count()).select_from(User))
            return int(result.scalar_one())

    async def get_user_by_login(self, login: str) -> Optional[User]:
        """Look a user up by username or email."""
        login = login.strip()
        async with self.database.get_session() as session:
            result = await session.execute(
                select(User).where(or_(User.username == login, User.email == login.lower()))
            )
            return result.scalars().first()

    async def get_user_by_id(self, user_id: int) -> Optional[User]:
        async with self.database.get_session() as session:
            return await session.get(User, user_id)

    async def can_register(self) -> bool:
        if self.settings.auth_mode == "multi":
            return True
        return await self.get_user_count() == 0

    async def register(
        self, username: str, email: str, password: str, role: str = "team"
    ) -> tuple[Optional[User], Optional[str]]:
        """
        Register a new user.
        Returns (user, None) on success, (None, error_message) on failure.
        """
        if not await self.can_register():
            return None, "Registration disabled - owner account already exists"

        if not USERNAME_PATTERN.match(username or ""):
            return None, "Username must be 3-50 letters, digits, '_' or '-'"
        if role not in ROLES:
            return None, f"Role must be one of {', '.join(ROLES)}"
        problem = password_problem(password)
        if problem:
            return None, problem

        if await self.get_user_by_login(username) or await self.get_user_by_login(email):
            return None, "Username or email already registered"

        # The very first account administers the instance.
        if await self.get_user_count() == 0:
            role = "admin"

        user = User.create(username=username, email=email, password=password, role=role)
        async with self.database.get_session() as session:
            session.add(user)
            await session.commit()
            await session.refresh(user)

        logger.info("User registered", username=username, role=role)
        return user, None

    async def login(self, login: str, password: str) -> tuple[Optional[User], Optional[str]]:
        user = await self.get_user_by_login(login)
        if not user or not user.verify_password(password):
            return None, "Invalid username or password"
        if not user.is_active:
            return None, "Account is disabled"

        async with self.database.get_session() as session:
            db_user = await session.get(User, user.id)
            if db_user:
                db_user.last_login = datetime.now(timezone.utc)
                await session.commit()
                user = db_user

        logger.info("User logged in", username=user.username)
        return user, None

    async def change_password(self, user_id: int, current: str, new: str) -> Optional[str]:
        """Returns an error message, or None on success."""
        async with self.database.get_session() as session:
            user = await session.get(User, user_id)
            if user is None:
                return "User not found"
            if not user.verify_password(current):
                return "Current password is incorrect"
            problem = password_problem(new)
            if problem:
                return problem
            user.set_password(new)
            await session.commit()
        logger.info("Password changed", user_id=user_id)
        return None

    def create_access_token(self, user: User) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user.id),
            "username": user.username,
            "role": user.role,
            "exp": now + timedelta(minutes=self.settings.jwt_expire_minutes),
            "iat": now,
        }
        return jwt.encode(payload, self.settings.jwt_secret_key, algorithm=self._algorithm)

    def verify_token(self, token: str) -> Optional[Dict[str, Any]]:
        """Payload of a valid token, None if invalid or expired."""
        try:
            return jwt.decode(token, self.settings.jwt_secret_key, algorithms=[self._algorithm])
        except JWTError as e:
            logger.debug("Token verification failed", error=str(e))
            return None

    async def get_current_user(self, token: str) -> Optional[User]:
        payload = self.verify_token(token)
        if not payload or not payload.get("sub"):
            return None
        return await self.get_user_by_id(int(payload["sub"]))

    def get_auth_status(self) -> Dict[str, Any]:
        return {
            "auth_mode": self.settings.auth_mode,
            "registration_enabled": self.settings.auth_mode == "multi",
        }
