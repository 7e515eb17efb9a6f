"""Async database service with SQLModel and SQLAlchemy 2.0.

Acts as the generic document store behind the reconciler (downloads), the
persistent tier of the TTL cache (cache_entries) and the activity log.
"""

import time
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional
from sqlmodel import SQLModel, select
from sqlalchemy import delete as sa_delete, func
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.exc import IntegrityError
from contextlib import asynccontextmanager

from core.config import Settings
from core.exceptions import ConflictError
from models.database import Download, ActivityLog
from models.cache import CacheEntry
from models.auth import User  # noqa: F401  (table registration)
from core.logging import get_logger

logger = get_logger(__name__)


class Database:
    """Async database service with SQLModel."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.engine = None
        self.async_session = None

    async def startup(self):
        """Initialize database connection and create tables."""
        try:
            import logging
            logging.getLogger("aiosqlite").setLevel(logging.WARNING)
            logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
            logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)

            engine_kwargs: Dict[str, Any] = {"echo": self.settings.database_echo, "future": True}
            if not self.settings.database_url.startswith("sqlite"):
                engine_kwargs["pool_size"] = self.settings.database_pool_size
                engine_kwargs["max_overflow"] = self.settings.database_max_overflow

            self.engine = create_async_engine(self.settings.database_url, **engine_kwargs)

            self.async_session = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)

            logger.info("Database initialized successfully")

        except Exception as e:
            logger.error("Database startup failed", error=str(e))
            raise

    async def shutdown(self):
        """Close database connections."""
        if self.engine:
            await self.engine.dispose()
            logger.info("Database connections closed")

    @asynccontextmanager
    async def get_session(self):
        """Get async database session."""
        if not self.async_session:
            raise RuntimeError("Database not initialized")

        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    # ============================================================================
    # Downloads (local records, one owner each)
    # ============================================================================

    async def find_downloads(self, user_id: str, **filters: Any) -> List[Download]:
        """All downloads owned by user_id, optionally filtered by column equality."""
        async with self.get_session() as session:
            stmt = select(Download).where(Download.user_id == user_id)
            for column, value in filters.items():
                stmt = stmt.where(getattr(Download, column) == value)
            stmt = stmt.order_by(Download.added_at.desc())
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_download(self, info_hash: str) -> Optional[Download]:
        """Get download by info hash."""
        async with self.get_session() as session:
            return await session.get(Download, info_hash.lower())

    async def create_download(self, download: Download) -> Download:
        """Insert a new download. Raises ConflictError if the hash is taken."""
        try:
            async with self.get_session() as session:
                session.add(download)
                await session.commit()
                await session.refresh(download)
                return download
        except IntegrityError:
            raise ConflictError(f"Download {download.info_hash} already exists")

    async def update_download(self, info_hash: str, fields: Dict[str, Any]) -> Optional[Download]:
        """Overwrite the given fields. Returns None when the row is gone."""
        async with self.get_session() as session:
            download = await session.get(Download, info_hash.lower())
            if download is None:
                return None
            for column, value in fields.items():
                setattr(download, column, value)
            download.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(download)
            return download

    async def delete_download(self, info_hash: str) -> bool:
        """Delete download by info hash."""
        async with self.get_session() as session:
            download = await session.get(Download, info_hash.lower())
            if download is None:
                return False
            await session.delete(download)
            await session.commit()
            return True

    # ============================================================================
    # Activity Log
    # ============================================================================

    async def log_activity(self, user_id: str, action: str,
                           details: Optional[Dict[str, Any]] = None) -> bool:
        """Record a user action. Failures are logged, never raised."""
        try:
            async with self.get_session() as session:
                session.add(ActivityLog(user_id=user_id, action=action, details=details))
                await session.commit()
                return True
        except Exception as e:
            logger.error("Failed to log activity", user_id=user_id, action=action, error=str(e))
            return False

    async def get_activity(self, user_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        """Most recent actions for a user."""
        try:
            async with self.get_session() as session:
                stmt = (
                    select(ActivityLog)
                    .where(ActivityLog.user_id == user_id)
                    .order_by(ActivityLog.id.desc())
                    .limit(limit)
                )
                result = await session.execute(stmt)
                return [
                    {
                        "action": row.action,
                        "details": row.details,
                        "created_at": row.created_at.isoformat() if row.created_at else None
                    }
                    for row in result.scalars().all()
                ]
        except Exception as e:
            logger.error("Failed to get activity", user_id=user_id, error=str(e))
            return []

    # ============================================================================
    # Cache Entries (persistent tier of the TTL cache)
    # ============================================================================

    async def get_cache_entry(self, entry_id: str) -> Optional[CacheEntry]:
        """Get cache row by id. Staleness is the caller's decision."""
        try:
            async with self.get_session() as session:
                return await session.get(CacheEntry, entry_id)
        except Exception as e:
            logger.error("Failed to get cache entry", entry_id=entry_id, error=str(e))
            return None

    async def set_cache_entry(self, entry: CacheEntry) -> bool:
        """Insert or fully overwrite a cache row."""
        try:
            async with self.get_session() as session:
                await session.merge(entry)
                await session.commit()
                return True
        except Exception as e:
            logger.error("Failed to set cache entry", entry_id=entry.id, error=str(e))
            return False

    async def delete_cache_entry(self, entry_id: str) -> bool:
        """Delete cache row by id."""
        try:
            async with self.get_session() as session:
                await session.execute(sa_delete(CacheEntry).where(CacheEntry.id == entry_id))
                await session.commit()
                return True
        except Exception as e:
            logger.error("Failed to delete cache entry", entry_id=entry_id, error=str(e))
            return False

    async def delete_cache_namespace(self, namespace: Optional[str] = None) -> int:
        """Delete every cache row, or every row in one namespace."""
        try:
            async with self.get_session() as session:
                stmt = sa_delete(CacheEntry)
                if namespace is not None:
                    stmt = stmt.where(CacheEntry.namespace == namespace)
                result = await session.execute(stmt)
                await session.commit()
                return result.rowcount or 0
        except Exception as e:
            logger.error("Failed to clear cache", namespace=namespace, error=str(e))
            return 0

    async def cleanup_expired_cache(self, now: Optional[float] = None) -> int:
        """Remove all stale cache rows. Returns count deleted."""
        now = time.time() if now is None else now
        try:
            async with self.get_session() as session:
                stmt = sa_delete(CacheEntry).where(
                    CacheEntry.created_at + CacheEntry.ttl_seconds <= now
                )
                result = await session.execute(stmt)
                await session.commit()
                count = result.rowcount or 0
                if count > 0:
                    logger.info("Cleaned up expired cache entries", count=count)
                return count
        except Exception as e:
            logger.error("Failed to cleanup expired cache", error=str(e))
            return 0

    async def count_cache_entries(self) -> int:
        try:
            async with self.get_session() as session:
                result = await session.execute(select(func.count()).select_from(CacheEntry))
                return int(result.scalar_one())
        except Exception as e:
            logger.error("Failed to count cache entries", error=str(e))
            return 0
