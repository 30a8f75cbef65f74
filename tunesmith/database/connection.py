"""
Tunesmith Database Connection Manager
Owns the async engine for generation/track storage and the optional Redis
client used by the shared rate limiter
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Optional

import redis.asyncio as redis
import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    create_async_engine,
    async_sessionmaker
)
from sqlalchemy.orm import declarative_base

from ..core.config import get_settings

logger = structlog.get_logger("tunesmith.database")

# Declarative base shared by models and migrations
Base = declarative_base()


class DatabaseManager:
    """Engine, session factory and Redis client for one process"""

    def __init__(self, database_url: Optional[str] = None, redis_url: Optional[str] = None):
        settings = get_settings()
        self.database_url = database_url or settings.DATABASE_URL
        self.redis_url = redis_url or settings.REDIS_URL
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None
        self._redis: Optional[redis.Redis] = None

    def _engine_options(self) -> Dict:
        settings = get_settings()
        options = {"echo": settings.is_development, "pool_pre_ping": True}
        # SQLite engines use a single-connection pool without sizing
        if not self.database_url.startswith("sqlite"):
            options["pool_size"] = settings.DATABASE_POOL_SIZE
            options["max_overflow"] = settings.DATABASE_MAX_OVERFLOW
        return options

    async def initialize(self, use_redis: bool = False) -> None:
        """Open the engine, and Redis when the rate limiter needs it"""

        self._engine = create_async_engine(self.database_url, **self._engine_options())
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        if use_redis:
            self._redis = redis.Redis.from_url(
                self.redis_url,
                max_connections=20,
                retry_on_timeout=True,
                decode_responses=True
            )

        report = await self.check_health()
        logger.info("Database manager initialized", **report)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None

    @property
    def session_factory(self) -> async_sessionmaker:
        if not self._session_factory:
            raise RuntimeError("Database not initialized")
        return self._session_factory

    @property
    def redis(self) -> Optional[redis.Redis]:
        """Redis client, or None when the in-memory rate limiter is in use"""
        return self._redis

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session that rolls back on error"""
        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def check_health(self) -> Dict[str, Optional[bool]]:
        """Probe each backend; Redis is None when not configured"""
        report: Dict[str, Optional[bool]] = {"database": False, "redis": None}

        try:
            async with self.get_session() as session:
                await session.execute(text("SELECT 1"))
            report["database"] = True
        except Exception as e:
            logger.error("Database health check failed", error=str(e))

        if self._redis is not None:
            try:
                report["redis"] = bool(await self._redis.ping())
            except redis.RedisError as e:
                logger.error("Redis health check failed", error=str(e))
                report["redis"] = False

        return report


# Global database manager instance
database_manager = DatabaseManager()
