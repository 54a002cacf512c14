"""
Database Connection and Session Management

Provides the async SQLAlchemy 2.0 engine and session factory behind an
explicitly constructed Database handle. The handle is opened at process
start (application lifespan or script entry) and closed at shutdown.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool

from app.models.database import Base

logger = logging.getLogger(__name__)


class Database:
    """
    Owns the async engine and session factory.

    Usage:
        db = Database(settings.database_url)
        await db.connect()
        async with db.session() as session:
            ...
        await db.close()
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def dialect(self) -> str:
        """Backend name, e.g. 'postgresql' or 'sqlite'."""
        return make_url(self.url).get_backend_name()

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    async def connect(self, create_schema: bool = False) -> None:
        """Create the engine and session factory.

        Args:
            create_schema: Create tables directly. Development and tests
                only; production schemas are managed by migrations.
        """
        if self._engine is not None:
            return

        url = make_url(self.url)
        if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
            # One shared connection, otherwise each session sees an empty database
            self._engine = create_async_engine(
                self.url,
                echo=self.echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            self._engine = create_async_engine(
                self.url,
                echo=self.echo,
                poolclass=NullPool,
            )

        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

        if create_schema:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables initialized")

        logger.info(f"Database connected ({self.dialect})")

    async def close(self) -> None:
        """Dispose of all pooled connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database connections closed")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Transactional session scope.

        Commits on success, rolls back on any exception (including
        cancellation), and always closes the session.

        Yields:
            AsyncSession: Database session
        """
        if self._session_factory is None:
            raise RuntimeError("Database is not connected")

        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except BaseException:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def check_health(self) -> bool:
        """
        Check database connectivity for health checks.

        Returns:
            bool: True if database is accessible, False otherwise
        """
        if self._session_factory is None:
            return False
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            return False
