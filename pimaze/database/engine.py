"""
Database engine configuration for PiMaze Backend

Async SQLAlchemy 2.0 setup with connection pooling, wrapped in an explicitly
constructed store object that is passed to services instead of living in
module globals.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool, StaticPool

from pimaze.database.models import Base

logger = logging.getLogger(__name__)


class Database:
    """
    Relational store with an explicit init/close lifecycle

    Usage:
        db = Database(DATABASE_URL)
        await db.init()
        async with db.transaction() as session:
            ...
        await db.close()
    """

    def __init__(
        self,
        url: str,
        *,
        environment: str = "development",
        statement_timeout_ms: int = 5000,
        lock_timeout_ms: int = 3000,
        echo: bool = False,
    ):
        self.url = url
        self.environment = environment
        self.statement_timeout_ms = statement_timeout_ms
        self.lock_timeout_ms = lock_timeout_ms
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def is_sqlite(self) -> bool:
        return make_url(self.url).get_backend_name() == "sqlite"

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database is not initialized, call init() first")
        return self._engine

    async def init(self) -> None:
        """Create the engine and session maker (idempotent)"""
        if self._engine is not None:
            return

        if self.is_sqlite:
            self._engine = self._create_sqlite_engine()
        else:
            self._engine = self._create_postgres_engine()

        self._session_maker = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,  # Important for async!
            autoflush=False,
        )

        logger.info(f"Database engine created - Environment: {self.environment}, backend: {self._engine.dialect.name}")

    def _create_postgres_engine(self) -> AsyncEngine:
        is_production = self.environment == "production"

        return create_async_engine(
            self.url,
            poolclass=AsyncAdaptedQueuePool,
            pool_size=10 if is_production else 5,
            max_overflow=20 if is_production else 10,
            pool_pre_ping=True,  # Verify connections before using
            pool_recycle=3600,  # Recycle connections every hour
            echo=self.echo,
            connect_args={
                "statement_cache_size": 0,
                "server_settings": {
                    "application_name": "pimaze_api",
                    # func.date() buckets must match the UTC day tags
                    "timezone": "UTC",
                    # A stuck row lock fails the request instead of wedging the pool
                    "statement_timeout": str(self.statement_timeout_ms),
                    "lock_timeout": str(self.lock_timeout_ms),
                },
            },
        )

    def _create_sqlite_engine(self) -> AsyncEngine:
        in_memory = make_url(self.url).database in (None, "", ":memory:")

        engine = create_async_engine(
            self.url,
            echo=self.echo,
            connect_args={"check_same_thread": False},
            # One shared connection keeps an in-memory database alive
            poolclass=StaticPool if in_memory else None,
        )

        @event.listens_for(engine.sync_engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            # Let SQLAlchemy emit BEGIN itself (see _begin_immediate)
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine.sync_engine, "begin")
        def _begin_immediate(conn):
            # SQLite has no row locks: take the write lock up front so
            # concurrent transactions serialize like SELECT ... FOR UPDATE
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    async def close(self) -> None:
        """Dispose the engine and close all connections"""
        if self._engine is not None:
            await self._engine.dispose()
            logger.info("Database engine disposed")
        self._engine = None
        self._session_maker = None

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Plain session for read paths"""
        if self._session_maker is None:
            raise RuntimeError("Database is not initialized, call init() first")

        async with self._session_maker() as session:
            yield session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """
        Session inside one transaction: committed when the block succeeds,
        rolled back entirely on any exception.
        """
        async with self.session() as session:
            async with session.begin():
                yield session

    async def create_all(self) -> None:
        """
        Create all tables if they don't exist

        For production, use Alembic migrations instead.
        """
        logger.info("Creating database tables...")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")

    async def drop_all(self) -> None:
        """Drop all tables (development/testing only)"""
        if self.environment == "production":
            raise RuntimeError("Cannot drop database in production environment!")

        logger.warning("Dropping all database tables...")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        logger.warning("Database tables dropped")

    async def check_connection(self) -> bool:
        """Check database connection"""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("Database connection check: OK")
            return True
        except Exception as e:
            logger.error(f"Database connection check failed: {e}", exc_info=True)
            return False


def create_database() -> Database:
    """Database configured from config/config.py"""
    from config.config import (
        DATABASE_URL,
        ENVIRONMENT,
        DB_STATEMENT_TIMEOUT_MS,
        DB_LOCK_TIMEOUT_MS,
    )

    return Database(
        DATABASE_URL,
        environment=ENVIRONMENT,
        statement_timeout_ms=DB_STATEMENT_TIMEOUT_MS,
        lock_timeout_ms=DB_LOCK_TIMEOUT_MS,
    )


if __name__ == "__main__":
    # Test database connection
    import asyncio
    from config.logging import setup_logging

    setup_logging()

    async def test():
        print("Testing database connection...")
        db = create_database()
        await db.init()

        is_connected = await db.check_connection()
        print(f'Connection: {"✅ OK" if is_connected else "❌ FAILED"}')

        # Initialize tables (use Alembic in production!)
        if is_connected:
            print("\nCreating tables...")
            await db.create_all()
            print("✅ Tables created")

        await db.close()
        print("\n✅ Engine disposed")

    asyncio.run(test())
