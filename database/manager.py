"""
============================================================================
PULSE ENGINE - DATABASE MANAGER
============================================================================
Engine ownership, session management and transaction handling.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
from typing import Optional, AsyncGenerator, Dict, Any
from contextlib import asynccontextmanager

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    AsyncEngine,
    async_sessionmaker
)
from sqlalchemy.pool import NullPool, StaticPool
from sqlalchemy.exc import SQLAlchemyError, OperationalError, InterfaceError

from config.settings import DatabaseSettings
from database.models import Base
from exceptions.base import InitializationError
from exceptions.database import (
    DatabaseConnectionError,
    DatabaseException,
    DatabaseQueryError,
)
from utils.logger import get_logger


logger = get_logger("Database")


# ============================================================================
# DATABASE MANAGER CLASS
# ============================================================================

class DatabaseManager:
    """
    Database manager for handling engine lifecycle and sessions.

    SQLAlchemy errors raised inside ``session()`` are wrapped into the
    project's database exceptions so callers only handle one hierarchy.
    """

    def __init__(self, settings: DatabaseSettings):
        """
        Initialize database manager.

        Args:
            settings: Database settings section
        """
        self.settings = settings
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker] = None
        self._is_initialized = False
        self._lock = asyncio.Lock()

        self.database_url = settings.url
        self.echo = settings.echo

        logger.info(f"DatabaseManager configured with URL: {self._mask_password(self.database_url)}")

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    @staticmethod
    def _mask_password(url: str) -> str:
        """
        Mask password in database URL for logging.

        Args:
            url: Database URL

        Returns:
            Masked URL
        """
        if "://" not in url:
            return url

        protocol, rest = url.split("://", 1)
        if "@" not in rest:
            return url

        credentials, host_part = rest.split("@", 1)
        if ":" in credentials:
            user, _ = credentials.split(":", 1)
            return f"{protocol}://{user}:****@{host_part}"

        return url

    def _engine_kwargs(self) -> Dict[str, Any]:
        """Pool configuration for the configured backend."""
        if self.database_url.startswith("sqlite"):
            # A private in-memory database only exists on one connection
            if ":memory:" in self.database_url or self.database_url.endswith(":///"):
                return {
                    "poolclass": StaticPool,
                    "connect_args": {"check_same_thread": False},
                }
            return {"poolclass": NullPool}

        return {
            "pool_size": self.settings.pool_size,
            "max_overflow": self.settings.max_overflow,
            "pool_timeout": self.settings.pool_timeout,
            "pool_recycle": self.settings.pool_recycle,
            "pool_pre_ping": self.settings.pool_pre_ping,
        }

    async def initialize(self) -> None:
        """
        Initialize database engine and session factory.
        Creates missing tables when DB_CREATE_TABLES is enabled.
        """
        async with self._lock:
            if self._is_initialized:
                logger.warning("Database already initialized")
                return

            try:
                self.engine = create_async_engine(
                    self.database_url,
                    echo=self.echo,
                    **self._engine_kwargs()
                )

                self._register_event_listeners()

                self.session_factory = async_sessionmaker(
                    self.engine,
                    class_=AsyncSession,
                    expire_on_commit=False,
                    autoflush=False,
                )

                if self.settings.create_tables:
                    await self.create_tables()

                self._is_initialized = True
                logger.info("Database initialized successfully")

            except (OperationalError, InterfaceError, OSError) as e:
                logger.error(f"Failed to connect to database: {e}")
                raise DatabaseConnectionError(
                    host=self.settings.host,
                    database=self.settings.name,
                    cause=e
                ) from e
            except SQLAlchemyError as e:
                logger.error(f"Failed to initialize database: {e}")
                raise InitializationError(
                    f"Database initialization failed: {e}",
                    component="database",
                    cause=e
                ) from e

    def _register_event_listeners(self) -> None:
        """Register SQLAlchemy event listeners for connection management."""

        is_sqlite = self.database_url.startswith("sqlite")
        is_sqlite_file = self._engine_kwargs().get("poolclass") is NullPool

        @event.listens_for(self.engine.sync_engine, "connect")
        def receive_connect(dbapi_conn, connection_record):
            """Handle new database connections."""
            if is_sqlite:
                # Required for ON DELETE CASCADE
                cursor = dbapi_conn.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()
            if is_sqlite_file:
                # Transactions are started explicitly in receive_begin
                dbapi_conn.isolation_level = None
            logger.debug("New database connection established")

        if is_sqlite_file:
            @event.listens_for(self.engine.sync_engine, "begin")
            def receive_begin(conn):
                # Take the write lock up front; two deferred transactions
                # upgrading from SHARED deadlock instead of waiting.
                conn.exec_driver_sql("BEGIN IMMEDIATE")

    async def create_tables(self) -> None:
        """
        Create all database tables.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")

    async def drop_tables(self) -> None:
        """
        Drop all database tables.
        WARNING: This will delete all data!
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        logger.warning("All database tables dropped")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Provide a transactional scope for database operations.

        Yields:
            AsyncSession instance

        Example:
            async with db_manager.session() as session:
                monitor = await session.get(Monitor, monitor_id)
        """
        if not self._is_initialized:
            await self.initialize()

        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except DatabaseException:
            await session.rollback()
            raise
        except (OperationalError, InterfaceError) as e:
            await session.rollback()
            logger.warning(f"Database connection error: {e}")
            raise DatabaseConnectionError(str(e), cause=e) from e
        except SQLAlchemyError as e:
            await session.rollback()
            logger.warning(f"Session error: {e}")
            raise DatabaseQueryError(str(e), cause=e) from e
        except BaseException:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def check_connection(self) -> bool:
        """
        Check if database connection is alive.

        Returns:
            True if connection is alive, False otherwise
        """
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except DatabaseException as e:
            logger.warning(f"Database connection check failed: {e}")
            return False

    async def close(self) -> None:
        """
        Close database connections and cleanup resources.
        """
        if self.engine:
            await self.engine.dispose()
            logger.info("Database connections closed")
        self._is_initialized = False
