"""
Shared SQLAlchemy async engine handling for SQL server handlers.

Both the production PostgreSQL handler (asyncpg driver) and the in-memory
SQLite test handler (aiosqlite driver) run SQLAlchemy Core statements through
an ``AsyncEngine``; only engine construction differs.
"""

import logging
from abc import abstractmethod
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from callbrain.server.db_models import SQL_DATABASE_MODELS
from callbrain.server.services import SQLDatabase
from callbrain.services.common.errors import StorageError

logger = logging.getLogger(__name__)


# -------------------------------------------------------------- #
# Async Engine SQL Handler
# -------------------------------------------------------------- #


class AsyncEngineSQLDatabase(SQLDatabase):
    """SQL handler backed by a SQLAlchemy ``AsyncEngine``."""

    def __init__(self, name: str, connection_string: str):
        super().__init__(name, connection_string)
        self.engine: AsyncEngine | None = None

    # -------------------------------------------------------------- #
    # Engine Construction
    # -------------------------------------------------------------- #

    @abstractmethod
    def _build_engine(self) -> AsyncEngine:
        """Create the engine for this backend."""
        pass

    # -------------------------------------------------------------- #
    # Connection Management
    # -------------------------------------------------------------- #

    async def connect(self) -> None:
        """Create the engine and verify the connection."""
        try:
            self.engine = self._build_engine()
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            self._connected = True
            logger.info(f"[{self.name}] Connected")
        except Exception as e:
            logger.error(f"[{self.name}] Failed to connect: {e}")
            self._connected = False
            raise

    async def disconnect(self) -> None:
        """Dispose of the engine and its pool."""
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
        self._connected = False
        logger.info(f"[{self.name}] Disconnected")

    async def health_check(self) -> bool:
        """Check if the database answers a trivial query."""
        if self.engine is None:
            return False

        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(text("SELECT 1"))
                is_healthy = result.scalar() == 1
            if not is_healthy:
                logger.warning(f"[{self.name}] Health check failed")
            return is_healthy
        except Exception as e:
            logger.error(f"[{self.name}] Health check error: {e}")
            return False

    async def create_tables(self) -> None:
        """Create all tables declared in the SQL models."""
        if self.engine is None:
            raise RuntimeError(f"[{self.name}] Not connected")

        tables = [model.__table__ for model in SQL_DATABASE_MODELS]
        async with self.engine.begin() as conn:
            await conn.run_sync(
                lambda sync_conn: tables[0].metadata.create_all(sync_conn, tables=tables)
            )
        logger.info(f"[{self.name}] Created tables: {[t.name for t in tables]}")

    # -------------------------------------------------------------- #
    # Query Execution
    # -------------------------------------------------------------- #

    async def execute(self, stmt: Any) -> list[dict[str, Any]]:
        """
        Execute a SQLAlchemy Core statement in its own transaction.

        Args:
            stmt: SQLAlchemy Core statement

        Returns:
            Result rows as dictionaries

        Raises:
            StorageError: If the driver rejects the statement or the database is down
        """
        if self.engine is None:
            raise StorageError(f"[{self.name}] Not connected", operation="execute")

        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(stmt)
                if result.returns_rows:
                    return [dict(row._mapping) for row in result.fetchall()]
                return []
        except SQLAlchemyError as e:
            logger.error(f"[{self.name}] Query execution failed: {e}")
            raise StorageError(str(e), operation="execute") from e

    async def execute_many(self, stmts: list[Any]) -> None:
        """
        Execute statements atomically.

        Raises:
            StorageError: If any statement fails; nothing is committed
        """
        if self.engine is None:
            raise StorageError(f"[{self.name}] Not connected", operation="execute_many")

        try:
            async with self.engine.begin() as conn:
                for stmt in stmts:
                    await conn.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(f"[{self.name}] Batch execution failed: {e}")
            raise StorageError(str(e), operation="execute_many") from e
