"""
PostgreSQL server handler for database operations.

Statements are built with SQLAlchemy Core and executed through an async engine
using the asyncpg driver.
"""

import logging
import os

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from callbrain.server.common.async_engine import AsyncEngineSQLDatabase

logger = logging.getLogger(__name__)


# -------------------------------------------------------------- #
# PostgreSQL Server Handler
# -------------------------------------------------------------- #


class PostgreSQLServer(AsyncEngineSQLDatabase):
    """Handler for PostgreSQL database server operations."""

    def __init__(
        self,
        name: str = "postgresql",
        host: str | None = None,
        port: int | None = None,
        user: str | None = None,
        password: str | None = None,
        database: str | None = None,
        connection_string: str | None = None,
        pool_size: int = 10,
    ):
        """
        Initialize PostgreSQL server handler.

        Args:
            name: Name of the server handler
            host: PostgreSQL server host
            port: PostgreSQL server port (default: 5432)
            user: Database user
            password: Database password
            database: Database name
            connection_string: Full connection string (overrides individual params)
            pool_size: Connection pool size
        """
        self.host = host or os.getenv("SQL_HOST", "localhost")
        self.port = port or int(os.getenv("SQL_PORT", "5432"))
        self.user = user or os.getenv("SQL_USER", "postgres")
        self.password = password or os.getenv("SQL_PASSWORD", "")
        self.database = database or os.getenv("SQL_DATABASE", "postgres")
        self.pool_size = pool_size

        if connection_string:
            conn_str = connection_string
        else:
            conn_str = (
                f"postgresql+asyncpg://{self.user}:{self.password}"
                f"@{self.host}:{self.port}/{self.database}"
            )

        super().__init__(name, conn_str)

    def _build_engine(self) -> AsyncEngine:
        logger.info(f"[{self.name}] Creating engine for {self.host}:{self.port}/{self.database}")
        return create_async_engine(
            self.connection_string,
            pool_size=self.pool_size,
            pool_pre_ping=True,
            connect_args={"command_timeout": 60},
        )
