"""
Server layer for the storage and inference backends.

The ServerManager owns one handler per backend role and brings them up in a
fixed order: relational store, vector index, speech-to-text. The pipeline
cannot run on a partial set, so a failed connect tears down whatever was
already connected before the error propagates.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from callbrain.server.services import (
    BaseServerHandler,
    SQLDatabase,
    VectorDBDatabase,
    WhisperServerHandler,
)

if TYPE_CHECKING:
    from callbrain.context import Context

logger = logging.getLogger(__name__)

# connect order; disconnect runs in reverse
BACKEND_ROLES = {
    "sql": "recordings, transcripts, summaries and tasks",
    "vector_db": "embedded units for retrieval",
    "whisper_server": "speech-to-text",
}


@dataclass(frozen=True)
class BackendHealth:
    """Health of one backend role as reported by ``health_summary``."""

    key: str
    role: str
    server_name: str
    connected: bool
    healthy: bool
    error: str | None = None


# -------------------------------------------------------------- #
# Server Manager
# -------------------------------------------------------------- #


class ServerManager:
    """Owns the relational store, vector index and speech-to-text handlers."""

    def __init__(
        self,
        context: "Context",
        sql_client: SQLDatabase,
        vector_db_client: VectorDBDatabase,
        whisper_server_client: WhisperServerHandler,
    ):
        self.context = context
        self._initialized = False
        self._sql_client = sql_client
        self._vector_db_client = vector_db_client
        self._whisper_server_client = whisper_server_client

        self._servers: dict[str, BaseServerHandler] = {
            "sql": sql_client,
            "vector_db": vector_db_client,
            "whisper_server": whisper_server_client,
        }

    # ------------------------------------------------------ #
    # Server Management
    # ------------------------------------------------------ #

    async def connect_all(self) -> None:
        """
        Connect every backend and run its startup actions.

        If one backend fails, the ones already connected are closed again in
        reverse order and the original error is re-raised.
        """
        logger.info(f"[ServerManager] Connecting backends: {', '.join(self._servers)}")

        connected: list[str] = []
        for key, server in self._servers.items():
            try:
                await server.connect()
                connected.append(key)
                await server.on_startup()
            except Exception as e:
                logger.error(f"[ServerManager] '{key}' ({BACKEND_ROLES[key]}) failed to start: {e}")
                await self._close(reversed(connected))
                raise
            logger.info(f"[ServerManager] '{key}' ready ({server.name}).")

        self._initialized = True
        logger.info("[ServerManager] All backends connected.")

    async def disconnect_all(self) -> None:
        """Disconnect every backend in reverse connect order."""
        await self._close(reversed(list(self._servers)))
        self._initialized = False
        logger.info("[ServerManager] All backends disconnected.")

    async def _close(self, keys) -> None:
        for key in keys:
            server = self._servers[key]
            try:
                await server.on_close()
            finally:
                await server.disconnect()
            logger.info(f"[ServerManager] '{key}' disconnected.")

    # ------------------------------------------------------ #
    # Health
    # ------------------------------------------------------ #

    async def health_check_all(self) -> dict[str, bool]:
        """Map each backend key to whether its health check passed."""
        return {entry.key: entry.healthy for entry in await self.health_summary()}

    async def health_summary(self) -> list[BackendHealth]:
        """
        Health of every backend role, in connect order.

        A health check that raises counts as unhealthy; the error text is kept
        on the entry instead of propagating.
        """
        summary = []
        for key, server in self._servers.items():
            error = None
            try:
                healthy = bool(await server.health_check())
            except Exception as e:
                healthy = False
                error = f"{type(e).__name__}: {e}"
                logger.warning(f"[ServerManager] Health check for '{key}' raised: {error}")

            summary.append(
                BackendHealth(
                    key=key,
                    role=BACKEND_ROLES[key],
                    server_name=server.name,
                    connected=server.is_connected,
                    healthy=healthy,
                    error=error,
                )
            )
        return summary

    # ------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------ #

    @property
    def sql_client(self) -> SQLDatabase:
        return self._sql_client

    @property
    def vector_db_client(self) -> VectorDBDatabase:
        return self._vector_db_client

    @property
    def whisper_server_client(self) -> WhisperServerHandler:
        return self._whisper_server_client

    @property
    def is_initialized(self) -> bool:
        return self._initialized
