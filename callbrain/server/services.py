from abc import ABC, abstractmethod
from typing import Any

# -------------------------------------------------------------- #
# Base Server Handler
# -------------------------------------------------------------- #


class BaseServerHandler(ABC):
    """Abstract base class for all server handlers."""

    def __init__(self, name: str):
        self.name = name
        self._connected = False

    # -------------------------------------------------------------- #
    # Handler Methods
    # -------------------------------------------------------------- #

    async def on_startup(self) -> None:
        """Actions to perform on server startup."""
        pass

    async def on_close(self) -> None:
        """Actions to perform on server close."""
        pass

    # -------------------------------------------------------------- #
    # Abstract Methods
    # -------------------------------------------------------------- #

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to the server."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the server."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the server is healthy and responding."""
        pass

    @property
    def is_connected(self) -> bool:
        """Check if currently connected to the server."""
        return self._connected


# -------------------------------------------------------------- #
# Base Service Structures
# -------------------------------------------------------------- #


# Base SQL Database Handler


class SQLDatabase(BaseServerHandler):
    """
    Relational store handler.

    Statements are SQLAlchemy Core objects (``insert``, ``select``, ``update``,
    ``delete``). Driver failures surface as ``StorageError``.
    """

    def __init__(self, name: str, connection_string: str):
        super().__init__(name)
        self.connection_string = connection_string

    # -------------------------------------------------------------- #
    # Handler Methods
    # -------------------------------------------------------------- #

    async def on_startup(self) -> None:
        await self.create_tables()

    # ------------------------------------------------------ #
    # Abstract Methods
    # ------------------------------------------------------ #

    @abstractmethod
    async def create_tables(self) -> None:
        """Create every table declared in the SQL models if missing."""
        pass

    @abstractmethod
    async def execute(self, stmt: Any) -> list[dict[str, Any]]:
        """
        Execute a statement in its own transaction.

        Args:
            stmt: SQLAlchemy Core statement

        Returns:
            Result rows as dictionaries (empty for statements without rows)
        """
        pass

    @abstractmethod
    async def execute_many(self, stmts: list[Any]) -> None:
        """Execute several statements atomically in one transaction."""
        pass


# Base Vector Database Handler


class VectorDBDatabase(BaseServerHandler):
    """Vector store handler with cosine similarity collections."""

    def __init__(self, name: str):
        super().__init__(name)
        self.client = None

    # -------------------------------------------------------------- #
    # Handler Methods
    # -------------------------------------------------------------- #

    async def on_startup(self) -> None:
        await self.create_default_collections()

    # ------------------------------------------------------ #
    # Abstract Methods
    # ------------------------------------------------------ #

    @abstractmethod
    async def create_default_collections(self) -> None:
        """Create the collections the application relies on."""
        pass

    @abstractmethod
    async def get_or_create_collection(self, collection_name: str) -> Any:
        """Return a collection handle, creating it if needed."""
        pass

    @abstractmethod
    async def collection_exists(self, collection_name: str) -> bool:
        """Check whether a collection exists."""
        pass

    @property
    def supports_similarity_search(self) -> bool:
        """Whether nearest neighbour queries are available on this backend."""
        return True


# Base Whisper Server Handler


class WhisperServerHandler(BaseServerHandler):
    """Speech to text server handler."""

    def __init__(self, name: str, endpoint: str):
        super().__init__(name)
        self.endpoint = endpoint

    # ------------------------------------------------------ #
    # Abstract Methods
    # ------------------------------------------------------ #

    @abstractmethod
    async def inference(self, audio_path: str, **kwargs) -> dict[str, Any]:
        """
        Transcribe an audio file.

        Returns:
            ``verbose_json`` response with ``text`` and ``segments``
        """
        pass
