from callbrain.server.server import ServerManager
from callbrain.server.testing.sqlite import InMemorySQLiteServer
from callbrain.server.testing.vector_db import InMemoryChromaDBClient
from callbrain.server.testing.whisper_server import MockWhisperServerClient

# -------------------------------------------------------------- #
# Constructor for Testing Server Manager
# -------------------------------------------------------------- #


def construct_server_manager(context) -> ServerManager:
    """
    Construct a ServerManager backed entirely by in-memory services.

    Args:
        context: Application context

    Returns:
        ServerManager with in-memory SQLite, in-memory ChromaDB and a mock
        whisper server
    """
    return ServerManager(
        context=context,
        sql_client=InMemorySQLiteServer(),
        vector_db_client=InMemoryChromaDBClient(),
        whisper_server_client=MockWhisperServerClient(),
    )
