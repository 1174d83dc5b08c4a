import os

from dotenv import load_dotenv

from callbrain.server.common.chroma import construct_vector_db_client
from callbrain.server.common.whisper_server import construct_whisper_server_client
from callbrain.server.production.postgresql import PostgreSQLServer
from callbrain.server.server import ServerManager

load_dotenv(dotenv_path=".env.local")

# -------------------------------------------------------------- #
# Constructor for Production Server Manager
# -------------------------------------------------------------- #


def load_sql_client() -> PostgreSQLServer:
    """Load and return the SQL client for production."""
    host = os.getenv("SQL_HOST")
    port = int(os.getenv("SQL_PORT", "5432"))
    user = os.getenv("SQL_USER")
    password = os.getenv("SQL_PASSWORD")
    database = os.getenv("SQL_DATABASE")

    if not host or not user or not password or not database:
        raise ValueError("Missing required SQL environment variables.")

    return PostgreSQLServer(host=host, port=port, user=user, password=password, database=database)


def construct_server_manager(context) -> ServerManager:
    """
    Construct and return a ServerManager instance for production.

    Args:
        context: Application context

    Returns:
        Configured ServerManager instance
    """
    sql_handler = load_sql_client()

    vector_db_client = construct_vector_db_client(
        host=os.getenv("CHROMA_HOST", "localhost"),
        port=int(os.getenv("CHROMA_PORT", "8000")),
    )

    whisper_host = os.getenv("WHISPER_HOST", "localhost")
    whisper_port = os.getenv("WHISPER_PORT", "50021")
    whisper_server_client = construct_whisper_server_client(
        endpoint=f"http://{whisper_host}:{whisper_port}"
    )

    return ServerManager(
        context=context,
        sql_client=sql_handler,
        vector_db_client=vector_db_client,
        whisper_server_client=whisper_server_client,
    )
