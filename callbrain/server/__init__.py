"""Server handlers for the relational store, the vector store and speech-to-text."""

from .server import ServerManager
from .services import BaseServerHandler, SQLDatabase, VectorDBDatabase, WhisperServerHandler

__all__ = [
    "BaseServerHandler",
    "SQLDatabase",
    "VectorDBDatabase",
    "WhisperServerHandler",
    "ServerManager",
]
