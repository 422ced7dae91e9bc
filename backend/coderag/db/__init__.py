"""Relational storage for chunks, embedding jobs and chat sessions."""

from .chunks import ChunkStore
from .database import Base, init_db, make_engine, make_session_factory
from .jobs import JobStore
from .sessions import SessionStore

__all__ = [
    "Base",
    "ChunkStore",
    "JobStore",
    "SessionStore",
    "init_db",
    "make_engine",
    "make_session_factory",
]
