"""
Database Package

Provides SQLAlchemy async session management, model definitions for
PostgreSQL with pgvector, and the two store backends.
"""

from .session import async_engine, AsyncSessionLocal, init_models
from .models import (
    Base,
    RcaPage,
    ParsedRca,
    RcaEmbedding,
    SyncRun,
    PageStatus,
    ChunkType,
    SyncType,
    SyncStatus,
)
from .filters import NeighborFilter
from .store import RcaStore
from .memory_store import MemoryStore

__all__ = [
    "async_engine",
    "AsyncSessionLocal",
    "init_models",
    "Base",
    "RcaPage",
    "ParsedRca",
    "RcaEmbedding",
    "SyncRun",
    "PageStatus",
    "ChunkType",
    "SyncType",
    "SyncStatus",
    "NeighborFilter",
    "RcaStore",
    "MemoryStore",
]
