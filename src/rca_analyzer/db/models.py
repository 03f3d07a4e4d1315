"""
SQLAlchemy Models

Defines the database schema for:
- RCA pages and their ingestion lifecycle
- Parsed RCA sections (one per page)
- Embedded chunks (vector storage with pgvector)
- Sync run history
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, date, timezone
from typing import Optional, List

from sqlalchemy import (
    Column,
    String,
    Integer,
    Text,
    DateTime,
    Date,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from pgvector.sqlalchemy import Vector

from ..config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ---------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------

class PageStatus(str, enum.Enum):
    PENDING = "PENDING"
    PARSED = "PARSED"
    EMBEDDED = "EMBEDDED"
    ERROR = "ERROR"


class ChunkType(str, enum.Enum):
    SYMPTOMS = "SYMPTOMS"
    ROOT_CAUSE = "ROOT_CAUSE"


class SyncType(str, enum.Enum):
    FULL = "FULL"
    INCREMENTAL = "INCREMENTAL"


class SyncStatus(str, enum.Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# ---------------------------------------------------------------------
# RCA Page Model
# ---------------------------------------------------------------------

class RcaPage(Base):
    """
    A source page and its position in the ingestion lifecycle.
    """
    __tablename__ = "rca_page"

    page_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    space_key: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    tags: Mapped[List[str]] = mapped_column(JSONB, nullable=False, default=list)
    last_modified: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ingested_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    parsed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    embedding_generated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=PageStatus.PENDING.value,
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    __table_args__ = (
        Index("idx_rca_page_space", "space_key"),
        Index("idx_rca_page_status", "status"),
    )


# ---------------------------------------------------------------------
# Parsed RCA Model
# ---------------------------------------------------------------------

class ParsedRca(Base):
    """
    Structured sections extracted from a page. Replaced on every re-parse.
    """
    __tablename__ = "parsed_rca"

    page_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("rca_page.page_id", ondelete="CASCADE"),
        primary_key=True,
    )
    symptoms: Mapped[str] = mapped_column(Text, nullable=False, default="")
    root_cause: Mapped[str] = mapped_column(Text, nullable=False, default="")
    resolution: Mapped[str] = mapped_column(Text, nullable=False, default="")
    incident_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )


# ---------------------------------------------------------------------
# Embedded Chunk Model
# ---------------------------------------------------------------------

class RcaEmbedding(Base):
    """
    One embedded text window of a page section.

    Uses pgvector for similarity search.
    """
    __tablename__ = "rca_embedding"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    page_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("rca_page.page_id", ondelete="CASCADE"),
        nullable=False,
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    chunk_type: Mapped[str] = mapped_column(String(32), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_: Mapped[Optional[dict]] = mapped_column(
        "metadata",
        JSONB,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    # pgvector column - dimension is fixed by the configured provider
    embedding = Column(Vector(settings.embedding_dimension), nullable=False)

    __table_args__ = (
        UniqueConstraint("page_id", "chunk_index", "chunk_type", name="uq_chunk_position"),
        Index("idx_embedding_page", "page_id"),
    )


# ---------------------------------------------------------------------
# Sync Run Model
# ---------------------------------------------------------------------

class SyncRun(Base):
    """
    One invocation of the sync orchestrator.
    """
    __tablename__ = "sync_run"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    sync_type: Mapped[str] = mapped_column(String(16), nullable=False)
    spaces: Mapped[List[str]] = mapped_column(JSONB, nullable=False, default=list)
    tags: Mapped[List[str]] = mapped_column(JSONB, nullable=False, default=list)
    page_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    pages_fetched: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pages_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pages_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=SyncStatus.RUNNING.value,
    )
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_sync_run_started", "started_at"),
    )
