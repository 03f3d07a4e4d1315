"""
API Models

Request and response schemas for the ingestion, search and management
endpoints.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ..db.models import SyncRun, SyncType
from ..search.models import Confidence, ScoredChunk, SearchFilters, SearchMode


# ---------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------

class OperationResult(BaseModel):
    """
    Result of a single-page mutation.
    """
    status: Literal["processed", "ok"]
    page_id: str
    details: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------

class SyncRequest(BaseModel):
    """
    Start a sync. Spaces default to the configured spaces when omitted.
    """
    space_keys: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("space_keys", "spaces"),
    )
    sync_type: SyncType = SyncType.FULL
    tags: Optional[List[str]] = None
    limit: Optional[int] = Field(default=None, ge=1)

    model_config = ConfigDict(extra="forbid")


class SyncResponse(BaseModel):
    sync_id: uuid.UUID
    sync_type: str
    status: str
    spaces: List[str] = Field(default_factory=list)
    pages_fetched: int = 0
    pages_processed: int = 0
    pages_failed: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @classmethod
    def from_run(cls, run: SyncRun) -> "SyncResponse":
        return cls(
            sync_id=run.id,
            sync_type=run.sync_type,
            status=run.status,
            spaces=list(run.spaces or []),
            pages_fetched=run.pages_fetched or 0,
            pages_processed=run.pages_processed or 0,
            pages_failed=run.pages_failed or 0,
            started_at=run.started_at,
            completed_at=run.completed_at,
            error_message=run.error_message,
        )


# ---------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------

class DateRange(BaseModel):
    from_: Optional[date] = Field(default=None, alias="from")
    to: Optional[date] = None

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class FilterBy(BaseModel):
    space_keys: List[str] = Field(default_factory=list)
    date_range: Optional[DateRange] = None

    model_config = ConfigDict(extra="forbid")

    def to_filters(self) -> SearchFilters:
        return SearchFilters(
            space_keys=self.space_keys,
            date_from=self.date_range.from_ if self.date_range else None,
            date_to=self.date_range.to if self.date_range else None,
        )


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    top_k: Optional[int] = Field(default=None, ge=1, le=50)
    mode: Optional[SearchMode] = None
    filter_by: Optional[FilterBy] = None

    model_config = ConfigDict(extra="forbid")


class Summary(BaseModel):
    suggested_root_cause: str
    confidence: Confidence
    similar_incidents: int = Field(..., ge=0)


class SearchResponse(BaseModel):
    query: str
    results: List[ScoredChunk]
    summary: Summary
    execution_time_ms: int = Field(..., ge=0)


# ---------------------------------------------------------------------
# Management
# ---------------------------------------------------------------------

class StatsResponse(BaseModel):
    total_pages: int = Field(..., ge=0)
    total_chunks: int = Field(..., ge=0)
    pages_by_status: Dict[str, int] = Field(default_factory=dict)


class IngestionConfigResponse(BaseModel):
    default_spaces: List[str]
    default_tags: List[str]
    chunk_size: int
    chunk_overlap: int


class PageResponse(BaseModel):
    page_id: str
    space_key: str
    title: str
    url: Optional[str] = None
    tags: Optional[List[str]] = None
    status: str
    error_message: Optional[str] = None
    last_modified: Optional[datetime] = None
    ingested_at: Optional[datetime] = None
    parsed_at: Optional[datetime] = None
    embedding_generated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
