"""
Search Data Models

Result contracts produced by the retrieval engine and consumed by the
summary generator and the HTTP layer.
"""

from __future__ import annotations

import enum
from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict


class SearchMode(str, enum.Enum):
    SEMANTIC = "semantic"
    SYMPTOMS_ONLY = "symptoms_only"
    ROOT_CAUSE_ONLY = "root_cause_only"
    HYBRID = "hybrid"


class Confidence(str, enum.Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class SearchFilters(BaseModel):
    """
    Optional restrictions on which pages may appear in results.
    """
    space_keys: List[str] = Field(default_factory=list)
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    model_config = ConfigDict(extra="forbid")


class RcaSections(BaseModel):
    """
    Parsed RCA attached to a result for presentation.
    """
    symptoms: str = ""
    root_cause: str = ""
    resolution: str = ""
    incident_date: Optional[date] = None


class ScoredChunk(BaseModel):
    """
    One ranked chunk joined with its page and parsed RCA.

    `similarity` is the raw vector similarity (1 - cosine distance);
    `combined_score` is the ranking score, equal to `similarity` outside
    hybrid mode.
    """
    chunk_id: int
    page_id: str = Field(..., min_length=1)
    chunk_type: str
    content: str
    similarity: float
    combined_score: float
    keyword_matched: bool = False
    title: str = ""
    url: str = ""
    space_key: str = ""
    rca: Optional[RcaSections] = None

    model_config = ConfigDict(frozen=True)
