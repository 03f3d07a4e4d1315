"""
Document Source Data Models

Canonical representation of a page as returned by the document source,
before any parsing or persistence.
"""

from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, Field, ConfigDict


class PageContent(BaseModel):
    """
    A single page fetched from the document source.
    """

    id: str = Field(
        ...,
        min_length=1,
        description="Stable source page id.",
    )

    title: str = Field(
        default="",
        description="Page title.",
    )

    space_key: str = Field(
        default="",
        description="Key of the space the page lives in.",
    )

    url: str = Field(
        default="",
        description="Browser URL of the page.",
    )

    body: str = Field(
        default="",
        description="Raw page markup (storage format).",
    )

    last_modified: datetime = Field(
        ...,
        description="Timezone-aware timestamp of the latest page version.",
    )

    labels: List[str] = Field(
        default_factory=list,
        description="Labels / tags attached to the page.",
    )

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
    )

    def has_any_label(self, tags: List[str]) -> bool:
        return any(label in tags for label in self.labels)
