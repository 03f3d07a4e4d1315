import asyncio
import hashlib
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import pytest

from rca_analyzer.confluence.models import PageContent
from rca_analyzer.core.errors import UpstreamError
from rca_analyzer.db import MemoryStore
from rca_analyzer.ingestion.chunker import Chunker
from rca_analyzer.ingestion.pipeline import PagePipeline


RCA_BODY = (
    "<h1>Checkout outage</h1>"
    "<p>Incident date: 2024-03-05</p>"
    "<h2>Impact</h2><p>Checkout latency spiked to 30s for all users.</p>"
    "<h2>Root Cause</h2><p>The database connection pool was exhausted.</p>"
    "<h2>Action Taken</h2><p>Raised the pool size and restarted the service.</p>"
)


def make_page(
    page_id: str,
    space_key: str = "OPS",
    body: str = RCA_BODY,
    last_modified: Optional[datetime] = None,
    labels: Optional[List[str]] = None,
    title: Optional[str] = None,
) -> PageContent:
    return PageContent(
        id=page_id,
        title=title or f"RCA {page_id}",
        space_key=space_key,
        url=f"https://confluence.example.com/pages/{page_id}",
        body=body,
        last_modified=last_modified or datetime(2024, 3, 6, tzinfo=timezone.utc),
        labels=labels if labels is not None else ["rca"],
    )


class FakeDocumentSource:
    """
    In-memory document source with switchable failures.
    """

    def __init__(self, pages: Sequence[PageContent] = ()):
        self.pages: Dict[str, PageContent] = {p.id: p for p in pages}
        self.failing_spaces = set()
        self.failing_ids = set()

    def add(self, page: PageContent) -> None:
        self.pages[page.id] = page

    async def fetch_pages(self, space_key, tags=None):
        if space_key in self.failing_spaces:
            raise UpstreamError(f"Failed to list pages in space {space_key}")
        return [
            p
            for p in self.pages.values()
            if p.space_key == space_key and (not tags or p.has_any_label(tags))
        ]

    async def fetch_page_by_id(self, page_id):
        if page_id in self.failing_ids:
            raise UpstreamError(f"Failed to fetch page {page_id}")
        return self.pages.get(page_id)

    async def fetch_modified_since(self, since, space_keys, tags=None):
        modified = []
        for space_key in space_keys:
            for page in await self.fetch_pages(space_key, tags):
                if page.last_modified > since:
                    modified.append(page)
        return modified


class FakeEmbedder:
    """
    Deterministic hash-based vectors. Texts containing any `failing` marker
    get an empty vector, like a provider-side per-item failure.
    """

    def __init__(self, dim: int = 8, failing: Sequence[str] = ()):
        self.dim = dim
        self.failing = list(failing)
        self.calls: List[List[str]] = []

    def vector(self, text: str) -> List[float]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [float(b + 1) for b in digest[: self.dim]]

    async def embed(self, text: str) -> List[float]:
        vectors = await self.embed_batch([text])
        return vectors[0] if vectors else []

    async def embed_batch(self, texts):
        self.calls.append(list(texts))
        return [
            [] if any(marker in text for marker in self.failing) else self.vector(text)
            for text in texts
        ]


class FixedEmbedder:
    """
    Returns the same query vector for every text.
    """

    def __init__(self, vector: List[float]):
        self._vector = vector

    async def embed(self, text: str) -> List[float]:
        return list(self._vector)

    async def embed_batch(self, texts):
        return [list(self._vector) for _ in texts]


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def source():
    return FakeDocumentSource([make_page("100"), make_page("101"), make_page("102")])


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def pipeline(store, source, embedder):
    return PagePipeline(store, source, embedder, chunker=Chunker(size=800, overlap=150))


class SlowEmbedder(FakeEmbedder):
    """
    FakeEmbedder that yields to the event loop before answering.
    """

    def __init__(self, delay: float = 0.02, **kwargs):
        super().__init__(**kwargs)
        self.delay = delay

    async def embed_batch(self, texts):
        await asyncio.sleep(self.delay)
        return await super().embed_batch(texts)
