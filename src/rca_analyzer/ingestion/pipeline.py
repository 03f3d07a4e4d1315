"""
Page Pipeline

Owns the per-page lifecycle: fetch → extract → persist parsed RCA → chunk →
embed → persist chunks, recording each stage on the page's status.

Status Transitions
------------------
    PENDING  → PARSED → EMBEDDED
    any      → ERROR
    any      → PENDING   (restart: a fresh ingestion attempt)

Any other change raises InvalidTransitionError. A processing attempt on a
page that is not PENDING restarts it first, so reprocessing an EMBEDDED or
ERROR page is always legal.

Concurrency
-----------
Attempts on the same page id are serialized by a per-page asyncio.Lock;
attempts on different pages run independently.

Reprocessing is idempotent: all chunks of the page are deleted before any
new chunk is inserted, and the parsed RCA is replaced wholesale.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Dict, FrozenSet, Optional

from ..core.errors import InvalidTransitionError, NotFoundError
from ..confluence.models import PageContent
from ..db.models import ChunkType, PageStatus, ParsedRca, RcaEmbedding, RcaPage, utcnow
from ..embeddings.embedder import EmbeddingProvider
from .chunker import Chunker
from .extractor import SectionExtractor

logger = logging.getLogger("rca.pipeline")


# ---------------------------------------------------------------------
# Transition Table
# ---------------------------------------------------------------------

ALLOWED_TRANSITIONS: Dict[PageStatus, FrozenSet[PageStatus]] = {
    PageStatus.PENDING: frozenset({PageStatus.PARSED, PageStatus.ERROR}),
    PageStatus.PARSED: frozenset({PageStatus.EMBEDDED, PageStatus.ERROR}),
    PageStatus.EMBEDDED: frozenset({PageStatus.ERROR}),
    PageStatus.ERROR: frozenset({PageStatus.ERROR}),
}


def check_transition(current: PageStatus, target: PageStatus) -> None:
    """
    Raise InvalidTransitionError unless current → target is in the table.

    Restarts to PENDING do not go through this check.
    """
    if target not in ALLOWED_TRANSITIONS[current]:
        logger.error("Rejected page status transition %s -> %s", current.value, target.value)
        raise InvalidTransitionError(
            f"Invalid page status transition {current.value} -> {target.value}"
        )


class PagePipeline:
    """
    Page state tracker and per-page processing pipeline.
    """

    def __init__(
        self,
        store,
        source,
        embedder: EmbeddingProvider,
        extractor: Optional[SectionExtractor] = None,
        chunker: Optional[Chunker] = None,
    ) -> None:
        """
        Parameters
        ----------
        store : RcaStore | MemoryStore
            Persistence backend.
        source : ConfluenceClient
            Document source used to (re)fetch page content.
        embedder : EmbeddingProvider
            Generates chunk vectors.
        extractor : Optional[SectionExtractor]
            Defaults to a new SectionExtractor.
        chunker : Optional[Chunker]
            Defaults to a Chunker with the configured size / overlap.
        """
        self._store = store
        self._source = source
        self._embedder = embedder
        self._extractor = extractor or SectionExtractor()
        self._chunker = chunker or Chunker()
        self._page_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ingest_page(self, page_id: str) -> RcaPage:
        """
        Fetch a page by id, (re)create its record in PENDING and process it.

        Raises
        ------
        NotFoundError
            If the document source does not know the page.
        """
        content = await self._source.fetch_page_by_id(page_id)
        if content is None:
            raise NotFoundError(f"Page not found in document source: {page_id}")
        return await self.ingest_content(content)

    async def ingest_content(self, content: PageContent) -> RcaPage:
        """
        (Re)create the record of an already-fetched page and process it.
        """
        async with self._page_locks[content.id]:
            await self._register(content)
            return await self._process(content.id)

    async def process_page(self, page_id: str) -> RcaPage:
        """
        Run the pipeline for a page that already has a record.

        Raises
        ------
        NotFoundError
            If no page record exists, or the source no longer has the page.
        Exception
            Whatever the failing stage raised, after the page is marked ERROR.
        """
        async with self._page_locks[page_id]:
            return await self._process(page_id)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _register(self, content: PageContent) -> RcaPage:
        page = RcaPage(
            page_id=content.id,
            space_key=content.space_key,
            title=content.title,
            url=content.url,
            tags=list(content.labels),
            last_modified=content.last_modified,
            ingested_at=utcnow(),
            parsed_at=None,
            embedding_generated_at=None,
            status=PageStatus.PENDING.value,
            error_message=None,
        )
        return await self._store.save_page(page)

    async def _process(self, page_id: str) -> RcaPage:
        page = await self._store.get_page(page_id)
        if page is None:
            raise NotFoundError(f"RCA page not found: {page_id}")

        if page.status != PageStatus.PENDING.value:
            page = await self._restart(page)

        cleared = False
        try:
            content = await self._source.fetch_page_by_id(page_id)
            if content is None:
                raise NotFoundError(f"Page not found in document source: {page_id}")

            sections = self._extractor.extract(content.body)
            await self._store.replace_parsed_rca(
                ParsedRca(
                    page_id=page_id,
                    symptoms=sections.symptoms,
                    root_cause=sections.root_cause,
                    resolution=sections.resolution,
                    incident_date=sections.incident_date,
                )
            )
            page = await self._advance(page, PageStatus.PARSED, parsed_at=utcnow())

            removed = await self._store.delete_chunks(page_id)
            cleared = True
            if removed:
                logger.debug("Removed %d previous chunks for page %s", removed, page_id)

            stored = await self._embed_section(page, sections.symptoms, ChunkType.SYMPTOMS)
            stored += await self._embed_section(page, sections.root_cause, ChunkType.ROOT_CAUSE)

            page = await self._advance(
                page,
                PageStatus.EMBEDDED,
                embedding_generated_at=utcnow(),
            )
            logger.info("Processed page %s (%d chunks)", page_id, stored)
            return page

        except Exception as exc:
            logger.error("Error processing page %s: %s", page_id, exc)
            if cleared:
                await self._discard_chunks(page_id)
            await self._mark_error(page, exc)
            raise

    async def _embed_section(self, page: RcaPage, text: str, chunk_type: ChunkType) -> int:
        """
        Chunk, embed and store one section. Chunks whose embedding came back
        empty are dropped; their chunk_index is not reused.
        """
        if not text or not text.strip():
            return 0

        spans = self._chunker.spans(text)
        if not spans:
            return 0

        vectors = await self._embedder.embed_batch([span.content for span in spans])

        chunks = []
        for index, span in enumerate(spans):
            vector = vectors[index] if index < len(vectors) else []
            if not vector:
                continue
            chunks.append(
                RcaEmbedding(
                    page_id=page.page_id,
                    chunk_index=index,
                    chunk_type=chunk_type.value,
                    content=span.content,
                    embedding=vector,
                    metadata_={
                        "title": page.title,
                        "space_key": page.space_key,
                        "start": span.start,
                        "end": span.end,
                        "chunk_size": self._chunker.size,
                        "chunk_overlap": self._chunker.overlap,
                    },
                )
            )

        dropped = len(spans) - len(chunks)
        if dropped:
            logger.warning(
                "Dropped %d of %d %s chunks for page %s: empty embedding",
                dropped,
                len(spans),
                chunk_type.value,
                page.page_id,
            )

        return await self._store.add_chunks(chunks)

    # ------------------------------------------------------------------
    # Status helpers
    # ------------------------------------------------------------------

    async def _advance(self, page: RcaPage, target: PageStatus, **fields) -> RcaPage:
        check_transition(PageStatus(page.status), target)
        page.status = target.value
        for name, value in fields.items():
            setattr(page, name, value)
        return await self._store.save_page(page)

    async def _restart(self, page: RcaPage) -> RcaPage:
        logger.debug("Restarting page %s from %s", page.page_id, page.status)
        page.status = PageStatus.PENDING.value
        page.error_message = None
        page.parsed_at = None
        page.embedding_generated_at = None
        return await self._store.save_page(page)

    async def _mark_error(self, page: RcaPage, exc: Exception) -> None:
        try:
            await self._advance(
                page,
                PageStatus.ERROR,
                error_message=str(exc) or type(exc).__name__,
            )
        except Exception:
            # Re-raise the processing failure, not this one.
            logger.exception("Could not record ERROR status for page %s", page.page_id)

    async def _discard_chunks(self, page_id: str) -> None:
        # A failed attempt leaves no partial chunk set behind.
        try:
            await self._store.delete_chunks(page_id)
        except Exception:
            logger.exception("Could not discard partial chunks for page %s", page_id)
