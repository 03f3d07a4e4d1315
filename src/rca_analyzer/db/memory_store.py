"""
In-Process Store

FAISS-backed implementation of the RcaStore interface for local runs
(`store_backend=memory`) and tests.

Key Properties
--------------
- Explicit ID management via IndexIDMap2
- Cosine distance via inner product over L2-normalised vectors
- Copy-on-read / copy-on-write: callers never hold references to stored rows
- Concurrency-safe (thread locking)
"""

from __future__ import annotations

import copy
import uuid
from threading import RLock
from typing import Dict, List, Optional, Sequence, Tuple, TypeVar

import faiss
import numpy as np
from sqlalchemy import inspect

from .filters import NeighborFilter
from .models import ParsedRca, RcaEmbedding, RcaPage, SyncRun, SyncStatus, utcnow


T = TypeVar("T")


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

class MemoryStoreError(RuntimeError):
    """Raised when vectors cannot be added to the in-process index."""


def _copy(row: T) -> T:
    """
    Detached copy of a mapped row. List and dict columns (tags, spaces,
    metadata, embedding) are copied too.
    """
    mapper = inspect(type(row))
    values = {
        attr.key: copy.deepcopy(getattr(row, attr.key)) for attr in mapper.column_attrs
    }
    return type(row)(**values)


class MemoryStore:
    """
    In-memory store with a FAISS flat index for nearest-neighbour lookups.
    """

    def __init__(self) -> None:
        self._pages: Dict[str, RcaPage] = {}
        self._parsed: Dict[str, ParsedRca] = {}
        self._chunks: Dict[int, RcaEmbedding] = {}
        self._runs: Dict[uuid.UUID, SyncRun] = {}

        self._index: Optional[faiss.IndexIDMap2] = None
        self._dim: Optional[int] = None
        self._next_id: int = 1

        self._lock = RLock()

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    async def get_page(self, page_id: str) -> Optional[RcaPage]:
        with self._lock:
            page = self._pages.get(page_id)
            return _copy(page) if page is not None else None

    async def get_pages(self, page_ids: Sequence[str]) -> Dict[str, RcaPage]:
        with self._lock:
            return {
                page_id: _copy(self._pages[page_id])
                for page_id in set(page_ids)
                if page_id in self._pages
            }

    async def save_page(self, page: RcaPage) -> RcaPage:
        with self._lock:
            stored = _copy(page)
            now = utcnow()
            if stored.created_at is None:
                existing = self._pages.get(page.page_id)
                stored.created_at = existing.created_at if existing else now
            stored.updated_at = now
            if stored.tags is None:
                stored.tags = []
            self._pages[page.page_id] = stored
            return _copy(stored)

    async def count_pages_by_status(self) -> Dict[str, int]:
        with self._lock:
            counts: Dict[str, int] = {}
            for page in self._pages.values():
                counts[page.status] = counts.get(page.status, 0) + 1
            return counts

    # ------------------------------------------------------------------
    # Parsed RCAs
    # ------------------------------------------------------------------

    async def replace_parsed_rca(self, parsed: ParsedRca) -> None:
        with self._lock:
            stored = _copy(parsed)
            if stored.created_at is None:
                stored.created_at = utcnow()
            self._parsed[parsed.page_id] = stored

    async def get_parsed_rca(self, page_id: str) -> Optional[ParsedRca]:
        with self._lock:
            parsed = self._parsed.get(page_id)
            return _copy(parsed) if parsed is not None else None

    async def get_parsed_rcas(self, page_ids: Sequence[str]) -> Dict[str, ParsedRca]:
        with self._lock:
            return {
                page_id: _copy(self._parsed[page_id])
                for page_id in set(page_ids)
                if page_id in self._parsed
            }

    # ------------------------------------------------------------------
    # Embedded chunks
    # ------------------------------------------------------------------

    async def delete_chunks(self, page_id: str) -> int:
        """
        Remove all chunks belonging to a given page.

        Returns the number of removed chunks.
        """
        with self._lock:
            ids_to_remove = [
                chunk_id
                for chunk_id, chunk in self._chunks.items()
                if chunk.page_id == page_id
            ]
            if not ids_to_remove:
                return 0

            if self._index is not None:
                self._index.remove_ids(np.asarray(ids_to_remove, dtype="int64"))

            for chunk_id in ids_to_remove:
                self._chunks.pop(chunk_id, None)

            return len(ids_to_remove)

    async def add_chunks(self, chunks: List[RcaEmbedding]) -> int:
        if not chunks:
            return 0

        with self._lock:
            self._validate_vectors([chunk.embedding for chunk in chunks])
            taken = {
                (c.page_id, c.chunk_index, c.chunk_type) for c in self._chunks.values()
            }
            for chunk in chunks:
                key = (chunk.page_id, chunk.chunk_index, chunk.chunk_type)
                if key in taken:
                    raise MemoryStoreError(f"Duplicate chunk position {key}.")
                taken.add(key)

            if self._index is None:
                self._dim = len(chunks[0].embedding)
                self._index = faiss.IndexIDMap2(faiss.IndexFlatIP(self._dim))

            ids = np.arange(self._next_id, self._next_id + len(chunks), dtype="int64")
            self._next_id += len(chunks)

            vectors = np.asarray([chunk.embedding for chunk in chunks], dtype="float32")
            faiss.normalize_L2(vectors)
            self._index.add_with_ids(vectors, ids)

            for chunk_id, chunk in zip(ids, chunks):
                chunk.id = int(chunk_id)
                stored = _copy(chunk)
                if stored.created_at is None:
                    stored.created_at = utcnow()
                self._chunks[int(chunk_id)] = stored

            return len(chunks)

    async def get_chunks(self, page_id: str) -> List[RcaEmbedding]:
        with self._lock:
            chunks = [_copy(c) for c in self._chunks.values() if c.page_id == page_id]
        return sorted(chunks, key=lambda c: (c.chunk_type, c.chunk_index))

    async def count_chunks(self) -> int:
        with self._lock:
            return len(self._chunks)

    async def nearest_neighbors(
        self,
        query_vector: List[float],
        max_distance: float,
        limit: int,
        filters: Optional[NeighborFilter] = None,
    ) -> List[Tuple[RcaEmbedding, float]]:
        """
        Return (chunk, cosine distance) pairs below max_distance, nearest first.
        """
        with self._lock:
            if self._index is None or not self._chunks:
                return []
            if len(query_vector) != self._dim:
                raise MemoryStoreError(
                    f"Query dimension {len(query_vector)} does not match index dimension {self._dim}."
                )

            q = np.asarray([query_vector], dtype="float32")
            faiss.normalize_L2(q)
            scores, idxs = self._index.search(q, len(self._chunks))

            hits: List[Tuple[RcaEmbedding, float]] = []
            for score, idx in zip(scores[0], idxs[0]):
                idx = int(idx)
                if idx == -1:
                    continue
                chunk = self._chunks.get(idx)
                if chunk is None:
                    continue
                distance = 1.0 - float(score)
                if distance >= max_distance:
                    continue
                if filters is not None and not self._matches(chunk, filters):
                    continue
                hits.append((_copy(chunk), distance))

        hits.sort(key=lambda hit: (hit[1], hit[0].id))
        return hits[:limit]

    # ------------------------------------------------------------------
    # Sync runs
    # ------------------------------------------------------------------

    async def save_sync_run(self, run: SyncRun) -> SyncRun:
        with self._lock:
            stored = _copy(run)
            if stored.id is None:
                stored.id = uuid.uuid4()
                run.id = stored.id
            self._runs[stored.id] = stored
            return _copy(stored)

    async def get_sync_run(self, run_id: uuid.UUID) -> Optional[SyncRun]:
        with self._lock:
            run = self._runs.get(run_id)
            return _copy(run) if run is not None else None

    async def latest_finished_run(
        self,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> Optional[SyncRun]:
        finished = (SyncStatus.COMPLETED.value, SyncStatus.FAILED.value)
        with self._lock:
            candidates = [
                run
                for run in self._runs.values()
                if run.status in finished and run.id != exclude_id
            ]
            if not candidates:
                return None
            return _copy(max(candidates, key=lambda run: run.started_at))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _validate_vectors(self, vectors: List[List[float]]) -> None:
        dim = self._dim if self._dim is not None else len(vectors[0])
        if dim == 0:
            raise MemoryStoreError("Embedding vectors must be non-empty.")
        for i, vector in enumerate(vectors):
            if vector is None or len(vector) != dim:
                raise MemoryStoreError(
                    f"Inconsistent embedding dimensionality at index {i}."
                )

    def _matches(self, chunk: RcaEmbedding, filters: NeighborFilter) -> bool:
        if filters.chunk_type and chunk.chunk_type != filters.chunk_type:
            return False

        if filters.space_keys:
            page = self._pages.get(chunk.page_id)
            if page is None or page.space_key not in filters.space_keys:
                return False

        if filters.date_from or filters.date_to:
            parsed = self._parsed.get(chunk.page_id)
            incident_date = parsed.incident_date if parsed else None
            if incident_date is None:
                return False
            if filters.date_from and incident_date < filters.date_from:
                return False
            if filters.date_to and incident_date > filters.date_to:
                return False

        return True
