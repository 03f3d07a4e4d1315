"""
Retrieval Engine

Embeds a query, looks up the nearest chunks in the store and ranks them.

Ranking
-------
- semantic / symptoms_only / root_cause_only:
      combined_score = similarity = 1 - cosine distance
      floor          = min_similarity
- hybrid:
      combined_score = 0.7 * similarity + 0.3 * keyword_present
      floor          = 0.8 * min_similarity

Results are ordered by descending combined_score, ties broken by ascending
chunk id, then truncated to top_k.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from ..config import settings
from ..db.filters import NeighborFilter
from ..db.models import ChunkType
from ..embeddings.embedder import EmbeddingProvider
from .models import Confidence, RcaSections, ScoredChunk, SearchFilters, SearchMode

logger = logging.getLogger("rca.search")

STOP_WORDS = frozenset({
    "the", "a", "an", "in", "on", "at", "for", "to", "of",
    "and", "or", "is", "was", "were", "are", "with", "from", "by",
})

VECTOR_WEIGHT = 0.7
KEYWORD_WEIGHT = 0.3
HYBRID_FLOOR_FACTOR = 0.8
HYBRID_FETCH_FACTOR = 2

HIGH_CONFIDENCE = 0.85
MEDIUM_CONFIDENCE = 0.75

_MODE_CHUNK_TYPES = {
    SearchMode.SEMANTIC: None,
    SearchMode.HYBRID: None,
    SearchMode.SYMPTOMS_ONLY: ChunkType.SYMPTOMS.value,
    SearchMode.ROOT_CAUSE_ONLY: ChunkType.ROOT_CAUSE.value,
}


# ---------------------------------------------------------------------
# Scoring helpers
# ---------------------------------------------------------------------

def extract_keyword(query: str) -> str:
    """
    Longest lower-cased whitespace token that is not a stop word.

    The first of several equally long tokens wins. Falls back to the whole
    lower-cased query when every token is a stop word.
    """
    keyword = ""
    for word in query.lower().split():
        if len(word) > len(keyword) and word not in STOP_WORDS:
            keyword = word
    return keyword or query.lower().strip()


def hybrid_score(similarity: float, keyword_present: bool) -> float:
    return VECTOR_WEIGHT * similarity + KEYWORD_WEIGHT * (1.0 if keyword_present else 0.0)


def classify_confidence(scores: Iterable[float]) -> Confidence:
    """
    Map the average of the given scores to a confidence label.

    An empty sequence is always LOW.
    """
    values = list(scores)
    if not values:
        return Confidence.LOW

    average = sum(values) / len(values)
    if average >= HIGH_CONFIDENCE:
        return Confidence.HIGH
    if average >= MEDIUM_CONFIDENCE:
        return Confidence.MEDIUM
    return Confidence.LOW


# ---------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------

class RetrievalEngine:
    def __init__(
        self,
        store,
        embedder: EmbeddingProvider,
        min_similarity: Optional[float] = None,
        default_top_k: Optional[int] = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self.min_similarity = (
            settings.search_min_similarity if min_similarity is None else min_similarity
        )
        self.default_top_k = default_top_k or settings.search_default_top_k

    async def search(
        self,
        query: str,
        top_k: Optional[int] = None,
        mode: SearchMode = SearchMode.SEMANTIC,
        filters: Optional[SearchFilters] = None,
    ) -> List[ScoredChunk]:
        """
        Rank stored chunks against `query`.

        Parameters
        ----------
        query : str
            Free-text query; embedded with the configured provider.
        top_k : Optional[int]
            Maximum number of results. Defaults to the configured top_k.
        mode : SearchMode
            Restricts the chunk type searched, or enables keyword boosting.
        filters : Optional[SearchFilters]
            Space and incident date restrictions.

        Returns
        -------
        List[ScoredChunk]
            Ranked results joined with page metadata and parsed RCA. Empty
            when the query cannot be embedded.
        """
        mode = SearchMode(mode)
        top_k = top_k or self.default_top_k

        query_vector = await self._embedder.embed(query)
        if not query_vector:
            logger.warning("Query embedding unavailable; returning no results")
            return []

        hybrid = mode == SearchMode.HYBRID
        neighbor_filter = NeighborFilter(
            chunk_type=_MODE_CHUNK_TYPES[mode],
            space_keys=list(filters.space_keys) if filters else [],
            date_from=filters.date_from if filters else None,
            date_to=filters.date_to if filters else None,
        )

        neighbors = await self._store.nearest_neighbors(
            query_vector,
            max_distance=1.0 - self.min_similarity,
            limit=top_k * HYBRID_FETCH_FACTOR if hybrid else top_k,
            filters=neighbor_filter,
        )

        keyword = extract_keyword(query) if hybrid else None
        floor = self.min_similarity * HYBRID_FLOOR_FACTOR if hybrid else self.min_similarity

        scored = []
        for chunk, distance in neighbors:
            similarity = 1.0 - distance
            matched = bool(keyword) and keyword in (chunk.content or "").lower()
            combined = hybrid_score(similarity, matched) if hybrid else similarity
            if combined < floor:
                continue
            scored.append((chunk, similarity, combined, matched))

        scored.sort(key=lambda item: (-item[2], item[0].id))
        scored = scored[:top_k]

        logger.debug(
            "Search mode=%s keyword=%r: %d neighbours, %d ranked",
            mode.value,
            keyword,
            len(neighbors),
            len(scored),
        )
        return await self._join(scored)

    async def _join(self, scored) -> List[ScoredChunk]:
        page_ids = list(dict.fromkeys(chunk.page_id for chunk, *_ in scored))
        pages = await self._store.get_pages(page_ids)
        parsed = await self._store.get_parsed_rcas(page_ids)

        results: List[ScoredChunk] = []
        for chunk, similarity, combined, matched in scored:
            page = pages.get(chunk.page_id)
            rca = parsed.get(chunk.page_id)
            results.append(
                ScoredChunk(
                    chunk_id=chunk.id,
                    page_id=chunk.page_id,
                    chunk_type=chunk.chunk_type,
                    content=chunk.content,
                    similarity=similarity,
                    combined_score=combined,
                    keyword_matched=matched,
                    title=page.title if page else "",
                    url=(page.url or "") if page else "",
                    space_key=page.space_key if page else "",
                    rca=_sections(rca),
                )
            )
        return results


def _sections(rca) -> Optional[RcaSections]:
    if rca is None:
        return None
    return RcaSections(
        symptoms=rca.symptoms or "",
        root_cause=rca.root_cause or "",
        resolution=rca.resolution or "",
        incident_date=rca.incident_date,
    )
