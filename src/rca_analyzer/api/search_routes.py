"""
Search Routes

Similarity search over ingested RCA chunks. Every response carries the
ranked results, a generated summary and a confidence label derived from the
results' scores.

- POST /api/v1/search             hybrid by default; `mode` overrides it
- POST /api/v1/search/symptoms    symptom chunks only
- POST /api/v1/search/root-cause  root-cause chunks only; the summary is a
                                  synthesized root cause
"""

import logging
import time
from typing import Annotated, List

from fastapi import APIRouter, Depends, status

from .models import SearchRequest, SearchResponse, Summary
from .dependencies import get_llm_client, get_search_engine
from ..llm.client import LLMClient
from ..search.engine import RetrievalEngine, classify_confidence
from ..search.models import ScoredChunk, SearchMode

logger = logging.getLogger("rca.api.search")

router = APIRouter(prefix="/api/v1/search", tags=["search"])


async def _search(
    req: SearchRequest,
    mode: SearchMode,
    engine: RetrievalEngine,
) -> List[ScoredChunk]:
    filters = req.filter_by.to_filters() if req.filter_by else None
    return await engine.search(req.query, top_k=req.top_k, mode=mode, filters=filters)


def _response(
    req: SearchRequest,
    results: List[ScoredChunk],
    suggestion: str,
    started: float,
) -> SearchResponse:
    elapsed_ms = int((time.perf_counter() - started) * 1000)
    logger.info("Search returned %d results in %d ms", len(results), elapsed_ms)
    return SearchResponse(
        query=req.query,
        results=results,
        summary=Summary(
            suggested_root_cause=suggestion,
            confidence=classify_confidence(r.combined_score for r in results),
            similar_incidents=len({r.page_id for r in results}),
        ),
        execution_time_ms=elapsed_ms,
    )


@router.post(
    "",
    response_model=SearchResponse,
    summary="Search similar incidents",
    status_code=status.HTTP_200_OK,
)
async def search(
    req: SearchRequest,
    engine: Annotated[RetrievalEngine, Depends(get_search_engine)],
    llm: Annotated[LLMClient, Depends(get_llm_client)],
) -> SearchResponse:
    started = time.perf_counter()
    results = await _search(req, req.mode or SearchMode.HYBRID, engine)
    suggestion = await llm.summarize(req.query, results)
    return _response(req, results, suggestion, started)


@router.post(
    "/symptoms",
    response_model=SearchResponse,
    summary="Search by symptoms",
)
async def search_symptoms(
    req: SearchRequest,
    engine: Annotated[RetrievalEngine, Depends(get_search_engine)],
    llm: Annotated[LLMClient, Depends(get_llm_client)],
) -> SearchResponse:
    started = time.perf_counter()
    results = await _search(req, SearchMode.SYMPTOMS_ONLY, engine)
    suggestion = await llm.summarize(req.query, results)
    return _response(req, results, suggestion, started)


@router.post(
    "/root-cause",
    response_model=SearchResponse,
    summary="Search by root cause",
)
async def search_root_cause(
    req: SearchRequest,
    engine: Annotated[RetrievalEngine, Depends(get_search_engine)],
    llm: Annotated[LLMClient, Depends(get_llm_client)],
) -> SearchResponse:
    started = time.perf_counter()
    results = await _search(req, SearchMode.ROOT_CAUSE_ONLY, engine)
    suggestion = await llm.synthesize_root_cause(results)
    return _response(req, results, suggestion, started)
