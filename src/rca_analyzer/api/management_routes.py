"""
Management Routes

Read-only views of the ingestion state: corpus statistics, the effective
ingestion defaults and individual page records.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from .models import IngestionConfigResponse, PageResponse, StatsResponse
from .dependencies import get_store
from ..config import settings
from ..core.errors import NotFoundError

router = APIRouter(prefix="/api/v1", tags=["management"])


@router.get("/stats", response_model=StatsResponse)
async def get_stats(store: Annotated[object, Depends(get_store)]) -> StatsResponse:
    by_status = await store.count_pages_by_status()
    return StatsResponse(
        total_pages=sum(by_status.values()),
        total_chunks=await store.count_chunks(),
        pages_by_status=by_status,
    )


@router.get("/config/ingestion", response_model=IngestionConfigResponse)
async def get_ingestion_config() -> IngestionConfigResponse:
    return IngestionConfigResponse(
        default_spaces=settings.spaces_list,
        default_tags=settings.tags_list,
        chunk_size=settings.chunk_size,
        chunk_overlap=settings.chunk_overlap,
    )


@router.get("/pages/{page_id}", response_model=PageResponse)
async def get_page(
    page_id: str,
    store: Annotated[object, Depends(get_store)],
) -> PageResponse:
    page = await store.get_page(page_id)
    if page is None:
        raise NotFoundError(f"RCA page not found: {page_id}")
    return PageResponse.model_validate(page)
