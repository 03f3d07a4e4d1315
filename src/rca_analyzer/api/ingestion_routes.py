"""
Ingestion Routes

Endpoints for starting and polling sync runs and for (re)ingesting a single
page on demand.
"""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from .models import OperationResult, SyncRequest, SyncResponse
from .dependencies import get_orchestrator, get_pipeline
from ..config import settings
from ..ingestion.pipeline import PagePipeline
from ..ingestion.sync import SyncOrchestrator

router = APIRouter(prefix="/api/v1/ingestion", tags=["ingestion"])


@router.post(
    "/sync",
    response_model=SyncResponse,
    summary="Start a full or incremental sync",
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_sync(
    req: SyncRequest,
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
) -> SyncResponse:
    """
    Start a sync in the background and return its RUNNING record.

    Spaces and tags fall back to the configured defaults when the request
    leaves them out.
    """
    spaces = req.space_keys or settings.spaces_list
    tags = req.tags if req.tags is not None else settings.tags_list

    try:
        run = await orchestrator.start_sync(spaces, req.sync_type, tags, req.limit)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        )

    return SyncResponse.from_run(run)


@router.get(
    "/sync/{sync_id}",
    response_model=SyncResponse,
    summary="Poll a sync run",
)
async def get_sync_status(
    sync_id: uuid.UUID,
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
) -> SyncResponse:
    # NotFoundError is mapped to 404 by the registered handler.
    run = await orchestrator.get_sync_status(sync_id)
    return SyncResponse.from_run(run)


@router.post(
    "/pages/{page_id}",
    response_model=OperationResult,
    summary="Ingest a single page",
)
async def ingest_page(
    page_id: str,
    pipeline: Annotated[PagePipeline, Depends(get_pipeline)],
) -> OperationResult:
    """
    Fetch, parse and embed one page synchronously.

    The page is left in ERROR when processing fails; the failure itself is
    reported through the global exception handlers.
    """
    page = await pipeline.ingest_page(page_id)
    return OperationResult(
        status="processed",
        page_id=page.page_id,
        details={"status": page.status, "title": page.title},
    )
