"""
Sync Orchestrator

Drives full and incremental crawls of the configured spaces through the page
pipeline and records progress in a SyncRun.

Run Lifecycle
-------------
- `start_sync` persists a RUNNING run and schedules the crawl as an asyncio
  task; it returns before any page is fetched.
- The crawl updates the run's counters after every page. Updates are
  serialized per run and each one is committed, so `get_sync_status` always
  reads the latest committed snapshot without waiting on the crawl.
- A page failure is isolated: it is logged, counted in `pages_failed` and the
  crawl moves on. Only a failure outside page isolation (e.g. a space cannot
  be listed) ends the run FAILED.
- Runs cannot be cancelled once started.

Incremental Watermark
---------------------
The watermark is the `started_at` of the most recent other run that reached
COMPLETED or FAILED. Two incremental runs started close together may read
the same watermark and process the same changed pages twice; this is not
guarded against.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from ..config import settings
from ..core.errors import NotFoundError, PartialFailure
from ..confluence.models import PageContent
from ..db.models import SyncRun, SyncStatus, SyncType, utcnow
from .pipeline import PagePipeline

logger = logging.getLogger("rca.sync")


# ---------------------------------------------------------------------
# Run State
# ---------------------------------------------------------------------

@dataclass
class SyncProgress:
    """
    Live state of one run, owned by the task driving it.
    """
    run_id: uuid.UUID
    sync_type: SyncType
    spaces: List[str]
    tags: List[str]
    limit: Optional[int]
    started_at: datetime
    pages_fetched: int = 0
    pages_processed: int = 0
    pages_failed: int = 0
    status: SyncStatus = SyncStatus.RUNNING
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    failures: List[PartialFailure] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def to_record(self) -> SyncRun:
        return SyncRun(
            id=self.run_id,
            sync_type=self.sync_type.value,
            spaces=list(self.spaces),
            tags=list(self.tags),
            page_limit=self.limit,
            pages_fetched=self.pages_fetched,
            pages_processed=self.pages_processed,
            pages_failed=self.pages_failed,
            status=self.status.value,
            started_at=self.started_at,
            completed_at=self.completed_at,
            error_message=self.error_message,
        )


# ---------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------

class SyncOrchestrator:
    def __init__(
        self,
        store,
        source,
        pipeline: PagePipeline,
        concurrency: Optional[int] = None,
    ) -> None:
        """
        Parameters
        ----------
        store : RcaStore | MemoryStore
            Persistence backend for sync runs.
        source : ConfluenceClient
            Document source used to enumerate pages.
        pipeline : PagePipeline
            Processes each fetched page.
        concurrency : Optional[int]
            Maximum pages processed at once within a run. Defaults to
            settings.sync_concurrency.
        """
        self._store = store
        self._source = source
        self._pipeline = pipeline
        self._concurrency = max(1, concurrency or settings.sync_concurrency)
        self._tasks: Dict[uuid.UUID, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start_sync(
        self,
        spaces: Iterable[str],
        sync_type: SyncType = SyncType.FULL,
        tags: Optional[Iterable[str]] = None,
        limit: Optional[int] = None,
    ) -> SyncRun:
        """
        Persist a RUNNING run and start crawling in the background.

        Raises
        ------
        ValueError
            If no space is given or `limit` is not positive.
        """
        space_list = [s for s in spaces if s]
        if not space_list:
            raise ValueError("At least one space key is required to start a sync.")
        if limit is not None and limit <= 0:
            raise ValueError(f"Sync limit must be positive, got {limit}.")

        progress = SyncProgress(
            run_id=uuid.uuid4(),
            sync_type=SyncType(sync_type),
            spaces=space_list,
            tags=list(tags or []),
            limit=limit,
            started_at=utcnow(),
        )
        record = await self._store.save_sync_run(progress.to_record())

        logger.info(
            "Starting %s sync %s over spaces %s",
            progress.sync_type.value,
            progress.run_id,
            ",".join(progress.spaces),
        )

        task = asyncio.create_task(self._run(progress), name=f"sync-{progress.run_id}")
        self._tasks[progress.run_id] = task
        task.add_done_callback(lambda t, run_id=progress.run_id: self._on_done(run_id, t))
        return record

    async def get_sync_status(self, run_id: uuid.UUID) -> SyncRun:
        """
        Latest committed snapshot of a run.

        Raises
        ------
        NotFoundError
            If the id is unknown.
        """
        run = await self._store.get_sync_run(run_id)
        if run is None:
            raise NotFoundError(f"Sync not found: {run_id}")
        return run

    async def wait(self, run_id: uuid.UUID) -> SyncRun:
        """
        Wait for a run started by this orchestrator to finish and return its
        terminal record. Returns immediately for runs already finished.
        """
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.shield(task)
        return await self.get_sync_status(run_id)

    async def run_sync(
        self,
        spaces: Iterable[str],
        sync_type: SyncType = SyncType.FULL,
        tags: Optional[Iterable[str]] = None,
        limit: Optional[int] = None,
    ) -> SyncRun:
        run = await self.start_sync(spaces, sync_type, tags, limit)
        return await self.wait(run.id)

    def active_runs(self) -> List[uuid.UUID]:
        return [run_id for run_id, task in self._tasks.items() if not task.done()]

    # ------------------------------------------------------------------
    # Crawl
    # ------------------------------------------------------------------

    async def _run(self, progress: SyncProgress) -> None:
        try:
            pages = await self._collect_pages(progress)
            await self._process_pages(progress, pages)
            status = SyncStatus.COMPLETED
            error_message = None
        except Exception as exc:
            logger.exception("Sync %s failed", progress.run_id)
            status = SyncStatus.FAILED
            error_message = _describe(exc)

        async with progress.lock:
            progress.status = status
            progress.error_message = error_message
            progress.completed_at = utcnow()
            await self._store.save_sync_run(progress.to_record())

        logger.info(
            "Sync %s %s: fetched=%d processed=%d failed=%d",
            progress.run_id,
            progress.status.value,
            progress.pages_fetched,
            progress.pages_processed,
            progress.pages_failed,
        )

    async def _collect_pages(self, progress: SyncProgress) -> List[PageContent]:
        watermark = await self._watermark(progress)

        pages: List[PageContent] = []
        seen = set()

        for space_key in progress.spaces:
            if watermark is not None:
                fetched = await self._source.fetch_modified_since(
                    watermark, [space_key], progress.tags
                )
            else:
                fetched = await self._source.fetch_pages(space_key, progress.tags)

            for page in fetched:
                if page.id in seen:
                    continue
                seen.add(page.id)
                pages.append(page)
                if progress.limit is not None and len(pages) >= progress.limit:
                    break

            async with progress.lock:
                progress.pages_fetched = len(pages)
                await self._store.save_sync_run(progress.to_record())

            if progress.limit is not None and len(pages) >= progress.limit:
                logger.info("Sync %s reached its limit of %d pages", progress.run_id, progress.limit)
                break

        return pages

    async def _watermark(self, progress: SyncProgress) -> Optional[datetime]:
        if progress.sync_type != SyncType.INCREMENTAL:
            return None

        # Two incremental runs started together share a watermark and may
        # both reprocess the same pages; reprocessing is idempotent.
        previous = await self._store.latest_finished_run(exclude_id=progress.run_id)
        if previous is None:
            logger.info("No previous sync run; incremental sync %s runs as full", progress.run_id)
            return None

        logger.info(
            "Incremental sync %s uses watermark %s from run %s",
            progress.run_id,
            previous.started_at.isoformat(),
            previous.id,
        )
        return previous.started_at

    async def _process_pages(self, progress: SyncProgress, pages: List[PageContent]) -> None:
        if self._concurrency == 1:
            for page in pages:
                await self._process_one(progress, page)
            return

        semaphore = asyncio.Semaphore(self._concurrency)

        async def bounded(page: PageContent) -> None:
            async with semaphore:
                await self._process_one(progress, page)

        async with asyncio.TaskGroup() as group:
            for page in pages:
                group.create_task(bounded(page))

    async def _process_one(self, progress: SyncProgress, page: PageContent) -> None:
        try:
            await self._pipeline.ingest_content(page)
        except Exception as exc:
            failure = PartialFailure(page_id=page.id, message=_describe(exc))
            logger.exception("Error processing page %s in sync %s", page.id, progress.run_id)
            async with progress.lock:
                progress.pages_failed += 1
                progress.failures.append(failure)
                await self._store.save_sync_run(progress.to_record())
            return

        async with progress.lock:
            progress.pages_processed += 1
            await self._store.save_sync_run(progress.to_record())

    def _on_done(self, run_id: uuid.UUID, task: asyncio.Task) -> None:
        self._tasks.pop(run_id, None)
        if task.cancelled():
            logger.warning("Sync %s task was cancelled", run_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Sync %s could not record its final state: %s", run_id, exc)


def _describe(exc: BaseException) -> str:
    while isinstance(exc, BaseExceptionGroup) and exc.exceptions:
        exc = exc.exceptions[0]
    return str(exc) or type(exc).__name__
