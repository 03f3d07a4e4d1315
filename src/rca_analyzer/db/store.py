"""
RCA Store

PostgreSQL + pgvector backed persistence for pages, parsed RCAs, embedded
chunks and sync runs, plus the nearest-neighbour primitive used by search.

Every public method runs in its own session and commits before returning, so
a concurrent reader (e.g. a sync status poll) always observes the last
committed state without sharing a transaction with the writer.
"""

from __future__ import annotations

import uuid
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .filters import NeighborFilter
from .models import ParsedRca, RcaEmbedding, RcaPage, SyncRun, SyncStatus


class RcaStore:
    """
    Database-backed store. See MemoryStore for the in-process equivalent.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """
        Parameters
        ----------
        session_factory : async_sessionmaker[AsyncSession]
            Factory producing one session per store operation.
        """
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    async def get_page(self, page_id: str) -> Optional[RcaPage]:
        async with self._session_factory() as session:
            return await session.get(RcaPage, page_id)

    async def get_pages(self, page_ids: Sequence[str]) -> Dict[str, RcaPage]:
        if not page_ids:
            return {}
        async with self._session_factory() as session:
            result = await session.execute(
                select(RcaPage).where(RcaPage.page_id.in_(set(page_ids)))
            )
            return {page.page_id: page for page in result.scalars().all()}

    async def save_page(self, page: RcaPage) -> RcaPage:
        """
        Insert or update a page record and return the persisted copy.
        """
        async with self._session_factory() as session:
            merged = await session.merge(page)
            await session.commit()
            return merged

    async def count_pages_by_status(self) -> Dict[str, int]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(RcaPage.status, func.count()).group_by(RcaPage.status)
            )
            return {status: count for status, count in result.all()}

    # ------------------------------------------------------------------
    # Parsed RCAs
    # ------------------------------------------------------------------

    async def replace_parsed_rca(self, parsed: ParsedRca) -> None:
        """
        Delete any previous parse of the page and insert the new one.
        """
        async with self._session_factory() as session:
            await session.execute(
                delete(ParsedRca).where(ParsedRca.page_id == parsed.page_id)
            )
            session.add(parsed)
            await session.commit()

    async def get_parsed_rca(self, page_id: str) -> Optional[ParsedRca]:
        async with self._session_factory() as session:
            return await session.get(ParsedRca, page_id)

    async def get_parsed_rcas(self, page_ids: Sequence[str]) -> Dict[str, ParsedRca]:
        if not page_ids:
            return {}
        async with self._session_factory() as session:
            result = await session.execute(
                select(ParsedRca).where(ParsedRca.page_id.in_(set(page_ids)))
            )
            return {parsed.page_id: parsed for parsed in result.scalars().all()}

    # ------------------------------------------------------------------
    # Embedded chunks
    # ------------------------------------------------------------------

    async def delete_chunks(self, page_id: str) -> int:
        """
        Remove all chunks for a given page.

        Returns the number of deleted rows.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                delete(RcaEmbedding).where(RcaEmbedding.page_id == page_id)
            )
            await session.commit()
            return result.rowcount

    async def add_chunks(self, chunks: List[RcaEmbedding]) -> int:
        if not chunks:
            return 0
        async with self._session_factory() as session:
            session.add_all(chunks)
            await session.commit()
        return len(chunks)

    async def get_chunks(self, page_id: str) -> List[RcaEmbedding]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(RcaEmbedding)
                .where(RcaEmbedding.page_id == page_id)
                .order_by(RcaEmbedding.chunk_type, RcaEmbedding.chunk_index)
            )
            return list(result.scalars().all())

    async def count_chunks(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(select(func.count()).select_from(RcaEmbedding))
            return result.scalar() or 0

    async def nearest_neighbors(
        self,
        query_vector: List[float],
        max_distance: float,
        limit: int,
        filters: Optional[NeighborFilter] = None,
    ) -> List[Tuple[RcaEmbedding, float]]:
        """
        Return chunks whose cosine distance to the query is below max_distance.

        Parameters
        ----------
        query_vector : List[float]
            Query embedding.
        max_distance : float
            Exclusive upper bound on cosine distance.
        limit : int
            Maximum number of rows.
        filters : Optional[NeighborFilter]
            Chunk type, space and incident date restrictions.

        Returns
        -------
        List[Tuple[RcaEmbedding, float]]
            (chunk, distance) pairs in ascending distance order.
        """
        # pgvector's <=> operator
        distance = RcaEmbedding.embedding.cosine_distance(query_vector)

        stmt = (
            select(RcaEmbedding, distance.label("distance"))
            .where(distance < max_distance)
            .order_by(distance, RcaEmbedding.id)
            .limit(limit)
        )

        if filters is not None:
            if filters.chunk_type:
                stmt = stmt.where(RcaEmbedding.chunk_type == filters.chunk_type)
            if filters.space_keys:
                stmt = stmt.where(
                    RcaEmbedding.page_id.in_(
                        select(RcaPage.page_id).where(
                            RcaPage.space_key.in_(filters.space_keys)
                        )
                    )
                )
            if filters.date_from or filters.date_to:
                dated = select(ParsedRca.page_id).where(ParsedRca.incident_date.is_not(None))
                if filters.date_from:
                    dated = dated.where(ParsedRca.incident_date >= filters.date_from)
                if filters.date_to:
                    dated = dated.where(ParsedRca.incident_date <= filters.date_to)
                stmt = stmt.where(RcaEmbedding.page_id.in_(dated))

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [(row.RcaEmbedding, float(row.distance)) for row in result.all()]

    # ------------------------------------------------------------------
    # Sync runs
    # ------------------------------------------------------------------

    async def save_sync_run(self, run: SyncRun) -> SyncRun:
        async with self._session_factory() as session:
            merged = await session.merge(run)
            await session.commit()
            return merged

    async def get_sync_run(self, run_id: uuid.UUID) -> Optional[SyncRun]:
        async with self._session_factory() as session:
            return await session.get(SyncRun, run_id)

    async def latest_finished_run(
        self,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> Optional[SyncRun]:
        """
        Most recently started run that reached COMPLETED or FAILED.
        """
        stmt = (
            select(SyncRun)
            .where(SyncRun.status.in_([SyncStatus.COMPLETED.value, SyncStatus.FAILED.value]))
            .order_by(SyncRun.started_at.desc())
            .limit(1)
        )
        if exclude_id is not None:
            stmt = stmt.where(SyncRun.id != exclude_id)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()
