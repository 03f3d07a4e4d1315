import asyncio

import pytest

from rca_analyzer.core.errors import InvalidTransitionError, NotFoundError, UpstreamError
from rca_analyzer.db import MemoryStore
from rca_analyzer.db.models import ChunkType, PageStatus
from rca_analyzer.ingestion.chunker import Chunker
from rca_analyzer.ingestion.pipeline import PagePipeline, check_transition

from conftest import FakeEmbedder, SlowEmbedder, make_page


# ---------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------

@pytest.mark.parametrize(
    "current,target",
    [
        (PageStatus.PENDING, PageStatus.PARSED),
        (PageStatus.PENDING, PageStatus.ERROR),
        (PageStatus.PARSED, PageStatus.EMBEDDED),
        (PageStatus.PARSED, PageStatus.ERROR),
        (PageStatus.EMBEDDED, PageStatus.ERROR),
    ],
)
def test_allowed_transitions(current, target):
    check_transition(current, target)


@pytest.mark.parametrize(
    "current,target",
    [
        (PageStatus.PENDING, PageStatus.EMBEDDED),
        (PageStatus.EMBEDDED, PageStatus.PARSED),
        (PageStatus.ERROR, PageStatus.EMBEDDED),
        (PageStatus.PARSED, PageStatus.PENDING),
    ],
)
def test_rejected_transitions(current, target):
    with pytest.raises(InvalidTransitionError):
        check_transition(current, target)


# ---------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------

async def test_ingest_page_end_to_end(pipeline, store):
    page = await pipeline.ingest_page("100")

    assert page.status == PageStatus.EMBEDDED.value
    assert page.parsed_at is not None
    assert page.embedding_generated_at is not None
    assert page.error_message is None

    parsed = await store.get_parsed_rca("100")
    assert parsed.symptoms == "Checkout latency spiked to 30s for all users."
    assert parsed.root_cause == "The database connection pool was exhausted."

    chunks = await store.get_chunks("100")
    assert [(c.chunk_type, c.chunk_index) for c in chunks] == [
        (ChunkType.ROOT_CAUSE.value, 0),
        (ChunkType.SYMPTOMS.value, 0),
    ]
    symptoms = next(c for c in chunks if c.chunk_type == ChunkType.SYMPTOMS.value)
    assert symptoms.content == parsed.symptoms
    assert symptoms.metadata_["title"] == "RCA 100"
    assert symptoms.metadata_["start"] == 0
    assert symptoms.metadata_["end"] == len(parsed.symptoms)


async def test_reprocessing_is_idempotent(pipeline, store):
    await pipeline.ingest_page("100")
    first = await store.get_chunks("100")

    await pipeline.process_page("100")
    second = await store.get_chunks("100")

    assert len(second) == len(first)
    assert [(c.chunk_type, c.chunk_index, c.content) for c in second] == [
        (c.chunk_type, c.chunk_index, c.content) for c in first
    ]
    # Fresh rows, none left over from the first run.
    assert not {c.id for c in first} & {c.id for c in second}
    assert await store.count_chunks() == len(second)


async def test_long_sections_produce_ordered_windows(store, source):
    body = "<h2>Symptoms</h2><p>" + "latency " * 40 + "</p>"
    source.add(make_page("200", body=body))
    pipeline = PagePipeline(store, source, FakeEmbedder(), chunker=Chunker(size=100, overlap=20))

    await pipeline.ingest_page("200")

    chunks = await store.get_chunks("200")
    assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
    assert len(chunks) > 1
    starts = [c.metadata_["start"] for c in chunks]
    assert starts == sorted(starts)
    parsed = await store.get_parsed_rca("200")
    assert chunks[-1].metadata_["end"] == len(parsed.symptoms)


async def test_failed_embeddings_are_dropped(store, source):
    pipeline = PagePipeline(store, source, FakeEmbedder(failing=["connection pool"]))

    page = await pipeline.ingest_page("101")

    assert page.status == PageStatus.EMBEDDED.value
    chunks = await store.get_chunks("101")
    assert [c.chunk_type for c in chunks] == [ChunkType.SYMPTOMS.value]


async def test_unstructured_page_is_embedded_as_symptoms(pipeline, store, source):
    source.add(make_page("300", body="<p>Nightly batch job never finished.</p>"))

    await pipeline.ingest_page("300")

    chunks = await store.get_chunks("300")
    assert len(chunks) == 1
    assert chunks[0].chunk_type == ChunkType.SYMPTOMS.value
    assert chunks[0].content == "Nightly batch job never finished."


async def test_unknown_page_raises_not_found(pipeline, store):
    with pytest.raises(NotFoundError):
        await pipeline.ingest_page("does-not-exist")

    assert await store.get_page("does-not-exist") is None


async def test_process_page_requires_record(pipeline):
    with pytest.raises(NotFoundError):
        await pipeline.process_page("100")


async def test_upstream_failure_marks_page_error(pipeline, store, source):
    source.failing_ids.add("102")

    with pytest.raises(UpstreamError):
        await pipeline.ingest_content(source.pages["102"])

    page = await store.get_page("102")
    assert page.status == PageStatus.ERROR.value
    assert "102" in page.error_message
    assert await store.get_chunks("102") == []


async def test_error_page_can_be_reprocessed(pipeline, store, source):
    source.failing_ids.add("102")
    with pytest.raises(UpstreamError):
        await pipeline.ingest_content(source.pages["102"])

    source.failing_ids.clear()
    page = await pipeline.process_page("102")

    assert page.status == PageStatus.EMBEDDED.value
    assert page.error_message is None
    assert len(await store.get_chunks("102")) == 2


async def test_page_removed_from_source_marks_error(pipeline, store, source):
    await pipeline.ingest_page("100")
    del source.pages["100"]

    with pytest.raises(NotFoundError):
        await pipeline.process_page("100")

    page = await store.get_page("100")
    assert page.status == PageStatus.ERROR.value


async def test_register_resets_existing_record(pipeline, store, source):
    await pipeline.ingest_page("100")
    updated = make_page("100", title="Checkout outage (revised)")
    source.add(updated)

    page = await pipeline.ingest_content(updated)

    assert page.title == "Checkout outage (revised)"
    assert page.status == PageStatus.EMBEDDED.value


class RootCauseWriteFailure(MemoryStore):
    """
    Store whose ROOT_CAUSE chunk writes fail while `fail_root_cause` is set.
    SYMPTOMS chunks are written first and go through.
    """

    fail_root_cause = True

    async def add_chunks(self, chunks):
        if self.fail_root_cause and any(
            c.chunk_type == ChunkType.ROOT_CAUSE.value for c in chunks
        ):
            raise RuntimeError("chunk write failed")
        return await super().add_chunks(chunks)


async def test_failed_attempt_leaves_no_chunks(source):
    store = RootCauseWriteFailure()
    pipeline = PagePipeline(store, source, FakeEmbedder())

    with pytest.raises(RuntimeError):
        await pipeline.ingest_page("100")

    page = await store.get_page("100")
    assert page.status == PageStatus.ERROR.value
    assert await store.get_chunks("100") == []
    assert await store.count_chunks() == 0


async def test_failed_reprocess_leaves_no_chunks(source):
    store = RootCauseWriteFailure()
    store.fail_root_cause = False
    pipeline = PagePipeline(store, source, FakeEmbedder())
    await pipeline.ingest_page("100")
    assert len(await store.get_chunks("100")) == 2

    store.fail_root_cause = True
    with pytest.raises(RuntimeError):
        await pipeline.process_page("100")

    assert (await store.get_page("100")).status == PageStatus.ERROR.value
    assert await store.get_chunks("100") == []


async def test_concurrent_attempts_for_one_page_do_not_interleave(store, source):
    pipeline = PagePipeline(store, source, SlowEmbedder())
    content = source.pages["100"]

    pages = await asyncio.gather(*(pipeline.ingest_content(content) for _ in range(3)))

    assert [p.status for p in pages] == [PageStatus.EMBEDDED.value] * 3
    chunks = await store.get_chunks("100")
    assert sorted((c.chunk_type, c.chunk_index) for c in chunks) == [
        (ChunkType.ROOT_CAUSE.value, 0),
        (ChunkType.SYMPTOMS.value, 0),
    ]
    assert await store.count_chunks() == 2
