import math
from datetime import date, datetime, timezone

import pytest

from rca_analyzer.db.models import ChunkType, ParsedRca, RcaEmbedding, RcaPage
from rca_analyzer.search.engine import RetrievalEngine, classify_confidence, extract_keyword
from rca_analyzer.search.models import Confidence, SearchFilters, SearchMode

from conftest import FixedEmbedder


QUERY_VECTOR = [1.0, 0.0]


def at_similarity(similarity: float):
    """Unit vector whose cosine similarity to QUERY_VECTOR is `similarity`."""
    return [similarity, math.sqrt(1.0 - similarity ** 2)]


async def add_page(store, page_id, space_key="OPS", incident_date=None):
    await store.save_page(
        RcaPage(
            page_id=page_id,
            space_key=space_key,
            title=f"RCA {page_id}",
            url=f"https://confluence.example.com/pages/{page_id}",
            tags=["rca"],
            last_modified=datetime(2024, 3, 6, tzinfo=timezone.utc),
            status="EMBEDDED",
        )
    )
    await store.replace_parsed_rca(
        ParsedRca(
            page_id=page_id,
            symptoms=f"symptoms of {page_id}",
            root_cause=f"root cause of {page_id}",
            resolution="",
            incident_date=incident_date,
        )
    )


async def add_chunk(store, page_id, similarity, content="", chunk_type=ChunkType.SYMPTOMS, index=0):
    chunk = RcaEmbedding(
        page_id=page_id,
        chunk_index=index,
        chunk_type=chunk_type.value,
        content=content or f"chunk of {page_id}",
        embedding=at_similarity(similarity),
        metadata_={},
    )
    await store.add_chunks([chunk])
    return chunk.id


@pytest.fixture
def engine(store):
    return RetrievalEngine(store, FixedEmbedder(QUERY_VECTOR), min_similarity=0.70, default_top_k=5)


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

@pytest.mark.parametrize(
    "query,keyword",
    [
        ("database connection timeout", "connection"),
        ("The outage of PAYMENTS", "payments"),
        ("disk full", "disk"),
        ("the and of", "the and of"),
    ],
)
def test_extract_keyword(query, keyword):
    assert extract_keyword(query) == keyword


@pytest.mark.parametrize(
    "scores,expected",
    [
        ([0.9], Confidence.HIGH),
        ([0.85, 0.85], Confidence.HIGH),
        ([0.8], Confidence.MEDIUM),
        ([0.75], Confidence.MEDIUM),
        ([0.6], Confidence.LOW),
        ([0.95, 0.65], Confidence.MEDIUM),
        ([], Confidence.LOW),
    ],
)
def test_classify_confidence(scores, expected):
    assert classify_confidence(scores) == expected


# ---------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------

async def test_semantic_search_ranks_by_similarity(engine, store):
    await add_page(store, "a")
    await add_page(store, "b")
    await add_chunk(store, "a", 0.85)
    await add_chunk(store, "b", 0.95, chunk_type=ChunkType.ROOT_CAUSE)
    await add_chunk(store, "a", 0.60, index=1)

    results = await engine.search("checkout latency")

    assert [r.page_id for r in results] == ["b", "a"]
    assert results[0].similarity == pytest.approx(0.95, abs=1e-4)
    assert results[0].combined_score == results[0].similarity
    assert results[1].similarity == pytest.approx(0.85, abs=1e-4)


async def test_chunk_type_modes(engine, store):
    await add_page(store, "a")
    await add_chunk(store, "a", 0.90, chunk_type=ChunkType.SYMPTOMS)
    await add_chunk(store, "a", 0.80, chunk_type=ChunkType.ROOT_CAUSE)

    symptoms = await engine.search("q", mode=SearchMode.SYMPTOMS_ONLY)
    root_causes = await engine.search("q", mode=SearchMode.ROOT_CAUSE_ONLY)

    assert [r.chunk_type for r in symptoms] == [ChunkType.SYMPTOMS.value]
    assert [r.chunk_type for r in root_causes] == [ChunkType.ROOT_CAUSE.value]


async def test_hybrid_boosts_keyword_matches(engine, store):
    await add_page(store, "a")
    await add_page(store, "b")
    await add_page(store, "c")
    await add_chunk(store, "a", 0.80, content="The connection pool was exhausted")
    await add_chunk(store, "b", 0.90, content="Disk filled up on the primary")
    await add_chunk(store, "c", 0.72, content="Cache hit ratio dropped")

    results = await engine.search("database connection timeout", mode=SearchMode.HYBRID)

    assert [r.page_id for r in results] == ["a", "b"]
    assert results[0].keyword_matched is True
    assert results[0].combined_score == pytest.approx(0.7 * 0.80 + 0.3, abs=1e-4)
    assert results[1].keyword_matched is False
    assert results[1].combined_score == pytest.approx(0.7 * 0.90, abs=1e-4)


async def test_ties_break_by_chunk_id(engine, store):
    await add_page(store, "a")
    await add_page(store, "b")
    first = await add_chunk(store, "b", 0.90)
    second = await add_chunk(store, "a", 0.90)

    results = await engine.search("q")

    assert [r.chunk_id for r in results] == [first, second]


async def test_results_truncated_to_top_k(engine, store):
    await add_page(store, "a")
    for i, similarity in enumerate([0.99, 0.95, 0.9, 0.85, 0.8]):
        await add_chunk(store, "a", similarity, index=i)

    results = await engine.search("q", top_k=2)

    assert len(results) == 2
    assert results[0].combined_score >= results[1].combined_score


async def test_query_embedding_failure_returns_empty(store):
    await add_page(store, "a")
    await add_chunk(store, "a", 0.99)
    engine = RetrievalEngine(store, FixedEmbedder([]), min_similarity=0.70)

    assert await engine.search("q") == []


async def test_results_are_joined_with_page_and_rca(engine, store):
    await add_page(store, "a", incident_date=date(2024, 3, 5))
    await add_chunk(store, "a", 0.9)

    [result] = await engine.search("q")

    assert result.title == "RCA a"
    assert result.url == "https://confluence.example.com/pages/a"
    assert result.space_key == "OPS"
    assert result.rca.root_cause == "root cause of a"
    assert result.rca.incident_date == date(2024, 3, 5)


async def test_space_and_date_filters(engine, store):
    await add_page(store, "a", space_key="OPS", incident_date=date(2024, 1, 1))
    await add_page(store, "b", space_key="SRE", incident_date=date(2024, 6, 1))
    await add_page(store, "c", space_key="SRE")
    await add_chunk(store, "a", 0.9)
    await add_chunk(store, "b", 0.9)
    await add_chunk(store, "c", 0.9)

    by_space = await engine.search("q", filters=SearchFilters(space_keys=["SRE"]))
    by_date = await engine.search(
        "q", filters=SearchFilters(date_from=date(2024, 5, 1), date_to=date(2024, 12, 31))
    )

    assert sorted(r.page_id for r in by_space) == ["b", "c"]
    assert [r.page_id for r in by_date] == ["b"]


async def test_empty_store_returns_nothing(engine):
    assert await engine.search("q") == []
