import pytest

from rca_analyzer.core.errors import ChunkingValidationError
from rca_analyzer.ingestion.chunker import Chunker, sliding_windows


def test_windows_step_by_size_minus_overlap():
    spans = sliding_windows("abcdefghij", size=4, overlap=1)

    assert [s.content for s in spans] == ["abcd", "defg", "ghij", "j"]
    assert [s.start for s in spans] == [0, 3, 6, 9]
    assert spans[-1].end == 10


def test_empty_text_produces_no_chunks():
    assert sliding_windows("", size=800, overlap=150) == []
    assert Chunker().chunk("") == []
    assert Chunker().chunk("<p>   </p>") == []


def test_short_text_is_single_chunk():
    assert Chunker(size=800, overlap=150).chunk("Disk filled up") == ["Disk filled up"]


@pytest.mark.parametrize("size,overlap", [(0, 0), (-5, 0), (10, 10), (10, 12), (10, -1)])
def test_invalid_parameters_fail_fast(size, overlap):
    with pytest.raises(ChunkingValidationError):
        sliding_windows("some text", size=size, overlap=overlap)
    with pytest.raises(ChunkingValidationError):
        Chunker(size=size, overlap=overlap)


def test_validation_error_is_a_value_error():
    with pytest.raises(ValueError):
        Chunker(size=5, overlap=5)


def test_coverage_and_ordering():
    text = "".join(chr(ord("a") + i % 26) for i in range(2345))
    spans = sliding_windows(text, size=800, overlap=150)

    starts = [s.start for s in spans]
    assert starts == sorted(set(starts))
    assert spans[-1].end == len(text)
    assert all(len(s.content) <= 800 for s in spans)
    # Consecutive windows overlap, so nothing is skipped.
    for prev, nxt in zip(spans, spans[1:]):
        assert nxt.start <= prev.end
    assert sliding_windows(text, size=800, overlap=150) == spans


def test_chunker_strips_markup_before_windowing():
    chunker = Chunker(size=100, overlap=10)
    chunks = chunker.chunk("<p>Hello   <b>world</b></p><script>ignored()</script>")

    assert chunks == ["Hello world"]


def test_chunker_defaults_from_settings():
    chunker = Chunker()

    assert chunker.size == 800
    assert chunker.overlap == 150
