from datetime import datetime, timezone

import httpx
import pytest

from rca_analyzer.confluence.client import ConfluenceClient
from rca_analyzer.core.errors import UpstreamError

BASE_URL = "https://confluence.example.com"


def raw_page(page_id, when="2024-03-06T10:00:00.000Z", labels=("rca",), space="OPS"):
    return {
        "id": page_id,
        "title": f"RCA {page_id}",
        "space": {"key": space},
        "body": {"storage": {"value": "<h2>Impact</h2><p>Slow</p>"}},
        "version": {"when": when},
        "metadata": {"labels": {"results": [{"name": n} for n in labels]}},
        "_links": {"webui": f"/display/{space}/{page_id}"},
    }


def make_client(handler, **kwargs):
    return ConfluenceClient(
        base_url=BASE_URL,
        auth_token="secret-token",
        page_size=2,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


async def test_fetch_pages_follows_pagination():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(dict(request.url.params))
        assert request.headers["Authorization"] == "Bearer secret-token"
        start = int(request.url.params["start"])
        if start == 0:
            return httpx.Response(
                200,
                json={
                    "results": [raw_page("1"), raw_page("2", labels=("other",))],
                    "_links": {"next": "/rest/api/content?start=2"},
                },
            )
        return httpx.Response(200, json={"results": [raw_page("3")], "_links": {}})

    pages = await make_client(handler).fetch_pages("OPS", ["rca"])

    assert [p.id for p in pages] == ["1", "3"]
    assert [p["start"] for p in seen] == ["0", "2"]
    assert seen[0]["spaceKey"] == "OPS"
    assert pages[0].url == f"{BASE_URL}/display/OPS/1"
    assert pages[0].last_modified == datetime(2024, 3, 6, 10, 0, tzinfo=timezone.utc)
    assert pages[0].body == "<h2>Impact</h2><p>Slow</p>"


async def test_fetch_pages_without_tags_keeps_everything():
    def handler(request):
        return httpx.Response(
            200,
            json={"results": [raw_page("1"), raw_page("2", labels=())], "_links": {}},
        )

    pages = await make_client(handler).fetch_pages("OPS")

    assert [p.id for p in pages] == ["1", "2"]


async def test_listing_failure_raises_upstream_error():
    def handler(request):
        return httpx.Response(503, json={"message": "down"})

    with pytest.raises(UpstreamError):
        await make_client(handler).fetch_pages("OPS")


async def test_fetch_page_by_id():
    def handler(request):
        assert request.url.path == "/rest/api/content/42"
        return httpx.Response(200, json=raw_page("42"))

    page = await make_client(handler).fetch_page_by_id("42")

    assert page.id == "42"
    assert page.labels == ["rca"]


async def test_fetch_page_by_id_not_found_returns_none():
    def handler(request):
        return httpx.Response(404, json={"message": "No content found"})

    assert await make_client(handler).fetch_page_by_id("missing") is None


async def test_fetch_page_by_id_server_error_raises():
    def handler(request):
        return httpx.Response(500)

    with pytest.raises(UpstreamError):
        await make_client(handler).fetch_page_by_id("42")


async def test_fetch_modified_since_is_strict():
    def handler(request):
        return httpx.Response(
            200,
            json={
                "results": [
                    raw_page("old", when="2024-01-05T00:00:00Z"),
                    raw_page("same", when="2024-01-10T00:00:00Z"),
                    raw_page("new", when="2024-01-15T00:00:00+00:00"),
                ],
                "_links": {},
            },
        )

    pages = await make_client(handler).fetch_modified_since(
        datetime(2024, 1, 10, tzinfo=timezone.utc), ["OPS"]
    )

    assert [p.id for p in pages] == ["new"]
