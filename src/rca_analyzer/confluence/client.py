"""
Confluence Client

Async document source backed by the Confluence REST API. It is responsible for:

- Paginated listing of the pages in a space, optionally filtered by label
- Fetching a single page with its storage-format body
- Deriving "modified since" listings for incremental syncs

Listing failures raise UpstreamError so that a sync run which cannot enumerate
its spaces fails as a whole; a missing single page is reported as None.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from ..config import settings
from ..core.errors import UpstreamError
from .models import PageContent

logger = logging.getLogger("rca.confluence")

_EXPAND = "body.storage,version,metadata.labels"


class ConfluenceClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        auth_token: Optional[str] = None,
        page_size: Optional[int] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or settings.confluence_base_url).rstrip("/")
        self.auth_token = auth_token or settings.confluence_auth_token.get_secret_value()
        self.page_size = page_size or settings.confluence_page_size
        self.timeout = timeout or settings.confluence_timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Accept": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers=headers,
            transport=self._transport,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_pages(
        self,
        space_key: str,
        tags: Optional[List[str]] = None,
    ) -> List[PageContent]:
        """
        List every page in a space, keeping those carrying any of `tags`.

        Raises
        ------
        UpstreamError
            If any listing request fails.
        """
        pages: List[PageContent] = []
        start = 0

        async with self._client() as client:
            while True:
                params = {
                    "spaceKey": space_key,
                    "type": "page",
                    "limit": self.page_size,
                    "start": start,
                    "expand": _EXPAND,
                }
                try:
                    resp = await client.get(f"{self.base_url}/rest/api/content", params=params)
                    resp.raise_for_status()
                except httpx.HTTPError as exc:
                    logger.error(
                        "Listing space %s failed at start=%d (%s): %s",
                        space_key,
                        start,
                        type(exc).__name__,
                        exc,
                    )
                    raise UpstreamError(
                        f"Failed to list pages in space {space_key}: {type(exc).__name__}"
                    ) from exc

                data = resp.json()
                results = data.get("results") or []
                if not results:
                    break

                for raw in results:
                    page = self._parse_page(raw)
                    if not tags or page.has_any_label(tags):
                        pages.append(page)

                if "next" not in (data.get("_links") or {}):
                    break
                start += self.page_size

        logger.info("Fetched %d pages from space %s", len(pages), space_key)
        return pages

    async def fetch_page_by_id(self, page_id: str) -> Optional[PageContent]:
        """
        Fetch one page, or None if the source does not know it.

        Raises
        ------
        UpstreamError
            On any failure other than 404.
        """
        async with self._client() as client:
            try:
                resp = await client.get(
                    f"{self.base_url}/rest/api/content/{page_id}",
                    params={"expand": _EXPAND},
                )
            except httpx.HTTPError as exc:
                raise UpstreamError(
                    f"Failed to fetch page {page_id}: {type(exc).__name__}"
                ) from exc

        if resp.status_code == 404:
            return None
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error("Fetching page %s failed: %s", page_id, exc)
            raise UpstreamError(
                f"Failed to fetch page {page_id}: HTTP {resp.status_code}"
            ) from exc

        return self._parse_page(resp.json())

    async def fetch_modified_since(
        self,
        since: datetime,
        space_keys: List[str],
        tags: Optional[List[str]] = None,
    ) -> List[PageContent]:
        """
        Pages in `space_keys` whose last modification is strictly after `since`.
        """
        since = _as_utc(since)
        modified: List[PageContent] = []
        for space_key in space_keys:
            for page in await self.fetch_pages(space_key, tags):
                if page.last_modified > since:
                    modified.append(page)
        return modified

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _parse_page(self, raw: Dict[str, Any]) -> PageContent:
        space = raw.get("space") or {}
        links = raw.get("_links") or {}
        body = ((raw.get("body") or {}).get("storage") or {}).get("value", "")

        when = (raw.get("version") or {}).get("when")
        last_modified = _parse_timestamp(when) if when else datetime.now(timezone.utc)

        label_results = ((raw.get("metadata") or {}).get("labels") or {}).get("results") or []
        labels = [label["name"] for label in label_results if "name" in label]

        webui = links.get("webui", "")
        return PageContent(
            id=str(raw["id"]),
            title=raw.get("title", ""),
            space_key=space.get("key", ""),
            url=f"{self.base_url}{webui}" if webui else "",
            body=body,
            last_modified=last_modified,
            labels=labels,
        )


def _parse_timestamp(value: str) -> datetime:
    return _as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
