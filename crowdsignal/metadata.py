"""Destination metadata: photo lookups against the Wikipedia page-image API."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any

import httpx

logger = logging.getLogger(__name__)

WIKIPEDIA_API_URL = "https://en.wikipedia.org/w/api.php"
FETCH_TIMEOUT_SECONDS = 5.0
THUMBNAIL_SIZE = 700


class DestinationMetadataClient:
    """Fetches a representative photo URL for a destination.

    Each lookup is a single bounded request.  Unknown destinations, timeouts,
    HTTP errors and unexpected payloads resolve to ``None``; nothing is
    retried.  Cancellation of the calling task propagates.  Successful
    lookups are memoised for the lifetime of the client.

    Args:
        titles: Destination id → Wikipedia article title.
        api_url: Page-image API endpoint.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        titles: dict[int, str],
        api_url: str = WIKIPEDIA_API_URL,
        timeout: float = FETCH_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._titles = dict(titles)
        self._api_url = api_url
        self._timeout = timeout
        self._transport = transport
        self._lock = threading.Lock()
        self._photos: dict[int, str] = {}

    async def fetch_photo(self, destination_id: int) -> str | None:
        """Return a thumbnail URL for *destination_id*, or ``None``."""
        with self._lock:
            cached = self._photos.get(destination_id)
        if cached is not None:
            return cached

        title = self._titles.get(destination_id)
        if not title:
            return None

        params = {
            "action": "query",
            "titles": title,
            "prop": "pageimages",
            "format": "json",
            "pithumbsize": str(THUMBNAIL_SIZE),
            "origin": "*",
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await asyncio.wait_for(
                    client.get(self._api_url, params=params), timeout=self._timeout
                )
                response.raise_for_status()
                url = _thumbnail_from_payload(response.json())
        except asyncio.CancelledError:
            logger.debug("Photo lookup for destination %d abandoned.", destination_id)
            raise
        except (httpx.HTTPError, asyncio.TimeoutError, ValueError):
            logger.warning("Photo lookup failed for destination %d.", destination_id, exc_info=True)
            return None

        if url is None:
            return None
        with self._lock:
            self._photos[destination_id] = url
        return url

    async def fetch_photos(self, destination_ids: list[int]) -> dict[int, str | None]:
        """Look up several destinations concurrently. Failures map to ``None``."""
        results = await asyncio.gather(
            *(self.fetch_photo(d) for d in destination_ids), return_exceptions=True
        )
        return {
            d: (r if isinstance(r, str) else None)
            for d, r in zip(destination_ids, results)
        }


def _thumbnail_from_payload(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    query = payload.get("query")
    if not isinstance(query, dict):
        return None
    pages = query.get("pages")
    if not isinstance(pages, dict) or not pages:
        return None
    page = next(iter(pages.values()))
    if not isinstance(page, dict):
        return None
    thumbnail = page.get("thumbnail")
    if not isinstance(thumbnail, dict):
        return None
    source = thumbnail.get("source")
    return source if isinstance(source, str) and source else None
