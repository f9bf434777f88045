"""Tests for crowdsignal.metadata.DestinationMetadataClient."""

from __future__ import annotations

import asyncio

import httpx

from crowdsignal.metadata import DestinationMetadataClient

THUMB = "https://upload.wikimedia.org/thumb/Taj_Mahal.jpg"


def _payload(source: str | None = THUMB) -> dict:
    page: dict = {"pageid": 1, "title": "Taj Mahal"}
    if source:
        page["thumbnail"] = {"source": source, "width": 700}
    return {"query": {"pages": {"1": page}}}


def _client(handler, titles: dict[int, str] | None = None) -> DestinationMetadataClient:
    return DestinationMetadataClient(
        titles if titles is not None else {1: "Taj Mahal"},
        transport=httpx.MockTransport(handler),
    )


class TestFetchPhoto:
    def test_returns_thumbnail(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_payload())

        assert asyncio.run(_client(handler).fetch_photo(1)) == THUMB
        params = seen[0].url.params
        assert params["titles"] == "Taj Mahal"
        assert params["prop"] == "pageimages"
        assert params["pithumbsize"] == "700"

    def test_memoised(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json=_payload())

        client = _client(handler)
        asyncio.run(client.fetch_photo(1))
        asyncio.run(client.fetch_photo(1))
        assert len(calls) == 1

    def test_unknown_destination(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        assert asyncio.run(_client(handler).fetch_photo(99)) is None

    def test_http_error(self) -> None:
        client = _client(lambda request: httpx.Response(500))
        assert asyncio.run(client.fetch_photo(1)) is None

    def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        assert asyncio.run(_client(handler).fetch_photo(1)) is None

    def test_invalid_json(self) -> None:
        client = _client(lambda request: httpx.Response(200, text="<html>"))
        assert asyncio.run(client.fetch_photo(1)) is None

    def test_page_without_thumbnail(self) -> None:
        client = _client(lambda request: httpx.Response(200, json=_payload(None)))
        assert asyncio.run(client.fetch_photo(1)) is None

    def test_query_not_an_object(self) -> None:
        client = _client(lambda request: httpx.Response(200, json={"query": ["not", "a", "dict"]}))
        assert asyncio.run(client.fetch_photo(1)) is None

    def test_thumbnail_not_an_object(self) -> None:
        payload = {"query": {"pages": {"1": {"thumbnail": "x"}}}}
        client = _client(lambda request: httpx.Response(200, json=payload))
        assert asyncio.run(client.fetch_photo(1)) is None

    def test_cancellation_propagates(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise asyncio.CancelledError()

        client = _client(handler)

        async def lookup() -> str:
            try:
                await client.fetch_photo(1)
            except asyncio.CancelledError:
                return "cancelled"
            return "completed"

        assert asyncio.run(lookup()) == "cancelled"

    def test_failures_not_memoised(self) -> None:
        responses = iter([httpx.Response(500), httpx.Response(200, json=_payload())])
        client = _client(lambda request: next(responses))
        assert asyncio.run(client.fetch_photo(1)) is None
        assert asyncio.run(client.fetch_photo(1)) == THUMB


class TestFetchPhotos:
    def test_mixed_results(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params["titles"] == "Taj Mahal":
                return httpx.Response(200, json=_payload())
            return httpx.Response(404)

        client = _client(handler, {1: "Taj Mahal", 2: "Missing Place"})
        assert asyncio.run(client.fetch_photos([1, 2, 3])) == {1: THUMB, 2: None, 3: None}
