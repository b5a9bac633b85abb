from __future__ import annotations

import unittest
from typing import Any, Callable

import httpx

from social_vault.errors import ConfigError, MalformedResponseError, UpstreamError
from social_vault.http import build_async_client
from social_vault.justone_client import JustOneXhsClient, extract_search_notes
from social_vault.models import SearchQuery
from social_vault.retry import RetryConfig


async def _no_sleep(_: float) -> None:
    return None


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> JustOneXhsClient:
    http = build_async_client(transport=httpx.MockTransport(handler))
    return JustOneXhsClient("tok", client=http, sleep_fn=_no_sleep)


_NOTE: dict[str, Any] = {"id": "n1", "title": "hello", "user": {"nickname": "u"}}


class TestJustOneClient(unittest.IsolatedAsyncioTestCase):
    async def test_requires_token(self) -> None:
        with self.assertRaises(ConfigError):
            JustOneXhsClient("  ")

    async def test_primary_detail_sends_token_and_unwraps_note(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"code": 0, "data": [{"note_list": [_NOTE]}]})

        async with _client(handler) as client:
            note = await client.fetch_note_detail("n1", "AB+tok")

        self.assertEqual(note["id"], "n1")
        self.assertEqual(seen[0].url.path, "/api/xiaohongshu/get-note-detail/v7")
        self.assertEqual(seen[0].url.params["token"], "tok")
        self.assertEqual(seen[0].url.params["noteId"], "n1")
        self.assertEqual(seen[0].url.params["xsecToken"], "AB+tok")

    async def test_missing_token_param_is_omitted(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"code": 0, "data": _NOTE})

        async with _client(handler) as client:
            await client.fetch_note_detail_legacy("n1")

        self.assertEqual(seen[0].url.path, "/api/xiaohongshu/get-note-detail/v1")
        self.assertNotIn("xsecToken", seen[0].url.params)

    async def test_error_envelope_retries_then_raises_upstream_message(self) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(200, json={"code": 301, "message": "note not found"})

        async with _client(handler) as client:
            with self.assertRaises(UpstreamError) as ctx:
                await client.fetch_note_detail("n1", retry=RetryConfig(max_attempts=4, delay_seconds=0.0))

        self.assertEqual(calls["n"], 4)
        self.assertEqual(str(ctx.exception), "note not found")
        self.assertEqual(ctx.exception.provider, "justone")

    async def test_retry_recovers(self) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(502, text="bad gateway")
            return httpx.Response(200, json={"code": 0, "data": {"note": _NOTE}})

        async with _client(handler) as client:
            note = await client.fetch_note_detail("n1")

        self.assertEqual(note["title"], "hello")
        self.assertEqual(calls["n"], 2)

    async def test_missing_note_is_malformed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"code": 0, "data": {"something": "else"}})

        async with _client(handler) as client:
            with self.assertRaises(MalformedResponseError):
                await client.fetch_note_detail("n1", retry=RetryConfig(max_attempts=1, delay_seconds=0.0))

    async def test_search_keeps_only_note_items(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            items = [
                {"model_type": "note", "note": {"id": "a"}},
                {"model_type": "hot_query", "hot_query": {}},
                {"model_type": "note", "note": {"id": "b"}},
                {"model_type": "note", "note": {"id": "c"}},
            ]
            return httpx.Response(200, json={"code": 0, "data": {"items": items}})

        async with _client(handler) as client:
            notes = await client.search_notes(
                SearchQuery(keyword=" prompt ", sort_order="popularity_descending", time_window="一周内", limit=2)
            )

        self.assertEqual([n["id"] for n in notes], ["a", "b"])
        params = seen[0].url.params
        self.assertEqual(params["keyword"], "prompt")
        self.assertEqual(params["sort"], "popularity_descending")
        self.assertEqual(params["noteType"], "_0")
        self.assertEqual(params["noteTime"], "一周内")
        self.assertEqual(params["page"], "1")

    async def test_transfer_share_url_is_not_retried(self) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(500, json={"code": 500, "message": "transfer failed"})

        async with _client(handler) as client:
            with self.assertRaises(UpstreamError):
                await client.transfer_share_url("http://xhslink.com/a/b")

        self.assertEqual(calls["n"], 1)


class TestExtractSearchNotes(unittest.TestCase):
    def test_shapes(self) -> None:
        self.assertEqual(extract_search_notes(None), [])
        self.assertEqual(extract_search_notes({"notes": [{"id": "x"}]}), [{"id": "x"}])
        self.assertEqual(extract_search_notes([{"note": {"id": "y"}}]), [{"id": "y"}])


if __name__ == "__main__":
    unittest.main()
