from __future__ import annotations

import unittest
from typing import Callable

import httpx

from social_vault.config_schema import XApiConfig
from social_vault.errors import ConfigError, UpstreamError
from social_vault.http import build_async_client
from social_vault.models import Platform, SearchQuery
from social_vault.offline import offline_tweet_payload, offline_tweet_search_payload
from social_vault.x_client import XApiClient, build_search_query


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> XApiClient:
    http = build_async_client(transport=httpx.MockTransport(handler))
    return XApiClient("bearer", client=http)


class TestXApiClient(unittest.IsolatedAsyncioTestCase):
    async def test_requires_token(self) -> None:
        with self.assertRaises(ConfigError):
            XApiClient("")

    async def test_fetch_tweet_bundles_includes(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=offline_tweet_payload())

        async with _client(handler) as client:
            bundle = await client.fetch_tweet("1790000000000000001")

        self.assertEqual(bundle["tweet"]["id"], "1790000000000000001")
        self.assertEqual(bundle["user"]["username"], "offline_dev")
        self.assertEqual(bundle["media"], [])

        req = seen[0]
        self.assertEqual(req.url.path, "/2/tweets/1790000000000000001")
        self.assertEqual(req.headers["Authorization"], "Bearer bearer")
        self.assertEqual(req.url.params["expansions"], "author_id,attachments.media_keys")
        self.assertIn("note_tweet", req.url.params["tweet.fields"])

    async def test_errors_without_data_fail(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"errors": [{"detail": "Could not find tweet with id: [1]."}]})

        async with _client(handler) as client:
            with self.assertRaises(UpstreamError) as ctx:
                await client.fetch_tweet("1")

        self.assertEqual(str(ctx.exception), "Could not find tweet with id: [1].")

    async def test_http_error_uses_title(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"title": "Too Many Requests", "status": 429})

        async with _client(handler) as client:
            with self.assertRaises(UpstreamError) as ctx:
                await client.fetch_tweet("1")

        self.assertEqual(ctx.exception.status_code, 429)
        self.assertEqual(str(ctx.exception), "Too Many Requests")

    async def test_non_numeric_id_is_rejected(self) -> None:
        async with _client(lambda r: httpx.Response(200, json={})) as client:
            with self.assertRaises(ValueError):
                await client.fetch_tweet("abc")

    async def test_search_recent_params(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=offline_tweet_search_payload())

        async with _client(handler) as client:
            bundles = await client.search_recent(
                SearchQuery(keyword="open weights", platform=Platform.TWITTER, sort_order="time_descending", limit=3)
            )

        self.assertEqual(len(bundles), 1)
        self.assertEqual(bundles[0]["media"][0]["type"], "photo")
        params = seen[0].url.params
        self.assertEqual(params["query"], '"open weights" has:media -is:retweet -is:reply')
        self.assertEqual(params["max_results"], "10")
        self.assertEqual(params["sort_order"], "recency")

    async def test_search_clamps_max_results(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"meta": {"result_count": 0}})

        async with _client(handler) as client:
            out = await client.search_recent(SearchQuery(keyword="x", platform=Platform.TWITTER, limit=500))

        self.assertEqual(out, [])
        self.assertEqual(seen[0].url.params["max_results"], "100")
        self.assertEqual(seen[0].url.params["sort_order"], "relevancy")

    async def test_paths_come_from_config(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            if request.url.path.startswith("/v2-mirror/search"):
                return httpx.Response(200, json=offline_tweet_search_payload())
            return httpx.Response(200, json=offline_tweet_payload())

        cfg = XApiConfig(tweet_path="/v2-mirror/status/{id}", search_path="/v2-mirror/search")
        http = build_async_client(transport=httpx.MockTransport(handler))
        async with XApiClient("bearer", config=cfg, client=http) as client:
            await client.fetch_tweet("1790000000000000001")
            await client.search_recent(SearchQuery(keyword="x", platform=Platform.TWITTER))

        self.assertEqual(seen, ["/v2-mirror/status/1790000000000000001", "/v2-mirror/search"])


class TestBuildSearchQuery(unittest.TestCase):
    def test_strips_quotes_and_blank_keywords(self) -> None:
        self.assertEqual(
            build_search_query(['say "hi"', " ", "ai"]),
            '("say hi" OR "ai") has:media -is:retweet -is:reply',
        )


if __name__ == "__main__":
    unittest.main()
