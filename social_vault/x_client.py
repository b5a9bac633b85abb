from __future__ import annotations

from typing import Any, Callable, Mapping, Sequence, TypeVar

import httpx

from .config_schema import XApiConfig
from .errors import ConfigError, MalformedResponseError, UpstreamError
from .http import fetch_json
from .models import SearchQuery
from .provider_base import ProviderClient
from .retry import OnRetryFn, RetryConfig, SleepFn

T = TypeVar("T")

PROVIDER = "x_api"

TWEET_FIELDS = "created_at,public_metrics,author_id,attachments,entities,note_tweet"
USER_FIELDS = "username,name,profile_image_url"
MEDIA_FIELDS = "type,url,preview_image_url"
EXPANSIONS = "author_id,attachments.media_keys"


def build_search_query(keywords: Sequence[str]) -> str:
    safe = [f'"{k.replace(chr(34), "")}"' for k in keywords if (k or "").strip()]
    if len(safe) == 1:
        or_query = safe[0]
    else:
        or_query = f"({' OR '.join(safe)})" if safe else ""
    return f"{or_query} has:media -is:retweet -is:reply".strip()


def _error_message(payload: Mapping[str, Any], status_code: int) -> str:
    errors = payload.get("errors")
    if isinstance(errors, list) and errors:
        first = errors[0] if isinstance(errors[0], Mapping) else {}
        for key in ("detail", "message", "title"):
            value = first.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    for key in ("detail", "title"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return f"X API error: {status_code}"


def bundle_tweets(payload: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Attach each tweet's author and media objects from the includes block."""
    data = payload.get("data")
    tweets = data if isinstance(data, list) else [data] if isinstance(data, Mapping) else []

    includes = payload.get("includes") if isinstance(payload.get("includes"), Mapping) else {}
    users = {u.get("id"): u for u in includes.get("users") or [] if isinstance(u, Mapping)}
    media = {m.get("media_key"): m for m in includes.get("media") or [] if isinstance(m, Mapping)}

    out: list[dict[str, Any]] = []
    for tweet in tweets:
        if not isinstance(tweet, Mapping):
            continue
        keys = (tweet.get("attachments") or {}).get("media_keys") or []
        out.append(
            {
                "tweet": dict(tweet),
                "user": dict(users.get(tweet.get("author_id")) or {}),
                "media": [dict(media[k]) for k in keys if k in media],
            }
        )
    return out


class XApiClient(ProviderClient):
    """
    Thin async wrapper around the official X API v2.

    Auth is a bearer header; failures surface as an errors array.
    """

    provider_name = PROVIDER

    def __init__(
        self,
        bearer_token: str | None,
        *,
        config: XApiConfig | None = None,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 8.0,
        on_retry: OnRetryFn | None = None,
        sleep_fn: SleepFn | None = None,
    ) -> None:
        key = (bearer_token or "").strip()
        if not key:
            raise ConfigError("X API Bearer Token not configured")

        self._cfg = config or XApiConfig()
        self._token = key
        super().__init__(
            client=client,
            retry=RetryConfig(
                max_attempts=self._cfg.retry_attempts,
                delay_seconds=self._cfg.retry_delay_seconds,
            ),
            timeout_seconds=timeout_seconds,
            on_retry=on_retry,
            sleep_fn=sleep_fn,
        )

    async def _call(
        self,
        path: str,
        params: Mapping[str, Any],
        *,
        operation: str,
        extract: Callable[[Mapping[str, Any]], T],
    ) -> T:
        url = f"{self._cfg.base_url}{path}"
        headers = {"Authorization": f"Bearer {self._token}"}

        async def _do_call() -> T:
            resp = await fetch_json(self._http, url, provider=PROVIDER, params=params, headers=headers)
            payload = resp.payload
            if not isinstance(payload, Mapping):
                raise MalformedResponseError(
                    PROVIDER,
                    f"X API returned an unexpected body (HTTP {resp.status_code})",
                    status_code=resp.status_code,
                )
            if resp.status_code >= 400 or (payload.get("errors") and not payload.get("data")):
                raise UpstreamError(
                    PROVIDER,
                    _error_message(payload, resp.status_code),
                    status_code=resp.status_code,
                )
            return extract(payload)

        return await self._with_retries(_do_call, operation=operation)

    def _expansion_params(self) -> dict[str, str]:
        return {
            "expansions": EXPANSIONS,
            "tweet.fields": TWEET_FIELDS,
            "user.fields": USER_FIELDS,
            "media.fields": MEDIA_FIELDS,
        }

    async def fetch_tweet(self, tweet_id: str) -> dict[str, Any]:
        tid = (tweet_id or "").strip()
        if not tid.isdigit():
            raise ValueError("tweet_id must be a numeric string")

        def _extract(payload: Mapping[str, Any]) -> dict[str, Any]:
            bundles = bundle_tweets(payload)
            if not bundles:
                raise MalformedResponseError(PROVIDER, f"X API response missing tweet data ({tid})")
            return bundles[0]

        return await self._call(
            self._cfg.tweet_path.replace("{id}", tid),
            self._expansion_params(),
            operation="tweet_detail",
            extract=_extract,
        )

    async def search_recent(self, query: SearchQuery) -> list[dict[str, Any]]:
        max_results = min(max(int(query.limit or 20), 10), 100)
        params = {
            "query": build_search_query([query.keyword]),
            "max_results": max_results,
            "sort_order": "recency" if query.sort_order == "time_descending" else "relevancy",
            **self._expansion_params(),
        }
        bundles = await self._call(
            self._cfg.search_path,
            params,
            operation="search_recent",
            extract=bundle_tweets,
        )
        if query.limit is not None:
            bundles = bundles[: query.limit]
        return bundles
