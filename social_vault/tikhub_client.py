from __future__ import annotations

from typing import Any, Callable, Mapping, TypeVar

import httpx

from .config_schema import TikHubConfig
from .errors import ConfigError, MalformedResponseError, UpstreamError
from .http import decode_json_string, fetch_json, unwrap_note
from .justone_client import extract_search_notes
from .models import SearchQuery
from .provider_base import ProviderClient, first_message
from .retry import OnRetryFn, RetryConfig, SleepFn

T = TypeVar("T")

PROVIDER = "tikhub"

_SORT_TYPES = {
    "general": "general",
    "popularity_descending": "popularity_descending",
    "time_descending": "time_descending",
}


def _search_items(data: Any) -> list[dict[str, Any]]:
    current = data
    # TikHub nests the app response one or two levels under "data".
    for _ in range(3):
        if isinstance(current, Mapping) and "items" not in current and isinstance(current.get("data"), (Mapping, list)):
            current = current["data"]
        else:
            break
    return extract_search_notes(current)


class TikHubXhsClient(ProviderClient):
    """
    Thin async wrapper around TikHub's Xiaohongshu endpoints.

    Auth is a bearer header; success requires HTTP 200 and payload code 200.
    The data field is sometimes a JSON-encoded string.
    """

    provider_name = PROVIDER

    def __init__(
        self,
        token: str | None,
        *,
        config: TikHubConfig | None = None,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 8.0,
        on_retry: OnRetryFn | None = None,
        sleep_fn: SleepFn | None = None,
    ) -> None:
        key = (token or "").strip()
        if not key:
            raise ConfigError("TikHub API token not configured")

        self._cfg = config or TikHubConfig()
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
        extract: Callable[[Any], T],
    ) -> T:
        url = f"{self._cfg.base_url}{path}"
        headers = {"Authorization": f"Bearer {self._token}"}

        async def _do_call() -> T:
            resp = await fetch_json(self._http, url, provider=PROVIDER, params=params, headers=headers)
            payload = resp.payload
            if not isinstance(payload, Mapping):
                raise MalformedResponseError(
                    PROVIDER,
                    f"TikHub returned an unexpected body (HTTP {resp.status_code})",
                    status_code=resp.status_code,
                )

            code = payload.get("code")
            if resp.status_code != 200 or str(code) != "200":
                message = first_message(dict(payload), "message", "message_zh", "detail") or (
                    f"TikHub error (code: {code}, HTTP {resp.status_code})"
                )
                raise UpstreamError(PROVIDER, message, status_code=resp.status_code)

            data = decode_json_string(payload.get("data"), provider=PROVIDER)
            return extract(data)

        return await self._with_retries(_do_call, operation=operation)

    async def fetch_note_detail(self, note_id: str, xsec_token: str | None = None) -> dict[str, Any]:
        nid = (note_id or "").strip()
        if not nid:
            raise ValueError("note_id must be non-empty")

        def _extract(data: Any) -> dict[str, Any]:
            note = unwrap_note(data)
            if note is None:
                raise MalformedResponseError(PROVIDER, f"TikHub note detail missing note object ({nid})")
            return note

        return await self._call(
            self._cfg.detail_path,
            {"note_id": nid, "xsec_token": xsec_token},
            operation="note_detail",
            extract=_extract,
        )

    async def search_notes(self, query: SearchQuery) -> list[dict[str, Any]]:
        params = {
            "keyword": query.keyword.strip(),
            "page": query.page,
            "sort_type": _SORT_TYPES.get(query.sort_order, "general"),
            "filter_note_type": "不限",
            "filter_note_time": query.time_window,
        }
        notes = await self._call(
            self._cfg.search_path,
            params,
            operation="search_notes",
            extract=_search_items,
        )
        if query.limit is not None:
            notes = notes[: query.limit]
        return notes
