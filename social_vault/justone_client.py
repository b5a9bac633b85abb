from __future__ import annotations

from typing import Any, Callable, Mapping, TypeVar

import httpx

from .config_schema import JustOneConfig
from .errors import ConfigError, MalformedResponseError, UpstreamError
from .http import fetch_json, unwrap_note
from .models import SearchQuery
from .provider_base import ProviderClient, first_message
from .retry import NO_RETRY, OnRetryFn, RetryConfig, SleepFn

T = TypeVar("T")

PROVIDER = "justone"


def _envelope_code(payload: Mapping[str, Any]) -> int | None:
    code = payload.get("code")
    try:
        return int(code)
    except (TypeError, ValueError):
        return None


def extract_search_notes(data: Any) -> list[dict[str, Any]]:
    """Keep only note items from a search response; other model types are ads or widgets."""
    if isinstance(data, Mapping):
        items = data.get("items")
        if items is None:
            items = data.get("notes")
    else:
        items = data

    if not isinstance(items, list):
        return []

    notes: list[dict[str, Any]] = []
    for item in items:
        if not isinstance(item, Mapping):
            continue
        if "model_type" in item:
            if item.get("model_type") == "note" and isinstance(item.get("note"), Mapping):
                notes.append(dict(item["note"]))
            continue
        if isinstance(item.get("note"), Mapping):
            notes.append(dict(item["note"]))
        elif item.get("id"):
            notes.append(dict(item))
    return notes


class JustOneXhsClient(ProviderClient):
    """
    Thin async wrapper around JustOneAPI's Xiaohongshu endpoints.

    Auth is a query-string token; success is the {code: 0, data} envelope.
    """

    provider_name = PROVIDER

    def __init__(
        self,
        token: str | None,
        *,
        config: JustOneConfig | None = None,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 8.0,
        on_retry: OnRetryFn | None = None,
        sleep_fn: SleepFn | None = None,
    ) -> None:
        key = (token or "").strip()
        if not key:
            raise ConfigError("JustOneAPI token not configured")

        self._cfg = config or JustOneConfig()
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
        retry: RetryConfig | None = None,
    ) -> T:
        url = f"{self._cfg.base_url}{path}"

        async def _do_call() -> T:
            resp = await fetch_json(
                self._http,
                url,
                provider=PROVIDER,
                params={"token": self._token, **params},
            )
            payload = resp.payload
            if not isinstance(payload, Mapping):
                raise MalformedResponseError(
                    PROVIDER,
                    f"JustOneAPI returned an unexpected body (HTTP {resp.status_code})",
                    status_code=resp.status_code,
                )

            code = _envelope_code(payload)
            if resp.status_code != 200 or code != 0:
                message = first_message(dict(payload), "message", "msg") or (
                    f"JustOneAPI error (code: {payload.get('code')}, HTTP {resp.status_code})"
                )
                raise UpstreamError(PROVIDER, message, status_code=resp.status_code)

            return extract(payload.get("data"))

        return await self._with_retries(_do_call, operation=operation, retry=retry)

    async def _fetch_detail(
        self,
        path: str,
        note_id: str,
        xsec_token: str | None,
        *,
        operation: str,
        retry: RetryConfig | None,
    ) -> dict[str, Any]:
        nid = (note_id or "").strip()
        if not nid:
            raise ValueError("note_id must be non-empty")

        def _extract(data: Any) -> dict[str, Any]:
            note = unwrap_note(data)
            if note is None:
                raise MalformedResponseError(PROVIDER, f"JustOneAPI note detail missing note object ({nid})")
            return note

        return await self._call(
            path,
            {"noteId": nid, "xsecToken": xsec_token},
            operation=operation,
            extract=_extract,
            retry=retry,
        )

    async def fetch_note_detail_legacy(
        self,
        note_id: str,
        xsec_token: str | None = None,
        *,
        retry: RetryConfig | None = None,
    ) -> dict[str, Any]:
        """Richer engagement metrics, but the endpoint is known to fail intermittently."""
        return await self._fetch_detail(
            self._cfg.legacy_detail_path,
            note_id,
            xsec_token,
            operation="note_detail_legacy",
            retry=retry,
        )

    async def fetch_note_detail(
        self,
        note_id: str,
        xsec_token: str | None = None,
        *,
        retry: RetryConfig | None = None,
    ) -> dict[str, Any]:
        return await self._fetch_detail(
            self._cfg.detail_path,
            note_id,
            xsec_token,
            operation="note_detail",
            retry=retry,
        )

    async def search_notes(self, query: SearchQuery) -> list[dict[str, Any]]:
        params = {
            "keyword": query.keyword.strip(),
            "page": query.page,
            "sort": query.sort_order or "general",
            "noteType": "_0",
            "noteTime": query.time_window,
        }
        notes = await self._call(
            self._cfg.search_path,
            params,
            operation="search_notes",
            extract=extract_search_notes,
        )
        if query.limit is not None:
            notes = notes[: query.limit]
        return notes

    async def transfer_share_url(self, share_url: str) -> dict[str, Any]:
        """
        Expand a share link. Never retried: a short link is a stable target.
        """
        url = (share_url or "").strip()
        if not url:
            raise ValueError("share_url must be non-empty")

        def _extract(data: Any) -> dict[str, Any]:
            if not isinstance(data, Mapping):
                raise MalformedResponseError(PROVIDER, "Share URL transfer returned an unexpected format")
            return dict(data)

        return await self._call(
            self._cfg.transfer_path,
            {"shareUrl": url},
            operation="share_url_transfer",
            extract=_extract,
            retry=NO_RETRY,
        )
