from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping

import httpx

from .errors import MalformedResponseError, UpstreamError

DEFAULT_TIMEOUT_SECONDS = 8.0
USER_AGENT = "social-vault/0.1"

NOTE_CONTAINER_KEYS = ("note_list", "notes", "items", "data", "note", "note_card", "noteCard")


@dataclass(frozen=True)
class JsonResponse:
    status_code: int
    payload: Any


def build_async_client(
    *,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_seconds),
        headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
        follow_redirects=True,
        transport=transport,
    )


async def fetch_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    provider: str,
    params: Mapping[str, Any] | None = None,
    headers: Mapping[str, str] | None = None,
) -> JsonResponse:
    """
    GET a JSON document.

    Transport failures surface as UpstreamError; bodies that are not JSON surface as
    MalformedResponseError. Envelope semantics are left to the caller.
    """
    clean_params = {k: v for k, v in (params or {}).items() if v is not None and v != ""}
    try:
        response = await client.get(url, params=clean_params, headers=dict(headers or {}))
    except httpx.HTTPError as e:
        raise UpstreamError(provider, f"{provider} request failed: {e}") from e

    try:
        payload = response.json()
    except (json.JSONDecodeError, ValueError) as e:
        raise MalformedResponseError(
            provider,
            f"{provider} returned a non-JSON body (HTTP {response.status_code})",
            status_code=response.status_code,
        ) from e

    return JsonResponse(status_code=response.status_code, payload=payload)


def decode_json_string(value: Any, *, provider: str) -> Any:
    """Some upstreams JSON-encode the data field; parse it a second time when needed."""
    if not isinstance(value, str):
        return value
    text = value.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(provider, f"{provider} data field is not valid JSON: {e}") from e


def unwrap_note(payload: Any, *, max_depth: int = 4) -> dict[str, Any] | None:
    """
    Find the note object inside a detail payload.

    Accepts an array or an object, with the note nested under one of the
    container keys or sitting at the top level.
    """
    current = payload
    for _ in range(max_depth + 1):
        if isinstance(current, list):
            current = next((item for item in current if isinstance(item, Mapping)), None)
            continue
        if not isinstance(current, Mapping):
            return None
        if _looks_like_note(current):
            return dict(current)
        nested = next(
            (current[k] for k in NOTE_CONTAINER_KEYS if isinstance(current.get(k), (Mapping, list)) and current.get(k)),
            None,
        )
        if nested is None:
            return None
        current = nested
    return None


def _looks_like_note(obj: Mapping[str, Any]) -> bool:
    has_id = any(obj.get(k) for k in ("id", "note_id", "noteId"))
    has_body = any(
        k in obj
        for k in ("title", "desc", "display_title", "images_list", "imageList", "image_list", "user", "interact_info", "interactInfo")
    )
    return bool(has_id and has_body)
