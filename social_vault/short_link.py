from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol
from urllib.parse import urlsplit

from .classifier import extract_xsec_token, match_xhs_note_id
from .errors import ConfigError, MalformedResponseError

PROVIDER = "justone"


class ShareUrlTransfer(Protocol):
    async def transfer_share_url(self, share_url: str) -> dict[str, Any]: ...


@dataclass(frozen=True)
class ResolvedShortLink:
    post_id: str
    access_token: str | None = None


def _note_id_from_url(url: str) -> str | None:
    try:
        path = urlsplit(url).path
    except ValueError:
        return None
    return match_xhs_note_id(path)


def _first_str(data: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class ShortLinkResolver:
    """
    Expands xhslink.com share links into a note id and access token.

    Expansion goes through JustOneAPI's share-url transfer endpoint and is never retried.
    """

    def __init__(self, client: ShareUrlTransfer | None) -> None:
        self._client = client

    async def resolve(self, url: str, token: str | None = None) -> ResolvedShortLink:
        if self._client is None:
            raise ConfigError("JustOneAPI token not configured; cannot resolve short links")

        data = await self._client.transfer_share_url(url)

        note_id = _first_str(data, "noteId", "note_id")
        redirect = _first_str(data, "redirect_url", "redirectUrl", "url")

        if note_id is None and redirect is not None:
            note_id = _note_id_from_url(redirect)

        if note_id is None:
            raise MalformedResponseError(PROVIDER, "Share URL transfer returned an unexpected format")

        redirect_token = extract_xsec_token(redirect) if redirect else None
        return ResolvedShortLink(post_id=note_id, access_token=redirect_token or token)
