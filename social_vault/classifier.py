from __future__ import annotations

import re
from urllib.parse import unquote, urlsplit, urlunsplit

from .errors import ClassificationError
from .models import Platform, PlatformRef

_URL_RE = re.compile(r"https?://[^\s<>\"'，。！？、；）】]+", re.IGNORECASE)
_BARE_URL_RE = re.compile(
    r"(?<![A-Za-z0-9_.-])(?:[a-z0-9-]+\.)*(?:xiaohongshu\.com|xhslink\.com|twitter\.com|x\.com)(?:/[^\s<>\"'，。！？、；）】]*)?",
    re.IGNORECASE,
)
_TRAILING_PUNCT = ".,;:!?)]}>'\""

XHS_PATH_PATTERNS = (
    re.compile(r"^/explore/([A-Za-z0-9]+)/?$"),
    re.compile(r"^/discovery/item/([A-Za-z0-9]+)/?$"),
)
_TWEET_PATH_PATTERNS = (
    re.compile(r"^/[A-Za-z0-9_]{1,50}/status(?:es)?/(\d+)(?:/.*)?$"),
    re.compile(r"^/i/web/status/(\d+)(?:/.*)?$"),
)

_XHS_HOSTS = ("xiaohongshu.com",)
_XHS_SHORT_HOSTS = ("xhslink.com",)
_TWITTER_HOSTS = ("twitter.com", "x.com", "mobile.twitter.com", "mobile.x.com")


def extract_first_url(text: str) -> str | None:
    """Pull the first URL-looking token out of free text such as a pasted share message."""
    value = (text or "").strip()
    if not value:
        return None

    m = _URL_RE.search(value) or _BARE_URL_RE.search(value)
    if m is None:
        return None

    token = m.group(0).rstrip(_TRAILING_PUNCT)
    return token or None


def _strip_www(host: str) -> str:
    h = (host or "").lower()
    return h[4:] if h.startswith("www.") else h


def _host_in(host: str, domains: tuple[str, ...]) -> bool:
    return any(host == d or host.endswith("." + d) for d in domains)


def extract_xsec_token(url: str) -> str | None:
    """Return the decoded xsec_token query value, without treating '+' as a space."""
    try:
        query = urlsplit((url or "").strip()).query
    except ValueError:
        return None
    for pair in query.split("&"):
        key, sep, val = pair.partition("=")
        if sep and key == "xsec_token":
            token = unquote(val).strip()
            return token or None
    return None


def match_xhs_note_id(path: str) -> str | None:
    for pattern in XHS_PATH_PATTERNS:
        m = pattern.match(path or "")
        if m:
            return m.group(1)
    return None


def canonicalize_input_url(url: str) -> str | None:
    value = (url or "").strip()
    if not value:
        return None
    if not re.match(r"^[a-z][a-z0-9+.-]*://", value, re.IGNORECASE):
        value = "https://" + value

    try:
        parts = urlsplit(value)
        host = parts.hostname
        port = parts.port
    except ValueError:
        return None

    if parts.scheme.lower() not in ("http", "https") or not host or "." not in host:
        return None

    netloc = _strip_www(host)
    if port is not None:
        netloc = f"{netloc}:{port}"

    return urlunsplit((parts.scheme.lower(), netloc, parts.path, parts.query, parts.fragment))


def classify(text: str) -> PlatformRef | None:
    """
    Classify a URL or pasted text into a PlatformRef.

    Fails closed: returns None for anything that does not match a supported shape.
    """
    raw = extract_first_url(text)
    if raw is None:
        return None

    url = canonicalize_input_url(raw)
    if url is None:
        return None

    parts = urlsplit(url)
    host = (parts.hostname or "").lower()
    path = parts.path or ""

    if _host_in(host, _XHS_SHORT_HOSTS):
        return PlatformRef(
            platform=Platform.XIAOHONGSHU,
            original_url=url,
            post_id=None,
            access_token=extract_xsec_token(url),
        )

    if _host_in(host, _XHS_HOSTS):
        note_id = match_xhs_note_id(path)
        if note_id is None:
            return None
        return PlatformRef(
            platform=Platform.XIAOHONGSHU,
            original_url=url,
            post_id=note_id,
            access_token=extract_xsec_token(url),
        )

    if host in _TWITTER_HOSTS:
        for pattern in _TWEET_PATH_PATTERNS:
            m = pattern.match(path)
            if m:
                return PlatformRef(platform=Platform.TWITTER, original_url=url, post_id=m.group(1))
        return None

    return None


def classify_or_raise(text: str) -> PlatformRef:
    ref = classify(text)
    if ref is None:
        raise ClassificationError(
            "Unsupported URL format. Only Twitter/X and Xiaohongshu links are supported."
        )
    return ref
