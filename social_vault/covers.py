from __future__ import annotations

import re
from dataclasses import replace
from typing import Any, Protocol

from openai import AsyncOpenAI

from .config_schema import OpenAIConfig
from .errors import AnalyzerError
from .models import NormalizedContent, Platform
from .openai_retry import is_retryable_openai_exception
from .retry import OnRetryFn, RetryConfig, SleepFn, call_with_retries
from .run_log import RunLogger

FALLBACK_POOL_SIZE = 10
LEGACY_FALLBACK_BASE_PATH = "/fallback-covers"
FALLBACK_BASE_PATH = "/dashboard-fallbacks"

_LEGACY_FALLBACK_RE = re.compile(r"/fallback-covers/cover-(\d{1,3})\.svg(?:[?#]|$)", re.IGNORECASE)
_FALLBACK_RE = re.compile(r"/dashboard-fallbacks/nature-(\d{1,2})\.svg(?:[?#]|$)", re.IGNORECASE)
_HTTP_RE = re.compile(r"^https?://", re.IGNORECASE)

_COVER_PROMPT_CHARS = 600


class CoverImageGenerator(Protocol):
    async def generate_cover(self, text: str) -> str: ...


def _clamp_index(index: Any) -> int:
    try:
        n = int(index)
    except (TypeError, ValueError):
        return 1
    if n <= 0:
        return 1
    return ((n - 1) % FALLBACK_POOL_SIZE) + 1


def _nature_path(index: Any) -> str:
    return f"{FALLBACK_BASE_PATH}/nature-{_clamp_index(index):02d}.svg"


def hash_seed(value: Any) -> int:
    """
    31-multiplier string hash over UTF-16 code units with 32-bit wraparound.

    Matches the hash the web dashboard uses, so a seed maps to the same cover on both sides.
    """
    data = str(value or "").encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def fallback_cover_from_seed(seed: Any) -> str:
    return _nature_path(hash_seed(seed) % FALLBACK_POOL_SIZE + 1)


def is_fallback_cover_url(url: Any) -> bool:
    raw = str(url or "").strip()
    if not raw:
        return False
    return bool(_LEGACY_FALLBACK_RE.search(raw) or _FALLBACK_RE.search(raw))


def normalize_legacy_fallback_cover(url: Any) -> str:
    """Rewrite old /fallback-covers/cover-N.svg paths onto the current nature pool."""
    raw = str(url or "").strip()
    if not raw:
        return ""
    m = _LEGACY_FALLBACK_RE.search(raw) or _FALLBACK_RE.search(raw)
    if m:
        return _nature_path(m.group(1))
    return raw


def is_renderable_cover_url(url: Any) -> bool:
    value = str(url or "").strip()
    if not value:
        return False
    return bool(
        _HTTP_RE.match(value)
        or value.startswith("/")
        or value.startswith("data:image/")
        or value.startswith("blob:")
    )


def needs_generated_cover(content: NormalizedContent) -> bool:
    if content.platform is not Platform.TWITTER:
        return False
    if content.images or is_renderable_cover_url(content.cover_image_url):
        return False
    return bool(content.raw_text.strip())


async def apply_generated_cover(
    content: NormalizedContent,
    generator: CoverImageGenerator | None,
    *,
    logger: RunLogger | None = None,
) -> NormalizedContent:
    """
    Fill the cover of a text-only tweet from a generator.

    Any generator failure degrades to an empty cover; the record itself is never lost.
    """
    if not needs_generated_cover(content):
        return content
    if generator is None:
        return replace(content, cover_image_url="")

    log = logger or RunLogger.null()
    try:
        url = await generator.generate_cover(content.raw_text)
    except Exception as e:
        log.warning(
            "cover_generation_failed",
            url=content.source_url,
            error_type=type(e).__name__,
            error_message=str(e),
        )
        url = ""

    return replace(content, cover_image_url=(url or "").strip())


class FallbackCoverGenerator:
    """Deterministic local artwork; never touches the network."""

    async def generate_cover(self, text: str) -> str:
        return fallback_cover_from_seed(text)


def _cover_prompt(text: str) -> str:
    snippet = " ".join((text or "").split())[:_COVER_PROMPT_CHARS]
    return (
        "Minimal, calm editorial illustration suitable as a knowledge-card cover. "
        "No text, no letters, no logos. Theme drawn from this post: "
        f"{snippet}"
    )


class OpenAICoverImageGenerator:
    """Generates a cover with the OpenAI Images API; returns a hosted URL or a data URL."""

    def __init__(
        self,
        api_key: str,
        *,
        openai_cfg: OpenAIConfig,
        client: Any | None = None,
        on_retry: OnRetryFn | None = None,
        sleep_fn: SleepFn | None = None,
    ) -> None:
        key = (api_key or "").strip()
        if not key:
            raise ValueError("api_key must be a non-empty string")

        self._cfg = openai_cfg
        self._client = client or AsyncOpenAI(api_key=key)
        self._retry = RetryConfig(
            max_attempts=openai_cfg.retry_attempts,
            delay_seconds=openai_cfg.retry_delay_seconds,
        )
        self._on_retry = on_retry
        self._sleep_fn = sleep_fn

    async def generate_cover(self, text: str) -> str:
        prompt = _cover_prompt(text)

        async def _do_call() -> Any:
            return await self._client.images.generate(
                model=self._cfg.cover_model,
                prompt=prompt,
                size=self._cfg.cover_size,
                n=1,
            )

        try:
            response = await call_with_retries(
                _do_call,
                cfg=self._retry,
                is_retryable=is_retryable_openai_exception,
                operation="openai.images.generate",
                on_retry=self._on_retry,
                sleep_fn=self._sleep_fn,
            )
        except Exception as e:
            raise AnalyzerError(f"OpenAI image generation failed ({self._cfg.cover_model}): {e}") from e

        data = getattr(response, "data", None) or []
        if not data:
            raise AnalyzerError("OpenAI image response contained no images")

        first = data[0]
        url = getattr(first, "url", None)
        if isinstance(url, str) and url.strip():
            return url.strip()
        b64 = getattr(first, "b64_json", None)
        if isinstance(b64, str) and b64.strip():
            return f"data:image/png;base64,{b64.strip()}"
        raise AnalyzerError("OpenAI image response had neither url nor b64_json")
