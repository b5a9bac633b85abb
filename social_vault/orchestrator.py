from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Any, Awaitable, Callable, Protocol, Sequence, TypeVar

import httpx

from .config import ProviderSettings, RuntimeSecrets
from .config_schema import AppConfig
from .covers import CoverImageGenerator, apply_generated_cover
from .dedupe import dedupe_batch
from .errors import AllProvidersExhaustedError, ClassificationError, ConfigError
from .http import build_async_client
from .justone_client import JustOneXhsClient
from .metrics import interaction_total
from .models import NormalizedContent, Platform, PlatformRef, SearchQuery, SearchResultBatch
from .normalize import normalize
from .retry import NO_RETRY, OnRetryFn, RetryConfig, RetryEvent
from .run_log import RunLogger
from .short_link import ShortLinkResolver
from .tikhub_client import TikHubXhsClient
from .x_client import XApiClient

T = TypeVar("T")

JUSTONE = "justone"
TIKHUB = "tikhub"
X_API = "x_api"

_XHS_AUTO_ORDER = (JUSTONE, TIKHUB)


class XhsDetailClient(Protocol):
    async def fetch_note_detail(self, note_id: str, xsec_token: str | None = None) -> dict[str, Any]: ...

    async def search_notes(self, query: SearchQuery) -> list[dict[str, Any]]: ...


def retry_event_logger(logger: RunLogger) -> OnRetryFn:
    def _on_retry(evt: RetryEvent) -> None:
        logger.warning(
            "retry_scheduled",
            operation=evt.operation,
            failure_attempt=evt.failure_attempt,
            next_attempt=evt.next_attempt,
            max_attempts=evt.max_attempts,
            delay_seconds=evt.delay_seconds,
            reason=evt.reason,
            error_type=evt.error_type,
            error_message=evt.error_message,
        )

    return _on_retry


class ContentResolver:
    """
    Routes a classified link or a search query to the right upstream provider(s).

    Xiaohongshu providers are tried strictly in order; the first success wins and each
    failure is logged before the next provider is tried. ConfigError and cancellation
    are never treated as a provider failure.
    """

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        justone: JustOneXhsClient | None = None,
        tikhub: XhsDetailClient | None = None,
        x_api: XApiClient | None = None,
        resolver: ShortLinkResolver | None = None,
        cover_generator: CoverImageGenerator | None = None,
        logger: RunLogger | None = None,
        min_interaction: int = 0,
    ) -> None:
        self._settings = settings
        self._justone = justone
        self._tikhub = tikhub
        self._x_api = x_api
        self._resolver = resolver or ShortLinkResolver(justone)
        self._cover_generator = cover_generator
        self._log = logger or RunLogger.null()
        self._min_interaction = max(0, int(min_interaction))
        self._owned_http: httpx.AsyncClient | None = None

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        secrets: RuntimeSecrets,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        cover_generator: CoverImageGenerator | None = None,
        logger: RunLogger | None = None,
    ) -> "ContentResolver":
        """Build a resolver with one shared HTTP client and an adapter per configured token."""
        log = logger or RunLogger.null()
        on_retry = retry_event_logger(log)
        http = build_async_client(timeout_seconds=config.http.timeout_seconds, transport=transport)

        justone = (
            JustOneXhsClient(secrets.justone_token, config=config.justone, client=http, on_retry=on_retry)
            if secrets.justone_token
            else None
        )
        tikhub = (
            TikHubXhsClient(secrets.tikhub_token, config=config.tikhub, client=http, on_retry=on_retry)
            if secrets.tikhub_token
            else None
        )
        x_api = (
            XApiClient(secrets.x_bearer_token, config=config.x_api, client=http, on_retry=on_retry)
            if secrets.x_bearer_token
            else None
        )

        resolver = cls(
            ProviderSettings.from_config(config),
            justone=justone,
            tikhub=tikhub,
            x_api=x_api,
            cover_generator=cover_generator,
            logger=log,
            min_interaction=config.search.min_interaction,
        )
        resolver._owned_http = http
        return resolver

    async def aclose(self) -> None:
        if self._owned_http is not None:
            await self._owned_http.aclose()
            self._owned_http = None

    async def __aenter__(self) -> "ContentResolver":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> None:
        await self.aclose()

    def _client_for(self, provider: str) -> Any:
        return {JUSTONE: self._justone, TIKHUB: self._tikhub, X_API: self._x_api}.get(provider)

    def provider_order(self, platform: Platform | str) -> list[str]:
        p = Platform.parse(platform)
        if p is Platform.TWITTER:
            order: Sequence[str] = (X_API,)
        elif p is Platform.XIAOHONGSHU:
            pref = self._settings.xhs_preference
            if pref == TIKHUB:
                order = (TIKHUB, JUSTONE)
            elif pref == JUSTONE:
                order = (JUSTONE, TIKHUB)
            else:
                order = _XHS_AUTO_ORDER
        else:
            return []
        return [name for name in order if self._client_for(name) is not None]

    def _require_providers(self, platform: Platform) -> list[str]:
        order = self.provider_order(platform)
        if order:
            return order
        if platform is Platform.TWITTER:
            raise ConfigError("X API Bearer Token not configured")
        raise ConfigError("No Xiaohongshu provider configured (set JustOneAPI or TikHub token)")

    async def _run_providers(
        self,
        platform: Platform,
        operation: str,
        call: Callable[[str], Awaitable[T]],
        *,
        url: str | None = None,
    ) -> tuple[T, str, tuple[str, ...]]:
        order = self._require_providers(platform)
        notes: list[str] = []
        last_error: Exception | None = None

        for provider in order:
            try:
                result = await call(provider)
            except (ConfigError, ClassificationError):
                raise
            except Exception as e:
                last_error = e
                notes.append(f"{provider} failed: {e}")
                self._log.warning(
                    "provider_attempt_failed",
                    url=url,
                    platform=platform.value,
                    operation=operation,
                    provider=provider,
                    error_type=type(e).__name__,
                    error_message=str(e),
                )
                continue

            self._log.info(
                "provider_succeeded",
                url=url,
                platform=platform.value,
                operation=operation,
                provider=provider,
                fallback_count=len(notes),
            )
            return result, provider, tuple(notes)

        assert last_error is not None
        raise AllProvidersExhaustedError(platform.value, last_error, attempted=tuple(order))

    async def _fetch_justone_detail(self, note_id: str, token: str | None) -> tuple[dict[str, Any], str | None]:
        assert self._justone is not None
        s = self._settings
        if s.legacy_detail_enabled:
            legacy_retry = RetryConfig(
                max_attempts=s.legacy_detail_attempts,
                delay_seconds=s.legacy_detail_delay_seconds,
            )
            try:
                return await self._justone.fetch_note_detail_legacy(note_id, token, retry=legacy_retry), None
            except ConfigError:
                raise
            except Exception as e:
                self._log.warning(
                    "legacy_detail_exhausted",
                    note_id=note_id,
                    attempts=legacy_retry.max_attempts,
                    error_type=type(e).__name__,
                    error_message=str(e),
                )
                note = f"legacy detail failed: {e}"
        else:
            note = None

        raw = await self._justone.fetch_note_detail(note_id, token, retry=NO_RETRY)
        return raw, note

    async def _resolve_xhs(self, ref: PlatformRef) -> NormalizedContent:
        note_id = ref.post_id
        token = ref.access_token
        self._require_providers(Platform.XIAOHONGSHU)

        if ref.is_short_link:
            resolved = await self._resolver.resolve(ref.original_url, token)
            note_id, token = resolved.post_id, resolved.access_token
            self._log.info("short_link_resolved", url=ref.original_url, note_id=note_id)

        assert note_id is not None

        async def _attempt(provider: str) -> NormalizedContent:
            note: str | None = None
            if provider == JUSTONE:
                raw, note = await self._fetch_justone_detail(note_id, token)
            else:
                raw = await self._client_for(provider).fetch_note_detail(note_id, token)
            content = normalize(raw, Platform.XIAOHONGSHU, provider=provider, post_id=note_id, access_token=token)
            return content.with_provider(provider, note=note)

        content, provider, notes = await self._run_providers(
            Platform.XIAOHONGSHU, "detail", _attempt, url=ref.original_url
        )
        # Earlier provider failures go first so notes read in attempt order.
        return replace(content, provider_used=provider, notes=notes + content.notes)

    async def _resolve_tweet(self, ref: PlatformRef) -> NormalizedContent:
        if not ref.post_id:
            raise ClassificationError("Twitter link has no status id")
        tweet_id = ref.post_id

        async def _attempt(provider: str) -> NormalizedContent:
            raw = await self._client_for(provider).fetch_tweet(tweet_id)
            return normalize(raw, Platform.TWITTER, provider=provider, post_id=tweet_id)

        content, provider, _ = await self._run_providers(Platform.TWITTER, "detail", _attempt, url=ref.original_url)
        content = await apply_generated_cover(content, self._cover_generator, logger=self._log)
        return content.with_provider(provider)

    async def resolve_content(self, ref: PlatformRef) -> NormalizedContent:
        if ref.platform is Platform.XIAOHONGSHU:
            return await self._resolve_xhs(ref)
        if ref.platform is Platform.TWITTER:
            return await self._resolve_tweet(ref)
        raise ClassificationError(f"Unknown platform: {ref.platform.value}")

    def _normalize_items(self, items: list[dict[str, Any]], platform: Platform, provider: str) -> list[NormalizedContent]:
        out: list[NormalizedContent] = []
        for raw in items:
            try:
                out.append(normalize(raw, platform, provider=provider))
            except ValueError as e:
                self._log.warning("search_item_skipped", platform=platform.value, provider=provider, reason=str(e))
        return out

    async def search(self, query: SearchQuery) -> SearchResultBatch:
        platform = query.platform
        if platform is Platform.UNKNOWN:
            raise ClassificationError("Unknown platform for search")

        async def _attempt(provider: str) -> list[NormalizedContent]:
            client = self._client_for(provider)
            if platform is Platform.TWITTER:
                items = await client.search_recent(query)
            else:
                items = await client.search_notes(query)
            return self._normalize_items(items, platform, provider)

        contents, provider, _ = await self._run_providers(platform, "search", _attempt)

        contents = dedupe_batch(contents)
        if self._min_interaction:
            contents = [c for c in contents if interaction_total(c) >= self._min_interaction]
        if query.limit is not None:
            contents = contents[: query.limit]

        self._log.info(
            "search_completed",
            platform=platform.value,
            keyword=query.keyword,
            provider=provider,
            count=len(contents),
        )
        return SearchResultBatch(query=query, items=tuple(contents), provider_used=provider)

    async def search_platforms(
        self,
        keyword: str,
        platforms: Sequence[Platform | str],
        *,
        sort_order: str = "general",
        time_window: str | None = None,
        limit: int | None = None,
        return_exceptions: bool = False,
    ) -> list[SearchResultBatch]:
        """
        Search independent platforms concurrently; batches come back in platform order.

        With return_exceptions=True a failing platform is logged and yields an empty batch.
        """
        queries = [
            SearchQuery(
                keyword=keyword,
                platform=Platform.parse(p),
                sort_order=sort_order,
                time_window=time_window,
                limit=limit,
            )
            for p in platforms
        ]

        if not return_exceptions:
            return list(await asyncio.gather(*(self.search(q) for q in queries)))

        results = await asyncio.gather(*(self.search(q) for q in queries), return_exceptions=True)
        batches: list[SearchResultBatch] = []
        for q, result in zip(queries, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                self._log.error(
                    "platform_search_failed",
                    platform=q.platform.value,
                    keyword=q.keyword,
                    error_type=type(result).__name__,
                    error_message=str(result),
                )
                batches.append(SearchResultBatch(query=q))
                continue
            batches.append(result)
        return batches

