from __future__ import annotations

from typing import Any, Awaitable, Callable, TypeVar

import httpx

from .http import build_async_client
from .retry import OnRetryFn, RetryConfig, SleepFn, call_with_retries
from .upstream_retry import is_retryable_upstream_exception

T = TypeVar("T")


class ProviderClient:
    """
    Shared plumbing for upstream adapters: HTTP client ownership and the retry loop.

    Subclasses own their URLs, auth convention, and envelope checks.
    """

    provider_name = "provider"

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        retry: RetryConfig,
        timeout_seconds: float = 8.0,
        on_retry: OnRetryFn | None = None,
        sleep_fn: SleepFn | None = None,
    ) -> None:
        self._retry = retry
        self._on_retry = on_retry
        self._sleep_fn = sleep_fn
        self._owns_client = client is None
        self._http = client or build_async_client(timeout_seconds=timeout_seconds)

    @property
    def retry(self) -> RetryConfig:
        return self._retry

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "ProviderClient":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> None:
        await self.aclose()

    async def _with_retries(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        operation: str,
        retry: RetryConfig | None = None,
    ) -> T:
        return await call_with_retries(
            fn,
            cfg=retry or self._retry,
            is_retryable=is_retryable_upstream_exception,
            operation=f"{self.provider_name}.{operation}",
            on_retry=self._on_retry,
            sleep_fn=self._sleep_fn,
        )


def first_message(payload: Any, *keys: str) -> str | None:
    if not isinstance(payload, dict):
        return None
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None
