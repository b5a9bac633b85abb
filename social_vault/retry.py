from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """
    Fixed-delay retry policy.

    - max_attempts counts the initial attempt (max_attempts=3 => 1 try + 2 retries).
    - delay_seconds is slept between every pair of attempts; it does not grow.
    """

    max_attempts: int = 3
    delay_seconds: float = 0.5

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")


NO_RETRY = RetryConfig(max_attempts=1, delay_seconds=0.0)


@dataclass(frozen=True)
class RetryEvent:
    operation: str
    failure_attempt: int
    next_attempt: int
    max_attempts: int

    delay_seconds: float
    reason: str | None

    error_type: str
    error_message: str


IsRetryableFn = Callable[[BaseException], tuple[bool, str | None]]
OnRetryFn = Callable[[RetryEvent], None]
SleepFn = Callable[[float], Awaitable[None]]


async def call_with_retries(
    fn: Callable[[], Awaitable[T]],
    *,
    cfg: RetryConfig,
    is_retryable: IsRetryableFn,
    operation: str,
    on_retry: OnRetryFn | None = None,
    sleep_fn: SleepFn | None = None,
) -> T:
    """
    Await fn() with retries on retryable failures.

    Retry logic:
    - If is_retryable(exc) => (True, reason), retry until max_attempts.
    - The delay between attempts is cfg.delay_seconds every time.
    - asyncio.CancelledError is not an Exception and always propagates immediately.
    """
    op = (operation or "").strip() or "operation"
    sleeper = sleep_fn or asyncio.sleep

    for attempt in range(1, int(cfg.max_attempts) + 1):
        try:
            return await fn()
        except Exception as exc:
            retryable, reason = is_retryable(exc)

            if not retryable or attempt >= int(cfg.max_attempts):
                raise

            delay = max(0.0, float(cfg.delay_seconds))

            if on_retry is not None:
                msg = (str(exc) or "").strip()
                on_retry(
                    RetryEvent(
                        operation=op,
                        failure_attempt=int(attempt),
                        next_attempt=int(attempt) + 1,
                        max_attempts=int(cfg.max_attempts),
                        delay_seconds=delay,
                        reason=reason,
                        error_type=type(exc).__name__,
                        error_message=msg,
                    )
                )

            if delay > 0:
                await sleeper(delay)

    # Unreachable, but keeps typing happy.
    raise RuntimeError(f"Retry loop exited unexpectedly for operation={op}")
