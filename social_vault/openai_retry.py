from __future__ import annotations

from typing import Any

import openai

_RETRYABLE_STATUS = (408, 409, 429)


def _extract_status_code(exc: BaseException) -> int | None:
    val: Any = getattr(exc, "status_code", None)
    if val is None:
        val = getattr(exc, "http_status", None)
    if val is None:
        return None
    try:
        return int(val)
    except (TypeError, ValueError):
        return None


def is_retryable_openai_exception(exc: BaseException) -> tuple[bool, str | None]:
    """
    OpenAI retry policy aligned with documented transient failures:
    - connection/timeout errors
    - HTTP 408, 409, 429
    - HTTP 5xx
    """
    if isinstance(exc, openai.APITimeoutError):
        return True, "timeout"

    if isinstance(exc, openai.APIConnectionError):
        return True, "connection_error"

    if isinstance(exc, openai.RateLimitError):
        return True, "rate_limited"

    code = _extract_status_code(exc)
    if isinstance(exc, openai.APIStatusError) or code is not None:
        if code in _RETRYABLE_STATUS or (isinstance(code, int) and code >= 500):
            return True, f"http_{code}"
        return False, None

    return False, None
