from __future__ import annotations

import httpx

from .errors import UpstreamError


def _looks_like_timeout_or_connection(exc: BaseException) -> bool:
    name = type(exc).__name__.casefold()

    if "timeout" in name:
        return True
    if "connection" in name or "connect" in name:
        return True
    return False


def is_retryable_upstream_exception(exc: BaseException) -> tuple[bool, str | None]:
    """
    Upstream retry policy shared by every provider adapter:
    - failure envelopes and unparseable bodies (UpstreamError, MalformedResponseError)
    - httpx transport and timeout errors
    - builtin connection/timeout errors

    Configuration and classification errors are never retried.
    """
    if isinstance(exc, UpstreamError):
        code = exc.status_code
        return True, f"http_{code}" if code is not None else "upstream_envelope"

    if isinstance(exc, httpx.TimeoutException):
        return True, "timeout"

    if isinstance(exc, httpx.TransportError):
        return True, "network_error"

    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True, "network_error"

    if _looks_like_timeout_or_connection(exc):
        return True, "network_error"

    return False, None
