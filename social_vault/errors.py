from __future__ import annotations


class ConfigError(RuntimeError):
    """Raised when configuration or a required credential is missing or invalid."""


class ClassificationError(RuntimeError):
    """Raised when input does not match any supported platform or URL shape."""


class UpstreamError(RuntimeError):
    """Raised when a named provider answers with a failure envelope or transport error."""

    def __init__(self, provider: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.message = message
        self.status_code = status_code


class MalformedResponseError(UpstreamError):
    """Raised when a response body is not JSON or lacks the minimally required fields."""


class AllProvidersExhaustedError(RuntimeError):
    """
    Raised when every configured provider for a platform failed.

    str() is the deepest upstream message so callers can surface the real cause.
    """

    def __init__(self, platform: str, last_error: BaseException, *, attempted: tuple[str, ...] = ()) -> None:
        super().__init__(str(last_error) or f"All providers failed for {platform}")
        self.platform = platform
        self.last_error = last_error
        self.attempted = attempted


class AnalyzerError(RuntimeError):
    """Raised when an OpenAI model call or structured parse fails."""


class StorageError(RuntimeError):
    """Raised when reading or writing vault state in SQLite fails."""
