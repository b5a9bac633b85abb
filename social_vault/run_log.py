from __future__ import annotations

import json
import sys
import traceback
import uuid
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Mapping, TextIO

_SECRET_KEY_PARTS = ("token", "api_key", "apikey", "authorization", "secret", "password")
_REDACTED = "***"

_MESSAGE_LIMIT = 2000
_TRACEBACK_LIMIT = 12000


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _truncate(text: str, *, limit: int) -> str:
    s = str(text or "")
    if limit <= 0:
        return ""
    if len(s) <= limit:
        return s
    return s[: max(0, limit - 1)] + "…"


def _is_secret_key(key: str) -> bool:
    k = key.lower()
    if k.endswith("_env"):
        # Names of environment variables are safe to log; their values are not.
        return False
    return any(part in k for part in _SECRET_KEY_PARTS)


def redact(value: Any) -> Any:
    """Mask credential-looking fields anywhere inside nested log data."""
    if isinstance(value, Mapping):
        out: dict[str, Any] = {}
        for k, v in value.items():
            key = str(k)
            if _is_secret_key(key) and v not in (None, ""):
                out[key] = _REDACTED
            else:
                out[key] = redact(v)
        return out
    if isinstance(value, (list, tuple)):
        return [redact(v) for v in value]
    return value


def error_payload(exc: BaseException, *, with_traceback: bool = True) -> dict[str, Any]:
    err: dict[str, Any] = {
        "type": type(exc).__name__,
        "message": _truncate(str(exc), limit=_MESSAGE_LIMIT),
    }
    provider = getattr(exc, "provider", None)
    if isinstance(provider, str) and provider:
        err["provider"] = provider
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        err["status_code"] = status
    if with_traceback:
        err["traceback"] = _truncate(
            "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            limit=_TRACEBACK_LIMIT,
        )
    return err


class RunLogger:
    """
    JSONL event log for fetch, search, and dedupe commands.

    One JSON object per line. Fields whose names look like credentials are masked
    before they are written. RunLogger.null() swallows every event; RunLogger.stream()
    writes to a caller-owned text stream and never closes it.
    """

    def __init__(
        self,
        path: str | Path | None,
        *,
        overwrite: bool = True,
        job: str | None = None,
        session_id: str | None = None,
        stream: TextIO | None = None,
    ) -> None:
        self._path = Path(path) if path is not None else None
        self._mode = "w" if overwrite else "a"
        self._job = (job or "").strip() or None
        self._session_id = (session_id or "").strip() or uuid.uuid4().hex
        self._fp: TextIO | None = stream
        self._owns_fp = stream is None
        self._lock = Lock()

    @classmethod
    def open(
        cls,
        path: str | Path,
        *,
        overwrite: bool = True,
        job: str | None = None,
        session_id: str | None = None,
    ) -> "RunLogger":
        logger = cls(path, overwrite=overwrite, job=job, session_id=session_id)
        logger._ensure_open()
        return logger

    @classmethod
    def null(cls) -> "RunLogger":
        return cls(None)

    @classmethod
    def stream(cls, fp: TextIO | None = None, *, job: str | None = None) -> "RunLogger":
        return cls(None, job=job, stream=fp or sys.stderr)

    @property
    def enabled(self) -> bool:
        return self._path is not None or self._fp is not None

    @property
    def session_id(self) -> str:
        return self._session_id

    def close(self) -> None:
        with self._lock:
            if self._fp is None or not self._owns_fp:
                return
            try:
                self._fp.flush()
            finally:
                self._fp.close()
            self._fp = None
            # Reopening after close appends to what this session already wrote.
            self._mode = "a"

    def __enter__(self) -> "RunLogger":
        self._ensure_open()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def set_job(self, job: str) -> None:
        name = (job or "").strip()
        if name:
            self._job = name

    def info(self, event: str, *, url: str | None = None, **data: Any) -> None:
        self.log("INFO", event, url=url, **data)

    def warning(self, event: str, *, url: str | None = None, **data: Any) -> None:
        self.log("WARN", event, url=url, **data)

    def error(self, event: str, *, url: str | None = None, **data: Any) -> None:
        self.log("ERROR", event, url=url, **data)

    def exception(self, event: str, *, exc: BaseException, url: str | None = None, **data: Any) -> None:
        self.log("ERROR", event, url=url, error=error_payload(exc), **data)

    def log(self, level: str, event: str, *, url: str | None = None, **data: Any) -> None:
        if not self.enabled:
            return

        record: dict[str, Any] = {
            "ts": _utc_now_iso(),
            "level": (level or "").strip().upper() or "INFO",
            "event": (event or "").strip() or "event",
            "session_id": self._session_id,
        }
        if self._job:
            record["job"] = self._job

        u = (url or "").strip()
        if u:
            record["url"] = u
        if data:
            record["data"] = redact(data)

        self._write(record)

    def _ensure_open(self) -> None:
        if self._fp is not None or self._path is None:
            return
        with self._lock:
            if self._fp is not None:
                return
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fp = self._path.open(self._mode, encoding="utf-8", newline="\n")

    def _write(self, record: dict[str, Any]) -> None:
        self._ensure_open()
        line = json.dumps(record, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str)
        with self._lock:
            if self._fp is None:
                return
            self._fp.write(line + "\n")
            self._fp.flush()
