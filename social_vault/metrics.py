from __future__ import annotations

import math
import re
from typing import Any, Mapping, Sequence

_UNIT_MULTIPLIERS: dict[str, int] = {
    "w": 10_000,
    "万": 10_000,
    "k": 1_000,
    "千": 1_000,
    "亿": 100_000_000,
}

_SUFFIXED_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*(w|万|k|千|亿)$")


def _round_half_up(x: float) -> int:
    # Halves round up, never to even.
    return int(math.floor(x + 0.5))


def parse_count(value: Any) -> int:
    """
    Parse an engagement count that may be a number or an abbreviated string.

    "1.2w" -> 12000, "3千" -> 3000, "1,234" -> 1234. Never raises; unusable input is 0.
    """
    if value is None or isinstance(value, bool):
        return 0

    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return 0
        return max(0, _round_half_up(value))

    if not isinstance(value, str):
        return 0

    s = value.strip().replace(",", "").replace("+", "").lower()
    if not s:
        return 0

    m = _SUFFIXED_RE.match(s)
    if m:
        return max(0, _round_half_up(float(m.group(1)) * _UNIT_MULTIPLIERS[m.group(2)]))

    try:
        n = float(s)
    except ValueError:
        return 0
    if not math.isfinite(n):
        return 0
    return max(0, _round_half_up(n))


def _lookup(record: Mapping[str, Any], path: str) -> Any:
    current: Any = record
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


def pick_first_metric(record: Mapping[str, Any] | None, candidates: Sequence[str]) -> int:
    """
    Return the parsed value of the first candidate field that is present and non-null.

    Candidates may be dotted paths into nested mappings ("interactInfo.likedCount").
    """
    if not isinstance(record, Mapping):
        return 0
    for name in candidates:
        value = _lookup(record, name)
        if value is not None:
            return parse_count(value)
    return 0


def interaction_total(content: Any) -> int:
    m = content.metrics
    total = m.likes + m.bookmarks + m.comments
    if getattr(content.platform, "value", content.platform) == "Twitter":
        total += m.shares
    return total
