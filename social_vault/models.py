from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping, Sequence
from urllib.parse import urlsplit, urlunsplit

from .metrics import parse_count


class Platform(str, Enum):
    XIAOHONGSHU = "Xiaohongshu"
    TWITTER = "Twitter"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: Any) -> "Platform":
        """Accept enum members, display names, and the lower-case aliases used in requests."""
        if isinstance(value, Platform):
            return value
        key = str(value or "").strip().casefold()
        if key in ("xiaohongshu", "xhs", "rednote"):
            return cls.XIAOHONGSHU
        if key in ("twitter", "x"):
            return cls.TWITTER
        return cls.UNKNOWN


@dataclass(frozen=True)
class PlatformRef:
    """Outcome of classifying a pasted URL or share message."""

    platform: Platform
    original_url: str
    post_id: str | None = None
    access_token: str | None = None

    @property
    def is_short_link(self) -> bool:
        return self.platform is not Platform.UNKNOWN and not self.post_id


@dataclass(frozen=True)
class Metrics:
    likes: int = 0
    bookmarks: int = 0
    comments: int = 0
    shares: int = 0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "Metrics":
        d = data or {}
        return cls(
            likes=parse_count(d.get("likes")),
            bookmarks=parse_count(d.get("bookmarks")),
            comments=parse_count(d.get("comments")),
            shares=parse_count(d.get("shares")),
        )

    def as_dict(self) -> dict[str, int]:
        return {
            "likes": self.likes,
            "bookmarks": self.bookmarks,
            "comments": self.comments,
            "shares": self.shares,
        }

    def maximum(self, other: "Metrics") -> "Metrics":
        return Metrics(
            likes=max(self.likes, other.likes),
            bookmarks=max(self.bookmarks, other.bookmarks),
            comments=max(self.comments, other.comments),
            shares=max(self.shares, other.shares),
        )


def strip_query(url: str) -> str:
    value = (url or "").strip()
    if not value:
        return ""
    try:
        parts = urlsplit(value)
    except ValueError:
        return value.split("?")[0].strip()
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


@dataclass(frozen=True)
class NormalizedContent:
    """The canonical internal representation of one post, regardless of source provider."""

    platform: Platform
    source_url: str
    post_id: str = ""
    title: str = ""
    author: str = ""
    raw_text: str = ""
    cover_image_url: str = ""
    images: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    metrics: Metrics = field(default_factory=Metrics)
    publish_time: str = ""
    provider_used: str = ""
    access_token: str = ""
    author_avatar: str = ""
    notes: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not (self.source_url or "").strip():
            raise ValueError("NormalizedContent.source_url must be non-empty")

    @property
    def identity_url(self) -> str:
        return strip_query(self.source_url)

    def with_provider(self, provider: str, *, note: str | None = None) -> "NormalizedContent":
        notes = self.notes + ((note,) if note else ())
        return replace(self, provider_used=provider, notes=notes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform.value,
            "postId": self.post_id,
            "title": self.title,
            "author": self.author,
            "authorAvatar": self.author_avatar,
            "rawContent": self.raw_text,
            "coverImage": self.cover_image_url,
            "images": list(self.images),
            "tags": list(self.tags),
            "metrics": self.metrics.as_dict(),
            "sourceUrl": self.source_url,
            "publishTime": self.publish_time,
            "providerUsed": self.provider_used,
            "xsecToken": self.access_token,
            "notes": list(self.notes),
        }


@dataclass(frozen=True)
class SearchQuery:
    keyword: str
    platform: Platform = Platform.XIAOHONGSHU
    sort_order: str = "general"
    time_window: str | None = None
    limit: int | None = None
    page: int = 1

    def __post_init__(self) -> None:
        if not (self.keyword or "").strip():
            raise ValueError("keyword must be non-empty")
        if self.limit is not None and self.limit < 1:
            raise ValueError("limit must be >= 1")
        if self.page < 1:
            raise ValueError("page must be >= 1")


@dataclass(frozen=True)
class SearchResultBatch:
    query: SearchQuery
    items: tuple[NormalizedContent, ...] = ()
    provider_used: str = ""

    def __len__(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class AIAnalysis:
    summary: str = ""
    usage_scenarios: tuple[str, ...] = ()
    core_knowledge: tuple[str, ...] = ()
    extracted_prompts: tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "AIAnalysis":
        d = data or {}
        return cls(
            summary=str(d.get("summary") or ""),
            usage_scenarios=_str_tuple(d.get("usageScenarios", d.get("usage_scenarios"))),
            core_knowledge=_str_tuple(d.get("coreKnowledge", d.get("core_knowledge"))),
            extracted_prompts=_str_tuple(d.get("extractedPrompts", d.get("extracted_prompts"))),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "usageScenarios": list(self.usage_scenarios),
            "coreKnowledge": list(self.core_knowledge),
            "extractedPrompts": list(self.extracted_prompts),
        }


def _str_tuple(value: Any) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(str(v) for v in value if v is not None and str(v) != "")


@dataclass(frozen=True)
class VaultRecord:
    """
    Persisted knowledge-card shape used by the dedup engine.

    is_trending marks a transient search snapshot; False means the record lives in the
    permanent vault.
    """

    id: str
    title: str = ""
    source_url: str = ""
    platform: str = ""
    author: str = ""
    raw_content: str = ""
    cover_image: str = ""
    metrics: Metrics = field(default_factory=Metrics)
    ai_analysis: AIAnalysis = field(default_factory=AIAnalysis)
    tags: tuple[str, ...] = ()
    user_notes: str = ""
    collections: tuple[str, ...] = ()
    is_trending: bool = False
    created_at: str = ""
    date: str = ""
    content_type: str = ""

    @classmethod
    def from_content(
        cls,
        content: NormalizedContent,
        *,
        record_id: str,
        created_at: str = "",
        extra_tags: Sequence[str] = (),
        is_trending: bool = True,
    ) -> "VaultRecord":
        """
        Snapshot card for a search hit.

        The summary is the first 160 characters of the post text. The content type
        stays PromptShare until an analysis pass reclassifies the card.
        """
        text = content.raw_text or content.title
        summary = text if len(text) <= 160 else text[:160] + "..."
        tags = list(dict.fromkeys([*content.tags, *(t for t in extra_tags if t)]))
        title = content.title or (content.raw_text[:40] if content.raw_text else "")
        return cls(
            id=record_id,
            title=title,
            source_url=content.source_url,
            platform=content.platform.value,
            author=content.author,
            raw_content=content.raw_text,
            cover_image=content.cover_image_url or (content.images[0] if content.images else ""),
            metrics=content.metrics,
            ai_analysis=AIAnalysis(summary=summary),
            tags=tuple(tags),
            is_trending=is_trending,
            created_at=created_at,
            date=content.publish_time,
            content_type="PromptShare",
        )


@dataclass(frozen=True)
class Collection:
    id: str
    name: str
    cover_image: str = ""
    created_at: str = ""
