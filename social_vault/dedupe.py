from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Protocol, Sequence
from urllib.parse import urlsplit, urlunsplit

from .covers import is_fallback_cover_url, normalize_legacy_fallback_cover
from .errors import ConfigError
from .models import AIAnalysis, Collection, NormalizedContent, VaultRecord
from .run_log import RunLogger

_META_RAW_PREFIX = 120


class VaultStore(Protocol):
    def update_record(self, record: VaultRecord) -> None: ...

    def delete_records(self, ids: Sequence[str]) -> int: ...

    def delete_collections(self, ids: Sequence[str]) -> int: ...


def canonicalize_url(url: str) -> str:
    """Identity form of a source URL: no query, no fragment, no www., no trailing slash."""
    value = (url or "").strip()
    if not value or value == "#":
        return ""

    try:
        parts = urlsplit(value)
    except ValueError:
        return value.split("?")[0].split("#")[0].strip().rstrip("/")

    if not parts.scheme or not parts.netloc:
        return value.split("?")[0].split("#")[0].strip().rstrip("/")

    scheme = parts.scheme.lower()
    netloc = parts.netloc.lower()
    if netloc.startswith("www."):
        netloc = netloc[4:]

    path = (parts.path or "").rstrip("/")
    return urlunsplit((scheme, netloc, path, "", ""))


def _norm_text(value: str | None) -> str:
    return (value or "").strip().lower()


def group_key(record: VaultRecord) -> str:
    url = canonicalize_url(record.source_url)
    if url:
        return f"url:{url}"
    return "meta:{}|{}|{}|{}".format(
        _norm_text(record.platform),
        _norm_text(record.title),
        _norm_text(record.author),
        _norm_text(record.raw_content)[:_META_RAW_PREFIX],
    )


def score_record(record: VaultRecord) -> float:
    """
    Information-richness score; the highest-scoring member of a group is kept.

    Anything already saved to the vault outranks a trending snapshot.
    """
    ai = record.ai_analysis
    m = record.metrics
    list_len = len(ai.usage_scenarios) + len(ai.core_knowledge) + len(ai.extracted_prompts)
    return (
        (0 if record.is_trending else 200)
        + len(record.user_notes) * 0.2
        + len(ai.summary) * 0.2
        + list_len * 20
        + len(record.raw_content) * 0.02
        + len(record.tags) * 8
        + len(record.collections) * 20
        + (m.likes + m.bookmarks + m.comments) * 0.01
        + (30 if record.cover_image else 0)
    )


def _union(*seqs: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(v for seq in seqs for v in seq if v))


def _merge_analysis(primary: AIAnalysis, incoming: AIAnalysis) -> AIAnalysis:
    return AIAnalysis(
        summary=incoming.summary if len(incoming.summary) > len(primary.summary) else primary.summary,
        usage_scenarios=_union(primary.usage_scenarios, incoming.usage_scenarios),
        core_knowledge=_union(primary.core_knowledge, incoming.core_knowledge),
        extracted_prompts=_union(primary.extracted_prompts, incoming.extracted_prompts),
    )


def _pick_cover(current: str, incoming: str) -> str:
    """A real cover beats generated fallback artwork; legacy fallback paths are rewritten."""
    for url in (current, incoming):
        if url and not is_fallback_cover_url(url):
            return url
    return normalize_legacy_fallback_cover(current or incoming)


def _longer(current: str, incoming: str) -> str:
    if not current or len(incoming or "") > len(current):
        return incoming or ""
    return current


@dataclass(frozen=True)
class MergeOutcome:
    canonical: VaultRecord
    merged: VaultRecord
    duplicate_ids: tuple[str, ...]

    @property
    def changed(self) -> bool:
        return self.merged != self.canonical


def merge_group(records: Sequence[VaultRecord]) -> MergeOutcome:
    if not records:
        raise ValueError("merge_group requires at least one record")

    # Oldest first, then a stable sort by score: equal scores keep the oldest record.
    by_age = sorted(records, key=lambda r: r.created_at or "")
    ranked = sorted(by_age, key=score_record, reverse=True)
    canonical, duplicates = ranked[0], ranked[1:]

    merged = canonical
    for dup in duplicates:
        source_url = merged.source_url
        if not source_url or source_url == "#":
            source_url = dup.source_url or source_url
        merged = replace(
            merged,
            collections=_union(merged.collections, dup.collections),
            tags=_union(merged.tags, dup.tags),
            metrics=merged.metrics.maximum(dup.metrics),
            ai_analysis=_merge_analysis(merged.ai_analysis, dup.ai_analysis),
            cover_image=_pick_cover(merged.cover_image, dup.cover_image),
            source_url=source_url,
            raw_content=_longer(merged.raw_content, dup.raw_content),
            user_notes=_longer(merged.user_notes, dup.user_notes),
            is_trending=merged.is_trending and dup.is_trending,
        )

    return MergeOutcome(
        canonical=canonical,
        merged=merged,
        duplicate_ids=tuple(d.id for d in duplicates),
    )


@dataclass(frozen=True)
class DedupeReport:
    groups_found: int = 0
    updates: tuple[VaultRecord, ...] = ()
    deletions: tuple[str, ...] = ()
    applied: bool = False

    @property
    def is_empty(self) -> bool:
        return self.groups_found == 0 and not self.updates and not self.deletions


def _group(records: Iterable[VaultRecord]) -> dict[str, list[VaultRecord]]:
    groups: dict[str, list[VaultRecord]] = {}
    for record in records:
        groups.setdefault(group_key(record), []).append(record)
    return groups


def plan_dedupe(records: Sequence[VaultRecord], *, logger: RunLogger | None = None) -> DedupeReport:
    """Compute the merge plan from one snapshot. Pure apart from logging."""
    log = logger or RunLogger.null()
    updates: list[VaultRecord] = []
    deletions: list[str] = []
    groups_found = 0

    for key, group in _group(records).items():
        if len(group) < 2:
            continue
        groups_found += 1
        outcome = merge_group(group)
        if outcome.changed:
            updates.append(outcome.merged)
        deletions.extend(outcome.duplicate_ids)
        log.info(
            "dedupe_group_merged",
            key=key,
            canonical_id=outcome.canonical.id,
            duplicate_ids=list(outcome.duplicate_ids),
            changed=outcome.changed,
        )

    return DedupeReport(groups_found=groups_found, updates=tuple(updates), deletions=tuple(deletions))


def dedupe(
    records: Sequence[VaultRecord],
    *,
    apply_changes: bool = False,
    store: VaultStore | None = None,
    logger: RunLogger | None = None,
) -> DedupeReport:
    """
    Plan, and in apply mode execute, the card merge.

    Canonical updates are written before any duplicate is deleted.
    """
    if apply_changes and store is None:
        raise ConfigError("Apply mode requires a vault store")

    log = logger or RunLogger.null()
    report = plan_dedupe(records, logger=log)
    if not apply_changes:
        return report

    assert store is not None
    for record in report.updates:
        store.update_record(record)
    deleted = store.delete_records(report.deletions) if report.deletions else 0

    log.info(
        "dedupe_applied",
        groups_found=report.groups_found,
        updated=len(report.updates),
        deleted=deleted,
    )
    return replace(report, applied=True)


@dataclass(frozen=True)
class CollectionDedupeReport:
    groups_found: int = 0
    alias_to_canonical: dict[str, str] | None = None
    relinked: tuple[VaultRecord, ...] = ()
    deletions: tuple[str, ...] = ()
    applied: bool = False

    @property
    def aliases(self) -> dict[str, str]:
        return dict(self.alias_to_canonical or {})


def plan_collection_dedupe(
    records: Sequence[VaultRecord],
    collections: Sequence[Collection],
) -> CollectionDedupeReport:
    ref_count: dict[str, int] = {}
    for record in records:
        for cid in record.collections:
            ref_count[cid] = ref_count.get(cid, 0) + 1

    groups: dict[str, list[Collection]] = {}
    for col in collections:
        groups.setdefault(_norm_text(col.name), []).append(col)

    alias: dict[str, str] = {}
    deletions: list[str] = []
    groups_found = 0
    for group in groups.values():
        if len(group) < 2:
            continue
        groups_found += 1
        ordered = sorted(group, key=lambda c: (-ref_count.get(c.id, 0), c.created_at or ""))
        canonical = ordered[0]
        for dup in ordered[1:]:
            alias[dup.id] = canonical.id
            deletions.append(dup.id)

    relinked: list[VaultRecord] = []
    for record in records:
        rewritten = tuple(dict.fromkeys(alias.get(cid, cid) for cid in record.collections))
        if rewritten != record.collections:
            relinked.append(replace(record, collections=rewritten))

    return CollectionDedupeReport(
        groups_found=groups_found,
        alias_to_canonical=alias,
        relinked=tuple(relinked),
        deletions=tuple(deletions),
    )


def dedupe_collections(
    records: Sequence[VaultRecord],
    collections: Sequence[Collection],
    *,
    apply_changes: bool = False,
    store: VaultStore | None = None,
    logger: RunLogger | None = None,
) -> CollectionDedupeReport:
    if apply_changes and store is None:
        raise ConfigError("Apply mode requires a vault store")

    log = logger or RunLogger.null()
    report = plan_collection_dedupe(records, collections)
    if not apply_changes:
        return report

    assert store is not None
    for record in report.relinked:
        store.update_record(record)
    deleted = store.delete_collections(report.deletions) if report.deletions else 0

    log.info(
        "collection_dedupe_applied",
        groups_found=report.groups_found,
        relinked=len(report.relinked),
        deleted=deleted,
    )
    return replace(report, applied=True)


def with_relinked(records: Sequence[VaultRecord], report: CollectionDedupeReport) -> list[VaultRecord]:
    """Apply a collection plan's relinks to an in-memory snapshot."""
    by_id = {r.id: r for r in report.relinked}
    return [by_id.get(r.id, r) for r in records]


def dedupe_batch(contents: Iterable[NormalizedContent]) -> list[NormalizedContent]:
    """Collapse a search batch by identity URL; the last item seen for a key wins its slot."""
    slots: dict[str, NormalizedContent] = {}
    for content in contents:
        slots[canonicalize_url(content.identity_url) or content.source_url] = content
    return list(slots.values())
