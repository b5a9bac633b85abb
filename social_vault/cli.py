from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Sequence

from .classifier import classify_or_raise
from .config import load_config, require_any_provider, resolve_runtime_secrets
from .config_schema import AppConfig
from .covers import CoverImageGenerator, FallbackCoverGenerator, OpenAICoverImageGenerator
from .dedupe import dedupe, dedupe_collections, with_relinked
from .errors import (
    AllProvidersExhaustedError,
    AnalyzerError,
    ClassificationError,
    ConfigError,
    StorageError,
    UpstreamError,
)
from .models import Platform, SearchQuery, SearchResultBatch
from .orchestrator import ContentResolver
from .run_log import RunLogger
from .storage import SQLiteVaultStore


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="social_vault")

    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch = subparsers.add_parser(
        "fetch",
        help="Resolve one Xiaohongshu or Twitter/X link (or pasted share text) into a record.",
    )
    fetch.add_argument("text", help="URL or share message containing a URL.")
    fetch.add_argument("--config", default=None, help="Path to YAML config file.")
    fetch.add_argument(
        "--analyze",
        action="store_true",
        help="Run the OpenAI content analyzer on the fetched record.",
    )
    fetch.add_argument(
        "--cover",
        choices=("none", "fallback", "openai"),
        default="fallback",
        help="Cover source for text-only tweets.",
    )
    fetch.add_argument(
        "--offline",
        action="store_true",
        help="Run without network calls using fixture payloads.",
    )
    fetch.add_argument("--log", default=None, help="Write a JSONL run log to this path.")
    fetch.set_defaults(_handler=_cmd_fetch)

    search = subparsers.add_parser("search", help="Search one or more platforms by keyword.")
    search.add_argument("keyword", help="Search keyword.")
    search.add_argument(
        "--platform",
        action="append",
        default=None,
        help="Platform to search (xiaohongshu, twitter). Repeat to search several concurrently.",
    )
    search.add_argument(
        "--sort",
        choices=("general", "popularity_descending", "time_descending"),
        default=None,
        help="Sort order; defaults to the configured search.default_sort.",
    )
    search.add_argument("--time", dest="time_window", default=None, help="Provider time window filter.")
    search.add_argument("--limit", type=int, default=None, help="Maximum results per platform.")
    search.add_argument("--config", default=None, help="Path to YAML config file.")
    search.add_argument(
        "--offline",
        action="store_true",
        help="Run without network calls using fixture payloads.",
    )
    search.add_argument(
        "--db",
        default=None,
        help="Save results as trending snapshot cards in this vault SQLite database, then merge duplicates.",
    )
    search.add_argument("--log", default=None, help="Write a JSONL run log to this path.")
    search.set_defaults(_handler=_cmd_search)

    dd = subparsers.add_parser("dedupe", help="Merge duplicate knowledge cards and collections.")
    dd.add_argument("--db", required=True, help="Path to the vault SQLite database.")
    dd.add_argument("--apply", action="store_true", help="Write changes; default is a dry run.")
    scope = dd.add_mutually_exclusive_group()
    scope.add_argument("--only-cards", action="store_true", help="Skip collection dedupe.")
    scope.add_argument("--only-collections", action="store_true", help="Skip card dedupe.")
    dd.add_argument("--log", default=None, help="Write a JSONL run log to this path.")
    dd.set_defaults(_handler=_cmd_dedupe)

    return parser


def _eprint(message: str) -> None:
    print(message, file=sys.stderr)


def _print_json(value: Any) -> None:
    print(json.dumps(value, indent=2, ensure_ascii=False, sort_keys=True))


def _open_logger(path: str | None, *, job: str) -> RunLogger:
    if not path:
        return RunLogger(None, job=job)
    return RunLogger.open(path, overwrite=True, job=job)


def _build_resolver(
    cfg: AppConfig,
    *,
    offline: bool,
    log: RunLogger,
    cover_generator: CoverImageGenerator | None = None,
) -> ContentResolver:
    if offline:
        from .offline import OFFLINE_SECRETS, build_offline_transport

        return ContentResolver.from_config(
            cfg,
            OFFLINE_SECRETS,
            transport=build_offline_transport(cfg),
            cover_generator=cover_generator,
            logger=log,
        )

    secrets = resolve_runtime_secrets(cfg)
    require_any_provider(cfg, secrets)
    return ContentResolver.from_config(cfg, secrets, cover_generator=cover_generator, logger=log)


def _cover_generator(cfg: AppConfig, choice: str, *, offline: bool) -> CoverImageGenerator | None:
    if choice == "none":
        return None
    if choice == "openai" and not offline:
        key = resolve_runtime_secrets(cfg).openai_api_key
        if not key:
            raise ConfigError(f"Missing OpenAI API key env var: {cfg.openai.api_key_env}")
        return OpenAICoverImageGenerator(key, openai_cfg=cfg.openai)
    return FallbackCoverGenerator()


def _analyzer(cfg: AppConfig, *, offline: bool) -> Any:
    if offline:
        from .offline import OfflineContentAnalyzer

        return OfflineContentAnalyzer()

    from .analyzer import OpenAIContentAnalyzer

    key = resolve_runtime_secrets(cfg).openai_api_key
    if not key:
        raise ConfigError(f"Missing OpenAI API key env var: {cfg.openai.api_key_env}")
    return OpenAIContentAnalyzer(key, openai_cfg=cfg.openai)


async def _fetch(args: argparse.Namespace, cfg: AppConfig, log: RunLogger) -> dict[str, Any]:
    ref = classify_or_raise(args.text)
    log.info("input_classified", url=ref.original_url, platform=ref.platform.value, post_id=ref.post_id)

    offline = bool(args.offline)
    analyzer = _analyzer(cfg, offline=offline) if args.analyze else None
    covers = _cover_generator(cfg, args.cover, offline=offline)

    async with _build_resolver(cfg, offline=offline, log=log, cover_generator=covers) as resolver:
        content = await resolver.resolve_content(ref)

    out = content.to_dict()
    if analyzer is not None:
        from .analyzer import resolve_content_type

        analysis = await analyzer.analyze(content)
        out["aiAnalysis"] = analysis.as_dict()
        out["contentType"] = resolve_content_type(analysis.extracted_prompts)
        log.info("content_analyzed", url=content.source_url, content_type=out["contentType"])
    return out


def _cmd_fetch(args: argparse.Namespace) -> int:
    with _open_logger(args.log, job="fetch") as log:
        try:
            cfg = load_config(args.config)
            out = asyncio.run(_fetch(args, cfg, log))
        except Exception as e:
            log.exception("fetch_command_failed", exc=e)
            raise

    _print_json(out)
    return 0


async def _search(args: argparse.Namespace, cfg: AppConfig, log: RunLogger) -> list[SearchResultBatch]:
    platforms = [Platform.parse(p) for p in (args.platform or ["xiaohongshu"])]
    unknown = [raw for raw, p in zip(args.platform or [], platforms) if p is Platform.UNKNOWN]
    if unknown:
        raise ClassificationError(f"Unknown platform: {', '.join(unknown)}")

    limit = args.limit if args.limit is not None else cfg.search.default_limit
    sort_order = args.sort or cfg.search.default_sort

    async with _build_resolver(cfg, offline=bool(args.offline), log=log) as resolver:
        if len(platforms) == 1:
            batch = await resolver.search(
                SearchQuery(
                    keyword=args.keyword,
                    platform=platforms[0],
                    sort_order=sort_order,
                    time_window=args.time_window,
                    limit=limit,
                )
            )
            return [batch]
        return await resolver.search_platforms(
            args.keyword,
            platforms,
            sort_order=sort_order,
            time_window=args.time_window,
            limit=limit,
            return_exceptions=True,
        )


def _save_search_snapshot(
    db_path: str,
    keyword: str,
    batches: Sequence[SearchResultBatch],
    log: RunLogger,
) -> None:
    with SQLiteVaultStore.open(db_path) as store:
        saved = store.save_trending_snapshot(
            [c for b in batches for c in b.items],
            tags=(keyword,),
        )
        log.info("search_snapshot_saved", db=db_path, keyword=keyword, saved=len(saved))
        # Repeated searches re-save the same posts; fold them into the existing cards.
        report = dedupe(store.list_records(), apply_changes=True, store=store, logger=log)

    _eprint(f"snapshot_saved={len(saved)} duplicates_merged={len(report.deletions)}")


def _cmd_search(args: argparse.Namespace) -> int:
    if args.limit is not None and args.limit < 1:
        raise ConfigError("--limit must be >= 1")

    with _open_logger(args.log, job="search") as log:
        try:
            cfg = load_config(args.config)
            batches = asyncio.run(_search(args, cfg, log))
            if args.db:
                _save_search_snapshot(args.db, args.keyword, batches, log)
        except Exception as e:
            log.exception("search_command_failed", exc=e)
            raise

    _print_json(
        [
            {
                "platform": b.query.platform.value,
                "providerUsed": b.provider_used,
                "count": len(b),
                "items": [c.to_dict() for c in b.items],
            }
            for b in batches
        ]
    )
    return 0


def _cmd_dedupe(args: argparse.Namespace) -> int:
    apply_changes = bool(args.apply)

    with _open_logger(args.log, job="dedupe") as log, SQLiteVaultStore.open(args.db) as store:
        snap = store.snapshot()
        log.info(
            "dedupe_started",
            mode="apply" if apply_changes else "dry_run",
            records=len(snap.records),
            collections=len(snap.collections),
        )
        print(f"mode={'apply' if apply_changes else 'dry_run'}")
        print(f"records={len(snap.records)}")
        print(f"collections={len(snap.collections)}")

        records = list(snap.records)
        if not args.only_cards:
            c = dedupe_collections(
                records,
                snap.collections,
                apply_changes=apply_changes,
                store=store,
                logger=log,
            )
            # Card merging must see the relinked collection ids.
            records = with_relinked(records, c)
            print(f"collection_groups={c.groups_found}")
            print(f"collection_duplicates={len(c.deletions)}")
            print(f"cards_relinked={len(c.relinked)}")

        if not args.only_collections:
            k = dedupe(records, apply_changes=apply_changes, store=store, logger=log)
            print(f"card_groups={k.groups_found}")
            print(f"canonical_updates={len(k.updates)}")
            print(f"duplicates_to_delete={len(k.deletions)}")

    if not apply_changes:
        print("dry_run=true")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        handler = getattr(args, "_handler")
        return int(handler(args))
    except ConfigError as e:
        _eprint(str(e))
        return 2
    except (UpstreamError, AllProvidersExhaustedError, ClassificationError, AnalyzerError, StorageError) as e:
        _eprint(str(e))
        return 3
    except KeyboardInterrupt:
        _eprint("Interrupted")
        return 130
    except Exception as e:
        _eprint(f"Unexpected error: {e}")
        return 1
