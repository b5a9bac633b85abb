from __future__ import annotations

import sqlite3
import tempfile
import unittest
from pathlib import Path

from social_vault.errors import StorageError
from social_vault.models import AIAnalysis, Collection, Metrics, NormalizedContent, Platform, VaultRecord
from social_vault.storage import SQLiteVaultStore
from social_vault.storage_schema import SCHEMA_VERSION, initialize_sqlite


def _record(rid: str, **kw: object) -> VaultRecord:
    base: dict[str, object] = {
        "id": rid,
        "title": "t",
        "source_url": f"https://www.xiaohongshu.com/explore/{rid}",
        "platform": "Xiaohongshu",
    }
    base.update(kw)
    return VaultRecord(**base)  # type: ignore[arg-type]


class TestSQLiteVaultStore(unittest.TestCase):
    def test_round_trips_json_columns(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            db_path = Path(td) / "nested" / "vault.sqlite"

            with SQLiteVaultStore.open(db_path) as store:
                store.upsert_record(
                    _record(
                        "r1",
                        metrics=Metrics(likes=12000, bookmarks=3),
                        ai_analysis=AIAnalysis(summary="s", extracted_prompts=("p1",)),
                        tags=("AI工具",),
                        collections=("c1",),
                        is_trending=True,
                        created_at="2024-05-01T00:00:00+00:00",
                    )
                )

            with SQLiteVaultStore.open(db_path) as store:
                got = store.get_record("r1")

        assert got is not None
        self.assertEqual(got.metrics, Metrics(likes=12000, bookmarks=3))
        self.assertEqual(got.ai_analysis.extracted_prompts, ("p1",))
        self.assertEqual(got.tags, ("AI工具",))
        self.assertEqual(got.collections, ("c1",))
        self.assertTrue(got.is_trending)
        self.assertEqual(got.created_at, "2024-05-01T00:00:00+00:00")

    def test_created_at_defaults_and_ordering(self) -> None:
        with SQLiteVaultStore.open(":memory:") as store:
            store.upsert_record(_record("b", created_at="2024-01-02"))
            store.upsert_record(_record("a", created_at="2024-01-02"))
            store.upsert_record(_record("z", created_at="2024-01-01"))
            store.upsert_record(_record("new"))

            ids = [r.id for r in store.list_records()]
            self.assertEqual(ids, ["z", "a", "b", "new"])
            fresh = store.get_record("new")
            assert fresh is not None
            self.assertTrue(fresh.created_at)

    def test_trending_filter(self) -> None:
        with SQLiteVaultStore.open(":memory:") as store:
            store.upsert_record(_record("saved", is_trending=False))
            store.upsert_record(_record("snap", is_trending=True))

            self.assertEqual([r.id for r in store.list_records(trending=False)], ["saved"])
            self.assertEqual([r.id for r in store.list_records(trending=True)], ["snap"])
            vault_rows = store.conn.execute("SELECT id FROM vault_cards").fetchall()
            self.assertEqual([r[0] for r in vault_rows], ["saved"])

    def test_update_preserves_created_at_and_requires_row(self) -> None:
        with SQLiteVaultStore.open(":memory:") as store:
            store.upsert_record(_record("r1", created_at="2024-01-01"))
            store.update_record(_record("r1", title="new", source_url="", created_at="2099-01-01"))

            got = store.get_record("r1")
            assert got is not None
            self.assertEqual(got.title, "new")
            self.assertEqual(got.source_url, "#")
            self.assertEqual(got.created_at, "2024-01-01")

            with self.assertRaises(StorageError):
                store.update_record(_record("missing"))

    def test_deletes_and_collections(self) -> None:
        with SQLiteVaultStore.open(":memory:") as store:
            for rid in ("r1", "r2", "r3"):
                store.upsert_record(_record(rid))
            store.upsert_collection(Collection(id="c1", name="AI", created_at="2024-01-01"))
            store.upsert_collection(Collection(id="c2", name="ai", created_at="2024-01-02"))

            self.assertEqual(store.delete_records(["r1", "r1", " ", "nope"]), 1)
            self.assertEqual(store.delete_records([]), 0)
            self.assertEqual(store.delete_collections(["c2"]), 1)

            snap = store.snapshot()
            self.assertEqual(sorted(r.id for r in snap.records), ["r2", "r3"])
            self.assertEqual([c.name for c in snap.collections], ["AI"])

    def test_rejects_empty_ids(self) -> None:
        with SQLiteVaultStore.open(":memory:") as store:
            with self.assertRaises(ValueError):
                store.upsert_record(_record(" "))
            with self.assertRaises(ValueError):
                store.upsert_collection(Collection(id="", name="x"))

    def test_corrupt_json_columns_fall_back_to_defaults(self) -> None:
        with SQLiteVaultStore.open(":memory:") as store:
            store.upsert_record(_record("r1"))
            with store.conn:
                store.conn.execute(
                    "UPDATE knowledge_cards SET tags_json = 'not json', metrics_json = '[]' WHERE id = 'r1'"
                )
            got = store.get_record("r1")
            assert got is not None
            self.assertEqual(got.tags, ())
            self.assertEqual(got.metrics, Metrics())

    def test_save_trending_snapshot(self) -> None:
        hits = [
            NormalizedContent(
                platform=Platform.TWITTER,
                source_url="https://twitter.com/dev/status/1",
                author="dev",
                raw_text="z" * 200,
                images=("https://pbs.twimg.com/media/a.jpg",),
                tags=("AI", "prompt"),
                metrics=Metrics(likes=7),
                publish_time="2024-06-01",
            ),
            NormalizedContent(
                platform=Platform.XIAOHONGSHU,
                source_url="https://www.xiaohongshu.com/explore/n2",
                title="Prompt pack",
                cover_image_url="https://sns-img-bd.xhscdn.com/c",
            ),
        ]

        with SQLiteVaultStore.open(":memory:") as store:
            saved = store.save_trending_snapshot(hits, tags=("prompt",), snapshot_id="s1")
            stored = {r.source_url: r for r in store.list_records(trending=True)}

        self.assertEqual(len(saved), 2)
        self.assertEqual(len({r.id for r in saved}), 2)

        tweet = stored["https://twitter.com/dev/status/1"]
        self.assertEqual(tweet.title, "z" * 40)
        self.assertEqual(tweet.ai_analysis.summary, "z" * 160 + "...")
        self.assertEqual(tweet.tags, ("AI", "prompt", "snapshot:s1"))
        self.assertEqual(tweet.cover_image, "https://pbs.twimg.com/media/a.jpg")
        self.assertEqual(tweet.platform, "Twitter")
        self.assertEqual(tweet.date, "2024-06-01")
        self.assertEqual(tweet.metrics.likes, 7)

        note = stored["https://www.xiaohongshu.com/explore/n2"]
        self.assertEqual(note.title, "Prompt pack")
        self.assertEqual(note.ai_analysis.summary, "Prompt pack")
        self.assertEqual(note.cover_image, "https://sns-img-bd.xhscdn.com/c")
        self.assertEqual(note.content_type, "PromptShare")


class TestSchema(unittest.TestCase):
    def test_migrations_are_idempotent(self) -> None:
        conn = sqlite3.connect(":memory:")
        try:
            initialize_sqlite(conn)
            initialize_sqlite(conn)
            versions = [r[0] for r in conn.execute("SELECT version FROM schema_migrations ORDER BY version")]
            self.assertEqual(versions, list(range(1, SCHEMA_VERSION + 1)))
        finally:
            conn.close()


if __name__ == "__main__":
    unittest.main()
