from __future__ import annotations

import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path

from social_vault.models import Collection, VaultRecord
from social_vault.offline import OFFLINE_NOTE_ID, OFFLINE_TWEET_ID
from social_vault.storage import SQLiteVaultStore

_REPO_ROOT = Path(__file__).resolve().parents[1]


def _run_cli(*args: str) -> subprocess.CompletedProcess[str]:
    env = dict(os.environ)
    for name in ("JUSTONEAPI_TOKEN", "TIKHUB_API_TOKEN", "X_API_BEARER_TOKEN", "OPENAI_API_KEY"):
        env.pop(name, None)

    existing_pp = env.get("PYTHONPATH", "")
    env["PYTHONPATH"] = (
        f"{_REPO_ROOT}{os.pathsep}{existing_pp}" if existing_pp else str(_REPO_ROOT)
    )

    return subprocess.run(
        [sys.executable, "-m", "social_vault", *args],
        cwd=_REPO_ROOT,
        env=env,
        capture_output=True,
        text=True,
    )


class TestCLISmoke(unittest.TestCase):
    def test_fetch_offline_short_link(self) -> None:
        proc = _run_cli("fetch", "快来看 http://xhslink.com/a/AbCdEf 复制后打开", "--offline", "--analyze")

        self.assertEqual(proc.returncode, 0, msg=proc.stderr)
        out = json.loads(proc.stdout)
        self.assertEqual(out["platform"], "Xiaohongshu")
        self.assertEqual(out["postId"], OFFLINE_NOTE_ID)
        self.assertEqual(out["providerUsed"], "justone")
        self.assertEqual(out["xsecToken"], "ABfromredirect")
        self.assertEqual(out["metrics"]["likes"], 12000)
        self.assertEqual(out["contentType"], "PromptShare")
        self.assertIn("aiAnalysis", out)

    def test_fetch_offline_tweet_gets_fallback_cover(self) -> None:
        proc = _run_cli("fetch", f"https://x.com/offline_dev/status/{OFFLINE_TWEET_ID}", "--offline")

        self.assertEqual(proc.returncode, 0, msg=proc.stderr)
        out = json.loads(proc.stdout)
        self.assertEqual(out["providerUsed"], "x_api")
        self.assertTrue(out["coverImage"].startswith("/dashboard-fallbacks/nature-"))

    def test_fetch_unsupported_url_exits_3(self) -> None:
        proc = _run_cli("fetch", "https://example.com/post/1", "--offline")
        self.assertEqual(proc.returncode, 3)
        self.assertIn("Unsupported URL", proc.stderr)

    def test_fetch_without_tokens_exits_2(self) -> None:
        proc = _run_cli("fetch", "https://www.xiaohongshu.com/explore/abc123")
        self.assertEqual(proc.returncode, 2, msg=proc.stderr)

    def test_search_offline_multiple_platforms(self) -> None:
        proc = _run_cli(
            "search",
            "prompt",
            "--platform",
            "xiaohongshu",
            "--platform",
            "twitter",
            "--limit",
            "5",
            "--offline",
        )

        self.assertEqual(proc.returncode, 0, msg=proc.stderr)
        batches = json.loads(proc.stdout)
        self.assertEqual([b["platform"] for b in batches], ["Xiaohongshu", "Twitter"])
        self.assertEqual(batches[0]["count"], 2)
        self.assertEqual(batches[1]["count"], 1)

    def test_search_saves_trending_snapshot_and_merges_repeats(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            db_path = Path(td) / "vault.sqlite"
            args = ("search", "prompt", "--platform", "xiaohongshu", "--platform", "twitter", "--offline", "--db", str(db_path))

            first = _run_cli(*args)
            self.assertEqual(first.returncode, 0, msg=first.stderr)
            self.assertIn("snapshot_saved=3", first.stderr)
            self.assertIn("duplicates_merged=0", first.stderr)

            second = _run_cli(*args)
            self.assertEqual(second.returncode, 0, msg=second.stderr)
            self.assertIn("duplicates_merged=3", second.stderr)

            with SQLiteVaultStore.open(db_path) as store:
                records = store.list_records()

        self.assertEqual(len(records), 3)
        self.assertTrue(all(r.is_trending for r in records))
        for r in records:
            self.assertIn("prompt", r.tags)
            self.assertEqual(len([t for t in r.tags if t.startswith("snapshot:")]), 2)

    def test_dedupe_dry_run_then_apply(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            db_path = Path(td) / "vault.sqlite"
            url = "https://www.xiaohongshu.com/explore/abc"
            with SQLiteVaultStore.open(db_path) as store:
                store.upsert_collection(Collection(id="c1", name="AI", created_at="2024-01-01"))
                store.upsert_collection(Collection(id="c2", name="ai", created_at="2024-01-02"))
                store.upsert_record(VaultRecord(id="r1", source_url=url, collections=("c1",), created_at="2024-01-01"))
                store.upsert_record(
                    VaultRecord(id="r2", source_url=url + "?xsec_token=x", is_trending=True, created_at="2024-01-02")
                )

            dry = _run_cli("dedupe", "--db", str(db_path))
            self.assertEqual(dry.returncode, 0, msg=dry.stderr)
            self.assertIn("mode=dry_run", dry.stdout)
            self.assertIn("collection_groups=1", dry.stdout)
            self.assertIn("card_groups=1", dry.stdout)
            self.assertIn("duplicates_to_delete=1", dry.stdout)
            self.assertIn("dry_run=true", dry.stdout)

            with SQLiteVaultStore.open(db_path) as store:
                self.assertEqual(len(store.list_records()), 2)

            applied = _run_cli("dedupe", "--db", str(db_path), "--apply")
            self.assertEqual(applied.returncode, 0, msg=applied.stderr)
            self.assertNotIn("dry_run=true", applied.stdout)

            with SQLiteVaultStore.open(db_path) as store:
                self.assertEqual([r.id for r in store.list_records()], ["r1"])
                self.assertEqual(len(store.list_collections()), 1)


if __name__ == "__main__":
    unittest.main()
