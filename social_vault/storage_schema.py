from __future__ import annotations

import sqlite3
from datetime import datetime, timezone

SCHEMA_VERSION = 2


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def initialize_sqlite(conn: sqlite3.Connection) -> None:
    """
    Initialize the vault database with a small migration system.

    This function is idempotent: it can be called on every startup.
    """
    _configure_connection(conn)
    _apply_migrations(conn)


def _configure_connection(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA busy_timeout = 5000")

    # In-memory databases reject WAL.
    try:
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
    except sqlite3.DatabaseError:
        pass


_MIGRATIONS: dict[int, str] = {
    1: """
CREATE TABLE IF NOT EXISTS knowledge_cards (
  id TEXT PRIMARY KEY,
  title TEXT NOT NULL DEFAULT '',
  source_url TEXT NOT NULL DEFAULT '',
  platform TEXT NOT NULL DEFAULT '',
  author TEXT NOT NULL DEFAULT '',
  raw_content TEXT NOT NULL DEFAULT '',
  cover_image TEXT NOT NULL DEFAULT '',
  metrics_json TEXT NOT NULL DEFAULT '{}',
  ai_analysis_json TEXT NOT NULL DEFAULT '{}',
  tags_json TEXT NOT NULL DEFAULT '[]',
  user_notes TEXT NOT NULL DEFAULT '',
  collections_json TEXT NOT NULL DEFAULT '[]',
  is_trending INTEGER NOT NULL DEFAULT 0,
  created_at TEXT NOT NULL,
  date TEXT NOT NULL DEFAULT '',
  content_type TEXT NOT NULL DEFAULT ''
);

CREATE INDEX IF NOT EXISTS idx_knowledge_cards_created_at
  ON knowledge_cards(created_at);

CREATE INDEX IF NOT EXISTS idx_knowledge_cards_source_url
  ON knowledge_cards(source_url);

CREATE TABLE IF NOT EXISTS collections (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  cover_image TEXT NOT NULL DEFAULT '',
  created_at TEXT NOT NULL
);
""".strip(),
    2: """
CREATE INDEX IF NOT EXISTS idx_knowledge_cards_trending
  ON knowledge_cards(is_trending);

-- Permanent vault only; trending snapshots are transient.
CREATE VIEW IF NOT EXISTS vault_cards AS
SELECT * FROM knowledge_cards WHERE is_trending = 0;
""".strip(),
}


def _apply_migrations(conn: sqlite3.Connection) -> None:
    with conn:
        conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)"
        )

    rows = conn.execute("SELECT version FROM schema_migrations").fetchall()
    applied: set[int] = {int(r[0]) for r in rows}

    for version in range(1, SCHEMA_VERSION + 1):
        if version in applied:
            continue

        script = _MIGRATIONS.get(version)
        if not script:
            raise RuntimeError(f"Missing migration script for version={version}")

        with conn:
            conn.executescript(script)
            conn.execute(
                "INSERT INTO schema_migrations(version, applied_at) VALUES (?, ?)",
                (version, _utc_now_iso()),
            )
