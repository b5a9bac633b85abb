from __future__ import annotations

import json
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Sequence

from .errors import StorageError
from .models import AIAnalysis, Collection, Metrics, NormalizedContent, VaultRecord
from .storage_schema import initialize_sqlite


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _json_dumps(value: Any) -> str:
    return json.dumps(
        value,
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )


def _json_loads(raw: Any, default: Any) -> Any:
    text = (raw or "").strip() if isinstance(raw, str) else ""
    if not text:
        return default
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        return default
    return value if isinstance(value, type(default)) else default


_CARD_COLUMNS = (
    "id, title, source_url, platform, author, raw_content, cover_image, metrics_json, "
    "ai_analysis_json, tags_json, user_notes, collections_json, is_trending, created_at, "
    "date, content_type"
)


def _record_params(record: VaultRecord, created_at: str) -> tuple[Any, ...]:
    return (
        record.id,
        record.title,
        record.source_url,
        record.platform,
        record.author,
        record.raw_content,
        record.cover_image,
        _json_dumps(record.metrics.as_dict()),
        _json_dumps(record.ai_analysis.as_dict()),
        _json_dumps(list(record.tags)),
        record.user_notes,
        _json_dumps(list(record.collections)),
        1 if record.is_trending else 0,
        created_at,
        record.date,
        record.content_type,
    )


def _row_to_record(row: sqlite3.Row) -> VaultRecord:
    return VaultRecord(
        id=str(row["id"]),
        title=str(row["title"] or ""),
        source_url=str(row["source_url"] or ""),
        platform=str(row["platform"] or ""),
        author=str(row["author"] or ""),
        raw_content=str(row["raw_content"] or ""),
        cover_image=str(row["cover_image"] or ""),
        metrics=Metrics.from_mapping(_json_loads(row["metrics_json"], {})),
        ai_analysis=AIAnalysis.from_mapping(_json_loads(row["ai_analysis_json"], {})),
        tags=tuple(str(t) for t in _json_loads(row["tags_json"], [])),
        user_notes=str(row["user_notes"] or ""),
        collections=tuple(str(c) for c in _json_loads(row["collections_json"], [])),
        is_trending=bool(row["is_trending"]),
        created_at=str(row["created_at"] or ""),
        date=str(row["date"] or ""),
        content_type=str(row["content_type"] or ""),
    )


@dataclass(frozen=True)
class VaultSnapshot:
    records: tuple[VaultRecord, ...]
    collections: tuple[Collection, ...]


class SQLiteVaultStore:
    """
    Small SQLite persistence layer for knowledge cards and collections.

    List-valued fields are stored as JSON columns. Rows are always read back oldest first.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._conn.row_factory = sqlite3.Row

    @classmethod
    def open(cls, path: str | Path) -> "SQLiteVaultStore":
        db_path = str(path)
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(db_path)
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to open sqlite database: {db_path}: {e}") from e

        try:
            initialize_sqlite(conn)
        except (sqlite3.DatabaseError, RuntimeError) as e:
            conn.close()
            raise StorageError(f"Failed to initialize sqlite schema: {e}") from e

        return cls(conn)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SQLiteVaultStore":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    def upsert_record(self, record: VaultRecord) -> None:
        rid = (record.id or "").strip()
        if not rid:
            raise ValueError("record.id must be non-empty")

        created_at = (record.created_at or "").strip() or _utc_now_iso()
        placeholders = ", ".join("?" for _ in range(16))
        try:
            with self._conn:
                self._conn.execute(
                    f"INSERT OR REPLACE INTO knowledge_cards({_CARD_COLUMNS}) VALUES ({placeholders})",
                    _record_params(record, created_at),
                )
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to upsert knowledge card {rid}: {e}") from e

    def update_record(self, record: VaultRecord) -> None:
        """Overwrite the mutable fields of an existing card; created_at is preserved."""
        rid = (record.id or "").strip()
        if not rid:
            raise ValueError("record.id must be non-empty")

        try:
            with self._conn:
                cur = self._conn.execute(
                    """
                    UPDATE knowledge_cards SET
                      title = ?, source_url = ?, platform = ?, author = ?, raw_content = ?,
                      cover_image = ?, metrics_json = ?, ai_analysis_json = ?, tags_json = ?,
                      user_notes = ?, collections_json = ?, is_trending = ?, date = ?, content_type = ?
                    WHERE id = ?
                    """.strip(),
                    (
                        record.title,
                        record.source_url or "#",
                        record.platform,
                        record.author,
                        record.raw_content,
                        record.cover_image,
                        _json_dumps(record.metrics.as_dict()),
                        _json_dumps(record.ai_analysis.as_dict()),
                        _json_dumps(list(record.tags)),
                        record.user_notes,
                        _json_dumps(list(record.collections)),
                        1 if record.is_trending else 0,
                        record.date,
                        record.content_type,
                        rid,
                    ),
                )
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to update knowledge card {rid}: {e}") from e

        if cur.rowcount == 0:
            raise StorageError(f"Knowledge card not found: {rid}")

    def get_record(self, record_id: str) -> VaultRecord | None:
        row = self._conn.execute(
            f"SELECT {_CARD_COLUMNS} FROM knowledge_cards WHERE id = ?",
            ((record_id or "").strip(),),
        ).fetchone()
        return _row_to_record(row) if row is not None else None

    def list_records(self, *, trending: bool | None = None) -> list[VaultRecord]:
        sql = f"SELECT {_CARD_COLUMNS} FROM knowledge_cards"
        params: tuple[Any, ...] = ()
        if trending is not None:
            sql += " WHERE is_trending = ?"
            params = (1 if trending else 0,)
        sql += " ORDER BY created_at ASC, id ASC"
        try:
            rows = self._conn.execute(sql, params).fetchall()
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to list knowledge cards: {e}") from e
        return [_row_to_record(r) for r in rows]

    def _delete(self, table: str, ids: Sequence[str]) -> int:
        keys = [i for i in dict.fromkeys((x or "").strip() for x in ids) if i]
        if not keys:
            return 0
        placeholders = ", ".join("?" for _ in keys)
        try:
            with self._conn:
                cur = self._conn.execute(f"DELETE FROM {table} WHERE id IN ({placeholders})", keys)
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to delete from {table}: {e}") from e
        return int(cur.rowcount or 0)

    def delete_records(self, ids: Sequence[str]) -> int:
        return self._delete("knowledge_cards", ids)

    def upsert_collection(self, collection: Collection) -> None:
        cid = (collection.id or "").strip()
        if not cid:
            raise ValueError("collection.id must be non-empty")
        created_at = (collection.created_at or "").strip() or _utc_now_iso()
        try:
            with self._conn:
                self._conn.execute(
                    "INSERT OR REPLACE INTO collections(id, name, cover_image, created_at) VALUES (?, ?, ?, ?)",
                    (cid, collection.name, collection.cover_image, created_at),
                )
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to upsert collection {cid}: {e}") from e

    def list_collections(self) -> list[Collection]:
        try:
            rows = self._conn.execute(
                "SELECT id, name, cover_image, created_at FROM collections ORDER BY created_at ASC, id ASC"
            ).fetchall()
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to list collections: {e}") from e
        return [
            Collection(
                id=str(r["id"]),
                name=str(r["name"] or ""),
                cover_image=str(r["cover_image"] or ""),
                created_at=str(r["created_at"] or ""),
            )
            for r in rows
        ]

    def delete_collections(self, ids: Sequence[str]) -> int:
        return self._delete("collections", ids)

    def snapshot(self) -> VaultSnapshot:
        return VaultSnapshot(records=tuple(self.list_records()), collections=tuple(self.list_collections()))

    def save_trending_snapshot(
        self,
        contents: Iterable[NormalizedContent],
        *,
        tags: Sequence[str] = (),
        snapshot_id: str | None = None,
    ) -> list[VaultRecord]:
        """
        Store search results as trending cards tagged with snapshot:<id>.

        All cards are written in one transaction. Cards that duplicate existing ones are
        left in place for the dedupe job to merge.
        """
        now = _utc_now_iso()
        sid = (snapshot_id or "").strip() or now
        extra = (*(t.strip() for t in tags), f"snapshot:{sid}")

        records = [
            VaultRecord.from_content(c, record_id=uuid.uuid4().hex, created_at=now, extra_tags=extra)
            for c in contents
        ]
        placeholders = ", ".join("?" for _ in range(16))
        try:
            with self._conn:
                self._conn.executemany(
                    f"INSERT OR REPLACE INTO knowledge_cards({_CARD_COLUMNS}) VALUES ({placeholders})",
                    [_record_params(r, now) for r in records],
                )
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to save trending snapshot {sid}: {e}") from e
        return records
