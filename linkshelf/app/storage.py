"""SQLite persistence helpers for archives, notes, links and audit events."""

from __future__ import annotations

import json
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


_DB_PATH_OVERRIDE: Optional[Path] = None

_COLLECTIONS: Dict[str, Dict[str, Any]] = {
    "archives": {
        "prefix": "archive",
        "columns": ("user_id", "category_id", "storage_path", "filename", "checksum"),
    },
    "notes": {
        "prefix": "note",
        "columns": ("user_id", "category_id", "text", "sender", "date", "time", "archive_id"),
    },
    "links": {
        "prefix": "link",
        "columns": ("user_id", "category_id", "url", "title", "archive_id"),
    },
}

_SEARCH_FIELDS = {
    "notes": ("text",),
    "links": ("url", "title"),
}


def set_db_path_override(path: Optional[str]) -> None:
    global _DB_PATH_OVERRIDE
    if path:
        _DB_PATH_OVERRIDE = Path(path)
    else:
        _DB_PATH_OVERRIDE = None


def _resolve_db_path() -> Path:
    if _DB_PATH_OVERRIDE is not None:
        return _DB_PATH_OVERRIDE

    env_path = os.getenv("LINKSHELF_DB_PATH")
    if env_path:
        return Path(env_path)

    base_dir = Path(__file__).resolve().parents[2]
    data_dir = base_dir / "data"
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir / "linkshelf.db"


def _dict_from_row(row: sqlite3.Row) -> Dict:
    return {k: row[k] for k in row.keys()}


def _coerce_json_payload(value: Optional[str]) -> Optional[Any]:
    if not value:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return None
    return parsed


def _collection_spec(collection: str) -> Dict[str, Any]:
    spec = _COLLECTIONS.get(collection)
    if spec is None:
        raise ValueError(f"unknown collection '{collection}'")
    return spec


def _checked_columns(collection: str, names: Mapping[str, Any]) -> List[str]:
    allowed = set(_collection_spec(collection)["columns"]) | {"id", "created_at"}
    unknown = [name for name in names if name not in allowed]
    if unknown:
        raise ValueError(f"unknown column(s) for {collection}: {', '.join(sorted(unknown))}")
    return list(names)


def _order_clause(collection: str, order: Optional[str]) -> str:
    if not order:
        return "ORDER BY created_at ASC, rowid ASC"
    direction = "DESC" if order.startswith("-") else "ASC"
    column = order.lstrip("-")
    _checked_columns(collection, {column: None})
    return f"ORDER BY {column} {direction}, rowid {direction}"


def _where_clause(collection: str, filters: Optional[Mapping[str, Any]]) -> tuple:
    if not filters:
        return "", ()
    columns = _checked_columns(collection, filters)
    clause = " AND ".join(f"{column} = ?" for column in columns)
    return f"WHERE {clause}", tuple(filters[column] for column in columns)


def _ensure_events_user_column(conn: sqlite3.Connection) -> None:
    columns = {row["name"] for row in conn.execute("PRAGMA table_info(events)")}
    if "user_id" not in columns:
        conn.execute("ALTER TABLE events ADD COLUMN user_id TEXT")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_events_user ON events(user_id)")


@contextmanager
def get_connection():
    path = _resolve_db_path()
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def ensure_schema() -> None:
    with get_connection() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS archives (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                category_id TEXT NOT NULL,
                storage_path TEXT NOT NULL,
                filename TEXT NOT NULL,
                checksum TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS notes (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                category_id TEXT NOT NULL,
                text TEXT NOT NULL,
                sender TEXT,
                date TEXT,
                time TEXT,
                archive_id TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS links (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                category_id TEXT NOT NULL,
                url TEXT NOT NULL,
                title TEXT,
                archive_id TEXT,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_notes_scope ON notes(user_id, category_id);
            CREATE INDEX IF NOT EXISTS idx_links_scope_url ON links(user_id, category_id, url);

            CREATE TABLE IF NOT EXISTS events (
                id TEXT PRIMARY KEY,
                user_id TEXT,
                type TEXT NOT NULL,
                message TEXT NOT NULL,
                created_at TEXT NOT NULL,
                level TEXT NOT NULL,
                payload TEXT
            );
            """
        )
        _ensure_events_user_column(conn)
        conn.commit()


def insert_record(collection: str, record: Mapping[str, Any]) -> str:
    """Append one record; ``id`` and ``created_at`` are assigned here."""

    spec = _collection_spec(collection)
    values = {k: v for k, v in record.items() if k not in {"id", "created_at"}}
    columns = _checked_columns(collection, values)
    record_id = f"{spec['prefix']}-{uuid.uuid4().hex[:12]}"
    all_columns = ["id", *columns, "created_at"]
    placeholders = ", ".join("?" for _ in all_columns)
    with get_connection() as conn:
        conn.execute(
            f"INSERT INTO {collection}({', '.join(all_columns)}) VALUES({placeholders})",
            (record_id, *(values[column] for column in columns), _now_iso()),
        )
        conn.commit()
    return record_id


def query_records(
    collection: str,
    filters: Optional[Mapping[str, Any]] = None,
    order: Optional[str] = "created_at",
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    where, params = _where_clause(collection, filters)
    sql = f"SELECT * FROM {collection} {where} {_order_clause(collection, order)}"
    if limit is not None:
        sql += " LIMIT ?"
        params = (*params, int(limit))
    with get_connection() as conn:
        rows = conn.execute(sql, params).fetchall()
        return [_dict_from_row(row) for row in rows]


def record_exists(collection: str, filters: Mapping[str, Any]) -> bool:
    where, params = _where_clause(collection, filters)
    with get_connection() as conn:
        row = conn.execute(f"SELECT 1 FROM {collection} {where} LIMIT 1", params).fetchone()
        return row is not None


def get_record(collection: str, record_id: str) -> Optional[Dict[str, Any]]:
    rows = query_records(collection, {"id": record_id}, limit=1)
    return rows[0] if rows else None


def search_records(collection: str, user_id: str, category_id: str, q: Optional[str] = None) -> List[Dict[str, Any]]:
    rows = query_records(collection, {"user_id": user_id, "category_id": category_id})
    needle = (q or "").strip().lower()
    if not needle:
        return rows
    fields = _SEARCH_FIELDS.get(collection, ())
    return [
        row for row in rows
        if needle in " ".join(str(row.get(field) or "") for field in fields).lower()
    ]


def delete_record(collection: str, record_id: str, user_id: str) -> bool:
    _collection_spec(collection)
    with get_connection() as conn:
        cursor = conn.execute(f"DELETE FROM {collection} WHERE id = ? AND user_id = ?", (record_id, user_id))
        conn.commit()
        return cursor.rowcount > 0


def delete_scope(collection: str, user_id: str, category_id: str) -> int:
    _collection_spec(collection)
    with get_connection() as conn:
        cursor = conn.execute(
            f"DELETE FROM {collection} WHERE user_id = ? AND category_id = ?",
            (user_id, category_id),
        )
        conn.commit()
        return cursor.rowcount


def list_events(limit: int = 25, user_id: Optional[str] = None) -> List[Dict]:
    """Newest events first; with ``user_id`` only that user's events are returned."""

    sql = "SELECT * FROM events"
    params: tuple = ()
    if user_id is not None:
        sql += " WHERE user_id = ?"
        params = (user_id,)
    sql += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
    with get_connection() as conn:
        rows = conn.execute(sql, (*params, limit)).fetchall()
        out = []
        for row in rows:
            payload = _dict_from_row(row)
            payload["payload"] = _coerce_json_payload(payload.get("payload"))
            out.append(payload)
        return out


def append_event(
    event_type: str,
    message: str,
    level: str = "info",
    payload: Optional[Dict[str, Any]] = None,
    user_id: Optional[str] = None,
) -> Dict:
    event_id = f"evt-{uuid.uuid4().hex[:12]}"
    now = _now_iso()
    serialized_payload = json.dumps(payload) if payload is not None else None
    event_payload = {
        "id": event_id,
        "user_id": user_id,
        "type": event_type,
        "message": message,
        "created_at": now,
        "level": level,
        "payload": payload,
    }
    with get_connection() as conn:
        conn.execute(
            "INSERT INTO events(id, user_id, type, message, created_at, level, payload) VALUES(?, ?, ?, ?, ?, ?, ?)",
            (event_id, user_id, event_type, message, now, level, serialized_payload),
        )
        conn.commit()
    return event_payload
