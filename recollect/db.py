from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

import sqlite_vec

from .config import DEFAULT_DB_PATH

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

__all__ = [
    "DEFAULT_DB_PATH",
    "SCHEMA_VERSION",
    "connect",
    "from_json",
    "initialize_schema",
    "load_sqlite_vec",
    "sqlite_vec_version",
    "to_json",
]


def sqlite_vec_version(conn: sqlite3.Connection) -> str | None:
    try:
        row = conn.execute("select vec_version()").fetchone()
    except sqlite3.Error:
        return None
    if not row or row[0] is None:
        return None
    return str(row[0])


def load_sqlite_vec(conn: sqlite3.Connection) -> None:
    """Load the sqlite-vec extension into ``conn``.

    Raises RuntimeError with an actionable message when the Python build
    cannot load extensions or the shipped loadable is unusable.
    """
    if sqlite_vec_version(conn) is not None:
        return
    try:
        conn.enable_load_extension(True)
    except AttributeError as exc:
        raise RuntimeError(
            "sqlite-vec requires a Python SQLite build that supports extension loading. "
            "Install a Python build with enable_load_extension and try again."
        ) from exc
    try:
        sqlite_vec.load(conn)
        if sqlite_vec_version(conn) is None:
            raise RuntimeError("sqlite-vec loaded but version check failed")
    except Exception as exc:
        message = (
            "Failed to load sqlite-vec extension. "
            "Vector search is disabled; set RECOLLECT_EMBEDDING_DISABLED=1 to silence this."
        )
        if "ELFCLASS32" in str(exc):
            message = (
                "Failed to load sqlite-vec extension (ELFCLASS32). "
                "PyPI may ship a 32-bit vec0.so on Linux aarch64; replace it with a 64-bit build."
            )
        raise RuntimeError(message) from exc
    finally:
        try:
            conn.enable_load_extension(False)
        except AttributeError:
            pass


def connect(db_path: Path | str, check_same_thread: bool = True) -> sqlite3.Connection:
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.OperationalError:
        conn.execute("PRAGMA journal_mode = DELETE")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute("PRAGMA busy_timeout = 5000")
    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS memories (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            type TEXT NOT NULL,
            title TEXT NOT NULL,
            content TEXT NOT NULL,
            facts TEXT NOT NULL DEFAULT '[]',
            concepts TEXT NOT NULL DEFAULT '[]',
            source_files TEXT NOT NULL DEFAULT '[]',
            importance REAL NOT NULL DEFAULT 5,
            visibility TEXT NOT NULL DEFAULT 'public',
            phase TEXT,
            session_id TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            accessed_at TEXT,
            access_count INTEGER NOT NULL DEFAULT 0
        );
        CREATE INDEX IF NOT EXISTS idx_memories_type ON memories(type);
        CREATE INDEX IF NOT EXISTS idx_memories_created ON memories(created_at);
        CREATE INDEX IF NOT EXISTS idx_memories_phase ON memories(phase);
        CREATE INDEX IF NOT EXISTS idx_memories_session ON memories(session_id);
        CREATE INDEX IF NOT EXISTS idx_memories_visibility ON memories(visibility);

        CREATE VIRTUAL TABLE IF NOT EXISTS memories_fts USING fts5(
            title,
            content,
            facts,
            concepts,
            content='memories',
            content_rowid='id',
            tokenize='porter unicode61 remove_diacritics 2'
        );

        CREATE TRIGGER IF NOT EXISTS memories_ai AFTER INSERT ON memories BEGIN
            INSERT INTO memories_fts(rowid, title, content, facts, concepts)
            VALUES (new.id, new.title, new.content, new.facts, new.concepts);
        END;

        CREATE TRIGGER IF NOT EXISTS memories_ad AFTER DELETE ON memories BEGIN
            INSERT INTO memories_fts(memories_fts, rowid, title, content, facts, concepts)
            VALUES('delete', old.id, old.title, old.content, old.facts, old.concepts);
        END;

        CREATE TRIGGER IF NOT EXISTS memories_au AFTER UPDATE OF title, content, facts, concepts
        ON memories BEGIN
            INSERT INTO memories_fts(memories_fts, rowid, title, content, facts, concepts)
            VALUES('delete', old.id, old.title, old.content, old.facts, old.concepts);
            INSERT INTO memories_fts(rowid, title, content, facts, concepts)
            VALUES (new.id, new.title, new.content, new.facts, new.concepts);
        END;

        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER NOT NULL,
            applied_at TEXT NOT NULL DEFAULT (datetime('now'))
        );
        """
    )
    row = conn.execute("SELECT MAX(version) AS version FROM schema_version").fetchone()
    if row is None or row["version"] is None:
        conn.execute("INSERT INTO schema_version(version) VALUES (?)", (SCHEMA_VERSION,))
    conn.commit()


def to_json(data: Any) -> str:
    if data is None:
        payload: Any = []
    else:
        payload = data
    return json.dumps(payload, ensure_ascii=False)


def from_json(text: str | None) -> Any:
    if not text:
        return []
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        logger.warning("discarding malformed json column value")
        return []
