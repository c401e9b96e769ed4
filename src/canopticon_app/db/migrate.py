#!filepath: src/canopticon_app/db/migrate.py
from __future__ import annotations

import os
import sqlite3
from pathlib import Path
from typing import Union

from canopticon_app.db.schema import SCHEMA
from canopticon_app.utils.logger import get_logger

logger = get_logger(__name__)

MEMORY = ":memory:"


def connect(db_path: Union[str, Path]) -> sqlite3.Connection:
    """Open a sqlite connection with the pragmas the pipeline relies on.

    File databases get WAL and a busy timeout so an HTTP triggered cycle and
    a CLI run can overlap.

    Args:
        db_path: Database path, or ":memory:".

    Returns:
        sqlite3.Connection: Open connection.
    """
    raw = str(db_path)
    if raw == MEMORY:
        conn = sqlite3.connect(MEMORY, check_same_thread=False)
    else:
        p = Path(raw).expanduser().resolve()
        p.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(p), timeout=10.0, check_same_thread=False)
        conn.execute("PRAGMA journal_mode = WAL;")
        conn.execute("PRAGMA synchronous = NORMAL;")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table});").fetchall()
    return {r["name"] for r in rows}


def _add_column_if_missing(conn: sqlite3.Connection, table: str, col_def: str) -> bool:
    col_name = col_def.strip().split()[0]
    if col_name in _columns(conn, table):
        return False
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {col_def};")
    return True


def _apply_migrations(conn: sqlite3.Connection) -> list[str]:
    applied: list[str] = []

    additive = {
        "sources": ("config_json TEXT",),
        "signals": (
            "scored INTEGER NOT NULL DEFAULT 0",
            "updated_at TEXT",
            "topics_json TEXT",
        ),
        "articles": ("reading_time INTEGER NOT NULL DEFAULT 1",),
    }
    for table, col_defs in additive.items():
        for col_def in col_defs:
            if _add_column_if_missing(conn, table, col_def):
                applied.append(f"add_column={table}.{col_def.split()[0]}")

    return applied


def ensure_schema(db_path: Union[str, Path]) -> sqlite3.Connection:
    """Create tables and apply additive migrations.

    Args:
        db_path: Database path, or ":memory:".

    Returns:
        sqlite3.Connection: Open connection with the schema in place.
    """
    conn = connect(db_path)
    conn.executescript(SCHEMA)
    applied = _apply_migrations(conn)
    conn.commit()
    if applied:
        logger.info(f"Schema migrated, db={db_path}, applied={','.join(applied)}")
    return conn


def recreate_schema(db_path: Union[str, Path]) -> sqlite3.Connection:
    """Drop the database file and build the schema from scratch.

    Args:
        db_path: Database path.

    Returns:
        sqlite3.Connection: Open connection.
    """
    raw = str(db_path)
    if raw != MEMORY:
        for suffix in ("", "-wal", "-shm"):
            if os.path.exists(raw + suffix):
                os.remove(raw + suffix)
    return ensure_schema(db_path)
