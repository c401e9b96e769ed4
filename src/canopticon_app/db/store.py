#!filepath: src/canopticon_app/db/store.py
from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from canopticon_app.db.migrate import ensure_schema
from canopticon_app.errors import PersistenceError
from canopticon_app.models import (
    Article,
    Cluster,
    CycleLog,
    LogLevel,
    Priority,
    RawArticle,
    Signal,
    SignalStatus,
    Source,
    SourceKind,
)
from canopticon_app.utils.dates import utc_now_iso
from canopticon_app.utils.logger import get_logger
from canopticon_app.utils.serialization import dumps_list, loads_dict, loads_list

logger = get_logger(__name__)


def _row_to_source(r: sqlite3.Row) -> Source:
    return Source(
        id=int(r["id"]),
        name=str(r["name"]),
        url=str(r["url"]),
        kind=SourceKind(str(r["kind"])),
        active=bool(r["active"]),
        priority=int(r["priority"]),
        config=loads_dict(r["config_json"]),
    )


def _row_to_raw(r: sqlite3.Row) -> RawArticle:
    keys = r.keys()
    return RawArticle(
        id=int(r["id"]),
        source_id=int(r["source_id"]),
        url=str(r["url"]),
        title=str(r["title"]),
        body=str(r["body"]),
        content_hash=str(r["content_hash"]),
        fetched_at=str(r["fetched_at"]),
        published_at=r["published_at"],
        is_processed=bool(r["is_processed"]),
        source_name=str(r["source_name"] or "") if "source_name" in keys else "",
    )


def _row_to_signal(r: sqlite3.Row) -> Signal:
    return Signal(
        id=int(r["id"]),
        cluster_id=int(r["cluster_id"]) if r["cluster_id"] is not None else None,
        headline=str(r["headline"]),
        summary=str(r["summary"] or ""),
        url=str(r["url"] or ""),
        source_name=str(r["source_name"] or ""),
        priority=Priority.coerce(r["priority"]),
        status=SignalStatus(str(r["status"])),
        confidence_score=int(r["confidence_score"] or 0),
        scored=bool(r["scored"]),
        entities=loads_list(r["entities_json"]),
        topics=loads_list(r["topics_json"]),
        created_at=str(r["created_at"]),
        updated_at=str(r["updated_at"] or r["created_at"]),
    )


def _row_to_article(r: sqlite3.Row) -> Article:
    return Article(
        id=int(r["id"]),
        signal_id=int(r["signal_id"]) if r["signal_id"] is not None else None,
        slug=str(r["slug"]),
        headline=str(r["headline"]),
        summary=str(r["summary"] or ""),
        content=loads_dict(r["content_json"]),
        topics=loads_list(r["topics_json"]),
        entities=loads_list(r["entities_json"]),
        reading_time=int(r["reading_time"] or 1),
        is_draft=bool(r["is_draft"]),
        published_at=r["published_at"],
        created_at=str(r["created_at"]),
    )


def _row_to_log(r: sqlite3.Row) -> CycleLog:
    return CycleLog(
        id=int(r["id"]),
        cycle_id=str(r["cycle_id"]),
        level=LogLevel(str(r["level"])),
        message=str(r["message"]),
        created_at=str(r["created_at"]),
    )


def _placeholders(values: Sequence[Any]) -> str:
    return ",".join("?" for _ in values)


class Store:
    """Typed access to the pipeline tables.

    Every sqlite failure surfaces as PersistenceError. Writes commit on their
    own unless they run inside `transaction()`, in which case the outermost
    block commits or rolls back as a unit.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._depth = 0

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        try:
            self._conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to close store, err={e}") from e

    @contextmanager
    def transaction(self) -> Iterator[Store]:
        """Group writes into one atomic unit."""
        outer = self._depth == 0
        self._depth += 1
        try:
            yield self
        except sqlite3.Error as e:
            if outer:
                self._rollback()
            raise PersistenceError(f"Transaction failed, err={e}") from e
        except BaseException:
            if outer:
                self._rollback()
            raise
        else:
            if outer:
                try:
                    self._conn.commit()
                except sqlite3.Error as e:
                    self._rollback()
                    raise PersistenceError(f"Commit failed, err={e}") from e
        finally:
            self._depth -= 1

    def _rollback(self) -> None:
        try:
            self._conn.rollback()
        except sqlite3.Error as e:
            logger.error(f"Rollback failed, err={e}")

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        try:
            cur = self._conn.execute(sql, tuple(params))
        except sqlite3.Error as e:
            if self._depth == 0:
                self._rollback()
            raise PersistenceError(f"Query failed, err={e}") from e
        if self._depth == 0 and self._conn.in_transaction:
            try:
                self._conn.commit()
            except sqlite3.Error as e:
                self._rollback()
                raise PersistenceError(f"Commit failed, err={e}") from e
        return cur

    def _fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        try:
            return list(self._conn.execute(sql, tuple(params)).fetchall())
        except sqlite3.Error as e:
            raise PersistenceError(f"Query failed, err={e}") from e

    def _fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        try:
            return self._conn.execute(sql, tuple(params)).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Query failed, err={e}") from e

    # sources

    def insert_source(
        self,
        *,
        name: str,
        url: str,
        kind: SourceKind,
        active: bool = True,
        priority: int = 100,
        config: Optional[Dict[str, Any]] = None,
    ) -> int:
        cur = self._execute(
            """
            INSERT INTO sources(name, url, kind, active, priority, config_json)
            VALUES (?, ?, ?, ?, ?, ?);
            """,
            (
                name,
                url,
                kind.value,
                1 if active else 0,
                int(priority),
                json.dumps(dict(config or {}), ensure_ascii=False),
            ),
        )
        return int(cur.lastrowid)

    def update_source(
        self,
        source_id: int,
        *,
        url: str,
        kind: SourceKind,
        priority: int,
        config: Optional[Dict[str, Any]] = None,
    ) -> bool:
        cur = self._execute(
            """
            UPDATE sources SET url = ?, kind = ?, priority = ?, config_json = ?
            WHERE id = ?;
            """,
            (
                url,
                kind.value,
                int(priority),
                json.dumps(dict(config or {}), ensure_ascii=False),
                int(source_id),
            ),
        )
        return cur.rowcount > 0

    def get_source(self, source_id: int) -> Optional[Source]:
        r = self._fetchone("SELECT * FROM sources WHERE id = ?;", (int(source_id),))
        return _row_to_source(r) if r else None

    def get_source_by_name(self, name: str) -> Optional[Source]:
        r = self._fetchone("SELECT * FROM sources WHERE name = ?;", (str(name),))
        return _row_to_source(r) if r else None

    def list_sources(self, *, active_only: bool = False) -> List[Source]:
        where = "WHERE active = 1" if active_only else ""
        rows = self._fetchall(
            f"SELECT * FROM sources {where} ORDER BY priority ASC, id ASC;"
        )
        return [_row_to_source(r) for r in rows]

    def set_source_active(self, source_id: int, active: bool) -> bool:
        cur = self._execute(
            "UPDATE sources SET active = ? WHERE id = ?;",
            (1 if active else 0, int(source_id)),
        )
        return cur.rowcount > 0

    # raw articles

    def insert_raw_article_if_new(
        self,
        *,
        source_id: int,
        url: str,
        title: str,
        body: str,
        content_hash: str,
        published_at: Optional[str],
        fetched_at: Optional[str] = None,
    ) -> Optional[int]:
        """Insert unless the content hash is already stored.

        Returns:
            Optional[int]: New row id, or None for a duplicate.
        """
        cur = self._execute(
            """
            INSERT OR IGNORE INTO raw_articles(
              source_id, url, title, body, content_hash, fetched_at, published_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?);
            """,
            (
                int(source_id),
                url,
                title,
                body,
                content_hash,
                fetched_at or utc_now_iso(),
                published_at,
            ),
        )
        if cur.rowcount <= 0:
            return None
        return int(cur.lastrowid)

    def list_unprocessed_raw_articles(self, limit: int) -> List[RawArticle]:
        rows = self._fetchall(
            """
            SELECT r.*, s.name AS source_name
            FROM raw_articles r
            LEFT JOIN sources s ON s.id = r.source_id
            WHERE r.is_processed = 0
            ORDER BY r.id ASC
            LIMIT ?;
            """,
            (int(limit),),
        )
        return [_row_to_raw(r) for r in rows]

    def mark_raw_processed(self, raw_ids: Iterable[int]) -> int:
        ids = [int(i) for i in raw_ids]
        if not ids:
            return 0
        cur = self._execute(
            f"UPDATE raw_articles SET is_processed = 1 WHERE id IN ({_placeholders(ids)});",
            ids,
        )
        return int(cur.rowcount)

    def count_raw_articles(self, *, unprocessed_only: bool = False) -> int:
        where = "WHERE is_processed = 0" if unprocessed_only else ""
        r = self._fetchone(f"SELECT COUNT(1) AS c FROM raw_articles {where};")
        return int(r["c"]) if r else 0

    # clusters

    def create_cluster(self, representative_title: str, created_at: str) -> int:
        cur = self._execute(
            "INSERT INTO clusters(representative_title, created_at) VALUES (?, ?);",
            (representative_title, created_at),
        )
        return int(cur.lastrowid)

    def add_cluster_member(self, cluster_id: int, raw_article_id: int) -> None:
        self._execute(
            "INSERT INTO cluster_articles(cluster_id, raw_article_id) VALUES (?, ?);",
            (int(cluster_id), int(raw_article_id)),
        )

    def get_cluster(self, cluster_id: int) -> Optional[Cluster]:
        r = self._fetchone("SELECT * FROM clusters WHERE id = ?;", (int(cluster_id),))
        if not r:
            return None
        return Cluster(
            id=int(r["id"]),
            representative_title=str(r["representative_title"]),
            created_at=str(r["created_at"]),
        )

    def list_open_clusters(
        self, *, since_iso: str, max_size: int
    ) -> List[Tuple[Cluster, int]]:
        """Clusters created since `since_iso` with room for more members."""
        rows = self._fetchall(
            """
            SELECT c.id, c.representative_title, c.created_at, COUNT(ca.raw_article_id) AS n
            FROM clusters c
            LEFT JOIN cluster_articles ca ON ca.cluster_id = c.id
            WHERE c.created_at >= ?
            GROUP BY c.id
            HAVING n < ?
            ORDER BY c.id ASC;
            """,
            (since_iso, int(max_size)),
        )
        return [
            (
                Cluster(
                    id=int(r["id"]),
                    representative_title=str(r["representative_title"]),
                    created_at=str(r["created_at"]),
                ),
                int(r["n"]),
            )
            for r in rows
        ]

    def cluster_members(self, cluster_id: int) -> List[RawArticle]:
        rows = self._fetchall(
            """
            SELECT r.*, s.name AS source_name
            FROM cluster_articles ca
            JOIN raw_articles r ON r.id = ca.raw_article_id
            LEFT JOIN sources s ON s.id = r.source_id
            WHERE ca.cluster_id = ?
            ORDER BY r.id ASC;
            """,
            (int(cluster_id),),
        )
        return [_row_to_raw(r) for r in rows]

    def list_clusters_without_signal(self, limit: int) -> List[Cluster]:
        rows = self._fetchall(
            """
            SELECT c.*
            FROM clusters c
            LEFT JOIN signals s ON s.cluster_id = c.id
            WHERE s.id IS NULL
            ORDER BY c.id ASC
            LIMIT ?;
            """,
            (int(limit),),
        )
        return [
            Cluster(
                id=int(r["id"]),
                representative_title=str(r["representative_title"]),
                created_at=str(r["created_at"]),
            )
            for r in rows
        ]

    def count_clusters(self) -> int:
        r = self._fetchone("SELECT COUNT(1) AS c FROM clusters;")
        return int(r["c"]) if r else 0

    # signals

    def insert_signal(
        self,
        *,
        cluster_id: Optional[int],
        headline: str,
        summary: str,
        url: str,
        source_name: str,
        priority: Priority,
        confidence_score: int,
        scored: bool,
        entities: Iterable[str],
        topics: Iterable[str],
        status: SignalStatus = SignalStatus.PENDING,
        created_at: Optional[str] = None,
    ) -> Optional[int]:
        """Insert a signal, one per cluster.

        Returns:
            Optional[int]: New id, or None when the cluster already has a signal.
        """
        now = created_at or utc_now_iso()
        cur = self._execute(
            """
            INSERT OR IGNORE INTO signals(
              cluster_id, headline, summary, url, source_name, priority, status,
              confidence_score, scored, entities_json, topics_json, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                cluster_id,
                headline,
                summary,
                url,
                source_name,
                priority.value,
                status.value,
                int(confidence_score),
                1 if scored else 0,
                dumps_list(entities),
                dumps_list(topics),
                now,
                now,
            ),
        )
        if cur.rowcount <= 0:
            return None
        return int(cur.lastrowid)

    def get_signal(self, signal_id: int) -> Optional[Signal]:
        r = self._fetchone("SELECT * FROM signals WHERE id = ?;", (int(signal_id),))
        return _row_to_signal(r) if r else None

    def signal_for_cluster(self, cluster_id: int) -> Optional[Signal]:
        r = self._fetchone(
            "SELECT * FROM signals WHERE cluster_id = ?;", (int(cluster_id),)
        )
        return _row_to_signal(r) if r else None

    def update_signal_status(
        self,
        signal_id: int,
        *,
        from_statuses: Iterable[SignalStatus],
        to_status: SignalStatus,
    ) -> bool:
        """Move a signal only when it is currently in one of `from_statuses`.

        Returns:
            bool: True when exactly one row moved.
        """
        allowed = [s.value for s in from_statuses]
        if not allowed:
            return False
        cur = self._execute(
            f"""
            UPDATE signals SET status = ?, updated_at = ?
            WHERE id = ? AND status IN ({_placeholders(allowed)});
            """,
            [to_status.value, utc_now_iso(), int(signal_id), *allowed],
        )
        return cur.rowcount == 1

    def delete_signal(self, signal_id: int) -> bool:
        with self.transaction():
            self._execute(
                "UPDATE articles SET signal_id = NULL WHERE signal_id = ?;",
                (int(signal_id),),
            )
            cur = self._execute("DELETE FROM signals WHERE id = ?;", (int(signal_id),))
        return cur.rowcount > 0

    def list_signals(
        self,
        *,
        status: Optional[SignalStatus] = None,
        scored_only: bool = False,
        limit: int = 100,
    ) -> List[Signal]:
        clauses: List[str] = []
        params: List[Any] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if scored_only:
            clauses.append("scored = 1")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(int(limit))
        rows = self._fetchall(
            f"SELECT * FROM signals {where} ORDER BY created_at ASC, id ASC LIMIT ?;",
            params,
        )
        return [_row_to_signal(r) for r in rows]

    def list_approved_without_article(self, limit: int) -> List[Signal]:
        rows = self._fetchall(
            """
            SELECT s.*
            FROM signals s
            WHERE s.status = ?
              AND NOT EXISTS (SELECT 1 FROM articles a WHERE a.signal_id = s.id)
            ORDER BY s.created_at ASC, s.id ASC
            LIMIT ?;
            """,
            (SignalStatus.APPROVED.value, int(limit)),
        )
        return [_row_to_signal(r) for r in rows]

    def list_stalled_processing(self, *, before_iso: str) -> List[Signal]:
        rows = self._fetchall(
            """
            SELECT s.*
            FROM signals s
            WHERE s.status = ?
              AND COALESCE(s.updated_at, s.created_at) < ?
            ORDER BY s.id ASC;
            """,
            (SignalStatus.PROCESSING.value, before_iso),
        )
        return [_row_to_signal(r) for r in rows]

    def count_signals_by_status(self) -> Dict[str, int]:
        rows = self._fetchall(
            "SELECT status, COUNT(1) AS c FROM signals GROUP BY status;"
        )
        return {str(r["status"]): int(r["c"]) for r in rows}

    # articles

    def insert_article(
        self,
        *,
        signal_id: Optional[int],
        slug: str,
        headline: str,
        summary: str,
        content: Dict[str, Any],
        topics: Iterable[str],
        entities: Iterable[str],
        reading_time: int,
        is_draft: bool = True,
        published_at: Optional[str] = None,
    ) -> int:
        cur = self._execute(
            """
            INSERT INTO articles(
              signal_id, slug, headline, summary, content_json, topics_json,
              entities_json, reading_time, is_draft, published_at, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                signal_id,
                slug,
                headline,
                summary,
                json.dumps(content, ensure_ascii=False),
                dumps_list(topics),
                dumps_list(entities),
                int(reading_time),
                1 if is_draft else 0,
                published_at,
                utc_now_iso(),
            ),
        )
        return int(cur.lastrowid)

    def get_article(self, article_id: int) -> Optional[Article]:
        r = self._fetchone("SELECT * FROM articles WHERE id = ?;", (int(article_id),))
        return _row_to_article(r) if r else None

    def article_for_signal(self, signal_id: int) -> Optional[Article]:
        r = self._fetchone(
            "SELECT * FROM articles WHERE signal_id = ? ORDER BY id DESC LIMIT 1;",
            (int(signal_id),),
        )
        return _row_to_article(r) if r else None

    def has_published_article(self, signal_id: int) -> bool:
        r = self._fetchone(
            """
            SELECT 1 FROM articles
            WHERE signal_id = ? AND is_draft = 0 AND published_at IS NOT NULL
            LIMIT 1;
            """,
            (int(signal_id),),
        )
        return r is not None

    def slug_exists(self, slug: str) -> bool:
        r = self._fetchone("SELECT 1 FROM articles WHERE slug = ? LIMIT 1;", (slug,))
        return r is not None

    def mark_article_published(self, article_id: int, published_at: str) -> bool:
        cur = self._execute(
            """
            UPDATE articles SET is_draft = 0, published_at = ?
            WHERE id = ? AND is_draft = 1;
            """,
            (published_at, int(article_id)),
        )
        return cur.rowcount == 1

    def list_publishable_drafts(self, limit: int) -> List[Article]:
        """Drafts whose signal is approved and waiting for publication."""
        rows = self._fetchall(
            """
            SELECT a.*
            FROM articles a
            JOIN signals s ON s.id = a.signal_id
            WHERE a.is_draft = 1 AND s.status = ?
            ORDER BY a.id ASC
            LIMIT ?;
            """,
            (SignalStatus.APPROVED.value, int(limit)),
        )
        return [_row_to_article(r) for r in rows]

    # cycle logs

    def append_log(
        self, *, cycle_id: str, level: LogLevel, message: str, created_at: str
    ) -> int:
        cur = self._execute(
            "INSERT INTO cycle_logs(cycle_id, level, message, created_at) VALUES (?, ?, ?, ?);",
            (cycle_id, level.value, message, created_at),
        )
        return int(cur.lastrowid)

    def list_logs(self, cycle_id: str) -> List[CycleLog]:
        rows = self._fetchall(
            "SELECT * FROM cycle_logs WHERE cycle_id = ? ORDER BY id ASC;",
            (cycle_id,),
        )
        return [_row_to_log(r) for r in rows]

    def recent_logs(self, limit: int) -> List[CycleLog]:
        rows = self._fetchall(
            "SELECT * FROM cycle_logs ORDER BY id DESC LIMIT ?;", (int(limit),)
        )
        return [_row_to_log(r) for r in rows]

    def last_log_matching(self, prefix: str) -> Optional[CycleLog]:
        r = self._fetchone(
            "SELECT * FROM cycle_logs WHERE message LIKE ? ORDER BY id DESC LIMIT 1;",
            (f"{prefix}%",),
        )
        return _row_to_log(r) if r else None

    def delete_logs_before(self, before_iso: str) -> int:
        cur = self._execute(
            "DELETE FROM cycle_logs WHERE created_at < ?;", (before_iso,)
        )
        return int(cur.rowcount)


def open_store(db_path: str) -> Store:
    """Open the database, ensure its schema and wrap it in a Store."""
    try:
        conn = ensure_schema(db_path)
    except sqlite3.Error as e:
        raise PersistenceError(f"Failed to open store, db={db_path}, err={e}") from e
    return Store(conn)
