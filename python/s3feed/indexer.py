"""
Indexer - Document index and feed state, backed by SQLite.

Holds the indexed documents of every feed plus the small per-feed state
(enable flag and last scan watermark) that the scan loop and the control
commands share. Writes are last-writer-wins rows, so no cross-process
locking is needed beyond SQLite's own.
"""

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Protocol, Set

from .config import get_config, FeedConfig
from .errors import FlushError, IndexSetupError
from .models import BatchOperation, BulkReport, Document, FeedStatus, OpType, OperationFailure


logger = logging.getLogger(__name__)


class SearchIndex(Protocol):
    """Document index capability consumed by the sync engine."""

    def ensure_index(self, index_name: str, type_name: str) -> None: ...

    def bulk_submit(
        self, index_name: str, type_name: str, ops: Iterable[BatchOperation]
    ) -> BulkReport: ...

    def get_document_ids(self, index_name: str, type_name: str, limit: int) -> Set[str]: ...


class FeedStateStore(Protocol):
    """Per-feed enable flag and watermark, keyed by feed id."""

    def get_feed_status(self, feed_id: str) -> FeedStatus: ...

    def set_feed_status(self, feed_id: str, status: FeedStatus) -> None: ...

    def get_watermark(self, feed_id: str) -> Optional[int]: ...

    def set_watermark(self, feed_id: str, timestamp: int) -> None: ...


class SqliteIndex:
    """
    SQLite implementation of both SearchIndex and FeedStateStore.

    Tables:
    - indices: known index/type pairs (the "mapping")
    - documents: one row per (index, type, id), source stored as bytes
    - feed_state: status and watermark per feed
    """

    def __init__(self, config: FeedConfig | None = None, db_path: Path | None = None):
        self.config = config or get_config()
        self.db_path = Path(db_path or self.config.db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # Shared by the scan worker thread and control calls
            conn = sqlite3.connect(
                str(self.db_path), check_same_thread=False, timeout=30.0
            )
            try:
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode = WAL")
                conn.execute("PRAGMA synchronous = NORMAL")
                self._init_tables(conn)
            except sqlite3.Error:
                conn.close()
                raise
            self._conn = conn
        return self._conn

    def _init_tables(self, conn: sqlite3.Connection):
        """Create tables if they don't exist."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS indices (
                index_name TEXT NOT NULL,
                type_name TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                PRIMARY KEY (index_name, type_name)
            );

            CREATE TABLE IF NOT EXISTS documents (
                index_name TEXT NOT NULL,
                type_name TEXT NOT NULL,
                doc_id TEXT NOT NULL,
                source BLOB NOT NULL,
                is_raw INTEGER NOT NULL DEFAULT 0,
                indexed_at INTEGER NOT NULL,
                PRIMARY KEY (index_name, type_name, doc_id)
            );

            CREATE TABLE IF NOT EXISTS feed_state (
                feed_id TEXT PRIMARY KEY,
                status TEXT,
                watermark INTEGER,
                updated_at INTEGER NOT NULL
            );
        """)
        conn.commit()

    # --- SearchIndex ---

    def ensure_index(self, index_name: str, type_name: str) -> None:
        """
        Create the index/type pair if it doesn't exist.

        Raises:
            IndexSetupError: the database cannot be opened or written
        """
        try:
            with self._lock:
                conn = self._get_connection()
                if self.mapping_exists(index_name, type_name):
                    logger.debug(f"Mapping [{index_name}]/[{type_name}] already exists")
                    return
                with conn:
                    conn.execute(
                        "INSERT INTO indices (index_name, type_name, created_at) VALUES (?, ?, ?)",
                        (index_name, type_name, _now()),
                    )
                logger.debug(f"Mapping [{index_name}]/[{type_name}] successfully created")
        except sqlite3.Error as e:
            raise IndexSetupError(
                f"Failed to create mapping for [{index_name}/{type_name}]: {e}"
            ) from e

    def mapping_exists(self, index_name: str, type_name: str) -> bool:
        """Check if the index/type pair has been created."""
        with self._lock:
            cursor = self._get_connection().execute(
                "SELECT 1 FROM indices WHERE index_name = ? AND type_name = ?",
                (index_name, type_name),
            )
            return cursor.fetchone() is not None

    def bulk_submit(
        self, index_name: str, type_name: str, ops: Iterable[BatchOperation]
    ) -> BulkReport:
        """
        Apply operations in one transaction, isolating each in a savepoint.

        A failing operation is reported and rolled back on its own; the
        others are still committed.

        Raises:
            FlushError: the transaction itself could not be committed
        """
        ops = list(ops)
        report = BulkReport(submitted=len(ops))
        now = _now()

        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute("BEGIN")
                for op in ops:
                    conn.execute("SAVEPOINT op")
                    try:
                        self._apply(conn, index_name, type_name, op, now)
                        conn.execute("RELEASE SAVEPOINT op")
                    except Exception as e:
                        conn.execute("ROLLBACK TO SAVEPOINT op")
                        conn.execute("RELEASE SAVEPOINT op")
                        report.failures.append(
                            OperationFailure(op_type=op.op_type, doc_id=op.doc_id, reason=str(e))
                        )
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise FlushError(f"Bulk request on [{index_name}/{type_name}] failed: {e}") from e
            except BaseException:
                # Never leave BEGIN open for the next `with conn:` to commit
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

        return report

    def _apply(self, conn, index_name: str, type_name: str, op: BatchOperation, now: int):
        if op.op_type is OpType.DELETE:
            logger.debug(f"Deleting from index {index_name}, {type_name}, {op.doc_id}")
            conn.execute(
                "DELETE FROM documents WHERE index_name = ? AND type_name = ? AND doc_id = ?",
                (index_name, type_name, op.doc_id),
            )
            return

        document = op.document
        if document is None:
            raise ValueError(f"Write of {op.doc_id} has no document")
        if document.raw is not None:
            source, is_raw = document.raw, 1
        else:
            source, is_raw = json.dumps(document.fields).encode("utf-8"), 0

        logger.debug(f"Indexing in {index_name}, {type_name}, {op.doc_id}")
        conn.execute(
            """
            INSERT INTO documents (index_name, type_name, doc_id, source, is_raw, indexed_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(index_name, type_name, doc_id) DO UPDATE SET
                source = excluded.source,
                is_raw = excluded.is_raw,
                indexed_at = excluded.indexed_at
            """,
            (index_name, type_name, op.doc_id, source, is_raw, now),
        )

    def get_document_ids(self, index_name: str, type_name: str, limit: int) -> Set[str]:
        """
        Get ids of indexed documents, at most `limit` of them.

        Collections larger than the limit are under-reported.
        """
        with self._lock:
            cursor = self._get_connection().execute(
                "SELECT doc_id FROM documents WHERE index_name = ? AND type_name = ? "
                "ORDER BY doc_id LIMIT ?",
                (index_name, type_name, limit),
            )
            return {row[0] for row in cursor.fetchall()}

    def get_document(self, index_name: str, type_name: str, doc_id: str) -> Optional[Document]:
        """Read back one document (None if absent)."""
        with self._lock:
            cursor = self._get_connection().execute(
                "SELECT source, is_raw FROM documents "
                "WHERE index_name = ? AND type_name = ? AND doc_id = ?",
                (index_name, type_name, doc_id),
            )
            row = cursor.fetchone()
        if row is None:
            return None
        if row["is_raw"]:
            return Document(id=doc_id, raw=bytes(row["source"]))
        return Document(id=doc_id, fields=json.loads(bytes(row["source"]).decode("utf-8")))

    # --- FeedStateStore ---

    def get_feed_status(self, feed_id: str) -> FeedStatus:
        """Stored status of a feed, UNKNOWN if never set."""
        row = self._get_state(feed_id)
        if row is None or row["status"] is None:
            return FeedStatus.UNKNOWN
        try:
            return FeedStatus(row["status"])
        except ValueError:
            logger.warning(f"Unknown status {row['status']!r} recorded for {feed_id}")
            return FeedStatus.UNKNOWN

    def set_feed_status(self, feed_id: str, status: FeedStatus) -> None:
        with self._lock:
            conn = self._get_connection()
            with conn:
                conn.execute(
                    """
                    INSERT INTO feed_state (feed_id, status, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(feed_id) DO UPDATE SET
                        status = excluded.status,
                        updated_at = excluded.updated_at
                    """,
                    (feed_id, status.value, _now()),
                )

    def get_watermark(self, feed_id: str) -> Optional[int]:
        """Last scan time of a feed in ms, None before the first cycle."""
        row = self._get_state(feed_id)
        if row is None or row["watermark"] is None:
            return None
        return int(row["watermark"])

    def set_watermark(self, feed_id: str, timestamp: int) -> None:
        logger.debug(f"Updating lastScanTime of {feed_id}: {timestamp}")
        with self._lock:
            conn = self._get_connection()
            with conn:
                conn.execute(
                    """
                    INSERT INTO feed_state (feed_id, watermark, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(feed_id) DO UPDATE SET
                        watermark = excluded.watermark,
                        updated_at = excluded.updated_at
                    """,
                    (feed_id, timestamp, _now()),
                )

    def _get_state(self, feed_id: str) -> Optional[sqlite3.Row]:
        with self._lock:
            cursor = self._get_connection().execute(
                "SELECT status, watermark FROM feed_state WHERE feed_id = ?",
                (feed_id,),
            )
            return cursor.fetchone()

    def close(self):
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None


def _now() -> int:
    return int(datetime.now().timestamp())


def get_indexer(config: FeedConfig | None = None) -> SqliteIndex:
    """Create a new index instance."""
    return SqliteIndex(config)
