"""SQLite-backed durable store for pending uploads."""

import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from constructrack.exceptions import StoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueItem:
    """A captured photo waiting for confirmed delivery."""

    id: str
    payload: bytes
    destination: str
    enqueued_at: datetime
    attempts: int = 0
    last_error: str | None = None

    @property
    def size(self) -> int:
        """Payload size in bytes."""
        return len(self.payload)


class QueueStore:
    """Durable key-value store of QueueItems keyed by id.

    Every write is committed with synchronous=FULL before the call returns,
    so an item survives an abrupt process termination right after put().
    Each operation runs inside one lock-guarded critical section and one
    SQLite transaction, which makes writes linearizable and get_all() a
    consistent snapshot.

    Pass ":memory:" as db_path for a throwaway store in tests.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Open (and create if needed) the queue database.

        Args:
            db_path: Path to the SQLite database file

        Raises:
            StoreError: If the database cannot be opened or initialized
        """
        self.db_path = db_path
        self._lock = threading.Lock()

        try:
            if str(db_path) != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=FULL")
            self._create_table()
        except (sqlite3.Error, OSError) as e:
            raise StoreError(f"Cannot open queue store at {db_path}: {e}") from e

    def _create_table(self) -> None:
        """Create the queue table if it doesn't exist."""
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS pending_uploads (
                    id TEXT PRIMARY KEY,
                    destination TEXT NOT NULL,
                    payload BLOB NOT NULL,
                    enqueued_at TEXT NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT
                )
            """)
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_pending_enqueued
                ON pending_uploads (enqueued_at)
            """)

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> QueueItem:
        return QueueItem(
            id=row["id"],
            payload=bytes(row["payload"]),
            destination=row["destination"],
            enqueued_at=datetime.fromisoformat(row["enqueued_at"]),
            attempts=row["attempts"],
            last_error=row["last_error"],
        )

    def put(self, item: QueueItem) -> None:
        """Insert or overwrite an item, durably.

        Args:
            item: The item to persist

        Raises:
            StoreError: If the write could not be committed
        """
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        """
                        INSERT OR REPLACE INTO pending_uploads
                            (id, destination, payload, enqueued_at, attempts, last_error)
                        VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (
                            item.id,
                            item.destination,
                            sqlite3.Binary(item.payload),
                            item.enqueued_at.isoformat(timespec="microseconds"),
                            item.attempts,
                            item.last_error,
                        ),
                    )
            except sqlite3.Error as e:
                raise StoreError(f"Failed to persist item {item.id}: {e}") from e
        logger.debug("Item persisted: item_id=%s, size=%d", item.id, item.size)

    def delete(self, item_id: str) -> None:
        """Remove an item. Deleting an absent id is a no-op.

        Raises:
            StoreError: If the delete could not be committed
        """
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        "DELETE FROM pending_uploads WHERE id = ?",
                        (item_id,),
                    )
            except sqlite3.Error as e:
                raise StoreError(f"Failed to delete item {item_id}: {e}") from e

    def get(self, item_id: str) -> QueueItem | None:
        """Return one pending item, or None if it is not in the store."""
        with self._lock:
            try:
                row = self._conn.execute(
                    "SELECT * FROM pending_uploads WHERE id = ?",
                    (item_id,),
                ).fetchone()
                return self._row_to_item(row) if row else None
            except (sqlite3.Error, ValueError, TypeError) as e:
                raise StoreError(f"Failed to read item {item_id}: {e}") from e

    def get_all(self) -> list[QueueItem]:
        """Return a snapshot of every pending item, oldest first.

        Raises:
            StoreError: If the store cannot be read
        """
        with self._lock:
            try:
                rows = self._conn.execute(
                    "SELECT * FROM pending_uploads ORDER BY enqueued_at ASC, id ASC"
                ).fetchall()
                return [self._row_to_item(row) for row in rows]
            except (sqlite3.Error, ValueError, TypeError) as e:
                raise StoreError(f"Failed to read queue: {e}") from e

    def count(self) -> int:
        """Return the number of pending items."""
        with self._lock:
            try:
                row = self._conn.execute("SELECT COUNT(*) FROM pending_uploads").fetchone()
            except sqlite3.Error as e:
                raise StoreError(f"Failed to count queue: {e}") from e
        return row[0]

    def oldest_enqueued_at(self) -> datetime | None:
        """Return the enqueue time of the oldest pending item."""
        with self._lock:
            try:
                row = self._conn.execute(
                    "SELECT MIN(enqueued_at) FROM pending_uploads"
                ).fetchone()
                return datetime.fromisoformat(row[0]) if row[0] else None
            except (sqlite3.Error, ValueError, TypeError) as e:
                raise StoreError(f"Failed to read queue: {e}") from e

    def record_failure(self, item_id: str, error: str) -> None:
        """Bump the attempt counter and remember the last error.

        Bookkeeping only: the item stays pending regardless of the count.
        No-op when the item is no longer in the store.
        """
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        """
                        UPDATE pending_uploads
                        SET attempts = attempts + 1, last_error = ?
                        WHERE id = ?
                        """,
                        (error, item_id),
                    )
            except sqlite3.Error as e:
                raise StoreError(f"Failed to update item {item_id}: {e}") from e

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "QueueStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
