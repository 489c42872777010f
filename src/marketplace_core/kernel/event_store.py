"""
SQLite Event Store - Append-only event log with idempotency

The event store is the persistence interface of the core. It provides:
- Append-only semantics (events never modified or deleted)
- Atomic compare-and-store per aggregate (optimistic locking on version)
- Idempotency via command_id (same command = same events, per stream)
- All-or-nothing append across several streams in one transaction

Fun fact: Double-entry bookkeeping, popularized by Luca Pacioli in 1494, never
erases an entry - mistakes are fixed by posting a correcting one. Our bids,
joins and score adjustments follow the same discipline.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator

from marketplace_core.kernel.errors import (
    CommandIdempotencyViolation,
    Conflict,
    EventStoreError,
)
from marketplace_core.kernel.events import Event
from marketplace_core.kernel.logging import get_logger
from marketplace_core.kernel.metrics import conflicts_total, events_appended_total
from marketplace_core.kernel.retry import retry_on_sqlite_lock

logger = get_logger(__name__)

# (stream_id, expected_version, events)
StreamAppend = tuple[str, int, list[Event]]

_EVENT_COLUMNS = """
    event_id, stream_id, stream_type, version,
    command_id, event_type, occurred_at, actor_id, payload_json
"""


class SQLiteEventStore:
    """
    SQLite-based event store with append-only semantics

    Uses WAL mode for crash safety and concurrent readers.

    Schema:
    - events table: append-only event log
    - Unique constraint: (stream_id, version) - the compare-and-store guard
    - Indices: stream, event type, time, command_id
    """

    def __init__(self, db_path: str | Path) -> None:
        """
        Initialize event store with SQLite database

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        """Create tables and indices if they don't exist"""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    event_id TEXT PRIMARY KEY,
                    stream_id TEXT NOT NULL,
                    stream_type TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    command_id TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    occurred_at TEXT NOT NULL,
                    actor_id TEXT,
                    payload_json TEXT NOT NULL,

                    UNIQUE(stream_id, version)
                )
            """)

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_stream "
                "ON events(stream_id, version)"
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_events_type ON events(event_type)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_events_time ON events(occurred_at)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_command ON events(command_id)"
            )

            conn.commit()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Connection context manager - always closes the connection"""
        conn = sqlite3.connect(str(self.db_path), timeout=5.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def append(
        self,
        stream_id: str,
        expected_version: int,
        events: list[Event],
    ) -> list[Event]:
        """
        Append events to one stream with optimistic locking

        Args:
            stream_id: Aggregate identifier
            expected_version: Stream version the events were decided against
            events: Events to append (sequential versions)

        Returns:
            The appended events (or the original ones on idempotent replay)

        Raises:
            Conflict: If the stream moved past expected_version
            EventStoreError: On other database errors
        """
        return self.append_batch([(stream_id, expected_version, events)])

    @retry_on_sqlite_lock()
    def append_batch(self, batch: list[StreamAppend]) -> list[Event]:
        """
        Append events to several streams atomically

        Used when one operation changes an aggregate and the reputation
        records it affects: either every stream gets its events or none does.

        Idempotency is per (command_id, stream): a stream that already holds
        events for the command contributes its existing events and is not
        written again.

        Args:
            batch: (stream_id, expected_version, events) triples

        Returns:
            All events now stored for the batch, in batch order

        Raises:
            Conflict: If any stream moved past its expected_version
            CommandIdempotencyViolation: If a concurrent writer used the same
                command_id with different events
            EventStoreError: On other database errors
        """
        batch = [entry for entry in batch if entry[2]]
        if not batch:
            return []

        with self._connect() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                result: list[Event] = []
                written: list[Event] = []

                for stream_id, expected_version, events in batch:
                    existing = self._get_stream_events_for_command(
                        conn, stream_id, events[0].command_id
                    )
                    if existing:
                        result.extend(existing)
                        continue

                    current_version = self._get_stream_version(conn, stream_id)
                    if current_version != expected_version:
                        conflicts_total.labels(stream_type=events[0].stream_type).inc()
                        raise Conflict(stream_id, expected_version, current_version)

                    for event in events:
                        self._insert(conn, event)
                    result.extend(events)
                    written.extend(events)

                conn.commit()

            except sqlite3.IntegrityError as e:
                conn.rollback()
                error_msg = str(e).lower()
                if "stream_id" in error_msg and "version" in error_msg:
                    stream_id, expected_version, events = batch[0]
                    raise Conflict(
                        stream_id,
                        expected_version,
                        self._get_stream_version(conn, stream_id),
                    ) from e
                if "event_id" in error_msg:
                    raise CommandIdempotencyViolation(
                        batch[0][2][0].command_id,
                        f"Event id collision while appending command {batch[0][2][0].command_id}",
                    ) from e
                raise EventStoreError(f"Failed to append events: {e}") from e

            except (Conflict, CommandIdempotencyViolation):
                conn.rollback()
                raise

            except sqlite3.OperationalError:
                conn.rollback()
                raise

            except Exception as e:
                conn.rollback()
                raise EventStoreError(f"Unexpected error appending events: {e}") from e

        for event in written:
            events_appended_total.labels(
                stream_type=event.stream_type, event_type=event.event_type
            ).inc()
        logger.debug(
            "Events appended",
            streams=len(batch),
            events_written=len(written),
            events_replayed=len(result) - len(written),
        )
        return result

    def _insert(self, conn: sqlite3.Connection, event: Event) -> None:
        conn.execute(
            f"INSERT INTO events ({_EVENT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                event.event_id,
                event.stream_id,
                event.stream_type,
                event.version,
                event.command_id,
                event.event_type,
                event.occurred_at.isoformat(),
                event.actor_id,
                json.dumps(event.payload),
            ),
        )

    @retry_on_sqlite_lock()
    def load_stream(self, stream_id: str, after_version: int = 0) -> list[Event]:
        """
        Load events of one stream in version order

        Args:
            stream_id: Aggregate identifier
            after_version: Only events with a higher version (catch-up reads)

        Returns:
            List of events (empty if stream doesn't exist)
        """
        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                SELECT {_EVENT_COLUMNS}
                FROM events
                WHERE stream_id = ? AND version > ?
                ORDER BY version ASC
            """,
                (stream_id, after_version),
            )
            return [self._row_to_event(row) for row in cursor.fetchall()]

    @retry_on_sqlite_lock()
    def load_all_events(self, limit: int | None = None) -> list[Event]:
        """
        Load every event in insertion order (for projection rebuilding)

        Args:
            limit: Maximum number of events to return, or None for all
        """
        with self._connect() as conn:
            query = f"SELECT {_EVENT_COLUMNS} FROM events ORDER BY rowid ASC"
            params: tuple = ()
            if limit:
                query += " LIMIT ?"
                params = (limit,)
            cursor = conn.execute(query, params)
            return [self._row_to_event(row) for row in cursor.fetchall()]

    def query_events(
        self,
        *,
        stream_type: str | None = None,
        event_type: str | None = None,
        from_time: datetime | None = None,
        to_time: datetime | None = None,
        limit: int | None = None,
    ) -> list[Event]:
        """
        Query events by various criteria

        Args:
            stream_type: Filter by stream type (e.g., "order", "auction")
            event_type: Filter by event type (e.g., "AuctionClosed")
            from_time: Events at or after this time
            to_time: Events at or before this time
            limit: Maximum number of events to return

        Returns:
            List of matching events in chronological order
        """
        with self._connect() as conn:
            conditions = []
            params: list = []

            if stream_type:
                conditions.append("stream_type = ?")
                params.append(stream_type)

            if event_type:
                conditions.append("event_type = ?")
                params.append(event_type)

            if from_time:
                conditions.append("occurred_at >= ?")
                params.append(from_time.isoformat())

            if to_time:
                conditions.append("occurred_at <= ?")
                params.append(to_time.isoformat())

            where_clause = " AND ".join(conditions) if conditions else "1=1"

            query = f"""
                SELECT {_EVENT_COLUMNS}
                FROM events
                WHERE {where_clause}
                ORDER BY occurred_at ASC, rowid ASC
            """

            if limit:
                query += " LIMIT ?"
                params.append(limit)

            cursor = conn.execute(query, params)
            return [self._row_to_event(row) for row in cursor.fetchall()]

    def events_for_command(self, command_id: str) -> list[Event]:
        """All events produced by a command, across streams"""
        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                SELECT {_EVENT_COLUMNS}
                FROM events
                WHERE command_id = ?
                ORDER BY rowid ASC
            """,
                (command_id,),
            )
            return [self._row_to_event(row) for row in cursor.fetchall()]

    def get_stream_version(self, stream_id: str) -> int:
        """
        Get current version of a stream

        Returns:
            Current stream version (0 if stream doesn't exist)
        """
        with self._connect() as conn:
            return self._get_stream_version(conn, stream_id)

    def _get_stream_version(self, conn: sqlite3.Connection, stream_id: str) -> int:
        cursor = conn.execute(
            "SELECT MAX(version) FROM events WHERE stream_id = ?",
            (stream_id,),
        )
        row = cursor.fetchone()
        return row[0] if row[0] is not None else 0

    def _get_stream_events_for_command(
        self, conn: sqlite3.Connection, stream_id: str, command_id: str
    ) -> list[Event]:
        cursor = conn.execute(
            f"""
            SELECT {_EVENT_COLUMNS}
            FROM events
            WHERE stream_id = ? AND command_id = ?
            ORDER BY version ASC
        """,
            (stream_id, command_id),
        )
        return [self._row_to_event(row) for row in cursor.fetchall()]

    def _row_to_event(self, row: sqlite3.Row) -> Event:
        """Convert SQLite row to Event object"""
        return Event(
            event_id=row["event_id"],
            stream_id=row["stream_id"],
            stream_type=row["stream_type"],
            version=row["version"],
            command_id=row["command_id"],
            event_type=row["event_type"],
            occurred_at=datetime.fromisoformat(row["occurred_at"]),
            actor_id=row["actor_id"],
            payload=json.loads(row["payload_json"]),
        )

    def count_events(self) -> int:
        """Get total number of events in store"""
        with self._connect() as conn:
            cursor = conn.execute("SELECT COUNT(*) FROM events")
            return cursor.fetchone()[0]

    def count_streams(self, stream_type: str | None = None) -> int:
        """Get number of distinct streams, optionally of one type"""
        with self._connect() as conn:
            if stream_type:
                cursor = conn.execute(
                    "SELECT COUNT(DISTINCT stream_id) FROM events WHERE stream_type = ?",
                    (stream_type,),
                )
            else:
                cursor = conn.execute("SELECT COUNT(DISTINCT stream_id) FROM events")
            return cursor.fetchone()[0]
