"""
SQLite event store implementation.

Durable event store using SQLite with async support via aiosqlite. The
``UNIQUE(aggregate_id, aggregate_type, version)`` constraint turns two
concurrent writers of the same stream into one success and one
OptimisticLockError, even across processes sharing the database file.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import aiosqlite

from crewflow.events.base import DomainEvent
from crewflow.events.registry import EventRegistry, default_registry
from crewflow.exceptions import OptimisticLockError
from crewflow.observability import (
    ATTR_AGGREGATE_ID,
    ATTR_AGGREGATE_TYPE,
    ATTR_DB_NAME,
    ATTR_DB_SYSTEM,
    ATTR_EVENT_COUNT,
    ATTR_EXPECTED_VERSION,
    Tracer,
    create_tracer,
)
from crewflow.stores.interface import (
    AppendResult,
    EventStore,
    EventStream,
    check_expected_version,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    global_position INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id TEXT NOT NULL UNIQUE,
    event_type TEXT NOT NULL,
    aggregate_type TEXT NOT NULL,
    aggregate_id TEXT NOT NULL,
    actor_id TEXT,
    version INTEGER NOT NULL,
    timestamp TEXT NOT NULL,
    payload TEXT NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE (aggregate_id, aggregate_type, version)
);
CREATE INDEX IF NOT EXISTS idx_events_aggregate ON events (aggregate_id, aggregate_type);
CREATE INDEX IF NOT EXISTS idx_events_type ON events (event_type);
"""


class SQLiteEventStore(EventStore):
    """
    SQLite implementation of the event store.

    Example:
        >>> async with SQLiteEventStore("crewflow.db") as store:
        ...     await store.initialize()
        ...     await store.append_events(order_id, "Order", [placed], expected_version=0)
    """

    def __init__(
        self,
        database: str,
        event_registry: EventRegistry | None = None,
        *,
        wal_mode: bool = True,
        busy_timeout: int = 5000,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the SQLite event store.

        Args:
            database: Path to SQLite database file or ':memory:'
            event_registry: Registry used to revive events (defaults to module registry)
            wal_mode: If True, enable WAL mode for better concurrency
            busy_timeout: Timeout in milliseconds when database is locked
            tracer: Optional custom Tracer instance
            enable_tracing: If True and OpenTelemetry is available, emit traces
        """
        self._database = database
        self._event_registry = event_registry or default_registry
        self._wal_mode = wal_mode
        self._busy_timeout = busy_timeout
        self._connection: aiosqlite.Connection | None = None
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def __aenter__(self) -> SQLiteEventStore:
        await self._connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    async def _connect(self) -> None:
        if self._connection is not None:
            return

        self._connection = await aiosqlite.connect(self._database)
        await self._connection.execute(f"PRAGMA busy_timeout = {self._busy_timeout}")
        if self._wal_mode:
            await self._connection.execute("PRAGMA journal_mode = WAL")
        self._connection.row_factory = aiosqlite.Row

        logger.debug(
            "Connected to SQLite database: %s (wal_mode=%s, busy_timeout=%d)",
            self._database,
            self._wal_mode,
            self._busy_timeout,
        )

    async def close(self) -> None:
        """Close the database connection. Safe to call multiple times."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.debug("Closed SQLite database connection: %s", self._database)

    async def initialize(self) -> None:
        """Create the events table if it doesn't exist. Idempotent."""
        if self._connection is None:
            await self._connect()
        conn = self._ensure_connected()
        await conn.executescript(SCHEMA)
        await conn.commit()
        logger.info("Initialized SQLite event store schema: %s", self._database)

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError(
                "Not connected to database. Use 'async with store:' or call initialize() first."
            )
        return self._connection

    async def _current_version(
        self, conn: aiosqlite.Connection, aggregate_id: UUID, aggregate_type: str
    ) -> int:
        cursor = await conn.execute(
            """
            SELECT COALESCE(MAX(version), 0)
            FROM events
            WHERE aggregate_id = ? AND aggregate_type = ?
            """,
            (str(aggregate_id), aggregate_type),
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def append_events(
        self,
        aggregate_id: UUID,
        aggregate_type: str,
        events: list[DomainEvent],
        expected_version: int,
    ) -> AppendResult:
        """
        Append events to an aggregate's event stream in one transaction.

        Raises:
            OptimisticLockError: If expected version doesn't match, or another
                writer committed the same versions first
        """
        if not events:
            return AppendResult.successful(expected_version)

        with self._tracer.span(
            "crewflow.sqlite_event_store.append_events",
            {
                ATTR_AGGREGATE_ID: str(aggregate_id),
                ATTR_AGGREGATE_TYPE: aggregate_type,
                ATTR_EVENT_COUNT: len(events),
                ATTR_EXPECTED_VERSION: expected_version,
                ATTR_DB_SYSTEM: "sqlite",
                ATTR_DB_NAME: self._database,
            },
        ):
            return await self._do_append_events(
                aggregate_id, aggregate_type, events, expected_version
            )

    async def _do_append_events(
        self,
        aggregate_id: UUID,
        aggregate_type: str,
        events: list[DomainEvent],
        expected_version: int,
    ) -> AppendResult:
        conn = self._ensure_connected()

        try:
            current_version = await self._current_version(conn, aggregate_id, aggregate_type)
            check_expected_version(aggregate_id, expected_version, current_version)

            new_version = current_version
            last_global_position = 0
            now = datetime.now(UTC).isoformat()

            for event in events:
                cursor = await conn.execute(
                    "SELECT 1 FROM events WHERE event_id = ?",
                    (str(event.event_id),),
                )
                if await cursor.fetchone():
                    logger.debug("Event %s already exists, skipping", event.event_id)
                    continue

                new_version += 1
                cursor = await conn.execute(
                    """
                    INSERT INTO events (
                        event_id, event_type, aggregate_type, aggregate_id,
                        actor_id, version, timestamp, payload, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        str(event.event_id),
                        event.event_type,
                        aggregate_type,
                        str(aggregate_id),
                        event.actor_id,
                        new_version,
                        event.occurred_at.isoformat(),
                        json.dumps(event.to_dict()),
                        now,
                    ),
                )
                last_global_position = cursor.lastrowid or 0

            await conn.commit()

            logger.debug(
                "Appended %d events to %s/%s, new version: %d",
                len(events),
                aggregate_type,
                aggregate_id,
                new_version,
            )
            return AppendResult.successful(new_version, last_global_position)

        except OptimisticLockError:
            await conn.rollback()
            raise
        except aiosqlite.IntegrityError as e:
            await conn.rollback()
            actual_version = await self._current_version(conn, aggregate_id, aggregate_type)
            raise OptimisticLockError(aggregate_id, expected_version, actual_version) from e

    async def get_events(
        self,
        aggregate_id: UUID,
        aggregate_type: str | None = None,
        from_version: int = 0,
    ) -> EventStream:
        conn = self._ensure_connected()

        query = """
            SELECT event_type, aggregate_type, version, payload
            FROM events
            WHERE aggregate_id = ? AND version > ?
        """
        params: list[Any] = [str(aggregate_id), from_version]
        if aggregate_type:
            query += " AND aggregate_type = ?"
            params.append(aggregate_type)
        query += " ORDER BY version ASC"

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()

        events: list[DomainEvent] = []
        resolved_type = aggregate_type or "Unknown"
        version = from_version
        for row in rows:
            event_class = self._event_registry.get(row[0])
            events.append(event_class.model_validate(json.loads(row[3])))
            resolved_type = row[1]
            version = row[2]

        return EventStream(
            aggregate_id=aggregate_id,
            aggregate_type=resolved_type,
            events=events,
            version=version,
        )

    async def event_exists(self, event_id: UUID) -> bool:
        conn = self._ensure_connected()
        cursor = await conn.execute(
            "SELECT 1 FROM events WHERE event_id = ? LIMIT 1",
            (str(event_id),),
        )
        return await cursor.fetchone() is not None

    async def get_stream_version(self, aggregate_id: UUID, aggregate_type: str) -> int:
        conn = self._ensure_connected()
        return await self._current_version(conn, aggregate_id, aggregate_type)

    @property
    def database(self) -> str:
        return self._database


__all__ = ["SCHEMA", "SQLiteEventStore"]
