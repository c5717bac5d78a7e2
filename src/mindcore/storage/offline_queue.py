# src/mindcore/storage/offline_queue.py
"""
Durable offline queue for memory items and feedback signals, using aiosqlite.

While the memory backend is unreachable, everything that would have been
sent is appended here and delivered later by the sync protocol
(:mod:`mindcore.degradation`). One SQLite file per project holds two
queues, one table each, plus a small ``sync_state`` table recording the
last sync attempt and the last successful sync per queue.

Record lifecycle: appended unsynced, marked synced once the backend has
confirmed the write, then removed by :meth:`_OfflineQueue.clear_synced`.
A record is never deleted while unsynced (except by an explicit
:meth:`_OfflineQueue.clear`), and a synced record is never returned by
:meth:`_OfflineQueue.get_unsynced` again.
"""

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Generic, Iterable, List, Optional, Sequence, Type, TypeVar, Union

import aiosqlite
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import OfflineStorageError
from ..models import FactType, FeedbackSignal, Memory, MemoryItem, OfflineRecord, QueueStats, utcnow

logger = logging.getLogger(__name__)

MEMORY_TABLE = "offline_memories"
FEEDBACK_TABLE = "offline_signals"
SYNC_STATE_TABLE = "sync_state"

P = TypeVar("P", bound=BaseModel)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt is not None else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def resolve_queue_path(path: Union[str, Path], project_path: Union[str, Path]) -> Path:
    """
    Resolve the queue database location, relative to the project directory.

    Raises:
        OfflineStorageError: If the resolved path escapes the project directory.
    """
    project = Path(project_path).expanduser().resolve()
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = project / candidate
    resolved = candidate.resolve()
    if not resolved.is_relative_to(project):
        raise OfflineStorageError(f"Offline queue path must be within the project directory: {resolved}")
    return resolved


class OfflineStorage:
    """
    Owns the aiosqlite connection shared by both offline queues.

    All statements go through :meth:`transaction`, which serializes access
    with an ``asyncio.Lock`` so that a batch insert and a concurrent sync
    pass never interleave inside one SQLite transaction.
    """

    def __init__(self, db_path: Union[str, Path]) -> None:
        self.db_path = Path(db_path)
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self.memories = OfflineMemoryStore(self)
        self.feedback = OfflineFeedbackQueue(self)

    @classmethod
    async def open_for_project(cls, project_path: Union[str, Path], path: Union[str, Path] = ".mindcore/offline.db") -> "OfflineStorage":
        storage = cls(resolve_queue_path(path, project_path))
        await storage.open()
        return storage

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def open(self) -> None:
        """Create the database file and tables if needed."""
        if self._conn is not None:
            return
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = await aiosqlite.connect(self.db_path, isolation_level=None)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA journal_mode = WAL;")
            for table in (MEMORY_TABLE, FEEDBACK_TABLE):
                await self._conn.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        id TEXT NOT NULL UNIQUE,
                        payload TEXT NOT NULL,
                        queued_at TEXT NOT NULL,
                        synced_at TEXT
                    )
                """)
                await self._conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{table}_synced ON {table} (synced_at);")
            await self._conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {SYNC_STATE_TABLE} (
                    queue TEXT PRIMARY KEY,
                    last_sync_attempt TEXT,
                    last_sync_success TEXT
                )
            """)
            logger.debug(f"Offline queue opened at {self.db_path}")
        except (aiosqlite.Error, OSError) as e:
            logger.error(f"Failed to open offline queue at {self.db_path}: {e}")
            if self._conn is not None:
                await self._conn.close()
                self._conn = None
            raise OfflineStorageError(f"Could not open offline queue database: {e}") from e

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.debug("Offline queue closed")

    async def __aenter__(self) -> "OfflineStorage":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @asynccontextmanager
    async def transaction(self, description: str) -> AsyncIterator[aiosqlite.Connection]:
        """
        Run a block of statements atomically.

        Raises:
            OfflineStorageError: If the connection is closed or any statement fails;
                the transaction is rolled back first.
        """
        if self._conn is None:
            raise OfflineStorageError("Offline queue database is not open.")
        conn = self._conn
        async with self._lock:
            try:
                await conn.execute("BEGIN IMMEDIATE;")
                yield conn
                await conn.execute("COMMIT;")
            except aiosqlite.Error as e:
                logger.error(f"Offline queue error while {description}: {e}")
                await self._rollback(conn)
                raise OfflineStorageError(f"Database error while {description}: {e}") from e
            except BaseException:
                await self._rollback(conn)
                raise

    @staticmethod
    async def _rollback(conn: aiosqlite.Connection) -> None:
        try:
            await conn.execute("ROLLBACK;")
        except aiosqlite.Error as rb_e:
            logger.debug(f"Rollback skipped: {rb_e}")


class _OfflineQueue(Generic[P]):
    """One append-only queue table."""

    table: str = ""
    queue_name: str = ""
    id_prefix: str = ""
    payload_model: Type[BaseModel] = BaseModel

    def __init__(self, storage: OfflineStorage) -> None:
        self._storage = storage

    def _new_id(self) -> str:
        return f"{self.id_prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"

    def _row_to_record(self, row: aiosqlite.Row) -> Optional[OfflineRecord]:
        try:
            payload = self.payload_model.model_validate_json(row["payload"])
            return OfflineRecord(
                id=row["id"],
                payload=payload,
                queued_at=_parse_dt(row["queued_at"]),
                synced_at=_parse_dt(row["synced_at"]),
            )
        except (PydanticValidationError, ValueError) as e:
            logger.warning(f"Skipping unreadable {self.queue_name} record {row['id']}: {e}")
            return None

    async def _select(self, where: str = "", params: Sequence[Any] = (), order: str = "seq ASC", limit: Optional[int] = None) -> List[OfflineRecord]:
        sql = f"SELECT id, payload, queued_at, synced_at FROM {self.table}"
        if where:
            sql += f" WHERE {where}"
        sql += f" ORDER BY {order}"
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        records: List[OfflineRecord] = []
        async with self._storage.transaction(f"reading {self.queue_name} queue") as conn:
            async with conn.execute(sql, tuple(params)) as cursor:
                async for row in cursor:
                    record = self._row_to_record(row)
                    if record is not None:
                        records.append(record)
        return records

    # ------------------------------------------------------------------ writes

    async def enqueue(self, payload: P) -> str:
        """Append one unsynced record and return its id."""
        ids = await self.enqueue_batch([payload])
        return ids[0]

    async def enqueue_batch(self, payloads: Iterable[P]) -> List[str]:
        """Append several records atomically; either all are queued or none."""
        now = _iso(utcnow())
        rows = [(self._new_id(), p.model_dump_json(), now) for p in payloads]
        if not rows:
            return []
        async with self._storage.transaction(f"queueing {len(rows)} {self.queue_name} record(s)") as conn:
            await conn.executemany(
                f"INSERT INTO {self.table} (id, payload, queued_at) VALUES (?, ?, ?)", rows
            )
        logger.debug(f"Queued {len(rows)} {self.queue_name} record(s) offline")
        return [r[0] for r in rows]

    async def mark_synced(self, ids: Sequence[str]) -> int:
        """
        Mark records as delivered. Idempotent: already-synced ids keep their
        original ``synced_at`` and unknown ids are ignored.

        Returns:
            The number of records newly marked.
        """
        if not ids:
            return 0
        now = _iso(utcnow())
        placeholders = ",".join("?" for _ in ids)
        async with self._storage.transaction(f"marking {self.queue_name} records synced") as conn:
            cursor = await conn.execute(
                f"UPDATE {self.table} SET synced_at = ? WHERE id IN ({placeholders}) AND synced_at IS NULL",
                (now, *ids),
            )
            changed = cursor.rowcount
            await cursor.close()
            await self._upsert_state(conn, last_sync_success=now)
        return changed

    async def record_sync_attempt(self) -> None:
        async with self._storage.transaction(f"recording {self.queue_name} sync attempt") as conn:
            await self._upsert_state(conn, last_sync_attempt=_iso(utcnow()))

    async def _upsert_state(self, conn: aiosqlite.Connection, **values: Optional[str]) -> None:
        await conn.execute(
            f"INSERT OR IGNORE INTO {SYNC_STATE_TABLE} (queue) VALUES (?)", (self.queue_name,)
        )
        for column, value in values.items():
            await conn.execute(
                f"UPDATE {SYNC_STATE_TABLE} SET {column} = ? WHERE queue = ?", (value, self.queue_name)
            )

    async def clear_synced(self) -> int:
        """Delete synced records and return how many were removed."""
        async with self._storage.transaction(f"compacting {self.queue_name} queue") as conn:
            cursor = await conn.execute(f"DELETE FROM {self.table} WHERE synced_at IS NOT NULL")
            removed = cursor.rowcount
            await cursor.close()
        if removed:
            logger.debug(f"Removed {removed} synced {self.queue_name} record(s)")
        return removed

    async def clear(self) -> None:
        """Delete every record, synced or not."""
        async with self._storage.transaction(f"clearing {self.queue_name} queue") as conn:
            await conn.execute(f"DELETE FROM {self.table}")

    # ------------------------------------------------------------------- reads

    async def get_unsynced(self) -> List[OfflineRecord]:
        """Snapshot of undelivered records in insertion order."""
        return await self._select("synced_at IS NULL")

    async def get_all(self) -> List[OfflineRecord]:
        return await self._select()

    async def count(self) -> int:
        async with self._storage.transaction(f"counting {self.queue_name} queue") as conn:
            async with conn.execute(f"SELECT COUNT(*) FROM {self.table}") as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def get_stats(self) -> QueueStats:
        async with self._storage.transaction(f"reading {self.queue_name} stats") as conn:
            async with conn.execute(
                f"SELECT COUNT(*), COUNT(synced_at) FROM {self.table}"
            ) as cursor:
                counts = await cursor.fetchone()
            async with conn.execute(
                f"SELECT last_sync_attempt, last_sync_success FROM {SYNC_STATE_TABLE} WHERE queue = ?",
                (self.queue_name,),
            ) as cursor:
                state = await cursor.fetchone()
        total, synced = (int(counts[0]), int(counts[1])) if counts else (0, 0)
        return QueueStats(
            total=total,
            pending=total - synced,
            synced=synced,
            last_sync_attempt=_parse_dt(state["last_sync_attempt"]) if state else None,
            last_sync_success=_parse_dt(state["last_sync_success"]) if state else None,
        )


class OfflineMemoryStore(_OfflineQueue[MemoryItem]):
    """Memory items captured while the backend was unreachable."""

    table = MEMORY_TABLE
    queue_name = "memory"
    id_prefix = "offline"
    payload_model = MemoryItem

    async def retain(
        self,
        text: str,
        fact_type: Union[FactType, str] = FactType.EXPERIENCE,
        context: Optional[str] = None,
        confidence: Optional[float] = None,
    ) -> str:
        item = MemoryItem(text=text, fact_type=FactType(fact_type), context=context, confidence=confidence)
        record_id = await self.enqueue(item)
        logger.info(f"Stored memory offline ({len(text)} chars, id={record_id})")
        return record_id

    async def recall(self, query: str, fact_type: Optional[Union[FactType, str]] = None, limit: int = 10) -> List[OfflineRecord]:
        """Case-insensitive substring search over text and context, newest first."""
        needle = query.lower()
        wanted = FactType(fact_type) if fact_type else None
        matches: List[OfflineRecord] = []
        for record in await self._select(order="seq DESC"):
            item = record.payload
            if wanted is not None and item.fact_type != wanted:
                continue
            haystack = f"{item.text}\n{item.context or ''}".lower()
            if needle in haystack:
                matches.append(record)
                if len(matches) >= limit:
                    break
        return matches

    async def get_recent(self, limit: int = 5) -> List[OfflineRecord]:
        return await self._select(order="seq DESC", limit=limit)

    @staticmethod
    def to_memory(record: OfflineRecord) -> Memory:
        item = record.payload
        return Memory(
            id=record.id,
            text=item.text,
            fact_type=item.fact_type,
            created_at=item.created_at,
            context=item.context,
            confidence=item.confidence,
        )


class OfflineFeedbackQueue(_OfflineQueue[FeedbackSignal]):
    """Feedback signals awaiting delivery."""

    table = FEEDBACK_TABLE
    queue_name = "feedback"
    id_prefix = "signal"
    payload_model = FeedbackSignal

    @staticmethod
    def to_signal(record: OfflineRecord) -> FeedbackSignal:
        return record.payload
