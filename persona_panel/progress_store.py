"""Swappable persistence for in-flight job progress.

Toggle via PROGRESS_BACKEND env var:
  PROGRESS_BACKEND=sqlite   (default, DB_PATH file)
  PROGRESS_BACKEND=memory   (process lifetime only)

Snapshots older than the TTL are treated as absent on read.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Callable, Protocol, runtime_checkable

import aiosqlite
from pydantic import ValidationError

from persona_panel.models import JobProgress

_log = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600


def _now_ms() -> int:
    return int(time.time() * 1000)


# ── Protocol ─────────────────────────────────────────────────────────────────

@runtime_checkable
class ProgressStore(Protocol):
    """At most one active job writes to a given store key."""

    async def save(self, progress: JobProgress) -> None:
        ...

    async def load(self) -> JobProgress | None:
        """Return the saved snapshot, or None if absent, unreadable or expired."""
        ...

    async def clear(self) -> None:
        ...


class _ExpiringStore:
    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock: Callable[[], int] = _now_ms) -> None:
        self._ttl_ms = ttl_seconds * 1000
        self._clock = clock

    def _stamp(self, progress: JobProgress) -> JobProgress:
        return progress.model_copy(update={"saved_at_epoch_millis": self._clock()}, deep=True)

    def _is_expired(self, progress: JobProgress) -> bool:
        return self._clock() - progress.saved_at_epoch_millis > self._ttl_ms


# ── MemoryProgressStore ───────────────────────────────────────────────────────

class MemoryProgressStore(_ExpiringStore):
    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock: Callable[[], int] = _now_ms) -> None:
        super().__init__(ttl_seconds, clock)
        self._snapshot: JobProgress | None = None

    async def save(self, progress: JobProgress) -> None:
        self._snapshot = self._stamp(progress)

    async def load(self) -> JobProgress | None:
        if self._snapshot is None:
            return None
        if self._is_expired(self._snapshot):
            self._snapshot = None
            return None
        return self._snapshot.model_copy(deep=True)

    async def clear(self) -> None:
        self._snapshot = None


# ── SQLiteProgressStore ───────────────────────────────────────────────────────

class SQLiteProgressStore(_ExpiringStore):
    """One row per store key ("user_id:session_id") in a local SQLite file."""

    def __init__(
        self,
        key: str,
        *,
        db_path: str,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        super().__init__(ttl_seconds, clock)
        self._key = key
        self._db_path = db_path
        self._table_ready = False

    async def _ensure_table(self, db: aiosqlite.Connection) -> None:
        if self._table_ready:
            return
        await db.execute("""
            CREATE TABLE IF NOT EXISTS job_progress (
                store_key     TEXT PRIMARY KEY,
                progress_json TEXT NOT NULL,
                saved_at      INTEGER NOT NULL
            )
        """)
        self._table_ready = True

    async def save(self, progress: JobProgress) -> None:
        stamped = self._stamp(progress)
        async with aiosqlite.connect(self._db_path) as db:
            await self._ensure_table(db)
            await db.execute(
                """INSERT OR REPLACE INTO job_progress (store_key, progress_json, saved_at)
                   VALUES (?, ?, ?)""",
                (self._key, stamped.model_dump_json(), stamped.saved_at_epoch_millis),
            )
            await db.commit()

    async def load(self) -> JobProgress | None:
        async with aiosqlite.connect(self._db_path) as db:
            await self._ensure_table(db)
            async with db.execute(
                "SELECT progress_json FROM job_progress WHERE store_key = ?", (self._key,)
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        try:
            progress = JobProgress.model_validate_json(row[0])
        except ValidationError as exc:
            _log.warning("Discarding unreadable progress (key=%s): %s", self._key, exc)
            await self.clear()
            return None
        if self._is_expired(progress):
            _log.info("Saved progress expired (key=%s)", self._key)
            await self.clear()
            return None
        return progress

    async def clear(self) -> None:
        async with aiosqlite.connect(self._db_path) as db:
            await self._ensure_table(db)
            await db.execute("DELETE FROM job_progress WHERE store_key = ?", (self._key,))
            await db.commit()


# ── Factory ───────────────────────────────────────────────────────────────────

# Module-level cache so in-memory snapshots survive across requests.
_memory_stores: dict[str, MemoryProgressStore] = {}


def make_progress_store(
    key: str,
    *,
    db_path: str | None = None,
    ttl_seconds: int = DEFAULT_TTL_SECONDS,
    backend: str | None = None,
) -> ProgressStore:
    """Return the ProgressStore for ``key`` on the configured backend.

    Raises ValueError for an unknown PROGRESS_BACKEND.
    """
    backend = (backend or os.getenv("PROGRESS_BACKEND", "sqlite")).lower()

    if backend == "sqlite":
        return SQLiteProgressStore(
            key, db_path=db_path or os.getenv("DB_PATH", "persona_panel.db"), ttl_seconds=ttl_seconds
        )

    if backend == "memory":
        if key not in _memory_stores:
            _memory_stores[key] = MemoryProgressStore(ttl_seconds=ttl_seconds)
        return _memory_stores[key]

    raise ValueError(f"Unknown PROGRESS_BACKEND={backend!r}. Use 'sqlite' or 'memory'.")
