"""
Memory Ledger - per-agent append-only log of typed entries.

Entries are never mutated. The only way to remove them is ``cleanup``, which
logs what it deleted. Writes for the same agent are serialized by a per-agent
``asyncio.Lock`` so that concurrent ``log`` and ``reflect`` calls cannot
interleave and append duplicate strategy entries.

Reflection heuristic:
- learning entries whose content mentions "success" count as successes
- learning entries whose content mentions "fail" count as failures
- topic frequencies come from ``details["area"]``
- failures > successes appends one ``strategy`` entry
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import aiosqlite

from devcrew.errors import StorageError
from devcrew.models import MemoryEntry, MemoryType

log = logging.getLogger(__name__)

STRATEGY_CONTENT = "Strategy updated after reflection: focus on improvement"
STRATEGY_REASON = "More failures than successes"
TOP_TOPICS = 5


@dataclass
class ReflectionSummary:
    """Outcome of one reflection pass over an agent's learning entries."""

    agent_id: str
    success_count: int
    failure_count: int
    top_topics: list[tuple[str, int]] = field(default_factory=list)
    successful_topics: dict[str, int] = field(default_factory=dict)
    strategy_updated: bool = False


class MemoryLedger:
    """
    Persistent, per-agent memory ledger on aiosqlite.

    Usage::

        async with MemoryLedger(":memory:") as ledger:
            await ledger.record("dev-1", MemoryType.ACTION, "Implemented login")
    """

    def __init__(
        self,
        db_path: str | Path | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db_path = Path(db_path) if db_path else Path.home() / ".devcrew" / "data" / "memory.db"
        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.clock = clock
        self._db: aiosqlite.Connection | None = None
        self._locks: dict[str, asyncio.Lock] = {}

    async def __aenter__(self) -> MemoryLedger:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        await self.close()

    async def open(self) -> None:
        if self._db is not None:
            return
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = sqlite3.Row
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS memory_entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                agent_id TEXT NOT NULL,
                type TEXT NOT NULL,
                content TEXT NOT NULL,
                details TEXT NOT NULL DEFAULT '{}',
                task_id TEXT,
                timestamp REAL NOT NULL
            )
        """)
        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_memory_agent
            ON memory_entries(agent_id, id)
        """)
        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_memory_task
            ON memory_entries(task_id, type)
        """)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError(f"memory ledger {self.db_path} is not open")
        return self._db

    def _lock_for(self, agent_id: str) -> asyncio.Lock:
        lock = self._locks.get(agent_id)
        if lock is None:
            lock = self._locks[agent_id] = asyncio.Lock()
        return lock

    async def _insert(self, entry: MemoryEntry) -> MemoryEntry:
        db = self._conn()
        cursor = await db.execute(
            """
            INSERT INTO memory_entries (agent_id, type, content, details, task_id, timestamp)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                entry.agent_id,
                str(entry.type),
                entry.content,
                json.dumps(entry.details, default=str),
                entry.task_id,
                entry.timestamp,
            ),
        )
        await db.commit()
        entry.id = cursor.lastrowid
        return entry

    async def log(self, agent_id: str, entry: MemoryEntry) -> MemoryEntry:
        """Append an entry to an agent's ledger."""
        if entry.agent_id != agent_id:
            raise ValueError(f"entry belongs to {entry.agent_id}, not {agent_id}")
        MemoryType(entry.type)
        async with self._lock_for(agent_id):
            return await self._insert(entry)

    async def record(
        self,
        agent_id: str,
        type: str,
        content: str,
        task_id: str | None = None,
        **details: Any,
    ) -> MemoryEntry:
        """Build an entry stamped with the ledger clock and append it."""
        entry = MemoryEntry(
            agent_id=agent_id,
            type=type,
            content=content,
            details=details,
            timestamp=self.clock(),
            task_id=task_id,
        )
        return await self.log(agent_id, entry)

    async def log_episodic(self, agent_id: str, event: str, **details: Any) -> MemoryEntry:
        return await self.record(agent_id, MemoryType.EPISODIC, event, **details)

    async def log_semantic(self, agent_id: str, fact: str, **details: Any) -> MemoryEntry:
        return await self.record(agent_id, MemoryType.SEMANTIC, fact, **details)

    async def log_procedural(self, agent_id: str, procedure: str, **details: Any) -> MemoryEntry:
        return await self.record(agent_id, MemoryType.PROCEDURAL, procedure, **details)

    async def query(
        self,
        agent_id: str,
        type: str | None = None,
        since: float | None = None,
        until: float | None = None,
        limit: int | None = None,
        task_id: str | None = None,
        exclude: tuple[str, ...] = (),
    ) -> list[MemoryEntry]:
        """Return matching entries in insertion order.

        With ``limit``, the most recent ``limit`` matches are returned, still
        oldest first. Entry types in ``exclude`` are skipped before the limit
        applies.
        """
        db = self._conn()
        sql = "SELECT * FROM memory_entries WHERE agent_id = ?"
        params: list[Any] = [agent_id]
        if type is not None:
            sql += " AND type = ?"
            params.append(str(type))
        if since is not None:
            sql += " AND timestamp >= ?"
            params.append(since)
        if until is not None:
            sql += " AND timestamp <= ?"
            params.append(until)
        if task_id is not None:
            sql += " AND task_id = ?"
            params.append(task_id)
        if exclude:
            sql += f" AND type NOT IN ({', '.join('?' for _ in exclude)})"
            params.extend(str(t) for t in exclude)
        sql += " ORDER BY id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        async with db.execute(sql, tuple(params)) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_entry(r) for r in reversed(rows)]

    async def count(
        self,
        agent_id: str | None = None,
        type: str | None = None,
        task_id: str | None = None,
        content: str | None = None,
    ) -> int:
        """Count entries; ``content`` matches exactly."""
        db = self._conn()
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in (
            ("agent_id", agent_id),
            ("type", type),
            ("task_id", task_id),
            ("content", content),
        ):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(str(value))
        sql = "SELECT COUNT(*) FROM memory_entries"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        async with db.execute(sql, tuple(params)) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0

    async def agents(self) -> list[str]:
        db = self._conn()
        async with db.execute(
            "SELECT DISTINCT agent_id FROM memory_entries ORDER BY agent_id"
        ) as cursor:
            rows = await cursor.fetchall()
        return [r[0] for r in rows]

    async def reflect(self, agent_id: str) -> ReflectionSummary:
        """Summarize learning entries and adapt strategy when failures dominate.

        Each call appends at most one ``strategy`` entry.
        """
        async with self._lock_for(agent_id):
            learnings = await self.query(agent_id, type=MemoryType.LEARNING)
            successes = 0
            failures = 0
            topics: Counter[str] = Counter()
            successful_topics: Counter[str] = Counter()
            for entry in learnings:
                text = entry.content.lower()
                area = entry.details.get("area")
                if "success" in text:
                    successes += 1
                    if area:
                        successful_topics[area] += 1
                if "fail" in text:
                    failures += 1
                if area:
                    topics[area] += 1

            summary = ReflectionSummary(
                agent_id=agent_id,
                success_count=successes,
                failure_count=failures,
                top_topics=topics.most_common(TOP_TOPICS),
                successful_topics=dict(successful_topics),
            )
            if failures > successes:
                await self._insert(
                    MemoryEntry(
                        agent_id=agent_id,
                        type=MemoryType.STRATEGY,
                        content=STRATEGY_CONTENT,
                        details={
                            "reason": STRATEGY_REASON,
                            "success_count": successes,
                            "failure_count": failures,
                            "focus_topics": [t for t, _ in summary.top_topics],
                        },
                        timestamp=self.clock(),
                    )
                )
                summary.strategy_updated = True
                log.info(
                    "Strategy updated for %s (%d failures vs %d successes)",
                    agent_id,
                    failures,
                    successes,
                )
            return summary

    async def cleanup(self, agent_id: str, before: float, type: str | None = None) -> int:
        """Delete an agent's entries older than ``before``, optionally of one type.

        Returns the count removed.
        """
        db = self._conn()
        sql = "DELETE FROM memory_entries WHERE agent_id = ? AND timestamp < ?"
        params: list[Any] = [agent_id, before]
        if type is not None:
            sql += " AND type = ?"
            params.append(str(type))
        async with self._lock_for(agent_id):
            cursor = await db.execute(sql, tuple(params))
            await db.commit()
            removed = cursor.rowcount
        log.info(
            "Memory cleanup for %s removed %d entries older than %.0f", agent_id, removed, before
        )
        return removed


def _row_to_entry(row: sqlite3.Row) -> MemoryEntry:
    return MemoryEntry(
        id=row["id"],
        agent_id=row["agent_id"],
        type=row["type"],
        content=row["content"],
        details=json.loads(row["details"]),
        task_id=row["task_id"],
        timestamp=row["timestamp"],
    )
