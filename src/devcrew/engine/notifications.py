"""Notification Sink - health events raised by the engine and the monitor."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

from devcrew.storage.database import Database

log = logging.getLogger(__name__)


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


_LOG_LEVELS = {
    Severity.LOW: logging.INFO,
    Severity.MEDIUM: logging.WARNING,
    Severity.HIGH: logging.WARNING,
    Severity.CRITICAL: logging.ERROR,
}


@dataclass
class HealthEvent:
    agent_id: str | None
    event_type: str
    severity: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    resolved: bool = False
    created_at: float = 0.0
    id: int | None = None


class NotificationSink(Protocol):
    def raise_event(
        self,
        agent_id: str | None,
        severity: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None: ...


class HealthEventSink:
    """Stores health events in the crew database and logs them."""

    def __init__(self, db: Database, clock: Callable[[], float] = time.time) -> None:
        self.db = db
        self.clock = clock
        self.db.ensure_tables()

    def raise_event(
        self,
        agent_id: str | None,
        severity: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        severity = Severity(severity)
        details = dict(details or {})
        event_type = str(details.get("event_type", "health"))
        self.db.execute_insert(
            """
            INSERT INTO health_events (agent_id, event_type, severity, message, details, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                agent_id,
                event_type,
                severity.value,
                message,
                json.dumps(details, default=str),
                self.clock(),
            ),
        )
        log.log(
            _LOG_LEVELS[severity],
            "[%s] %s (%s): %s",
            severity.value,
            agent_id or "-",
            event_type,
            message,
        )

    def recent(self, limit: int = 20, agent_id: str | None = None) -> list[HealthEvent]:
        if agent_id is None:
            rows = self.db.execute(
                "SELECT * FROM health_events ORDER BY id DESC LIMIT ?", (limit,)
            )
        else:
            rows = self.db.execute(
                "SELECT * FROM health_events WHERE agent_id = ? ORDER BY id DESC LIMIT ?",
                (agent_id, limit),
            )
        return [
            HealthEvent(
                id=r["id"],
                agent_id=r["agent_id"],
                event_type=r["event_type"],
                severity=r["severity"],
                message=r["message"],
                details=json.loads(r["details"]),
                resolved=bool(r["resolved"]),
                created_at=r["created_at"],
            )
            for r in rows
        ]

    def resolve(self, event_id: int) -> None:
        self.db.execute("UPDATE health_events SET resolved = 1 WHERE id = ?", (event_id,))
