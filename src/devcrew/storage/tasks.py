"""Task Store - persistent tasks and the communications log attached to them."""

from __future__ import annotations

import json
import sqlite3
import time
from collections.abc import Callable, Iterable
from typing import Any

from devcrew.errors import StorageError
from devcrew.models import Communication, Task, WorkflowTransition
from devcrew.storage.database import Database

_JSON_FIELDS = {"tags", "metadata"}
_COLUMNS = {
    "title",
    "description",
    "status",
    "priority",
    "assigned_agent_id",
    "workflow_stage",
    "workflow_history",
    "parent_task_id",
    "estimated_hours",
    "tags",
    "reason",
    "metadata",
    "created_at",
    "updated_at",
    "completed_at",
}


class SqliteTaskStore:
    """
    Task Store backed by the crew database.

    Every write stamps ``updated_at`` from the injected clock unless the caller
    supplies one, so staleness checks in the engine see the real last change.
    """

    def __init__(self, db: Database, clock: Callable[[], float] = time.time) -> None:
        self.db = db
        self.clock = clock
        self.db.ensure_tables()

    # -- tasks ---------------------------------------------------------------

    def create(self, task: Task) -> Task:
        now = self.clock()
        task.created_at = now
        task.updated_at = now
        with self.db.connect() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO tasks (
                        id, title, description, status, priority, assigned_agent_id,
                        workflow_stage, workflow_history, parent_task_id, estimated_hours,
                        tags, reason, metadata, created_at, updated_at, completed_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        task.id,
                        task.title,
                        task.description,
                        str(task.status),
                        str(task.priority),
                        task.assigned_agent_id,
                        task.workflow_stage,
                        json.dumps([t.to_dict() for t in task.workflow_history]),
                        task.parent_task_id,
                        task.estimated_hours,
                        json.dumps(task.tags),
                        task.reason,
                        json.dumps(task.metadata),
                        task.created_at,
                        task.updated_at,
                        task.completed_at,
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise StorageError(f"task {task.id} already exists") from e
        return task

    def get(self, task_id: str) -> Task | None:
        rows = self.db.execute("SELECT * FROM tasks WHERE id = ?", (task_id,))
        return _row_to_task(rows[0]) if rows else None

    def require(self, task_id: str) -> Task:
        task = self.get(task_id)
        if task is None:
            raise StorageError(f"unknown task {task_id}")
        return task

    def list(self) -> list[Task]:
        rows = self.db.execute("SELECT * FROM tasks ORDER BY created_at, id")
        return [_row_to_task(r) for r in rows]

    def get_by_status(self, status: str) -> list[Task]:
        rows = self.db.execute(
            "SELECT * FROM tasks WHERE status = ? ORDER BY created_at, id", (str(status),)
        )
        return [_row_to_task(r) for r in rows]

    def get_by_agent(self, agent_id: str) -> list[Task]:
        rows = self.db.execute(
            "SELECT * FROM tasks WHERE assigned_agent_id = ? ORDER BY created_at, id",
            (agent_id,),
        )
        return [_row_to_task(r) for r in rows]

    def get_children(self, parent_task_id: str) -> list[Task]:
        rows = self.db.execute(
            "SELECT * FROM tasks WHERE parent_task_id = ? ORDER BY created_at, id",
            (parent_task_id,),
        )
        return [_row_to_task(r) for r in rows]

    def update(self, task_id: str, **fields: Any) -> Task:
        """Apply a partial update and return the stored task."""
        unknown = set(fields) - _COLUMNS
        if unknown:
            raise ValueError(f"unknown task fields: {', '.join(sorted(unknown))}")
        fields.setdefault("updated_at", self.clock())

        columns = []
        params: list[Any] = []
        for name, value in fields.items():
            if name == "workflow_history":
                value = json.dumps([_transition_dict(t) for t in value])
            elif name in _JSON_FIELDS:
                value = json.dumps(value)
            elif name in ("status", "priority") and value is not None:
                value = str(value)
            columns.append(f"{name} = ?")
            params.append(value)
        params.append(task_id)

        with self.db.connect() as conn:
            cursor = conn.execute(
                f"UPDATE tasks SET {', '.join(columns)} WHERE id = ?", tuple(params)
            )
            if cursor.rowcount == 0:
                raise StorageError(f"unknown task {task_id}")
        return self.require(task_id)

    def assign(self, task_id: str, agent_id: str | None) -> None:
        self.update(task_id, assigned_agent_id=agent_id)

    def count_by_status(self) -> dict[str, int]:
        rows = self.db.execute("SELECT status, COUNT(*) AS n FROM tasks GROUP BY status")
        return {r["status"]: r["n"] for r in rows}

    # -- communications ------------------------------------------------------

    def add_communication(self, comm: Communication) -> Communication:
        comm.created_at = self.clock()
        comm.id = self.db.execute_insert(
            """
            INSERT INTO communications (
                task_id, from_agent_id, to_agent_id, message, message_type,
                priority, requires_response, read, metadata, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                comm.task_id,
                comm.from_agent_id,
                comm.to_agent_id,
                comm.message,
                str(comm.message_type),
                comm.priority,
                int(comm.requires_response),
                int(comm.read),
                json.dumps(comm.metadata),
                comm.created_at,
            ),
        )
        return comm

    def communications_for_task(
        self, task_id: str, since: float | None = None
    ) -> list[Communication]:
        if since is None:
            rows = self.db.execute(
                "SELECT * FROM communications WHERE task_id = ? ORDER BY id", (task_id,)
            )
        else:
            rows = self.db.execute(
                "SELECT * FROM communications WHERE task_id = ? AND created_at > ? ORDER BY id",
                (task_id, since),
            )
        return [_row_to_comm(r) for r in rows]

    def has_communications_since(self, task_id: str, since: float) -> bool:
        rows = self.db.execute(
            "SELECT 1 FROM communications WHERE task_id = ? AND created_at > ? LIMIT 1",
            (task_id, since),
        )
        return bool(rows)

    def inbox(self, agent_id: str, unread_only: bool = True) -> list[Communication]:
        sql = "SELECT * FROM communications WHERE to_agent_id = ?"
        if unread_only:
            sql += " AND read = 0"
        rows = self.db.execute(sql + " ORDER BY id", (agent_id,))
        return [_row_to_comm(r) for r in rows]

    def messages_for_agent(self, agent_id: str, since: float | None = None) -> list[Communication]:
        """Messages an agent sent or received, oldest first."""
        since = since if since is not None else 0.0
        rows = self.db.execute(
            """
            SELECT * FROM communications
            WHERE (from_agent_id = ? OR to_agent_id = ?) AND created_at >= ?
            ORDER BY id
            """,
            (agent_id, agent_id, since),
        )
        return [_row_to_comm(r) for r in rows]

    def mark_read(self, comm_ids: Iterable[int]) -> int:
        ids = list(comm_ids)
        if not ids:
            return 0
        placeholders = ",".join("?" for _ in ids)
        with self.db.connect() as conn:
            cursor = conn.execute(
                f"UPDATE communications SET read = 1 WHERE id IN ({placeholders})", tuple(ids)
            )
            return cursor.rowcount


def _transition_dict(t: WorkflowTransition | dict[str, Any]) -> dict[str, Any]:
    return t.to_dict() if isinstance(t, WorkflowTransition) else t


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        status=row["status"],
        priority=row["priority"],
        assigned_agent_id=row["assigned_agent_id"],
        workflow_stage=row["workflow_stage"],
        workflow_history=[
            WorkflowTransition.from_dict(d) for d in json.loads(row["workflow_history"])
        ],
        parent_task_id=row["parent_task_id"],
        estimated_hours=row["estimated_hours"],
        tags=json.loads(row["tags"]),
        reason=row["reason"],
        metadata=json.loads(row["metadata"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        completed_at=row["completed_at"],
    )


def _row_to_comm(row: sqlite3.Row) -> Communication:
    return Communication(
        id=row["id"],
        task_id=row["task_id"],
        from_agent_id=row["from_agent_id"],
        to_agent_id=row["to_agent_id"],
        message=row["message"],
        message_type=row["message_type"],
        priority=row["priority"],
        requires_response=bool(row["requires_response"]),
        read=bool(row["read"]),
        metadata=json.loads(row["metadata"]),
        created_at=row["created_at"],
    )
