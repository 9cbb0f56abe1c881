"""Persistence for tasks, agents and communications.

The engine depends on the ``TaskStore`` and ``AgentRegistry`` protocols; the
SQLite classes are the implementations shipped with the package.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Protocol

from devcrew.models import Agent, Communication, Task
from devcrew.storage.agents import SqliteAgentRegistry
from devcrew.storage.database import Database
from devcrew.storage.tasks import SqliteTaskStore


class TaskStore(Protocol):
    def get_by_status(self, status: str) -> list[Task]: ...

    def get(self, task_id: str) -> Task | None: ...

    def get_by_agent(self, agent_id: str) -> list[Task]: ...

    def get_children(self, parent_task_id: str) -> list[Task]: ...

    def list(self) -> list[Task]: ...

    def create(self, task: Task) -> Task: ...

    def update(self, task_id: str, **fields: Any) -> Task: ...

    def assign(self, task_id: str, agent_id: str | None) -> None: ...

    def add_communication(self, comm: Communication) -> Communication: ...

    def has_communications_since(self, task_id: str, since: float) -> bool: ...

    def inbox(self, agent_id: str, unread_only: bool = True) -> list[Communication]: ...

    def messages_for_agent(
        self, agent_id: str, since: float | None = None
    ) -> list[Communication]: ...

    def mark_read(self, comm_ids: Iterable[int]) -> int: ...


class AgentRegistry(Protocol):
    def list(self, status: str | None = None) -> list[Agent]: ...

    def get(self, agent_id: str) -> Agent | None: ...

    def find_by_role(self, role: str, active_only: bool = True) -> list[Agent]: ...

    def update_status(self, agent_id: str, status: str) -> None: ...

    def update_health(self, agent_id: str, health_score: float) -> float: ...

    def update_expertise(self, agent_id: str, expertise: list[str]) -> None: ...

    def adjust_load(self, agent_id: str, delta: int) -> int: ...


__all__ = [
    "AgentRegistry",
    "Database",
    "SqliteAgentRegistry",
    "SqliteTaskStore",
    "TaskStore",
]
