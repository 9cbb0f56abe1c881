"""Task ownership transitions and the agent load accounting that goes with them.

Every change of ``Task.assigned_agent_id`` goes through ``TaskAssigner`` so that
an agent's ``current_load`` always equals the number of non-terminal tasks it
holds. The workflow engine and the decomposer share one instance.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from devcrew.models import Agent, Task, TaskStatus, WorkflowTransition
from devcrew.storage import AgentRegistry, TaskStore

log = logging.getLogger(__name__)


class TaskAssigner:
    def __init__(
        self,
        tasks: TaskStore,
        agents: AgentRegistry,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.tasks = tasks
        self.agents = agents
        self.clock = clock

    def _history(
        self, task: Task, stage: str | None, action: str, agent_id: str | None, reason: str
    ) -> list[WorkflowTransition]:
        return [
            *task.workflow_history,
            WorkflowTransition(
                stage=stage or task.workflow_stage or "unassigned",
                action=action,
                agent_id=agent_id,
                reason=reason,
                timestamp=self.clock(),
            ),
        ]

    def assign(
        self,
        task: Task,
        agent: Agent,
        reason: str,
        action: str = "assigned",
        status: str = TaskStatus.IN_PROGRESS,
        **fields: Any,
    ) -> Task:
        """Give ``task`` to ``agent``, moving load off any previous owner."""
        previous = task.assigned_agent_id
        if previous != agent.id:
            if previous is not None:
                self.agents.adjust_load(previous, -1)
            self.agents.adjust_load(agent.id, +1)
        updated = self.tasks.update(
            task.id,
            status=status,
            assigned_agent_id=agent.id,
            workflow_stage=agent.role,
            workflow_history=self._history(task, agent.role, action, agent.id, reason),
            reason=reason,
            **fields,
        )
        log.info("Task %s %s to %s (%s): %s", task.id, action, agent.id, agent.role, reason)
        return updated

    def release(
        self,
        task: Task,
        status: str,
        reason: str,
        action: str,
        **fields: Any,
    ) -> Task:
        """Drop the owner of ``task`` (if any) and move it to ``status``."""
        if task.assigned_agent_id is not None:
            self.agents.adjust_load(task.assigned_agent_id, -1)
        if status == TaskStatus.COMPLETED:
            fields.setdefault("completed_at", self.clock())
        updated = self.tasks.update(
            task.id,
            status=status,
            assigned_agent_id=None,
            workflow_history=self._history(
                task, task.workflow_stage, action, task.assigned_agent_id, reason
            ),
            reason=reason,
            **fields,
        )
        log.info("Task %s %s -> %s: %s", task.id, action, status, reason)
        return updated

    def transition(
        self,
        task: Task,
        status: str,
        reason: str,
        action: str,
        **fields: Any,
    ) -> Task:
        """Change status without touching ownership."""
        return self.tasks.update(
            task.id,
            status=status,
            workflow_history=self._history(
                task, task.workflow_stage, action, task.assigned_agent_id, reason
            ),
            reason=reason,
            **fields,
        )
