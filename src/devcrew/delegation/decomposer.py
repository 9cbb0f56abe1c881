"""
Task Decomposer - expands a task into a dependency-ordered subtask graph

Each subtask becomes a real Task (same id, ``parent_task_id`` set). Subtasks
with no dependencies start ``pending`` and are placed immediately; the rest
start ``blocked`` and unclaimed until every dependency completes.

Placement score:
    0.6 * skill_match + 0.4 * availability
where availability = max(0, 1 - open_tasks/5 - open_hours/40).

Active decompositions are kept in memory keyed by original task id, with a
subtask id -> original task id index. A decomposition missing from memory (for
example after a restart) is rebuilt from the subtask tasks in the store.
"""

import logging
import time
from typing import Callable, Dict, List, Optional

from devcrew.assigner import TaskAssigner
from devcrew.config import CrewConfig
from devcrew.memory import MemoryLedger
from devcrew.models import Agent, AgentStatus, MemoryType, Task, TaskStatus
from devcrew.scoring import score_agent_for_subtask
from devcrew.storage import AgentRegistry, TaskStore

from .models import (
    Complexity,
    Decomposition,
    Dependency,
    DependencyType,
    Domain,
    Subtask,
    SubtaskStatus,
)
from .taxonomy import (
    assess_complexity,
    classify_domain,
    generic_steps,
    get_template,
    resolve_dependencies,
)

log = logging.getLogger(__name__)

_STATUS_FROM_TASK = {
    TaskStatus.COMPLETED: SubtaskStatus.COMPLETED,
    TaskStatus.FAILED: SubtaskStatus.FAILED,
    TaskStatus.PENDING: SubtaskStatus.PENDING,
    TaskStatus.BLOCKED: SubtaskStatus.PENDING,
}


class TaskDecomposer:
    """Builds subtask graphs and releases subtasks as their dependencies clear."""

    def __init__(
        self,
        tasks: TaskStore,
        agents: AgentRegistry,
        ledger: MemoryLedger,
        assigner: TaskAssigner,
        config: Optional[CrewConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.tasks = tasks
        self.agents = agents
        self.ledger = ledger
        self.assigner = assigner
        self.config = config or CrewConfig()
        self.clock = clock
        self._decompositions: Dict[str, Decomposition] = {}
        self._subtask_index: Dict[str, str] = {}

    # -- building ------------------------------------------------------------

    def plan(self, task: Task, decomposing_agent_id: str) -> Decomposition:
        """Build the subtask graph for ``task`` without touching the store."""
        domain = classify_domain(task)
        if domain == Domain.GENERIC:
            steps = generic_steps(task, self.config.engine.generic_subtask_cap)
        else:
            steps = get_template(domain)
        dep_indexes = resolve_dependencies(steps)

        ids = [f"{task.id}_sub_{i}" for i in range(1, len(steps) + 1)]
        subtasks = [
            Subtask(
                id=ids[i],
                title=step.title,
                description=step.description,
                required_skills=list(step.required_skills),
                estimated_time=step.estimated_hours,
                priority=task.priority,
                dependencies=[ids[d] for d in dep_indexes[i]],
                deliverables=list(step.deliverables),
                acceptance_criteria=list(step.acceptance_criteria),
            )
            for i, step in enumerate(steps)
        ]
        dependencies = [
            Dependency(
                id=f"dep_{sub.id}_{dep}",
                from_subtask=dep,
                to_subtask=sub.id,
                type=DependencyType.FINISH_TO_START,
            )
            for sub in subtasks
            for dep in sub.dependencies
        ]
        return Decomposition(
            original_task_id=task.id,
            decomposed_by=decomposing_agent_id,
            domain=domain,
            complexity=assess_complexity(task),
            subtasks=subtasks,
            dependencies=dependencies,
            created_at=self.clock(),
        )

    async def decompose(self, task: Task, decomposing_agent_id: str) -> Decomposition:
        """Decompose ``task``, materialize its subtasks and place the ready ones.

        Decomposing the same task twice returns the existing decomposition.
        """
        existing = self.get_decomposition(task.id)
        if existing is not None:
            await self.resume(existing)
            return existing

        decomposition = self.plan(task, decomposing_agent_id)
        for sub in decomposition.subtasks:
            self.tasks.create(
                Task(
                    id=sub.id,
                    title=sub.title,
                    description=sub.description,
                    status=TaskStatus.BLOCKED if sub.dependencies else TaskStatus.PENDING,
                    priority=sub.priority,
                    parent_task_id=task.id,
                    estimated_hours=sub.estimated_time,
                    tags=list(sub.required_skills),
                    metadata={
                        "subtask": {
                            "required_skills": sub.required_skills,
                            "dependencies": sub.dependencies,
                            "deliverables": sub.deliverables,
                            "acceptance_criteria": sub.acceptance_criteria,
                        }
                    },
                )
            )

        metadata = dict(task.metadata)
        metadata["decomposition"] = {
            "domain": decomposition.domain.value,
            "complexity": decomposition.complexity.value,
            "decomposed_by": decomposing_agent_id,
            "subtask_ids": [s.id for s in decomposition.subtasks],
            "created_at": decomposition.created_at,
        }
        self.tasks.update(task.id, metadata=metadata)
        self._remember(decomposition)

        await self.ledger.record(
            decomposing_agent_id,
            MemoryType.ACTION,
            f"Decomposed task {task.id} into {len(decomposition.subtasks)} subtasks",
            task_id=task.id,
            action="decompose_task",
            domain=decomposition.domain.value,
            complexity=decomposition.complexity.value,
            subtask_ids=[s.id for s in decomposition.subtasks],
            estimated_total_time=decomposition.estimated_total_time,
            success=True,
        )
        log.info(
            "Decomposed %s (%s) into %d subtasks",
            task.id,
            decomposition.domain.value,
            len(decomposition.subtasks),
        )

        for sub in decomposition.subtasks:
            if not sub.dependencies:
                await self._place(decomposition, sub)
        return decomposition

    # -- placement -----------------------------------------------------------

    def rank_agents(self, subtask: Subtask) -> List[tuple]:
        """(score, agent) pairs for active agents, best first."""
        ranked = []
        for agent in self.agents.list(status=AgentStatus.ACTIVE):
            open_tasks = [t for t in self.tasks.get_by_agent(agent.id) if not t.is_terminal]
            score = score_agent_for_subtask(
                subtask.required_skills, agent, open_tasks, self.config.scoring
            )
            ranked.append((score, agent))
        ranked.sort(key=lambda pair: (-round(pair[0], 9), pair[1].current_load, pair[1].id))
        return ranked

    async def _place(self, decomposition: Decomposition, subtask: Subtask) -> Optional[Agent]:
        ranked = self.rank_agents(subtask)
        if not ranked:
            log.info("No active agent for subtask %s; leaving it pending", subtask.id)
            return None
        score, agent = ranked[0]
        task = self.tasks.get(subtask.id)
        if task is None or task.status != TaskStatus.PENDING or task.assigned_agent_id:
            return None
        self.assigner.assign(
            task,
            agent,
            reason=f"Subtask placement score {score:.2f}",
            action="subtask_assigned",
        )
        subtask.status = SubtaskStatus.ASSIGNED
        subtask.assigned_to = agent.id
        await self.ledger.record(
            decomposition.decomposed_by,
            MemoryType.ACTION,
            f"Assigned subtask {subtask.id} to {agent.id}",
            task_id=decomposition.original_task_id,
            action="assign_subtask",
            subtask_id=subtask.id,
            assignee=agent.id,
            score=round(score, 4),
            success=True,
        )
        return agent

    async def resume(self, decomposition: Decomposition) -> List[str]:
        """Place ready subtasks left unclaimed by an interrupted decomposition.

        Completes the parent if every subtask already finished. Returns the ids
        of the subtasks that were placed.
        """
        if decomposition.status == "completed":
            return []
        self._refresh(decomposition)
        placed: List[str] = []
        for sub in decomposition.subtasks:
            if sub.status != SubtaskStatus.PENDING or not decomposition.is_ready(sub):
                continue
            task = self.tasks.get(sub.id)
            if task is None or task.assigned_agent_id:
                continue
            if task.status == TaskStatus.BLOCKED:
                task = self.assigner.transition(
                    task,
                    TaskStatus.PENDING,
                    reason=f"Dependencies of {sub.id} completed",
                    action="released",
                )
            if await self._place(decomposition, sub) is not None:
                placed.append(sub.id)
        if decomposition.is_complete:
            await self._complete_parent(decomposition)
        elif placed:
            log.info(
                "Resumed decomposition of %s, placed %s", decomposition.original_task_id, placed
            )
        return placed

    # -- progress ------------------------------------------------------------

    def mark_started(self, subtask_id: str) -> None:
        decomposition = self._lookup(subtask_id)
        if decomposition is None:
            return
        sub = decomposition.get(subtask_id)
        if sub is not None and sub.status in (SubtaskStatus.PENDING, SubtaskStatus.ASSIGNED):
            sub.status = SubtaskStatus.IN_PROGRESS

    async def on_subtask_completed(self, subtask_id: str) -> List[str]:
        """Release dependents of a finished subtask; finish the parent when all are done.

        Returns the ids of subtasks that became eligible.
        """
        decomposition = self._lookup(subtask_id)
        if decomposition is None:
            log.warning("Completed subtask %s has no known decomposition", subtask_id)
            return []
        self._refresh(decomposition)
        finished = decomposition.get(subtask_id)
        if finished is not None:
            finished.status = SubtaskStatus.COMPLETED

        released: List[str] = []
        for dependent in decomposition.dependents_of(subtask_id):
            if dependent.status != SubtaskStatus.PENDING or not decomposition.is_ready(dependent):
                continue
            task = self.tasks.get(dependent.id)
            if task is None or task.status != TaskStatus.BLOCKED:
                continue
            self.assigner.transition(
                task,
                TaskStatus.PENDING,
                reason=f"Dependencies of {dependent.id} completed",
                action="released",
            )
            released.append(dependent.id)
            await self._place(decomposition, dependent)

        if decomposition.is_complete:
            await self._complete_parent(decomposition)
        return released

    def on_subtask_failed(self, subtask_id: str) -> None:
        decomposition = self._lookup(subtask_id)
        if decomposition is not None:
            sub = decomposition.get(subtask_id)
            if sub is not None:
                sub.status = SubtaskStatus.FAILED

    async def _complete_parent(self, decomposition: Decomposition) -> None:
        if decomposition.status == "completed":
            return
        decomposition.status = "completed"
        parent = self.tasks.get(decomposition.original_task_id)
        if parent is None or parent.status == TaskStatus.COMPLETED:
            return
        self.assigner.release(
            parent,
            TaskStatus.COMPLETED,
            reason=f"All {len(decomposition.subtasks)} subtasks completed",
            action="subtasks_completed",
        )
        await self.ledger.record(
            decomposition.decomposed_by,
            MemoryType.ACTION,
            f"Completed decomposed task {parent.id}",
            task_id=parent.id,
            action="complete_decomposition",
            success=True,
        )

    # -- lookup --------------------------------------------------------------

    def _remember(self, decomposition: Decomposition) -> None:
        self._decompositions[decomposition.original_task_id] = decomposition
        for sub in decomposition.subtasks:
            self._subtask_index[sub.id] = decomposition.original_task_id

    def _lookup(self, subtask_id: str) -> Optional[Decomposition]:
        parent_id = self._subtask_index.get(subtask_id)
        if parent_id is None:
            task = self.tasks.get(subtask_id)
            if task is None or task.parent_task_id is None:
                return None
            parent_id = task.parent_task_id
        return self.get_decomposition(parent_id)

    def _refresh(self, decomposition: Decomposition) -> None:
        """Sync subtask statuses with the store, which is authoritative."""
        for sub in decomposition.subtasks:
            task = self.tasks.get(sub.id)
            if task is None:
                continue
            sub.assigned_to = task.assigned_agent_id
            mapped = _STATUS_FROM_TASK.get(task.status)
            if mapped is not None:
                sub.status = mapped
            elif sub.status not in (SubtaskStatus.ASSIGNED, SubtaskStatus.IN_PROGRESS):
                sub.status = SubtaskStatus.ASSIGNED

    def get_decomposition(self, task_id: str) -> Optional[Decomposition]:
        """The decomposition of ``task_id``, rebuilt from the store if needed."""
        decomposition = self._decompositions.get(task_id)
        if decomposition is not None:
            return decomposition
        parent = self.tasks.get(task_id)
        if parent is None or "decomposition" not in parent.metadata:
            return None
        decomposition = self._rebuild(parent)
        self._remember(decomposition)
        return decomposition

    def _rebuild(self, parent: Task) -> Decomposition:
        info = parent.metadata["decomposition"]
        subtasks = []
        for child in self.tasks.get_children(parent.id):
            meta = child.metadata.get("subtask", {})
            subtasks.append(
                Subtask(
                    id=child.id,
                    title=child.title,
                    description=child.description,
                    required_skills=list(meta.get("required_skills", child.tags)),
                    estimated_time=child.estimated_hours or 0.0,
                    priority=child.priority,
                    dependencies=list(meta.get("dependencies", [])),
                    deliverables=list(meta.get("deliverables", [])),
                    acceptance_criteria=list(meta.get("acceptance_criteria", [])),
                )
            )
        order = {sid: i for i, sid in enumerate(info.get("subtask_ids", []))}
        subtasks.sort(key=lambda s: order.get(s.id, len(order)))
        decomposition = Decomposition(
            original_task_id=parent.id,
            decomposed_by=info["decomposed_by"],
            domain=Domain(info["domain"]),
            complexity=Complexity(info.get("complexity", Complexity.LOW.value)),
            subtasks=subtasks,
            dependencies=[
                Dependency(id=f"dep_{s.id}_{d}", from_subtask=d, to_subtask=s.id)
                for s in subtasks
                for d in s.dependencies
            ],
            created_at=info.get("created_at", parent.created_at),
        )
        self._refresh(decomposition)
        if parent.status == TaskStatus.COMPLETED:
            decomposition.status = "completed"
        return decomposition

    def agent_subtasks(self, agent_id: str) -> List[Subtask]:
        """Subtasks currently held by an agent across known decompositions."""
        held = []
        for task in self.tasks.get_by_agent(agent_id):
            if task.parent_task_id is None:
                continue
            decomposition = self.get_decomposition(task.parent_task_id)
            if decomposition is None:
                continue
            self._refresh(decomposition)
            sub = decomposition.get(task.id)
            if sub is not None:
                held.append(sub)
        return held
