"""
Workflow Engine - the crew's scheduler.

Three periodic loops share the task store and agent registry:

- main loop: picks up stale or newly messaged tasks and runs one processing
  pass per task, never more than one at a time for the same task id
- health loop: rebalances overloaded agents and reports low health
- sweep: assigns unowned pending tasks and retries stalled handoffs

A processing pass asks the cognition oracle for a decision (falling back to a
fixed per-role decision on timeout or error), executes it, and persists the
resulting status. Any error inside a pass marks the task failed, raises a
health event and either retries the task or, once the recovery budget is
spent, escalates it to the lead role.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from devcrew.assigner import TaskAssigner
from devcrew.config import CrewConfig
from devcrew.delegation import Decomposition, TaskDecomposer
from devcrew.engine.decisions import (
    ActionResult,
    Decision,
    DecisionAction,
    Outcome,
    fallback_decision,
    status_after,
)
from devcrew.engine.notifications import NotificationSink, Severity
from devcrew.engine.oracle import CognitionOracle, OracleRequest
from devcrew.engine.pipeline import LEAD_ROLE, next_role
from devcrew.engine.scheduler import PeriodicLoop
from devcrew.errors import ProcessingFailure, RecoveryExhausted, TransientOracleFailure
from devcrew.memory import MemoryLedger
from devcrew.models import (
    Agent,
    AgentStatus,
    Communication,
    MemoryType,
    MessageType,
    Task,
    TaskStatus,
)
from devcrew.scoring import rank_agents_for_task
from devcrew.storage import AgentRegistry, TaskStore

log = logging.getLogger(__name__)

FAILURE_EVENT = "Task processing failed"
POLLED_STATUSES = (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)


@dataclass
class WorkflowStatus:
    """Snapshot of tasks, agents and in-flight passes."""

    tasks: dict[str, int]
    total_tasks: int
    agents_total: int
    agents_active: int
    total_load: int
    average_health: float
    in_flight: list[str] = field(default_factory=list)
    loops: dict[str, int] = field(default_factory=dict)


class WorkflowEngine:
    def __init__(
        self,
        tasks: TaskStore,
        agents: AgentRegistry,
        ledger: MemoryLedger,
        oracle: CognitionOracle,
        notifications: NotificationSink,
        decomposer: TaskDecomposer,
        assigner: TaskAssigner,
        config: CrewConfig | None = None,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ) -> None:
        self.tasks = tasks
        self.agents = agents
        self.ledger = ledger
        self.oracle = oracle
        self.notifications = notifications
        self.decomposer = decomposer
        self.assigner = assigner
        self.config = config or CrewConfig()
        self.settings = self.config.engine
        self.clock = clock
        self.rng = rng or random.Random(self.config.seed)

        self._processing: set[str] = set()
        self._passes: set[asyncio.Task[bool]] = set()
        self._handlers: dict[
            DecisionAction, Callable[[Task, Agent, Decision], Awaitable[ActionResult]]
        ] = {
            DecisionAction.COMPLETE_TASK: self._complete_task,
            DecisionAction.REQUEST_HELP: self._request_help,
            DecisionAction.DELEGATE_TASK: self._delegate_task,
            DecisionAction.GATHER_INFO: self._gather_info,
            DecisionAction.COLLABORATE: self._collaborate,
            DecisionAction.ESCALATE: self._escalate_decision,
        }
        missing = set(DecisionAction) - set(self._handlers)
        if missing:
            raise RuntimeError(f"no handler for actions: {sorted(missing)}")

        self.loops = [
            PeriodicLoop(
                "main", self.settings.main_interval, self.main_tick, self.settings.error_backoff
            ),
            PeriodicLoop("health", self.settings.health_interval, self.health_tick),
            PeriodicLoop("sweep", self.settings.sweep_interval, self.sweep_tick),
        ]

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        for loop in self.loops:
            loop.start()

    async def stop(self) -> None:
        """Stop every loop after its current tick, then drain in-flight passes."""
        for loop in self.loops:
            loop.stop()
        for loop in self.loops:
            await loop.join()
        await self.wait_idle()

    async def wait_idle(self) -> None:
        while self._passes:
            await asyncio.gather(*list(self._passes), return_exceptions=True)

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._processing)

    # -- main loop -----------------------------------------------------------

    def should_process(self, task: Task) -> bool:
        if self.clock() - task.updated_at > self.settings.stale_threshold:
            return True
        return self.tasks.has_communications_since(task.id, task.updated_at)

    async def main_tick(self) -> None:
        for status in POLLED_STATUSES:
            for task in self.tasks.get_by_status(status):
                if task.id in self._processing or not self.should_process(task):
                    continue
                # Claim before scheduling so the next tick cannot start a second pass.
                self._processing.add(task.id)
                pass_task = asyncio.create_task(self._run_claimed(task.id))
                self._passes.add(pass_task)
                pass_task.add_done_callback(self._passes.discard)

    async def process_task(self, task_id: str) -> bool:
        """Run one processing pass now. Returns False if a pass is already running."""
        if task_id in self._processing:
            log.debug("Task %s already in flight; skipping", task_id)
            return False
        self._processing.add(task_id)
        return await self._run_claimed(task_id)

    async def _run_claimed(self, task_id: str) -> bool:
        try:
            await self._process(task_id)
        except Exception:
            log.exception("Unhandled error while processing %s", task_id)
        finally:
            self._processing.discard(task_id)
        return True

    async def _process(self, task_id: str) -> None:
        task = self.tasks.get(task_id)
        if task is None or task.status not in POLLED_STATUSES:
            return
        if task.assigned_agent_id is None:
            self.auto_assign(task)
            return

        agent = self.agents.get(task.assigned_agent_id)
        if agent is None or agent.status != AgentStatus.ACTIVE:
            log.info(
                "Skipping %s: agent %s is %s",
                task.id,
                task.assigned_agent_id,
                agent.status if agent else "missing",
            )
            return

        try:
            if task.parent_task_id:
                self.decomposer.mark_started(task.id)
            decision, latency = await self._decide(task, agent)
            await self._execute(task, agent, decision, latency)
        except Exception as exc:
            log.warning("Processing %s failed: %s", task.id, exc)
            await self.handle_failure(task.id, exc)

    async def _decide(self, task: Task, agent: Agent) -> tuple[Decision, float]:
        history = await self.ledger.query(agent.id, limit=self.settings.history_limit)
        request = OracleRequest(
            task=task.summary(),
            agent=agent.summary(),
            recent_history=[
                {"type": e.type, "content": e.content, "timestamp": e.timestamp} for e in history
            ],
        )
        started = time.monotonic()
        try:
            decision = await asyncio.wait_for(
                self.oracle.decide(request), timeout=self.config.oracle.timeout
            )
        except asyncio.TimeoutError:
            log.warning("Oracle timed out for %s; using %s fallback", task.id, agent.role)
            decision = fallback_decision(agent.role, task)
        except TransientOracleFailure as e:
            log.warning("Oracle unavailable for %s (%s); using fallback", task.id, e)
            decision = fallback_decision(agent.role, task)
        except Exception:
            log.exception("Oracle error for %s; using fallback", task.id)
            decision = fallback_decision(agent.role, task)
        return decision, time.monotonic() - started

    async def _execute(
        self, task: Task, agent: Agent, decision: Decision, latency: float
    ) -> None:
        self.tasks.add_communication(
            Communication(
                task_id=task.id,
                from_agent_id=agent.id,
                to_agent_id=None,
                message=f"{decision.action.value}: {decision.reasoning}",
                message_type=MessageType.DECISION,
                read=True,
                metadata={
                    "artifacts": decision.artifacts_to_create,
                    "blockers": decision.blockers,
                    "fallback": decision.fallback,
                },
            )
        )

        action = decision.action
        result = await self._handlers[action](task, agent, decision)
        if decision.blockers and result.outcome != Outcome.ESCALATED:
            if not self.tasks.require(task.id).is_terminal:
                action = DecisionAction.ESCALATE
                result = await self.escalate(
                    task, agent, f"Blocked: {'; '.join(decision.blockers)}"
                )

        if decision.collaboration_needed and action != DecisionAction.COLLABORATE:
            await self._message_role(
                task,
                agent,
                decision.collaboration_needed.target_role,
                decision.collaboration_needed.message,
            )

        status = status_after(action, result.outcome)
        current = self.tasks.get(task.id)
        if current is None:
            raise ProcessingFailure(task.id, "task disappeared during processing")
        fields: dict[str, Any] = {"reason": result.reason or decision.reasoning}
        if current.status != status:
            fields["status"] = status
        self.tasks.update(task.id, **fields)

        await self.ledger.record(
            agent.id,
            MemoryType.ACTION,
            f"{decision.action.value} on {task.title}",
            task_id=task.id,
            action=decision.action.value,
            outcome=result.outcome.value,
            response_time=round(latency, 4),
            fallback=decision.fallback,
            success=True,
        )

    # -- decision handlers ---------------------------------------------------

    async def _complete_task(self, task: Task, agent: Agent, decision: Decision) -> ActionResult:
        if decision.blockers:
            # stage output is kept but the task does not move on; _execute escalates it
            self._create_artifacts(task, agent, decision.artifacts_to_create)
            await self.ledger.record(
                agent.id,
                MemoryType.LEARNING,
                f"Blocked during {agent.role} stage of {task.title}",
                task_id=task.id,
                area=task.tags[0] if task.tags else agent.role,
                blockers=list(decision.blockers),
            )
            return ActionResult(Outcome.CONTINUED, "Stage work recorded, blocked before handoff")

        if task.parent_task_id:
            self.assigner.release(
                task, TaskStatus.COMPLETED, reason=decision.reasoning, action="completed"
            )
            await self._record_success(task, agent)
            await self.decomposer.on_subtask_completed(task.id)
            return ActionResult(Outcome.COMPLETED, f"Subtask completed by {agent.role}")

        if self._needs_decomposition(task):
            decomposition = await self.decompose(task.id, agent.id)
            if decomposition.status == "completed":
                return ActionResult(Outcome.COMPLETED, "All subtasks completed")
            return ActionResult(Outcome.DECOMPOSED, "Decomposed into subtasks")

        self._create_artifacts(task, agent, decision.artifacts_to_create)
        await self._record_success(task, agent)
        return await self._hand_off(self.tasks.require(task.id), agent)

    async def decompose(self, task_id: str, agent_id: str | None = None) -> Decomposition:
        """Decompose a task and park it as blocked until its subtasks finish."""
        task = self.tasks.require(task_id)
        if task.parent_task_id:
            raise ValueError(f"{task_id} is already a subtask of {task.parent_task_id}")
        decomposition = await self.decomposer.decompose(
            task, agent_id or task.assigned_agent_id or "system"
        )
        current = self.tasks.require(task_id)
        if current.status != TaskStatus.BLOCKED and not decomposition.is_complete:
            self.assigner.transition(
                current,
                TaskStatus.BLOCKED,
                reason="Waiting on subtasks",
                action="decomposed",
            )
        return decomposition

    def _needs_decomposition(self, task: Task) -> bool:
        if task.parent_task_id is not None:
            return False
        if "decomposition" in task.metadata:
            # an unfinished decomposition keeps the parent parked on its subtasks
            decomposition = self.decomposer.get_decomposition(task.id)
            return decomposition is not None and decomposition.status != "completed"
        return (
            task.estimated_hours is not None
            and task.estimated_hours >= self.settings.decompose_threshold_hours
        )

    def _create_artifacts(self, task: Task, agent: Agent, names: list[str]) -> None:
        if not names:
            return
        metadata = dict(task.metadata)
        artifacts = list(metadata.get("artifacts", []))
        for name in names:
            artifacts.append(
                {
                    "name": name,
                    "stage": agent.role,
                    "agent_id": agent.id,
                    "created_at": self.clock(),
                }
            )
        metadata["artifacts"] = artifacts
        self.tasks.update(task.id, metadata=metadata)

    async def _hand_off(self, task: Task, agent: Agent) -> ActionResult:
        role = next_role(agent.role)
        if role is None:
            self.assigner.release(
                task,
                TaskStatus.COMPLETED,
                reason=f"Pipeline finished at {agent.role}",
                action="completed",
            )
            return ActionResult(Outcome.COMPLETED, f"Pipeline finished at {agent.role}")

        target = self._best_for_role(task, role, exclude=set())
        if target is None:
            metadata = dict(task.metadata)
            metadata["awaiting_role"] = role.value
            metadata["handoff_attempts"] = 0
            self.assigner.transition(
                task,
                TaskStatus.BLOCKED,
                reason=f"No active {role.value} to hand off to",
                action="handoff_pending",
                metadata=metadata,
            )
            return ActionResult(Outcome.AWAITING_ROLE, f"Waiting for an active {role.value}")

        self._handoff_to(task, agent.id, target)
        return ActionResult(Outcome.HANDED_OFF, f"Handed off to {target.role}")

    def _handoff_to(self, task: Task, from_agent_id: str | None, target: Agent) -> Task:
        metadata = {
            k: v for k, v in task.metadata.items() if k not in ("awaiting_role", "handoff_attempts")
        }
        updated = self.assigner.assign(
            task,
            target,
            reason=f"Handoff from {task.workflow_stage} to {target.role}",
            action="handoff",
            metadata=metadata,
        )
        self.tasks.add_communication(
            Communication(
                task_id=task.id,
                from_agent_id=from_agent_id,
                to_agent_id=target.id,
                message=f"Task '{task.title}' handed off to you for {target.role}",
                message_type=MessageType.HANDOFF,
                priority=6,
            )
        )
        return updated

    async def _request_help(self, task: Task, agent: Agent, decision: Decision) -> ActionResult:
        helper = self._least_loaded(exclude={agent.id}, below=agent.current_load)
        if helper is None:
            return ActionResult(Outcome.CONTINUED, "No less-loaded agent available to help")
        self.tasks.add_communication(
            Communication(
                task_id=task.id,
                from_agent_id=agent.id,
                to_agent_id=helper.id,
                message=decision.reasoning or f"Help requested on '{task.title}'",
                message_type=MessageType.HELP_REQUEST,
                priority=7,
                requires_response=True,
            )
        )
        return ActionResult(Outcome.CONTINUED, f"Help requested from {helper.id}")

    async def _delegate_task(self, task: Task, agent: Agent, decision: Decision) -> ActionResult:
        target = self._least_loaded(exclude={agent.id})
        if target is None:
            return ActionResult(Outcome.CONTINUED, "No agent available to delegate to")
        self.assigner.assign(
            task, target, reason=decision.reasoning or "Delegated", action="delegated"
        )
        self.tasks.add_communication(
            Communication(
                task_id=task.id,
                from_agent_id=agent.id,
                to_agent_id=target.id,
                message=f"Task '{task.title}' delegated to you",
                message_type=MessageType.DELEGATION,
                priority=6,
            )
        )
        return ActionResult(Outcome.REASSIGNED, f"Delegated to {target.id}")

    async def _gather_info(self, task: Task, agent: Agent, decision: Decision) -> ActionResult:
        await self.ledger.record(
            agent.id,
            MemoryType.EVENT,
            f"Gathering information for task {task.title}",
            task_id=task.id,
            event_type="information_gathering",
            reasoning=decision.reasoning,
        )
        return ActionResult(Outcome.CONTINUED, "Gathering information")

    async def _collaborate(self, task: Task, agent: Agent, decision: Decision) -> ActionResult:
        request = decision.collaboration_needed
        role = request.target_role if request else next_role(agent.role)
        if role is None:
            return ActionResult(Outcome.CONTINUED, "No collaborator role")
        message = request.message if request else decision.reasoning
        target = await self._message_role(task, agent, role, message)
        if target is None:
            return ActionResult(Outcome.CONTINUED, f"No active {role} to collaborate with")
        return ActionResult(Outcome.CONTINUED, f"Collaborating with {target.id}")

    async def _escalate_decision(
        self, task: Task, agent: Agent, decision: Decision
    ) -> ActionResult:
        return await self.escalate(task, agent, decision.reasoning or "Escalated by agent")

    async def _message_role(
        self, task: Task, agent: Agent, role: str, message: str
    ) -> Agent | None:
        candidates = [a for a in self.agents.find_by_role(role) if a.id != agent.id]
        if not candidates:
            log.info("No active %s for collaboration on %s", role, task.id)
            return None
        target = min(candidates, key=lambda a: (a.current_load, a.id))
        self.tasks.add_communication(
            Communication(
                task_id=task.id,
                from_agent_id=agent.id,
                to_agent_id=target.id,
                message=message or f"Collaboration requested on '{task.title}'",
                message_type=MessageType.COLLABORATION_REQUEST,
                priority=6,
                requires_response=True,
            )
        )
        return target

    # -- escalation and failure ----------------------------------------------

    async def escalate(self, task: Task, from_agent: Agent | None, reason: str) -> ActionResult:
        """Hand the task to the lead role and mark it escalated."""
        task = self.tasks.require(task.id)
        from_id = from_agent.id if from_agent else task.assigned_agent_id
        lead = self._best_for_role(task, LEAD_ROLE, exclude=set())

        if lead is None:
            self.assigner.release(task, TaskStatus.ESCALATED, reason=reason, action="escalated")
            self.notifications.raise_event(
                from_id,
                Severity.HIGH,
                f"Task {task.id} escalated but no {LEAD_ROLE.value} is available",
                {"event_type": "escalation", "task_id": task.id, "reason": reason},
            )
            return ActionResult(Outcome.ESCALATED, reason)

        self.assigner.assign(
            task, lead, reason=reason, action="escalated", status=TaskStatus.ESCALATED
        )
        self.tasks.add_communication(
            Communication(
                task_id=task.id,
                from_agent_id=from_id,
                to_agent_id=lead.id,
                message=f"Escalation: {reason}",
                message_type=MessageType.ESCALATION,
                priority=8,
                requires_response=True,
                metadata={"reason": reason},
            )
        )
        self.notifications.raise_event(
            from_id,
            Severity.MEDIUM,
            f"Task {task.id} escalated to {lead.id}",
            {"event_type": "escalation", "task_id": task.id, "reason": reason},
        )
        return ActionResult(Outcome.ESCALATED, reason)

    async def handle_failure(self, task_id: str, error: BaseException) -> Task | None:
        """Record a failed pass; retry the task or escalate it once recovery is exhausted."""
        task = self.tasks.get(task_id)
        if task is None:
            return None
        agent_id = task.assigned_agent_id
        ledger_agent = agent_id or "system"
        message = str(error) or type(error).__name__

        await self.ledger.record(
            ledger_agent,
            MemoryType.EVENT,
            FAILURE_EVENT,
            task_id=task.id,
            event_type="task_failure",
            error=message,
        )
        await self.ledger.record(
            ledger_agent,
            MemoryType.ACTION,
            f"Failed processing {task.title}",
            task_id=task.id,
            action="process_task",
            success=False,
            error=message,
        )
        metadata = dict(task.metadata)
        metadata["last_error"] = message
        task = self.assigner.transition(
            task,
            TaskStatus.FAILED,
            reason=f"Processing failed: {message}",
            action="failed",
            metadata=metadata,
        )
        self.notifications.raise_event(
            agent_id,
            Severity.HIGH,
            f"Task {task.id} failed: {message}",
            {"event_type": "task_failure", "task_id": task.id},
        )
        if agent_id is not None:
            agent = self.agents.get(agent_id)
            if agent is not None:
                self.agents.update_health(
                    agent_id, agent.health_score - self.settings.health_penalty
                )
        if task.parent_task_id:
            self.decomposer.on_subtask_failed(task.id)

        failures = await self.ledger.count(
            type=MemoryType.EVENT, task_id=task.id, content=FAILURE_EVENT
        )
        if failures > self.settings.max_recovery_attempts:
            exhausted = RecoveryExhausted(task.id, failures)
            log.warning("%s; escalating", exhausted)
            await self.escalate(task, None, str(exhausted))
        else:
            self.assigner.release(
                task,
                TaskStatus.PENDING,
                reason=(
                    f"Retry {failures}/{self.settings.max_recovery_attempts} "
                    f"after failure: {message}"
                ),
                action="retry",
            )
        return self.tasks.get(task.id)

    async def _record_success(self, task: Task, agent: Agent) -> None:
        self.agents.update_health(
            agent.id, agent.health_score + self.settings.health_recovery_step
        )
        await self.ledger.record(
            agent.id,
            MemoryType.LEARNING,
            f"Successfully completed {agent.role} stage of {task.title}",
            task_id=task.id,
            area=task.tags[0] if task.tags else agent.role,
            tags=list(task.tags),
        )

    # -- assignment ----------------------------------------------------------

    def _best_for_role(self, task: Task, role: str, exclude: set[str]) -> Agent | None:
        candidates = [a for a in self.agents.find_by_role(role) if a.id not in exclude]
        ranked = rank_agents_for_task(candidates, task, self.config.scoring)
        return ranked[0].agent if ranked else None

    def _least_loaded(self, exclude: set[str], below: int | None = None) -> Agent | None:
        candidates = [
            a
            for a in self.agents.list(status=AgentStatus.ACTIVE)
            if a.id not in exclude and (below is None or a.current_load < below)
        ]
        if not candidates:
            return None
        lowest = min(a.current_load for a in candidates)
        tied = sorted((a for a in candidates if a.current_load == lowest), key=lambda a: a.id)
        return self.rng.choice(tied)

    def auto_assign(self, task: Task, exclude: set[str] | None = None) -> Agent | None:
        """Assign ``task`` to the best-scoring active agent, if any."""
        exclude = exclude or set()
        candidates = [a for a in self.agents.list(status=AgentStatus.ACTIVE) if a.id not in exclude]
        ranked = rank_agents_for_task(candidates, task, self.config.scoring)
        if not ranked:
            log.info("No eligible agent for %s; leaving it %s", task.id, task.status)
            return None
        best = ranked[0]
        self.assigner.assign(
            task,
            best.agent,
            reason=f"Auto-assigned (score {best.score:.1f}: {best.reasoning})",
            action="auto_assigned",
        )
        self.tasks.add_communication(
            Communication(
                task_id=task.id,
                from_agent_id=None,
                to_agent_id=best.agent.id,
                message=f"You have been assigned '{task.title}'",
                message_type=MessageType.ASSIGNMENT,
            )
        )
        return best.agent

    # -- health loop and sweep -----------------------------------------------

    async def health_tick(self) -> None:
        for agent in self.agents.list():
            try:
                self._check_agent(agent)
            except Exception:
                log.exception("Health check failed for %s", agent.id)

    def _check_agent(self, agent: Agent) -> None:
        if agent.current_load > self.settings.overload_ratio * agent.max_load:
            active = [
                t
                for t in self.tasks.get_by_agent(agent.id)
                if t.status == TaskStatus.IN_PROGRESS and t.id not in self._processing
            ]
            if active:
                moved = self.auto_assign(active[0], exclude={agent.id})
                if moved is not None:
                    log.info("Rebalanced %s from %s to %s", active[0].id, agent.id, moved.id)
        if agent.health_score < self.settings.low_health_threshold:
            self.notifications.raise_event(
                agent.id,
                Severity.MEDIUM,
                f"Agent {agent.name} health is {agent.health_score:.0f}",
                {"event_type": "low_health", "health_score": agent.health_score},
            )

    async def sweep_tick(self) -> None:
        for task in self.tasks.get_by_status(TaskStatus.PENDING):
            if task.assigned_agent_id is None and task.id not in self._processing:
                try:
                    self.auto_assign(task)
                except Exception:
                    log.exception("Sweep could not assign %s", task.id)
        for task in self.tasks.get_by_status(TaskStatus.BLOCKED):
            if "awaiting_role" in task.metadata and task.id not in self._processing:
                try:
                    await self._retry_handoff(task)
                except Exception:
                    log.exception("Sweep could not retry handoff for %s", task.id)

    async def _retry_handoff(self, task: Task) -> None:
        role = task.metadata["awaiting_role"]
        target = self._best_for_role(task, role, exclude=set())
        if target is not None:
            self._handoff_to(task, task.assigned_agent_id, target)
            return
        attempts = int(task.metadata.get("handoff_attempts", 0)) + 1
        if attempts > self.settings.max_recovery_attempts:
            await self.escalate(
                task, None, f"No active {role} after {attempts - 1} handoff attempts"
            )
            return
        metadata = dict(task.metadata)
        metadata["handoff_attempts"] = attempts
        self.tasks.update(task.id, metadata=metadata)

    # -- manual control ------------------------------------------------------

    def pause_task(self, task_id: str, reason: str = "Paused") -> Task:
        task = self.tasks.require(task_id)
        if task.status not in POLLED_STATUSES:
            raise ValueError(f"cannot pause task in status {task.status}")
        metadata = dict(task.metadata)
        metadata["paused"] = True
        return self.assigner.transition(
            task, TaskStatus.BLOCKED, reason=reason, action="paused", metadata=metadata
        )

    def resume_task(self, task_id: str, reason: str = "Resumed") -> Task:
        """Resume a paused, escalated or failed task."""
        task = self.tasks.require(task_id)
        metadata = {k: v for k, v in task.metadata.items() if k != "paused"}
        if task.status == TaskStatus.BLOCKED and task.metadata.get("paused"):
            status = TaskStatus.IN_PROGRESS if task.assigned_agent_id else TaskStatus.PENDING
            return self.assigner.transition(
                task, status, reason=reason, action="resumed", metadata=metadata
            )
        if task.status in (TaskStatus.ESCALATED, TaskStatus.FAILED):
            return self.assigner.release(
                task, TaskStatus.PENDING, reason=reason, action="resumed", metadata=metadata
            )
        raise ValueError(f"task {task_id} is {task.status}; nothing to resume")

    def workflow_status(self) -> WorkflowStatus:
        counts = self.tasks.count_by_status()
        agents = self.agents.list()
        return WorkflowStatus(
            tasks=counts,
            total_tasks=sum(counts.values()),
            agents_total=len(agents),
            agents_active=sum(1 for a in agents if a.status == AgentStatus.ACTIVE),
            total_load=sum(a.current_load for a in agents),
            average_health=(
                sum(a.health_score for a in agents) / len(agents) if agents else 0.0
            ),
            in_flight=sorted(self._processing),
            loops={loop.name: loop.ticks for loop in self.loops},
        )
