"""
Self-Monitoring Service - periodic per-agent health evaluation

Each cycle, per agent:

1. Pull the recent memory window (2 hours, at most 50 entries, not counting
   the monitor's own reflection entries).
2. Evaluate performance, communication, logic and resource issues.
3. Classify: critical > stuck (high logic issue) > degraded (any issue) > healthy.
4. Recompute rolling performance metrics.
5. Run reflection and promote well-practised areas into the agent's expertise.
6. Drop reflection entries older than the retention window (1 hour).

A critical agent triggers a priority-10 message to every admin/supervisor agent
and a critical notification. Health checks and metrics are written back to the
agent's ledger as ``reflection`` entries.
"""

from __future__ import annotations

import logging
import re
import time
from collections import Counter
from collections.abc import Callable, Sequence
from typing import Any

from devcrew.config import CrewConfig
from devcrew.engine.decisions import DecisionAction
from devcrew.engine.notifications import NotificationSink, Severity
from devcrew.engine.scheduler import PeriodicLoop
from devcrew.memory import MemoryLedger
from devcrew.models import (
    Agent,
    Communication,
    MemoryEntry,
    MemoryType,
    MessageType,
    TaskStatus,
)
from devcrew.monitoring.models import (
    CausalChain,
    CausalEvent,
    Explanation,
    HealthCheck,
    HealthStatus,
    Issue,
    IssueType,
    PerformanceMetrics,
)
from devcrew.storage import AgentRegistry, TaskStore

log = logging.getLogger(__name__)

_WORD = re.compile(r"\w+")
DAY = 24 * 3600
ALERT_ROLES = ("admin", "supervisor")

RECOMMENDATIONS: dict[IssueType, str] = {
    IssueType.PERFORMANCE: (
        "Review recent failures and consider adjusting the approach or asking for help"
    ),
    IssueType.COMMUNICATION: "Process pending messages and confirm communication channels",
    IssueType.LOGIC: "Re-examine the current task; break it down or escalate if progress stalls",
    IssueType.RESOURCE: "Redistribute work to less loaded agents or archive old memory",
    IssueType.DEPENDENCY: "Resolve blocking dependencies with the owning agents",
}


def word_similarity(a: str, b: str) -> float:
    """Jaccard similarity of the lower-cased word sets of two strings."""
    words_a = set(_WORD.findall(a.lower()))
    words_b = set(_WORD.findall(b.lower()))
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def classify(issues: Sequence[Issue]) -> HealthStatus:
    if any(i.severity == Severity.CRITICAL for i in issues):
        return HealthStatus.CRITICAL
    if any(i.type == IssueType.LOGIC and i.severity == Severity.HIGH for i in issues):
        return HealthStatus.STUCK
    if issues:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


class SelfMonitoringService:
    def __init__(
        self,
        tasks: TaskStore,
        agents: AgentRegistry,
        ledger: MemoryLedger,
        notifications: NotificationSink,
        config: CrewConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.tasks = tasks
        self.agents = agents
        self.ledger = ledger
        self.notifications = notifications
        self.config = config or CrewConfig()
        self.settings = self.config.monitor
        self.clock = clock
        self.health_checks: dict[str, HealthCheck] = {}
        self.metrics: dict[str, PerformanceMetrics] = {}
        self.loop = PeriodicLoop("self-monitor", self.settings.interval, self.run_cycle)

    def start(self) -> None:
        self.loop.start()

    async def stop(self) -> None:
        self.loop.stop()
        await self.loop.join()

    async def run_cycle(self) -> None:
        for agent in self.agents.list():
            try:
                await self.monitor_agent(agent.id)
            except Exception:
                log.exception("Self-monitoring failed for %s", agent.id)

    async def monitor_agent(self, agent_id: str) -> HealthCheck:
        check = await self.check_health(agent_id)
        await self.update_metrics(agent_id)
        await self.apply_reflection(agent_id)
        await self.prune_reflections(agent_id)
        return check

    async def prune_reflections(self, agent_id: str) -> int:
        """Drop this monitor's own reflection entries past the retention window."""
        retention = self.settings.reflection_retention_seconds
        if not retention:
            return 0
        return await self.ledger.cleanup(
            agent_id, before=self.clock() - retention, type=MemoryType.REFLECTION
        )

    # -- health --------------------------------------------------------------

    async def recent_window(self, agent_id: str) -> list[MemoryEntry]:
        now = self.clock()
        return await self.ledger.query(
            agent_id,
            since=now - self.settings.window_seconds,
            limit=self.settings.window_limit,
            exclude=(MemoryType.REFLECTION,),
        )

    async def check_health(self, agent_id: str) -> HealthCheck:
        now = self.clock()
        window = await self.recent_window(agent_id)
        issues = [
            *self._performance_issues(window, now),
            *self._communication_issues(agent_id, window, now),
            *self._logic_issues(window, now),
            *await self._resource_issues(agent_id, now),
        ]
        status = classify(issues)
        recommendations = list(dict.fromkeys(i.suggested_action for i in issues))
        for issue_type in dict.fromkeys(i.type for i in issues):
            recommendations.append(RECOMMENDATIONS[issue_type])

        check = HealthCheck(
            agent_id=agent_id,
            status=status,
            issues=issues,
            recommendations=list(dict.fromkeys(recommendations)),
            last_check=now,
            next_check=now + self.settings.interval,
        )
        self.health_checks[agent_id] = check

        await self.ledger.record(
            agent_id,
            MemoryType.REFLECTION,
            f"Health check: {status.value}",
            kind="health_check",
            status=status.value,
            issues=[
                {"type": i.type.value, "severity": i.severity.value, "description": i.description}
                for i in issues
            ],
        )
        if status == HealthStatus.CRITICAL:
            self._alert_supervisors(agent_id, check)
        elif status != HealthStatus.HEALTHY:
            log.info("Agent %s is %s with %d issues", agent_id, status.value, len(issues))
        return check

    def _performance_issues(self, window: list[MemoryEntry], now: float) -> list[Issue]:
        s = self.settings
        issues = []
        actions = [e for e in window if e.type == MemoryType.ACTION]
        if actions:
            failures = sum(1 for e in actions if e.details.get("success") is False)
            rate = failures / len(actions)
            severity = None
            if rate > s.failure_rate_critical:
                severity = Severity.CRITICAL
            elif rate > s.failure_rate_high:
                severity = Severity.HIGH
            elif rate > s.failure_rate_medium:
                severity = Severity.MEDIUM
            if severity is not None:
                issues.append(
                    Issue(
                        type=IssueType.PERFORMANCE,
                        severity=severity,
                        description=(
                            f"High failure rate: {rate:.0%} of {len(actions)} recent actions"
                        ),
                        impact="Tasks are not being completed reliably",
                        suggested_action="Review failed actions and adjust approach",
                        detected_at=now,
                    )
                )

        times = [
            float(e.details["response_time"])
            for e in actions
            if isinstance(e.details.get("response_time"), (int, float))
        ]
        if times:
            average = sum(times) / len(times)
            severity = None
            if average > s.response_time_high:
                severity = Severity.HIGH
            elif average > s.response_time_medium:
                severity = Severity.MEDIUM
            if severity is not None:
                issues.append(
                    Issue(
                        type=IssueType.PERFORMANCE,
                        severity=severity,
                        description=f"Slow response time: {average:.1f}s average",
                        impact="Work moves through the pipeline slowly",
                        suggested_action="Simplify decision making or split large tasks",
                        detected_at=now,
                    )
                )
        return issues

    def _communication_issues(
        self, agent_id: str, window: list[MemoryEntry], now: float
    ) -> list[Issue]:
        s = self.settings
        issues = []
        unread = len(self.tasks.inbox(agent_id, unread_only=True))
        if unread > s.unread_medium:
            issues.append(
                Issue(
                    type=IssueType.COMMUNICATION,
                    severity=Severity.HIGH if unread > s.unread_high else Severity.MEDIUM,
                    description=f"{unread} unread messages",
                    impact="Requests from other agents are going unanswered",
                    suggested_action="Process pending messages",
                    detected_at=now,
                )
            )

        failed = [
            e
            for e in window
            if e.type == MemoryType.EVENT
            and "communication" in e.content.lower()
            and "failed" in e.content.lower()
        ]
        if len(failed) > s.failed_communication_limit:
            issues.append(
                Issue(
                    type=IssueType.COMMUNICATION,
                    severity=Severity.MEDIUM,
                    description=f"{len(failed)} failed communication attempts",
                    impact="Coordination with other agents is unreliable",
                    suggested_action="Check communication channels and retry",
                    detected_at=now,
                )
            )
        return issues

    def _logic_issues(self, window: list[MemoryEntry], now: float) -> list[Issue]:
        s = self.settings
        recent = [
            e
            for e in window
            if e.type == MemoryType.ACTION and e.timestamp > now - s.stuck_seconds
        ]
        if not recent:
            return [
                Issue(
                    type=IssueType.LOGIC,
                    severity=Severity.HIGH,
                    description=f"No actions in the last {s.stuck_seconds / 60:.0f} minutes",
                    impact="Agent may be stuck",
                    suggested_action="Check the agent's current task and restart it if needed",
                    detected_at=now,
                )
            ]

        issues = []
        repeats = Counter(e.content[:50] for e in recent)
        for description, count in repeats.items():
            if count > s.repeat_limit:
                issues.append(
                    Issue(
                        type=IssueType.LOGIC,
                        severity=Severity.MEDIUM,
                        description=f"Action repeated {count} times: {description}",
                        impact="Agent may be stuck in a loop",
                        suggested_action="Try a different approach or ask for help",
                        detected_at=now,
                    )
                )
        return issues

    async def _resource_issues(self, agent_id: str, now: float) -> list[Issue]:
        s = self.settings
        issues = []
        open_tasks = [
            t
            for t in self.tasks.get_by_agent(agent_id)
            if t.status not in (TaskStatus.COMPLETED, TaskStatus.FAILED)
        ]
        if len(open_tasks) > s.open_tasks_medium:
            issues.append(
                Issue(
                    type=IssueType.RESOURCE,
                    severity=(
                        Severity.HIGH if len(open_tasks) > s.open_tasks_high else Severity.MEDIUM
                    ),
                    description=f"{len(open_tasks)} open tasks",
                    impact="Agent is overloaded",
                    suggested_action="Redistribute tasks to other agents",
                    detected_at=now,
                )
            )

        size = await self.ledger.count(agent_id)
        if size > s.ledger_size_low:
            issues.append(
                Issue(
                    type=IssueType.RESOURCE,
                    severity=Severity.LOW,
                    description=f"Memory ledger holds {size} entries",
                    impact="Memory queries are getting slower",
                    suggested_action="Clean up old memory entries",
                    detected_at=now,
                )
            )
        return issues

    def _alert_supervisors(self, agent_id: str, check: HealthCheck) -> None:
        summary = "; ".join(i.description for i in check.issues)
        for supervisor in self.agents.list():
            if supervisor.id == agent_id:
                continue
            if not any(role in supervisor.role for role in ALERT_ROLES):
                continue
            self.tasks.add_communication(
                Communication(
                    task_id=None,
                    from_agent_id=agent_id,
                    to_agent_id=supervisor.id,
                    message=f"Agent {agent_id} is in critical state: {summary}",
                    message_type=MessageType.HEALTH_ALERT,
                    priority=10,
                    requires_response=True,
                    metadata={"issues": len(check.issues)},
                )
            )
        self.notifications.raise_event(
            agent_id,
            Severity.CRITICAL,
            f"Agent {agent_id} is critical: {summary}",
            {"event_type": "critical_health", "recommendations": check.recommendations},
        )

    # -- metrics and reflection ----------------------------------------------

    async def update_metrics(self, agent_id: str) -> PerformanceMetrics:
        now = self.clock()
        actions = await self.ledger.query(agent_id, type=MemoryType.ACTION)
        succeeded = sum(1 for e in actions if e.details.get("success") is True)
        failed = sum(1 for e in actions if e.details.get("success") is False)
        judged = succeeded + failed

        durations = []
        for task in self.tasks.get_by_status(TaskStatus.COMPLETED):
            if task.completed_at is None:
                continue
            if any(t.agent_id == agent_id for t in task.workflow_history):
                durations.append(task.completed_at - task.created_at)
        failure_events = await self.ledger.query(agent_id, type=MemoryType.EVENT)
        failed_tasks = {
            e.task_id
            for e in failure_events
            if e.details.get("event_type") == "task_failure" and e.task_id
        }

        since = now - self.settings.trend_days * DAY
        learnings = await self.ledger.query(agent_id, type=MemoryType.LEARNING, since=since)
        strategies = await self.ledger.query(agent_id, type=MemoryType.STRATEGY, since=since)
        messages = self.tasks.messages_for_agent(agent_id)

        metrics = PerformanceMetrics(
            agent_id=agent_id,
            tasks_completed=len(durations),
            tasks_failed=len(failed_tasks),
            success_rate=succeeded / judged if judged else 0.0,
            average_completion_time=sum(durations) / len(durations) if durations else 0.0,
            collaboration_score=min(1.0, len(messages) / 100),
            learning_rate=min(1.0, len(learnings) / 20),
            adaptability_score=min(1.0, len(strategies) / 10),
            last_updated=now,
        )
        self.metrics[agent_id] = metrics
        await self.ledger.record(
            agent_id,
            MemoryType.REFLECTION,
            "Performance metrics updated",
            kind="metrics",
            success_rate=round(metrics.success_rate, 4),
            collaboration_score=round(metrics.collaboration_score, 4),
            learning_rate=round(metrics.learning_rate, 4),
            adaptability_score=round(metrics.adaptability_score, 4),
        )
        return metrics

    async def apply_reflection(self, agent_id: str) -> list[str]:
        """Reflect and add areas with enough successes to the agent's expertise.

        Returns the newly added skills.
        """
        summary = await self.ledger.reflect(agent_id)
        agent = self.agents.get(agent_id)
        if agent is None:
            return []
        promoted = [
            area
            for area, count in summary.successful_topics.items()
            if count >= self.settings.expertise_promotion_successes and area not in agent.expertise
        ]
        if promoted:
            self.agents.update_expertise(agent_id, [*agent.expertise, *promoted])
            log.info("Expertise of %s extended with %s", agent_id, ", ".join(sorted(promoted)))
        return sorted(promoted)

    # -- explanations --------------------------------------------------------

    async def explain_action(
        self, agent_id: str, action: str, context: dict[str, Any] | None = None
    ) -> Explanation:
        """Reconstruct why an agent took ``action`` from the memory preceding it."""
        context = dict(context or {})
        s = self.settings
        timestamp = float(context.get("timestamp", self.clock()))
        window = await self.ledger.query(
            agent_id,
            since=timestamp - s.explain_window_seconds,
            until=timestamp,
            limit=s.explain_limit,
        )

        related = [
            e
            for e in window
            if e.type in (MemoryType.THOUGHT, MemoryType.EVENT)
            and word_similarity(e.content, action) > s.similarity_threshold
        ]
        similar = [
            e
            for e in await self.ledger.query(
                agent_id, type=MemoryType.ACTION, until=timestamp, limit=s.window_limit
            )
            if word_similarity(e.content, action) > s.similarity_threshold
        ]
        successful = [e for e in similar if e.details.get("success") is True]
        success_learnings = [
            e for e in window if e.type == MemoryType.LEARNING and "success" in e.content.lower()
        ]
        success_ratio = len(successful) / len(similar) if similar else 0.0
        confidence = min(
            1.0, 0.5 + 0.3 * success_ratio + min(0.2, 0.05 * len(success_learnings))
        )

        factors = []
        if related:
            factors.append(f"{len(related)} related thoughts or events")
        if similar:
            factors.append(f"{len(successful)}/{len(similar)} similar past actions succeeded")
        if success_learnings:
            factors.append(f"{len(success_learnings)} successful learnings")
        factors.extend(
            e.content for e in window if e.type == MemoryType.STRATEGY
        )

        action_lower = action.lower()
        alternatives = [
            a.value
            for a in DecisionAction
            if a.value not in action_lower and a.value.replace("_", " ") not in action_lower
        ]

        return Explanation(
            agent_id=agent_id,
            action=action,
            timestamp=timestamp,
            inputs=[e.content for e in related],
            outputs=[str(o) for o in context.get("outputs", [])],
            reasoning={
                "preceding_entries": [
                    {"id": e.id, "type": e.type, "timestamp": e.timestamp} for e in related
                ],
                "similar_actions": len(similar),
                "successful_similar_actions": len(successful),
                "success_ratio": success_ratio,
                "successful_learnings": len(success_learnings),
                "context": {k: v for k, v in context.items() if k != "outputs"},
            },
            confidence=confidence,
            alternative_actions=alternatives,
            influencing_factors=factors,
        )

    async def generate_causal_chain(self, agent_id: str, outcome: str) -> CausalChain:
        """Link consecutive memory entries that are close in time and wording."""
        s = self.settings
        window = await self.recent_window(agent_id)
        events = [
            CausalEvent(
                id=e.id if e.id is not None else i,
                timestamp=e.timestamp,
                type=e.type,
                content=e.content,
            )
            for i, e in enumerate(window)
        ]
        for prev, event in zip(events, events[1:]):
            close = event.timestamp - prev.timestamp < s.causal_gap_seconds
            if close and word_similarity(prev.content, event.content) > s.similarity_threshold:
                event.caused_by.append(prev.id)
                prev.influences.append(event.id)

        with_cause = sum(1 for e in events if e.caused_by)
        return CausalChain(
            agent_id=agent_id,
            outcome=outcome,
            events=events,
            root_causes=[e.id for e in events if e.influences and not e.caused_by],
            confidence=with_cause / len(events) if events else 0.0,
        )

    def latest(self, agent_id: str) -> HealthCheck | None:
        return self.health_checks.get(agent_id)

    def agent_summary(self, agent: Agent) -> dict[str, Any]:
        check = self.health_checks.get(agent.id)
        metrics = self.metrics.get(agent.id)
        return {
            "agent_id": agent.id,
            "role": agent.role,
            "status": check.status.value if check else "unknown",
            "issues": len(check.issues) if check else 0,
            "success_rate": metrics.success_rate if metrics else None,
        }
