"""Tests for the self-monitoring service."""

from __future__ import annotations

import pytest

from conftest import FakeClock
from devcrew.crew import Crew
from devcrew.engine import Severity
from devcrew.engine.workflow import FAILURE_EVENT
from devcrew.models import Communication, MemoryType, MessageType, Task, TaskStatus
from devcrew.monitoring import HealthStatus, IssueType, classify, word_similarity

pytestmark = pytest.mark.anyio


async def _actions(crew: Crew, agent_id: str, outcomes: list[bool], **details) -> None:
    for i, ok in enumerate(outcomes):
        await crew.ledger.record(
            agent_id, MemoryType.ACTION, f"Worked on item {i}", success=ok, **details
        )


def _assign(crew: Crew, task_id: str, agent_id: str) -> Task:
    task = crew.tasks.create(Task(id=task_id, title=f"Task {task_id}"))
    return crew.assigner.assign(task, crew.agents.require(agent_id), reason="Manual")


class TestHelpers:
    def test_word_similarity(self) -> None:
        assert word_similarity("Fix the login bug", "fix LOGIN bug") == pytest.approx(0.75)
        assert word_similarity("", "anything") == 0.0
        assert word_similarity("alpha", "beta") == 0.0

    def test_classify_empty_is_healthy(self) -> None:
        assert classify([]) == HealthStatus.HEALTHY


class TestHealthCheck:
    async def test_healthy_agent(self, crew: Crew) -> None:
        crew.provision()
        _assign(crew, "t-1", "dev-1")
        _assign(crew, "t-2", "dev-1")
        await _actions(crew, "dev-1", [True, True, True])

        check = await crew.monitor.check_health("dev-1")

        assert check.status == HealthStatus.HEALTHY
        assert check.issues == []
        assert check.recommendations == []
        assert check.next_check == check.last_check + crew.config.monitor.interval
        assert crew.monitor.latest("dev-1") is check

    async def test_idle_agent_is_stuck(self, crew: Crew, clock: FakeClock) -> None:
        crew.provision()
        await _actions(crew, "dev-1", [True])
        clock.advance(31 * 60)

        check = await crew.monitor.check_health("dev-1")

        assert check.status == HealthStatus.STUCK
        (issue,) = check.issues
        assert issue.type == IssueType.LOGIC
        assert issue.severity == Severity.HIGH

    async def test_failure_rate_above_half_is_high(self, crew: Crew) -> None:
        crew.provision()
        await _actions(crew, "dev-1", [False, True, False, True, False])

        check = await crew.monitor.check_health("dev-1")

        performance = [i for i in check.issues if i.type == IssueType.PERFORMANCE]
        assert [i.severity for i in performance] == [Severity.HIGH]
        assert "60%" in performance[0].description
        assert check.status == HealthStatus.DEGRADED
        assert check.recommendations

    async def test_slow_responses(self, crew: Crew) -> None:
        crew.provision()
        await _actions(crew, "dev-1", [True, True], response_time=12.0)

        check = await crew.monitor.check_health("dev-1")

        (issue,) = check.issues
        assert issue.type == IssueType.PERFORMANCE
        assert issue.severity == Severity.HIGH
        assert "Slow response" in issue.description

    async def test_repeated_action_is_a_loop(self, crew: Crew) -> None:
        crew.provision()
        for _ in range(6):
            await crew.ledger.record("dev-1", MemoryType.ACTION, "Retry deploy", success=True)

        check = await crew.monitor.check_health("dev-1")

        (issue,) = check.issues
        assert issue.type == IssueType.LOGIC
        assert issue.severity == Severity.MEDIUM
        assert check.status == HealthStatus.DEGRADED

    async def test_unread_messages(self, crew: Crew) -> None:
        crew.provision()
        await _actions(crew, "dev-1", [True])
        for i in range(11):
            crew.tasks.add_communication(
                Communication(None, "pm-1", "dev-1", f"Ping {i}", MessageType.COLLABORATION_REQUEST)
            )

        check = await crew.monitor.check_health("dev-1")

        (issue,) = check.issues
        assert issue.type == IssueType.COMMUNICATION
        assert issue.severity == Severity.MEDIUM

    async def test_critical_agent_alerts_supervisors(self, crew: Crew) -> None:
        crew.provision()
        await _actions(crew, "dev-1", [False] * 5)

        check = await crew.monitor.check_health("dev-1")

        assert check.status == HealthStatus.CRITICAL
        alerts = crew.tasks.inbox("sup-1")
        assert len(alerts) == 1
        assert alerts[0].priority == 10
        assert alerts[0].message_type == MessageType.HEALTH_ALERT
        assert crew.tasks.inbox("lead-1") == []
        events = crew.notifications.recent(agent_id="dev-1")
        assert events[0].severity == Severity.CRITICAL

    async def test_own_reflections_do_not_crowd_the_window(self, crew: Crew) -> None:
        crew.provision()
        await _actions(crew, "dev-1", [True])
        for i in range(60):
            await crew.ledger.record("dev-1", MemoryType.REFLECTION, f"Health check {i}")

        check = await crew.monitor.check_health("dev-1")

        assert check.status == HealthStatus.HEALTHY

    async def test_check_is_recorded_as_reflection(self, crew: Crew) -> None:
        crew.provision()
        await crew.monitor.check_health("qa-1")
        (entry,) = await crew.ledger.query("qa-1", type=MemoryType.REFLECTION)
        assert entry.details["kind"] == "health_check"
        assert entry.details["status"] == HealthStatus.STUCK


class TestMetrics:
    async def test_rates(self, crew: Crew, clock: FakeClock) -> None:
        crew.provision()
        await _actions(crew, "dev-1", [True, True, True, False])
        for _ in range(4):
            await crew.ledger.record(
                "dev-1", MemoryType.LEARNING, "Successfully shipped", area="api"
            )
        await crew.ledger.record("dev-1", MemoryType.STRATEGY, "Pair on reviews")
        for _ in range(2):
            await crew.ledger.record(
                "dev-1", MemoryType.EVENT, FAILURE_EVENT, task_id="t-9", event_type="task_failure"
            )
        for i in range(10):
            crew.tasks.add_communication(
                Communication(None, "dev-1", "qa-1", f"Build {i} ready", MessageType.HANDOFF)
            )
        task = _assign(crew, "t-1", "dev-1")
        clock.advance(100)
        crew.assigner.release(task, TaskStatus.COMPLETED, reason="Done", action="completed")

        metrics = await crew.monitor.update_metrics("dev-1")

        assert metrics.tasks_completed == 1
        assert metrics.tasks_failed == 1
        assert metrics.success_rate == pytest.approx(0.75)
        assert metrics.average_completion_time == pytest.approx(100)
        assert metrics.collaboration_score == pytest.approx(0.1)
        assert metrics.learning_rate == pytest.approx(0.2)
        assert metrics.adaptability_score == pytest.approx(0.1)

    async def test_no_actions_means_zero_success(self, crew: Crew) -> None:
        crew.provision()
        metrics = await crew.monitor.update_metrics("po-1")
        assert metrics.success_rate == 0.0
        assert metrics.average_completion_time == 0.0

    async def test_reflection_promotes_expertise(self, crew: Crew) -> None:
        crew.provision()
        for _ in range(3):
            await crew.ledger.record(
                "qa-1", MemoryType.LEARNING, "Successfully completed qa stage", area="payments"
            )

        promoted = await crew.monitor.apply_reflection("qa-1")

        assert promoted == ["payments"]
        assert "payments" in crew.agents.require("qa-1").expertise

    async def test_cycle_prunes_old_reflections(self, crew: Crew, clock: FakeClock) -> None:
        crew.provision()
        await crew.monitor.monitor_agent("qa-1")
        clock.advance(crew.config.monitor.reflection_retention_seconds + 1)

        await crew.monitor.monitor_agent("qa-1")

        entries = await crew.ledger.query("qa-1", type=MemoryType.REFLECTION)
        assert [e.details["kind"] for e in entries] == ["health_check", "metrics"]
        assert all(e.timestamp == clock.now for e in entries)

    async def test_monitor_cycle_covers_every_agent(self, crew: Crew) -> None:
        crew.provision()
        await crew.monitor.run_cycle()
        assert set(crew.monitor.health_checks) == {a.id for a in crew.agents.list()}
        summary = crew.monitor.agent_summary(crew.agents.require("pm-1"))
        assert summary["status"] == HealthStatus.STUCK
        assert summary["success_rate"] == 0.0


class TestExplanations:
    async def test_explain_action(self, crew: Crew) -> None:
        crew.provision()
        await crew.ledger.record("dev-1", MemoryType.THOUGHT, "Considering the login redesign")
        await crew.ledger.record(
            "dev-1", MemoryType.ACTION, "complete_task on login redesign", success=True
        )
        await crew.ledger.record(
            "dev-1", MemoryType.LEARNING, "Successfully completed developer stage of login"
        )

        explanation = await crew.monitor.explain_action(
            "dev-1", "complete_task on login redesign", {"outputs": ["Source code"]}
        )

        assert explanation.inputs == ["Considering the login redesign"]
        assert explanation.outputs == ["Source code"]
        assert explanation.confidence == pytest.approx(0.85)
        assert "complete_task" not in explanation.alternative_actions
        assert len(explanation.alternative_actions) == 5
        assert explanation.reasoning["success_ratio"] == 1.0

    async def test_explain_without_memory(self, crew: Crew) -> None:
        explanation = await crew.monitor.explain_action("nobody", "escalate")
        assert explanation.confidence == pytest.approx(0.5)
        assert explanation.inputs == []

    async def test_explain_ignores_later_entries(self, crew: Crew, clock: FakeClock) -> None:
        asked_at = clock.now
        clock.advance(10)
        await crew.ledger.record("dev-1", MemoryType.THOUGHT, "Considering the login redesign")

        explanation = await crew.monitor.explain_action(
            "dev-1", "login redesign", {"timestamp": asked_at}
        )
        assert explanation.inputs == []

    async def test_causal_chain(self, crew: Crew, clock: FakeClock) -> None:
        await crew.ledger.record("dev-1", MemoryType.EVENT, "Started work on payment refund flow")
        clock.advance(10)
        await crew.ledger.record("dev-1", MemoryType.ACTION, "Finished payment refund flow")
        clock.advance(10)
        await crew.ledger.record("dev-1", MemoryType.THOUGHT, "Lunch break")
        clock.advance(980)
        await crew.ledger.record("dev-1", MemoryType.EVENT, "payment refund flow deployed")

        chain = await crew.monitor.generate_causal_chain("dev-1", "refund shipped")

        assert len(chain.events) == 4
        first, second, third, fourth = chain.events
        assert second.caused_by == [first.id]
        assert first.influences == [second.id]
        assert third.caused_by == []
        assert fourth.caused_by == []
        assert chain.root_causes == [first.id]
        assert chain.confidence == pytest.approx(0.25)
