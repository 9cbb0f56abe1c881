"""Tests for the workflow engine."""

from __future__ import annotations

import asyncio

import pytest

from conftest import (
    BlockingOracle,
    FakeClock,
    ScriptedOracle,
    SlowOracle,
    assert_load_matches,
    make_agent,
)
from devcrew.crew import Crew
from devcrew.engine import (
    CollaborationRequest,
    Decision,
    DecisionAction,
    Outcome,
    PeriodicLoop,
    fallback_decision,
    next_role,
    status_after,
)
from devcrew.engine.workflow import FAILURE_EVENT
from devcrew.models import AgentRole, Communication, MemoryType, MessageType, Task, TaskStatus

pytestmark = pytest.mark.anyio


async def _drive(crew: Crew, task_id: str, until: set[str], limit: int = 20) -> Task:
    """Run processing passes until the task reaches one of ``until``."""
    for _ in range(limit):
        task = crew.tasks.require(task_id)
        if task.status in until:
            return task
        await crew.engine.process_task(task_id)
    return crew.tasks.require(task_id)


def _owned_by(crew: Crew, task_id: str, agent_id: str) -> Task:
    task = crew.tasks.require(task_id)
    return crew.assigner.assign(task, crew.agents.require(agent_id), reason="Manual")


class TestPipeline:
    def test_role_order(self) -> None:
        assert next_role(AgentRole.PRODUCT_MANAGER) == AgentRole.BUSINESS_ANALYST
        assert next_role(AgentRole.DEVELOPER) == AgentRole.QA_ENGINEER
        assert next_role(AgentRole.PRODUCT_OWNER) is None
        assert next_role(AgentRole.ENGINEERING_LEAD) == AgentRole.PRODUCT_MANAGER

    def test_status_table_rejects_unknown_pair(self) -> None:
        assert status_after(DecisionAction.ESCALATE, Outcome.ESCALATED) == TaskStatus.ESCALATED
        with pytest.raises(KeyError):
            status_after(DecisionAction.GATHER_INFO, Outcome.HANDED_OFF)

    def test_fallback_decision(self) -> None:
        decision = fallback_decision(AgentRole.QA_ENGINEER, Task(id="t", title="Login"))
        assert decision.action == DecisionAction.COMPLETE_TASK
        assert decision.artifacts_to_create == ["Test cases: Login"]
        assert decision.fallback

    def test_decision_from_dict(self) -> None:
        decision = Decision.from_dict(
            {
                "action": "collaborate",
                "reasoning": "Need a second opinion",
                "artifactsToCreate": ["notes"],
                "collaborationNeeded": {"targetRole": "qa_engineer", "message": "Review?"},
            }
        )
        assert decision.collaboration_needed == CollaborationRequest("qa_engineer", "Review?")
        assert decision.artifacts_to_create == ["notes"]
        with pytest.raises(ValueError):
            Decision.from_dict({"action": "dance"})
        with pytest.raises(ValueError):
            Decision.from_dict({"reasoning": "no action"})


class TestProcessing:
    async def test_unassigned_task_is_auto_assigned(self, crew: Crew) -> None:
        crew.provision()
        crew.tasks.create(Task(id="t-1", title="Write onboarding guide"))

        await crew.engine.process_task("t-1")

        task = crew.tasks.require("t-1")
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.assigned_agent_id == "ba-1"
        assert task.workflow_history[-1].action == "auto_assigned"
        inbox = crew.tasks.inbox("ba-1")
        assert inbox[0].message_type == MessageType.ASSIGNMENT

    async def test_full_pipeline_with_fallback(self, crew: Crew) -> None:
        crew.provision()
        crew.tasks.create(Task(id="t-1", title="Write onboarding guide", tags=["docs"]))

        task = await _drive(crew, "t-1", {TaskStatus.COMPLETED})

        assert task.status == TaskStatus.COMPLETED
        assert task.assigned_agent_id is None
        assert task.completed_at is not None
        stages = [t.stage for t in task.workflow_history if t.action == "handoff"]
        assert stages == ["developer", "qa_engineer", "product_owner"]
        artifacts = [a["stage"] for a in task.metadata["artifacts"]]
        assert artifacts == ["business_analyst", "developer", "qa_engineer", "product_owner"]
        assert_load_matches(crew)
        assert sum(a.current_load for a in crew.agents.list()) == 0

        learnings = await crew.ledger.query("qa-1", type=MemoryType.LEARNING)
        assert learnings[0].details["area"] == "docs"

    async def test_oracle_timeout_falls_back(self, crew: Crew) -> None:
        crew.config.oracle.timeout = 0.01
        crew.engine.oracle = SlowOracle()
        crew.provision()
        crew.tasks.create(Task(id="t-1", title="Write onboarding guide"))

        task = await _drive(crew, "t-1", {TaskStatus.COMPLETED})

        assert task.status == TaskStatus.COMPLETED
        actions = await crew.ledger.query("dev-1", type=MemoryType.ACTION)
        assert actions and all(a.details["fallback"] for a in actions)

    async def test_oracle_decision_is_recorded(self, crew: Crew) -> None:
        crew.engine.oracle = ScriptedOracle(
            Decision(DecisionAction.GATHER_INFO, reasoning="Need the API contract")
        )
        crew.provision()
        crew.tasks.create(Task(id="t-1", title="Integrate billing"))
        _owned_by(crew, "t-1", "dev-1")

        await crew.engine.process_task("t-1")

        task = crew.tasks.require("t-1")
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.assigned_agent_id == "dev-1"
        decision_msgs = [
            c
            for c in crew.tasks.communications_for_task("t-1")
            if c.message_type == MessageType.DECISION
        ]
        assert decision_msgs[0].message.startswith("gather_info")
        events = await crew.ledger.query("dev-1", type=MemoryType.EVENT)
        assert events[0].details["event_type"] == "information_gathering"
        request = crew.engine.oracle.requests[0]
        assert request.agent["role"] == AgentRole.DEVELOPER
        assert request.task["id"] == "t-1"

    async def test_inactive_agent_is_skipped(self, crew: Crew) -> None:
        crew.engine.oracle = ScriptedOracle()
        crew.provision()
        crew.tasks.create(Task(id="t-1", title="Integrate billing"))
        _owned_by(crew, "t-1", "dev-1")
        crew.agents.update_status("dev-1", "offline")

        await crew.engine.process_task("t-1")

        assert crew.engine.oracle.requests == []
        assert crew.tasks.require("t-1").status == TaskStatus.IN_PROGRESS

    async def test_collaboration_request_reaches_role(self, crew: Crew) -> None:
        crew.engine.oracle = ScriptedOracle(
            Decision(
                DecisionAction.COLLABORATE,
                reasoning="Unclear edge cases",
                collaboration_needed=CollaborationRequest("qa_engineer", "Which cases matter?"),
            )
        )
        crew.provision()
        crew.tasks.create(Task(id="t-1", title="Integrate billing"))
        _owned_by(crew, "t-1", "dev-1")

        await crew.engine.process_task("t-1")

        inbox = crew.tasks.inbox("qa-1")
        assert [c.message for c in inbox] == ["Which cases matter?"]
        assert inbox[0].message_type == MessageType.COLLABORATION_REQUEST

    async def test_delegate_moves_load(self, crew: Crew) -> None:
        crew.engine.oracle = ScriptedOracle(
            Decision(DecisionAction.DELEGATE_TASK, reasoning="Out of my depth")
        )
        crew.provision()
        crew.tasks.create(Task(id="t-1", title="Integrate billing"))
        _owned_by(crew, "t-1", "dev-1")

        await crew.engine.process_task("t-1")

        task = crew.tasks.require("t-1")
        assert task.assigned_agent_id not in (None, "dev-1")
        assert task.status == TaskStatus.IN_PROGRESS
        assert crew.agents.require("dev-1").current_load == 0
        assert_load_matches(crew)

    async def test_request_help_goes_to_less_loaded_agent(self, crew: Crew) -> None:
        crew.engine.oracle = ScriptedOracle(
            Decision(DecisionAction.REQUEST_HELP, reasoning="Stuck on the schema")
        )
        crew.provision()
        crew.tasks.create(Task(id="t-1", title="Integrate billing"))
        _owned_by(crew, "t-1", "dev-1")

        await crew.engine.process_task("t-1")

        helpers = [
            c.to_agent_id
            for c in crew.tasks.communications_for_task("t-1")
            if c.message_type == MessageType.HELP_REQUEST
        ]
        assert len(helpers) == 1
        assert crew.agents.require(helpers[0]).current_load == 0
        assert crew.tasks.require("t-1").assigned_agent_id == "dev-1"


class TestExclusivity:
    async def test_one_pass_per_task(self, crew: Crew, clock: FakeClock) -> None:
        oracle = BlockingOracle()
        crew.engine.oracle = oracle
        crew.config.oracle.timeout = 30
        crew.provision()
        crew.tasks.create(Task(id="t-1", title="Integrate billing"))
        _owned_by(crew, "t-1", "dev-1")

        first = asyncio.create_task(crew.engine.process_task("t-1"))
        await oracle.entered.wait()
        assert crew.engine.in_flight == {"t-1"}

        assert await crew.engine.process_task("t-1") is False
        clock.advance(3600)
        await crew.engine.main_tick()
        await asyncio.sleep(0)
        assert oracle.calls == 1

        oracle.release.set()
        assert await first is True
        await crew.engine.wait_idle()
        assert oracle.calls == 1
        assert crew.engine.in_flight == frozenset()

    async def test_main_tick_picks_stale_or_messaged_tasks(
        self, crew: Crew, clock: FakeClock
    ) -> None:
        oracle = ScriptedOracle(
            Decision(DecisionAction.GATHER_INFO),
            Decision(DecisionAction.GATHER_INFO),
        )
        crew.engine.oracle = oracle
        crew.provision()
        crew.tasks.create(Task(id="t-1", title="Integrate billing"))
        _owned_by(crew, "t-1", "dev-1")

        await crew.engine.main_tick()
        await crew.engine.wait_idle()
        assert oracle.requests == []

        clock.advance(crew.config.engine.stale_threshold + 1)
        await crew.engine.main_tick()
        await crew.engine.wait_idle()
        assert len(oracle.requests) == 1

        clock.advance(1)
        crew.tasks.add_communication(
            Communication("t-1", "pm-1", "dev-1", "Any update?", MessageType.COLLABORATION_REQUEST)
        )
        await crew.engine.main_tick()
        await crew.engine.wait_idle()
        assert len(oracle.requests) == 2


class TestLoadAccounting:
    async def test_load_equals_open_assignments(self, crew: Crew) -> None:
        crew.provision()
        for i in range(3):
            crew.tasks.create(Task(id=f"t-{i}", title=f"Write guide {i}"))
            await crew.engine.process_task(f"t-{i}")

        assert sum(a.current_load for a in crew.agents.list()) == 3
        assert_load_matches(crew)

        await _drive(crew, "t-0", {TaskStatus.COMPLETED})
        assert sum(a.current_load for a in crew.agents.list()) == 2
        assert_load_matches(crew)


class TestFailureRecovery:
    async def test_failures_escalate_after_budget(self, crew: Crew) -> None:
        async def broken(task, agent, decision):
            raise RuntimeError("disk on fire")

        crew.engine._handlers[DecisionAction.COMPLETE_TASK] = broken
        crew.provision()
        crew.tasks.create(Task(id="t-1", title="Write onboarding guide"))

        task = await _drive(crew, "t-1", {TaskStatus.ESCALATED}, limit=30)

        budget = crew.config.engine.max_recovery_attempts
        assert task.status == TaskStatus.ESCALATED
        assert task.assigned_agent_id == "lead-1"
        failures = await crew.ledger.count(
            type=MemoryType.EVENT, task_id="t-1", content=FAILURE_EVENT
        )
        assert failures == budget + 1
        retries = [t for t in task.workflow_history if t.action == "retry"]
        assert len(retries) == budget
        assert task.metadata["last_error"] == "disk on fire"

        escalations = [
            c
            for c in crew.tasks.communications_for_task("t-1")
            if c.message_type == MessageType.ESCALATION
        ]
        assert escalations[0].to_agent_id == "lead-1"
        assert escalations[0].priority == 8
        assert_load_matches(crew)

        # escalated tasks are not polled again
        await crew.engine.process_task("t-1")
        assert await crew.ledger.count(
            type=MemoryType.EVENT, task_id="t-1", content=FAILURE_EVENT
        ) == budget + 1

    async def test_failure_penalizes_health_and_notifies(self, crew: Crew) -> None:
        crew.provision()
        crew.tasks.create(Task(id="t-1", title="Integrate billing"))
        _owned_by(crew, "t-1", "dev-1")

        task = await crew.engine.handle_failure("t-1", RuntimeError("bad input"))

        assert task is not None
        assert task.status == TaskStatus.PENDING
        assert task.assigned_agent_id is None
        assert crew.agents.require("dev-1").health_score == 90
        events = crew.notifications.recent(agent_id="dev-1")
        assert events[0].severity == "high"
        assert events[0].event_type == "task_failure"
        actions = await crew.ledger.query("dev-1", type=MemoryType.ACTION)
        assert actions[-1].details["success"] is False


class TestHandoffAndEscalation:
    async def test_missing_next_role_blocks_then_escalates(self, crew: Crew) -> None:
        crew.agents.create(make_agent("pm-1", AgentRole.PRODUCT_MANAGER))
        crew.agents.create(make_agent("lead-1", AgentRole.ENGINEERING_LEAD))
        crew.tasks.create(Task(id="t-1", title="Plan roadmap"))
        _owned_by(crew, "t-1", "pm-1")

        await crew.engine.process_task("t-1")

        task = crew.tasks.require("t-1")
        assert task.status == TaskStatus.BLOCKED
        assert task.assigned_agent_id == "pm-1"
        assert task.metadata["awaiting_role"] == AgentRole.BUSINESS_ANALYST

        budget = crew.config.engine.max_recovery_attempts
        for attempt in range(1, budget + 1):
            await crew.engine.sweep_tick()
            task = crew.tasks.require("t-1")
            assert task.status == TaskStatus.BLOCKED
            assert task.metadata["handoff_attempts"] == attempt

        await crew.engine.sweep_tick()
        task = crew.tasks.require("t-1")
        assert task.status == TaskStatus.ESCALATED
        assert task.assigned_agent_id == "lead-1"
        assert_load_matches(crew)

    async def test_sweep_hands_off_once_role_appears(self, crew: Crew) -> None:
        crew.agents.create(make_agent("pm-1", AgentRole.PRODUCT_MANAGER))
        crew.tasks.create(Task(id="t-1", title="Plan roadmap"))
        _owned_by(crew, "t-1", "pm-1")
        await crew.engine.process_task("t-1")
        assert crew.tasks.require("t-1").status == TaskStatus.BLOCKED

        crew.agents.create(make_agent("ba-1", AgentRole.BUSINESS_ANALYST))
        await crew.engine.sweep_tick()

        task = crew.tasks.require("t-1")
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.assigned_agent_id == "ba-1"
        assert "awaiting_role" not in task.metadata
        assert crew.tasks.inbox("ba-1")[0].message_type == MessageType.HANDOFF
        assert_load_matches(crew)

    async def test_blockers_force_escalation(self, crew: Crew) -> None:
        crew.engine.oracle = ScriptedOracle(
            Decision(
                DecisionAction.COMPLETE_TASK,
                artifacts_to_create=["schema.sql"],
                blockers=["Missing API credentials"],
            )
        )
        crew.provision()
        crew.tasks.create(Task(id="t-1", title="Integrate billing"))
        _owned_by(crew, "t-1", "dev-1")

        await crew.engine.process_task("t-1")

        task = crew.tasks.require("t-1")
        assert task.status == TaskStatus.ESCALATED
        assert task.assigned_agent_id == "lead-1"
        message = crew.tasks.inbox("lead-1")[-1]
        assert "Missing API credentials" in message.message
        assert_load_matches(crew)
        assert [a["name"] for a in task.metadata["artifacts"]] == ["schema.sql"]
        (learning,) = await crew.ledger.query("dev-1", type=MemoryType.LEARNING)
        assert learning.details["blockers"] == ["Missing API credentials"]
        assert not any(t.action == "handoff" for t in task.workflow_history)

    async def test_escalation_without_lead(self, crew: Crew) -> None:
        crew.engine.oracle = ScriptedOracle(
            Decision(DecisionAction.ESCALATE, reasoning="Needs architecture review")
        )
        crew.agents.create(make_agent("dev-1", AgentRole.DEVELOPER))
        crew.tasks.create(Task(id="t-1", title="Integrate billing"))
        _owned_by(crew, "t-1", "dev-1")

        await crew.engine.process_task("t-1")

        task = crew.tasks.require("t-1")
        assert task.status == TaskStatus.ESCALATED
        assert task.assigned_agent_id is None
        assert crew.notifications.recent()[0].severity == "high"
        assert_load_matches(crew)

    async def test_large_task_is_decomposed_and_finishes(self, crew: Crew) -> None:
        crew.provision()
        crew.tasks.create(
            Task(id="t-big", title="Implement login", estimated_hours=10, tags=["development"])
        )
        _owned_by(crew, "t-big", "dev-1")

        await crew.engine.process_task("t-big")

        parent = crew.tasks.require("t-big")
        assert parent.status == TaskStatus.BLOCKED
        subtask_ids = parent.metadata["decomposition"]["subtask_ids"]
        assert len(subtask_ids) == 4

        for sub_id in subtask_ids:
            done = await _drive(crew, sub_id, {TaskStatus.COMPLETED}, limit=3)
            assert done.status == TaskStatus.COMPLETED, sub_id

        parent = crew.tasks.require("t-big")
        assert parent.status == TaskStatus.COMPLETED
        assert_load_matches(crew)
        assert sum(a.current_load for a in crew.agents.list()) == 0

    async def test_interrupted_decomposition_keeps_parent_parked(
        self, crew: Crew, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        crew.provision()
        crew.tasks.create(
            Task(id="t-big", title="Implement login", estimated_hours=10, tags=["development"])
        )
        _owned_by(crew, "t-big", "dev-1")
        place = crew.decomposer._place
        calls = []

        async def flaky_place(decomposition, subtask):
            calls.append(subtask.id)
            if len(calls) == 1:
                raise RuntimeError("ledger unavailable")
            return await place(decomposition, subtask)

        monkeypatch.setattr(crew.decomposer, "_place", flaky_place)

        await crew.engine.process_task("t-big")
        parent = crew.tasks.require("t-big")
        assert parent.status == TaskStatus.PENDING
        assert crew.tasks.require("t-big_sub_1").assigned_agent_id is None

        parent = await _drive(crew, "t-big", {TaskStatus.BLOCKED}, limit=3)

        assert parent.status == TaskStatus.BLOCKED
        assert parent.assigned_agent_id is not None
        assert not any(t.action == "handoff" for t in parent.workflow_history)
        first = crew.tasks.require("t-big_sub_1")
        assert first.status == TaskStatus.IN_PROGRESS
        assert first.assigned_agent_id == "ba-1"
        assert len(crew.tasks.get_children("t-big")) == 4
        assert_load_matches(crew)

    async def test_decompose_rejects_subtask(self, crew: Crew) -> None:
        crew.provision()
        crew.tasks.create(Task(id="t-big", title="Implement login", tags=["development"]))
        await crew.engine.decompose("t-big", "pm-1")
        with pytest.raises(ValueError):
            await crew.engine.decompose("t-big_sub_1")


class TestManualControl:
    async def test_pause_and_resume(self, crew: Crew) -> None:
        crew.engine.oracle = ScriptedOracle()
        crew.provision()
        crew.tasks.create(Task(id="t-1", title="Integrate billing"))
        _owned_by(crew, "t-1", "dev-1")

        paused = crew.engine.pause_task("t-1", "Waiting on vendor")
        assert paused.status == TaskStatus.BLOCKED
        await crew.engine.process_task("t-1")
        assert crew.engine.oracle.requests == []

        resumed = crew.engine.resume_task("t-1")
        assert resumed.status == TaskStatus.IN_PROGRESS
        assert resumed.assigned_agent_id == "dev-1"
        assert "paused" not in resumed.metadata

    async def test_resume_escalated_releases_owner(self, crew: Crew) -> None:
        crew.engine.oracle = ScriptedOracle(Decision(DecisionAction.ESCALATE, reasoning="Help"))
        crew.provision()
        crew.tasks.create(Task(id="t-1", title="Integrate billing"))
        _owned_by(crew, "t-1", "dev-1")
        await crew.engine.process_task("t-1")
        assert crew.agents.require("lead-1").current_load == 1

        task = crew.engine.resume_task("t-1")
        assert task.status == TaskStatus.PENDING
        assert task.assigned_agent_id is None
        assert crew.agents.require("lead-1").current_load == 0

    async def test_resume_rejects_running_task(self, crew: Crew) -> None:
        crew.provision()
        crew.tasks.create(Task(id="t-1", title="Integrate billing"))
        _owned_by(crew, "t-1", "dev-1")
        with pytest.raises(ValueError):
            crew.engine.resume_task("t-1")


class TestHealthLoop:
    async def test_overloaded_agent_is_rebalanced(self, crew: Crew) -> None:
        crew.provision()
        for i in range(5):
            crew.tasks.create(Task(id=f"t-{i}", title=f"Task {i}"))
            _owned_by(crew, f"t-{i}", "dev-1")

        await crew.engine.health_tick()

        assert crew.agents.require("dev-1").current_load == 4
        assert_load_matches(crew)

    async def test_low_health_raises_event(self, crew: Crew) -> None:
        crew.provision()
        crew.agents.update_health("qa-1", 50)
        await crew.engine.health_tick()
        events = crew.notifications.recent(agent_id="qa-1")
        assert events[0].event_type == "low_health"


class TestLoops:
    async def test_loop_stops_after_current_tick(self) -> None:
        ticks = []

        async def tick() -> None:
            ticks.append(1)
            if len(ticks) == 2:
                raise RuntimeError("transient")

        loop = PeriodicLoop("test", 0.001, tick, error_backoff=0.001)
        loop.start()
        while len(ticks) < 4:
            await asyncio.sleep(0.001)
        loop.stop()
        await loop.join()
        assert not loop.running
        assert loop.errors == 1
        assert loop.ticks >= 4

    async def test_engine_start_stop(self, crew: Crew) -> None:
        crew.provision()
        crew.start()
        assert all(loop.running for loop in crew.engine.loops)
        await crew.stop()
        assert not any(loop.running for loop in crew.engine.loops)
        status = crew.engine.workflow_status()
        assert status.agents_total == 8
        assert status.in_flight == []
