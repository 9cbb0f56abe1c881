"""Decisions returned by the cognition oracle, and what they do to a task.

``STATUS_AFTER`` is the full ``(action, outcome) -> status`` table. The engine
looks the pair up after executing a decision; a missing pair is a processing
failure rather than a silent default.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from devcrew.models import AgentRole, Task, TaskStatus


class DecisionAction(StrEnum):
    COMPLETE_TASK = "complete_task"
    REQUEST_HELP = "request_help"
    DELEGATE_TASK = "delegate_task"
    GATHER_INFO = "gather_info"
    COLLABORATE = "collaborate"
    ESCALATE = "escalate"


class Outcome(StrEnum):
    """What executing a decision actually did."""

    HANDED_OFF = "handed_off"
    COMPLETED = "completed"
    AWAITING_ROLE = "awaiting_role"
    DECOMPOSED = "decomposed"
    REASSIGNED = "reassigned"
    CONTINUED = "continued"
    ESCALATED = "escalated"


@dataclass
class CollaborationRequest:
    target_role: str
    message: str
    reason: str = ""


@dataclass
class Decision:
    action: DecisionAction
    reasoning: str = ""
    artifacts_to_create: list[str] = field(default_factory=list)
    collaboration_needed: CollaborationRequest | None = None
    blockers: list[str] = field(default_factory=list)
    fallback: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Decision:
        """Parse an oracle response; raises ValueError on anything malformed."""
        if not isinstance(data, dict):
            raise ValueError(f"decision must be an object, got {type(data).__name__}")
        try:
            action = DecisionAction(data["action"])
        except KeyError as e:
            raise ValueError("decision has no action") from e
        collab = data.get("collaboration_needed") or data.get("collaborationNeeded")
        collaboration = None
        if collab:
            target = (
                collab.get("target_role") or collab.get("targetRole") or collab.get("targetAgent")
            )
            if not target:
                raise ValueError("collaboration request has no target role")
            collaboration = CollaborationRequest(
                target_role=str(target),
                message=str(collab.get("message", "")),
                reason=str(collab.get("reason", "")),
            )
        artifacts = data.get("artifacts_to_create", data.get("artifactsToCreate", []))
        blockers = data.get("blockers", [])
        if not isinstance(artifacts, list) or not isinstance(blockers, list):
            raise ValueError("artifacts and blockers must be lists")
        return cls(
            action=action,
            reasoning=str(data.get("reasoning", "")),
            artifacts_to_create=[str(a) for a in artifacts],
            collaboration_needed=collaboration,
            blockers=[str(b) for b in blockers if b],
        )


@dataclass
class ActionResult:
    outcome: Outcome
    reason: str = ""


FALLBACK_ARTIFACTS: dict[str, str] = {
    AgentRole.PRODUCT_MANAGER: "Refined product requirements",
    AgentRole.BUSINESS_ANALYST: "User stories",
    AgentRole.DEVELOPER: "Source code",
    AgentRole.QA_ENGINEER: "Test cases",
    AgentRole.PRODUCT_OWNER: "Approval/rejection decision",
    AgentRole.ENGINEERING_LEAD: "Task reassignment logs",
    AgentRole.SUPERVISOR: "Supervision report",
}

FALLBACK_REASONING = "Proceeding with standard task completion approach"


def fallback_decision(role: str, task: Task | None = None) -> Decision:
    """Deterministic decision used whenever the oracle cannot answer."""
    artifact = FALLBACK_ARTIFACTS.get(role, "Work summary")
    if task is not None:
        artifact = f"{artifact}: {task.title}"
    return Decision(
        action=DecisionAction.COMPLETE_TASK,
        reasoning=FALLBACK_REASONING,
        artifacts_to_create=[artifact],
        fallback=True,
    )


STATUS_AFTER: dict[tuple[DecisionAction, Outcome], TaskStatus] = {
    (DecisionAction.COMPLETE_TASK, Outcome.HANDED_OFF): TaskStatus.IN_PROGRESS,
    (DecisionAction.COMPLETE_TASK, Outcome.COMPLETED): TaskStatus.COMPLETED,
    (DecisionAction.COMPLETE_TASK, Outcome.AWAITING_ROLE): TaskStatus.BLOCKED,
    (DecisionAction.COMPLETE_TASK, Outcome.DECOMPOSED): TaskStatus.BLOCKED,
    (DecisionAction.REQUEST_HELP, Outcome.CONTINUED): TaskStatus.IN_PROGRESS,
    (DecisionAction.DELEGATE_TASK, Outcome.REASSIGNED): TaskStatus.IN_PROGRESS,
    (DecisionAction.DELEGATE_TASK, Outcome.CONTINUED): TaskStatus.IN_PROGRESS,
    (DecisionAction.GATHER_INFO, Outcome.CONTINUED): TaskStatus.IN_PROGRESS,
    (DecisionAction.COLLABORATE, Outcome.CONTINUED): TaskStatus.IN_PROGRESS,
    (DecisionAction.ESCALATE, Outcome.ESCALATED): TaskStatus.ESCALATED,
}


def status_after(action: DecisionAction, outcome: Outcome) -> TaskStatus:
    try:
        return STATUS_AFTER[(action, outcome)]
    except KeyError:
        raise KeyError(f"no status for {action.value} -> {outcome.value}") from None
