"""Core data model shared by the engine, decomposer, ledger and monitor."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class TaskStatus(StrEnum):
    """Task lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    FAILED = "failed"
    ESCALATED = "escalated"


class TaskPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class AgentRole(StrEnum):
    """Pipeline roles an agent can hold."""

    PRODUCT_MANAGER = "product_manager"
    BUSINESS_ANALYST = "business_analyst"
    DEVELOPER = "developer"
    QA_ENGINEER = "qa_engineer"
    PRODUCT_OWNER = "product_owner"
    ENGINEERING_LEAD = "engineering_lead"
    SUPERVISOR = "supervisor"


class AgentStatus(StrEnum):
    ACTIVE = "active"
    BUSY = "busy"
    UNHEALTHY = "unhealthy"
    OFFLINE = "offline"


class MemoryType(StrEnum):
    """Kinds of entries an agent's memory ledger can hold."""

    EPISODIC = "episodic"
    SEMANTIC = "semantic"
    PROCEDURAL = "procedural"
    LEARNING = "learning"
    STRATEGY = "strategy"
    EVENT = "event"
    ACTION = "action"
    THOUGHT = "thought"
    REFLECTION = "reflection"


class MessageType(StrEnum):
    ASSIGNMENT = "assignment"
    HANDOFF = "handoff"
    ESCALATION = "escalation"
    HELP_REQUEST = "help_request"
    DELEGATION = "delegation"
    INFORMATION_GATHERING = "information_gathering"
    COLLABORATION_REQUEST = "collaboration_request"
    DECISION = "decision"
    HEALTH_ALERT = "health_alert"


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


@dataclass
class WorkflowTransition:
    """One append-only entry in a task's workflow history."""

    stage: str
    action: str
    agent_id: str | None = None
    reason: str = ""
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "action": self.action,
            "agent_id": self.agent_id,
            "reason": self.reason,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowTransition:
        return cls(
            stage=data["stage"],
            action=data["action"],
            agent_id=data.get("agent_id"),
            reason=data.get("reason", ""),
            timestamp=data.get("timestamp", 0.0),
        )


@dataclass
class Task:
    """A unit of work moving through the role pipeline."""

    id: str
    title: str
    description: str = ""
    status: str = TaskStatus.PENDING.value
    priority: str = TaskPriority.MEDIUM.value
    assigned_agent_id: str | None = None
    workflow_stage: str | None = None
    workflow_history: list[WorkflowTransition] = field(default_factory=list)
    parent_task_id: str | None = None
    estimated_hours: float | None = None
    tags: list[str] = field(default_factory=list)
    reason: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    completed_at: float | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    def summary(self) -> dict[str, Any]:
        """Compact view sent to the cognition oracle."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "workflow_stage": self.workflow_stage,
            "estimated_hours": self.estimated_hours,
            "tags": list(self.tags),
            "history": [t.to_dict() for t in self.workflow_history[-5:]],
        }


@dataclass
class Agent:
    """A worker with a fixed role, capacity and health score."""

    id: str
    name: str
    role: str
    status: str = AgentStatus.ACTIVE.value
    current_load: int = 0
    max_load: int = 5
    health_score: float = 100.0
    expertise: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.max_load <= 0:
            raise ValueError(f"max_load must be positive, got {self.max_load}")
        if not 0.0 <= self.health_score <= 100.0:
            raise ValueError(f"health_score must be in [0, 100], got {self.health_score}")

    @property
    def is_active(self) -> bool:
        return self.status == AgentStatus.ACTIVE

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "current_load": self.current_load,
            "max_load": self.max_load,
            "health_score": self.health_score,
            "expertise": list(self.expertise),
        }


@dataclass
class Communication:
    """A message between agents about a task."""

    task_id: str | None
    from_agent_id: str | None
    to_agent_id: str | None
    message: str
    message_type: str
    priority: int = 5
    requires_response: bool = False
    read: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    id: int | None = None


@dataclass
class MemoryEntry:
    """A single typed, timestamped record in an agent's memory ledger."""

    agent_id: str
    type: str
    content: str
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
    task_id: str | None = None
    id: int | None = None
