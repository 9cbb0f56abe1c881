"""Health checks, metrics and explanations produced by the self-monitor."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any

from devcrew.engine.notifications import Severity


class HealthStatus(StrEnum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"
    STUCK = "stuck"


class IssueType(StrEnum):
    PERFORMANCE = "performance"
    COMMUNICATION = "communication"
    RESOURCE = "resource"
    LOGIC = "logic"
    DEPENDENCY = "dependency"


@dataclass
class Issue:
    type: IssueType
    severity: Severity
    description: str
    impact: str
    suggested_action: str
    detected_at: float


@dataclass
class HealthCheck:
    """Result of one health evaluation. Replaced wholesale every cycle."""

    agent_id: str
    status: HealthStatus
    issues: list[Issue]
    recommendations: list[str]
    last_check: float
    next_check: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PerformanceMetrics:
    agent_id: str
    tasks_completed: int = 0
    tasks_failed: int = 0
    success_rate: float = 0.0
    average_completion_time: float = 0.0
    collaboration_score: float = 0.0
    learning_rate: float = 0.0
    adaptability_score: float = 0.0
    last_updated: float = 0.0


@dataclass
class Explanation:
    agent_id: str
    action: str
    timestamp: float
    inputs: list[str]
    outputs: list[str]
    reasoning: dict[str, Any]
    confidence: float
    alternative_actions: list[str] = field(default_factory=list)
    influencing_factors: list[str] = field(default_factory=list)


@dataclass
class CausalEvent:
    id: int
    timestamp: float
    type: str
    content: str
    caused_by: list[int] = field(default_factory=list)
    influences: list[int] = field(default_factory=list)


@dataclass
class CausalChain:
    agent_id: str
    outcome: str
    events: list[CausalEvent]
    root_causes: list[int]
    confidence: float
