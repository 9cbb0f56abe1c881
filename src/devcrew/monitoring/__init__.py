"""Agent self-monitoring: health checks, metrics, explanations."""

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
from devcrew.monitoring.self_monitor import SelfMonitoringService, classify, word_similarity

__all__ = [
    "CausalChain",
    "CausalEvent",
    "Explanation",
    "HealthCheck",
    "HealthStatus",
    "Issue",
    "IssueType",
    "PerformanceMetrics",
    "SelfMonitoringService",
    "classify",
    "word_similarity",
]
