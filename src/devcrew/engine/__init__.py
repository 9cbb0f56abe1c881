"""Workflow engine: periodic loops, oracle decisions, handoff and escalation."""

from devcrew.engine.decisions import (
    ActionResult,
    CollaborationRequest,
    Decision,
    DecisionAction,
    Outcome,
    fallback_decision,
    status_after,
)
from devcrew.engine.notifications import HealthEvent, HealthEventSink, NotificationSink, Severity
from devcrew.engine.oracle import (
    CognitionOracle,
    HttpCognitionOracle,
    OracleRequest,
    RoleFallbackOracle,
)
from devcrew.engine.pipeline import LEAD_ROLE, NEXT_ROLE, next_role
from devcrew.engine.scheduler import PeriodicLoop
from devcrew.engine.workflow import WorkflowEngine, WorkflowStatus

__all__ = [
    "ActionResult",
    "CognitionOracle",
    "CollaborationRequest",
    "Decision",
    "DecisionAction",
    "HealthEvent",
    "HealthEventSink",
    "HttpCognitionOracle",
    "LEAD_ROLE",
    "NEXT_ROLE",
    "NotificationSink",
    "OracleRequest",
    "Outcome",
    "PeriodicLoop",
    "RoleFallbackOracle",
    "Severity",
    "WorkflowEngine",
    "WorkflowStatus",
    "fallback_decision",
    "next_role",
    "status_after",
]
