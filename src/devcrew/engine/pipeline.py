"""Fixed role pipeline: who a task goes to after each stage completes."""

from __future__ import annotations

from devcrew.models import AgentRole

LEAD_ROLE = AgentRole.ENGINEERING_LEAD

# None means the task is done after this stage.
NEXT_ROLE: dict[str, AgentRole | None] = {
    AgentRole.PRODUCT_MANAGER: AgentRole.BUSINESS_ANALYST,
    AgentRole.BUSINESS_ANALYST: AgentRole.DEVELOPER,
    AgentRole.DEVELOPER: AgentRole.QA_ENGINEER,
    AgentRole.QA_ENGINEER: AgentRole.PRODUCT_OWNER,
    AgentRole.PRODUCT_OWNER: None,
    AgentRole.ENGINEERING_LEAD: AgentRole.PRODUCT_MANAGER,
    AgentRole.SUPERVISOR: None,
}


def next_role(role: str) -> AgentRole | None:
    """Role that receives the task after ``role`` finishes its stage."""
    return NEXT_ROLE[AgentRole(role)]
