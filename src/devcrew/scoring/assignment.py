"""
Assignment Scorer - pure scoring of (agent, work item) pairs.

Task score (0-100):
    load_weight * load_factor + health_weight * health/100 + role_weight * role_match

Subtask score (0-1):
    skill_weight * skill_match + availability_weight * availability

Weights live in ``ScoringWeights`` so they can be tuned from config.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from devcrew.config import ScoringWeights
from devcrew.models import Agent, AgentRole, AgentStatus, Task, TaskPriority

SENIOR_ROLES = frozenset(
    {
        AgentRole.PRODUCT_MANAGER,
        AgentRole.PRODUCT_OWNER,
        AgentRole.ENGINEERING_LEAD,
        AgentRole.SUPERVISOR,
    }
)

_DEFAULT_WEIGHTS = ScoringWeights()


@dataclass
class ScoredAgent:
    """An agent with its score for one work item."""

    agent: Agent
    score: float
    reasoning: str = ""


def load_factor(agent: Agent) -> float:
    return max(0.0, (agent.max_load - agent.current_load) / agent.max_load)


def role_match(agent: Agent, task: Task, weights: ScoringWeights = _DEFAULT_WEIGHTS) -> float:
    """How well the agent's seniority fits the task priority."""
    if task.priority in (TaskPriority.HIGH, TaskPriority.URGENT):
        if agent.role in SENIOR_ROLES:
            return weights.senior_high_priority
        return weights.other_high_priority
    if task.priority == TaskPriority.MEDIUM:
        return weights.medium_priority
    return weights.low_priority


def score_agent_for_task(
    agent: Agent, task: Task, weights: ScoringWeights = _DEFAULT_WEIGHTS
) -> float:
    return (
        weights.load_weight * load_factor(agent)
        + weights.health_weight * (agent.health_score / 100.0)
        + weights.role_weight * role_match(agent, task, weights)
    )


def rank_agents_for_task(
    agents: Iterable[Agent],
    task: Task,
    weights: ScoringWeights = _DEFAULT_WEIGHTS,
) -> list[ScoredAgent]:
    """Score active agents, best first.

    Ties go to the lower current load, then to the agent id so the order is
    reproducible.
    """
    scored = [
        ScoredAgent(
            agent=a,
            score=score_agent_for_task(a, task, weights),
            reasoning=(
                f"load {a.current_load}/{a.max_load}, health {a.health_score:.0f}, "
                f"role match {role_match(a, task, weights):.1f}"
            ),
        )
        for a in agents
        if a.status == AgentStatus.ACTIVE
    ]
    scored.sort(key=lambda s: (-round(s.score, 9), s.agent.current_load, s.agent.id))
    return scored


def select_agent_for_task(
    agents: Iterable[Agent],
    task: Task,
    weights: ScoringWeights = _DEFAULT_WEIGHTS,
) -> Agent | None:
    ranked = rank_agents_for_task(agents, task, weights)
    return ranked[0].agent if ranked else None


def skill_match(required_skills: Sequence[str], expertise: Iterable[str]) -> float:
    """Fraction of required skills present in the agent's expertise."""
    if not required_skills:
        return 1.0
    known = {s.lower() for s in expertise}
    return sum(1 for s in required_skills if s.lower() in known) / len(required_skills)


def availability(
    open_tasks: Sequence[Task], weights: ScoringWeights = _DEFAULT_WEIGHTS
) -> float:
    """Capacity left given an agent's non-completed tasks."""
    hours = sum(
        t.estimated_hours if t.estimated_hours is not None else weights.default_task_hours
        for t in open_tasks
    )
    return max(
        0.0,
        1.0
        - len(open_tasks) / weights.availability_task_divisor
        - hours / weights.availability_hours_divisor,
    )


def score_agent_for_subtask(
    required_skills: Sequence[str],
    agent: Agent,
    open_tasks: Sequence[Task],
    weights: ScoringWeights = _DEFAULT_WEIGHTS,
) -> float:
    return weights.skill_weight * skill_match(
        required_skills, agent.expertise
    ) + weights.availability_weight * availability(open_tasks, weights)
