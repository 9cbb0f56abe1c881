"""Assignment scoring for tasks and subtasks."""

from devcrew.scoring.assignment import (
    SENIOR_ROLES,
    ScoredAgent,
    availability,
    load_factor,
    rank_agents_for_task,
    role_match,
    score_agent_for_subtask,
    score_agent_for_task,
    select_agent_for_task,
    skill_match,
)

__all__ = [
    "SENIOR_ROLES",
    "ScoredAgent",
    "availability",
    "load_factor",
    "rank_agents_for_task",
    "role_match",
    "score_agent_for_subtask",
    "score_agent_for_task",
    "select_agent_for_task",
    "skill_match",
]
