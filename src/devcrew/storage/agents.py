"""Agent Registry - provisioned agents, their load, health and expertise."""

from __future__ import annotations

import json
import logging
import sqlite3

from devcrew.errors import StorageError
from devcrew.models import Agent, AgentStatus
from devcrew.storage.database import Database

log = logging.getLogger(__name__)


class SqliteAgentRegistry:
    """
    Agent Registry backed by the crew database.

    ``current_load`` is only moved through ``adjust_load``, which the workflow
    engine calls on assignment, completion and failure. It never goes below zero.
    """

    def __init__(self, db: Database) -> None:
        self.db = db
        self.db.ensure_tables()

    def create(self, agent: Agent) -> Agent:
        """Provision an agent; re-provisioning an id replaces its profile."""
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO agents (
                    id, name, role, status, current_load, max_load, health_score, expertise
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    role = excluded.role,
                    max_load = excluded.max_load,
                    expertise = excluded.expertise
                """,
                (
                    agent.id,
                    agent.name,
                    str(agent.role),
                    str(agent.status),
                    agent.current_load,
                    agent.max_load,
                    agent.health_score,
                    json.dumps(agent.expertise),
                ),
            )
        return self.require(agent.id)

    def get(self, agent_id: str) -> Agent | None:
        rows = self.db.execute("SELECT * FROM agents WHERE id = ?", (agent_id,))
        return _row_to_agent(rows[0]) if rows else None

    def require(self, agent_id: str) -> Agent:
        agent = self.get(agent_id)
        if agent is None:
            raise StorageError(f"unknown agent {agent_id}")
        return agent

    def list(self, status: str | None = None) -> list[Agent]:
        if status is None:
            rows = self.db.execute("SELECT * FROM agents ORDER BY id")
        else:
            rows = self.db.execute(
                "SELECT * FROM agents WHERE status = ? ORDER BY id", (str(status),)
            )
        return [_row_to_agent(r) for r in rows]

    def find_by_role(self, role: str, active_only: bool = True) -> list[Agent]:
        agents = [a for a in self.list() if a.role == role]
        if active_only:
            agents = [a for a in agents if a.status == AgentStatus.ACTIVE]
        return agents

    def update_status(self, agent_id: str, status: str) -> None:
        self._set(agent_id, "status", str(AgentStatus(status)))

    def update_health(self, agent_id: str, health_score: float) -> float:
        clamped = max(0.0, min(100.0, health_score))
        self._set(agent_id, "health_score", clamped)
        return clamped

    def update_expertise(self, agent_id: str, expertise: list[str]) -> None:
        self._set(agent_id, "expertise", json.dumps(sorted(set(expertise))))

    def adjust_load(self, agent_id: str, delta: int) -> int:
        """Move an agent's load by ``delta`` and return the new value."""
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT current_load FROM agents WHERE id = ?", (agent_id,)
            ).fetchone()
            if row is None:
                raise StorageError(f"unknown agent {agent_id}")
            new_load = row["current_load"] + delta
            if new_load < 0:
                log.warning(
                    "Load for %s would go negative (%d%+d); clamping to 0",
                    agent_id,
                    row["current_load"],
                    delta,
                )
                new_load = 0
            conn.execute("UPDATE agents SET current_load = ? WHERE id = ?", (new_load, agent_id))
        return new_load

    def _set(self, agent_id: str, column: str, value: object) -> None:
        with self.db.connect() as conn:
            cursor = conn.execute(f"UPDATE agents SET {column} = ? WHERE id = ?", (value, agent_id))
            if cursor.rowcount == 0:
                raise StorageError(f"unknown agent {agent_id}")


def _row_to_agent(row: sqlite3.Row) -> Agent:
    return Agent(
        id=row["id"],
        name=row["name"],
        role=row["role"],
        status=row["status"],
        current_load=row["current_load"],
        max_load=row["max_load"],
        health_score=row["health_score"],
        expertise=json.loads(row["expertise"]),
    )
