"""Crew runtime: wires stores, ledger, engine and monitor from one CrewConfig."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable

from devcrew.assigner import TaskAssigner
from devcrew.config import CrewConfig
from devcrew.delegation import TaskDecomposer
from devcrew.engine import (
    CognitionOracle,
    HealthEventSink,
    HttpCognitionOracle,
    RoleFallbackOracle,
    WorkflowEngine,
)
from devcrew.memory import MemoryLedger
from devcrew.models import Agent, AgentRole
from devcrew.monitoring import SelfMonitoringService
from devcrew.storage import Database, SqliteAgentRegistry, SqliteTaskStore

log = logging.getLogger(__name__)

DEFAULT_CREW: list[Agent] = [
    Agent("pm-1", "Priya", AgentRole.PRODUCT_MANAGER, expertise=["requirements", "planning"]),
    Agent("ba-1", "Omar", AgentRole.BUSINESS_ANALYST, expertise=["analysis", "requirements"]),
    Agent(
        "dev-1", "Lena", AgentRole.DEVELOPER, expertise=["development", "coding", "architecture"]
    ),
    Agent("dev-2", "Marco", AgentRole.DEVELOPER, expertise=["development", "coding", "design"]),
    Agent("qa-1", "Aiko", AgentRole.QA_ENGINEER, expertise=["testing", "qa"]),
    Agent("po-1", "Sam", AgentRole.PRODUCT_OWNER, expertise=["planning"]),
    Agent("lead-1", "Jordan", AgentRole.ENGINEERING_LEAD, expertise=["architecture", "design"]),
    Agent("sup-1", "Riley", AgentRole.SUPERVISOR, expertise=["planning"]),
]


class Crew:
    """
    Everything needed to run the crew, opened and closed together.

    Usage::

        async with Crew(load_config()) as crew:
            crew.start()
            ...
            await crew.stop()
    """

    def __init__(
        self,
        config: CrewConfig | None = None,
        oracle: CognitionOracle | None = None,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or CrewConfig()
        self.clock = clock
        self.db = Database(self.config.data_dir)
        self.tasks = SqliteTaskStore(self.db, clock)
        self.agents = SqliteAgentRegistry(self.db)
        self.notifications = HealthEventSink(self.db, clock)
        self.ledger = MemoryLedger(self.db.ledger_path, clock)
        self.assigner = TaskAssigner(self.tasks, self.agents, clock)
        self.decomposer = TaskDecomposer(
            self.tasks, self.agents, self.ledger, self.assigner, self.config, clock
        )
        if oracle is None:
            if self.config.oracle.url:
                oracle = HttpCognitionOracle(self.config.oracle.url, self.config.oracle.timeout)
            else:
                log.info("No oracle URL configured; using role fallback decisions")
                oracle = RoleFallbackOracle()
        self.oracle = oracle
        self.engine = WorkflowEngine(
            self.tasks,
            self.agents,
            self.ledger,
            self.oracle,
            self.notifications,
            self.decomposer,
            self.assigner,
            self.config,
            clock,
            rng,
        )
        self.monitor = SelfMonitoringService(
            self.tasks, self.agents, self.ledger, self.notifications, self.config, clock
        )

    async def __aenter__(self) -> Crew:
        await self.ledger.open()
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        await self.stop()
        await self.ledger.close()
        if isinstance(self.oracle, HttpCognitionOracle):
            await self.oracle.aclose()

    def provision(self, agents: list[Agent] | None = None) -> list[Agent]:
        """Register the given agents (the default crew when omitted)."""
        return [self.agents.create(a) for a in (agents or DEFAULT_CREW)]

    def start(self) -> None:
        self.engine.start()
        self.monitor.start()

    async def stop(self) -> None:
        if any(loop.running for loop in self.engine.loops):
            await self.engine.stop()
        if self.monitor.loop.running:
            await self.monitor.stop()
