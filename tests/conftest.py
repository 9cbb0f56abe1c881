"""Shared fixtures: a temporary crew with a controllable clock and oracle."""

from __future__ import annotations

import asyncio
import tempfile
from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest

from devcrew.config import CrewConfig
from devcrew.crew import Crew
from devcrew.engine import Decision, OracleRequest, RoleFallbackOracle
from devcrew.models import Agent

START = 1_700_000_000.0


class FakeClock:
    """Wall clock that only moves when a test says so."""

    def __init__(self, now: float = START) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedOracle:
    """Returns queued decisions in order, then the role fallback."""

    def __init__(self, *decisions: Decision) -> None:
        self.decisions = list(decisions)
        self.requests: list[OracleRequest] = []

    async def decide(self, request: OracleRequest) -> Decision:
        self.requests.append(request)
        if self.decisions:
            return self.decisions.pop(0)
        return await RoleFallbackOracle().decide(request)


class BlockingOracle:
    """Holds every call until ``release`` is set."""

    def __init__(self) -> None:
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def decide(self, request: OracleRequest) -> Decision:
        self.calls += 1
        self.entered.set()
        await self.release.wait()
        return await RoleFallbackOracle().decide(request)


class SlowOracle:
    """Never answers within any reasonable timeout."""

    async def decide(self, request: OracleRequest) -> Decision:
        await asyncio.sleep(60)
        raise AssertionError("unreachable")


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def temp_data_dir() -> Iterator[Path]:
    """Create a temporary data directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config(temp_data_dir: Path) -> CrewConfig:
    cfg = CrewConfig(data_dir=temp_data_dir, seed=7)
    cfg.oracle.timeout = 1.0
    return cfg


@pytest.fixture
async def crew(anyio_backend: str, config: CrewConfig, clock: FakeClock) -> AsyncIterator[Crew]:
    async with Crew(config, oracle=RoleFallbackOracle(), clock=clock) as c:
        yield c


def make_agent(agent_id: str, role: str, **kwargs) -> Agent:
    return Agent(agent_id, agent_id.title(), role, **kwargs)


def assert_load_matches(crew: Crew) -> None:
    """Each agent's load equals the number of non-terminal tasks it holds."""
    for agent in crew.agents.list():
        held = [t for t in crew.tasks.get_by_agent(agent.id) if not t.is_terminal]
        assert agent.current_load == len(held), (agent.id, [t.id for t in held])
