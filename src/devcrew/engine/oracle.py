"""Cognition Oracle client.

The oracle decides what an agent does next with a task. It is an external
service; the engine only needs ``decide(request) -> Decision`` and treats any
failure as transient.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from devcrew.engine.decisions import Decision, fallback_decision
from devcrew.errors import TransientOracleFailure

log = logging.getLogger(__name__)


@dataclass
class OracleRequest:
    task: dict[str, Any]
    agent: dict[str, Any]
    recent_history: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"task": self.task, "agent": self.agent, "recent_history": self.recent_history}


class CognitionOracle(Protocol):
    async def decide(self, request: OracleRequest) -> Decision: ...


class HttpCognitionOracle:
    """POSTs the request as JSON and parses the decision from the response body."""

    def __init__(
        self,
        url: str,
        timeout: float = 20.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def decide(self, request: OracleRequest) -> Decision:
        try:
            response = await self._client.post(self.url, json=request.to_dict())
            response.raise_for_status()
            return Decision.from_dict(response.json())
        except httpx.HTTPError as e:
            raise TransientOracleFailure(f"oracle request failed: {e}") from e
        except ValueError as e:
            raise TransientOracleFailure(f"invalid oracle response: {e}") from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class RoleFallbackOracle:
    """Always answers with the role's fallback decision; used when no oracle URL is set."""

    async def decide(self, request: OracleRequest) -> Decision:
        return fallback_decision(request.agent.get("role", ""))
