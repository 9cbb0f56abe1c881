"""Per-agent memory ledger."""

from devcrew.memory.ledger import MemoryLedger, ReflectionSummary

__all__ = ["MemoryLedger", "ReflectionSummary"]
