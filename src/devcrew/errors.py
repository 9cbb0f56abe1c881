"""Exception hierarchy for devcrew."""

from __future__ import annotations


class DevcrewError(Exception):
    """Base class for all devcrew errors."""


class StorageError(DevcrewError):
    """A task or agent referenced by id does not exist, or a store is not open."""


class TransientOracleFailure(DevcrewError):
    """The cognition oracle timed out, was unreachable, or answered garbage.

    Never fails a task: the engine substitutes the role's fallback decision.
    """


class ProcessingFailure(DevcrewError):
    """Executing a decision for a task failed."""

    def __init__(self, task_id: str, message: str) -> None:
        super().__init__(f"{task_id}: {message}")
        self.task_id = task_id


class RecoveryExhausted(DevcrewError):
    """A task failed more times than the recovery budget allows."""

    def __init__(self, task_id: str, attempts: int) -> None:
        super().__init__(f"{task_id}: {attempts} failed recovery attempts")
        self.task_id = task_id
        self.attempts = attempts


class DecompositionCycleError(DevcrewError):
    """A decomposition template declares a dependency cycle."""

    def __init__(self, domain: str, cycle: list[str]) -> None:
        super().__init__(f"template '{domain}' has a dependency cycle: {' -> '.join(cycle)}")
        self.domain = domain
        self.cycle = cycle
