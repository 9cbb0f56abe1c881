"""
Decomposition Data Models

Subtasks, dependency edges and the decomposition record that ties them to the
original task.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Domain(str, Enum):
    """Work domains with their own decomposition template."""

    DEVELOPMENT = "development"
    ANALYSIS = "analysis"
    DESIGN = "design"
    TESTING = "testing"
    GENERIC = "generic"


class SubtaskStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class DependencyType(str, Enum):
    FINISH_TO_START = "finish_to_start"
    START_TO_START = "start_to_start"
    FINISH_TO_FINISH = "finish_to_finish"


class Complexity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class TemplateStep:
    """One step of a decomposition template.

    ``depends_on`` holds indexes of earlier steps in the same template; ``None``
    means "the previous step" (a linear chain).
    """

    title: str
    description: str
    estimated_hours: float
    required_skills: List[str]
    deliverables: List[str] = field(default_factory=list)
    acceptance_criteria: List[str] = field(default_factory=list)
    depends_on: Optional[List[int]] = None

    def __post_init__(self) -> None:
        if self.estimated_hours <= 0:
            raise ValueError(f"estimated_hours must be > 0, got {self.estimated_hours}")


@dataclass
class Subtask:
    """A decomposed unit of work, materialized as a Task with the same id."""

    id: str
    title: str
    description: str
    required_skills: List[str]
    estimated_time: float
    priority: str
    status: SubtaskStatus = SubtaskStatus.PENDING
    dependencies: List[str] = field(default_factory=list)
    deliverables: List[str] = field(default_factory=list)
    acceptance_criteria: List[str] = field(default_factory=list)
    assigned_to: Optional[str] = None

    @property
    def task_id(self) -> str:
        return self.id


@dataclass
class Dependency:
    """Edge ``from_subtask`` -> ``to_subtask`` in a decomposition graph."""

    id: str
    from_subtask: str
    to_subtask: str
    type: DependencyType = DependencyType.FINISH_TO_START


@dataclass
class Decomposition:
    """Subtask graph for one original task."""

    original_task_id: str
    decomposed_by: str
    domain: Domain
    complexity: Complexity
    subtasks: List[Subtask]
    dependencies: List[Dependency]
    created_at: float
    status: str = "active"
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def estimated_total_time(self) -> float:
        return sum(s.estimated_time for s in self.subtasks)

    @property
    def is_complete(self) -> bool:
        return all(s.status == SubtaskStatus.COMPLETED for s in self.subtasks)

    def get(self, subtask_id: str) -> Optional[Subtask]:
        for subtask in self.subtasks:
            if subtask.id == subtask_id:
                return subtask
        return None

    def dependents_of(self, subtask_id: str) -> List[Subtask]:
        return [s for s in self.subtasks if subtask_id in s.dependencies]

    def is_ready(self, subtask: Subtask) -> bool:
        """True when every dependency of ``subtask`` has completed."""
        for dep_id in subtask.dependencies:
            dep = self.get(dep_id)
            if dep is None or dep.status != SubtaskStatus.COMPLETED:
                return False
        return True
