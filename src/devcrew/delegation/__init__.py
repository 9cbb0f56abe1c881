"""
Task decomposition - subtask graphs with dependency-gated release

Core Components:
- models: Subtask, Dependency, Decomposition, TemplateStep
- taxonomy: domain classification and acyclic decomposition templates
- decomposer: materializes subtasks, places ready ones, releases dependents
"""

from .models import (
    Complexity,
    Decomposition,
    Dependency,
    DependencyType,
    Domain,
    Subtask,
    SubtaskStatus,
    TemplateStep,
)
from .taxonomy import (
    assess_complexity,
    classify_domain,
    find_cycle,
    generic_steps,
    get_template,
    register_template,
    registered_domains,
)
from .decomposer import TaskDecomposer

__all__ = [
    # Models
    "Complexity",
    "Decomposition",
    "Dependency",
    "DependencyType",
    "Domain",
    "Subtask",
    "SubtaskStatus",
    "TemplateStep",
    # Taxonomy
    "assess_complexity",
    "classify_domain",
    "find_cycle",
    "generic_steps",
    "get_template",
    "register_template",
    "registered_domains",
    # Decomposer
    "TaskDecomposer",
]
