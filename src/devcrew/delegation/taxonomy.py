"""
Task Taxonomy - domain classification and decomposition templates

Domains are detected from tags first, then title keywords, checked in a fixed
order (development, analysis, design, testing). Anything else is generic.

Templates are registered through ``register_template``, which rejects a
dependency cycle with ``DecompositionCycleError``. The built-in templates go
through the same check when this module is imported, so a bad template can
never reach the decomposer.
"""

import math
from typing import Dict, List, Optional, Sequence

from devcrew.errors import DecompositionCycleError
from devcrew.models import Task, TaskPriority

from .models import Complexity, Domain, TemplateStep

DOMAIN_RULES: List[tuple] = [
    (Domain.DEVELOPMENT, {"development", "coding"}, ["develop", "code", "implement"]),
    (Domain.ANALYSIS, {"analysis", "research"}, ["analyze", "research"]),
    (Domain.DESIGN, {"design", "ui", "ux"}, ["design", "interface"]),
    (Domain.TESTING, {"testing", "qa"}, ["test", "quality"]),
]

DEFAULT_GENERIC_HOURS = 4.0
HOURS_PER_GENERIC_PART = 2.0

_TEMPLATES: Dict[Domain, List[TemplateStep]] = {}


def classify_domain(task: Task) -> Domain:
    """Pick the decomposition domain for a task from its tags and title."""
    tags = {t.lower() for t in task.tags}
    title = task.title.lower()
    for domain, tag_words, title_words in DOMAIN_RULES:
        if tags & tag_words or any(w in title for w in title_words):
            return domain
    return Domain.GENERIC


def assess_complexity(task: Task) -> Complexity:
    """Rough complexity: one point per signal, 2 is medium, 3+ is high."""
    points = 0
    if len(task.description) > 200:
        points += 1
    if len(task.tags) > 3:
        points += 1
    if task.priority in (TaskPriority.HIGH, TaskPriority.URGENT):
        points += 1
    if task.estimated_hours and task.estimated_hours > 8:
        points += 1
    if len(task.metadata.get("requirements", [])) > 1:
        points += 1

    if points >= 3:
        return Complexity.HIGH
    if points >= 2:
        return Complexity.MEDIUM
    return Complexity.LOW


def resolve_dependencies(steps: Sequence[TemplateStep]) -> List[List[int]]:
    """Dependency indexes per step, with the linear-chain default applied."""
    resolved = []
    for idx, step in enumerate(steps):
        if step.depends_on is None:
            resolved.append([idx - 1] if idx > 0 else [])
        else:
            for dep in step.depends_on:
                if not 0 <= dep < len(steps) or dep == idx:
                    raise ValueError(f"step {idx} ({step.title}) has invalid dependency {dep}")
            resolved.append(list(step.depends_on))
    return resolved


def find_cycle(steps: Sequence[TemplateStep]) -> Optional[List[str]]:
    """Return the titles along a dependency cycle, or None if the graph is acyclic."""
    deps = resolve_dependencies(steps)
    white, grey, black = 0, 1, 2
    color = [white] * len(steps)
    stack: List[int] = []

    def visit(node: int) -> Optional[List[str]]:
        color[node] = grey
        stack.append(node)
        for dep in deps[node]:
            if color[dep] == grey:
                cycle = stack[stack.index(dep):] + [dep]
                return [steps[i].title for i in cycle]
            if color[dep] == white:
                found = visit(dep)
                if found:
                    return found
        stack.pop()
        color[node] = black
        return None

    for node in range(len(steps)):
        if color[node] == white:
            found = visit(node)
            if found:
                return found
    return None


def register_template(domain: Domain, steps: Sequence[TemplateStep]) -> None:
    """Install a decomposition template after checking it is acyclic."""
    if not steps:
        raise ValueError(f"template '{domain.value}' has no steps")
    cycle = find_cycle(steps)
    if cycle:
        raise DecompositionCycleError(domain.value, cycle)
    _TEMPLATES[domain] = list(steps)


def get_template(domain: Domain) -> List[TemplateStep]:
    return list(_TEMPLATES[domain])


def registered_domains() -> List[Domain]:
    return list(_TEMPLATES)


def generic_steps(task: Task, cap: Optional[int] = None) -> List[TemplateStep]:
    """Split a task into ceil(hours / 2) equal, chained parts."""
    hours = task.estimated_hours
    if not hours or hours <= 0:
        hours = DEFAULT_GENERIC_HOURS
    parts = max(1, math.ceil(hours / HOURS_PER_GENERIC_PART))
    if cap is not None:
        parts = max(1, min(parts, cap))
    skills = list(task.tags) or ["general"]
    return [
        TemplateStep(
            title=f"Sub-task {i} for {task.title}",
            description=f"Part {i} of {task.title}: {task.description or 'No description'}",
            estimated_hours=hours / parts,
            required_skills=skills,
            deliverables=[f"deliverable_{i}"],
            acceptance_criteria=[f"Sub-task {i} completed successfully"],
        )
        for i in range(1, parts + 1)
    ]


register_template(
    Domain.DEVELOPMENT,
    [
        TemplateStep(
            "Requirements Analysis",
            "Analyze and document detailed requirements",
            2,
            ["analysis", "requirements"],
            ["requirements_document", "acceptance_criteria"],
            ["All requirements documented and clarified"],
        ),
        TemplateStep(
            "Technical Design",
            "Create the technical design and architecture",
            3,
            ["architecture", "design"],
            ["technical_design", "architecture_diagram"],
            ["Design approved by architect"],
        ),
        TemplateStep(
            "Implementation",
            "Implement the solution according to the design",
            8,
            ["development", "coding"],
            ["source_code", "unit_tests"],
            ["Code passes all tests", "Code review approved"],
        ),
        TemplateStep(
            "Testing",
            "Test the implementation end to end",
            2,
            ["testing", "qa"],
            ["test_results", "bug_reports"],
            ["All tests pass", "No critical bugs found"],
        ),
    ],
)

register_template(
    Domain.ANALYSIS,
    [
        TemplateStep(
            "Data Collection",
            "Identify and gather the data needed for the analysis",
            3,
            ["research", "data_collection"],
            ["data_collection_report"],
            ["All required data sources identified and accessed"],
        ),
        TemplateStep(
            "Analysis Execution",
            "Run the analysis on the collected data",
            5,
            ["analysis", "data_analysis"],
            ["analysis_report", "findings_summary"],
            ["Analysis methodology documented", "Findings validated"],
        ),
        TemplateStep(
            "Recommendations",
            "Turn findings into prioritized recommendations",
            2,
            ["analysis", "strategic_thinking"],
            ["recommendations_document"],
            ["Recommendations are actionable and prioritized"],
        ),
    ],
)

register_template(
    Domain.DESIGN,
    [
        TemplateStep(
            "Design Research",
            "Research user needs and existing design patterns",
            2,
            ["research", "design"],
            ["research_findings", "design_patterns"],
            ["Research documented and patterns identified"],
        ),
        TemplateStep(
            "Concept Development",
            "Develop wireframes and design concepts",
            4,
            ["design", "wireframing"],
            ["wireframes", "design_concepts"],
            ["Concepts align with requirements"],
        ),
        TemplateStep(
            "Design Finalization",
            "Finalize the design and write design specs",
            3,
            ["design", "prototyping"],
            ["final_design", "design_specs"],
            ["Design approved by stakeholders"],
        ),
    ],
)

register_template(
    Domain.TESTING,
    [
        TemplateStep(
            "Test Planning",
            "Plan test scenarios and write test cases",
            2,
            ["testing", "test_planning"],
            ["test_plan", "test_cases"],
            ["All scenarios covered in test plan"],
        ),
        TemplateStep(
            "Test Execution",
            "Execute the test plan and report results",
            4,
            ["testing", "test_execution"],
            ["test_results", "bug_reports"],
            ["All tests executed and documented"],
        ),
    ],
)
