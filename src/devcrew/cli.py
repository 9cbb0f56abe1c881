"""CLI entry point for devcrew."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.table import Table

from devcrew import __version__

if TYPE_CHECKING:
    from devcrew.config import CrewConfig
    from devcrew.crew import Crew

console = Console()

CONFIG_TEMPLATE = """\
# devcrew configuration
# seed = 42
# log_level = "INFO"

[engine]
main_interval = 2.0
health_interval = 30.0
sweep_interval = 10.0
stale_threshold = 30.0
max_recovery_attempts = 3
decompose_threshold_hours = 8.0

[scoring]
load_weight = 40.0
health_weight = 30.0
role_weight = 30.0

[monitor]
interval = 60.0

[oracle]
# url = "http://localhost:8080/decide"
timeout = 20.0
"""

STATUS_STYLES = {
    "completed": "green",
    "in_progress": "cyan",
    "pending": "white",
    "blocked": "yellow",
    "escalated": "magenta",
    "failed": "red",
    "healthy": "green",
    "degraded": "yellow",
    "stuck": "magenta",
    "critical": "red",
}


@click.group()
@click.version_option(version=__version__, prog_name="devcrew")
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Data directory (default ~/.devcrew)",
)
@click.option("-v", "--verbose", is_flag=True, help="Log engine activity to the console")
@click.pass_context
def main(ctx: click.Context, data_dir: Path | None, verbose: bool) -> None:
    """devcrew - coordinate a crew of software-development agents."""
    from devcrew.config import load_config
    from devcrew.logging_setup import setup_logging

    config_path = data_dir / "config.toml" if data_dir else None
    config = load_config(config_path)
    if data_dir:
        config.data_dir = data_dir
    setup_logging(
        "INFO" if verbose else config.log_level,
        log_file=config.data_dir / "logs" / "devcrew.log",
    )
    ctx.obj = config


def _styled(value: str) -> str:
    style = STATUS_STYLES.get(value)
    return f"[{style}]{value}[/{style}]" if style else value


def _crew(config: CrewConfig) -> Crew:
    from devcrew.crew import Crew

    return Crew(config)


@main.command()
@click.pass_obj
def init(config: CrewConfig) -> None:
    """Initialize devcrew: create the data directory, database and config."""
    from devcrew.storage.database import Database

    db = Database(config.data_dir)
    db.ensure_tables()
    if not config.config_path.exists():
        config.config_path.write_text(CONFIG_TEMPLATE)
    console.print(f"[green]devcrew initialized at {db.data_dir}[/green]")
    console.print(f"  Database: {db.db_path}")
    console.print(f"  Memory:   {db.ledger_path}")
    console.print(f"  Config:   {config.config_path}")


@main.command()
@click.pass_obj
def seed(config: CrewConfig) -> None:
    """Provision the default crew (one agent per role, two developers)."""
    crew = _crew(config)
    agents = crew.provision()
    console.print(f"[green]Provisioned {len(agents)} agents[/green]")
    _print_agents(agents)


@main.command()
@click.argument("title")
@click.option("--description", "-d", default="", help="Task description")
@click.option(
    "--priority",
    "-p",
    type=click.Choice(["low", "medium", "high", "urgent"]),
    default="medium",
    show_default=True,
)
@click.option("--hours", type=float, default=None, help="Estimated hours")
@click.option("--tag", "tags", multiple=True, help="Tag (repeatable)")
@click.pass_obj
def submit(
    config: CrewConfig,
    title: str,
    description: str,
    priority: str,
    hours: float | None,
    tags: tuple[str, ...],
) -> None:
    """Submit a new task to the crew."""
    from devcrew.models import Task, new_id

    crew = _crew(config)
    task = crew.tasks.create(
        Task(
            id=new_id("task"),
            title=title,
            description=description,
            priority=priority,
            estimated_hours=hours,
            tags=list(tags),
        )
    )
    console.print(f"[green]Submitted[/green] {task.id}: {task.title}")


@main.command()
@click.option("--all", "show_all", is_flag=True, help="Include completed tasks")
@click.pass_obj
def status(config: CrewConfig, show_all: bool) -> None:
    """Show tasks and agents."""
    crew = _crew(config)
    tasks = [t for t in crew.tasks.list() if show_all or t.status != "completed"]
    if tasks:
        table = Table(title="Tasks")
        table.add_column("Task ID", style="cyan")
        table.add_column("Title", max_width=40)
        table.add_column("Status")
        table.add_column("Priority")
        table.add_column("Stage")
        table.add_column("Agent", style="green")
        table.add_column("Reason", max_width=40)
        for t in tasks:
            table.add_row(
                t.id,
                t.title[:40],
                _styled(t.status),
                t.priority,
                t.workflow_stage or "-",
                t.assigned_agent_id or "-",
                t.reason[:40],
            )
        console.print(table)
    else:
        console.print("[dim]No open tasks.[/dim]")

    agents = crew.agents.list()
    if not agents:
        console.print("[dim]No agents. Run 'devcrew seed' first.[/dim]")
        return
    _print_agents(agents)
    snapshot = crew.engine.workflow_status()
    console.print(
        f"\nTasks: {snapshot.total_tasks} | "
        f"Agents: {snapshot.agents_active}/{snapshot.agents_total} active | "
        f"Load: {snapshot.total_load} | "
        f"Avg health: {snapshot.average_health:.0f}"
    )


def _print_agents(agents: list) -> None:
    table = Table(title="Agents")
    table.add_column("Agent ID", style="cyan")
    table.add_column("Name")
    table.add_column("Role", style="green")
    table.add_column("Status")
    table.add_column("Load")
    table.add_column("Health")
    table.add_column("Expertise", max_width=40)
    for a in agents:
        table.add_row(
            a.id,
            a.name,
            a.role,
            a.status,
            f"{a.current_load}/{a.max_load}",
            f"{a.health_score:.0f}",
            ", ".join(a.expertise),
        )
    console.print(table)


@main.command()
@click.argument("agent_id", required=False)
@click.pass_obj
def health(config: CrewConfig, agent_id: str | None) -> None:
    """Run one self-monitoring cycle and show the results."""

    async def _run() -> list:
        async with _crew(config) as crew:
            agents = [crew.agents.require(agent_id)] if agent_id else crew.agents.list()
            results = []
            for agent in agents:
                check = await crew.monitor.check_health(agent.id)
                metrics = await crew.monitor.update_metrics(agent.id)
                results.append((agent, check, metrics))
            return results

    from devcrew.errors import StorageError

    try:
        results = asyncio.run(_run())
    except StorageError as e:
        raise click.ClickException(str(e)) from e
    if not results:
        console.print("[dim]No agents to check.[/dim]")
        return

    table = Table(title="Agent Health")
    table.add_column("Agent ID", style="cyan")
    table.add_column("Status")
    table.add_column("Issues", max_width=50)
    table.add_column("Success")
    table.add_column("Learning")
    for agent, check, metrics in results:
        table.add_row(
            agent.id,
            _styled(check.status.value),
            "; ".join(f"{i.severity.value}: {i.description}" for i in check.issues) or "-",
            f"{metrics.success_rate:.0%}",
            f"{metrics.learning_rate:.0%}",
        )
    console.print(table)


@main.command()
@click.argument("task_id")
@click.option("--agent", "agent_id", default=None, help="Agent credited with the decomposition")
@click.pass_obj
def decompose(config: CrewConfig, task_id: str, agent_id: str | None) -> None:
    """Decompose a task into dependency-ordered subtasks."""

    async def _run():
        async with _crew(config) as crew:
            return await crew.engine.decompose(task_id, agent_id)

    from devcrew.errors import DevcrewError

    try:
        decomposition = asyncio.run(_run())
    except (ValueError, DevcrewError) as e:
        raise click.ClickException(str(e)) from e

    table = Table(
        title=f"{task_id} ({decomposition.domain.value}, {decomposition.complexity.value})"
    )
    table.add_column("Subtask", style="cyan")
    table.add_column("Title")
    table.add_column("Hours")
    table.add_column("Skills")
    table.add_column("Depends on")
    table.add_column("Assigned", style="green")
    for sub in decomposition.subtasks:
        table.add_row(
            sub.id,
            sub.title,
            f"{sub.estimated_time:g}",
            ", ".join(sub.required_skills),
            ", ".join(sub.dependencies) or "-",
            sub.assigned_to or "-",
        )
    console.print(table)
    console.print(f"Total estimate: {decomposition.estimated_total_time:g}h")


@main.command()
@click.argument("agent_id")
@click.pass_obj
def reflect(config: CrewConfig, agent_id: str) -> None:
    """Reflect on an agent's learning entries."""

    async def _run():
        async with _crew(config) as crew:
            return await crew.ledger.reflect(agent_id)

    summary = asyncio.run(_run())
    console.print(f"[bold]{agent_id}[/bold]")
    console.print(f"  Successes: {summary.success_count}")
    console.print(f"  Failures:  {summary.failure_count}")
    if summary.top_topics:
        topics = ", ".join(f"{t} ({n})" for t, n in summary.top_topics)
        console.print(f"  Topics:    {topics}")
    if summary.strategy_updated:
        console.print("[yellow]  Strategy updated: more failures than successes[/yellow]")


@main.command()
@click.argument("agent_id")
@click.argument("action")
@click.option("--chain", is_flag=True, help="Also show the causal chain of recent memory")
@click.pass_obj
def explain(config: CrewConfig, agent_id: str, action: str, chain: bool) -> None:
    """Explain an agent action from its recent memory."""

    async def _run():
        async with _crew(config) as crew:
            explanation = await crew.monitor.explain_action(agent_id, action)
            causal = await crew.monitor.generate_causal_chain(agent_id, action) if chain else None
            return explanation, causal

    explanation, causal = asyncio.run(_run())
    console.print(f"[bold]{explanation.action}[/bold] by {agent_id}")
    console.print(f"  Confidence: {explanation.confidence:.2f}")
    for item in explanation.inputs:
        console.print(f"  input: {item}")
    for factor in explanation.influencing_factors:
        console.print(f"  factor: {factor}")
    console.print(f"  Alternatives: {', '.join(explanation.alternative_actions)}")
    if causal is not None:
        console.print(
            f"\n[bold]Causal chain[/bold] ({len(causal.events)} events, "
            f"confidence {causal.confidence:.2f})"
        )
        for event in causal.events:
            cause = f" <- {', '.join(map(str, event.caused_by))}" if event.caused_by else ""
            console.print(f"  {event.id}: ({event.type}) {event.content[:60]}{cause}")


@main.command()
@click.option("--duration", type=float, default=None, help="Stop after this many seconds")
@click.pass_obj
def run(config: CrewConfig, duration: float | None) -> None:
    """Run the workflow engine and self-monitor until interrupted."""

    async def _run() -> None:
        async with _crew(config) as crew:
            if not crew.agents.list():
                crew.provision()
            crew.start()
            console.print("[green]Crew running[/green] (Ctrl+C to stop)")
            try:
                if duration is None:
                    await asyncio.Event().wait()
                else:
                    await asyncio.sleep(duration)
            finally:
                await crew.stop()
            snapshot = crew.engine.workflow_status()
            console.print(f"Stopped. Tasks by status: {snapshot.tasks}")

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")


if __name__ == "__main__":
    main()
