"""Main CLI entry point using Typer."""

import json
from pathlib import Path

import anyio
import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from plansmith import __version__
from plansmith.core.config import get_settings
from plansmith.core.logging import configure_logging
from plansmith.planning.models import AtomicTask, DecompositionResult, Feature

app = typer.Typer(
    name="plansmith",
    help="Plansmith - Feature decomposition and task scheduling",
    add_completion=True,
    rich_markup_mode="rich",
)

console = Console()

PRIORITY_COLORS = {
    "P0": "bold red",
    "P1": "yellow",
    "P2": "cyan",
    "P3": "dim",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold blue]Plansmith[/bold blue] version {__version__}")
        raise typer.Exit()


def load_tasks(plan: Path) -> list[AtomicTask]:
    """Read tasks from a plan file written by ``plansmith decompose -o``.

    Accepts either a full decomposition result or a bare list of tasks.
    """
    if not plan.exists():
        console.print(f"[red]Plan file not found: {plan}[/red]")
        raise typer.Exit(code=1)

    try:
        data = json.loads(plan.read_text())
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid plan file {plan}: {e}[/red]")
        raise typer.Exit(code=1) from e

    raw_tasks = data.get("tasks", []) if isinstance(data, dict) else data
    return [AtomicTask.model_validate(item) for item in raw_tasks]


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        "-d",
        help="Enable debug logging",
    ),
) -> None:
    """
    Plansmith - Turn features into ranked, dependency-ordered tasks.

    Decomposes feature descriptions into small atomic tasks, ranks them
    and finds the chain of work that bounds delivery time.
    """
    settings = get_settings()
    if debug:
        settings = settings.model_copy(update={"debug": True})
    configure_logging(settings)


@app.command()
def decompose(
    description: str = typer.Argument(..., help="Feature description or path to a file"),
    feature_id: str = typer.Option(
        "F-1",
        "--id",
        "-i",
        help="Feature id, used as the task id prefix",
    ),
    is_ui: bool = typer.Option(
        False,
        "--ui",
        help="Mark the feature as user-interface work",
    ),
    context: str | None = typer.Option(
        None,
        "--context",
        "-c",
        help="Extra context for the generator (existing patterns, stack)",
    ),
    offline: bool = typer.Option(
        False,
        "--offline",
        help="Skip the generator and produce the fallback plan",
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Output file for the plan (JSON)",
    ),
) -> None:
    """
    Decompose a feature into atomic tasks.

    Example:
        plansmith decompose "Password reset by email" --id F-7 -o plan.json
    """
    desc_path = Path(description)
    if desc_path.exists() and desc_path.is_file():
        description = desc_path.read_text()
        console.print(f"[dim]Loaded feature from {desc_path}[/dim]")

    feature = Feature(id=feature_id, description=description.strip(), is_ui=is_ui)

    console.print(
        Panel(
            f"[bold]Feature {feature.id}:[/bold]\n{feature.description[:200]}"
            f"{'...' if len(feature.description) > 200 else ''}",
            title="[bold blue]Plansmith[/bold blue]",
            border_style="blue",
        )
    )

    async def do_decompose() -> DecompositionResult:
        from plansmith.core.context import PlanningContext
        from plansmith.planning.generation import OfflineTextGenerator

        generator = OfflineTextGenerator() if offline else None
        planning = PlanningContext.from_settings(get_settings(), generator=generator)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            progress.add_task("Decomposing feature...", total=None)
            return await planning.plan_feature(feature, context)

    result = anyio.run(do_decompose)

    if result.used_fallback:
        console.print("[yellow]Generation failed, using fallback task[/yellow]")

    critical = set(result.critical_path)
    table = Table(title=f"Task Breakdown ({result.total_estimate_minutes} min)")
    table.add_column("ID", style="cyan")
    table.add_column("Title", style="bold")
    table.add_column("Priority")
    table.add_column("Estimate", justify="right")
    table.add_column("Depends On")
    table.add_column("Critical", justify="center")

    for task in result.tasks:
        color = PRIORITY_COLORS[task.priority.value]
        deps = ", ".join(task.depends_on) or "-"
        table.add_row(
            task.id,
            task.title,
            f"[{color}]{task.priority.value}[/{color}]",
            f"{task.estimate_minutes}m",
            deps[:30] + "..." if len(deps) > 30 else deps,
            "*" if task.id in critical else "",
        )

    console.print(table)

    if result.cycles:
        for cycle in result.cycles:
            console.print(f"[red]Cycle: {' -> '.join(cycle)}[/red]")

    if output:
        output.write_text(json.dumps(result.to_dict(), indent=2))
        console.print(f"[green]Saved to {output}[/green]")


@app.command()
def rank(
    plan: Path = typer.Argument(..., help="Plan file written by decompose"),
) -> None:
    """
    Score the tasks of a plan and list them by priority.

    Example:
        plansmith rank plan.json
    """
    from plansmith.planning.priority import PriorityEngine

    tasks = load_tasks(plan)
    engine = PriorityEngine(get_settings().priority_config())
    results = engine.assign_batch(tasks)

    table = Table(title="Task Priorities")
    table.add_column("ID", style="cyan")
    table.add_column("Title", style="bold")
    table.add_column("Priority")
    table.add_column("Score", justify="right")
    table.add_column("Reasons")

    for task in engine.reorder_by_priority(tasks):
        result = results[task.id]
        color = PRIORITY_COLORS[result.priority.value]
        table.add_row(
            task.id,
            task.title,
            f"[{color}]{result.priority.value}[/{color}]",
            str(result.score),
            "; ".join(result.reasons),
        )

    console.print(table)

    stats = engine.get_statistics(tasks)
    console.print(
        f"[dim]P0: {stats.p0}  P1: {stats.p1}  P2: {stats.p2}  P3: {stats.p3}  "
        f"average score: {stats.average_score}[/dim]"
    )


@app.command(name="critical-path")
def critical_path(
    plan: Path = typer.Argument(..., help="Plan file written by decompose"),
) -> None:
    """
    Show the longest-duration dependency chain of a plan.

    Example:
        plansmith critical-path plan.json
    """
    from plansmith.planning.critical_path import CriticalPathAnalyzer
    from plansmith.planning.cycles import analyze_cycles, format_cycle_report
    from plansmith.planning.graph import DependencyGraph, parallel_levels

    tasks = load_tasks(plan)
    graph = DependencyGraph.from_tasks(tasks)
    result = CriticalPathAnalyzer().analyze(tasks, graph)

    by_id = {task.id: task for task in tasks}
    table = Table(title=f"Critical Path ({result.length_minutes} min)")
    table.add_column("#", justify="right")
    table.add_column("ID", style="cyan")
    table.add_column("Title", style="bold")
    table.add_column("Estimate", justify="right")

    for position, task_id in enumerate(result.path, start=1):
        task = by_id[task_id]
        table.add_row(str(position), task.id, task.title, f"{task.estimate_minutes}m")

    console.print(table)

    analysis = analyze_cycles(graph)
    if analysis.has_cycles:
        console.print(f"[red]{format_cycle_report(analysis)}[/red]")
        return

    for wave, level in enumerate(parallel_levels(graph)):
        console.print(f"[dim]Wave {wave}:[/dim] {', '.join(level)}")


@app.command()
def version() -> None:
    """Show the installed version."""
    console.print(f"[bold blue]Plansmith[/bold blue] version {__version__}")


if __name__ == "__main__":
    app()
