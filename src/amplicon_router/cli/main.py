"""
Main CLI interface for the Amplicon Workflow Router.

This module provides the command-line interface using Click, with rich
tables for plans and flags and a progress display for runs.
"""

import functools
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click
from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table
from loguru import logger

from .. import __version__
from ..config.parameters import PipelineParameters
from ..config.settings import Settings, get_settings
from ..core.exceptions import AmpliconRouterError
from ..core.types import StageKind, StageResult, StageStatus
from ..execution.pipeline import AmpliconPipeline
from ..routing.catalog import STAGES
from ..routing.flags import describe_rule
from ..routing.planner import build_plan
from ..utils.logging import setup_logging

console = Console()


def setup_cli_logging(settings: Settings, verbose: bool = False, quiet: bool = False) -> None:
    """Setup logging for CLI."""
    if quiet:
        level = "ERROR"
    elif verbose:
        level = "DEBUG"
    else:
        level = settings.logging.level

    setup_logging(
        level=level,
        log_file=settings.logging.log_file,
        enable_json=settings.logging.enable_json_logging,
        rotation=settings.logging.log_rotation,
        retention=settings.logging.log_retention,
    )


def handle_errors(func):
    """Decorator to handle CLI errors gracefully."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except AmpliconRouterError as e:
            console.print(f"[red]Error: {escape(str(e))}[/red]")
            sys.exit(1)
        except Exception as e:
            console.print(f"[red]Unexpected error: {escape(str(e))}[/red]")
            logger.exception("Unexpected error in CLI")
            sys.exit(1)

    return wrapper


def parse_overrides(assignments: Tuple[str, ...]) -> Dict[str, Any]:
    """
    Parse ``key=value`` overrides.

    Values are read as JSON when possible (``true``, ``12``, ``null``)
    and kept as plain strings otherwise.
    """
    overrides: Dict[str, Any] = {}
    for assignment in assignments:
        key, sep, raw = assignment.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(
                f"expected key=value, got '{assignment}'", param_hint="--set"
            )
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            value = raw
        overrides[key.strip()] = value
    return overrides


def load_parameters(params_file: str, assignments: Tuple[str, ...]) -> PipelineParameters:
    return PipelineParameters.from_file(Path(params_file), **parse_overrides(assignments))


params_file_argument = click.argument(
    "params_file", type=click.Path(exists=True, dir_okay=False)
)
set_option = click.option(
    "--set",
    "assignments",
    multiple=True,
    metavar="KEY=VALUE",
    help="Override a parameter (repeatable)",
)


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--quiet", "-q", is_flag=True, help="Enable quiet mode")
@click.option("--config", "-c", type=click.Path(exists=True), help="Settings file path")
@click.pass_context
def main(ctx: click.Context, verbose: bool, quiet: bool, config: Optional[str]):
    """
    Amplicon Workflow Router - plan and run amplicon sequencing analyses.

    Derives which stages of the amplicon workflow run from a parameter
    file, orders them by their data dependencies and executes the
    external tools behind each stage.
    """
    ctx.ensure_object(dict)
    settings = Settings.load_config(Path(config)) if config else get_settings()
    ctx.obj["settings"] = settings
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet

    setup_cli_logging(settings, verbose, quiet)
    if config:
        logger.debug(f"Loaded settings from {config}")


@main.command()
@params_file_argument
@set_option
@click.pass_context
@handle_errors
def plan(ctx: click.Context, params_file: str, assignments: Tuple[str, ...]):
    """
    Print the ordered execution plan.

    Stages are listed in the order they would be started; the last column
    names the stages each one waits for.
    """
    params = load_parameters(params_file, assignments)
    execution_plan = build_plan(params)

    table = Table(title=f"Execution plan ({len(execution_plan)} stages)")
    table.add_column("#", justify="right")
    table.add_column("Stage", style="cyan")
    table.add_column("Kind")
    table.add_column("Branch")
    table.add_column("Depends on")
    for index, stage in enumerate(execution_plan, start=1):
        branch = ""
        if stage.branch:
            branch = f"{stage.branch}={execution_plan.branches.get(stage.branch, '')}"
        table.add_row(
            str(index),
            stage.name,
            stage.kind.value,
            branch,
            ", ".join(execution_plan.dependencies(stage)),
        )
    console.print(table)

    if execution_plan.skipped:
        console.print(f"[dim]Skipped: {', '.join(execution_plan.skipped)}[/dim]")


@main.command()
@params_file_argument
@set_option
@handle_errors
def flags(params_file: str, assignments: Tuple[str, ...]):
    """Print the derived stage switches and why any are off."""
    params = load_parameters(params_file, assignments)
    derived = build_plan(params).flags

    table = Table(
        title="Derived flags",
        caption=f"{len(derived.enabled())} on, {len(derived.disabled())} off",
    )
    table.add_column("Flag", style="cyan")
    table.add_column("State")
    table.add_column("Disabled by")
    for name, value in derived.as_dict().items():
        rule = derived.reasons.get(name)
        table.add_row(
            name,
            "[green]on[/green]" if value else "[red]off[/red]",
            f"{rule}: {describe_rule(rule)}" if rule else "",
        )
    console.print(table)


@main.command()
@params_file_argument
@set_option
@click.option("--dry-run", is_flag=True, help="Render commands without running them")
@click.option("--max-workers", "-j", type=click.IntRange(min=1), help="Stages run at once")
@click.pass_context
@handle_errors
def run(
    ctx: click.Context,
    params_file: str,
    assignments: Tuple[str, ...],
    dry_run: bool,
    max_workers: Optional[int],
):
    """
    Build the plan and execute it.

    The run summary is written to the output directory and the
    notification e-mail sent whether or not the run succeeds.
    """
    params = load_parameters(params_file, assignments)
    settings: Settings = ctx.obj["settings"]

    console.print("[bold blue]Starting amplicon workflow[/bold blue]")
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        console=console,
        disable=ctx.obj["quiet"],
    ) as progress:
        task = progress.add_task("Running stages...", total=None)

        def on_stage_complete(result: StageResult) -> None:
            if result.status is StageStatus.FAILED:
                progress.console.print(f"[red]✗ {result.stage}[/red]")
            elif result.status is StageStatus.CANCELLED:
                progress.console.print(f"[yellow]- {result.stage} (cancelled)[/yellow]")
            else:
                progress.console.print(f"[green]✓ {result.stage}[/green]")
            if pipeline.plan is not None:
                progress.update(task, total=len(pipeline.plan))
            progress.advance(task)

        pipeline = AmpliconPipeline(
            params,
            settings=settings,
            dry_run=dry_run,
            max_workers=max_workers,
            on_stage_complete=on_stage_complete,
        )
        summary = pipeline.run()

    console.print(
        f"[green]Run '{summary.run_name}' completed: "
        f"{len(summary.executed)} stages in {summary.duration:.1f}s[/green]"
    )
    console.print(f"Results: {summary.outdir}")


@main.command()
@click.option("--branch", "-b", help="Only list stages of this branch")
def stages(branch: Optional[str]):
    """List every stage of the workflow catalog."""
    table = Table(title="Workflow stages")
    table.add_column("Stage", style="cyan")
    table.add_column("Kind")
    table.add_column("Branch")
    table.add_column("Consumes")
    table.add_column("Produces")
    for stage in STAGES:
        if branch and stage.branch != branch:
            continue
        consumes = list(stage.inputs) + [f"{c}?" for c in stage.optional_inputs]
        table.add_row(
            stage.name,
            stage.kind.value,
            stage.branch or "",
            ", ".join(consumes),
            ", ".join(stage.produces),
        )
    console.print(table)


@main.command()
@click.pass_context
def info(ctx: click.Context):
    """Show version and configuration information."""
    settings: Settings = ctx.obj["settings"]

    table = Table(title="Amplicon Workflow Router Information")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Version", __version__)
    table.add_row("Catalog stages", str(len(STAGES)))
    table.add_row(
        "Command stages",
        str(sum(1 for stage in STAGES if stage.kind is StageKind.COMMAND)),
    )
    table.add_row("Max workers", str(settings.compute.max_workers))
    table.add_row("Shell", settings.compute.shell)
    table.add_row("Log level", settings.logging.level)
    table.add_row("Sendmail", settings.notification.sendmail_binary)
    console.print(table)


if __name__ == "__main__":
    main()
