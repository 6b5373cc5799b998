"""CLI entrypoint for agent-dispatch."""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import rich_click as click

from agent_dispatch import __version__
from agent_dispatch.orchestrator.controllers import (
    BatchCommand,
    ClassifyCommand,
    DispatchCliController,
    HealthCommand,
    HintOptions,
    QuotaCommand,
    RouteCommand,
    RunCommand,
    StatsCommand,
)
from agent_dispatch.orchestrator.models import (
    BackendType,
    Complexity,
    OutputFormat,
    TaskCategory,
)

click.rich_click.USE_MARKDOWN = True
DISPATCH_CONTROLLER = DispatchCliController()

_BACKEND_CHOICE = click.Choice([item.value for item in BackendType])
_OUTPUT_FORMAT_CHOICE = click.Choice([item.value for item in OutputFormat])


def _db_path_option(func: Callable[..., Any]) -> Callable[..., Any]:
    return click.option(
        "--db-path",
        type=click.Path(path_type=Path),
        default=None,
        help="SQLite DB path.",
    )(func)


def _hint_options(func: Callable[..., Any]) -> Callable[..., Any]:
    options = [
        click.option(
            "--category",
            type=click.Choice([item.value for item in TaskCategory]),
            default=None,
            help="Override the detected task category.",
        ),
        click.option(
            "--complexity",
            type=click.Choice([item.value for item in Complexity]),
            default=None,
            help="Override the estimated complexity (ignored for security-critical tasks).",
        ),
        click.option(
            "--files",
            "files_affected",
            type=click.IntRange(min=0),
            default=None,
            help="Number of files the task touches.",
        ),
        click.option(
            "--lines",
            "estimated_lines",
            type=click.IntRange(min=0),
            default=None,
            help="Estimated number of changed lines.",
        ),
        click.option(
            "--security-critical",
            is_flag=True,
            default=False,
            help="Treat the task as security-critical.",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.version_option(version=__version__, prog_name="agent-dispatch")
def agent_dispatch() -> None:
    """Route coding tasks to **claude**, **codex** or **gemini** CLI agents.

    Tasks are classified, routed by category, complexity and remaining quota,
    and executed with automatic fallback to the next backend.
    """


@agent_dispatch.command("classify")
@click.argument("description")
@_hint_options
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    show_default=True,
    help="Output format.",
)
def classify_command(  # noqa: PLR0913
    description: str,
    category: str | None,
    complexity: str | None,
    files_affected: int | None,
    estimated_lines: int | None,
    security_critical: bool,
    output_format: str,
) -> None:
    """Classify a task description without routing or running it."""

    _emit_lines(
        DISPATCH_CONTROLLER.classify(
            ClassifyCommand(
                description=description,
                hints=HintOptions(
                    category=category,
                    complexity=complexity,
                    files_affected=files_affected,
                    estimated_lines=estimated_lines,
                    security_critical=security_critical,
                ),
                output_format=output_format,
            ),
        ),
    )


@agent_dispatch.command("route")
@click.argument("description")
@_db_path_option
@_hint_options
@click.option("--backend", type=_BACKEND_CHOICE, default=None, help="Force a backend.")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    show_default=True,
    help="Output format.",
)
def route_command(  # noqa: PLR0913
    description: str,
    db_path: Path | None,
    category: str | None,
    complexity: str | None,
    files_affected: int | None,
    estimated_lines: int | None,
    security_critical: bool,
    backend: str | None,
    output_format: str,
) -> None:
    """Show the backend plan a task would get, without running it."""

    _emit_lines(
        DISPATCH_CONTROLLER.route(
            RouteCommand(
                db_path=db_path,
                description=description,
                hints=HintOptions(
                    category=category,
                    complexity=complexity,
                    files_affected=files_affected,
                    estimated_lines=estimated_lines,
                    security_critical=security_critical,
                ),
                backend=backend,
                output_format=output_format,
            ),
        ),
    )


@agent_dispatch.command("run")
@click.argument("description")
@_db_path_option
@_hint_options
@click.option(
    "--backend",
    type=_BACKEND_CHOICE,
    default=None,
    help="Force a backend (ignored for security-critical tasks).",
)
@click.option("--model", default=None, help="Model passed to the backend CLI.")
@click.option(
    "--timeout",
    "timeout_seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Per-attempt timeout in seconds; defaults to the backend's setting.",
)
@click.option(
    "--output-format",
    type=_OUTPUT_FORMAT_CHOICE,
    default=None,
    help="Expected agent output format.",
)
@click.option(
    "--cwd",
    "working_dir",
    type=click.Path(path_type=Path, file_okay=False, exists=True),
    default=None,
    help="Working directory for the agent process.",
)
@click.option(
    "--context-file",
    "context_files",
    type=click.Path(path_type=Path),
    multiple=True,
    help="File to list in the prompt as context. Can be repeated.",
)
def run_command(  # noqa: PLR0913
    description: str,
    db_path: Path | None,
    category: str | None,
    complexity: str | None,
    files_affected: int | None,
    estimated_lines: int | None,
    security_critical: bool,
    backend: str | None,
    model: str | None,
    timeout_seconds: float | None,
    output_format: str | None,
    working_dir: Path | None,
    context_files: tuple[Path, ...],
) -> None:
    """Dispatch one task and print the result."""

    report = DISPATCH_CONTROLLER.run(
        RunCommand(
            db_path=db_path,
            description=description,
            hints=HintOptions(
                category=category,
                complexity=complexity,
                files_affected=files_affected,
                estimated_lines=estimated_lines,
                security_critical=security_critical,
            ),
            backend=backend,
            model=model,
            timeout_seconds=timeout_seconds,
            output_format=output_format,
            working_dir=working_dir,
            context_files=context_files,
        ),
    )
    _emit_lines(report.lines)
    if not report.success:
        raise click.ClickException("Dispatch failed on every backend.")


@agent_dispatch.command("batch")
@click.argument("descriptions", nargs=-1)
@_db_path_option
@click.option(
    "--from-file",
    type=click.Path(path_type=Path, dir_okay=False, exists=True),
    default=None,
    help="File with one task description per line.",
)
@_hint_options
@click.option(
    "--timeout",
    "timeout_seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Per-attempt timeout in seconds.",
)
@click.option(
    "--output-format",
    type=_OUTPUT_FORMAT_CHOICE,
    default=None,
    help="Expected agent output format.",
)
@click.option(
    "--cwd",
    "working_dir",
    type=click.Path(path_type=Path, file_okay=False, exists=True),
    default=None,
    help="Working directory for the agent processes.",
)
def batch_command(  # noqa: PLR0913
    descriptions: tuple[str, ...],
    db_path: Path | None,
    from_file: Path | None,
    category: str | None,
    complexity: str | None,
    files_affected: int | None,
    estimated_lines: int | None,
    security_critical: bool,
    timeout_seconds: float | None,
    output_format: str | None,
    working_dir: Path | None,
) -> None:
    """Dispatch several tasks concurrently as a Prefect flow."""

    if from_file is not None:
        descriptions = (
            *descriptions,
            *(
                line.strip()
                for line in from_file.read_text("utf-8").splitlines()
                if line.strip()
            ),
        )
    if not descriptions:
        raise click.UsageError("Pass task descriptions as arguments or with --from-file.")

    report = DISPATCH_CONTROLLER.batch(
        BatchCommand(
            db_path=db_path,
            descriptions=descriptions,
            hints=HintOptions(
                category=category,
                complexity=complexity,
                files_affected=files_affected,
                estimated_lines=estimated_lines,
                security_critical=security_critical,
            ),
            timeout_seconds=timeout_seconds,
            output_format=output_format,
            working_dir=working_dir,
        ),
    )
    _emit_lines(report.lines)
    if not report.success:
        raise click.ClickException("Some dispatches failed.")


@agent_dispatch.command("quota")
@_db_path_option
@click.option(
    "--enable",
    multiple=True,
    help="Credential id to enable. Can be repeated.",
)
@click.option(
    "--disable",
    multiple=True,
    help="Credential id to disable. Can be repeated.",
)
def quota_command(
    db_path: Path | None,
    enable: tuple[str, ...],
    disable: tuple[str, ...],
) -> None:
    """Show remaining quota per backend and credential."""

    _emit_lines(
        DISPATCH_CONTROLLER.quota(
            QuotaCommand(db_path=db_path, enable=enable, disable=disable),
        ),
    )


@agent_dispatch.command("health")
@_db_path_option
def health_command(db_path: Path | None) -> None:
    """Check which backends are installed and have quota."""

    _emit_lines(DISPATCH_CONTROLLER.health(HealthCommand(db_path=db_path)))


@agent_dispatch.command("stats")
@_db_path_option
@click.option(
    "--hours",
    type=click.IntRange(min=1),
    default=None,
    help="Only count dispatches from the last N hours.",
)
def stats_command(db_path: Path | None, hours: int | None) -> None:
    """Show routing and execution statistics from the ledger."""

    _emit_lines(DISPATCH_CONTROLLER.stats(StatsCommand(db_path=db_path, hours=hours)))


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_dispatch()
