"""CLI entrypoint for the Ralph supervision loop."""

import logging
import sys
from pathlib import Path

import rich_click as click

from ralph_loop import __version__
from ralph_loop.supervisor.controllers import (
    ParseCommand,
    RunCommand,
    StatusCommand,
    SupervisorCliController,
)
from ralph_loop.supervisor.loop import SupervisorConfigError
from ralph_loop.supervisor.models import OutputFormat

click.rich_click.USE_MARKDOWN = True
SUPERVISOR_CONTROLLER = SupervisorCliController()


@click.group()
@click.version_option(version=__version__, prog_name="ralph")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Diagnostic logging level (stderr). Durable logs always go to the state dir.",
)
def ralph(log_level: str) -> None:
    """Supervise an autonomous coding agent until its task checklist is done.

    Reads `RALPH_TASK.md` in the workspace, runs the agent in iterations, and
    rotates to a fresh context before the context window fills up.
    """

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@ralph.command("run")
@click.argument(
    "workspace",
    type=click.Path(path_type=Path, file_okay=False),
    default=Path("."),
)
@click.option("-a", "--agent", default=None, help="Agent id, for example cursor or claude-code.")
@click.option("-m", "--model", default=None, help="Model id; defaults to the agent's default.")
@click.option(
    "-n",
    "--iterations",
    type=click.IntRange(min=1),
    default=None,
    help="Iteration ceiling. Overrides task `max_iterations` and `RALPH_MAX_ITERATIONS`.",
)
@click.option("--branch", default=None, help="Create or switch to this git branch first.")
@click.option("--pr", "open_pr", is_flag=True, help="Open a pull request on completion.")
@click.option("-y", "--yes", is_flag=True, help="Start without confirmation.")
def run(  # noqa: PLR0913
    workspace: Path,
    agent: str | None,
    model: str | None,
    iterations: int | None,
    branch: str | None,
    open_pr: bool,
    yes: bool,
) -> None:
    """Run the supervised loop in WORKSPACE (a git working tree).

    Exit status: `0` complete, `2` gutter, `3` iterations exhausted,
    `130` interrupted, `1` configuration error.
    """

    command = RunCommand(
        workspace=workspace,
        agent=agent,
        model=model,
        iterations=iterations,
        branch=branch,
        open_pr=open_pr,
    )
    try:
        plan = SUPERVISOR_CONTROLLER.plan_run(command)
    except SupervisorConfigError as error:
        raise click.ClickException(str(error)) from error

    _emit_lines(plan.lines)
    if not yes and not click.confirm("Start the loop?", default=True):
        raise click.Abort

    try:
        report = SUPERVISOR_CONTROLLER.execute(plan)
    except SupervisorConfigError as error:
        raise click.ClickException(
            f"{error} (see {workspace / plan.settings.loop.state_dir / 'errors.log'})",
        ) from error
    _emit_lines(report.lines)
    sys.exit(report.exit_code)


@ralph.command("agents")
def agents() -> None:
    """List supported agents with availability and models."""

    try:
        _emit_lines(SUPERVISOR_CONTROLLER.agents())
    except SupervisorConfigError as error:
        raise click.ClickException(str(error)) from error


@ralph.command("status")
@click.argument(
    "workspace",
    type=click.Path(path_type=Path, file_okay=False),
    default=Path("."),
)
@click.option(
    "--lines",
    "tail_lines",
    type=click.IntRange(min=0),
    default=10,
    show_default=True,
    help="Log lines to show from each log.",
)
def status(workspace: Path, tail_lines: int) -> None:
    """Show task progress and the tail of the activity and error logs."""

    try:
        _emit_lines(
            SUPERVISOR_CONTROLLER.status(
                StatusCommand(workspace=workspace, tail_lines=tail_lines),
            ),
        )
    except SupervisorConfigError as error:
        raise click.ClickException(str(error)) from error


@ralph.command("parse")
@click.argument(
    "workspace",
    type=click.Path(path_type=Path, file_okay=False),
    default=Path("."),
)
@click.option("-a", "--agent", default=None, help="Agent whose output is parsed.")
@click.option(
    "--format",
    "output_format",
    type=click.Choice([item.value for item in OutputFormat]),
    default=None,
    help="Override the agent's output format.",
)
def parse(workspace: Path, agent: str | None, output_format: str | None) -> None:
    """Parse agent output from stdin, write the logs, and print control signals."""

    try:
        report = SUPERVISOR_CONTROLLER.parse(
            ParseCommand(
                workspace=workspace,
                agent=agent,
                output_format=OutputFormat(output_format) if output_format else None,
                lines=click.get_text_stream("stdin"),
            ),
            click.echo,
        )
    except SupervisorConfigError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines([f"# {line}" for line in report.lines])


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    ralph()
