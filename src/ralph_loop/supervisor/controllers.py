"""Controllers for supervisor CLI commands."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from ralph_loop.config import Settings
from ralph_loop.supervisor.backend import (
    AdapterRegistry,
    AgentBackend,
    AgentResolutionError,
    AgentSelection,
    CliAgentBackend,
    default_registry,
    resolve_selection,
)
from ralph_loop.supervisor.backend.probe import probe_executable
from ralph_loop.supervisor.estimator import ResourceEstimator
from ralph_loop.supervisor.logsink import SupervisorLog
from ralph_loop.supervisor.loop import (
    IterationController,
    LoopOutcome,
    SupervisorConfigError,
)
from ralph_loop.supervisor.models import (
    ControlSignal,
    FailureTracker,
    IterationSession,
    OutputFormat,
)
from ralph_loop.supervisor.pipeline import SessionPipeline
from ralph_loop.supervisor.task_state import TaskDocument, TaskDocumentError, read_task_document
from ralph_loop.supervisor.vcs import (
    VcsError,
    checkout_branch,
    current_branch,
    is_git_work_tree,
    open_pull_request,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunCommand:
    """CLI input for a supervised run."""

    workspace: Path
    agent: str | None
    model: str | None
    iterations: int | None
    branch: str | None
    open_pr: bool


@dataclass(slots=True)
class RunPlan:
    """Everything resolved before iteration 1; shown to the operator for confirmation."""

    command: RunCommand
    settings: Settings
    selection: AgentSelection
    document: TaskDocument
    max_iterations: int
    lines: list[str]


@dataclass(slots=True)
class RunReport:
    """Run outcome to render in CLI."""

    lines: list[str]
    exit_code: int


@dataclass(slots=True)
class StatusCommand:
    """CLI input for task progress and log tails."""

    workspace: Path
    tail_lines: int


@dataclass(slots=True)
class ParseCommand:
    """CLI input for the stand-alone stream parser."""

    workspace: Path
    agent: str | None
    output_format: OutputFormat | None
    lines: Iterable[str]


@dataclass(slots=True)
class ParseReport:
    """Stream parser summary."""

    lines: list[str]
    strongest: ControlSignal


class SupervisorCliController:
    """Coordinates run, agents, status, and parse CLI operations."""

    def __init__(
        self,
        *,
        registry_factory: Callable[[], AdapterRegistry] = default_registry,
        backend_factory: Callable[[], AgentBackend] = CliAgentBackend,
    ) -> None:
        self._registry_factory = registry_factory
        self._backend_factory = backend_factory

    def plan_run(self, command: RunCommand) -> RunPlan:
        """Validate prerequisites and resolve the agent; raise on any fatal configuration issue."""

        settings = _load_settings()
        workspace = command.workspace.resolve()
        if not workspace.is_dir():
            raise SupervisorConfigError(f"Workspace is not a directory: {workspace}")
        if not is_git_work_tree(workspace):
            raise SupervisorConfigError(
                f"Workspace is not a git working tree: {workspace}. Run `git init` first.",
            )
        if command.open_pr and not command.branch:
            raise SupervisorConfigError("--pr requires --branch.")

        task_path = workspace / settings.loop.task_file
        try:
            document = read_task_document(task_path)
        except TaskDocumentError as error:
            raise SupervisorConfigError(str(error)) from error

        try:
            selection = resolve_selection(
                self._registry_factory(),
                agent_id=command.agent or settings.loop.agent,
                model=command.model or settings.loop.model,
                timeout_seconds=settings.loop.probe_timeout_seconds,
            )
        except AgentResolutionError as error:
            raise SupervisorConfigError(str(error)) from error

        if command.iterations is not None:
            max_iterations = command.iterations
        elif document.max_iterations is not None:
            max_iterations = document.max_iterations
        else:
            max_iterations = settings.loop.max_iterations

        lines = [
            "Ralph loop:",
            f"workspace={workspace}",
            f"task={document.description or task_path.name}",
            f"progress={document.state.summary()}",
            f"agent={selection.adapter.id} model={selection.model}",
            f"max_iterations={max_iterations}",
            f"thresholds: warn={settings.estimator.warn_tokens} "
            f"rotate={settings.estimator.rotate_tokens} tokens",
        ]
        if document.test_command:
            lines.append(f"test_command={document.test_command}")
        if command.branch:
            suffix = " (open PR on completion)" if command.open_pr else ""
            lines.append(f"branch={command.branch}{suffix}")
        return RunPlan(
            command=command,
            settings=settings,
            selection=selection,
            document=document,
            max_iterations=max_iterations,
            lines=lines,
        )

    def execute(self, plan: RunPlan) -> RunReport:
        workspace = plan.command.workspace.resolve()
        lines: list[str] = []
        if plan.command.branch:
            try:
                created = checkout_branch(workspace, plan.command.branch)
            except VcsError as error:
                raise SupervisorConfigError(str(error)) from error
            lines.append(
                f"{'Created' if created else 'Switched to'} branch {plan.command.branch}",
            )

        controller = IterationController(
            workspace=workspace,
            adapter=plan.selection.adapter,
            model=plan.selection.model,
            settings=plan.settings,
            backend=self._backend_factory(),
            max_iterations=plan.max_iterations,
        )
        result = controller.run()

        lines.append(f"Outcome: {result.outcome.value} after {result.iterations} iteration(s)")
        lines.append(result.message)
        if result.task_state is not None:
            lines.append(f"Progress: {result.task_state.summary()}")
        lines.append(f"Activity log: {controller.log.activity_path}")
        if result.outcome is not LoopOutcome.COMPLETE:
            lines.append(f"Error log: {controller.log.errors_path}")

        if result.outcome is LoopOutcome.COMPLETE and plan.command.open_pr:
            lines.extend(self._open_pull_request(workspace, plan))
        return RunReport(lines=lines, exit_code=result.exit_code)

    def agents(self) -> list[str]:
        settings = _load_settings()
        registry = self._registry_factory()
        lines = ["Agents:"]
        for adapter in registry.adapters.values():
            probe = probe_executable(
                adapter.executable,
                timeout_seconds=settings.loop.probe_timeout_seconds,
            )
            status = "available" if probe.ok else "missing"
            lines.append(
                f"  {adapter.id}: {status} executable={adapter.executable} "
                f"default_model={adapter.default_model} format={adapter.output_format.value}",
            )
            lines.append(f"    models: {', '.join(adapter.models)}")
            if not probe.ok and probe.error:
                lines.append(f"    {probe.error}")
        return lines

    def status(self, command: StatusCommand) -> list[str]:
        settings = _load_settings()
        workspace = command.workspace.resolve()
        task_path = workspace / settings.loop.task_file
        lines = ["Ralph status:", f"workspace={workspace}"]
        try:
            document = read_task_document(task_path)
        except TaskDocumentError as error:
            lines.append(f"task: {error}")
        else:
            lines.append(f"task={document.description or task_path.name}")
            lines.append(f"progress={document.state.summary()}")
            lines.extend(
                f"  [ ] {item.text}" for item in document.state.items if not item.done
            )

        state_dir = workspace / settings.loop.state_dir
        log = SupervisorLog(state_dir, rotate_tokens=settings.estimator.rotate_tokens)
        for title, path in (("activity", log.activity_path), ("errors", log.errors_path)):
            tail = log.tail(path, lines=command.tail_lines)
            lines.append(f"{title} ({path}):")
            if tail:
                lines.extend(f"  {line}" for line in tail)
            else:
                lines.append("  (empty)")
        return lines

    def parse(self, command: ParseCommand, emit: Callable[[str], None]) -> ParseReport:
        """Run the session pipeline over ``command.lines`` and emit each raised signal."""

        settings = _load_settings()
        registry = self._registry_factory()
        try:
            adapter = (
                registry.get(command.agent)
                if command.agent
                else next(iter(registry.adapters.values()))
            )
        except AgentResolutionError as error:
            raise SupervisorConfigError(str(error)) from error

        log = SupervisorLog(
            command.workspace.resolve() / settings.loop.state_dir,
            rotate_tokens=settings.estimator.rotate_tokens,
        )
        session = IterationSession(
            index=1,
            adapter=adapter,
            model=adapter.default_model,
            counters=ResourceEstimator.fresh_counters(settings.estimator),
            failure_tracker=FailureTracker(),
        )
        pipeline = SessionPipeline(
            session=session,
            settings=settings,
            log=log,
            output_format=command.output_format or adapter.output_format,
        )
        pipeline.start()
        for line in command.lines:
            for signal in pipeline.feed(line.rstrip("\n")):
                emit(signal.value.upper())
        strongest = pipeline.finish()
        return ParseReport(
            lines=[
                f"Parsed {pipeline.line_count} line(s), {pipeline.event_count} event(s)",
                f"~{pipeline.estimated_tokens} tokens, strongest signal: {strongest.value}",
            ],
            strongest=strongest,
        )

    @staticmethod
    def _open_pull_request(workspace: Path, plan: RunPlan) -> list[str]:
        branch = plan.command.branch or current_branch(workspace)
        title = f"Ralph: {plan.document.description or branch}"
        body = (
            f"Completed by the Ralph loop with agent `{plan.selection.adapter.id}` "
            f"(model `{plan.selection.model}`)."
        )
        try:
            url = open_pull_request(workspace, branch=branch, title=title, body=body)
        except VcsError as error:
            logger.warning("Pull request creation failed: %s", error)
            return [f"Pull request not opened: {error}"]
        return [f"Pull request: {url}"]


def _load_settings() -> Settings:
    try:
        settings = Settings.from_env()
        settings.validate()
    except ValueError as error:
        raise SupervisorConfigError(str(error)) from error
    return settings
