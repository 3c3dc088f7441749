"""Iteration controller: the outer supervision state machine.

One iteration runs exactly one backend process to completion, feeding its
output through the session pipeline, then decides what happens next::

    INIT -> RUNNING(i) -> CONTINUE(i+1) | ROTATE(i+1) | GUTTER | COMPLETE | EXHAUSTED

The task checklist is re-read from disk before and after every run and is
never cached between iterations.
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from ralph_loop.config import Settings
from ralph_loop.supervisor.backend import (
    AgentAdapter,
    AgentBackend,
    BackendRunError,
    BackendRunRequest,
    CliAgentBackend,
)
from ralph_loop.supervisor.estimator import ResourceEstimator
from ralph_loop.supervisor.failure_classifier import classify_backend_exit
from ralph_loop.supervisor.logsink import SupervisorLog
from ralph_loop.supervisor.models import (
    ControlSignal,
    FailureTracker,
    IterationSession,
    strongest_signal,
)
from ralph_loop.supervisor.pipeline import SessionPipeline
from ralph_loop.supervisor.prompt import build_iteration_prompt
from ralph_loop.supervisor.task_state import (
    TaskDocument,
    TaskDocumentError,
    TaskState,
    read_task_document,
)

logger = logging.getLogger(__name__)


class IterationDecision(str, Enum):
    """What the controller does after one iteration."""

    CONTINUE = "continue"
    ROTATE = "rotate"
    GUTTER = "gutter"
    COMPLETE = "complete"


class LoopOutcome(str, Enum):
    """Terminal states of a supervised run."""

    COMPLETE = "complete"
    GUTTER = "gutter"
    EXHAUSTED = "exhausted"
    INTERRUPTED = "interrupted"


OUTCOME_EXIT_CODES = {
    LoopOutcome.COMPLETE: 0,
    LoopOutcome.GUTTER: 2,
    LoopOutcome.EXHAUSTED: 3,
    LoopOutcome.INTERRUPTED: 130,
}

_PROGRESS_NOTES = {
    IterationDecision.CONTINUE: "⏭️ Continuing",
    IterationDecision.ROTATE: "🔄 Context rotation",
    IterationDecision.GUTTER: "🚨 GUTTER",
    IterationDecision.COMPLETE: "✅ TASK COMPLETE",
}


class SupervisorConfigError(ValueError):
    """Fatal configuration problem detected before or while launching a run."""


class SupervisorInterrupted(Exception):  # noqa: N818
    """Raised from a signal handler to unwind an active run."""

    def __init__(self, signal_name: str) -> None:
        super().__init__(signal_name)
        self.signal_name = signal_name


@dataclass(slots=True)
class IterationReport:
    """Summary of one finished iteration."""

    index: int
    signal: ControlSignal
    decision: IterationDecision
    exit_code: int
    estimated_tokens: int
    task_state: TaskState
    resume_handle: str


@dataclass(slots=True)
class LoopResult:
    """Final outcome of a supervised run."""

    outcome: LoopOutcome
    message: str
    task_state: TaskState | None
    reports: list[IterationReport] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return OUTCOME_EXIT_CODES[self.outcome]

    @property
    def iterations(self) -> int:
        return len(self.reports)


class IterationController:
    """Runs the agent until the checklist is done, an anomaly halts it, or iterations run out."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        workspace: Path,
        adapter: AgentAdapter,
        model: str,
        settings: Settings,
        backend: AgentBackend | None = None,
        log: SupervisorLog | None = None,
        max_iterations: int | None = None,
        clock: Callable[[], float] = time.time,
        install_signal_handlers: bool = True,
    ) -> None:
        self.workspace = workspace
        self.adapter = adapter
        self.model = model
        self.settings = settings
        self.backend = backend or CliAgentBackend()
        self.log = log or SupervisorLog(
            workspace / settings.loop.state_dir,
            rotate_tokens=settings.estimator.rotate_tokens,
        )
        self.max_iterations = max_iterations
        self.install_signal_handlers = install_signal_handlers
        self._clock = clock

    @property
    def task_path(self) -> Path:
        return self.workspace / self.settings.loop.task_file

    def load_document(self) -> TaskDocument:
        try:
            return read_task_document(self.task_path)
        except TaskDocumentError as error:
            self.log.error(f"CONFIG: {error}")
            raise SupervisorConfigError(str(error)) from error

    def resolve_ceiling(self, document: TaskDocument) -> int:
        """CLI override first, then the task document, then settings."""

        if self.max_iterations is not None:
            return self.max_iterations
        if document.max_iterations is not None:
            return document.max_iterations
        return self.settings.loop.max_iterations

    def run(self) -> LoopResult:
        document = self.load_document()
        ceiling = self.resolve_ceiling(document)
        reports: list[IterationReport] = []
        state: TaskState | None = document.state
        self._activity(
            f"LOOP START: agent={self.adapter.id} model={self.model} "
            f"max_iterations={ceiling} ({document.state.summary()})",
        )

        session = self._fresh_session(index=1)
        with self._signal_handlers():
            try:
                while True:
                    document = self.load_document()
                    state = document.state
                    if state.is_complete:
                        return self._finish(
                            LoopOutcome.COMPLETE,
                            f"Task complete: {state.summary()}.",
                            state=state,
                            reports=reports,
                        )

                    report = self.run_iteration(session, document)
                    reports.append(report)
                    state = report.task_state

                    if report.decision is IterationDecision.GUTTER:
                        return self._finish(
                            LoopOutcome.GUTTER,
                            f"Gutter detected in iteration {report.index}. "
                            f"Operator intervention required; see {self.log.errors_path}.",
                            state=state,
                            reports=reports,
                        )
                    if report.decision is IterationDecision.COMPLETE:
                        return self._finish(
                            LoopOutcome.COMPLETE,
                            f"Task complete after {report.index} iteration(s): {state.summary()}.",
                            state=state,
                            reports=reports,
                        )
                    if session.index + 1 > ceiling:
                        return self._finish(
                            LoopOutcome.EXHAUSTED,
                            f"Iteration ceiling reached ({ceiling}) without completion; "
                            f"task unfinished: {state.summary()}.",
                            state=state,
                            reports=reports,
                        )
                    session = self._next_session(session, report.decision)
            except (SupervisorInterrupted, KeyboardInterrupt) as error:
                signal_name = (
                    error.signal_name if isinstance(error, SupervisorInterrupted) else "SIGINT"
                )
                return self._finish(
                    LoopOutcome.INTERRUPTED,
                    f"Interrupted by {signal_name}; backend terminated.",
                    state=state,
                    reports=reports,
                )

    def run_iteration(self, session: IterationSession, document: TaskDocument) -> IterationReport:
        """Run one backend session and turn its signals into a decision."""

        prompt = build_iteration_prompt(
            document=document,
            iteration=session.index,
            state_dir=self.settings.loop.state_dir,
            detector=self.settings.detector,
        )
        argv = self.adapter.with_prompt(
            self.adapter.build_command(model=session.model, resume_handle=session.resume_handle),
            prompt,
        )
        pipeline = SessionPipeline(
            session=session,
            settings=self.settings,
            log=self.log,
            output_format=self.adapter.output_format,
            clock=self._clock,
        )
        pipeline.start()
        self._activity(
            f"ITERATION {session.index}: agent={self.adapter.id} model={session.model} "
            f"resume={session.resume_handle or '-'}",
            tokens=pipeline.estimated_tokens,
        )
        logger.info("Iteration %d starting (agent=%s)", session.index, self.adapter.id)
        stderr_offset = self.log.end_offset(self.log.stderr_path)

        try:
            result = self.backend.run(
                BackendRunRequest(
                    argv=argv,
                    workspace=self.workspace,
                    stderr_path=self.log.stderr_path,
                ),
                pipeline.feed,
            )
        except BackendRunError as error:
            self.log.error(f"BACKEND START FAILED: {error}")
            raise SupervisorConfigError(str(error)) from error

        strongest = pipeline.finish()
        if result.exit_code != 0:
            self._log_backend_exit(result.exit_code, stderr_offset=stderr_offset)

        state = self.load_document().state
        decision = self._decide(pipeline.signals, state)
        report = IterationReport(
            index=session.index,
            signal=strongest,
            decision=decision,
            exit_code=result.exit_code,
            estimated_tokens=pipeline.estimated_tokens,
            task_state=state,
            resume_handle=session.resume_handle,
        )
        self._log_transition(report)
        return report

    def _decide(self, signals: list[ControlSignal], state: TaskState) -> IterationDecision:
        strongest = strongest_signal(*signals)
        if strongest is ControlSignal.GUTTER:
            return IterationDecision.GUTTER
        # is_complete requires at least one item; an empty checklist never completes on its own
        if state.is_complete:
            return IterationDecision.COMPLETE
        if strongest is ControlSignal.COMPLETE:
            if self.settings.detector.trust_self_report or state.total == 0:
                return IterationDecision.COMPLETE
            self._activity(
                "COMPLETE claim not corroborated by task checklist "
                f"({state.remaining} remaining); continuing",
            )
            strongest = strongest_signal(
                *[raised for raised in signals if raised is not ControlSignal.COMPLETE],
            )
        if strongest is ControlSignal.ROTATE:
            return IterationDecision.ROTATE
        return IterationDecision.CONTINUE

    def _fresh_session(self, *, index: int) -> IterationSession:
        return IterationSession(
            index=index,
            adapter=self.adapter,
            model=self.model,
            counters=ResourceEstimator.fresh_counters(self.settings.estimator),
            failure_tracker=FailureTracker(),
        )

    def _next_session(
        self,
        session: IterationSession,
        decision: IterationDecision,
    ) -> IterationSession:
        if decision is IterationDecision.ROTATE:
            self._activity(f"ROTATING: fresh context for iteration {session.index + 1}")
            return self._fresh_session(index=session.index + 1)

        resume_handle = session.resume_handle if self.adapter.supports_resume else ""
        if not resume_handle:
            # nothing to resume: the next invocation starts a fresh context
            counters = ResourceEstimator.fresh_counters(self.settings.estimator)
        else:
            counters = session.counters
            counters.prompt_chars += self.settings.estimator.prompt_baseline_chars
        return IterationSession(
            index=session.index + 1,
            adapter=self.adapter,
            model=session.model,
            resume_handle=resume_handle,
            counters=counters,
            failure_tracker=session.failure_tracker,
        )

    def _log_backend_exit(self, exit_code: int, *, stderr_offset: int) -> None:
        # only what this iteration wrote; agent_stderr.log spans the whole run
        stderr_tail = "\n".join(
            self.log.tail(self.log.stderr_path, lines=20, offset=stderr_offset),
        )
        classification = classify_backend_exit(exit_code=exit_code, stderr=stderr_tail)
        self.log.error(classification.describe(agent=self.adapter.id, exit_code=exit_code))

    def _log_transition(self, report: IterationReport) -> None:
        message = (
            f"ITERATION {report.index} → {report.decision.value.upper()} "
            f"(signal={report.signal.value}, exit={report.exit_code}, "
            f"{report.task_state.summary()})"
        )
        self._activity(message, tokens=report.estimated_tokens)
        if report.decision is IterationDecision.GUTTER:
            self.log.error(f"🚨 {message}")
        self.log.progress(
            f"**Session {report.index} ended** - {_PROGRESS_NOTES[report.decision]}",
        )
        logger.info(message)

    def _finish(
        self,
        outcome: LoopOutcome,
        message: str,
        *,
        state: TaskState | None,
        reports: list[IterationReport],
    ) -> LoopResult:
        self._activity(f"LOOP {outcome.value.upper()}: {message}")
        if outcome in {LoopOutcome.GUTTER, LoopOutcome.EXHAUSTED, LoopOutcome.INTERRUPTED}:
            self.log.error(f"{outcome.value.upper()}: {message}")
        return LoopResult(outcome=outcome, message=message, task_state=state, reports=reports)

    def _activity(self, message: str, *, tokens: int = 0) -> None:
        self.log.activity(message, tokens=tokens)

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if (
            not self.install_signal_handlers
            or threading.current_thread() is not threading.main_thread()
        ):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            raise SupervisorInterrupted(signal.Signals(signum).name)

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
