"""Per-session classify → estimate → detect pipeline."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from ralph_loop.config import Settings
from ralph_loop.supervisor.classifier import classify_line
from ralph_loop.supervisor.detector import AnomalyDetector
from ralph_loop.supervisor.estimator import ResourceEstimator
from ralph_loop.supervisor.logsink import SupervisorLog
from ralph_loop.supervisor.models import (
    AssistantText,
    ControlSignal,
    Event,
    IterationSession,
    OutputFormat,
    SessionEnd,
    SessionStart,
    ToolCallResult,
    ToolCallStart,
    ToolKind,
    strongest_signal,
)

logger = logging.getLogger(__name__)

_LARGE_SHELL_OUTPUT_CHARS = 1024


class SessionPipeline:
    """Consumes backend output lines in arrival order for one iteration.

    Counters and the failure tracker belong to the ``IterationSession`` passed
    in; the pipeline only mutates them. Every raised signal is kept in
    ``signals`` and the highest-precedence one in ``strongest``.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        session: IterationSession,
        settings: Settings,
        log: SupervisorLog,
        output_format: OutputFormat,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session = session
        self.settings = settings
        self.log = log
        self.output_format = output_format
        self.estimator = ResourceEstimator(
            settings=settings.estimator,
            counters=session.counters,
        )
        self.detector = AnomalyDetector(
            settings=settings.detector,
            tracker=session.failure_tracker,
            clock=clock,
        )
        self.signals: list[ControlSignal] = []
        self.strongest = ControlSignal.NONE
        self.line_count = 0
        self.event_count = 0
        self._monotonic = monotonic
        self._last_status = monotonic()

    @property
    def estimated_tokens(self) -> int:
        return self.estimator.estimated_tokens

    def start(self) -> None:
        self.log.session_banner(f"Ralph Session Started (iteration {self.session.index})")

    def feed(self, line: str) -> list[ControlSignal]:
        """Process one raw line and return the signals it raised."""

        self.line_count += 1
        raised: list[ControlSignal] = []
        event = classify_line(line, self.output_format)
        if event is not None:
            self.event_count += 1
            raised = self._dispatch(event)
            for signal in raised:
                self._record(signal)

        now = self._monotonic()
        if now - self._last_status >= self.settings.loop.status_interval_seconds:
            self.log_token_status()
            self._last_status = now
        return raised

    def finish(self) -> ControlSignal:
        """Write the final token status and return the strongest signal observed."""

        self.log_token_status()
        return self.strongest

    def log_token_status(self) -> None:
        counters = self.session.counters
        self.log.token_status(
            tokens=self.estimated_tokens,
            bytes_read=counters.bytes_read,
            bytes_written=counters.bytes_written,
            assistant_chars=counters.assistant_chars,
            shell_output_chars=counters.shell_output_chars,
        )

    def _record(self, signal: ControlSignal) -> None:
        if signal is ControlSignal.NONE:
            return
        self.signals.append(signal)
        self.strongest = strongest_signal(self.strongest, signal)
        logger.debug("Iteration %d raised %s", self.session.index, signal.value)

    def _dispatch(self, event: Event) -> list[ControlSignal]:
        if isinstance(event, SessionStart):
            if event.session_id:
                self.session.resume_handle = event.session_id
            self._activity(f"SESSION START: model={event.model}")
            return []
        if isinstance(event, AssistantText):
            return self._on_assistant_text(event)
        if isinstance(event, ToolCallStart):
            self.estimator.observe(event)
            return []
        if isinstance(event, ToolCallResult):
            return self._on_tool_result(event)
        if isinstance(event, SessionEnd):
            self._activity(
                f"SESSION END: {event.duration_ms}ms, ~{self.estimated_tokens} tokens used",
            )
        return []

    def _on_assistant_text(self, event: AssistantText) -> list[ControlSignal]:
        self.estimator.observe(event)
        found = self.detector.scan_text(event.text)
        for signal in found:
            if signal is ControlSignal.COMPLETE:
                self._activity("✅ Agent signaled COMPLETE")
            else:
                self._activity("🚨 Agent signaled GUTTER (stuck)")
        return found

    def _on_tool_result(self, event: ToolCallResult) -> list[ControlSignal]:
        raised: list[ControlSignal] = []
        contributed = self.estimator.observe(event)

        if event.kind is ToolKind.READ:
            self._activity(
                f"READ {event.path} ({event.lines or 0} lines, ~{contributed / 1024:.1f}KB)",
            )
        elif event.kind is ToolKind.WRITE:
            self._activity(
                f"WRITE {event.path} ({event.lines or 0} lines, {contributed / 1024:.1f}KB)",
            )
            raised.extend(self._track_write(event.path or "unknown"))
        elif event.kind is ToolKind.SHELL:
            raised.extend(self._track_shell(event, output_chars=contributed))

        raised.append(self._check_thresholds())
        return [signal for signal in raised if signal is not ControlSignal.NONE]

    def _track_write(self, path: str) -> list[ControlSignal]:
        detection = self.detector.on_write(path)
        if detection.signal is ControlSignal.GUTTER:
            window_minutes = self.settings.detector.thrash_window_seconds // 60
            self.log.error(
                f"⚠️ THRASHING: {path} written {detection.count}x in {window_minutes} min",
            )
        return [detection.signal]

    def _track_shell(self, event: ToolCallResult, *, output_chars: int) -> list[ControlSignal]:
        command = event.command or "unknown"
        exit_code = event.exit_code or 0
        if exit_code == 0:
            if output_chars > _LARGE_SHELL_OUTPUT_CHARS:
                self._activity(f"SHELL {command} → exit 0 ({output_chars} chars output)")
            else:
                self._activity(f"SHELL {command} → exit 0")
            return []

        self._activity(f"SHELL {command} → exit {exit_code}")
        detection = self.detector.on_shell_result(command, exit_code)
        if detection is None:
            return []
        self.log.error(f"SHELL FAIL: {command} → exit {exit_code} (attempt {detection.count})")
        if detection.signal is ControlSignal.GUTTER:
            self.log.error(f"⚠️ GUTTER: same command failed {detection.count}x")
        return [detection.signal]

    def _check_thresholds(self) -> ControlSignal:
        signal = self.estimator.check()
        tokens = self.estimated_tokens
        if signal is ControlSignal.ROTATE:
            self._activity(
                "ROTATE: Token threshold reached "
                f"({tokens} >= {self.settings.estimator.rotate_tokens})",
            )
        elif signal is ControlSignal.WARN:
            self._activity(
                "WARN: Approaching token limit "
                f"({tokens} >= {self.settings.estimator.warn_tokens})",
            )
        return signal

    def _activity(self, message: str) -> None:
        self.log.activity(message, tokens=self.estimated_tokens)
