"""Stuck-pattern detection: repeated failures, write thrashing, self-reports."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from ralph_loop.config import DetectorSettings
from ralph_loop.supervisor.models import ControlSignal, FailureTracker


@dataclass(frozen=True, slots=True)
class Detection:
    """Counter value after an observation and the signal it raised, if any."""

    count: int
    signal: ControlSignal = ControlSignal.NONE


class AnomalyDetector:
    """Maintains the failure tracker and raises GUTTER/COMPLETE signals.

    GUTTER for repeated failures and thrashing is edge-triggered: it fires on
    the observation that reaches the limit, not on every one after it.
    """

    def __init__(
        self,
        *,
        settings: DetectorSettings,
        tracker: FailureTracker,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.tracker = tracker
        self._clock = clock

    def on_shell_result(self, command: str, exit_code: int) -> Detection | None:
        """Count a nonzero exit for the exact command string; ``None`` on success."""

        if exit_code == 0:
            return None
        count = self.tracker.record_failure(command)
        if count == self.settings.failure_limit:
            return Detection(count=count, signal=ControlSignal.GUTTER)
        return Detection(count=count)

    def on_write(self, path: str, *, at: float | None = None) -> Detection:
        stamp = self._clock() if at is None else at
        count = self.tracker.record_write(
            path,
            at=stamp,
            window_seconds=self.settings.thrash_window_seconds,
        )
        thrashing = self.tracker.thrashing_paths
        if count < self.settings.thrash_limit:
            thrashing.discard(path)
            return Detection(count=count)
        if path in thrashing:
            return Detection(count=count)
        thrashing.add(path)
        return Detection(count=count, signal=ControlSignal.GUTTER)

    def scan_text(self, text: str) -> list[ControlSignal]:
        """Return self-reported signals found verbatim in assistant text."""

        found: list[ControlSignal] = []
        if self.settings.complete_sentinel in text:
            found.append(ControlSignal.COMPLETE)
        if self.settings.gutter_sentinel in text:
            found.append(ControlSignal.GUTTER)
        return found
