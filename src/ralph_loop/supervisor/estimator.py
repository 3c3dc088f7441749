"""Approximate context-budget accounting from byte-level stream telemetry."""

from __future__ import annotations

from ralph_loop.config import EstimatorSettings
from ralph_loop.supervisor.models import (
    AssistantText,
    ControlSignal,
    Event,
    ResourceCounters,
    ToolCallResult,
    ToolCallStart,
    ToolKind,
)


class ResourceEstimator:
    """Feeds classified events into session counters and checks thresholds.

    Tokens are estimated as ``total_chars // chars_per_token``. The figure is
    only a vendor-agnostic proxy for the warn/rotate decision; it is not meant
    to match any backend's tokenizer.
    """

    def __init__(self, *, settings: EstimatorSettings, counters: ResourceCounters) -> None:
        self.settings = settings
        self.counters = counters

    @classmethod
    def fresh_counters(cls, settings: EstimatorSettings) -> ResourceCounters:
        """Counters for a brand new context, seeded with the prompt baseline."""

        return ResourceCounters(prompt_chars=settings.prompt_baseline_chars)

    @property
    def estimated_tokens(self) -> int:
        return self.counters.total_chars // self.settings.chars_per_token

    @property
    def rotate_percent(self) -> int:
        return self.estimated_tokens * 100 // self.settings.rotate_tokens

    def observe(self, event: Event) -> int:
        """Apply one event to the counters and return the chars it contributed."""

        counters = self.counters
        if isinstance(event, AssistantText):
            counters.assistant_chars += len(event.text)
            return len(event.text)
        if isinstance(event, ToolCallStart):
            counters.tool_call_count += 1
            return 0
        if isinstance(event, ToolCallResult):
            return self._observe_tool_result(event)
        return 0

    def check(self) -> ControlSignal:
        """Threshold check after a completed tool call.

        ROTATE is returned on every check at or above the rotate threshold;
        WARN only on the first crossing of the warn threshold per context.
        """

        tokens = self.estimated_tokens
        if tokens >= self.settings.rotate_tokens:
            return ControlSignal.ROTATE
        if tokens >= self.settings.warn_tokens and not self.counters.warn_sent:
            self.counters.warn_sent = True
            return ControlSignal.WARN
        return ControlSignal.NONE

    def read_bytes(self, event: ToolCallResult) -> int:
        if event.bytes:
            return event.bytes
        return (event.lines or 0) * self.settings.bytes_per_line

    def _observe_tool_result(self, event: ToolCallResult) -> int:
        counters = self.counters
        if event.kind is ToolKind.READ:
            size = self.read_bytes(event)
            counters.bytes_read += size
            return size
        if event.kind is ToolKind.WRITE:
            size = event.bytes or 0
            counters.bytes_written += size
            return size
        if event.kind is ToolKind.SHELL:
            size = len(event.stdout) + len(event.stderr)
            counters.shell_output_chars += size
            return size
        return 0
