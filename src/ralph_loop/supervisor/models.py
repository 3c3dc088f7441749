"""Domain models for the supervision pipeline and iteration lifecycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ralph_loop.supervisor.backend.base import AgentAdapter


class OutputFormat(str, Enum):
    """Output format declared by a backend adapter."""

    STRUCTURED_STREAM = "stream-json"
    PLAIN_TEXT = "text"


class ToolKind(str, Enum):
    """Normalized tool-call kinds recognized in backend streams."""

    READ = "read"
    WRITE = "write"
    SHELL = "shell"
    OTHER = "other"


class ControlSignal(str, Enum):
    """Pipeline output consumed by the iteration controller."""

    NONE = "NONE"
    WARN = "WARN"
    ROTATE = "ROTATE"
    GUTTER = "GUTTER"
    COMPLETE = "COMPLETE"

    @property
    def priority(self) -> int:
        return _SIGNAL_PRIORITY[self]


_SIGNAL_PRIORITY = {
    ControlSignal.NONE: 0,
    ControlSignal.WARN: 1,
    ControlSignal.ROTATE: 2,
    ControlSignal.COMPLETE: 3,
    ControlSignal.GUTTER: 4,
}


def strongest_signal(*signals: ControlSignal) -> ControlSignal:
    """Return the highest-precedence signal: GUTTER > COMPLETE > ROTATE > WARN > NONE."""

    best = ControlSignal.NONE
    for signal in signals:
        if signal.priority > best.priority:
            best = signal
    return best


@dataclass(frozen=True, slots=True)
class SessionStart:
    model: str
    session_id: str = ""


@dataclass(frozen=True, slots=True)
class AssistantText:
    text: str


@dataclass(frozen=True, slots=True)
class ToolCallStart:
    pass


@dataclass(frozen=True, slots=True)
class ToolCallResult:
    """Completed tool call; fields not reported by the backend stay ``None``."""

    kind: ToolKind
    path: str | None = None
    bytes: int | None = None
    lines: int | None = None
    command: str | None = None
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""


@dataclass(frozen=True, slots=True)
class SessionEnd:
    duration_ms: int


Event = SessionStart | AssistantText | ToolCallStart | ToolCallResult | SessionEnd


@dataclass(slots=True)
class ResourceCounters:
    """Byte-level telemetry for one context; only grows until a rotation."""

    prompt_chars: int = 0
    bytes_read: int = 0
    bytes_written: int = 0
    assistant_chars: int = 0
    shell_output_chars: int = 0
    tool_call_count: int = 0
    warn_sent: bool = False

    @property
    def total_chars(self) -> int:
        return (
            self.prompt_chars
            + self.bytes_read
            + self.bytes_written
            + self.assistant_chars
            + self.shell_output_chars
        )


@dataclass(slots=True)
class FailureTracker:
    """Per-command consecutive failures and per-path write timestamps."""

    failures: dict[str, int] = field(default_factory=dict)
    writes: dict[str, list[float]] = field(default_factory=dict)
    thrashing_paths: set[str] = field(default_factory=set)

    def record_failure(self, command: str) -> int:
        count = self.failures.get(command, 0) + 1
        self.failures[command] = count
        return count

    def record_write(self, path: str, *, at: float, window_seconds: float) -> int:
        """Record a write and return the number of writes to ``path`` inside the window."""

        cutoff = at - window_seconds
        kept = [stamp for stamp in self.writes.get(path, []) if stamp >= cutoff]
        kept.append(at)
        self.writes[path] = kept
        return len(kept)


@dataclass(slots=True)
class IterationSession:
    """In-memory state for one loop iteration."""

    index: int
    adapter: AgentAdapter
    model: str
    resume_handle: str = ""
    counters: ResourceCounters = field(default_factory=ResourceCounters)
    failure_tracker: FailureTracker = field(default_factory=FailureTracker)
