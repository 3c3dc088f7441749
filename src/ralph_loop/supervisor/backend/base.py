"""Backend adapter interface and run contracts."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from ralph_loop.supervisor.models import OutputFormat


class AgentAdapter(Protocol):
    """Capabilities every supported coding-agent CLI provides."""

    id: str
    display_name: str
    executable: str
    models: tuple[str, ...]
    default_model: str
    output_format: OutputFormat
    supports_resume: bool

    def is_available(self, *, timeout_seconds: float) -> bool:
        """Return whether the CLI is installed and answers a probe in time."""

    def build_command(self, *, model: str, resume_handle: str = "") -> list[str]:
        """Return the argument vector, without the prompt, for one invocation."""

    def with_prompt(self, argv: list[str], prompt: str) -> list[str]:
        """Return ``argv`` with the prompt attached the way this CLI expects."""


@dataclass(slots=True)
class BackendRunRequest:
    """Inputs required to execute one backend session."""

    argv: list[str]
    workspace: Path
    stderr_path: Path
    env: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class BackendRunResult:
    """Execution outcome from backend runner."""

    exit_code: int
    line_count: int
    stderr_path: Path


LineConsumer = Callable[[str], None]


class AgentBackend(Protocol):
    """Protocol implemented by backend runners."""

    def run(self, request: BackendRunRequest, on_line: LineConsumer) -> BackendRunResult:
        """Run one session, handing each stdout line to ``on_line`` in arrival order."""
