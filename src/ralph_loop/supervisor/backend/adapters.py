"""Closed set of supported coding-agent CLI adapters.

Each adapter only knows how to build an argument vector; the prompt is
attached separately by ``with_prompt``. Values are never interpolated into
a shell string.
"""

from __future__ import annotations

from ralph_loop.supervisor.backend.probe import probe_executable
from ralph_loop.supervisor.models import OutputFormat


class CliAgentAdapter:
    """Shared behaviour for adapters that wrap an executable on PATH."""

    id = ""
    display_name = ""
    executable = ""
    models: tuple[str, ...] = ()
    default_model = ""
    output_format = OutputFormat.STRUCTURED_STREAM
    prompt_flag: str | None = None
    supports_resume = True

    def is_available(self, *, timeout_seconds: float) -> bool:
        return probe_executable(self.executable, timeout_seconds=timeout_seconds).ok

    def build_command(self, *, model: str, resume_handle: str = "") -> list[str]:
        raise NotImplementedError

    def with_prompt(self, argv: list[str], prompt: str) -> list[str]:
        if self.prompt_flag is None:
            return [*argv, prompt]
        return [*argv, self.prompt_flag, prompt]

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r})"


class CursorAgentAdapter(CliAgentAdapter):
    id = "cursor"
    display_name = "Cursor Agent"
    executable = "cursor-agent"
    models = ("opus-4.5-thinking", "sonnet-4.5-thinking", "gpt-5.2-high", "composer-1")
    default_model = "opus-4.5-thinking"

    def build_command(self, *, model: str, resume_handle: str = "") -> list[str]:
        argv = [
            self.executable,
            "-p",
            "--force",
            "--output-format",
            "stream-json",
            "--model",
            model,
        ]
        if resume_handle:
            argv.append(f"--resume={resume_handle}")
        return argv


class ClaudeCodeAdapter(CliAgentAdapter):
    id = "claude-code"
    display_name = "Claude Code"
    executable = "claude"
    models = (
        "claude-sonnet-4-20250514",
        "claude-opus-4-20250514",
        "claude-3-5-sonnet-20241022",
        "claude-3-5-haiku-20241022",
    )
    default_model = "claude-sonnet-4-20250514"

    def build_command(self, *, model: str, resume_handle: str = "") -> list[str]:
        # stream-json in print mode requires --verbose
        argv = [
            self.executable,
            "-p",
            "--output-format",
            "stream-json",
            "--verbose",
            "--model",
            model,
        ]
        if resume_handle:
            argv.extend(["--resume", resume_handle])
        argv.append("--dangerously-skip-permissions")
        return argv


class CodexCliAdapter(CliAgentAdapter):
    id = "codex-cli"
    display_name = "OpenAI Codex CLI"
    executable = "codex"
    models = ("gpt-5-codex", "gpt-5", "o3", "o3-mini", "gpt-4.1")
    default_model = "gpt-5-codex"

    def build_command(self, *, model: str, resume_handle: str = "") -> list[str]:
        # codex resumes the most recent session; the handle itself is not passed
        argv = [self.executable, "exec"]
        if resume_handle:
            argv.extend(["resume", "--last"])
        return [*argv, "--json", "--model", model, "--full-auto"]


class GeminiCliAdapter(CliAgentAdapter):
    id = "gemini-cli"
    display_name = "Gemini CLI"
    executable = "gemini"
    models = ("gemini-2.5-pro", "gemini-2.5-flash", "gemini-2.0-pro", "gemini-2.0-flash")
    default_model = "gemini-2.5-pro"
    prompt_flag = "--prompt"
    supports_resume = False

    def build_command(self, *, model: str, resume_handle: str = "") -> list[str]:
        return [self.executable, "--output-format", "stream-json", "-m", model, "--yolo"]


class CopilotCliAdapter(CliAgentAdapter):
    id = "copilot-cli"
    display_name = "GitHub Copilot CLI"
    executable = "copilot"
    models = ("claude-sonnet-4.5", "claude-sonnet-4", "gpt-4o", "o1")
    default_model = "claude-sonnet-4.5"
    output_format = OutputFormat.PLAIN_TEXT
    prompt_flag = "-p"

    def build_command(self, *, model: str, resume_handle: str = "") -> list[str]:
        argv = [self.executable, "--model", model, "--allow-all-tools"]
        if resume_handle:
            argv.extend(["--resume", resume_handle])
        return argv


DEFAULT_ADAPTERS: tuple[CliAgentAdapter, ...] = (
    CursorAgentAdapter(),
    ClaudeCodeAdapter(),
    CodexCliAdapter(),
    GeminiCliAdapter(),
    CopilotCliAdapter(),
)
