"""Append-only activity and error logs kept in the workspace state dir."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from pathlib import Path

ACTIVITY_LOG_NAME = "activity.log"
ERRORS_LOG_NAME = "errors.log"
PROGRESS_LOG_NAME = "progress.md"
STDERR_LOG_NAME = "agent_stderr.log"

_BANNER_RULE = "═" * 63


def health_indicator(tokens: int, rotate_tokens: int) -> str:
    """Three-tier indicator from the share of the rotate threshold consumed."""

    percent = tokens * 100 // rotate_tokens
    if percent < 60:
        return "🟢"
    if percent < 80:
        return "🟡"
    return "🔴"


class SupervisorLog:
    """Writes timestamped lines to ``activity.log`` and ``errors.log``.

    Every line is opened, appended and closed on its own, so an interrupted
    run can never damage lines that were already written.
    """

    def __init__(
        self,
        state_dir: Path,
        *,
        rotate_tokens: int,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.state_dir = state_dir
        self.rotate_tokens = rotate_tokens
        self._now = now
        self.state_dir.mkdir(parents=True, exist_ok=True)

    @property
    def activity_path(self) -> Path:
        return self.state_dir / ACTIVITY_LOG_NAME

    @property
    def errors_path(self) -> Path:
        return self.state_dir / ERRORS_LOG_NAME

    @property
    def progress_path(self) -> Path:
        return self.state_dir / PROGRESS_LOG_NAME

    @property
    def stderr_path(self) -> Path:
        return self.state_dir / STDERR_LOG_NAME

    def session_banner(self, title: str) -> None:
        stamp = self._now().strftime("%Y-%m-%d %H:%M:%S")
        self._append(self.activity_path, "")
        self._append(self.activity_path, _BANNER_RULE)
        self._append(self.activity_path, f"{title}: {stamp}")
        self._append(self.activity_path, _BANNER_RULE)

    def activity(self, message: str, *, tokens: int) -> None:
        indicator = health_indicator(tokens, self.rotate_tokens)
        self._append(self.activity_path, f"[{self._timestamp()}] {indicator} {message}")

    def error(self, message: str) -> None:
        self._append(self.errors_path, f"[{self._timestamp()}] {message}")

    def token_status(
        self,
        *,
        tokens: int,
        bytes_read: int,
        bytes_written: int,
        assistant_chars: int,
        shell_output_chars: int,
    ) -> None:
        percent = tokens * 100 // self.rotate_tokens
        status = f"TOKENS: {tokens} / {self.rotate_tokens} ({percent}%)"
        if percent >= 90:
            status = f"{status} - rotation imminent"
        elif percent >= 72:
            status = f"{status} - approaching limit"
        breakdown = (
            f"[read:{bytes_read // 1024}KB write:{bytes_written // 1024}KB "
            f"assist:{assistant_chars // 1024}KB shell:{shell_output_chars // 1024}KB]"
        )
        self.activity(f"{status} {breakdown}", tokens=tokens)

    def progress(self, message: str) -> None:
        """Append a session entry to the progress notes the agent reads each iteration."""

        stamp = self._now().strftime("%Y-%m-%d %H:%M:%S")
        self._append(self.progress_path, f"- [{stamp}] {message}")

    def tail(self, path: Path, *, lines: int = 10, offset: int = 0) -> list[str]:
        """Last ``lines`` lines written after byte ``offset``; undecodable bytes are replaced."""

        if not path.exists():
            return []
        with path.open("rb") as handle:
            handle.seek(offset)
            content = handle.read().decode("utf-8", errors="replace").splitlines()
        return content[-lines:] if lines > 0 else []

    @staticmethod
    def end_offset(path: Path) -> int:
        return path.stat().st_size if path.exists() else 0

    def _timestamp(self) -> str:
        return self._now().strftime("%H:%M:%S")

    @staticmethod
    def _append(path: Path, line: str) -> None:
        with path.open("a", encoding="utf-8") as handle:
            handle.write(f"{line}\n")
