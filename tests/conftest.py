"""Shared test fixtures."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import pytest

from ralph_loop.config import Settings
from ralph_loop.supervisor.backend.adapters import CursorAgentAdapter
from ralph_loop.supervisor.estimator import ResourceEstimator
from ralph_loop.supervisor.logsink import SupervisorLog
from ralph_loop.supervisor.models import FailureTracker, IterationSession

RALPH_ENV_VARS = (
    "RALPH_AGENT",
    "RALPH_MODEL",
    "RALPH_MAX_ITERATIONS",
    "RALPH_TASK_FILE",
    "RALPH_STATE_DIR",
    "RALPH_PROBE_TIMEOUT_SECONDS",
    "RALPH_STATUS_INTERVAL_SECONDS",
    "RALPH_CHARS_PER_TOKEN",
    "RALPH_BYTES_PER_LINE",
    "RALPH_PROMPT_BASELINE_CHARS",
    "RALPH_WARN_TOKENS",
    "RALPH_ROTATE_TOKENS",
    "RALPH_FAILURE_LIMIT",
    "RALPH_THRASH_LIMIT",
    "RALPH_THRASH_WINDOW_SECONDS",
    "RALPH_COMPLETE_SENTINEL",
    "RALPH_GUTTER_SENTINEL",
    "RALPH_TRUST_SELF_REPORT",
)


@pytest.fixture(autouse=True)
def _clean_ralph_env(monkeypatch):
    for name in RALPH_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def settings() -> Settings:
    return Settings()


@pytest.fixture()
def supervisor_log(tmp_path: Path) -> SupervisorLog:
    return SupervisorLog(
        tmp_path / ".ralph",
        rotate_tokens=80_000,
        now=lambda: datetime(2026, 1, 2, 3, 4, 5),
    )


@pytest.fixture()
def session(settings: Settings) -> IterationSession:
    return IterationSession(
        index=1,
        adapter=CursorAgentAdapter(),
        model="composer-1",
        counters=ResourceEstimator.fresh_counters(settings.estimator),
        failure_tracker=FailureTracker(),
    )


@pytest.fixture()
def cursor_stream():
    """Builders for cursor-agent stream-json lines."""

    class _Stream:
        @staticmethod
        def init(session_id: str = "chat-1", model: str = "composer-1") -> str:
            return json.dumps(
                {"type": "system", "subtype": "init", "model": model, "session_id": session_id},
            )

        @staticmethod
        def assistant(text: str) -> str:
            return json.dumps({"type": "assistant", "message": {"content": [{"text": text}]}})

        @staticmethod
        def tool_started() -> str:
            return json.dumps({"type": "tool_call", "subtype": "started", "tool_call": {}})

        @staticmethod
        def read(path: str, *, lines: int, size: int | None = None) -> str:
            success: dict[str, int] = {"totalLines": lines}
            if size is not None:
                success["contentSize"] = size
            return json.dumps(
                {
                    "type": "tool_call",
                    "subtype": "completed",
                    "tool_call": {
                        "readToolCall": {"args": {"path": path}, "result": {"success": success}},
                    },
                },
            )

        @staticmethod
        def write(path: str, *, lines: int = 10, size: int = 400) -> str:
            return json.dumps(
                {
                    "type": "tool_call",
                    "subtype": "completed",
                    "tool_call": {
                        "writeToolCall": {
                            "args": {"path": path},
                            "result": {"success": {"linesCreated": lines, "fileSize": size}},
                        },
                    },
                },
            )

        @staticmethod
        def shell(command: str, *, exit_code: int = 0, stdout: str = "", stderr: str = "") -> str:
            return json.dumps(
                {
                    "type": "tool_call",
                    "subtype": "completed",
                    "tool_call": {
                        "shellToolCall": {
                            "args": {"command": command},
                            "result": {"exitCode": exit_code, "stdout": stdout, "stderr": stderr},
                        },
                    },
                },
            )

        @staticmethod
        def result(duration_ms: int = 1200) -> str:
            return json.dumps({"type": "result", "duration_ms": duration_ms})

    return _Stream()


@pytest.fixture()
def write_task():
    def _write(workspace: Path, body: str, *, name: str = "RALPH_TASK.md") -> Path:
        path = workspace / name
        path.write_text(body, "utf-8")
        return path

    return _write
