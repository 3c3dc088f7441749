"""Line classifier that normalizes backend output into pipeline events.

Backends disagree on event layout (cursor-agent nests tool calls under
``tool_call.<kind>ToolCall``, others use flat ``args``/``result`` or
``input``). Each field is resolved from an explicit, ordered tuple of
candidate paths; the first usable value wins. Anything that does not parse
or is not recognized is skipped, never raised.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any

from ralph_loop.supervisor.models import (
    AssistantText,
    Event,
    OutputFormat,
    SessionEnd,
    SessionStart,
    ToolCallResult,
    ToolCallStart,
    ToolKind,
)

FieldPath = tuple[str | int, ...]

_SESSION_TYPES = frozenset({"system", "init", "start"})
_ASSISTANT_TYPES = frozenset({"assistant", "message", "text", "content"})
_TOOL_TYPES = frozenset({"tool_call", "tool_use", "tool"})
_END_TYPES = frozenset({"result", "end", "done", "complete"})
_TOOL_STARTED = frozenset({"started", "start"})
_TOOL_COMPLETED = frozenset({"completed", "complete", "result"})

_TEXT_PATHS: tuple[FieldPath, ...] = (
    ("message", "content", 0, "text"),
    ("content", 0, "text"),
    ("text",),
    ("message", "text"),
)
_MODEL_PATHS: tuple[FieldPath, ...] = (("model",), ("modelId",))
_SESSION_ID_PATHS: tuple[FieldPath, ...] = (("session_id",), ("sessionId",), ("thread_id",))
_DURATION_PATHS: tuple[FieldPath, ...] = (("duration_ms",), ("duration",), ("elapsed_ms",))
_TOOL_NAME_PATHS: tuple[FieldPath, ...] = (("tool_call", "name"), ("name",), ("tool",))

_READ_MARKERS: tuple[FieldPath, ...] = (
    ("tool_call", "readToolCall", "result", "success"),
    ("result", "success"),
)
_READ_PATH_PATHS: tuple[FieldPath, ...] = (
    ("tool_call", "readToolCall", "args", "path"),
    ("args", "path"),
    ("input", "path"),
)
_READ_LINES_PATHS: tuple[FieldPath, ...] = (
    ("tool_call", "readToolCall", "result", "success", "totalLines"),
    ("result", "totalLines"),
    ("result", "lines"),
)
_READ_SIZE_PATHS: tuple[FieldPath, ...] = (
    ("tool_call", "readToolCall", "result", "success", "contentSize"),
    ("result", "contentSize"),
    ("result", "size"),
)

_WRITE_MARKERS: tuple[FieldPath, ...] = (("tool_call", "writeToolCall", "result", "success"),)
_WRITE_PATH_PATHS: tuple[FieldPath, ...] = (
    ("tool_call", "writeToolCall", "args", "path"),
    ("args", "path"),
    ("input", "path"),
)
_WRITE_LINES_PATHS: tuple[FieldPath, ...] = (
    ("tool_call", "writeToolCall", "result", "success", "linesCreated"),
    ("result", "linesCreated"),
    ("result", "lines"),
)
_WRITE_SIZE_PATHS: tuple[FieldPath, ...] = (
    ("tool_call", "writeToolCall", "result", "success", "fileSize"),
    ("result", "fileSize"),
    ("result", "size"),
)

_SHELL_MARKERS: tuple[FieldPath, ...] = (
    ("tool_call", "shellToolCall", "result"),
    ("tool_call", "bashToolCall", "result"),
)
_SHELL_COMMAND_PATHS: tuple[FieldPath, ...] = (
    ("tool_call", "shellToolCall", "args", "command"),
    ("tool_call", "bashToolCall", "args", "command"),
    ("args", "command"),
    ("input", "command"),
)
_SHELL_EXIT_PATHS: tuple[FieldPath, ...] = (
    ("tool_call", "shellToolCall", "result", "exitCode"),
    ("tool_call", "bashToolCall", "result", "exitCode"),
    ("result", "exitCode"),
    ("result", "exit_code"),
)
_SHELL_STDOUT_PATHS: tuple[FieldPath, ...] = (
    ("tool_call", "shellToolCall", "result", "stdout"),
    ("tool_call", "bashToolCall", "result", "stdout"),
    ("result", "stdout"),
    ("result", "output"),
)
_SHELL_STDERR_PATHS: tuple[FieldPath, ...] = (
    ("tool_call", "shellToolCall", "result", "stderr"),
    ("tool_call", "bashToolCall", "result", "stderr"),
    ("result", "stderr"),
)

_READ_NAME = re.compile(r"read", re.IGNORECASE)
_WRITE_NAME = re.compile(r"write|edit", re.IGNORECASE)
_SHELL_NAME = re.compile(r"shell|bash|command", re.IGNORECASE)

UNKNOWN = "unknown"


def classify_line(line: str, output_format: OutputFormat) -> Event | None:
    """Classify one raw output line; return ``None`` when the line should be skipped."""

    if output_format is OutputFormat.PLAIN_TEXT:
        return _classify_plain(line)

    stripped = line.strip()
    if not stripped:
        return None
    try:
        payload = json.loads(stripped)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    return classify_payload(payload)


def classify_payload(payload: dict[str, Any]) -> Event | None:  # noqa: PLR0911
    """Classify one decoded stream-json object."""

    event_type = _as_str(payload.get("type"))
    subtype = _as_str(payload.get("subtype"))

    if event_type in _SESSION_TYPES:
        if subtype == "init" or event_type in {"init", "start"}:
            return SessionStart(
                model=_first_text(payload, _MODEL_PATHS) or UNKNOWN,
                session_id=_first_text(payload, _SESSION_ID_PATHS) or "",
            )
        return None

    if event_type in _ASSISTANT_TYPES:
        text = extract_text(payload)
        return AssistantText(text=text) if text else None

    if event_type in _TOOL_TYPES:
        if subtype in _TOOL_STARTED:
            return ToolCallStart()
        if subtype in _TOOL_COMPLETED:
            return _classify_tool_result(payload)
        return None

    if event_type in _END_TYPES:
        return SessionEnd(duration_ms=_first_int(payload, _DURATION_PATHS) or 0)

    return None


def extract_text(payload: dict[str, Any]) -> str:
    """Return the first non-empty assistant text across known layouts."""

    return _first_text(payload, _TEXT_PATHS) or ""


def _classify_plain(line: str) -> Event | None:
    text = line.rstrip("\r\n")
    if not text.strip():
        return None
    return AssistantText(text=text)


def _classify_tool_result(payload: dict[str, Any]) -> ToolCallResult:
    tool_name = _first_text(payload, _TOOL_NAME_PATHS) or ""

    if _has_any(payload, _READ_MARKERS) or _READ_NAME.search(tool_name):
        lines = _first_int(payload, _READ_LINES_PATHS) or 0
        size = _first_int(payload, _READ_SIZE_PATHS) or 0
        return ToolCallResult(
            kind=ToolKind.READ,
            path=_first_text(payload, _READ_PATH_PATHS) or UNKNOWN,
            bytes=size if size > 0 else None,
            lines=lines,
        )

    if _has_any(payload, _WRITE_MARKERS) or _WRITE_NAME.search(tool_name):
        return ToolCallResult(
            kind=ToolKind.WRITE,
            path=_first_text(payload, _WRITE_PATH_PATHS) or UNKNOWN,
            bytes=_first_int(payload, _WRITE_SIZE_PATHS) or 0,
            lines=_first_int(payload, _WRITE_LINES_PATHS) or 0,
        )

    if _has_any(payload, _SHELL_MARKERS) or _SHELL_NAME.search(tool_name):
        return ToolCallResult(
            kind=ToolKind.SHELL,
            command=_first_text(payload, _SHELL_COMMAND_PATHS) or UNKNOWN,
            exit_code=_first_int(payload, _SHELL_EXIT_PATHS) or 0,
            stdout=_first_text(payload, _SHELL_STDOUT_PATHS) or "",
            stderr=_first_text(payload, _SHELL_STDERR_PATHS) or "",
        )

    return ToolCallResult(kind=ToolKind.OTHER)


def _lookup(payload: Any, path: FieldPath) -> Any:
    current = payload
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or len(current) <= key:
                return None
            current = current[key]
        else:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        if current is None:
            return None
    return current


def _has_any(payload: dict[str, Any], paths: tuple[FieldPath, ...]) -> bool:
    for path in paths:
        value = _lookup(payload, path)
        if value is not None and value is not False:
            return True
    return False


def _first_text(payload: dict[str, Any], paths: tuple[FieldPath, ...]) -> str | None:
    for path in paths:
        value = _lookup(payload, path)
        if isinstance(value, str) and value:
            return value
    return None


def _first_int(payload: dict[str, Any], paths: tuple[FieldPath, ...]) -> int | None:
    for path in paths:
        value = _as_int(_lookup(payload, path))
        if value is not None:
            return value
    return None


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        # json accepts 1e400, NaN and Infinity
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lstrip("-").isdigit():
            return int(stripped)
    return None


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""
