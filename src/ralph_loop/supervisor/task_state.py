"""Task description document: metadata header and completion checklist."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

_CHECKLIST_ITEM = re.compile(r"^\s*(?:[-*]|\d+\.)\s+\[(?P<mark>x| )\]\s?(?P<text>.*)$")
_FENCE = re.compile(r"^\s*(```|~~~)")
_FRONT_MATTER_FENCE = "---"


class TaskDocumentError(ValueError):
    """Task document is missing or its metadata header is malformed."""


@dataclass(frozen=True, slots=True)
class ChecklistItem:
    text: str
    done: bool
    line_no: int


@dataclass(frozen=True, slots=True)
class TaskState:
    """Checklist snapshot; re-read from disk at every iteration boundary."""

    items: tuple[ChecklistItem, ...] = ()

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def done(self) -> int:
        return sum(1 for item in self.items if item.done)

    @property
    def remaining(self) -> int:
        return self.total - self.done

    @property
    def is_complete(self) -> bool:
        return self.total > 0 and self.remaining == 0

    def summary(self) -> str:
        return f"{self.done} / {self.total} criteria complete ({self.remaining} remaining)"


@dataclass(frozen=True, slots=True)
class TaskDocument:
    """Parsed task document."""

    path: Path
    description: str
    test_command: str | None
    max_iterations: int | None
    state: TaskState
    metadata: dict[str, Any] = field(default_factory=dict)


def read_task_document(path: Path) -> TaskDocument:
    """Read and parse the task document, raising ``TaskDocumentError`` on problems."""

    if not path.is_file():
        raise TaskDocumentError(f"Task document not found: {path}")
    try:
        content = path.read_text("utf-8")
    except OSError as error:
        raise TaskDocumentError(f"Task document is not readable: {path}: {error}") from error
    return parse_task_document(content, path=path)


def read_task_state(path: Path) -> TaskState:
    """Re-read only the checklist; the durable file is the sole authority."""

    return read_task_document(path).state


def parse_task_document(content: str, *, path: Path) -> TaskDocument:
    metadata, body, body_offset = _split_front_matter(content, path=path)
    description = _optional_str(metadata, "task", path=path) or ""
    test_command = _optional_str(metadata, "test_command", path=path)
    max_iterations = _optional_positive_int(metadata, "max_iterations", path=path)
    return TaskDocument(
        path=path,
        description=description.strip(),
        test_command=test_command.strip() if test_command else None,
        max_iterations=max_iterations,
        state=parse_checklist(body, line_offset=body_offset),
        metadata=metadata,
    )


def parse_checklist(body: str, *, line_offset: int = 0) -> TaskState:
    """Collect checklist items; anything inside fenced code blocks is ignored."""

    items: list[ChecklistItem] = []
    in_fence = False
    for index, line in enumerate(body.splitlines(), start=1):
        if _FENCE.match(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        match = _CHECKLIST_ITEM.match(line)
        if match is None:
            continue
        items.append(
            ChecklistItem(
                text=match.group("text").strip(),
                done=match.group("mark") == "x",
                line_no=line_offset + index,
            ),
        )
    return TaskState(items=tuple(items))


def _split_front_matter(content: str, *, path: Path) -> tuple[dict[str, Any], str, int]:
    lines = content.splitlines()
    if not lines or lines[0].strip() != _FRONT_MATTER_FENCE:
        return {}, content, 0

    for index in range(1, len(lines)):
        if lines[index].strip() == _FRONT_MATTER_FENCE:
            header = "\n".join(lines[1:index])
            body = "\n".join(lines[index + 1 :])
            return _load_metadata(header, path=path), body, index + 1

    raise TaskDocumentError(f"Unterminated metadata header in {path}")


def _load_metadata(header: str, *, path: Path) -> dict[str, Any]:
    try:
        loaded = yaml.safe_load(header)
    except yaml.YAMLError as error:
        raise TaskDocumentError(f"Malformed metadata header in {path}: {error}") from error
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise TaskDocumentError(f"Metadata header in {path} must be a mapping.")
    return loaded


def _optional_str(metadata: dict[str, Any], key: str, *, path: Path) -> str | None:
    value = metadata.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise TaskDocumentError(f"Metadata field {key!r} in {path} must be a string.")
    return value


def _optional_positive_int(metadata: dict[str, Any], key: str, *, path: Path) -> int | None:
    value = metadata.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise TaskDocumentError(
            f"Metadata field {key!r} in {path} must be a positive integer, got {value!r}.",
        )
    return value
