from __future__ import annotations

from pathlib import Path

import allure
import pytest

from ralph_loop.config import DetectorSettings
from ralph_loop.supervisor.prompt import build_iteration_prompt
from ralph_loop.supervisor.task_state import (
    TaskDocumentError,
    parse_checklist,
    parse_task_document,
    read_task_document,
    read_task_state,
)

pytestmark = [
    allure.epic("Iteration Control"),
    allure.feature("Task Document"),
]

TASK = """---
task: Build a todo CLI
test_command: "pytest -q"
max_iterations: 7
---

# Todo CLI

## Success criteria
- [x] `todo add` stores an item
- [ ] `todo list` prints items
* [ ] `todo done` marks an item
1. [x] README documents usage

```markdown
- [ ] this example is not a criterion
```
"""


def test_parse_task_document_reads_metadata_and_checklist() -> None:
    document = parse_task_document(TASK, path=Path("RALPH_TASK.md"))

    assert document.description == "Build a todo CLI"
    assert document.test_command == "pytest -q"
    assert document.max_iterations == 7
    assert document.state.total == 4
    assert document.state.done == 2
    assert document.state.remaining == 2
    assert not document.state.is_complete
    assert [item.text for item in document.state.items if not item.done] == [
        "`todo list` prints items",
        "`todo done` marks an item",
    ]


def test_checklist_line_numbers_account_for_front_matter() -> None:
    document = parse_task_document(TASK, path=Path("RALPH_TASK.md"))

    first = document.state.items[0]
    assert TASK.splitlines()[first.line_no - 1] == "- [x] `todo add` stores an item"


def test_document_without_front_matter() -> None:
    document = parse_task_document("- [x] one\n- [x] two\n", path=Path("t.md"))

    assert document.description == ""
    assert document.test_command is None
    assert document.max_iterations is None
    assert document.state.is_complete
    assert document.state.summary() == "2 / 2 criteria complete (0 remaining)"


def test_empty_checklist_is_never_complete() -> None:
    state = parse_checklist("Just prose, no criteria.")

    assert state.total == 0
    assert state.remaining == 0
    assert not state.is_complete


def test_only_lowercase_x_counts_as_done() -> None:
    state = parse_checklist("- [X] upper\n- [x] lower\n- [] malformed\n-[ ] no space\n")

    assert state.total == 1
    assert state.done == 1


def test_read_task_state_rereads_file_each_time(tmp_path: Path) -> None:
    path = tmp_path / "RALPH_TASK.md"
    path.write_text("- [ ] a\n- [ ] b\n", "utf-8")
    assert read_task_state(path).remaining == 2

    path.write_text("- [x] a\n- [ ] b\n", "utf-8")
    assert read_task_state(path).remaining == 1


def test_missing_task_document(tmp_path: Path) -> None:
    with pytest.raises(TaskDocumentError, match="Task document not found"):
        read_task_document(tmp_path / "RALPH_TASK.md")


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("---\ntask: x\n- [ ] a\n", "Unterminated metadata header"),
        ("---\ntask: [unclosed\n---\n", "Malformed metadata header"),
        ("---\n- a\n- b\n---\n", "must be a mapping"),
        ("---\ntask: 12\n---\n", "'task'"),
        ("---\nmax_iterations: 0\n---\n", "positive integer"),
        ("---\nmax_iterations: many\n---\n", "positive integer"),
        ("---\nmax_iterations: true\n---\n", "positive integer"),
    ],
)
def test_malformed_metadata_is_rejected(content: str, message: str) -> None:
    with pytest.raises(TaskDocumentError, match=message):
        parse_task_document(content, path=Path("RALPH_TASK.md"))


def test_iteration_prompt_mentions_task_tests_and_sentinels() -> None:
    document = parse_task_document(TASK, path=Path("/work/RALPH_TASK.md"))

    prompt = build_iteration_prompt(
        document=document,
        iteration=3,
        state_dir=".ralph",
        detector=DetectorSettings(),
    )

    assert prompt.startswith("# Ralph iteration 3\n")
    assert "RALPH_TASK.md" in prompt
    assert "Verify your change with: pytest -q" in prompt
    assert ".ralph/progress.md" in prompt
    assert "<ralph>COMPLETE</ralph>" in prompt
    assert "<ralph>GUTTER</ralph>" in prompt
