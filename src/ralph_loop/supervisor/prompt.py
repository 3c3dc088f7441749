"""Prompt handed to the backend agent at the start of every iteration."""

from __future__ import annotations

from ralph_loop.config import DetectorSettings
from ralph_loop.supervisor.task_state import TaskDocument


def build_iteration_prompt(
    *,
    document: TaskDocument,
    iteration: int,
    state_dir: str,
    detector: DetectorSettings,
) -> str:
    """Wrap the task document location with the loop's working agreement."""

    task_file = document.path.name
    test_step = (
        f"4. Verify your change with: {document.test_command}\n"
        if document.test_command
        else "4. Verify your change with the project's own checks.\n"
    )
    return (
        f"# Ralph iteration {iteration}\n"
        f"\n"
        f"You are working autonomously on the task described in {task_file}.\n"
        f"Your previous context may have been discarded; the files on disk and git\n"
        f"history are the only memory you can rely on.\n"
        f"\n"
        f"Steps:\n"
        f"1. Read {task_file}. Criteria are a checklist: '- [ ]' open, '- [x]' done.\n"
        f"2. Read {state_dir}/progress.md and {state_dir}/guardrails.md if they exist.\n"
        f"3. Pick the next unchecked criterion and implement it.\n"
        f"{test_step}"
        f"5. Mark the criterion as done in {task_file} ('- [x]') only when it is met.\n"
        f"6. Append what you did to {state_dir}/progress.md and commit your work.\n"
        f"\n"
        f"When every criterion is checked, output exactly: {detector.complete_sentinel}\n"
        f"If you are stuck and cannot make progress, output exactly: "
        f"{detector.gutter_sentinel}\n"
    )
