"""Git working-tree checks and optional branch / pull request helpers."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)


class VcsError(RuntimeError):
    """A git or gh command failed."""


def is_git_work_tree(workspace: Path) -> bool:
    try:
        completed = _run(["git", "rev-parse", "--is-inside-work-tree"], workspace=workspace)
    except VcsError:
        return False
    return completed.stdout.strip() == "true"


def current_branch(workspace: Path) -> str:
    return _run(["git", "rev-parse", "--abbrev-ref", "HEAD"], workspace=workspace).stdout.strip()


def checkout_branch(workspace: Path, branch: str) -> bool:
    """Switch to ``branch``, creating it from HEAD if needed. Returns ``True`` if created."""

    exists = (
        subprocess.run(  # noqa: S603
            ["git", "show-ref", "--verify", "--quiet", f"refs/heads/{branch}"],  # noqa: S607
            cwd=workspace,
            check=False,
            capture_output=True,
        ).returncode
        == 0
    )
    if exists:
        _run(["git", "checkout", branch], workspace=workspace)
        return False
    _run(["git", "checkout", "-b", branch], workspace=workspace)
    return True


def open_pull_request(workspace: Path, *, branch: str, title: str, body: str) -> str:
    """Push ``branch`` and open a pull request with ``gh``; return its URL."""

    _run(["git", "push", "-u", "origin", branch], workspace=workspace)
    completed = _run(
        ["gh", "pr", "create", "--head", branch, "--title", title, "--body", body],
        workspace=workspace,
    )
    return completed.stdout.strip()


def _run(argv: list[str], *, workspace: Path) -> subprocess.CompletedProcess[str]:
    logger.debug("Running %s in %s", argv[:3], workspace)
    try:
        completed = subprocess.run(  # noqa: S603
            argv,
            cwd=workspace,
            check=False,
            capture_output=True,
            text=True,
        )
    except OSError as error:
        raise VcsError(f"{argv[0]} failed to start: {error}") from error
    if completed.returncode != 0:
        raise VcsError(
            f"{' '.join(argv[:3])} failed with exit {completed.returncode}: "
            f"{completed.stderr.strip()}",
        )
    return completed
