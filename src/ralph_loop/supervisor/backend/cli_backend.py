"""Subprocess-based backend runner for CLI agents."""

from __future__ import annotations

import logging
import os
import subprocess

from ralph_loop.supervisor.backend.base import (
    BackendRunRequest,
    BackendRunResult,
    LineConsumer,
)

logger = logging.getLogger(__name__)


class BackendRunError(RuntimeError):
    """Backend execution error with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


class CliAgentBackend:
    """Run one agent CLI session and stream its stdout line by line.

    Lines are handed to the consumer synchronously, in arrival order. The
    session has no timeout. If the consumer or an interrupt raises, the
    process is terminated before the exception propagates.
    """

    def run(self, request: BackendRunRequest, on_line: LineConsumer) -> BackendRunResult:
        if not request.argv:
            raise BackendRunError("Backend command is empty.", transient=False)

        env = os.environ.copy()
        env.update(request.env)
        request.stderr_path.parent.mkdir(parents=True, exist_ok=True)

        with request.stderr_path.open("a", encoding="utf-8") as stderr_handle:
            try:
                process = subprocess.Popen(  # noqa: S603
                    request.argv,
                    cwd=request.workspace,
                    env=env,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=stderr_handle,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                    bufsize=1,
                )
            except FileNotFoundError as error:
                raise BackendRunError(
                    f"CLI backend command not found: {request.argv[0]}",
                    transient=False,
                ) from error
            except OSError as error:
                raise BackendRunError(
                    f"CLI backend failed to start: {error}",
                    transient=True,
                ) from error

            logger.debug("Started backend pid=%s argv0=%s", process.pid, request.argv[0])
            line_count = 0
            try:
                for line in process.stdout or ():
                    line_count += 1
                    on_line(line.rstrip("\n"))
                exit_code = process.wait()
            finally:
                if process.poll() is None:
                    logger.warning("Terminating backend pid=%s", process.pid)
                    _terminate_process(process)
                if process.stdout is not None:
                    process.stdout.close()

        return BackendRunResult(
            exit_code=exit_code,
            line_count=line_count,
            stderr_path=request.stderr_path,
        )


def _terminate_process(process: subprocess.Popen[str] | subprocess.Popen[bytes]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
