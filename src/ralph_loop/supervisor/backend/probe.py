"""Bounded-time availability probe for agent CLIs."""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass


@dataclass(slots=True)
class ProbeResult:
    """One executable probe outcome."""

    executable: str
    resolved: str | None
    ok: bool
    error: str | None
    output_preview: str = ""


def probe_executable(executable: str, *, timeout_seconds: float) -> ProbeResult:
    """Resolve ``executable`` on PATH and check that ``--version`` answers in time."""

    resolved = shutil.which(executable)
    if resolved is None:
        return ProbeResult(
            executable=executable,
            resolved=None,
            ok=False,
            error=f"Executable not found in PATH: {executable}",
        )

    for probe_args in ([resolved, "--version"], [resolved, "--help"]):
        try:
            completed = subprocess.run(  # noqa: S603
                probe_args,
                check=False,
                capture_output=True,
                text=True,
                stdin=subprocess.DEVNULL,
                timeout=timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            return ProbeResult(
                executable=executable,
                resolved=resolved,
                ok=False,
                error="Probe timed out.",
            )
        except OSError as error:
            return ProbeResult(
                executable=executable,
                resolved=resolved,
                ok=False,
                error=f"Probe failed to start: {error}",
            )
        if completed.returncode == 0:
            return ProbeResult(
                executable=executable,
                resolved=resolved,
                ok=True,
                error=None,
                output_preview=_truncate(completed.stdout or completed.stderr),
            )

    return ProbeResult(
        executable=executable,
        resolved=resolved,
        ok=False,
        error="Probe command failed.",
        output_preview=_truncate(completed.stderr or completed.stdout),
    )


def _truncate(value: str, *, limit: int = 120) -> str:
    compact = value.strip().replace("\n", " ")
    if len(compact) <= limit:
        return compact
    return compact[:limit] + "..."
