"""Runtime configuration for the supervision loop."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

DEFAULT_COMPLETE_SENTINEL = "<ralph>COMPLETE</ralph>"
DEFAULT_GUTTER_SENTINEL = "<ralph>GUTTER</ralph>"


@dataclass(slots=True)
class EstimatorSettings:
    """Context budget heuristics."""

    chars_per_token: int = 4
    bytes_per_line: int = 100
    prompt_baseline_chars: int = 3_000
    warn_tokens: int = 70_000
    rotate_tokens: int = 80_000


@dataclass(slots=True)
class DetectorSettings:
    """Stuck-pattern thresholds and self-report sentinels."""

    failure_limit: int = 3
    thrash_limit: int = 5
    thrash_window_seconds: int = 600
    complete_sentinel: str = DEFAULT_COMPLETE_SENTINEL
    gutter_sentinel: str = DEFAULT_GUTTER_SENTINEL
    trust_self_report: bool = False


@dataclass(slots=True)
class LoopSettings:
    """Iteration controller settings."""

    agent: str | None = None
    model: str | None = None
    max_iterations: int = 20
    task_file: str = "RALPH_TASK.md"
    state_dir: str = ".ralph"
    probe_timeout_seconds: float = 5.0
    status_interval_seconds: int = 30


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    estimator: EstimatorSettings = field(default_factory=EstimatorSettings)
    detector: DetectorSettings = field(default_factory=DetectorSettings)
    loop: LoopSettings = field(default_factory=LoopSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults matching the stock loop."""

        return cls(
            estimator=EstimatorSettings(
                chars_per_token=_env_int("RALPH_CHARS_PER_TOKEN", 4),
                bytes_per_line=_env_int("RALPH_BYTES_PER_LINE", 100),
                prompt_baseline_chars=_env_int("RALPH_PROMPT_BASELINE_CHARS", 3000),
                warn_tokens=_env_int("RALPH_WARN_TOKENS", 70000),
                rotate_tokens=_env_int("RALPH_ROTATE_TOKENS", 80000),
            ),
            detector=DetectorSettings(
                failure_limit=_env_int("RALPH_FAILURE_LIMIT", 3),
                thrash_limit=_env_int("RALPH_THRASH_LIMIT", 5),
                thrash_window_seconds=_env_int("RALPH_THRASH_WINDOW_SECONDS", 600),
                complete_sentinel=os.getenv("RALPH_COMPLETE_SENTINEL", DEFAULT_COMPLETE_SENTINEL),
                gutter_sentinel=os.getenv("RALPH_GUTTER_SENTINEL", DEFAULT_GUTTER_SENTINEL),
                trust_self_report=_env_bool("RALPH_TRUST_SELF_REPORT", default=False),
            ),
            loop=LoopSettings(
                agent=_env_optional("RALPH_AGENT"),
                model=_env_optional("RALPH_MODEL"),
                max_iterations=_env_int("RALPH_MAX_ITERATIONS", 20),
                task_file=os.getenv("RALPH_TASK_FILE", "RALPH_TASK.md"),
                state_dir=os.getenv("RALPH_STATE_DIR", ".ralph"),
                probe_timeout_seconds=_env_float("RALPH_PROBE_TIMEOUT_SECONDS", 5.0),
                status_interval_seconds=_env_int("RALPH_STATUS_INTERVAL_SECONDS", 30),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if any threshold is unusable."""

        estimator = self.estimator
        if estimator.chars_per_token <= 0:
            raise ValueError("RALPH_CHARS_PER_TOKEN must be > 0.")
        if estimator.bytes_per_line < 0:
            raise ValueError("RALPH_BYTES_PER_LINE must be >= 0.")
        if estimator.prompt_baseline_chars < 0:
            raise ValueError("RALPH_PROMPT_BASELINE_CHARS must be >= 0.")
        if estimator.warn_tokens <= 0 or estimator.rotate_tokens <= 0:
            raise ValueError("RALPH_WARN_TOKENS and RALPH_ROTATE_TOKENS must be > 0.")
        if estimator.warn_tokens >= estimator.rotate_tokens:
            raise ValueError(
                "RALPH_WARN_TOKENS must be lower than RALPH_ROTATE_TOKENS: "
                f"{estimator.warn_tokens} >= {estimator.rotate_tokens}",
            )

        detector = self.detector
        if detector.failure_limit <= 0:
            raise ValueError("RALPH_FAILURE_LIMIT must be > 0.")
        if detector.thrash_limit <= 0:
            raise ValueError("RALPH_THRASH_LIMIT must be > 0.")
        if detector.thrash_window_seconds <= 0:
            raise ValueError("RALPH_THRASH_WINDOW_SECONDS must be > 0.")
        if not detector.complete_sentinel.strip() or not detector.gutter_sentinel.strip():
            raise ValueError("RALPH_COMPLETE_SENTINEL and RALPH_GUTTER_SENTINEL must be non-empty.")
        if detector.complete_sentinel == detector.gutter_sentinel:
            raise ValueError("RALPH_COMPLETE_SENTINEL and RALPH_GUTTER_SENTINEL must differ.")

        loop = self.loop
        if loop.max_iterations <= 0:
            raise ValueError("RALPH_MAX_ITERATIONS must be a positive integer.")
        if not loop.task_file.strip():
            raise ValueError("RALPH_TASK_FILE must be non-empty.")
        if not loop.state_dir.strip():
            raise ValueError("RALPH_STATE_DIR must be non-empty.")
        if loop.probe_timeout_seconds <= 0:
            raise ValueError("RALPH_PROBE_TIMEOUT_SECONDS must be > 0.")
        if loop.status_interval_seconds <= 0:
            raise ValueError("RALPH_STATUS_INTERVAL_SECONDS must be > 0.")


def _env_optional(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"{name} must be an integer, got {value!r}.") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value.strip())
    except ValueError as error:
        raise ValueError(f"{name} must be a number, got {value!r}.") from error
