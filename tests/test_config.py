from __future__ import annotations

import allure
import pytest

from ralph_loop.config import (
    DEFAULT_COMPLETE_SENTINEL,
    DetectorSettings,
    EstimatorSettings,
    LoopSettings,
    Settings,
)

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment Settings"),
]


def test_defaults_match_stock_loop() -> None:
    settings = Settings.from_env()
    settings.validate()

    assert settings.estimator.chars_per_token == 4
    assert settings.estimator.bytes_per_line == 100
    assert settings.estimator.prompt_baseline_chars == 3_000
    assert settings.estimator.warn_tokens == 70_000
    assert settings.estimator.rotate_tokens == 80_000
    assert settings.detector.failure_limit == 3
    assert settings.detector.thrash_limit == 5
    assert settings.detector.thrash_window_seconds == 600
    assert settings.detector.complete_sentinel == DEFAULT_COMPLETE_SENTINEL
    assert settings.detector.trust_self_report is False
    assert settings.loop.agent is None
    assert settings.loop.max_iterations == 20
    assert settings.loop.task_file == "RALPH_TASK.md"
    assert settings.loop.state_dir == ".ralph"


def test_from_env_overrides(monkeypatch) -> None:
    monkeypatch.setenv("RALPH_AGENT", "claude-code")
    monkeypatch.setenv("RALPH_MODEL", "  ")
    monkeypatch.setenv("RALPH_MAX_ITERATIONS", "7")
    monkeypatch.setenv("RALPH_ROTATE_TOKENS", "120000")
    monkeypatch.setenv("RALPH_THRASH_WINDOW_SECONDS", "300")
    monkeypatch.setenv("RALPH_TRUST_SELF_REPORT", "yes")

    settings = Settings.from_env()

    assert settings.loop.agent == "claude-code"
    assert settings.loop.model is None
    assert settings.loop.max_iterations == 7
    assert settings.estimator.rotate_tokens == 120_000
    assert settings.detector.thrash_window_seconds == 300
    assert settings.detector.trust_self_report is True


def test_invalid_boolean_names_variable(monkeypatch) -> None:
    monkeypatch.setenv("RALPH_TRUST_SELF_REPORT", "maybe")

    with pytest.raises(ValueError, match="RALPH_TRUST_SELF_REPORT"):
        Settings.from_env()


def test_warn_must_be_below_rotate() -> None:
    settings = Settings(estimator=EstimatorSettings(warn_tokens=80_000, rotate_tokens=80_000))

    with pytest.raises(ValueError, match="RALPH_WARN_TOKENS must be lower than"):
        settings.validate()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(estimator=EstimatorSettings(chars_per_token=0)), "RALPH_CHARS_PER_TOKEN"),
        (Settings(detector=DetectorSettings(failure_limit=0)), "RALPH_FAILURE_LIMIT"),
        (Settings(detector=DetectorSettings(thrash_window_seconds=0)), "RALPH_THRASH_WINDOW"),
        (
            Settings(detector=DetectorSettings(complete_sentinel="X", gutter_sentinel="X")),
            "must differ",
        ),
        (Settings(loop=LoopSettings(max_iterations=0)), "RALPH_MAX_ITERATIONS"),
        (Settings(loop=LoopSettings(task_file=" ")), "RALPH_TASK_FILE"),
    ],
)
def test_validate_rejects_unusable_values(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate()


def test_non_numeric_value_names_variable(monkeypatch) -> None:
    monkeypatch.setenv("RALPH_MAX_ITERATIONS", "lots")

    with pytest.raises(ValueError, match="RALPH_MAX_ITERATIONS must be an integer"):
        Settings.from_env()
