from __future__ import annotations

import allure

from ralph_loop.config import EstimatorSettings
from ralph_loop.supervisor.estimator import ResourceEstimator
from ralph_loop.supervisor.models import (
    AssistantText,
    ControlSignal,
    ResourceCounters,
    SessionStart,
    ToolCallResult,
    ToolCallStart,
    ToolKind,
    strongest_signal,
)

pytestmark = [
    allure.epic("Supervision Pipeline"),
    allure.feature("Context Budget"),
]


def _estimator(**overrides) -> ResourceEstimator:
    settings = EstimatorSettings(**overrides)
    return ResourceEstimator(settings=settings, counters=ResourceEstimator.fresh_counters(settings))


def test_fresh_counters_start_from_prompt_baseline() -> None:
    estimator = _estimator()

    assert estimator.counters.prompt_chars == 3_000
    assert estimator.estimated_tokens == 750


def test_tokens_are_total_chars_divided_by_four() -> None:
    estimator = _estimator(prompt_baseline_chars=0)
    estimator.observe(AssistantText(text="x" * 10))

    assert estimator.counters.assistant_chars == 10
    assert estimator.estimated_tokens == 2


def test_read_uses_reported_size_else_line_fallback() -> None:
    estimator = _estimator(prompt_baseline_chars=0)

    read = ToolCallResult(kind=ToolKind.READ, path="a", bytes=512, lines=9)
    assert estimator.observe(read) == 512
    assert estimator.observe(ToolCallResult(kind=ToolKind.READ, path="b", lines=50)) == 5_000
    assert estimator.counters.bytes_read == 5_512


def test_write_and_shell_contributions() -> None:
    estimator = _estimator(prompt_baseline_chars=0)
    estimator.observe(ToolCallResult(kind=ToolKind.WRITE, path="a", bytes=300, lines=4))
    estimator.observe(
        ToolCallResult(kind=ToolKind.SHELL, command="ls", exit_code=0, stdout="abc", stderr="de"),
    )
    estimator.observe(ToolCallResult(kind=ToolKind.OTHER))

    counters = estimator.counters
    assert counters.bytes_written == 300
    assert counters.shell_output_chars == 5
    assert counters.total_chars == 305


def test_tool_start_and_session_events_do_not_add_chars() -> None:
    estimator = _estimator(prompt_baseline_chars=0)
    estimator.observe(ToolCallStart())
    estimator.observe(SessionStart(model="m"))

    assert estimator.counters.tool_call_count == 1
    assert estimator.counters.total_chars == 0


def test_warn_fires_once_per_context() -> None:
    counters = ResourceCounters(prompt_chars=4 * 70_000)
    estimator = ResourceEstimator(settings=EstimatorSettings(), counters=counters)

    assert estimator.check() is ControlSignal.WARN
    assert estimator.check() is ControlSignal.NONE
    assert counters.warn_sent is True


def test_rotate_fires_on_every_check_at_threshold() -> None:
    counters = ResourceCounters(prompt_chars=4 * 80_000)
    estimator = ResourceEstimator(settings=EstimatorSettings(), counters=counters)

    assert estimator.check() is ControlSignal.ROTATE
    assert estimator.check() is ControlSignal.ROTATE


def test_below_warn_is_none() -> None:
    assert _estimator().check() is ControlSignal.NONE


def test_rotate_percent() -> None:
    counters = ResourceCounters(prompt_chars=4 * 40_000)
    estimator = ResourceEstimator(settings=EstimatorSettings(), counters=counters)

    assert estimator.rotate_percent == 50


def test_signal_precedence() -> None:
    assert strongest_signal() is ControlSignal.NONE
    assert strongest_signal(ControlSignal.WARN, ControlSignal.ROTATE) is ControlSignal.ROTATE
    assert strongest_signal(ControlSignal.ROTATE, ControlSignal.COMPLETE) is ControlSignal.COMPLETE
    assert (
        strongest_signal(ControlSignal.COMPLETE, ControlSignal.GUTTER, ControlSignal.WARN)
        is ControlSignal.GUTTER
    )
