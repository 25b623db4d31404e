"""Tests for the lifecycle hooks around the step loop."""
from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from replay_mvp.artifacts import ArtifactWriter
from replay_mvp.conftest import FakeElement
from replay_mvp.errors import ReplayStateError, StepExecutionError
from replay_mvp.models import ScriptRef
from replay_mvp.replay_extension import ReplayExtension, ReplayOptions
from replay_mvp.steps import parse_step
from replay_mvp.telemetry import ConsoleCollector

STEPS = [
    {"type": "navigate", "url": "https://example.test/cart"},
    {"type": "click", "selectors": [["#checkout"]]},
    {"type": "change", "selectors": [["#coupon"]], "value": "SAVE10"},
]


def _extension(session, tmp_path, options=None, **kwargs):
    return ReplayExtension(
        session,
        ScriptRef(id="42", name="checkout"),
        run_id="run-1",
        writer=ArtifactWriter(tmp_path),
        options=options or ReplayOptions(),
        **kwargs,
    )


def _drive(extension, executor, session, raw_steps):
    extension.before_all()
    for raw in raw_steps:
        step = parse_step(raw)
        extension.before_each(step)
        try:
            executor.run(session, step, extension.step_count)
        except StepExecutionError as exc:
            extension.after_each(step, exc)
            break
        extension.after_each(step)
    extension.after_all()
    return extension.get_results()


def test_successful_run_records_every_step(fast_executor, session, fake_page, tmp_path):
    fake_page.elements["#checkout"] = FakeElement(tag="button")
    fake_page.elements["#coupon"] = FakeElement(tag="input")
    screenshots = []

    report = _drive(_extension(session, tmp_path, on_screenshot=screenshots.append), fast_executor, session, STEPS)

    assert [record.step_number for record in report.steps] == [1, 2, 3]
    assert all(record.completed and record.error is None for record in report.steps)
    assert report.steps[0].final_url == "https://example.test/cart"
    assert [shot.label for shot in report.screenshots] == [
        "initial", "step-1-navigate", "step-2-click", "step-3-change", "final"]
    assert [shot.step for shot in report.screenshots] == [0, 1, 2, 3, 4]
    assert all(Path(shot.path).exists() for shot in report.screenshots)
    assert len(screenshots) == 5
    assert [sample.label for sample in report.performance] == ["initial", "navigate", "click", "change", "final"]
    assert report.final_url == "https://example.test/cart"
    assert report.total_execution_time_ms >= 0
    assert report.errors == []


def test_failed_step_is_recorded_once_and_loop_stops(fast_executor, session, fake_page, tmp_path):
    fake_page.elements["#coupon"] = FakeElement()

    report = _drive(_extension(session, tmp_path), fast_executor, session, STEPS)

    assert len(report.steps) == 2
    failure = report.first_failure()
    assert failure.step_number == 2
    assert failure.error_type == "ElementNotFound"
    assert "#checkout" in failure.error
    assert not failure.completed
    assert [(entry.step, entry.type) for entry in report.errors] == [(2, "step")]
    assert "step-2-click-failed" in [shot.label for shot in report.screenshots]
    assert report.screenshots[-1].label == "final"


def test_screenshot_failure_becomes_error_entry(fast_executor, session, fake_page, tmp_path):
    fake_page.screenshot_error = RuntimeError("disk full")
    options = ReplayOptions(measure_performance=False)

    report = _drive(_extension(session, tmp_path, options), fast_executor, session, STEPS[:1])

    assert report.steps[0].completed
    assert report.screenshots == []
    assert {entry.type for entry in report.errors} == {"screenshot"}
    assert [entry.step for entry in report.errors] == [0, 1, 2]


def test_disabled_options_skip_artifacts(fast_executor, session, tmp_path):
    options = ReplayOptions(step_screenshots=False, measure_performance=False)

    report = _drive(_extension(session, tmp_path, options), fast_executor, session, STEPS[:1])

    assert report.screenshots == [] and report.performance == []
    assert list(tmp_path.iterdir()) == []


def test_results_include_console_entries(fast_executor, session, fake_page, tmp_path):
    console = ConsoleCollector()
    console.attach(fake_page)
    extension = _extension(session, tmp_path, ReplayOptions(step_screenshots=False), console=console)

    extension.before_all()
    fake_page.emit("response", SimpleNamespace(status=500, url="https://example.test/api"))

    assert [entry.kind for entry in extension.get_results().telemetry] == ["networkError"]


def test_hooks_out_of_order_raise(session, tmp_path):
    extension = _extension(session, tmp_path, ReplayOptions(step_screenshots=False, measure_performance=False))
    step = parse_step(STEPS[0])

    with pytest.raises(ReplayStateError):
        extension.before_each(step)

    extension.before_all()
    extension.before_each(step)
    with pytest.raises(ReplayStateError):
        extension.after_all()


def test_get_results_is_a_snapshot(session, tmp_path):
    extension = _extension(session, tmp_path, ReplayOptions(step_screenshots=False, measure_performance=False))
    extension.before_all()
    first = extension.get_results()

    extension.before_each(parse_step(STEPS[0]))

    assert first.steps == []
    assert len(extension.get_results().steps) == 1
