"""Lifecycle hooks wrapped around a step loop, accumulating one ExecutionReport.

The caller drives the loop::

    extension.before_all()
    for step in steps:
        extension.before_each(step)
        try:
            executor.run(session, step, extension.step_count)
        except StepExecutionError as exc:
            extension.after_each(step, exc)
            break
        extension.after_each(step)
    extension.after_all()

``after_each`` never raises for a failed step; aborting is the caller's decision.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from playwright.sync_api import Error as PlaywrightError

from .artifacts import ArtifactWriter
from .errors import ReplayStateError, StepExecutionError
from .models import (
    ErrorEntry,
    ExecutionRecord,
    ExecutionReport,
    MonotonicClock,
    PerformanceSample,
    ScreenshotArtifact,
    ScriptRef,
)
from .steps import StepDescriptor, step_label
from .telemetry import ConsoleCollector, PerformanceCollector

STATE_IDLE = "idle"
STATE_READY = "ready"
STATE_EXECUTING = "executing"
STATE_DONE = "done"


@dataclass(frozen=True)
class ReplayOptions:
    step_screenshots: bool = True
    measure_performance: bool = True
    performance_step_types: Tuple[str, ...] = ("navigate", "click", "change")
    log_steps: bool = True


class ReplayExtension:
    """Stateful per-script recorder of steps, screenshots, performance and errors."""

    # pylint: disable=too-many-arguments,too-many-instance-attributes
    def __init__(
        self,
        session,
        script: ScriptRef,
        run_id: str,
        writer: ArtifactWriter,
        options: Optional[ReplayOptions] = None,
        performance: Optional[PerformanceCollector] = None,
        console: Optional[ConsoleCollector] = None,
        clock: Optional[MonotonicClock] = None,
        on_screenshot: Optional[Callable[[ScreenshotArtifact], None]] = None,
    ) -> None:
        self.session = session
        self.writer = writer
        self.options = options or ReplayOptions()
        self.performance = performance or PerformanceCollector()
        self.console = console
        self.clock = clock or MonotonicClock()
        self.on_screenshot = on_screenshot
        self.logger = logging.getLogger("replay_mvp.replay")
        self.state = STATE_IDLE
        self.step_count = 0
        self._current: Optional[ExecutionRecord] = None
        self._report = ExecutionReport(script=script, run_id=run_id)

    # -- hooks -------------------------------------------------------------

    def before_all(self) -> None:
        self._require(STATE_IDLE, "before_all")
        self._report.started_at = self.clock.now()
        if self.options.log_steps:
            self.logger.info("Starting replay of %s", self._report.script.name)
        if self.options.step_screenshots:
            self._capture_screenshot(0, "initial")
        if self.options.measure_performance:
            self._capture_performance(0, "initial")
        self.state = STATE_READY

    def before_each(self, step: StepDescriptor) -> ExecutionRecord:
        self._require(STATE_READY, "before_each")
        self.step_count += 1
        record = ExecutionRecord(
            step_number=self.step_count,
            type=step_label(step),
            started_at=self.clock.now(),
            description=step.describe(),
            url=self._page_url(),
        )
        self._report.steps.append(record)
        self._current = record
        self.state = STATE_EXECUTING
        if self.options.log_steps:
            self.logger.info("Step %s: %s", self.step_count, record.description)
        return record

    def after_each(self, step: StepDescriptor, error: Optional[BaseException] = None) -> ExecutionRecord:
        self._require(STATE_EXECUTING, "after_each")
        record = self._current
        self.state = STATE_READY
        self._current = None
        try:
            record.final_url = self._page_url()
            if error is not None:
                self._record_step_error(record, error)
            else:
                record.completed = True
                record.completed_at = self.clock.now()
                self._report.final_url = record.final_url
                if self.options.step_screenshots:
                    self._capture_screenshot(record.step_number, f"step-{record.step_number}-{record.type}")
                if self.options.measure_performance and step_label(step) in self.options.performance_step_types:
                    self._capture_performance(record.step_number, record.type)
        except Exception as exc:  # pylint: disable=broad-except
            self.logger.error("Error in after_each for step %s: %s", record.step_number, exc)
            self._add_error(record.step_number, "afterStep", str(exc))
        return record

    def after_all(self) -> None:
        if self.state == STATE_EXECUTING:
            raise ReplayStateError("after_all called while a step is still open; call after_each first")
        self._require(STATE_READY, "after_all")
        final_step = self.step_count + 1
        if self.options.step_screenshots:
            self._capture_screenshot(final_step, "final")
        if self.options.measure_performance:
            self._capture_performance(final_step, "final")
        current_url = self._page_url()
        if current_url:
            self._report.final_url = current_url
        self._report.finished_at = self.clock.now()
        self._report.total_execution_time_ms = self._elapsed_ms()
        self.state = STATE_DONE
        if self.options.log_steps:
            self.logger.info("Replay of %s finished after %s step(s)", self._report.script.name, self.step_count)

    def get_results(self) -> ExecutionReport:
        """Snapshot of the report so far; usable before ``after_all`` on an aborted run."""
        report = self._report.snapshot()
        if self.console is not None:
            report.telemetry = self.console.entries
        if report.total_execution_time_ms is None and report.started_at is not None:
            report.total_execution_time_ms = self._elapsed_ms()
        return report

    # -- helpers -----------------------------------------------------------

    def _require(self, expected: str, hook: str) -> None:
        if self.state != expected:
            raise ReplayStateError(f"{hook} called in state '{self.state}', expected '{expected}'")

    def _elapsed_ms(self) -> int:
        end = self._report.finished_at or self.clock.now()
        return int((end - self._report.started_at).total_seconds() * 1000)

    def _page_url(self) -> Optional[str]:
        page = getattr(self.session, "page", None)
        if page is None or getattr(self.session, "closed", False):
            return None
        try:
            return page.url
        except PlaywrightError:
            return None

    def _add_error(self, step: int, kind: str, message: str) -> None:
        self._report.errors.append(ErrorEntry(step=step, type=kind, error=message, timestamp=self.clock.now()))

    def _record_step_error(self, record: ExecutionRecord, error: BaseException) -> None:
        cause = error.cause if isinstance(error, StepExecutionError) else error
        record.error = str(cause)
        record.error_type = type(cause).__name__
        self._add_error(record.step_number, "step", record.error)
        self.logger.warning("Step %s (%s) failed: %s", record.step_number, record.type, record.error)
        if self.options.step_screenshots and self.session.is_alive():
            self._capture_screenshot(record.step_number, f"step-{record.step_number}-{record.type}-failed")

    def _capture_screenshot(self, step: int, label: str) -> None:
        try:
            page = self.session.ensure_open()
            path = self.writer.screenshot(page, label)
        except Exception as exc:  # pylint: disable=broad-except
            self.logger.error("Screenshot capture failed for step %s: %s", step, exc)
            self._add_error(step, "screenshot", str(exc))
            return
        artifact = ScreenshotArtifact(step=step, label=label, path=path, timestamp=self.clock.now(), url=self._page_url())
        self._report.screenshots.append(artifact)
        if self.on_screenshot is not None:
            self.on_screenshot(artifact)

    def _capture_performance(self, step: int, label: str) -> None:
        try:
            page = self.session.ensure_open()
            metrics = self.performance.measure(page)
        except Exception as exc:  # pylint: disable=broad-except
            self.logger.error("Performance measurement failed for step %s: %s", step, exc)
            self._add_error(step, "performance", str(exc))
            return
        self._report.performance.append(
            PerformanceSample(step=step, label=label, timestamp=self.clock.now(), metrics=metrics, url=self._page_url()))
