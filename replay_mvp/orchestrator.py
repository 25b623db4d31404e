"""Sequential batch replay over one shared browser session."""
from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .artifacts import ArtifactWriter, sanitize_name
from .errors import AlreadyRunning, StepExecutionError, SubmissionFailed
from .models import (
    STATUS_FAILED,
    STATUS_PASSED,
    STATUS_RUNNING,
    STATUS_STOPPED,
    BatchResult,
    ErrorEntry,
    ExecutionReport,
    MonotonicClock,
    ScriptRef,
    utc_now,
)
from .progress import (
    BATCH_COMPLETE,
    PROGRESS,
    SCREENSHOT,
    SCRIPT_COMPLETE,
    SCRIPT_ERROR,
    STEP_COMPLETE,
    STEP_START,
    ProgressChannel,
    Subscriber,
)
from .replay_extension import ReplayExtension, ReplayOptions
from .report_generator import BatchReportGenerator, write_batch_summary
from .session import BrowserSession, SessionConfig, SessionManager
from .step_executor import StepExecutor, StepExecutorSettings
from .steps import StepDescriptor, step_label
from .stores import ResultStore, ScriptSource
from .telemetry import ConsoleCollector, PerformanceCollector

# pylint: disable=too-many-instance-attributes

ENGINE_LOGGER_NAME = "replay_mvp"


@dataclass(frozen=True)
class OrchestratorOptions:
    """Per-run behaviour switches."""

    stop_on_first_failure: bool = False
    isolate_telemetry: bool = True
    write_artifacts: bool = True
    navigate_to_target: bool = True
    replay: ReplayOptions = field(default_factory=ReplayOptions)


class BatchOrchestrator:
    """Runs scripts strictly in order, one at a time, against one session."""

    # pylint: disable=too-many-arguments
    def __init__(
        self,
        script_source: ScriptSource,
        result_store: Optional[ResultStore] = None,
        session_manager: Optional[SessionManager] = None,
        output_root: Path = Path("results"),
        step_executor: Optional[StepExecutor] = None,
        performance: Optional[PerformanceCollector] = None,
    ) -> None:
        self.script_source = script_source
        self.result_store = result_store
        self.session_manager = session_manager or SessionManager()
        self.output_root = Path(output_root)
        self.session_config = SessionConfig()
        self.executor = step_executor or StepExecutor(StepExecutorSettings(timeout_ms=self.session_config.timeout_ms))
        self.performance = performance or PerformanceCollector()
        self.console = ConsoleCollector()
        self.progress = ProgressChannel()
        self.logger = logging.getLogger("replay_mvp.batch")

        self._run_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._running = False
        self._current_script: Optional[str] = None
        self._current_step = 0
        self._completed_scripts = 0
        self._total_scripts = 0

    # -- control surface ---------------------------------------------------

    def initialize(self, config: Optional[SessionConfig] = None) -> None:
        """Store the session configuration used by the next ``run``."""
        if self._running or self._run_lock.locked():
            raise AlreadyRunning("Cannot reconfigure while a batch is running")
        self.session_config = config or SessionConfig()
        # Work on a copy so a caller-supplied executor keeps its own settings.
        executor = copy.copy(self.executor)
        executor.settings = replace(self.executor.settings, timeout_ms=self.session_config.timeout_ms)
        self.executor = executor
        self.logger.info("Replay engine initialized (timeout=%sms, headless=%s)",
                         self.session_config.timeout_ms, self.session_config.headless)

    def run(
        self,
        scripts: Sequence[ScriptRef],
        options: Optional[OrchestratorOptions] = None,
        callbacks: Optional[Subscriber] = None,
    ) -> BatchResult:
        if not self._run_lock.acquire(blocking=False):
            raise AlreadyRunning("A batch is already running")
        unsubscribe = self.progress.subscribe(callbacks) if callbacks is not None else None
        try:
            return self._run_batch(list(scripts), options or OrchestratorOptions())
        finally:
            if unsubscribe is not None:
                unsubscribe()
            self._running = False
            self._current_script = None
            self._current_step = 0
            self._run_lock.release()

    def stop(self) -> None:
        """Request cooperative cancellation; the in-flight step is allowed to finish."""
        if self._running and not self._stop_event.is_set():
            self.logger.info("Execution stop requested by user")
        self._stop_event.set()

    def get_execution_status(self) -> Dict[str, Any]:
        total = self._total_scripts
        return {
            "is_running": self._running,
            "current_script": self._current_script,
            "current_step": self._current_step,
            "completed_scripts": self._completed_scripts,
            "total_scripts": total,
            "progress_percent": self._completed_scripts / total * 100 if total else 0.0,
            "stop_requested": self._stop_event.is_set(),
        }

    def cleanup(self) -> None:
        """Release the browser session; a running batch is stopped and releases on its own."""
        if self._running:
            self.stop()
            self.logger.warning("cleanup() called during a run; session is released when the batch stops")
            return
        self._release_session()
        self._completed_scripts = 0
        self._total_scripts = 0
        self._stop_event.clear()

    # -- batch -------------------------------------------------------------

    def _run_batch(self, scripts: List[ScriptRef], options: OrchestratorOptions) -> BatchResult:
        self._stop_event.clear()
        self._running = True
        self._completed_scripts = 0
        self._total_scripts = len(scripts)

        batch_id = self._build_batch_id()
        batch_dir = self.output_root / batch_id
        result = BatchResult(
            batch_id=batch_id,
            total_scripts=len(scripts),
            started_at=utc_now(),
            artifacts_dir=str(batch_dir),
        )
        self.logger.info("开始批量执行 %d 个脚本", len(scripts))

        try:
            for index, script in enumerate(scripts, 1):
                if self._stop_event.is_set():
                    result.stopped = True
                    result.results.append(self._skipped_report(script, "stopped by user before start"))
                    continue
                if options.stop_on_first_failure and result.failed:
                    result.results.append(self._skipped_report(script, "skipped after an earlier failure"))
                    continue

                self.logger.info("[%d/%d] 运行: %s", index, len(scripts), script.name)
                self._current_script = script.name
                self._current_step = 0
                try:
                    report = self._run_script(script, options, batch_dir)
                except Exception as exc:  # pylint: disable=broad-except
                    self.logger.exception("脚本 %s 执行异常", script.name)
                    report = self._failure_report(script, f"No report produced: {exc}")
                result.results.append(report)
                if report.status == STATUS_STOPPED:
                    result.stopped = True

                self._completed_scripts += 1
                self.progress.publish(SCRIPT_COMPLETE if report.passed else SCRIPT_ERROR, report)
                self.progress.publish(PROGRESS, self._completed_scripts / len(scripts) * 100)
        finally:
            self._release_session()

        result.finished_at = utc_now()
        self._submit_results(result)
        if options.write_artifacts:
            self._write_batch_reports(result, batch_dir)

        self.logger.info("批量执行完成: %d 通过, %d 失败%s",
                         result.successful, result.failed, " (已停止)" if result.stopped else "")
        self.progress.publish(BATCH_COMPLETE, result)
        return result

    # -- single script -----------------------------------------------------

    def _run_script(self, script: ScriptRef, options: OrchestratorOptions, batch_dir: Path) -> ExecutionReport:
        run_id = self._build_run_id(script.id)
        script_dir = batch_dir / sanitize_name(script.name)
        writer = ArtifactWriter(script_dir)
        engine_logger = logging.getLogger(ENGINE_LOGGER_NAME)
        log_handler, log_path = (None, None)
        artifact_errors: List[str] = []
        if options.write_artifacts:
            try:
                log_handler, log_path = writer.attach_run_logger(engine_logger, script.name)
            except OSError as exc:
                self.logger.warning("Could not open run log for %s: %s", script.name, exc)
                artifact_errors.append(f"run log not written: {exc}")

        try:
            try:
                steps = self.script_source.fetch_steps(script)
            except Exception as exc:  # pylint: disable=broad-except
                self.logger.error("Could not load steps for %s: %s", script.name, exc)
                report = self._failure_report(script, f"Could not load steps: {exc}", run_id=run_id)
            else:
                report = self._replay(script, steps, run_id, writer, options)

            if log_path:
                report.artifacts["log"] = log_path
            for message in artifact_errors:
                self._add_artifact_error(report, message)
            if options.write_artifacts:
                try:
                    report.artifacts["data"] = writer.write_report(report)
                except OSError as exc:
                    self.logger.warning("Could not write execution data for %s: %s", script.name, exc)
                    self._add_artifact_error(report, f"execution data not written: {exc}")
            return report
        finally:
            writer.detach_run_logger(engine_logger, log_handler)
            session = self.session_manager.session
            if session is not None and not session.is_alive():
                self.logger.warning("Browser session is no longer usable; releasing it")
                self._release_session()

    def _replay(self, script: ScriptRef, steps: List[StepDescriptor], run_id: str, writer: ArtifactWriter,
                options: OrchestratorOptions) -> ExecutionReport:
        clock = MonotonicClock()
        try:
            session = self._ensure_session()
        except Exception as exc:  # pylint: disable=broad-except
            self.logger.error("Session unavailable for %s: %s", script.name, exc)
            report = self._failure_report(script, str(exc), run_id=run_id)
            report.total_steps_planned = len(steps)
            return report

        self.console.clock = clock
        if options.isolate_telemetry:
            self.console.clear()
        self.console.attach(session.page)

        extension = ReplayExtension(
            session,
            script,
            run_id,
            writer,
            options=options.replay,
            performance=self.performance,
            console=self.console,
            clock=clock,
            on_screenshot=lambda artifact: self.progress.publish(SCREENSHOT, artifact.path),
        )

        status = STATUS_FAILED
        script_error: Optional[str] = None
        try:
            if options.navigate_to_target and script.target_url:
                self.logger.info("Opening target %s", script.target_url)
                session.ensure_open().goto(script.target_url, wait_until="networkidle")
            extension.before_all()
            status = self._drive_steps(script, session, steps, extension)
            extension.after_all()
        except Exception as exc:  # pylint: disable=broad-except
            self.logger.error("Replay of %s aborted: %s", script.name, exc)
            status = STATUS_FAILED
            script_error = str(exc)

        report = extension.get_results()
        report.status = status
        report.total_steps_planned = len(steps)
        report.browser_info = self._browser_info()
        if script_error:
            report.error = script_error
        elif status == STATUS_STOPPED:
            report.error = "stopped by user"
        elif status == STATUS_FAILED:
            failure = report.first_failure()
            report.error = f"Step {failure.step_number} ({failure.type}) failed: {failure.error}" if failure else None
        return report

    def _drive_steps(self, script: ScriptRef, session: BrowserSession, steps: List[StepDescriptor],
                     extension: ReplayExtension) -> str:
        for step in steps:
            if self._stop_event.is_set():
                self.logger.info("Stopping %s before step %s", script.name, extension.step_count + 1)
                return STATUS_STOPPED

            record = extension.before_each(step)
            self._current_step = record.step_number
            self.progress.publish(STEP_START, {
                "script": script.name,
                "step": record.step_number,
                "type": step_label(step),
                "description": record.description,
            })
            try:
                self.executor.run(session, step, record.step_number)
            except StepExecutionError as exc:
                extension.after_each(step, exc)
                self.progress.publish(STEP_COMPLETE, self._step_payload(script, record, error=str(exc.cause)))
                return STATUS_FAILED
            extension.after_each(step)
            self.progress.publish(STEP_COMPLETE, self._step_payload(script, record))
        return STATUS_PASSED

    @staticmethod
    def _step_payload(script: ScriptRef, record, error: Optional[str] = None) -> Dict[str, Any]:
        return {
            "script": script.name,
            "step": record.step_number,
            "type": record.type,
            "url": record.final_url or "N/A",
            "completed": record.completed,
            "error": error,
        }

    # -- helpers -----------------------------------------------------------

    def _ensure_session(self) -> BrowserSession:
        session = self.session_manager.session
        if session is not None:
            return session
        return self.session_manager.acquire(self.session_config)

    def _release_session(self) -> None:
        self.console.detach()
        self.session_manager.release()

    def _browser_info(self) -> Dict[str, Any]:
        config = self.session_config
        return {
            "browser": config.browser,
            "headless": config.headless,
            "viewport": {"width": config.viewport_width, "height": config.viewport_height},
            "slow_mo_ms": config.slow_mo_ms,
            "timeout_ms": config.timeout_ms,
        }

    def _failure_report(self, script: ScriptRef, error: str, run_id: Optional[str] = None) -> ExecutionReport:
        now = utc_now()
        return ExecutionReport(
            script=script,
            run_id=run_id or self._build_run_id(script.id),
            status=STATUS_FAILED,
            started_at=now,
            finished_at=now,
            total_execution_time_ms=0,
            error=error,
            browser_info=self._browser_info(),
        )

    def _skipped_report(self, script: ScriptRef, reason: str) -> ExecutionReport:
        report = self._failure_report(script, reason)
        report.status = STATUS_STOPPED
        return report

    def _write_batch_reports(self, result: BatchResult, batch_dir: Path) -> None:
        try:
            write_batch_summary(result, batch_dir)
            generator = BatchReportGenerator()
            generator.generate(result, batch_dir)
            generator.generate_html(result, batch_dir)
        except OSError as exc:
            self.logger.warning("批量报告写入失败: %s", exc)
            result.artifact_errors.append(f"batch reports not written: {exc}")

    @staticmethod
    def _add_artifact_error(report: ExecutionReport, message: str) -> None:
        step = report.steps[-1].step_number if report.steps else 0
        report.errors.append(ErrorEntry(step=step, type="artifact", error=message, timestamp=utc_now()))

    def _submit_results(self, result: BatchResult) -> None:
        if self.result_store is None:
            return
        for report in result.results:
            if report.status == STATUS_RUNNING or not report.started_at:
                continue
            if report.status == STATUS_STOPPED and not report.steps:
                # Never started; nothing to store.
                continue
            try:
                result_id = self.result_store.submit(report)
            except SubmissionFailed as exc:
                self.logger.warning("结果提交失败 %s: %s", report.script.name, exc)
                result.submission_errors.append(f"{report.script.name}: {exc}")
                continue
            if result_id:
                report.artifacts["result_id"] = result_id

    @staticmethod
    def _build_run_id(script_id: str) -> str:
        timestamp = utc_now().strftime("%Y%m%dT%H%M%SZ")
        return f"{timestamp}_{sanitize_name(script_id)}"

    @staticmethod
    def _build_batch_id() -> str:
        timestamp = utc_now().strftime("%Y%m%dT%H%M%S%fZ")
        return f"{timestamp}_batch_run"
