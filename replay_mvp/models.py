"""Data models for the replay engine."""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

STATUS_RUNNING = "running"
STATUS_PASSED = "passed"
STATUS_FAILED = "failed"
STATUS_STOPPED = "stopped"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class MonotonicClock:
    """Wall clock that never goes backwards within one script run."""

    def __init__(self) -> None:
        self._last: Optional[datetime] = None

    def now(self) -> datetime:
        current = utc_now()
        if self._last is not None and current < self._last:
            current = self._last
        self._last = current
        return current


@dataclass
class ScriptRef:
    """Identity of one script in a batch."""

    id: str
    name: str
    project_id: Optional[str] = None
    screen_id: Optional[str] = None
    target_url: Optional[str] = None
    source: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "project_id": self.project_id,
            "screen_id": self.screen_id,
            "target_url": self.target_url,
            "source": self.source,
        }


@dataclass
class ExecutionRecord:
    """Outcome of one attempted step."""

    step_number: int
    type: str
    started_at: datetime
    description: str = ""
    url: Optional[str] = None
    completed_at: Optional[datetime] = None
    completed: bool = False
    final_url: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stepNumber": self.step_number,
            "type": self.type,
            "description": self.description,
            "timestamp": _iso(self.started_at),
            "url": self.url,
            "completed": self.completed,
            "completedAt": _iso(self.completed_at),
            "finalUrl": self.final_url,
            "error": self.error,
            "errorType": self.error_type,
        }


@dataclass
class TelemetryEntry:
    """One console, page error or network event."""

    kind: str
    text: str
    timestamp: datetime
    page_url: Optional[str] = None
    stack: Optional[str] = None
    status: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "text": self.text,
            "timestamp": _iso(self.timestamp),
            "url": self.page_url,
            "stack": self.stack,
            "status": self.status,
        }


@dataclass
class ScreenshotArtifact:
    step: int
    label: str
    path: str
    timestamp: datetime
    url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "type": self.label,
            "path": self.path,
            "timestamp": _iso(self.timestamp),
            "url": self.url,
        }


@dataclass
class PerformanceSample:
    step: int
    label: str
    timestamp: datetime
    metrics: Dict[str, float] = field(default_factory=dict)
    url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "type": self.label,
            "timestamp": _iso(self.timestamp),
            "metrics": dict(self.metrics),
            "url": self.url,
        }


@dataclass
class ErrorEntry:
    """Entry of the per-run errors list, keyed by step number."""

    step: int
    type: str
    error: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"step": self.step, "type": self.type, "error": self.error, "timestamp": _iso(self.timestamp)}


@dataclass
class ExecutionReport:
    """Aggregated outcome of replaying one script."""

    script: ScriptRef
    run_id: str
    status: str = STATUS_RUNNING
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    steps: List[ExecutionRecord] = field(default_factory=list)
    screenshots: List[ScreenshotArtifact] = field(default_factory=list)
    performance: List[PerformanceSample] = field(default_factory=list)
    telemetry: List[TelemetryEntry] = field(default_factory=list)
    errors: List[ErrorEntry] = field(default_factory=list)
    total_steps_planned: int = 0
    final_url: Optional[str] = None
    total_execution_time_ms: Optional[int] = None
    error: Optional[str] = None
    artifacts: Dict[str, str] = field(default_factory=dict)
    browser_info: Dict[str, Any] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.status == STATUS_PASSED

    @property
    def completed_steps(self) -> int:
        return sum(1 for record in self.steps if record.completed)

    @property
    def summary(self) -> Dict[str, Any]:
        total_ms = self.total_execution_time_ms
        return {
            "totalSteps": len(self.steps),
            "plannedSteps": self.total_steps_planned,
            "completedSteps": self.completed_steps,
            "totalScreenshots": len(self.screenshots),
            "totalPerformanceMeasurements": len(self.performance),
            "totalErrors": len(self.errors),
            "totalTelemetryEntries": len(self.telemetry),
            "totalExecutionTimeMs": total_ms,
            "totalExecutionTimeFormatted": f"{total_ms}ms" if total_ms is not None else None,
        }

    def first_failure(self) -> Optional[ExecutionRecord]:
        for record in self.steps:
            if record.error:
                return record
        return None

    def snapshot(self) -> "ExecutionReport":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "script": self.script.to_dict(),
            "status": self.status,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "final_url": self.final_url,
            "error": self.error,
            "summary": self.summary,
            "steps": [record.to_dict() for record in self.steps],
            "screenshots": [shot.to_dict() for shot in self.screenshots],
            "performance": [sample.to_dict() for sample in self.performance],
            "console": [entry.to_dict() for entry in self.telemetry],
            "errors": [entry.to_dict() for entry in self.errors],
            "artifacts": dict(self.artifacts),
            "browser_info": dict(self.browser_info),
        }


@dataclass
class BatchResult:
    """Result of one orchestrator run; one report per requested script."""

    batch_id: str
    total_scripts: int
    results: List[ExecutionReport] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    stopped: bool = False
    artifacts_dir: Optional[str] = None
    submission_errors: List[str] = field(default_factory=list)
    artifact_errors: List[str] = field(default_factory=list)

    @property
    def successful(self) -> int:
        return sum(1 for report in self.results if report.passed)

    @property
    def failed(self) -> int:
        return len(self.results) - self.successful

    @property
    def success_rate(self) -> float:
        return self.successful / self.total_scripts * 100 if self.total_scripts > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "total_scripts": self.total_scripts,
            "successful": self.successful,
            "failed": self.failed,
            "success_rate": self.success_rate,
            "stopped": self.stopped,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "submission_errors": list(self.submission_errors),
            "artifact_errors": list(self.artifact_errors),
            "scripts": [{
                "script_id": report.script.id,
                "script_name": report.script.name,
                "status": report.status,
                "steps_completed": report.completed_steps,
                "steps_total": report.total_steps_planned,
                "error": report.error,
                "artifacts": dict(report.artifacts),
            } for report in self.results],
        }
