"""External collaborators: where step sequences come from and where reports go."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from .artifacts import ArtifactWriter, file_timestamp, sanitize_name
from .errors import RecordingFormatError, SubmissionFailed
from .loader import load_recording, parse_recording, parse_recording_text
from .models import STATUS_PASSED, ExecutionReport, ScriptRef
from .steps import StepDescriptor

LOGGER = logging.getLogger("replay_mvp.stores")

DEFAULT_API_TIMEOUT = 10.0


class ScriptSource(ABC):
    """Resolves a script identity to its ordered step descriptors."""

    @abstractmethod
    def fetch_steps(self, script: ScriptRef) -> List[StepDescriptor]:
        raise NotImplementedError


class ResultStore(ABC):
    """Receives finished reports; returns an identifier when the sink provides one."""

    @abstractmethod
    def submit(self, report: ExecutionReport) -> Optional[str]:
        raise NotImplementedError


def to_result_payload(report: ExecutionReport) -> Dict[str, Any]:
    """Shape a report the way the test-result store expects it."""
    data = report.to_dict()
    execution_time = None
    if report.total_execution_time_ms is not None:
        execution_time = round(report.total_execution_time_ms / 1000)

    error_message = report.error
    if error_message is None and not report.passed:
        failure = report.first_failure()
        error_message = failure.error if failure else "Script did not pass"

    screenshot_path = report.screenshots[-1].path if report.screenshots else None
    return {
        "test_script_id": report.script.id,
        "project_id": report.script.project_id,
        "screen_id": report.script.screen_id,
        "status": STATUS_PASSED if report.passed else "failed",
        "execution_data": {
            "steps": data["steps"],
            "assertions": [record for record in data["steps"] if record["errorType"] == "StepAssertionTimeout"],
            "screenshots": data["screenshots"],
            "performance": data["performance"],
            "console": data["console"],
            "errors": data["errors"],
            "summary": data["summary"],
            "final_url": report.final_url,
        },
        "started_at": data["started_at"],
        "completed_at": data["finished_at"],
        "error_message": error_message,
        "execution_time": execution_time,
        "screenshot_path": screenshot_path,
        "browser_info": dict(report.browser_info),
    }


class DirectoryScriptSource(ScriptSource):
    """Every ``*.json`` recording below ``root`` is one script, identified by its stem."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def list_scripts(self, names: Optional[List[str]] = None) -> List[ScriptRef]:
        if not self.root.is_dir():
            raise FileNotFoundError(f"Recordings directory not found: {self.root}")
        refs = [
            ScriptRef(id=path.stem, name=path.stem, source=str(path))
            for path in sorted(self.root.glob("*.json"))
        ]
        if names:
            wanted = [name[:-5] if name.endswith(".json") else name for name in names]
            by_name = {ref.name: ref for ref in refs}
            missing = [name for name in wanted if name not in by_name]
            if missing:
                raise FileNotFoundError(f"Recording(s) not found under '{self.root}': {', '.join(missing)}")
            refs = [by_name[name] for name in wanted]
        return refs

    def fetch_steps(self, script: ScriptRef) -> List[StepDescriptor]:
        path = Path(script.source) if script.source else self.root / f"{script.id}.json"
        return load_recording(path).steps


class JsonResultStore(ResultStore):
    """Writes each submitted report as ``<script>_result_<timestamp>.json``."""

    def __init__(self, root: Path) -> None:
        self.writer = ArtifactWriter(Path(root))

    def submit(self, report: ExecutionReport) -> Optional[str]:
        filename = f"{sanitize_name(report.script.id)}_result_{file_timestamp()}.json"
        try:
            return self.writer.write_json(filename, to_result_payload(report))
        except OSError as exc:
            raise SubmissionFailed(f"Could not write result for {report.script.id}: {exc}") from exc


class ApiClient:
    """Thin HTTP client for the test management API."""

    def __init__(self, base_url: str, api_key: str, timeout: float = DEFAULT_API_TIMEOUT,
                 session: Optional[requests.Session] = None) -> None:
        if not base_url:
            raise ValueError("API base URL is required")
        if not api_key:
            raise ValueError("API key is required")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http = session or requests.Session()
        self.http.headers.update({
            "Authorization": f"Bearer {api_key}",
            "X-API-Key": api_key,
            "Accept": "application/json",
        })

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = self.http.get(self._url(path), params=params, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def post(self, path: str, payload: Dict[str, Any]) -> Any:
        response = self.http.post(self._url(path), json=payload, timeout=self.timeout)
        response.raise_for_status()
        return response.json() if response.content else {}


def _unwrap(body: Any) -> Any:
    while isinstance(body, dict) and "data" in body:
        body = body["data"]
    return body


def _script_ref_from_api(raw: Dict[str, Any]) -> ScriptRef:
    screen = raw.get("screen") or {}
    project_id = raw.get("project_id")
    screen_id = raw.get("screen_id") or screen.get("id")
    return ScriptRef(
        id=str(raw["id"]),
        name=raw.get("name") or str(raw["id"]),
        project_id=str(project_id) if project_id is not None else None,
        screen_id=str(screen_id) if screen_id is not None else None,
        target_url=raw.get("target_url") or screen.get("url"),
    )


class ApiScriptSource(ScriptSource):
    """Loads scripts and their recordings from the test management API."""

    def __init__(self, client: ApiClient) -> None:
        self.client = client

    def list_scripts(self, project_id: Optional[str] = None, screen_id: Optional[str] = None,
                     search: Optional[str] = None) -> List[ScriptRef]:
        params = {key: value for key, value in (("project_id", project_id), ("screen_id", screen_id), ("search", search))
                  if value}
        body = _unwrap(self.client.get("test-scripts", params=params or None))
        if not isinstance(body, list):
            raise RecordingFormatError("Unexpected script listing payload")
        return [_script_ref_from_api(item) for item in body]

    def fetch_steps(self, script: ScriptRef) -> List[StepDescriptor]:
        body = _unwrap(self.client.get(f"test-scripts/{script.id}/content"))
        if isinstance(body, dict) and "content" in body:
            body = body["content"]
        if isinstance(body, str):
            return parse_recording_text(body).steps
        return parse_recording(body).steps


class ApiResultStore(ResultStore):
    def __init__(self, client: ApiClient) -> None:
        self.client = client

    def submit(self, report: ExecutionReport) -> Optional[str]:
        try:
            body = _unwrap(self.client.post("test-results", to_result_payload(report)))
        except (requests.RequestException, ValueError) as exc:
            raise SubmissionFailed(f"Failed to submit result for {report.script.id}: {exc}") from exc
        if isinstance(body, dict) and body.get("id") is not None:
            return str(body["id"])
        return None
