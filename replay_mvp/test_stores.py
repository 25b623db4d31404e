"""Tests for the result payload and the external stores."""
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest
import requests

from replay_mvp.errors import SubmissionFailed
from replay_mvp.models import (
    STATUS_PASSED,
    STATUS_STOPPED,
    ExecutionRecord,
    ExecutionReport,
    ScreenshotArtifact,
    ScriptRef,
)
from replay_mvp.steps import NavigateStep
from replay_mvp.stores import ApiClient, ApiResultStore, ApiScriptSource, JsonResultStore, to_result_payload

STARTED = datetime(2024, 5, 1, 8, 30, tzinfo=timezone.utc)


def _report(status=STATUS_PASSED, error=None):
    script = ScriptRef(id="17", name="login", project_id="3", screen_id="9")
    report = ExecutionReport(script=script, run_id="run-17", status=status, started_at=STARTED,
                             finished_at=STARTED + timedelta(seconds=4), total_execution_time_ms=3600)
    report.steps.append(ExecutionRecord(step_number=1, type="navigate", started_at=STARTED, completed=True,
                                        final_url="https://example.test/login"))
    if error:
        report.steps.append(ExecutionRecord(step_number=2, type="click", started_at=STARTED, error=error,
                                            error_type="ElementNotFound"))
    report.screenshots.append(ScreenshotArtifact(step=3, label="final", path="/tmp/final.png", timestamp=STARTED))
    return report


class FakeResponse:
    def __init__(self, body, status_code=200):
        self.body = body
        self.status_code = status_code
        self.content = json.dumps(body).encode() if body is not None else b""

    def json(self):
        return self.body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")


class FakeHttp:
    def __init__(self, responses):
        self.headers = {}
        self.responses = list(responses)
        self.calls = []

    def _next(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        return self._next("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, **kwargs)


def test_payload_for_passed_report():
    payload = to_result_payload(_report())

    assert payload["test_script_id"] == "17"
    assert (payload["project_id"], payload["screen_id"]) == ("3", "9")
    assert payload["status"] == "passed"
    assert payload["execution_time"] == 4
    assert payload["error_message"] is None
    assert payload["screenshot_path"] == "/tmp/final.png"
    assert payload["started_at"] == "2024-05-01T08:30:00+00:00"
    assert payload["execution_data"]["summary"]["completedSteps"] == 1


def test_payload_for_failed_and_stopped_reports():
    failed = to_result_payload(_report(status="failed", error="No element matched"))
    stopped = to_result_payload(_report(status=STATUS_STOPPED))

    assert failed["status"] == "failed"
    assert failed["error_message"] == "No element matched"
    assert stopped["status"] == "failed"
    assert stopped["error_message"] == "Script did not pass"


def test_json_store_writes_one_file_per_report(tmp_path):
    store = JsonResultStore(tmp_path)

    path = store.submit(_report())

    assert path.startswith(str(tmp_path / "17_result_"))
    assert json.loads(open(path, encoding="utf-8").read())["test_script_id"] == "17"


def test_api_client_sends_credentials():
    http = FakeHttp([FakeResponse({"data": []})])
    client = ApiClient("http://api.test/api/", "secret", session=http)

    client.get("test-scripts")

    assert http.headers["Authorization"] == "Bearer secret"
    assert http.headers["X-API-Key"] == "secret"
    assert http.calls[0][1] == "http://api.test/api/test-scripts"


def test_api_client_requires_key():
    with pytest.raises(ValueError):
        ApiClient("http://api.test", "")


def test_api_script_source_lists_and_fetches():
    listing = {"data": [{"id": 5, "name": "Checkout", "project_id": 2, "screen": {"id": 11, "url": "https://shop.test/"}}]}
    content = {"data": {"content": json.dumps({"steps": [{"type": "navigate", "url": "https://shop.test/cart"}]})}}
    http = FakeHttp([FakeResponse(listing), FakeResponse(content)])
    source = ApiScriptSource(ApiClient("http://api.test/api", "k", session=http))

    scripts = source.list_scripts(project_id="2")
    steps = source.fetch_steps(scripts[0])

    ref = scripts[0]
    assert (ref.id, ref.name, ref.project_id, ref.screen_id, ref.target_url) == ("5", "Checkout", "2", "11", "https://shop.test/")
    assert http.calls[0][2]["params"] == {"project_id": "2"}
    assert http.calls[1][1] == "http://api.test/api/test-scripts/5/content"
    assert steps == [NavigateStep(url="https://shop.test/cart")]


def test_api_result_store_returns_id():
    http = FakeHttp([FakeResponse({"data": {"id": 88}})])
    store = ApiResultStore(ApiClient("http://api.test/api", "k", session=http))

    assert store.submit(_report()) == "88"
    method, url, kwargs = http.calls[0]
    assert (method, url) == ("POST", "http://api.test/api/test-results")
    assert kwargs["json"]["status"] == "passed"


@pytest.mark.parametrize("response", [
    FakeResponse({"message": "unavailable"}, status_code=503),
    requests.ConnectionError("connection refused"),
])
def test_api_result_store_wraps_failures(response):
    store = ApiResultStore(ApiClient("http://api.test/api", "k", session=FakeHttp([response])))

    with pytest.raises(SubmissionFailed):
        store.submit(_report())
