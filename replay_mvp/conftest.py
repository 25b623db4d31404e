"""In-process stand-ins for a Playwright page, used by the test modules."""
from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from replay_mvp.errors import SessionUnavailable
from replay_mvp.models import ScriptRef
from replay_mvp.session import BrowserSession, SessionConfig, SessionManager
from replay_mvp.step_executor import StepExecutor, StepExecutorSettings
from replay_mvp.stores import ResultStore, ScriptSource


@dataclass
class FakeElement:
    count: int = 1
    visible: bool = True
    enabled: bool = True
    tag: str = "input"
    on_click: Optional[Callable[["FakePage"], None]] = None
    value: Optional[str] = None


class FakeLocator:
    def __init__(self, page: "FakePage", key: str) -> None:
        self.page = page
        self.key = key

    def _element(self) -> Optional[FakeElement]:
        return self.page.elements.get(self.key)

    def count(self) -> int:
        element = self._element()
        return element.count if element else 0

    def is_visible(self) -> bool:
        element = self._element()
        return bool(element and element.visible)

    def is_enabled(self) -> bool:
        element = self._element()
        return bool(element and element.enabled)

    def locator(self, selector: str) -> "FakeLocator":
        return FakeLocator(self.page, f"{self.key} >> {selector}")

    def get_by_text(self, text: str, exact: bool = False) -> "FakeLocator":
        return FakeLocator(self.page, f"{self.key} >> text={text}")

    def get_by_label(self, text: str, exact: bool = False) -> "FakeLocator":
        return FakeLocator(self.page, f"{self.key} >> label={text}")

    def get_by_role(self, role: str, name: Optional[str] = None, exact: bool = False) -> "FakeLocator":
        return FakeLocator(self.page, f"{self.key} >> role={role}[name={name}]")

    def click(self, **kwargs: Any) -> None:
        self.page.actions.append(("click", self.key, kwargs))
        element = self._element()
        if element and element.on_click:
            element.on_click(self.page)

    def focus(self, timeout: Optional[int] = None) -> None:
        self.page.actions.append(("focus", self.key, {}))

    def evaluate(self, script: str) -> Any:
        return self._element().tag

    def fill(self, value: str, timeout: Optional[int] = None) -> None:
        self._element().value = value
        self.page.actions.append(("fill", self.key, {"value": value}))

    def select_option(self, value: str, timeout: Optional[int] = None) -> None:
        self._element().value = value
        self.page.actions.append(("select", self.key, {"value": value}))


class FakeContext:
    def __init__(self, cdp_metrics: Optional[Dict[str, float]] = None) -> None:
        self.cdp_metrics = cdp_metrics
        self.cdp_sessions: List["FakeCdpSession"] = []

    def new_cdp_session(self, page: "FakePage") -> "FakeCdpSession":
        if self.cdp_metrics is None:
            raise PlaywrightError("CDP session is only available in Chromium")
        cdp = FakeCdpSession(self.cdp_metrics)
        self.cdp_sessions.append(cdp)
        return cdp

    def sent(self) -> List[tuple]:
        return [call for cdp in self.cdp_sessions for call in cdp.sent]


class FakeCdpSession:
    def __init__(self, metrics: Dict[str, float]) -> None:
        self.metrics = metrics
        self.sent: List[tuple] = []
        self.detached = False

    def send(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        self.sent.append((method, params))
        if method == "Performance.getMetrics":
            return {"metrics": [{"name": name, "value": value} for name, value in self.metrics.items()]}
        return {}

    def detach(self) -> None:
        self.detached = True


class FakePage:
    """Enough of ``playwright.sync_api.Page`` for the engine to run against."""

    def __init__(self, url: str = "about:blank", elements: Optional[Dict[str, FakeElement]] = None,
                 cdp_metrics: Optional[Dict[str, float]] = None) -> None:
        self.url = url
        self.page_title = ""
        self.elements: Dict[str, FakeElement] = elements or {}
        self.actions: List[tuple] = []
        self.viewport: Optional[Dict[str, int]] = None
        self.context = FakeContext(cdp_metrics)
        self.evaluate_result: Any = {}
        self.evaluate_error: Optional[Exception] = None
        self.screenshot_error: Optional[Exception] = None
        self.unreachable: set = set()
        self.redirects: Dict[str, str] = {}
        self.goto_delay_s = 0.0
        self.wait_timeouts: List[Optional[int]] = []
        self.listeners: Dict[str, List[Callable]] = {}
        self.closed = False

    # navigation
    def goto(self, url: str, wait_until: Optional[str] = None, timeout: Optional[int] = None) -> None:
        self.actions.append(("goto", url, {"wait_until": wait_until}))
        if self.goto_delay_s:
            time.sleep(self.goto_delay_s)
        if url in self.unreachable:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded navigating to {url}")
        self.url = self.redirects.get(url, url)

    def navigate_to(self, url: str) -> None:
        self.url = url

    def wait_for_url(self, url: str, timeout: Optional[int] = None) -> None:
        self.wait_timeouts.append(timeout)
        if self.url != url:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {url}")

    def wait_for_function(self, script: str, arg: Any = None, timeout: Optional[int] = None) -> None:
        self.wait_timeouts.append(timeout)
        if self.page_title != arg:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded")

    @contextmanager
    def expect_navigation(self, timeout: Optional[int] = None):
        before = self.url
        yield
        if self.url == before:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for navigation")

    def wait_for_timeout(self, timeout: int) -> None:
        time.sleep(timeout / 1000)

    def title(self) -> str:
        return self.page_title

    # locators
    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    def get_by_text(self, text: str, exact: bool = False) -> FakeLocator:
        return FakeLocator(self, f"text={text}")

    def get_by_role(self, role: str, name: Optional[str] = None, exact: bool = False) -> FakeLocator:
        return FakeLocator(self, f"role={role}[name={name}]")

    def get_by_label(self, text: str, exact: bool = False) -> FakeLocator:
        return FakeLocator(self, f"label={text}")

    # misc
    def set_viewport_size(self, size: Dict[str, int]) -> None:
        self.viewport = dict(size)

    def screenshot(self, path: str, full_page: bool = True, type: str = "png") -> bytes:  # pylint: disable=redefined-builtin
        if self.screenshot_error:
            raise self.screenshot_error
        Path(path).write_bytes(b"\x89PNG fake")
        return b"\x89PNG fake"

    def evaluate(self, script: str, arg: Any = None) -> Any:
        if self.evaluate_error:
            raise self.evaluate_error
        return self.evaluate_result

    def is_closed(self) -> bool:
        return self.closed

    # events
    def on(self, event: str, handler: Callable) -> None:
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler: Callable) -> None:
        self.listeners.get(event, []).remove(handler)

    def emit(self, event: str, payload: Any) -> None:
        for handler in list(self.listeners.get(event, [])):
            handler(payload)


class InMemoryScriptSource(ScriptSource):
    def __init__(self, steps_by_id: Dict[str, list]) -> None:
        self.steps_by_id = steps_by_id
        self.fetched: List[str] = []

    def fetch_steps(self, script: ScriptRef) -> list:
        self.fetched.append(script.id)
        steps = self.steps_by_id[script.id]
        if isinstance(steps, Exception):
            raise steps
        return list(steps)


class RecordingResultStore(ResultStore):
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.submitted = []
        self.error = error

    def submit(self, report):
        if self.error:
            raise self.error
        self.submitted.append(report)
        return f"result-{len(self.submitted)}"


@dataclass
class LauncherSpy:
    page_factory: Callable[[], FakePage]
    launches: int = 0
    pages: List[FakePage] = field(default_factory=list)
    fail: bool = False

    def __call__(self, config: SessionConfig) -> BrowserSession:
        if self.fail:
            raise SessionUnavailable("Browser launch failed: no browser installed")
        self.launches += 1
        page = self.page_factory()
        self.pages.append(page)
        return BrowserSession(page, config, closers=[lambda: setattr(page, "closed", True)])


@pytest.fixture
def fake_page() -> FakePage:
    return FakePage(url="https://example.test/")


@pytest.fixture
def session(fake_page) -> BrowserSession:
    return BrowserSession(fake_page, SessionConfig())


@pytest.fixture
def fast_executor() -> StepExecutor:
    return StepExecutor(StepExecutorSettings(timeout_ms=30, poll_interval_ms=5, settle_ms=0))


@pytest.fixture
def session_manager_for():
    """Build a SessionManager whose launcher hands out the given page."""

    def _build(page: FakePage) -> tuple[SessionManager, LauncherSpy]:
        spy = LauncherSpy(page_factory=lambda: page)
        return SessionManager(launcher=spy), spy

    return _build
