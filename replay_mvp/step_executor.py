"""Performs one recorded step against a live page."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Iterable, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from .errors import StepAssertionTimeout, StepExecutionError
from .locators import resolve_first
from .steps import (
    AssertedEvent,
    ChangeStep,
    ClickStep,
    NavigateStep,
    OtherStep,
    SetViewportStep,
    StepDescriptor,
    playwright_button,
    step_label,
)


@dataclass
# pylint: disable=too-few-public-methods
class StepExecutorSettings:
    """Runtime knobs for step execution."""

    timeout_ms: int = 30_000
    poll_interval_ms: int = 100
    settle_ms: int = 200  # lets JS handlers run after a click


def _navigation_events(events: Iterable[AssertedEvent]) -> list[AssertedEvent]:
    return [event for event in events if event.type == "navigation"]


class StepExecutor:
    """Dispatches on the step variant and performs the browser action."""

    def __init__(self, settings: Optional[StepExecutorSettings] = None) -> None:
        self.settings = settings or StepExecutorSettings()
        self.logger = logging.getLogger("replay_mvp.executor")

    def run(self, session, step: StepDescriptor, step_number: int) -> None:
        """Run ``step``; any failure is re-raised as :class:`StepExecutionError`."""
        try:
            page = session.ensure_open()
            if isinstance(step, SetViewportStep):
                self._handle_set_viewport(page, step)
            elif isinstance(step, NavigateStep):
                self._handle_navigate(page, step)
            elif isinstance(step, ClickStep):
                self._handle_click(page, step)
            elif isinstance(step, ChangeStep):
                self._handle_change(page, step)
            elif isinstance(step, OtherStep):
                self.logger.info("Step %s: '%s' is not replayed, skipping", step_number, step.raw_type)
            else:  # pragma: no cover - exhaustive over StepDescriptor
                raise TypeError(f"Unsupported step: {step!r}")
        except Exception as exc:
            raise StepExecutionError(step_number, step_label(step), exc) from exc

    def _handle_set_viewport(self, page, step: SetViewportStep) -> None:
        page.set_viewport_size({"width": step.width, "height": step.height})
        if step.device_scale_factor in (1, 1.0) and not step.is_mobile:
            return
        # An open context only takes scale factor and mobile emulation through CDP (Chromium).
        try:
            cdp = page.context.new_cdp_session(page)
        except (PlaywrightError, AttributeError) as exc:
            self.logger.warning("deviceScaleFactor=%s isMobile=%s not applied, CDP unavailable: %s",
                                step.device_scale_factor, step.is_mobile, exc)
            return
        try:
            cdp.send("Emulation.setDeviceMetricsOverride", {
                "width": step.width,
                "height": step.height,
                "deviceScaleFactor": step.device_scale_factor,
                "mobile": step.is_mobile,
            })
        finally:
            cdp.detach()

    def _handle_navigate(self, page, step: NavigateStep) -> None:
        deadline = self._deadline()
        self.logger.info("Navigating to %s", step.url)
        page.goto(step.url, wait_until="networkidle", timeout=self.settings.timeout_ms)
        for event in _navigation_events(step.asserted_events):
            self._verify_navigation(page, event, deadline)

    def _handle_click(self, page, step: ClickStep) -> None:
        timeout = self.settings.timeout_ms
        candidate, locator = resolve_first(page, step.selectors, timeout, self.settings.poll_interval_ms)
        self.logger.info("Clicking %s", candidate.describe())

        kwargs = {"timeout": timeout, "button": playwright_button(step)}
        if step.offset_x is not None and step.offset_y is not None:
            kwargs["position"] = {"x": step.offset_x, "y": step.offset_y}

        self._act_with_navigation(page, step.asserted_events, lambda: locator.click(**kwargs))
        page.wait_for_timeout(self.settings.settle_ms)

    def _handle_change(self, page, step: ChangeStep) -> None:
        timeout = self.settings.timeout_ms
        candidate, locator = resolve_first(page, step.selectors, timeout, self.settings.poll_interval_ms)
        self.logger.info("Setting value of %s", candidate.describe())

        def _set_value() -> None:
            locator.focus(timeout=timeout)
            tag = locator.evaluate("el => el.tagName.toLowerCase()")
            if tag == "select":
                locator.select_option(step.value, timeout=timeout)
            else:
                locator.fill(step.value, timeout=timeout)

        self._act_with_navigation(page, step.asserted_events, _set_value)

    def _act_with_navigation(self, page, events: Iterable[AssertedEvent], action) -> None:
        """Run ``action``; when a navigation was asserted, wait for it to happen."""
        navigations = _navigation_events(events)
        if not navigations:
            action()
            return

        timeout = self.settings.timeout_ms
        deadline = self._deadline()
        action_done = False
        try:
            with page.expect_navigation(timeout=timeout):
                action()
                action_done = True
        except PlaywrightTimeoutError as exc:
            if not action_done:
                raise
            raise StepAssertionTimeout("a navigation", timeout, actual=page.url) from exc
        for event in navigations:
            self._verify_navigation(page, event, deadline)

    def _deadline(self) -> float:
        return time.monotonic() + self.settings.timeout_ms / 1000.0

    @staticmethod
    def _remaining_ms(deadline: float) -> int:
        # Playwright reads timeout=0 as "no timeout", so never go below 1ms.
        return max(int((deadline - time.monotonic()) * 1000), 1)

    def _verify_navigation(self, page, event: AssertedEvent, deadline: float) -> None:
        """Assertions share the step's deadline with the action that preceded them."""
        timeout = self.settings.timeout_ms
        if event.url:
            try:
                page.wait_for_url(event.url, timeout=self._remaining_ms(deadline))
            except PlaywrightTimeoutError as exc:
                raise StepAssertionTimeout(f"navigation to {event.url}", timeout, actual=page.url) from exc
        if event.title:
            try:
                page.wait_for_function("(expected) => document.title === expected", arg=event.title,
                                       timeout=self._remaining_ms(deadline))
            except PlaywrightTimeoutError as exc:
                raise StepAssertionTimeout(f"page title {event.title!r}", timeout) from exc
