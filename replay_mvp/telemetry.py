"""Console/error and performance telemetry captured from a live page."""
from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from playwright.sync_api import Error as PlaywrightError

from .models import MonotonicClock, TelemetryEntry

LOGGER = logging.getLogger("replay_mvp.console")
PERF_LOGGER = logging.getLogger("replay_mvp.performance")

KIND_LOG = "log"
KIND_WARNING = "warning"
KIND_ERROR = "error"
KIND_NETWORK_ERROR = "networkError"
KINDS = (KIND_LOG, KIND_WARNING, KIND_ERROR, KIND_NETWORK_ERROR)


def _safe_page_url(page) -> Optional[str]:
    try:
        return page.url
    except PlaywrightError:
        return None


class ConsoleCollector:
    """Accumulates console messages, page errors and failed network traffic.

    Entries are appended from inside the Playwright event callbacks, so they land in the
    order the browser emitted them. ``clock`` may be swapped per script run so the entries
    share a timeline with the rest of the report.
    """

    def __init__(self, clock: Optional[MonotonicClock] = None) -> None:
        self.clock = clock or MonotonicClock()
        self._entries: List[TelemetryEntry] = []
        self._page = None
        self._listeners: List[Tuple[str, Callable[[Any], None]]] = []

    @property
    def attached(self) -> bool:
        return self._page is not None

    def attach(self, page) -> None:
        if self._page is page:
            return
        if self._page is not None:
            self.detach()
        self._page = page
        self._listeners = [
            ("console", self._on_console),
            ("pageerror", self._on_page_error),
            ("response", self._on_response),
            ("requestfailed", self._on_request_failed),
        ]
        for event, handler in self._listeners:
            page.on(event, handler)

    def detach(self) -> None:
        if self._page is None:
            return
        for event, handler in self._listeners:
            try:
                self._page.remove_listener(event, handler)
            except PlaywrightError as exc:  # pragma: no cover - page already gone
                LOGGER.debug("Failed to remove %s listener: %s", event, exc)
        self._listeners = []
        self._page = None

    def _append(self, kind: str, text: str, stack: Optional[str] = None, status: Optional[int] = None) -> None:
        entry = TelemetryEntry(
            kind=kind,
            text=text,
            timestamp=self.clock.now(),
            page_url=_safe_page_url(self._page) if self._page is not None else None,
            stack=stack,
            status=status,
        )
        self._entries.append(entry)
        if kind == KIND_LOG:
            LOGGER.debug("Console log: %s", text)
        elif kind == KIND_WARNING:
            LOGGER.info("Console warning: %s", text)
        else:
            LOGGER.warning("%s: %s", "HTTP error" if kind == KIND_NETWORK_ERROR else "Console error", text)

    def _on_console(self, message) -> None:
        message_type = message.type
        if message_type == "error":
            kind = KIND_ERROR
        elif message_type in ("warning", "warn"):
            kind = KIND_WARNING
        else:
            kind = KIND_LOG
        self._append(kind, message.text)

    def _on_page_error(self, error) -> None:
        text = getattr(error, "message", None) or str(error)
        self._append(KIND_ERROR, f"Page Error: {text}", stack=getattr(error, "stack", None))

    def _on_response(self, response) -> None:
        status = response.status
        if status >= 400:
            self._append(KIND_NETWORK_ERROR, f"HTTP {status}: {response.url}", status=status)

    def _on_request_failed(self, request) -> None:
        failure = request.failure
        self._append(KIND_NETWORK_ERROR, f"Request Failed: {request.url} - {failure or 'unknown error'}")

    @property
    def entries(self) -> List[TelemetryEntry]:
        return list(self._entries)

    def entries_by_kind(self, kind: str) -> List[TelemetryEntry]:
        return [entry for entry in self._entries if entry.kind == kind]

    def get_summary(self) -> Dict[str, int]:
        summary = {kind: 0 for kind in KINDS}
        for entry in self._entries:
            summary[entry.kind] = summary.get(entry.kind, 0) + 1
        summary["total"] = len(self._entries)
        return summary

    def clear(self) -> None:
        self._entries = []

    def export_json(self) -> str:
        return json.dumps([entry.to_dict() for entry in self._entries], ensure_ascii=False, indent=2)


_NAVIGATION_TIMING_SCRIPT = """
() => {
    const result = {};
    const timing = performance.timing;
    if (timing && timing.navigationStart) {
        if (timing.domContentLoadedEventEnd) {
            result.domContentLoaded = timing.domContentLoadedEventEnd - timing.navigationStart;
        }
        if (timing.loadEventEnd) {
            result.pageLoad = timing.loadEventEnd - timing.navigationStart;
        }
    }
    const nav = performance.getEntriesByType('navigation')[0];
    if (nav) {
        result.dnsLookup = nav.domainLookupEnd - nav.domainLookupStart;
        result.tcpConnect = nav.connectEnd - nav.connectStart;
        result.serverResponse = nav.responseEnd - nav.requestStart;
        result.domProcessing = nav.domContentLoadedEventEnd - nav.responseEnd;
        result.resourceLoading = nav.loadEventEnd - nav.domContentLoadedEventEnd;
    }
    return result;
}
"""

_PAINT_TIMING_SCRIPT = """
() => {
    const result = {};
    for (const entry of performance.getEntriesByType('paint')) {
        if (entry.name === 'first-paint') result.firstPaint = entry.startTime;
        if (entry.name === 'first-contentful-paint') result.firstContentfulPaint = entry.startTime;
    }
    return result;
}
"""

_MEMORY_SCRIPT = """
() => {
    const memory = performance.memory;
    if (!memory) return {};
    return {JSHeapUsedSize: memory.usedJSHeapSize, JSHeapTotalSize: memory.totalJSHeapSize};
}
"""

_RESOURCE_TIMING_SCRIPT = """
() => performance.getEntriesByType('resource').map((resource) => ({
    name: resource.name,
    duration: resource.duration,
    size: resource.transferSize,
    type: resource.initiatorType,
    startTime: resource.startTime,
    endTime: resource.responseEnd,
}))
"""

CDP_METRICS = (
    "Documents",
    "Frames",
    "JSEventListeners",
    "Nodes",
    "LayoutCount",
    "RecalcStyleCount",
    "LayoutDuration",
    "RecalcStyleDuration",
    "ScriptDuration",
    "TaskDuration",
    "JSHeapUsedSize",
    "JSHeapTotalSize",
)


def _numeric_only(raw: Any) -> Dict[str, float]:
    if not isinstance(raw, dict):
        return {}
    result: Dict[str, float] = {}
    for key, value in raw.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        result[str(key)] = float(value)
    return result


class PerformanceCollector:
    """Best-effort performance snapshots; unavailable sources are simply omitted."""

    def measure(self, page) -> Dict[str, float]:
        metrics: Dict[str, float] = {}
        cdp_metrics = self._cdp_metrics(page)
        metrics.update(cdp_metrics)
        if "JSHeapUsedSize" not in metrics:
            metrics.update(self._evaluate(page, _MEMORY_SCRIPT, "memory"))
        metrics.update(self._evaluate(page, _NAVIGATION_TIMING_SCRIPT, "navigation timing"))
        metrics.update(self._evaluate(page, _PAINT_TIMING_SCRIPT, "paint timing"))
        return metrics

    def resource_timing(self, page) -> List[Dict[str, Any]]:
        try:
            entries = page.evaluate(_RESOURCE_TIMING_SCRIPT)
        except PlaywrightError as exc:
            PERF_LOGGER.debug("Resource timing unavailable: %s", exc)
            return []
        return entries if isinstance(entries, list) else []

    @staticmethod
    def _evaluate(page, script: str, source: str) -> Dict[str, float]:
        try:
            return _numeric_only(page.evaluate(script))
        except PlaywrightError as exc:
            PERF_LOGGER.debug("%s unavailable: %s", source, exc)
            return {}

    @staticmethod
    def _cdp_metrics(page) -> Dict[str, float]:
        """Chromium DevTools counters; other engines have no CDP session."""
        try:
            client = page.context.new_cdp_session(page)
        except (PlaywrightError, AttributeError) as exc:
            PERF_LOGGER.debug("CDP session unavailable: %s", exc)
            return {}
        try:
            client.send("Performance.enable")
            response = client.send("Performance.getMetrics")
        except PlaywrightError as exc:
            PERF_LOGGER.debug("CDP metrics unavailable: %s", exc)
            return {}
        finally:
            try:
                client.detach()
            except PlaywrightError as exc:  # pragma: no cover - page already gone
                PERF_LOGGER.debug("CDP detach failed: %s", exc)
        raw = {item.get("name"): item.get("value") for item in (response or {}).get("metrics", [])}
        return _numeric_only({name: raw[name] for name in CDP_METRICS if name in raw})
