"""Ordered progress events published while a batch runs."""
from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

LOGGER = logging.getLogger("replay_mvp.progress")

STEP_START = "step_start"
STEP_COMPLETE = "step_complete"
SCREENSHOT = "screenshot"
SCRIPT_COMPLETE = "complete"
SCRIPT_ERROR = "error"
PROGRESS = "progress"
BATCH_COMPLETE = "batch_complete"


@dataclass(frozen=True)
class ProgressEvent:
    kind: str
    payload: Any
    sequence: int


Subscriber = Callable[[ProgressEvent], None]


class ProgressChannel:
    """Fan-out of progress events to subscribers, in publication order.

    A failing subscriber is logged and skipped; it never interrupts replay.
    """

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []
        self._sequence = itertools.count(1)

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        self._subscribers.append(subscriber)

        def _unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return _unsubscribe

    def publish(self, kind: str, payload: Any) -> ProgressEvent:
        event = ProgressEvent(kind=kind, payload=payload, sequence=next(self._sequence))
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.warning("Progress subscriber failed on %s: %s", kind, exc)
        return event


class EventLog:
    """Subscriber that keeps every event; handy for UIs polling and for tests."""

    def __init__(self) -> None:
        self.events: List[ProgressEvent] = []

    def __call__(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def kinds(self) -> List[str]:
        return [event.kind for event in self.events]


@dataclass
class ProgressCallbacks:
    """Adapter from the event stream to the ``on_*`` callback surface."""

    on_step_start: Optional[Callable[[Any], None]] = None
    on_step_complete: Optional[Callable[[Any], None]] = None
    on_screenshot: Optional[Callable[[str], None]] = None
    on_complete: Optional[Callable[[Any], None]] = None
    on_error: Optional[Callable[[Any], None]] = None
    on_progress: Optional[Callable[[float], None]] = None
    on_batch_complete: Optional[Callable[[Any], None]] = None

    def __call__(self, event: ProgressEvent) -> None:
        handler = {
            STEP_START: self.on_step_start,
            STEP_COMPLETE: self.on_step_complete,
            SCREENSHOT: self.on_screenshot,
            SCRIPT_COMPLETE: self.on_complete,
            SCRIPT_ERROR: self.on_error,
            PROGRESS: self.on_progress,
            BATCH_COMPLETE: self.on_batch_complete,
        }.get(event.kind)
        if handler is not None:
            handler(event.payload)
