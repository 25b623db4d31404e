"""Step vocabulary consumed by the replay engine.

Every recorded action is one of a closed set of frozen dataclasses sharing a ``type``
discriminator. :func:`parse_step` is the only place where the raw recording dict shape is
interpreted.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

from .errors import RecordingFormatError
from .locators import SelectorCandidate, parse_candidates


@dataclass(frozen=True)
class AssertedEvent:
    """An event the recorder observed right after the step (e.g. a navigation)."""

    type: str
    url: Optional[str] = None
    title: Optional[str] = None

    def describe(self) -> str:
        parts = [self.type]
        if self.url:
            parts.append(f"url={self.url}")
        if self.title:
            parts.append(f"title={self.title!r}")
        return " ".join(parts)


@dataclass(frozen=True)
class SetViewportStep:
    width: int
    height: int
    device_scale_factor: float = 1
    is_mobile: bool = False
    has_touch: bool = False
    is_landscape: bool = False
    type: str = field(default="setViewport", init=False)

    def describe(self) -> str:
        return f"Set viewport to {self.width}x{self.height}"


@dataclass(frozen=True)
class NavigateStep:
    url: str
    asserted_events: Tuple[AssertedEvent, ...] = ()
    type: str = field(default="navigate", init=False)

    def describe(self) -> str:
        return f"Navigate to {self.url}"


@dataclass(frozen=True)
class ClickStep:
    selectors: Tuple[SelectorCandidate, ...]
    offset_x: Optional[float] = None
    offset_y: Optional[float] = None
    button: str = "primary"
    asserted_events: Tuple[AssertedEvent, ...] = ()
    type: str = field(default="click", init=False)

    def describe(self) -> str:
        target = self.selectors[0].describe() if self.selectors else "element"
        return f"Click on {target}"


@dataclass(frozen=True)
class ChangeStep:
    selectors: Tuple[SelectorCandidate, ...]
    value: str
    asserted_events: Tuple[AssertedEvent, ...] = ()
    type: str = field(default="change", init=False)

    def describe(self) -> str:
        return f'Change value to "{self.value}"'


@dataclass(frozen=True)
class OtherStep:
    """A recorded step outside the supported vocabulary; replayed as a no-op."""

    raw_type: str
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    type: str = field(default="other", init=False)

    def describe(self) -> str:
        return f"{self.raw_type} action (not replayed)"


StepDescriptor = Union[SetViewportStep, NavigateStep, ClickStep, ChangeStep, OtherStep]

_BUTTONS = {"primary": "left", "auxiliary": "middle", "secondary": "right"}


def playwright_button(step: ClickStep) -> str:
    return _BUTTONS.get(step.button, "left")


def step_label(step: StepDescriptor) -> str:
    """Type name used in screenshot labels and records."""
    if isinstance(step, OtherStep):
        return step.raw_type
    return step.type


def _parse_asserted_events(raw: Dict[str, Any]) -> Tuple[AssertedEvent, ...]:
    events = raw.get("assertedEvents") or []
    if not isinstance(events, list):
        raise RecordingFormatError("'assertedEvents' must be a list")
    parsed = []
    for event in events:
        if not isinstance(event, dict) or not event.get("type"):
            raise RecordingFormatError(f"Invalid asserted event: {event!r}")
        parsed.append(AssertedEvent(type=event["type"], url=event.get("url"), title=event.get("title")))
    return tuple(parsed)


def _require(raw: Dict[str, Any], key: str, step_type: str) -> Any:
    value = raw.get(key)
    if value is None or value == "":
        raise RecordingFormatError(f"{step_type} step missing '{key}'")
    return value


def _parse_selectors(raw: Dict[str, Any], step_type: str) -> Tuple[SelectorCandidate, ...]:
    selectors = raw.get("selectors")
    if not selectors:
        raise RecordingFormatError(f"{step_type} step missing 'selectors'")
    if not isinstance(selectors, list):
        raise RecordingFormatError(f"{step_type} step 'selectors' must be a list")
    return parse_candidates(selectors)


def _optional_float(raw: Dict[str, Any], key: str) -> Optional[float]:
    value = raw.get(key)
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise RecordingFormatError(f"'{key}' must be numeric, got {value!r}") from exc


def parse_step(raw: Dict[str, Any]) -> StepDescriptor:
    if not isinstance(raw, dict):
        raise RecordingFormatError("Each step must be an object")
    step_type = raw.get("type")
    if not step_type:
        raise RecordingFormatError("Each step requires a 'type' field")

    if step_type == "setViewport":
        try:
            width = int(_require(raw, "width", step_type))
            height = int(_require(raw, "height", step_type))
        except (TypeError, ValueError) as exc:
            raise RecordingFormatError("setViewport width/height must be integers") from exc
        return SetViewportStep(
            width=width,
            height=height,
            device_scale_factor=raw.get("deviceScaleFactor") or 1,
            is_mobile=bool(raw.get("isMobile", False)),
            has_touch=bool(raw.get("hasTouch", False)),
            is_landscape=bool(raw.get("isLandscape", False)),
        )
    if step_type == "navigate":
        return NavigateStep(url=str(_require(raw, "url", step_type)), asserted_events=_parse_asserted_events(raw))
    if step_type == "click":
        return ClickStep(
            selectors=_parse_selectors(raw, step_type),
            offset_x=_optional_float(raw, "offsetX"),
            offset_y=_optional_float(raw, "offsetY"),
            button=raw.get("button") or "primary",
            asserted_events=_parse_asserted_events(raw),
        )
    if step_type == "change":
        value = raw.get("value")
        if value is None:
            raise RecordingFormatError("change step missing 'value'")
        return ChangeStep(
            selectors=_parse_selectors(raw, step_type),
            value=str(value),
            asserted_events=_parse_asserted_events(raw),
        )
    return OtherStep(raw_type=str(step_type), raw=dict(raw))
