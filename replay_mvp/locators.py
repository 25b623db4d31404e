"""Typed locator strategies for recorded selector candidates.

Browser recorders export every target as an ordered list of alternative selectors. Each
alternative is either a plain string or a list of strings describing a path through shadow
roots / frames. Strings carry a strategy prefix (``aria/``, ``xpath/``, ``pierce/``,
``text/``) or are plain CSS. They are parsed once into :class:`LocatorStrategy` objects so
resolution never has to sniff prefixes at run time.
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

from playwright.sync_api import Error as PlaywrightError

from .errors import ElementNotFound, RecordingFormatError

LOGGER = logging.getLogger("replay_mvp.locators")

_ARIA_ROLE_PATTERN = re.compile(r'^(?P<name>.*?)\[role="(?P<role>[^"]+)"\]$')


class LocatorStrategy:
    """Base class: turns one selector expression into a Playwright locator."""

    prefix = ""

    def locate(self, scope: Any):
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class CssLocator(LocatorStrategy):
    selector: str

    def locate(self, scope: Any):
        return scope.locator(self.selector)

    def describe(self) -> str:
        return self.selector


@dataclass(frozen=True)
class XPathLocator(LocatorStrategy):
    expression: str
    prefix = "xpath/"

    def locate(self, scope: Any):
        return scope.locator(f"xpath={self.expression}")

    def describe(self) -> str:
        return f"xpath/{self.expression}"


@dataclass(frozen=True)
class PierceLocator(LocatorStrategy):
    """CSS that crosses open shadow roots; Playwright's CSS engine already pierces them."""

    selector: str
    prefix = "pierce/"

    def locate(self, scope: Any):
        return scope.locator(self.selector)

    def describe(self) -> str:
        return f"pierce/{self.selector}"


@dataclass(frozen=True)
class TextLocator(LocatorStrategy):
    text: str
    prefix = "text/"

    def locate(self, scope: Any):
        return scope.get_by_text(self.text, exact=True)

    def describe(self) -> str:
        return f"text/{self.text}"


@dataclass(frozen=True)
class AriaLocator(LocatorStrategy):
    name: str
    role: Optional[str] = None
    prefix = "aria/"

    def locate(self, scope: Any):
        if self.role:
            return scope.get_by_role(self.role, name=self.name, exact=True)
        # Without a role the name comes from a label or the element's own text.
        # Labels win so a labelled control is not matched twice.
        by_label = scope.get_by_label(self.name, exact=True)
        if by_label.count():
            return by_label
        return scope.get_by_text(self.name, exact=True)

    def describe(self) -> str:
        if self.role:
            return f'aria/{self.name}[role="{self.role}"]'
        return f"aria/{self.name}"


def parse_selector(raw: str) -> LocatorStrategy:
    """Parse one recorder selector string into a strategy."""
    if not isinstance(raw, str) or not raw.strip():
        raise RecordingFormatError(f"Selector must be a non-empty string, got {raw!r}")
    text = raw.strip()
    if text.startswith("aria/"):
        body = text[len("aria/"):]
        match = _ARIA_ROLE_PATTERN.match(body)
        if match:
            return AriaLocator(name=match.group("name"), role=match.group("role"))
        return AriaLocator(name=body)
    if text.startswith("xpath/"):
        return XPathLocator(expression=text[len("xpath/"):])
    if text.startswith("pierce/"):
        return PierceLocator(selector=text[len("pierce/"):])
    if text.startswith("text/"):
        return TextLocator(text=text[len("text/"):])
    return CssLocator(selector=text)


@dataclass(frozen=True)
class SelectorCandidate:
    """One alternative target; multi-part candidates are chained left to right."""

    parts: Tuple[LocatorStrategy, ...]

    @classmethod
    def from_raw(cls, raw: Union[str, Sequence[str]]) -> "SelectorCandidate":
        if isinstance(raw, str):
            return cls(parts=(parse_selector(raw),))
        if isinstance(raw, (list, tuple)) and raw:
            return cls(parts=tuple(parse_selector(item) for item in raw))
        raise RecordingFormatError(f"Unsupported selector candidate: {raw!r}")

    def locate(self, page: Any):
        locator = self.parts[0].locate(page)
        for part in self.parts[1:]:
            locator = part.locate(locator)
        return locator

    def describe(self) -> str:
        return " >> ".join(part.describe() for part in self.parts)


def parse_candidates(raw: Iterable[Union[str, Sequence[str]]]) -> Tuple[SelectorCandidate, ...]:
    return tuple(SelectorCandidate.from_raw(item) for item in raw)


def _single_actionable(candidate: SelectorCandidate, page) -> Optional[Any]:
    try:
        locator = candidate.locate(page)
        if locator.count() != 1:
            return None
        if locator.is_visible() and locator.is_enabled():
            return locator
    except PlaywrightError as exc:
        LOGGER.debug("Locator check for %s failed: %s", candidate.describe(), exc)
    return None


def resolve_first(
    page,
    candidates: Sequence[SelectorCandidate],
    timeout_ms: int,
    poll_interval_ms: int = 100,
) -> Tuple[SelectorCandidate, Any]:
    """Return the first candidate (in recorded order) matching exactly one actionable element.

    Candidates are re-polled every ``poll_interval_ms`` until ``timeout_ms`` has elapsed.
    Every candidate is tried at least once even with a zero timeout.
    """
    if not candidates:
        raise ElementNotFound([], timeout_ms)

    deadline = time.monotonic() + max(timeout_ms, 0) / 1000.0
    while True:
        for candidate in candidates:
            locator = _single_actionable(candidate, page)
            if locator is not None:
                LOGGER.debug("Resolved selector %s", candidate.describe())
                return candidate, locator
        if time.monotonic() >= deadline:
            break
        page.wait_for_timeout(poll_interval_ms)

    attempted: List[str] = [candidate.describe() for candidate in candidates]
    raise ElementNotFound(attempted, timeout_ms)
