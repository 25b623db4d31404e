"""Error taxonomy for the replay engine."""
from __future__ import annotations

from typing import Optional, Sequence


class ReplayError(RuntimeError):
    """Base class for every error raised by the replay engine."""


class RecordingFormatError(ReplayError):
    """Raised when a recording cannot be turned into step descriptors."""


class ElementNotFound(ReplayError):
    """No selector candidate resolved to a single visible, enabled element."""

    def __init__(self, candidates: Sequence[str], timeout_ms: Optional[int] = None) -> None:
        self.candidates = list(candidates)
        self.timeout_ms = timeout_ms
        tried = ", ".join(self.candidates) if self.candidates else "<none>"
        suffix = f" within {timeout_ms}ms" if timeout_ms is not None else ""
        super().__init__(f"No element matched any selector candidate{suffix} (tried: {tried})")


class StepAssertionTimeout(ReplayError):
    """An asserted follow-on event did not happen before the timeout."""

    def __init__(self, expectation: str, timeout_ms: int, actual: Optional[str] = None) -> None:
        self.expectation = expectation
        self.timeout_ms = timeout_ms
        self.actual = actual
        message = f"Expected {expectation} within {timeout_ms}ms"
        if actual:
            message += f" (last seen: {actual})"
        super().__init__(message)


class SessionUnavailable(ReplayError):
    """The browser session is already active, closed or could not be launched."""


class AlreadyRunning(ReplayError):
    """A batch run is already in progress on this orchestrator."""


class SubmissionFailed(ReplayError):
    """The external result store rejected or could not receive a report."""


class ReplayStateError(ReplayError):
    """A lifecycle hook was invoked out of order."""


class StepExecutionError(ReplayError):
    """Wraps any failure of a single step with its ordinal and type."""

    def __init__(self, step_number: int, step_type: str, cause: BaseException) -> None:
        self.step_number = step_number
        self.step_type = step_type
        self.cause = cause
        super().__init__(f"Step {step_number} ({step_type}) failed: {cause}")

    @property
    def error_type(self) -> str:
        return type(self.cause).__name__
