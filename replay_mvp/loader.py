"""Helpers for loading recorded step sequences."""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

from jsonschema import Draft7Validator, ValidationError

from .errors import RecordingFormatError
from .steps import StepDescriptor, parse_step

# Envelope only; per-step fields are checked by parse_step so errors name the step type.
RECORDING_SCHEMA = {
    "type": "object",
    "required": ["steps"],
    "properties": {
        "title": {"type": ["string", "null"]},
        "steps": {
            "type": "array",
            "items": {"type": "object"},
        },
    },
}

_VALIDATOR = Draft7Validator(RECORDING_SCHEMA)


@dataclass
class Recording:
    """A recorder export: a title and its ordered steps."""

    title: Optional[str]
    steps: List[StepDescriptor]


def _ensure_path(source: Any) -> Path:
    if isinstance(source, (str, Path)):
        return Path(source)
    raise TypeError(f"Unsupported path type: {type(source)!r}")


def load_json(source: Any) -> Any:
    path = _ensure_path(source)
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _format_validation_error(error: ValidationError) -> str:
    path = "->".join(str(part) for part in error.path)
    location = f"at `{path}`: " if path else ""
    return f"{location}{error.message}"


def validate_recording(payload: Any) -> None:
    errors = sorted(_VALIDATOR.iter_errors(payload), key=lambda e: [str(part) for part in e.path])
    if errors:
        messages = [_format_validation_error(error) for error in errors]
        raise RecordingFormatError("Invalid recording: " + "; ".join(messages))


def parse_recording(raw: Any) -> Recording:
    """Accepts ``{"title": ..., "steps": [...]}`` or a bare list of steps."""
    if isinstance(raw, list):
        raw = {"steps": raw}
    validate_recording(raw)

    steps: List[StepDescriptor] = []
    for position, raw_step in enumerate(raw["steps"], start=1):
        try:
            steps.append(parse_step(raw_step))
        except RecordingFormatError as exc:
            raise RecordingFormatError(f"Step {position}: {exc}") from exc

    if not steps:
        raise RecordingFormatError("Recording contains no steps")

    return Recording(title=raw.get("title"), steps=steps)


def parse_recording_text(text: str) -> Recording:
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        raise RecordingFormatError(f"Recording is not valid JSON: {exc}") from exc
    return parse_recording(raw)


def load_recording(source: Any) -> Recording:
    path = _ensure_path(source)
    if not path.is_file():
        raise FileNotFoundError(f"Recording '{path}' not found")
    try:
        raw = load_json(path)
    except json.JSONDecodeError as exc:
        raise RecordingFormatError(f"Recording '{path}' is not valid JSON: {exc}") from exc
    return parse_recording(raw)
