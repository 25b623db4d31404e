"""Persists screenshots, run logs and JSON dumps for one script run."""
from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .models import ExecutionReport, utc_now

LOGGER = logging.getLogger("replay_mvp.artifacts")

_UNSAFE_CHARS = re.compile(r"[^\w.-]+")


def file_timestamp(moment: Optional[datetime] = None) -> str:
    """ISO 8601 timestamp with ``:`` and ``.`` replaced so it is safe in file names."""
    moment = moment or utc_now()
    return moment.isoformat().replace("+00:00", "Z").replace(":", "-").replace(".", "-")


def sanitize_name(name: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("-", name.strip()).strip("-")
    return cleaned or "script"


class ArtifactWriter:
    """Writes artifacts below one output directory."""

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = Path(output_dir)

    def _ensure_dir(self) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        return self.output_dir

    def screenshot(self, page, label: str, full_page: bool = True) -> str:
        """Capture a PNG named ``<label>_<timestamp>.png`` and return its path."""
        directory = self._ensure_dir()
        path = directory / f"{sanitize_name(label)}_{file_timestamp()}.png"
        page.screenshot(path=str(path), full_page=full_page, type="png")
        LOGGER.info("Screenshot saved: %s", path)
        return str(path)

    def write_json(self, filename: str, payload: Dict[str, Any]) -> str:
        path = self._ensure_dir() / filename
        with path.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
        return str(path)

    def write_report(self, report: ExecutionReport) -> str:
        filename = f"{sanitize_name(report.script.name)}_data_{file_timestamp()}.json"
        path = self.write_json(filename, report.to_dict())
        LOGGER.info("Execution data written to %s", path)
        return path

    def attach_run_logger(self, logger: logging.Logger, script_name: str) -> Tuple[logging.Handler, str]:
        """Mirror ``logger`` into ``<scriptName>_execution_<timestamp>.log`` for one run."""
        path = self._ensure_dir() / f"{sanitize_name(script_name)}_execution_{file_timestamp()}.log"
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))
        logger.addHandler(handler)
        return handler, str(path)

    @staticmethod
    def detach_run_logger(logger: logging.Logger, handler: Optional[logging.Handler]) -> None:
        if handler:
            logger.removeHandler(handler)
            handler.close()
