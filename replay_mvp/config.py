"""Environment-driven settings for the replay engine."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Mapping, Optional, Tuple

from .replay_extension import ReplayOptions
from .session import SessionConfig

DEFAULT_VIEWPORT = (1920, 1080)
DEFAULT_TIMEOUT_MS = 30_000

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got '{raw}'")


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got '{raw}'") from exc


def parse_viewport(raw: str) -> Tuple[int, int]:
    """Parse ``WIDTHxHEIGHT``."""
    parts = raw.lower().split("x")
    if len(parts) != 2:
        raise ValueError(f"Viewport must look like WIDTHxHEIGHT, got '{raw}'")
    try:
        width, height = int(parts[0]), int(parts[1])
    except ValueError as exc:
        raise ValueError(f"Viewport must look like WIDTHxHEIGHT, got '{raw}'") from exc
    if width <= 0 or height <= 0:
        raise ValueError(f"Viewport dimensions must be positive, got '{raw}'")
    return width, height


@dataclass
# pylint: disable=too-many-instance-attributes
class EngineSettings:
    """Runtime knobs for the engine, read from ``REPLAY_*`` environment variables."""

    headless: bool = True
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    slow_mo_ms: int = 0
    viewport: Tuple[int, int] = DEFAULT_VIEWPORT
    output_root: Path = field(default_factory=lambda: Path("results"))
    step_screenshots: bool = True
    measure_performance: bool = True
    api_url: Optional[str] = None
    api_key: Optional[str] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "EngineSettings":
        env = os.environ if env is None else env
        viewport_raw = env.get("REPLAY_VIEWPORT")
        return cls(
            headless=_env_bool(env, "REPLAY_HEADLESS", True),
            timeout_ms=_env_int(env, "REPLAY_TIMEOUT_MS", DEFAULT_TIMEOUT_MS),
            slow_mo_ms=_env_int(env, "REPLAY_SLOW_MO_MS", 0),
            viewport=parse_viewport(viewport_raw) if viewport_raw else DEFAULT_VIEWPORT,
            output_root=Path(env.get("REPLAY_OUTPUT_DIR") or "results"),
            step_screenshots=_env_bool(env, "REPLAY_STEP_SCREENSHOTS", True),
            measure_performance=_env_bool(env, "REPLAY_MEASURE_PERFORMANCE", True),
            api_url=env.get("REPLAY_API_URL") or None,
            api_key=env.get("REPLAY_API_KEY") or None,
        )

    def session_config(self) -> SessionConfig:
        return SessionConfig(
            headless=self.headless,
            viewport_width=self.viewport[0],
            viewport_height=self.viewport[1],
            slow_mo_ms=self.slow_mo_ms,
            timeout_ms=self.timeout_ms,
        )

    def replay_options(self) -> ReplayOptions:
        return ReplayOptions(step_screenshots=self.step_screenshots, measure_performance=self.measure_performance)


def setup_logging(log_dir: Optional[Path] = None, debug: bool = False) -> None:
    """设置日志配置。"""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=level)
    if log_dir is None:
        return

    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = TimedRotatingFileHandler(
        log_dir / "replay.log",
        when="midnight",
        encoding="utf-8",
        backupCount=7,
    )
    file_handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
    logging.getLogger().addHandler(file_handler)
