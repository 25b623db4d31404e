"""Ownership of the single browser/page session used by one engine instance."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from .errors import SessionUnavailable

LOGGER = logging.getLogger("replay_mvp.session")


@dataclass(frozen=True)
class SessionConfig:
    """Launch options for one browser session."""

    headless: bool = True
    viewport_width: int = 1920
    viewport_height: int = 1080
    device_scale_factor: float = 1
    slow_mo_ms: int = 0
    timeout_ms: int = 30_000
    browser: str = "chromium"
    launch_args: Tuple[str, ...] = ("--no-sandbox", "--disable-setuid-sandbox")


class BrowserSession:
    """Handle to a live page plus the resources that must be closed with it."""

    def __init__(self, page, config: SessionConfig, closers: Optional[List[Callable[[], None]]] = None) -> None:
        self.page = page
        self.config = config
        self._closers = closers or []
        self.closed = False

    def ensure_open(self):
        """Return the page, or raise :class:`SessionUnavailable` once released."""
        if self.closed:
            raise SessionUnavailable("Browser session has been released")
        return self.page

    def is_alive(self) -> bool:
        if self.closed:
            return False
        try:
            return not self.page.is_closed()
        except PlaywrightError:
            return False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # Close in reverse order of creation: context, browser, playwright driver.
        for closer in reversed(self._closers):
            try:
                closer()
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.warning("Error while closing browser resource: %s", exc)


def launch_playwright_session(config: SessionConfig) -> BrowserSession:
    """Start Playwright, launch the configured browser and open one page."""
    closers: List[Callable[[], None]] = []
    try:
        playwright = sync_playwright().start()
        closers.append(playwright.stop)

        browser_type = getattr(playwright, config.browser, None)
        if browser_type is None:
            raise ValueError(f"Unsupported browser: {config.browser}")
        launch_kwargs = {"headless": config.headless, "slow_mo": config.slow_mo_ms}
        if config.browser == "chromium":
            launch_kwargs["args"] = list(config.launch_args)
        browser = browser_type.launch(**launch_kwargs)
        closers.append(browser.close)

        context = browser.new_context(
            viewport={"width": config.viewport_width, "height": config.viewport_height},
            device_scale_factor=config.device_scale_factor,
        )
        closers.append(context.close)

        page = context.new_page()
        page.set_default_timeout(config.timeout_ms)
        page.set_default_navigation_timeout(config.timeout_ms)
    except Exception as exc:
        LOGGER.error("Browser launch failed: %s", exc)
        BrowserSession(None, config, closers).close()
        raise SessionUnavailable(f"Browser launch failed: {exc}") from exc

    return BrowserSession(page, config, closers)


class SessionManager:
    """Launches and closes the session; at most one is active at a time."""

    def __init__(self, launcher: Optional[Callable[[SessionConfig], BrowserSession]] = None) -> None:
        self._launcher = launcher or launch_playwright_session
        self._session: Optional[BrowserSession] = None

    @property
    def session(self) -> Optional[BrowserSession]:
        return self._session

    @property
    def active(self) -> bool:
        return self._session is not None

    def acquire(self, config: Optional[SessionConfig] = None) -> BrowserSession:
        if self._session is not None:
            raise SessionUnavailable("A browser session is already active")
        config = config or SessionConfig()
        LOGGER.info(
            "Launching %s (headless=%s, viewport=%sx%s, slow_mo=%sms, timeout=%sms)",
            config.browser,
            config.headless,
            config.viewport_width,
            config.viewport_height,
            config.slow_mo_ms,
            config.timeout_ms,
        )
        self._session = self._launcher(config)
        return self._session

    def release(self) -> None:
        session, self._session = self._session, None
        if session is None:
            return
        LOGGER.info("Closing browser session")
        session.close()

    def __enter__(self) -> "SessionManager":
        return self

    def __exit__(self, exc_type, exc, traceback) -> None:
        self.release()
