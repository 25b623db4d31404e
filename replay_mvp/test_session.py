"""Tests for browser session ownership."""
from __future__ import annotations

import pytest

from replay_mvp.conftest import FakePage
from replay_mvp.errors import SessionUnavailable
from replay_mvp.session import BrowserSession, SessionConfig


def test_acquire_release_cycle(session_manager_for):
    page = FakePage()
    manager, spy = session_manager_for(page)

    session = manager.acquire(SessionConfig(headless=True))

    assert manager.active and session.is_alive()
    with pytest.raises(SessionUnavailable):
        manager.acquire()

    manager.release()
    manager.release()
    assert not manager.active
    assert page.closed
    assert spy.launches == 1
    with pytest.raises(SessionUnavailable):
        session.ensure_open()


def test_context_manager_releases(session_manager_for):
    page = FakePage()
    manager, _ = session_manager_for(page)

    with manager:
        manager.acquire()

    assert manager.session is None and page.closed


def test_closers_run_in_reverse_and_errors_are_swallowed():
    order = []

    def _boom():
        order.append("context")
        raise RuntimeError("already closed")

    session = BrowserSession(FakePage(), SessionConfig(), closers=[
        lambda: order.append("driver"),
        lambda: order.append("browser"),
        _boom,
    ])
    session.close()
    session.close()

    assert order == ["context", "browser", "driver"]
    assert not session.is_alive()


def test_crashed_page_is_not_alive(session, fake_page):
    fake_page.closed = True

    assert not session.is_alive()
