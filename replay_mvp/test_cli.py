"""Tests for the command-line entry point."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from replay_mvp import cli
from replay_mvp.config import EngineSettings
from replay_mvp.conftest import FakeElement, FakePage, LauncherSpy
from replay_mvp.session import SessionManager

ENV_KEYS = (
    "REPLAY_HEADLESS", "REPLAY_TIMEOUT_MS", "REPLAY_SLOW_MO_MS", "REPLAY_VIEWPORT", "REPLAY_OUTPUT_DIR",
    "REPLAY_STEP_SCREENSHOTS", "REPLAY_MEASURE_PERFORMANCE", "REPLAY_API_URL", "REPLAY_API_KEY",
)


def _write_recording(directory: Path, name: str, steps) -> None:
    (directory / f"{name}.json").write_text(json.dumps({"title": name, "steps": steps}), encoding="utf-8")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(cli, "load_dotenv", lambda: None)


@pytest.fixture
def spy(monkeypatch):
    def _page() -> FakePage:
        page = FakePage()
        page.elements["#buy"] = FakeElement(tag="button")
        return page

    launcher = LauncherSpy(page_factory=_page)
    monkeypatch.setattr("replay_mvp.orchestrator.SessionManager", lambda: SessionManager(launcher=launcher))
    return launcher


@pytest.fixture
def recordings(tmp_path) -> Path:
    directory = tmp_path / "recordings"
    directory.mkdir()
    return directory


def _run(recordings: Path, tmp_path: Path, *extra: str) -> int:
    return cli.main(["--recordings-dir", str(recordings), "--output", str(tmp_path / "out"),
                     "--timeout", "50", "--no-performance", *extra])


def test_exit_code_zero_when_every_script_passes(recordings, tmp_path, spy, capsys):
    _write_recording(recordings, "buy", [
        {"type": "navigate", "url": "https://shop.test/"},
        {"type": "click", "selectors": [["#buy"]]},
    ])

    assert _run(recordings, tmp_path, "--summary") == 0

    assert spy.launches == 1
    assert spy.pages[0].closed
    out = capsys.readouterr().out
    assert '"successful": 1' in out
    assert list((tmp_path / "out" / "results").glob("*.json"))


def test_exit_code_one_when_a_script_fails(recordings, tmp_path, spy):
    _write_recording(recordings, "buy", [{"type": "navigate", "url": "https://shop.test/"}])
    _write_recording(recordings, "broken", [{"type": "click", "selectors": [["#gone"]]}])

    assert _run(recordings, tmp_path, "--no-step-screenshots") == 1


def test_requires_a_script_source():
    assert cli.main([]) == 2


def test_rejects_unknown_recording(recordings):
    _write_recording(recordings, "login", [{"type": "navigate", "url": "https://example.test/"}])

    assert cli.main(["--recordings-dir", str(recordings), "--script", "checkout"]) == 2


def test_empty_recordings_dir_has_nothing_to_run(recordings, tmp_path, spy, caplog):
    assert _run(recordings, tmp_path) == 2

    assert "No scripts to run" in caplog.text
    assert spy.launches == 0


def test_bad_environment_value_is_a_usage_error(recordings, tmp_path, monkeypatch):
    monkeypatch.setenv("REPLAY_VIEWPORT", "wide")

    assert _run(recordings, tmp_path) == 2


def test_bad_viewport_flag_is_a_usage_error(recordings, tmp_path):
    assert _run(recordings, tmp_path, "--viewport", "800") == 2


def test_flags_take_precedence_over_environment():
    env = EngineSettings.from_env({
        "REPLAY_TIMEOUT_MS": "5000",
        "REPLAY_VIEWPORT": "1280x720",
        "REPLAY_OUTPUT_DIR": "/srv/env-out",
        "REPLAY_API_URL": "http://env.test/api",
    })
    args = cli.build_parser().parse_args([
        "--timeout", "100", "--headed", "--viewport", "800x600", "--output", "cli-out", "--no-performance",
    ])

    settings = cli._apply_overrides(args, env)  # pylint: disable=protected-access

    assert settings.timeout_ms == 100
    assert not settings.headless
    assert settings.viewport == (800, 600)
    assert settings.output_root == Path("cli-out")
    assert not settings.measure_performance
    assert settings.api_url == "http://env.test/api"


def test_environment_applies_when_no_flag_is_given():
    env = EngineSettings.from_env({"REPLAY_TIMEOUT_MS": "5000", "REPLAY_HEADLESS": "false"})

    settings = cli._apply_overrides(cli.build_parser().parse_args([]), env)  # pylint: disable=protected-access

    assert settings.timeout_ms == 5000
    assert not settings.headless
    assert settings.viewport == (1920, 1080)
