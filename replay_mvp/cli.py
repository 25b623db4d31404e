"""Command-line interface for the replay engine."""
from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from pathlib import Path
from typing import List, Sequence

import requests
from dotenv import load_dotenv

from .config import EngineSettings, parse_viewport, setup_logging
from .errors import ReplayError
from .models import BatchResult, ScriptRef
from .orchestrator import BatchOrchestrator, OrchestratorOptions
from .progress import ProgressCallbacks
from .stores import ApiClient, ApiResultStore, ApiScriptSource, DirectoryScriptSource, JsonResultStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Replay recorded browser scripts and capture telemetry")
    parser.add_argument(
        "--recordings-dir",
        help="Directory of recorder JSON exports (one script per file)",
    )
    parser.add_argument(
        "--script",
        action="append",
        default=[],
        help="Script name (file stem) or API script id to run; repeatable (default: all)",
    )
    parser.add_argument(
        "--project",
        help="Only run API scripts of this project id",
    )
    parser.add_argument(
        "--output",
        help="Directory where run artifacts will be stored (default: env REPLAY_OUTPUT_DIR or results)",
    )
    parser.add_argument(
        "--headed",
        action="store_true",
        help="Run browser in headed mode (default is headless)",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        help="Default Playwright timeout in milliseconds",
    )
    parser.add_argument(
        "--slow-mo",
        type=int,
        help="Delay in milliseconds added to every browser operation",
    )
    parser.add_argument(
        "--viewport",
        help="Initial viewport as WIDTHxHEIGHT (default: 1920x1080)",
    )
    parser.add_argument(
        "--no-step-screenshots",
        action="store_true",
        help="Disable screenshots around every step",
    )
    parser.add_argument(
        "--no-performance",
        action="store_true",
        help="Disable performance sampling",
    )
    parser.add_argument(
        "--stop-on-failure",
        action="store_true",
        help="Skip remaining scripts after the first failed script",
    )
    parser.add_argument(
        "--api-url",
        help="Base URL of the test management API (e.g. http://localhost:8000/api)",
    )
    parser.add_argument(
        "--api-key",
        help="API key for the test management API",
    )
    parser.add_argument(
        "--log-dir",
        help="Also write a daily rotating log file into this directory",
    )
    parser.add_argument(
        "--summary",
        action="store_true",
        help="Print the batch summary JSON to stdout upon completion",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def _apply_overrides(args, settings: EngineSettings) -> EngineSettings:
    if args.output:
        settings.output_root = Path(args.output)
    if args.headed:
        settings.headless = False
    if args.timeout is not None:
        settings.timeout_ms = args.timeout
    if args.slow_mo is not None:
        settings.slow_mo_ms = args.slow_mo
    if args.viewport:
        settings.viewport = parse_viewport(args.viewport)
    if args.no_step_screenshots:
        settings.step_screenshots = False
    if args.no_performance:
        settings.measure_performance = False
    if args.api_url:
        settings.api_url = args.api_url
    if args.api_key:
        settings.api_key = args.api_key
    return settings


def _build_orchestrator(args, settings: EngineSettings) -> tuple[BatchOrchestrator, List[ScriptRef]]:
    if settings.api_url:
        client = ApiClient(settings.api_url, settings.api_key or "")
        source = ApiScriptSource(client)
        scripts = source.list_scripts(project_id=args.project)
        if args.script:
            wanted = set(args.script)
            scripts = [ref for ref in scripts if ref.id in wanted or ref.name in wanted]
        orchestrator = BatchOrchestrator(source, ApiResultStore(client), output_root=settings.output_root)
        return orchestrator, scripts

    if not args.recordings_dir:
        raise ValueError("Either --recordings-dir or --api-url (REPLAY_API_URL) is required")
    source = DirectoryScriptSource(Path(args.recordings_dir))
    scripts = source.list_scripts(args.script or None)
    store = JsonResultStore(settings.output_root / "results")
    orchestrator = BatchOrchestrator(source, store, output_root=settings.output_root)
    return orchestrator, scripts


def _console_callbacks() -> ProgressCallbacks:
    def _on_step_start(payload) -> None:
        print(f"  → [{payload['script']}] 步骤 {payload['step']}: {payload['description']}")

    def _on_step_complete(payload) -> None:
        if payload.get("error"):
            print(f"  ✗ 步骤 {payload['step']} 失败: {payload['error']}")
        else:
            print(f"  ✓ 步骤 {payload['step']} 完成 ({payload['url']})")

    def _on_progress(percent: float) -> None:
        print(f"进度: {percent:.0f}%")

    return ProgressCallbacks(
        on_step_start=_on_step_start,
        on_step_complete=_on_step_complete,
        on_screenshot=lambda path: print(f"  📸 {path}"),
        on_complete=lambda report: print(f"✓ 通过: {report.script.name}"),
        on_error=lambda report: print(f"✗ 未通过: {report.script.name} ({report.error or report.status})"),
        on_progress=_on_progress,
    )


def _print_result(result: BatchResult) -> None:
    print("\n" + "=" * 80)
    print("批量执行完成" + (" (已停止)" if result.stopped else ""))
    print("=" * 80)
    print(f"批次 ID: {result.batch_id}")
    print(f"总脚本数: {result.total_scripts}")
    print(f"✓ 通过: {result.successful}")
    print(f"✗ 失败: {result.failed}")
    if result.total_scripts > 0:
        print(f"成功率: {result.success_rate:.1f}%")
    if result.submission_errors:
        print(f"⚠ 结果提交失败: {len(result.submission_errors)}")
    if result.artifact_errors:
        print(f"⚠ 报告写入失败: {len(result.artifact_errors)}")

    print(f"\n结果目录: {result.artifacts_dir}")
    print("  - test_report.md: 回放报告")
    print("  - test_report.html: 带截图的HTML报告")
    print("  - batch_summary.json: 批量执行摘要")
    print("  - <script_name>/: 各脚本的截图、日志与数据")


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(Path(args.log_dir) if args.log_dir else None, debug=args.debug)

    try:
        settings = _apply_overrides(args, EngineSettings.from_env())
        orchestrator, scripts = _build_orchestrator(args, settings)
    except (ValueError, FileNotFoundError, ReplayError, requests.RequestException) as exc:
        logging.error("%s", exc)
        return 2

    if not scripts:
        logging.error("No scripts to run")
        return 2

    orchestrator.initialize(settings.session_config())
    options = OrchestratorOptions(stop_on_first_failure=args.stop_on_failure, replay=settings.replay_options())

    # First Ctrl+C stops cooperatively after the current step; a second one aborts.
    def _handle_sigint(_signum, _frame) -> None:
        print("\n⏹ 正在停止，等待当前步骤完成... (再次按 Ctrl+C 强制退出)")
        orchestrator.stop()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    previous_handler = signal.signal(signal.SIGINT, _handle_sigint)
    print("=" * 80)
    print(f"回放 {len(scripts)} 个脚本")
    print("=" * 80)
    try:
        result = orchestrator.run(scripts, options, _console_callbacks())
    finally:
        signal.signal(signal.SIGINT, previous_handler)
        orchestrator.cleanup()

    _print_result(result)
    if args.summary:
        print("\n" + json.dumps(result.to_dict(), ensure_ascii=False, indent=2))

    return 0 if result.successful == result.total_scripts else 1


if __name__ == "__main__":
    sys.exit(main())
