"""简单的批量回放报告生成器"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from jinja2 import Template

from .models import STATUS_STOPPED, BatchResult, utc_now

LOGGER = logging.getLogger("replay_mvp.report")


@dataclass
class ScriptDetail:
    """单个脚本的详情"""

    script_id: str
    script_name: str
    status: str
    duration_seconds: float
    completed_steps: int
    total_steps: int
    console_errors: int
    artifacts_dir: str
    first_failure_step: Optional[int] = None
    first_failure_message: Optional[str] = None


def write_batch_summary(result: BatchResult, batch_dir: Path) -> Path:
    """Write ``batch_summary.json`` next to the per-script artifacts."""
    batch_dir.mkdir(parents=True, exist_ok=True)
    summary_path = batch_dir / "batch_summary.json"
    with summary_path.open("w", encoding="utf-8") as f:
        json.dump(result.to_dict(), f, ensure_ascii=False, indent=2)
    LOGGER.info("批量执行摘要已保存: %s", summary_path)
    return summary_path


class BatchReportGenerator:
    """生成简洁的回放报告"""

    @staticmethod
    def _details(result: BatchResult) -> List[ScriptDetail]:
        details = []
        for report in result.results:
            duration = (report.total_execution_time_ms or 0) / 1000
            detail = ScriptDetail(
                script_id=report.script.id,
                script_name=report.script.name,
                status=report.status,
                duration_seconds=duration,
                completed_steps=report.completed_steps,
                total_steps=report.total_steps_planned,
                console_errors=sum(1 for entry in report.telemetry if entry.kind in ("error", "networkError")),
                artifacts_dir=str(Path(report.artifacts["data"]).parent) if report.artifacts.get("data") else "-",
            )
            failure = report.first_failure()
            if failure:
                detail.first_failure_step = failure.step_number
                detail.first_failure_message = failure.error
            elif report.error:
                detail.first_failure_message = report.error
            details.append(detail)
        return details

    def generate(self, result: BatchResult, output_dir: Path) -> Path:
        """生成执行报告"""
        output_dir.mkdir(parents=True, exist_ok=True)
        report_path = output_dir / "test_report.md"

        details = self._details(result)
        failed_details = [d for d in details if d.status != "passed"]
        passed_details = [d for d in details if d.status == "passed"]

        total = result.total_scripts
        started_at = result.started_at or utc_now()
        finished_at = result.finished_at or utc_now()
        total_duration = (finished_at - started_at).total_seconds()

        with open(report_path, 'w', encoding='utf-8') as f:
            f.write("# 回放执行报告\n\n")
            f.write(f"**批次ID**: `{result.batch_id}`  \n")
            f.write(f"**执行时间**: {started_at.strftime('%Y-%m-%d %H:%M:%S')} - {finished_at.strftime('%Y-%m-%d %H:%M:%S')}  \n")
            f.write(f"**总时长**: {total_duration:.2f}秒  \n")
            if result.stopped:
                f.write("**状态**: 已被用户停止  \n")
            f.write("\n")

            # 总体统计
            f.write("## 📊 总体统计\n\n")
            f.write("| 指标 | 数值 |\n")
            f.write("|------|------|\n")
            f.write(f"| 总脚本数 | {total} |\n")
            f.write(f"| ✅ 通过 | {result.successful} |\n")
            f.write(f"| ❌ 失败 | {result.failed} |\n")
            f.write(f"| ⏹ 停止/跳过 | {sum(1 for d in details if d.status == STATUS_STOPPED)} |\n")
            f.write(f"| 成功率 | {result.success_rate:.1f}% |\n")
            f.write(f"| 总执行时长 | {total_duration:.2f}秒 |\n\n")

            if failed_details:
                f.write("## ❌ 未通过的脚本\n\n")
                f.write("| Script | 状态 | 结果目录 | 执行时长 | 完成步骤 | 失败步骤 | 错误信息 |\n")
                f.write("|--------|------|----------|----------|----------|----------|----------|\n")
                for d in failed_details:
                    f.write(f"| `{d.script_name}` | {d.status} | `{d.artifacts_dir}` | {d.duration_seconds:.2f}秒 | "
                            f"{d.completed_steps}/{d.total_steps} | "
                            f"步骤{d.first_failure_step or 'N/A'} | {d.first_failure_message or 'N/A'} |\n")
                f.write("\n")

            if passed_details:
                f.write("## ✅ 通过的脚本\n\n")
                f.write("| Script | 执行时长 | 完成步骤 | 控制台错误 |\n")
                f.write("|--------|----------|----------|------------|\n")
                for d in passed_details:
                    f.write(f"| `{d.script_name}` | {d.duration_seconds:.2f}秒 | {d.completed_steps}/{d.total_steps} | "
                            f"{d.console_errors} |\n")
                f.write("\n")

            if result.submission_errors:
                f.write("## ⚠ 结果提交失败\n\n")
                for message in result.submission_errors:
                    f.write(f"- {message}\n")
                f.write("\n")

            f.write("---\n\n")
            f.write(f"*报告生成时间: {utc_now().strftime('%Y-%m-%d %H:%M:%S UTC')}*\n")

        return report_path

    def generate_html(self, result: BatchResult, output_dir: Path) -> Path:
        """生成HTML报告，附带每个脚本的步骤与截图"""
        output_dir.mkdir(parents=True, exist_ok=True)
        report_path = output_dir / "test_report.html"

        template = Template(_HTML_TEMPLATE, autoescape=True)
        html_content = template.render(
            result=result,
            details=self._details(result),
            reports=result.results,
            generated_at=utc_now().strftime('%Y-%m-%d %H:%M:%S UTC'),
            relative=lambda path: os.path.relpath(path, output_dir),
        )
        with open(report_path, 'w', encoding='utf-8') as f:
            f.write(html_content)

        LOGGER.info("HTML报告已保存: %s", report_path)
        return report_path


_HTML_TEMPLATE = """
<!DOCTYPE html>
<html lang="zh-CN">
<head>
    <meta charset="UTF-8">
    <title>回放执行报告 {{ result.batch_id }}</title>
    <style>
        body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; margin: 0; background: #f5f5f5; }
        .container { max-width: 1200px; margin: 0 auto; background: white; }
        .header { padding: 24px 30px; background: #343a40; color: white; }
        .summary { display: flex; gap: 20px; padding: 20px 30px; background: #f8f9fa; }
        .summary-card { flex: 1; padding: 16px; border-radius: 8px; background: white; text-align: center; }
        .summary-card .number { font-size: 1.8em; font-weight: bold; }
        .passed { color: #28a745; }
        .failed { color: #dc3545; }
        .stopped { color: #6c757d; }
        .content { padding: 30px; }
        .script { border: 1px solid #ddd; border-radius: 8px; margin-bottom: 20px; }
        .script-header { padding: 16px 20px; background: #f8f9fa; border-bottom: 1px solid #ddd; }
        .script-body { padding: 16px 20px; }
        .step { margin: 6px 0; padding: 8px; border-left: 4px solid #28a745; background: #f8fff9; }
        .step.failed { border-left-color: #dc3545; background: #fff8f8; }
        .error-message { color: #dc3545; font-family: monospace; }
        .shots img { max-width: 240px; margin: 4px; border: 1px solid #ddd; }
    </style>
</head>
<body>
<div class="container">
    <div class="header">
        <h1>回放执行报告</h1>
        <p>批次ID: {{ result.batch_id }}{% if result.stopped %} (已被用户停止){% endif %}</p>
        <p>生成时间: {{ generated_at }}</p>
    </div>
    <div class="summary">
        <div class="summary-card"><h3>总脚本数</h3><div class="number">{{ result.total_scripts }}</div></div>
        <div class="summary-card"><h3>通过</h3><div class="number passed">{{ result.successful }}</div></div>
        <div class="summary-card"><h3>失败</h3><div class="number failed">{{ result.failed }}</div></div>
        <div class="summary-card"><h3>成功率</h3><div class="number">{{ "%.1f"|format(result.success_rate) }}%</div></div>
    </div>
    <div class="content">
        {% for report in reports %}
        {% set detail = details[loop.index0] %}
        <div class="script">
            <div class="script-header">
                <h3>{{ detail.script_name }} <span class="{{ detail.status }}">[{{ detail.status }}]</span></h3>
                <div>执行时长: {{ "%.2f"|format(detail.duration_seconds) }}秒 | 完成步骤: {{ detail.completed_steps }}/{{ detail.total_steps }} | 控制台错误: {{ detail.console_errors }}</div>
                {% if report.error %}<div class="error-message">{{ report.error }}</div>{% endif %}
            </div>
            <div class="script-body">
                {% for step in report.steps %}
                <div class="step {% if step.error %}failed{% endif %}">
                    <strong>步骤 {{ step.step_number }}:</strong> {{ step.description }}
                    {% if step.final_url %}<br><small>{{ step.final_url }}</small>{% endif %}
                    {% if step.error %}<div class="error-message">{{ step.error_type }}: {{ step.error }}</div>{% endif %}
                </div>
                {% endfor %}
                {% if report.screenshots %}
                <div class="shots">
                    {% for shot in report.screenshots %}<img src="{{ relative(shot.path) }}" alt="{{ shot.label }}" title="{{ shot.label }}">{% endfor %}
                </div>
                {% endif %}
            </div>
        </div>
        {% endfor %}
    </div>
</div>
</body>
</html>
"""
