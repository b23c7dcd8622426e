"""
Log analysis reports.

Markdown for human review, JSON for tooling. Both are written at the end
of a validation session so a failed release can be triaged without
re-running it.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from release_harness.core.logging import get_logger

if TYPE_CHECKING:
    from release_harness.logs.classifier import LogClassifier

logger = get_logger("logs.report")

MAX_ERRORS_PER_PHASE = 10
MAX_WARNING_ROWS = 20


def _cell(text: str, width: int) -> str:
    return text[:width].replace("|", "\\|")


def render_markdown(classifier: "LogClassifier", generated: datetime | None = None) -> str:
    """Generate markdown report for human review."""
    summary = classifier.get_summary()
    generated = generated or datetime.now(timezone.utc)

    md = f"""# Log Analysis Report

**Generated:** {generated.isoformat()}

## Summary

| Metric | Count |
|--------|-------|
| Total Errors | {summary.total_errors} |
| Total Warnings | {summary.total_warnings} |
| Total Log Lines | {summary.total_lines} |
| Phases with Errors | {len(summary.critical_phases)} |

"""

    if summary.total_errors:
        md += "## ❌ Errors by Phase\n\n"
        for phase in classifier.phases:
            errors = classifier.get_phase_errors(phase)
            if not errors:
                continue
            md += f"### {phase}\n\n| Time | Message |\n|------|---------|\n"
            for e in errors[:MAX_ERRORS_PER_PHASE]:
                md += f"| {e.timestamp.isoformat()} | {_cell(e.text, 100)} |\n"
            if len(errors) > MAX_ERRORS_PER_PHASE:
                md += f"\n*... and {len(errors) - MAX_ERRORS_PER_PHASE} more errors*\n"
            md += "\n"

    if summary.total_warnings:
        # Same warning repeated with different values collapses to one row
        unique: dict[str, list[Any]] = {}
        for w in classifier.warnings:
            key = w.text[:50]
            if key in unique:
                unique[key][1] += 1
            else:
                unique[key] = [w, 1]

        md += "## ⚠️ Warnings\n\n| Warning | Count | Phase |\n|---------|-------|-------|\n"
        for w, count in list(unique.values())[:MAX_WARNING_ROWS]:
            md += f"| {_cell(w.text, 60)} | {count} | {w.phase} |\n"
        md += "\n"

    md += "## Phase Summary\n\n"
    md += "| Phase | Errors | Warnings | Log Lines |\n"
    md += "|-------|--------|----------|-----------|\n"
    for phase, counts in summary.phases.items():
        status = "❌" if counts.errors else "✅"
        md += f"| {status} {phase} | {counts.errors} | {counts.warnings} | {counts.lines} |\n"

    return md


def report_to_dict(classifier: "LogClassifier") -> dict[str, Any]:
    """Convert to dictionary for JSON serialization."""
    return {
        "summary": classifier.get_summary().to_dict(),
        "errors": [e.to_dict() for e in classifier.errors],
        "warnings": [w.to_dict() for w in classifier.warnings],
        "phases": {
            phase: {
                "errors": [e.to_dict() for e in classifier.get_phase_errors(phase)],
                "warnings": [w.to_dict() for w in classifier.get_phase_warnings(phase)],
            }
            for phase in classifier.phases
        },
    }


def save_reports(
    classifier: "LogClassifier",
    directory: Path | str = "test-results/logs",
    name: str | None = None,
) -> tuple[Path, Path]:
    """Write ``<name>.md`` and ``<name>.json``; returns both paths."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    if name is None:
        name = f"log-report-{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}"
    safe_name = name.replace("/", "_").replace("::", "_")

    markdown_path = directory / f"{safe_name}.md"
    json_path = directory / f"{safe_name}.json"
    markdown_path.write_text(render_markdown(classifier), encoding="utf-8")
    json_path.write_text(
        json.dumps(report_to_dict(classifier), indent=2, default=str), encoding="utf-8"
    )

    logger.info(f"Log reports written to {markdown_path} and {json_path}")
    return markdown_path, json_path
