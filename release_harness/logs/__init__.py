"""
Server log triage.
"""

from release_harness.logs.classifier import (
    LogClassifier,
    LogEvent,
    LogLine,
    LogSummary,
    PhaseReport,
)
from release_harness.logs.patterns import DEFAULT_PATTERNS, Classification, PatternSet
from release_harness.logs.report import render_markdown, report_to_dict, save_reports

__all__ = [
    "Classification",
    "DEFAULT_PATTERNS",
    "LogClassifier",
    "LogEvent",
    "LogLine",
    "LogSummary",
    "PatternSet",
    "PhaseReport",
    "render_markdown",
    "report_to_dict",
    "save_reports",
]
