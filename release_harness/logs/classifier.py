"""
Phase-scoped log classification.

Architecture:
1. set_phase() - the test marks what it is about to exercise
2. attach() - the followed container log stream is consumed in the background
3. process_line() - every line is triaged synchronously against the patterns
4. get_phase_report() / get_summary() - tests assert per phase, reports
   are rendered at the end of the session

Lines are attributed to whichever phase is current when they are read,
so output emitted just before a phase switch but delivered after it is
counted against the new phase.
"""

from __future__ import annotations

import asyncio
import contextlib
import re
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Callable

import httpx

from release_harness.container.demux import FrameDemuxer
from release_harness.core.config import Settings
from release_harness.core.logging import get_logger, phase_var
from release_harness.logs.patterns import (
    CRASH_PATTERN,
    DEFAULT_PATTERNS,
    Classification,
    PatternSet,
)

logger = get_logger("logs.classifier")

INITIAL_PHASE = "init"

# RFC 3339 prefix added by the engine with timestamps=1 (nanosecond precision)
_TIMESTAMP_PREFIX = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2}) "
)


class LogEvent(str, Enum):
    PHASE = "phase"
    ERROR = "error"
    WARNING = "warning"
    STREAM_ERROR = "stream-error"
    STREAM_END = "stream-end"


Listener = Callable[[Any], None]


@dataclass(frozen=True)
class LogLine:
    """One classified log line."""

    timestamp: datetime
    stream: str
    text: str
    phase: str
    classification: Classification = Classification.NONE
    pattern: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "stream": self.stream,
            "line": self.text,
            "phase": self.phase,
            "classification": self.classification.value,
            "pattern": self.pattern,
        }


@dataclass
class _PhaseBucket:
    lines: list[LogLine] = field(default_factory=list)
    errors: list[LogLine] = field(default_factory=list)
    warnings: list[LogLine] = field(default_factory=list)


@dataclass(frozen=True)
class PhaseCounts:
    lines: int
    errors: int
    warnings: int


@dataclass(frozen=True)
class PhaseReport:
    """Everything one phase produced."""

    phase: str
    errors: tuple[LogLine, ...] = ()
    warnings: tuple[LogLine, ...] = ()
    line_count: int = 0

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


@dataclass(frozen=True)
class LogSummary:
    total_lines: int
    total_errors: int
    total_warnings: int
    phases: dict[str, PhaseCounts]
    first_error: LogLine | None
    critical_phases: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_lines": self.total_lines,
            "total_errors": self.total_errors,
            "total_warnings": self.total_warnings,
            "phases": {
                name: {"lines": c.lines, "errors": c.errors, "warnings": c.warnings}
                for name, c in self.phases.items()
            },
            "first_error": self.first_error.to_dict() if self.first_error else None,
            "critical_phases": list(self.critical_phases),
        }


def parse_timestamp(text: str) -> tuple[datetime | None, str]:
    """Strip an engine timestamp prefix; returns (timestamp or None, rest)."""
    match = _TIMESTAMP_PREFIX.match(text)
    if not match:
        return None, text
    base, fraction, zone = match.groups()
    micros = (fraction or "0")[:6].ljust(6, "0")
    zone = "+00:00" if zone == "Z" else zone
    try:
        stamp = datetime.fromisoformat(f"{base}.{micros}{zone}")
    except ValueError:
        return None, text
    return stamp, text[match.end():]


class LogClassifier:
    """
    Classifies server output into errors, warnings and noise, per phase.

    Usage:
        classifier = LogClassifier()
        classifier.set_phase("nmea-tcp")
        ... traffic ...
        assert not classifier.get_phase_errors("nmea-tcp"), classifier.format_issues()
    """

    def __init__(
        self,
        max_log_entries: int = 10000,
        patterns: PatternSet = DEFAULT_PATTERNS,
    ):
        self.max_log_entries = max_log_entries
        self.patterns = patterns
        self._listeners: dict[LogEvent, list[Listener]] = {e: [] for e in LogEvent}
        self._task: asyncio.Task | None = None
        self.reset()

    @classmethod
    def from_settings(cls, settings: Settings) -> "LogClassifier":
        return cls(
            max_log_entries=settings.max_log_entries,
            patterns=DEFAULT_PATTERNS.with_ignored(settings.extra_ignore_patterns),
        )

    @property
    def current_phase(self) -> str:
        return self._phase

    @property
    def phases(self) -> list[str]:
        return list(self._phases)

    @property
    def lines(self) -> list[LogLine]:
        return list(self._raw)

    @property
    def errors(self) -> list[LogLine]:
        return list(self._errors)

    @property
    def warnings(self) -> list[LogLine]:
        return list(self._warnings)

    def reset(self) -> None:
        """Drop everything collected so far and return to the initial phase."""
        self._raw: deque[LogLine] = deque(maxlen=self.max_log_entries)
        self._errors: list[LogLine] = []
        self._warnings: list[LogLine] = []
        self._phases: dict[str, _PhaseBucket] = {}
        self._total_lines = 0
        self._demuxer = FrameDemuxer()
        self._partial: dict[str, str] = {}
        self._phase = INITIAL_PHASE
        self._bucket(INITIAL_PHASE)

    def _bucket(self, phase: str) -> _PhaseBucket:
        bucket = self._phases.get(phase)
        if bucket is None:
            bucket = _PhaseBucket()
            self._phases[phase] = bucket
        return bucket

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    def set_phase(self, phase: str) -> None:
        self._phase = phase
        self._bucket(phase)
        phase_var.set(phase)
        logger.debug(f"Phase -> {phase}")
        self._emit(LogEvent.PHASE, phase)

    # -------------------------------------------------------------------------
    # Triage
    # -------------------------------------------------------------------------

    def process_line(
        self,
        line: str,
        stream: str = "stdout",
        timestamp: datetime | None = None,
    ) -> LogLine | None:
        """Classify one line into the current phase. Blank lines are dropped."""
        text = line.strip()
        if not text:
            return None

        classification, matcher = self.patterns.classify(text)
        entry = LogLine(
            timestamp=timestamp or datetime.now(timezone.utc),
            stream=stream,
            text=text,
            phase=self._phase,
            classification=classification,
            pattern=matcher.label if matcher else None,
        )

        bucket = self._bucket(self._phase)
        self._raw.append(entry)
        bucket.lines.append(entry)
        self._total_lines += 1

        if classification is Classification.ERROR:
            self._errors.append(entry)
            bucket.errors.append(entry)
            self._emit(LogEvent.ERROR, entry)
        elif classification is Classification.WARNING:
            self._warnings.append(entry)
            bucket.warnings.append(entry)
            self._emit(LogEvent.WARNING, entry)

        return entry

    def feed(self, chunk: bytes) -> list[LogLine]:
        """Demultiplex a raw stream chunk and classify every complete line."""
        processed: list[LogLine] = []
        for frame in self._demuxer.feed(chunk):
            processed.extend(self._consume_text(frame.stream_name, frame.text))
        return processed

    def flush(self) -> list[LogLine]:
        """Classify whatever partial lines are still buffered."""
        processed: list[LogLine] = []
        for frame in self._demuxer.close():
            processed.extend(self._consume_text(frame.stream_name, frame.text))
        for stream, rest in list(self._partial.items()):
            del self._partial[stream]
            entry = self._process_raw(rest, stream)
            if entry is not None:
                processed.append(entry)
        return processed

    def _consume_text(self, stream: str, text: str) -> list[LogLine]:
        pending = self._partial.pop(stream, "") + text
        *complete, rest = pending.split("\n")
        if rest:
            self._partial[stream] = rest

        processed = []
        for raw in complete:
            entry = self._process_raw(raw, stream)
            if entry is not None:
                processed.append(entry)
        return processed

    def _process_raw(self, raw: str, stream: str) -> LogLine | None:
        timestamp, text = parse_timestamp(raw.rstrip("\r"))
        return self.process_line(text, stream, timestamp)

    # -------------------------------------------------------------------------
    # Stream ingestion
    # -------------------------------------------------------------------------

    def attach(self, source: AsyncIterator[bytes]) -> asyncio.Task:
        """Consume a raw multiplexed byte stream in a background task."""
        self.detach()
        self._task = asyncio.create_task(self._consume(source), name="log-classifier")
        return self._task

    def detach(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def wait_closed(self) -> None:
        """Wait for the attached stream to end on its own."""
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

    async def _consume(self, source: AsyncIterator[bytes]) -> None:
        try:
            async for chunk in source:
                self.feed(chunk)
        except (httpx.HTTPError, httpx.StreamError, OSError) as e:
            logger.warning(f"Log stream error: {e}")
            self._emit(LogEvent.STREAM_ERROR, e)
        finally:
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                with contextlib.suppress(httpx.HTTPError, OSError, RuntimeError):
                    await aclose()

        self.flush()
        self._emit(LogEvent.STREAM_END, None)

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def add_listener(self, event: LogEvent, callback: Listener) -> None:
        self._listeners[event].append(callback)

    def remove_listener(self, event: LogEvent, callback: Listener) -> None:
        with contextlib.suppress(ValueError):
            self._listeners[event].remove(callback)

    def _emit(self, event: LogEvent, payload: Any) -> None:
        for callback in list(self._listeners[event]):
            try:
                callback(payload)
            except Exception:
                logger.exception(f"Listener for {event.value} failed")

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_phase_errors(self, phase: str) -> list[LogLine]:
        bucket = self._phases.get(phase)
        return list(bucket.errors) if bucket else []

    def get_phase_warnings(self, phase: str) -> list[LogLine]:
        bucket = self._phases.get(phase)
        return list(bucket.warnings) if bucket else []

    def get_phase_lines(self, phase: str) -> list[LogLine]:
        bucket = self._phases.get(phase)
        return list(bucket.lines) if bucket else []

    def get_phase_report(self, phase: str) -> PhaseReport:
        bucket = self._phases.get(phase)
        if bucket is None:
            return PhaseReport(phase=phase)
        return PhaseReport(
            phase=phase,
            errors=tuple(bucket.errors),
            warnings=tuple(bucket.warnings),
            line_count=len(bucket.lines),
        )

    def get_summary(self) -> LogSummary:
        return LogSummary(
            total_lines=self._total_lines,
            total_errors=len(self._errors),
            total_warnings=len(self._warnings),
            phases={
                name: PhaseCounts(
                    lines=len(b.lines), errors=len(b.errors), warnings=len(b.warnings)
                )
                for name, b in self._phases.items()
            },
            first_error=self._errors[0] if self._errors else None,
            critical_phases=tuple(n for n, b in self._phases.items() if b.errors),
        )

    def has_errors(self) -> bool:
        return bool(self._errors)

    def has_warnings(self) -> bool:
        return bool(self._warnings)

    def critical_errors(self) -> list[LogLine]:
        """Errors suggesting the process itself crashed or is about to."""
        return [e for e in self._errors if CRASH_PATTERN.search(e.text)]

    def format_issues(self, limit: int = 5, include_warnings: bool = False) -> str | None:
        """
        Assertion message for a failed run.

        Returns None if no issues, otherwise names the phase that first
        observed a critical error and quotes the offending line verbatim.
        """
        issues = []

        if self._errors:
            first = self._errors[0]
            issues.append(
                f"Critical error first observed in phase '{first.phase}':\n"
                f"  {first.text}"
            )
            issues.append(
                f"{len(self._errors)} error(s) total:\n"
                + "\n".join(f"  [{e.phase}] {e.text[:300]}" for e in self._errors[:limit])
            )

        if include_warnings and self._warnings:
            issues.append(
                f"{len(self._warnings)} warning(s):\n"
                + "\n".join(f"  [{w.phase}] {w.text[:300]}" for w in self._warnings[:limit])
            )

        if not issues:
            return None

        return "\n\n".join(issues)
