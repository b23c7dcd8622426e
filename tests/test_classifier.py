"""
Tests for phase-scoped log classification and stream ingestion.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from release_harness.container.demux import StreamType, encode_frame
from release_harness.core.logging import phase_var
from release_harness.logs.classifier import (
    INITIAL_PHASE,
    LogClassifier,
    LogEvent,
    parse_timestamp,
)
from release_harness.logs.patterns import Classification
from tests.conftest import frames


async def _chunks(*parts: bytes):
    for part in parts:
        yield part


async def _failing_stream():
    yield encode_frame(StreamType.STDOUT, b"partial line without newline")
    raise httpx.ReadError("connection reset")


async def _closed_stream():
    yield encode_frame(StreamType.STDERR, b"last words")
    raise httpx.StreamClosed()


class TestProcessLine:
    """Tests for synchronous triage."""

    def test_blank_lines_dropped(self, classifier: LogClassifier):
        assert classifier.process_line("   ") is None
        assert classifier.get_summary().total_lines == 0

    def test_error_recorded_in_phase(self, classifier: LogClassifier):
        classifier.set_phase("nmea-tcp")
        entry = classifier.process_line("Error: something broke", stream="stderr")

        assert entry.classification is Classification.ERROR
        assert entry.phase == "nmea-tcp"
        assert entry.stream == "stderr"
        assert entry.pattern == r"/\bERROR\b/i"
        assert classifier.get_phase_errors("nmea-tcp") == [entry]
        assert classifier.errors == [entry]
        assert classifier.has_errors()

    def test_warning_recorded(self, classifier: LogClassifier):
        entry = classifier.process_line("WARN: slow provider")
        assert entry.classification is Classification.WARNING
        assert classifier.get_phase_warnings(INITIAL_PHASE) == [entry]
        assert classifier.has_warnings()
        assert not classifier.has_errors()

    def test_ignored_line_kept_raw_only(self, classifier: LogClassifier):
        entry = classifier.process_line("debug: ERROR counter")
        assert entry.classification is Classification.NONE
        assert classifier.lines == [entry]
        assert classifier.errors == []

    def test_line_is_stripped(self, classifier: LogClassifier):
        assert classifier.process_line("  hello \r").text == "hello"

    def test_ring_buffer_bounded(self):
        classifier = LogClassifier(max_log_entries=3)
        for i in range(5):
            classifier.process_line(f"line {i}")
        assert [e.text for e in classifier.lines] == ["line 2", "line 3", "line 4"]
        assert classifier.get_summary().total_lines == 5

    def test_phase_counts_not_capped_by_ring_buffer(self):
        classifier = LogClassifier(max_log_entries=3)
        classifier.set_phase("load")
        for i in range(5):
            classifier.process_line(f"line {i}")

        assert len(classifier.lines) == 3
        assert classifier.get_phase_report("load").line_count == 5
        assert classifier.get_summary().phases["load"].lines == 5


class TestPhases:
    """Tests for phase bookkeeping."""

    def test_initial_phase_has_buckets(self, classifier: LogClassifier):
        assert classifier.current_phase == INITIAL_PHASE
        assert classifier.phases == [INITIAL_PHASE]
        assert classifier.get_summary().phases[INITIAL_PHASE].lines == 0

    def test_unknown_phase_reads_are_empty(self, classifier: LogClassifier):
        assert classifier.get_phase_errors("never-set") == []
        assert classifier.get_phase_warnings("never-set") == []
        report = classifier.get_phase_report("never-set")
        assert report.errors == () and report.line_count == 0
        assert "never-set" not in classifier.phases

    def test_set_phase_updates_logging_context(self, classifier: LogClassifier):
        classifier.set_phase("udp")
        assert phase_var.get() == "udp"

    def test_phase_report(self, classifier: LogClassifier):
        classifier.set_phase("a")
        classifier.process_line("Error: one")
        classifier.process_line("plain")
        classifier.set_phase("b")
        classifier.process_line("WARN: two")

        report = classifier.get_phase_report("a")
        assert report.has_errors
        assert report.line_count == 2
        assert not classifier.get_phase_report("b").has_errors

    def test_summary(self, classifier: LogClassifier):
        classifier.set_phase("boot")
        classifier.process_line("listening on port 3000")
        classifier.set_phase("traffic")
        classifier.process_line("Error: bad sentence")
        classifier.process_line("ReferenceError: x")
        classifier.process_line("WARN: slow")

        summary = classifier.get_summary()
        assert summary.total_lines == 4
        assert summary.total_errors == 2
        assert summary.total_warnings == 1
        assert summary.critical_phases == ("traffic",)
        assert summary.first_error.text == "Error: bad sentence"
        assert summary.phases["boot"].lines == 1
        assert summary.to_dict()["phases"]["traffic"] == {"lines": 3, "errors": 2, "warnings": 1}

    def test_reset(self, classifier: LogClassifier):
        classifier.set_phase("x")
        classifier.process_line("Error: gone")
        classifier.reset()
        assert classifier.current_phase == INITIAL_PHASE
        assert not classifier.has_errors()
        assert classifier.phases == [INITIAL_PHASE]


class TestIssues:
    """Tests for failure messages."""

    def test_no_issues(self, classifier: LogClassifier):
        classifier.process_line("all good")
        assert classifier.format_issues() is None

    def test_names_first_phase_and_line(self, classifier: LogClassifier):
        classifier.set_phase("container-start")
        classifier.process_line("WARN: meh")
        classifier.set_phase("nmea-udp")
        classifier.process_line("Error: parser exploded on $GPXXX")
        classifier.process_line("Error: again")

        issues = classifier.format_issues(limit=1)
        assert "phase 'nmea-udp'" in issues
        assert "Error: parser exploded on $GPXXX" in issues
        assert "2 error(s) total" in issues
        assert "Error: again" not in issues
        assert "warning" not in issues

    def test_include_warnings(self, classifier: LogClassifier):
        classifier.process_line("WARN: meh")
        assert "1 warning(s)" in classifier.format_issues(include_warnings=True)

    def test_critical_errors(self, classifier: LogClassifier):
        classifier.process_line("Error: minor")
        classifier.process_line("Uncaught Exception: boom")
        assert [e.text for e in classifier.critical_errors()] == ["Uncaught Exception: boom"]


class TestEvents:
    """Tests for listener registration."""

    def test_events_emitted(self, classifier: LogClassifier):
        seen = []
        classifier.add_listener(LogEvent.PHASE, lambda p: seen.append(("phase", p)))
        classifier.add_listener(LogEvent.ERROR, lambda e: seen.append(("error", e.text)))
        classifier.add_listener(LogEvent.WARNING, lambda e: seen.append(("warning", e.text)))

        classifier.set_phase("p1")
        classifier.process_line("Error: x")
        classifier.process_line("WARN: y")
        classifier.process_line("plain")

        assert seen == [("phase", "p1"), ("error", "Error: x"), ("warning", "WARN: y")]

    def test_failing_listener_does_not_propagate(self, classifier: LogClassifier):
        def explode(_):
            raise RuntimeError("listener bug")

        seen = []
        classifier.add_listener(LogEvent.ERROR, explode)
        classifier.add_listener(LogEvent.ERROR, seen.append)

        entry = classifier.process_line("Error: x")
        assert seen == [entry]

    def test_remove_listener(self, classifier: LogClassifier):
        seen = []
        classifier.add_listener(LogEvent.ERROR, seen.append)
        classifier.remove_listener(LogEvent.ERROR, seen.append)
        classifier.remove_listener(LogEvent.ERROR, seen.append)
        classifier.process_line("Error: x")
        assert seen == []


class TestFeed:
    """Tests for multiplexed chunk ingestion."""

    def test_frames_to_lines(self, classifier: LogClassifier):
        buffer = frames(
            (StreamType.STDOUT, "server starting\n"),
            (StreamType.STDERR, "Error: boom\n"),
            (StreamType.STDOUT, "ready\n"),
        )
        processed = classifier.feed(buffer)
        assert [(e.stream, e.text) for e in processed] == [
            ("stdout", "server starting"),
            ("stderr", "Error: boom"),
            ("stdout", "ready"),
        ]

    def test_partial_lines_buffered_per_stream(self, classifier: LogClassifier):
        classifier.feed(frames((StreamType.STDOUT, "hel"), (StreamType.STDERR, "Err")))
        assert classifier.lines == []
        classifier.feed(frames((StreamType.STDERR, "or: x\n"), (StreamType.STDOUT, "lo\n")))
        assert [(e.stream, e.text) for e in classifier.lines] == [
            ("stderr", "Error: x"),
            ("stdout", "hello"),
        ]

    def test_split_frame_header(self, classifier: LogClassifier):
        buffer = frames((StreamType.STDOUT, "one\n"))
        classifier.feed(buffer[:5])
        classifier.feed(buffer[5:])
        assert [e.text for e in classifier.lines] == ["one"]

    def test_timestamp_prefix_used(self, classifier: LogClassifier):
        classifier.feed(frames(
            (StreamType.STDOUT, "2024-06-01T12:00:00.123456789Z hello\n"),
        ))
        entry = classifier.lines[0]
        assert entry.text == "hello"
        assert entry.timestamp == datetime(2024, 6, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)

    def test_flush_emits_partial(self, classifier: LogClassifier):
        classifier.feed(frames((StreamType.STDOUT, "no newline")))
        flushed = classifier.flush()
        assert [e.text for e in flushed] == ["no newline"]

    def test_unframed_stream_passes_through(self, classifier: LogClassifier):
        classifier.feed(b"plain tty output line\nsecond\n")
        assert [e.text for e in classifier.lines] == ["plain tty output line", "second"]


class TestParseTimestamp:
    def test_without_prefix(self):
        assert parse_timestamp("hello") == (None, "hello")

    def test_offset_zone(self):
        stamp, rest = parse_timestamp("2024-06-01T12:00:00+02:00 x")
        assert rest == "x"
        assert stamp.utcoffset().total_seconds() == 7200


class TestAttach:
    """Tests for background stream consumption."""

    @pytest.mark.asyncio
    async def test_consumes_until_end(self, classifier: LogClassifier):
        ended = []
        classifier.add_listener(LogEvent.STREAM_END, ended.append)

        classifier.attach(_chunks(
            frames((StreamType.STDOUT, "a\nb")),
            frames((StreamType.STDOUT, "c\n"), (StreamType.STDERR, "tail")),
        ))
        await classifier.wait_closed()

        assert [e.text for e in classifier.lines] == ["a", "bc", "tail"]
        assert ended == [None]

    @pytest.mark.asyncio
    async def test_stream_error_reported_then_flushed(self, classifier: LogClassifier):
        events = []
        classifier.add_listener(LogEvent.STREAM_ERROR, lambda e: events.append(("error", e)))
        classifier.add_listener(LogEvent.STREAM_END, lambda _: events.append(("end", None)))

        classifier.attach(_failing_stream())
        await classifier.wait_closed()

        assert events[0][0] == "error"
        assert isinstance(events[0][1], httpx.ReadError)
        assert events[1] == ("end", None)
        assert [e.text for e in classifier.lines] == ["partial line without newline"]

    @pytest.mark.asyncio
    async def test_closed_stream_ends_cleanly(self, classifier: LogClassifier):
        errors, ended = [], []
        classifier.add_listener(LogEvent.STREAM_ERROR, errors.append)
        classifier.add_listener(LogEvent.STREAM_END, ended.append)

        task = classifier.attach(_closed_stream())
        await classifier.wait_closed()

        assert task.exception() is None
        assert len(errors) == 1 and isinstance(errors[0], httpx.StreamClosed)
        assert ended == [None]
        assert [e.text for e in classifier.lines] == ["last words"]

    @pytest.mark.asyncio
    async def test_detach_cancels(self, classifier: LogClassifier):
        async def endless():
            while True:
                await asyncio.sleep(0.01)
                yield b""

        task = classifier.attach(endless())
        await asyncio.sleep(0.03)
        classifier.detach()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert task.cancelled()
