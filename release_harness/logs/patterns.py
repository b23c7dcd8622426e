"""
Log triage patterns.

Order matters: ignore patterns are checked first and short-circuit, then
critical patterns in list order (first match wins), then warnings.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence


class Classification(str, Enum):
    """Severity assigned to one log line."""

    ERROR = "error"
    WARNING = "warning"
    NONE = "none"


@dataclass(frozen=True)
class Matcher:
    """A precompiled pattern with a stable printable label."""

    regex: re.Pattern[str]

    @classmethod
    def compile(cls, pattern: str, flags: int = 0) -> "Matcher":
        return cls(re.compile(pattern, flags))

    @property
    def label(self) -> str:
        suffix = "i" if self.regex.flags & re.IGNORECASE else ""
        return f"/{self.regex.pattern}/{suffix}"

    def matches(self, line: str) -> bool:
        return self.regex.search(line) is not None

    def __str__(self) -> str:
        return self.label


def _compile(specs: Iterable[tuple[str, int]]) -> tuple[Matcher, ...]:
    return tuple(Matcher.compile(pattern, flags) for pattern, flags in specs)


ICASE = re.IGNORECASE

# Failures of the server process itself
CRITICAL_PATTERNS: tuple[Matcher, ...] = _compile([
    (r"\bERROR\b", ICASE),
    (r"\bFATAL\b", ICASE),
    (r"\bUncaught\s+Exception", ICASE),
    (r"\bUnhandled\s+Rejection", ICASE),
    (r"\bUnhandledPromiseRejection", ICASE),
    (r"ECONNREFUSED", 0),
    (r"EADDRINUSE", 0),
    (r"EACCES", 0),
    (r"Cannot find module", 0),
    (r"Module not found", 0),
    (r"SyntaxError", 0),
    (r"TypeError(?!.*null)", 0),  # "of null" reads are noise
    (r"ReferenceError", 0),
    (r"RangeError", 0),
    (r"segmentation fault", ICASE),
    (r"out of memory", ICASE),
    (r"heap out of memory", ICASE),
    (r"SIGABRT", 0),
    (r"SIGSEGV", 0),
    (r"core dumped", ICASE),
])

# Reported, but not release-blocking
WARNING_PATTERNS: tuple[Matcher, ...] = _compile([
    (r"\bWARN\b", ICASE),
    (r"\bwarning\b", ICASE),
    (r"deprecated", ICASE),
    (r"\bDEPRECATION\b", 0),
])

# Expected chatter during normal operation
IGNORE_PATTERNS: tuple[Matcher, ...] = _compile([
    (r"WARN.*no\s+data\s+received", ICASE),
    (r"WARN.*waiting for", ICASE),
    (r"debug", ICASE),
    (r"health.*check", ICASE),
    (r"starting", ICASE),
    (r"listening on", ICASE),
    (r"connected", ICASE),
])

# Errors that mean the process itself is in trouble
CRASH_PATTERN = re.compile(r"fatal|crash|segfault|uncaught|unhandled", re.IGNORECASE)


@dataclass(frozen=True)
class PatternSet:
    """Ordered matchers evaluated ignore -> critical -> warning."""

    ignore: Sequence[Matcher] = IGNORE_PATTERNS
    critical: Sequence[Matcher] = CRITICAL_PATTERNS
    warning: Sequence[Matcher] = WARNING_PATTERNS

    def classify(self, line: str) -> tuple[Classification, Matcher | None]:
        if any(m.matches(line) for m in self.ignore):
            return Classification.NONE, None

        for matcher in self.critical:
            if matcher.matches(line):
                return Classification.ERROR, matcher

        for matcher in self.warning:
            if matcher.matches(line):
                return Classification.WARNING, matcher

        return Classification.NONE, None

    def with_ignored(self, patterns: Iterable[str]) -> "PatternSet":
        """Copy with extra (case-insensitive) ignore patterns appended."""
        extra = tuple(Matcher.compile(p, re.IGNORECASE) for p in patterns)
        if not extra:
            return self
        return PatternSet(
            ignore=tuple(self.ignore) + extra,
            critical=self.critical,
            warning=self.warning,
        )


DEFAULT_PATTERNS = PatternSet()
