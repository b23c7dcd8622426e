"""
Captured NMEA 0183 corpus loader.

Replays real-world sentences so test traffic carries the diversity of an
actual bus (satellite chatter, AIS, empty fields) rather than only the
idealised values the generators produce.
"""

from __future__ import annotations

from pathlib import Path

from release_harness.core.logging import get_logger
from release_harness.traffic.nmea0183 import NAVIGATION_TYPES, SentenceGenerator

logger = get_logger("traffic.fixtures")

DEFAULT_CORPUS = Path(__file__).parent / "data" / "nmea0183_test.txt"

SATELLITE_TYPES = ("GSA", "GSV")


def _sentence_type(line: str) -> str:
    address = line[1:].split(",", 1)[0]
    return address[2:]


class FixtureLoader:
    """
    Reads a capture file once and serves filtered views of it.

    Usage:
        loader = FixtureLoader()
        nav = loader.navigation()
        burst = loader.burst(500)
    """

    def __init__(
        self,
        path: Path | str = DEFAULT_CORPUS,
        generator: SentenceGenerator | None = None,
    ):
        self.path = Path(path)
        self.generator = generator or SentenceGenerator()
        self._cache: list[str] | None = None

    def load(self) -> list[str]:
        """Sentences from the corpus; cached after the first read."""
        if self._cache is not None:
            return self._cache

        if not self.path.exists():
            logger.warning(f"Test data file not found: {self.path}")
            self._cache = []
            return self._cache

        lines = self.path.read_text(encoding="utf-8").splitlines()
        self._cache = [
            line.strip()
            for line in lines
            if line.strip().startswith(("$", "!"))
        ]
        logger.debug(f"Loaded {len(self._cache)} sentences from {self.path}")
        return self._cache

    def all(self) -> list[str]:
        return list(self.load())

    def by_type(self, sentence_type: str) -> list[str]:
        """Sentences whose type matches, e.g. ``GGA``, ``RMC``, ``VDM``."""
        wanted = sentence_type.upper()
        return [s for s in self.load() if _sentence_type(s) == wanted]

    def navigation(self) -> list[str]:
        return [s for s in self.load() if _sentence_type(s) in NAVIGATION_TYPES]

    def satellite(self) -> list[str]:
        return [s for s in self.load() if _sentence_type(s) in SATELLITE_TYPES]

    def ais(self) -> list[str]:
        return [s for s in self.load() if s.startswith("!AI")]

    def burst(self, count: int = 100) -> list[str]:
        """
        Exactly ``count`` sentences, cycling the corpus as often as needed.

        Falls back to a synthetic navigation track when the corpus is empty.
        """
        sentences = self.load()
        if not sentences:
            synthetic = self.generator.fixed_navigation_burst(60.0, 24.0, count)
            return [str(s) for s in synthetic[:count]]

        return [sentences[i % len(sentences)] for i in range(count)]

    def clear_cache(self) -> None:
        self._cache = None
