"""
NMEA 0183 sentence synthesis.

Sentences are built as immutable ``Sentence`` values and rendered to their
wire form (``$GPRMC,...*HH``) with ``str()``. Bursts simulate a moving
vessel with small random per-step deltas and interleave secondary
sentence types at fixed strides, the way a real multi-sensor bus looks.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from release_harness.traffic.checksum import (
    KNOTS_TO_KMH,
    METERS_TO_FATHOMS,
    METERS_TO_FEET,
    SENTENCE_DELIMITERS,
    format_latitude,
    format_longitude,
    nmea_checksum,
    validate_checksum,
)

# Real captured AIVDM payloads; encoding AIS 6-bit payloads is out of scope
AIS_SAMPLES = (
    "!AIVDM,1,1,,A,13u@DP0P00PlJ`<5;:0?4?v00000,0*39",
    "!AIVDM,1,1,,B,15MgK70000JsHG8Hus0FbD:0000,0*5D",
    "!AIVDM,1,1,,A,15N4cJ`005Jrek0H@9n`DW5608EP,0*10",
    "!AIVDM,1,1,,B,13HOI:0P00PlRG0Hch2rP?v@0D02,0*06",
    "!AIVDM,1,1,,A,14eGrSiP00PlhH@HUBD0v?v@0<0g,0*4A",
)

NAVIGATION_TYPES = ("GGA", "RMC", "VTG", "HDT", "GLL", "GNS")


@dataclass(frozen=True)
class Sentence:
    """One NMEA 0183 sentence."""

    talker: str
    sentence_type: str
    fields: tuple[str, ...]
    delimiter: str = "$"

    @property
    def address(self) -> str:
        return f"{self.talker}{self.sentence_type}"

    @property
    def body(self) -> str:
        return ",".join((f"{self.delimiter}{self.address}", *self.fields))

    @property
    def checksum(self) -> str:
        return nmea_checksum(self.body)

    def __str__(self) -> str:
        return f"{self.body}*{self.checksum}"

    @classmethod
    def parse(cls, line: str) -> "Sentence":
        """Parse a wire sentence. The checksum is not verified here."""
        text = line.strip()
        if not text or text[0] not in SENTENCE_DELIMITERS:
            raise ValueError(f"Not an NMEA 0183 sentence: {line!r}")
        base = text.split("*", 1)[0]
        address, *fields = base[1:].split(",")
        if len(address) < 3:
            raise ValueError(f"Malformed sentence address: {address!r}")
        return cls(
            talker=address[:2],
            sentence_type=address[2:],
            fields=tuple(fields),
            delimiter=text[0],
        )

    @staticmethod
    def is_valid(line: str) -> bool:
        """True when ``line`` parses and carries a matching checksum."""
        try:
            Sentence.parse(line)
        except ValueError:
            return False
        return validate_checksum(line.strip())


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _jitter(rng: random.Random, spread: float) -> float:
    return (rng.random() - 0.5) * spread


def _direction(value: float, positive: str, negative: str) -> tuple[str, str]:
    return f"{abs(value):.1f}", positive if value >= 0 else negative


class SentenceGenerator:
    """
    Builds checksummed NMEA 0183 sentences.

    Usage:
        generator = SentenceGenerator()
        rmc = generator.rmc(60.15, 24.95, speed=5.5, course=45.0)
        burst = generator.navigation_burst(100, start_lat=60.0, start_lon=24.0)
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = _utc_now,
        rng: random.Random | None = None,
    ):
        self.clock = clock
        self.rng = rng or random.Random()

    def _time(self) -> str:
        return self.clock().strftime("%H%M%S")

    def _date(self) -> str:
        return self.clock().strftime("%d%m%y")

    # -------------------------------------------------------------------------
    # Navigation
    # -------------------------------------------------------------------------

    def rmc(
        self,
        lat: float = 60.0,
        lon: float = 24.0,
        speed: float = 5.5,
        course: float = 45.0,
    ) -> Sentence:
        """Recommended minimum navigation data (speed in knots)."""
        lat_field, lat_dir = format_latitude(lat)
        lon_field, lon_dir = format_longitude(lon)
        return Sentence("GP", "RMC", (
            self._time(), "A",
            lat_field, lat_dir, lon_field, lon_dir,
            f"{speed:.1f}", f"{course % 360:.1f}",
            self._date(), "0.0", "E", "A",
        ))

    def gga(self, lat: float = 60.0, lon: float = 24.0, altitude: float = 10.0) -> Sentence:
        """GPS fix data."""
        lat_field, lat_dir = format_latitude(lat)
        lon_field, lon_dir = format_longitude(lon)
        return Sentence("GP", "GGA", (
            self._time(),
            lat_field, lat_dir, lon_field, lon_dir,
            "1", "08", "0.9", f"{altitude:.1f}", "M", "0.0", "M", "", "",
        ))

    def vtg(self, course: float = 45.0, speed_knots: float = 5.5) -> Sentence:
        """Track made good and ground speed."""
        return Sentence("GP", "VTG", (
            f"{course % 360:.1f}", "T", f"{course % 360:.1f}", "M",
            f"{speed_knots:.1f}", "N", f"{speed_knots * KNOTS_TO_KMH:.1f}", "K", "A",
        ))

    def hdt(self, heading: float = 125.5) -> Sentence:
        """True heading."""
        return Sentence("HE", "HDT", (f"{heading % 360:.1f}", "T"))

    def hdg(self, heading: float, deviation: float = 0.0, variation: float = 0.0) -> Sentence:
        """Magnetic heading with deviation and variation."""
        return Sentence("HC", "HDG", (
            f"{heading % 360:.1f}",
            *_direction(deviation, "E", "W"),
            *_direction(variation, "E", "W"),
        ))

    # -------------------------------------------------------------------------
    # Environment
    # -------------------------------------------------------------------------

    def dbt(self, depth_meters: float = 10.0) -> Sentence:
        """Depth below transducer in feet, metres and fathoms."""
        return Sentence("SD", "DBT", (
            f"{depth_meters * METERS_TO_FEET:.1f}", "f",
            f"{depth_meters:.1f}", "M",
            f"{depth_meters * METERS_TO_FATHOMS:.1f}", "F",
        ))

    def mwv(self, angle: float = 270.0, speed: float = 15.0, reference: str = "R") -> Sentence:
        """Wind speed (m/s) and angle; reference R=apparent, T=true."""
        return Sentence("WI", "MWV", (
            f"{angle % 360:.1f}", reference, f"{speed:.1f}", "M", "A",
        ))

    def mtw(self, temp_celsius: float = 18.5, talker: str = "YX") -> Sentence:
        """Water temperature in Celsius."""
        return Sentence(talker, "MTW", (f"{temp_celsius:.1f}", "C"))

    def xdr_temperature(self, temp_celsius: float, name: str = "TEMP") -> Sentence:
        """Transducer measurement carrying a temperature."""
        return Sentence("YX", "XDR", ("C", f"{temp_celsius:.1f}", "C", name))

    # -------------------------------------------------------------------------
    # Bursts
    # -------------------------------------------------------------------------

    def navigation_burst(
        self,
        count: int,
        start_lat: float = 60.0,
        start_lon: float = 24.0,
        speed: float = 5.0,
        course: float = 90.0,
    ) -> list[Sentence]:
        """RMC every step, GGA every 5th, HDG every 3rd."""
        sentences: list[Sentence] = []
        lat, lon = start_lat, start_lon

        for i in range(count):
            lat += _jitter(self.rng, 0.001)
            lon += _jitter(self.rng, 0.001)
            speed_var = max(0.0, speed + _jitter(self.rng, 2))
            course_var = course + _jitter(self.rng, 10)

            sentences.append(self.rmc(lat, lon, speed_var, course_var))
            if i % 5 == 0:
                sentences.append(self.gga(lat, lon))
            if i % 3 == 0:
                sentences.append(self.hdg(course_var))

        return sentences

    def environment_burst(
        self,
        count: int,
        depth: float = 10.0,
        wind_speed: float = 15.0,
        wind_angle: float = 45.0,
    ) -> list[Sentence]:
        """DBT and apparent MWV every step, true MWV every 3rd, XDR every 10th."""
        sentences: list[Sentence] = []

        for i in range(count):
            sentences.append(self.dbt(max(0.0, depth + _jitter(self.rng, 2))))

            speed = max(0.0, wind_speed + _jitter(self.rng, 5))
            angle = wind_angle + _jitter(self.rng, 20)
            sentences.append(self.mwv(angle, speed, "R"))

            if i % 3 == 0:
                sentences.append(self.mwv(angle + 10, speed * 0.9, "T"))
            if i % 10 == 0:
                sentences.append(self.xdr_temperature(20 + self.rng.random() * 5))

        return sentences

    def ais_burst(self, count: int) -> list[Sentence]:
        return [Sentence.parse(AIS_SAMPLES[i % len(AIS_SAMPLES)]) for i in range(count)]

    def fixed_navigation_burst(
        self, lat: float = 60.0, lon: float = 24.0, count: int = 10
    ) -> list[Sentence]:
        """Deterministic track: RMC, GGA, DBT, MWV per step, 0.001 deg apart."""
        sentences: list[Sentence] = []
        for i in range(count):
            step_lat = lat + i * 0.001
            step_lon = lon + i * 0.001
            sentences.extend((
                self.rmc(step_lat, step_lon, 5.5, 45.0),
                self.gga(step_lat, step_lon, 10.0),
                self.dbt(10.5),
                self.mwv(270, 15.0),
            ))
        return sentences

    def generate(self, config: Mapping[str, Any]) -> list[Sentence]:
        """Build a burst from a scenario ``generate`` block."""
        kind = config.get("type", "navigation")
        count = int(config.get("count", 100))

        if kind == "environment":
            return self.environment_burst(
                count,
                depth=config.get("depth", 10.0),
                wind_speed=config.get("wind_speed", 15.0),
                wind_angle=config.get("wind_angle", 45.0),
            )
        if kind == "ais":
            return self.ais_burst(count)
        return self.navigation_burst(
            count,
            start_lat=config.get("start_lat", 60.0),
            start_lon=config.get("start_lon", 24.0),
            speed=config.get("speed", 5.0),
            course=config.get("course", 90.0),
        )
