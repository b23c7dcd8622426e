"""
NMEA 0183 encoding primitives.

Checksums, latitude/longitude field encoding and the unit conversions
test expectations need when asserting against Signal K (which stores
SI units: m/s, Kelvin, radians).
"""

from __future__ import annotations

import math

KNOTS_TO_MS = 0.514444
KNOTS_TO_KMH = 1.852
METERS_TO_FEET = 3.28084
METERS_TO_FATHOMS = 0.546807
KELVIN_OFFSET = 273.15

SENTENCE_DELIMITERS = ("$", "!")


def _payload(sentence: str) -> str:
    """Characters covered by the checksum: after the delimiter, before '*'."""
    body = sentence.strip().split("*", 1)[0]
    if body[:1] in SENTENCE_DELIMITERS:
        body = body[1:]
    return body


def nmea_checksum(sentence: str) -> str:
    """XOR of every payload byte as two uppercase hex digits."""
    value = 0
    for byte in _payload(sentence).encode("ascii", errors="replace"):
        value ^= byte
    return f"{value:02X}"


def add_checksum(sentence: str) -> str:
    """Return the sentence with a freshly computed checksum (replacing any)."""
    base = sentence.strip().split("*", 1)[0]
    return f"{base}*{nmea_checksum(base)}"


def split_checksum(sentence: str) -> tuple[str, str | None]:
    """Split ``$...*HH`` into (base, checksum); checksum is None if absent."""
    line = sentence.strip()
    if "*" not in line:
        return line, None
    base, checksum = line.split("*", 1)
    return base, checksum.strip().upper() or None


def validate_checksum(sentence: str) -> bool:
    """True when the sentence carries a checksum matching its payload."""
    base, provided = split_checksum(sentence)
    if provided is None:
        return False
    return nmea_checksum(base) == provided


def _format_coordinate(
    value: float, degree_digits: int, minute_decimals: int
) -> str:
    magnitude = abs(value)
    degrees = math.floor(magnitude)
    minutes = round((magnitude - degrees) * 60, minute_decimals)
    # 59.9996 rounds to 60.000 at 3 decimals
    if minutes >= 60:
        degrees += 1
        minutes -= 60
    width = 3 + minute_decimals if minute_decimals else 2
    return f"{degrees:0{degree_digits}d}{minutes:0{width}.{minute_decimals}f}"


def format_latitude(value: float, minute_decimals: int = 3) -> tuple[str, str]:
    """Encode decimal degrees as (``ddmm.mmm``, ``N``/``S``)."""
    hemisphere = "N" if value >= 0 else "S"
    return _format_coordinate(value, 2, minute_decimals), hemisphere


def format_longitude(value: float, minute_decimals: int = 3) -> tuple[str, str]:
    """Encode decimal degrees as (``dddmm.mmm``, ``E``/``W``)."""
    hemisphere = "E" if value >= 0 else "W"
    return _format_coordinate(value, 3, minute_decimals), hemisphere


def parse_coordinate(field: str, hemisphere: str) -> float:
    """Decode a ``ddmm.mmm``/``dddmm.mmm`` field back to decimal degrees."""
    whole, _, _ = field.partition(".")
    degree_len = len(whole) - 2
    if degree_len < 1:
        raise ValueError(f"Malformed coordinate field: {field!r}")
    degrees = int(field[:degree_len])
    minutes = float(field[degree_len:])
    value = degrees + minutes / 60
    if hemisphere.upper() in ("S", "W"):
        value = -value
    return value


def knots_to_ms(knots: float) -> float:
    return knots * KNOTS_TO_MS


def ms_to_knots(ms: float) -> float:
    return ms / KNOTS_TO_MS


def celsius_to_kelvin(celsius: float) -> float:
    return celsius + KELVIN_OFFSET


def kelvin_to_celsius(kelvin: float) -> float:
    return kelvin - KELVIN_OFFSET


def degrees_to_radians(degrees: float) -> float:
    return math.radians(degrees)


def radians_to_degrees(radians: float) -> float:
    return math.degrees(radians)
