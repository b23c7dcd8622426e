"""
NMEA 2000 message synthesis in canboat JSON form.

Each message is one JSON object per line carrying the PGN, an ISO-8601
timestamp and a field map, which is what Signal K's canboat-json provider
reads over TCP.
"""

from __future__ import annotations

import json
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Callable, Mapping

PGN_DESCRIPTIONS: dict[int, str] = {
    127245: "Rudder",
    127250: "Vessel Heading",
    127488: "Engine Parameters, Rapid Update",
    127489: "Engine Parameters, Dynamic",
    127505: "Fluid Level",
    127508: "Battery Status",
    128259: "Speed",
    128267: "Water Depth",
    129025: "Position, Rapid Update",
    129026: "COG & SOG, Rapid Update",
    129029: "GNSS Position Data",
    130306: "Wind Data",
    130310: "Environmental Parameters",
    130311: "Environmental Parameters",
}


def describe_pgn(pgn: int) -> str:
    """Human-readable PGN name."""
    return PGN_DESCRIPTIONS.get(pgn, f"PGN {pgn}")


@dataclass(frozen=True)
class PgnMessage:
    """One canboat-style NMEA 2000 message."""

    pgn: int
    timestamp: str
    fields: Mapping[str, Any] = field(default_factory=dict, hash=False)
    prio: int = 2
    src: int = 0
    dst: int = 255

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    @property
    def description(self) -> str:
        return describe_pgn(self.pgn)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "prio": self.prio,
            "src": self.src,
            "dst": self.dst,
            "pgn": self.pgn,
            "description": self.description,
            "fields": dict(self.fields),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    def __str__(self) -> str:
        return self.to_json()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _jitter(rng: random.Random, spread: float) -> float:
    return (rng.random() - 0.5) * spread


class N2kGenerator:
    """
    Builds canboat JSON messages for common PGNs.

    Units follow canboat conventions: degrees for angles and positions,
    knots for speeds, metres for depth, Celsius for temperatures.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = _utc_now,
        rng: random.Random | None = None,
    ):
        self.clock = clock
        self.rng = rng or random.Random()

    def pgn(self, pgn: int, fields: dict[str, Any]) -> PgnMessage:
        """Wrap a field map in a message stamped with the current time."""
        return PgnMessage(pgn=pgn, timestamp=self.clock().isoformat(), fields=fields)

    def position(self, lat: float, lon: float) -> PgnMessage:
        return self.pgn(129025, {"Latitude": lat, "Longitude": lon})

    def cog_sog(self, cog: float, sog: float) -> PgnMessage:
        return self.pgn(129026, {"COG Reference": "True", "COG": cog, "SOG": sog})

    def heading(
        self, heading: float, deviation: float = 0.0, variation: float = 0.0
    ) -> PgnMessage:
        return self.pgn(127250, {
            "Heading": heading,
            "Deviation": deviation,
            "Variation": variation,
            "Reference": "Magnetic",
        })

    def depth(self, depth: float, offset: float = 0.0) -> PgnMessage:
        return self.pgn(128267, {"Depth": depth, "Offset": offset})

    def wind(self, speed: float, angle: float, reference: str = "Apparent") -> PgnMessage:
        return self.pgn(130306, {
            "Wind Speed": speed,
            "Wind Angle": angle,
            "Reference": reference,
        })

    def speed(self, speed_water: float, speed_ground: float | None = None) -> PgnMessage:
        fields: dict[str, Any] = {"Speed Water Referenced": speed_water}
        if speed_ground is not None:
            fields["Speed Ground Referenced"] = speed_ground
        return self.pgn(128259, fields)

    def environment(
        self,
        water_temp: float,
        air_temp: float | None = None,
        pressure: float | None = None,
    ) -> PgnMessage:
        fields: dict[str, Any] = {"Water Temperature": water_temp}
        if air_temp is not None:
            fields["Outside Ambient Air Temperature"] = air_temp
        if pressure is not None:
            fields["Atmospheric Pressure"] = pressure
        return self.pgn(130310, fields)

    def engine_rapid(self, instance: int, rpm: float, tilt: float = 0.0) -> PgnMessage:
        return self.pgn(127488, {
            "Engine Instance": instance,
            "Engine Speed": rpm,
            "Engine Tilt/Trim": tilt,
        })

    def battery(
        self,
        instance: int,
        voltage: float,
        current: float,
        temperature: float | None = None,
    ) -> PgnMessage:
        fields: dict[str, Any] = {
            "Battery Instance": instance,
            "Voltage": voltage,
            "Current": current,
        }
        if temperature is not None:
            fields["Temperature"] = temperature
        return self.pgn(127508, fields)

    def fluid_level(
        self, instance: int, fluid_type: str, level: float, capacity: float
    ) -> PgnMessage:
        return self.pgn(127505, {
            "Instance": instance,
            "Fluid Type": fluid_type,
            "Level": level,
            "Capacity": capacity,
        })

    # -------------------------------------------------------------------------
    # Bursts
    # -------------------------------------------------------------------------

    def navigation_burst(
        self,
        count: int,
        start_lat: float = 60.0,
        start_lon: float = 24.0,
        heading: float = 90.0,
        sog: float = 5.0,
        cog: float = 90.0,
    ) -> list[PgnMessage]:
        """Position and COG/SOG every step, heading every 2nd, speed every 3rd."""
        messages: list[PgnMessage] = []
        lat, lon = start_lat, start_lon

        for i in range(count):
            lat += _jitter(self.rng, 0.0001)
            lon += _jitter(self.rng, 0.0001)
            heading += _jitter(self.rng, 2)
            sog = max(0.0, sog + _jitter(self.rng, 0.5))
            cog += _jitter(self.rng, 2)

            messages.append(self.position(lat, lon))
            messages.append(self.cog_sog(cog % 360, sog))
            if i % 2 == 0:
                messages.append(self.heading(heading % 360))
            if i % 3 == 0:
                messages.append(self.speed(sog * 0.9, sog))

        return messages

    def environment_burst(
        self,
        count: int,
        depth: float = 10.0,
        wind_speed: float = 10.0,
        wind_angle: float = 45.0,
    ) -> list[PgnMessage]:
        """Depth and apparent wind every step, true wind every 3rd, temps every 5th."""
        messages: list[PgnMessage] = []

        for i in range(count):
            messages.append(self.depth(max(0.0, depth + _jitter(self.rng, 2))))

            speed = max(0.0, wind_speed + _jitter(self.rng, 3))
            angle = wind_angle + _jitter(self.rng, 10)
            messages.append(self.wind(speed, angle, "Apparent"))

            if i % 3 == 0:
                messages.append(self.wind(speed * 0.9, angle + 10, "True (boat referenced)"))
            if i % 5 == 0:
                messages.append(self.environment(
                    15 + self.rng.random() * 3,
                    20 + self.rng.random() * 5,
                ))

        return messages

    def engine_burst(self, count: int, rpm: float = 2500, engines: int = 1) -> list[PgnMessage]:
        """Engine rapid update per engine each step, battery every 10th, fuel every 20th."""
        messages: list[PgnMessage] = []

        for i in range(count):
            for engine in range(engines):
                messages.append(self.engine_rapid(engine, rpm + _jitter(self.rng, 200)))
            if i % 10 == 0:
                messages.append(self.battery(
                    0, 12.5 + self.rng.random(), 10 + self.rng.random() * 5
                ))
            if i % 20 == 0:
                messages.append(self.fluid_level(0, "Fuel", 75, 200))

        return messages
