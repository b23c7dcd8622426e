"""
Synthetic traffic for the server's NMEA 0183 and NMEA 2000 inputs.
"""

from release_harness.traffic.fixtures import FixtureLoader
from release_harness.traffic.n2k import N2kGenerator, PgnMessage
from release_harness.traffic.nmea0183 import Sentence, SentenceGenerator
from release_harness.traffic.transport import (
    DeliveryError,
    PhaseResult,
    ScenarioResult,
    TrafficTransport,
    TransmissionResult,
)

__all__ = [
    "DeliveryError",
    "FixtureLoader",
    "N2kGenerator",
    "PgnMessage",
    "PhaseResult",
    "ScenarioResult",
    "Sentence",
    "SentenceGenerator",
    "TrafficTransport",
    "TransmissionResult",
]
