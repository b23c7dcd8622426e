"""Release-validation harness for a Signal K server running in Docker.

Boots the server under test as a disposable container, feeds it NMEA 0183
and NMEA 2000 traffic, and classifies its logs per test phase.
"""

__version__ = "1.0.0"
