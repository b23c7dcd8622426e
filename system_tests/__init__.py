"""
Release validation suite.

Grey-box tests against a real server container:

Key Features:
- Disposable container per session from SIGNALK_IMAGE
- Per-test log phases (fail on server errors)
- NMEA 0183 traffic over TCP and UDP
- Markdown/JSON log reports
"""
