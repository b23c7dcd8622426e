"""
Working directory for one server instance.

The directory is bind-mounted as the server's configuration home. The
server runs as an unprivileged user inside the container and rewrites
these files at startup, so everything is made world-writable.
"""

from __future__ import annotations

import json
import shutil
from pathlib import Path
from typing import Any

from release_harness.core.exceptions import WorkspaceError
from release_harness.core.logging import get_logger

logger = get_logger("container.workspace")

SUBDIRECTORIES = ("plugin-config-data", "logs")

PACKAGE_MANIFEST: dict[str, Any] = {
    "name": "signalk-server-config",
    "version": "0.0.1",
    "description": "SignalK server configuration",
    "dependencies": {},
}


def default_settings(udp_port: int) -> dict[str, Any]:
    """
    Minimal server settings.

    The built-in NMEA TCP interface listens on ``NMEA0183PORT``; the
    ``tcpserver`` provider consumes what arrives there. The ``udp`` provider
    listens for one sentence per datagram on ``udp_port``.
    """
    return {
        "vessel": {
            "name": "Test Vessel",
            "uuid": "urn:mrn:signalk:uuid:c0d79334-4e25-4245-8892-54e8ccc8021d",
        },
        "interfaces": {},
        "ssl": False,
        "security": {
            "strategy": "./tokensecurity",
            "allowReadToPublic": True,
            "allowWriteToPublic": True,
        },
        "pipedProviders": [
            {
                "id": "nmea-tcp-input",
                "pipeElements": [
                    {"type": "providers/tcpserver"},
                    {"type": "providers/liner"},
                    {"type": "providers/nmea0183-signalk"},
                ],
                "enabled": True,
            },
            {
                "id": "nmea-udp-input",
                "pipeElements": [
                    {"type": "providers/udp", "options": {"port": udp_port}},
                    {"type": "providers/nmea0183-signalk"},
                ],
                "enabled": True,
            },
        ],
    }


class Workspace:
    """Materialises and removes the per-run configuration directory."""

    def __init__(self, root: Path | str, udp_port: int, template: Path | str | None = None):
        self.root = Path(root)
        self.udp_port = udp_port
        self.template = Path(template) if template else None

    @property
    def settings_path(self) -> Path:
        return self.root / "settings.json"

    @property
    def package_path(self) -> Path:
        return self.root / "package.json"

    def prepare(self) -> None:
        """Write settings and package manifest; raise WorkspaceError on I/O failure."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            for name in SUBDIRECTORIES:
                (self.root / name).mkdir(exist_ok=True)

            if self.template is not None and self.template.exists():
                shutil.copyfile(self.template, self.settings_path)
            else:
                self.settings_path.write_text(
                    json.dumps(default_settings(self.udp_port), indent=2),
                    encoding="utf-8",
                )
            self.package_path.write_text(
                json.dumps(PACKAGE_MANIFEST, indent=2), encoding="utf-8"
            )

            # Permissions last so the in-container node user can rewrite everything
            self.root.chmod(0o777)
            for name in SUBDIRECTORIES:
                (self.root / name).chmod(0o777)
            self.settings_path.chmod(0o666)
            self.package_path.chmod(0o666)
        except OSError as e:
            raise WorkspaceError(
                f"Cannot prepare working directory {self.root}: {e}",
                details={"path": str(self.root)},
            ) from e

        logger.debug(f"Prepared working directory {self.root}")

    def read_settings(self) -> dict[str, Any]:
        return json.loads(self.settings_path.read_text(encoding="utf-8"))

    def cleanup(self) -> None:
        """Best-effort recursive delete."""
        shutil.rmtree(self.root, ignore_errors=True)
