"""Core infrastructure: settings, logging, exceptions."""

from .config import Settings, get_settings
from .exceptions import (
    ContainerNotRunningError,
    ContainerPlatformError,
    HarnessError,
    StartupTimeoutError,
    TransportError,
    WorkspaceError,
)
from .logging import get_logger, setup_logging


__all__ = [
    "ContainerNotRunningError",
    "ContainerPlatformError",
    "HarnessError",
    "Settings",
    "StartupTimeoutError",
    "TransportError",
    "WorkspaceError",
    "get_logger",
    "get_settings",
    "setup_logging",
]
