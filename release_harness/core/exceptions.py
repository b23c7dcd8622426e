"""Harness exception hierarchy."""

from __future__ import annotations

from typing import Any


class HarnessError(Exception):
    """Base harness exception with a structured payload."""

    error_code: str = "HARNESS_ERROR"
    message: str = "Release harness failure"

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dict for reports."""
        return {
            "error": self.error_code,
            "message": self.message,
            **({"details": self.details} if self.details else {}),
        }


class WorkspaceError(HarnessError):
    """Working directory could not be materialised."""

    error_code = "WORKSPACE_ERROR"
    message = "Failed to prepare working directory"


class ContainerPlatformError(HarnessError):
    """Docker engine call failed."""

    error_code = "PLATFORM_ERROR"
    message = "Container platform call failed"

    def __init__(
        self,
        message: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.status_code = status_code
        details = dict(details or {})
        if status_code is not None:
            details.setdefault("status_code", status_code)
        super().__init__(message, details=details)

    @property
    def not_found(self) -> bool:
        return self.status_code == 404

    @property
    def not_modified(self) -> bool:
        return self.status_code == 304

    @property
    def conflict(self) -> bool:
        return self.status_code == 409


class StartupTimeoutError(HarnessError):
    """Server did not become ready within the startup budget."""

    error_code = "STARTUP_TIMEOUT"
    message = "Server did not become ready in time"

    def __init__(
        self,
        message: str | None = None,
        state: str | None = None,
        status: dict[str, Any] | None = None,
        log_tail: str = "",
    ):
        self.state = state
        self.status = status
        self.log_tail = log_tail
        super().__init__(
            message,
            details={"state": state, "status": status},
        )

    def __str__(self) -> str:
        return (
            f"{self.message}\n"
            f"Instance state: {self.state}\n"
            f"Container status: {self.status}\n"
            f"Last logs:\n{self.log_tail}"
        )


class ContainerNotRunningError(HarnessError):
    """Operation needs a container but none exists."""

    error_code = "CONTAINER_NOT_RUNNING"
    message = "Container not running"


class TransportError(HarnessError):
    """Traffic could not be delivered at all (e.g. TCP connect failed)."""

    error_code = "TRANSPORT_ERROR"
    message = "Traffic transport failed"
