"""Pytest configuration and fixtures."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

import httpx
import pytest

from release_harness.container.demux import StreamType, encode_frame
from release_harness.container.engine import DockerEngineClient
from release_harness.core.config import Settings
from release_harness.core.logging import phase_var
from release_harness.logs.classifier import LogClassifier
from release_harness.traffic.n2k import N2kGenerator
from release_harness.traffic.nmea0183 import SentenceGenerator

FIXED_NOW = datetime(2024, 6, 1, 12, 30, 45, 500000, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_NOW


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered in small pieces, like a followed log."""

    def __init__(self, body: bytes, size: int = 16):
        self.body = body
        self.size = size

    async def __aiter__(self):
        for start in range(0, len(self.body), self.size):
            yield self.body[start:start + self.size]


@pytest.fixture(autouse=True)
def clear_log_phase():
    """Each test starts outside any log phase."""
    token = phase_var.set(None)
    yield
    phase_var.reset(token)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Fast, hermetic settings: temp working dirs, short readiness polling."""
    return Settings(
        data_dir_root=str(tmp_path),
        start_timeout=2.0,
        readiness_interval=0.01,
        readiness_request_timeout=0.5,
        readiness_require_tcp=False,
        report_dir=str(tmp_path / "reports"),
    )


@pytest.fixture
def classifier() -> LogClassifier:
    return LogClassifier(max_log_entries=100)


@pytest.fixture
def sentence_generator() -> SentenceGenerator:
    return SentenceGenerator(clock=fixed_clock, rng=random.Random(42))


@pytest.fixture
def n2k_generator() -> N2kGenerator:
    return N2kGenerator(clock=fixed_clock, rng=random.Random(42))


# =============================================================================
# FAKE DOCKER ENGINE
# =============================================================================


@dataclass
class FakeEngine:
    """
    In-memory Docker Engine API behind ``httpx.MockTransport``.

    Records every request as ``(method, path)``; per-route overrides can be
    installed in ``responses`` keyed the same way.
    """

    container_id: str = "abc123def4567890"
    running: bool = False
    exists: bool = False
    image_present: bool = True
    log_body: bytes = b""
    stats_body: dict[str, Any] = field(default_factory=dict)
    calls: list[tuple[str, str]] = field(default_factory=list)
    requests: list[httpx.Request] = field(default_factory=list)
    responses: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = field(
        default_factory=dict
    )

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        key = (request.method, path)
        self.calls.append(key)
        self.requests.append(request)

        if key in self.responses:
            return self.responses[key](request)

        cid = self.container_id
        if key == ("GET", "/_ping"):
            return httpx.Response(200, text="OK")
        if key == ("POST", "/images/create"):
            self.image_present = True
            return httpx.Response(200, text='{"status":"Pulling"}\n{"status":"Done"}\n')
        if key == ("POST", "/containers/create"):
            if not self.image_present:
                return httpx.Response(404, json={"message": "No such image"})
            self.exists = True
            return httpx.Response(201, json={"Id": cid, "Warnings": []})

        if not path.startswith("/containers/") and not path.startswith("/exec/"):
            return httpx.Response(404, json={"message": "not found"})

        if path.startswith("/containers/") and not self.exists:
            return httpx.Response(404, json={"message": f"No such container: {path}"})

        if key == ("POST", f"/containers/{cid}/start"):
            self.running = True
            return httpx.Response(204)
        if key == ("POST", f"/containers/{cid}/stop"):
            if not self.running:
                return httpx.Response(304)
            self.running = False
            return httpx.Response(204)
        if key == ("POST", f"/containers/{cid}/restart"):
            self.running = True
            return httpx.Response(204)
        if key == ("POST", f"/containers/{cid}/kill"):
            if not self.running:
                return httpx.Response(409, json={"message": "is not running"})
            self.running = False
            return httpx.Response(204)
        if request.method == "DELETE" and path.startswith("/containers/"):
            self.exists = False
            self.running = False
            return httpx.Response(204)
        if key == ("GET", f"/containers/{cid}/json"):
            return httpx.Response(200, json={
                "Id": cid,
                "State": {
                    "Running": self.running,
                    "Status": "running" if self.running else "exited",
                    "StartedAt": "2024-06-01T12:00:00Z",
                    "ExitCode": 0 if self.running else 137,
                    "Health": {"Status": "healthy" if self.running else "unhealthy"},
                },
            })
        if key == ("GET", f"/containers/{cid}/logs"):
            return httpx.Response(200, stream=ChunkedStream(self.log_body))
        if key == ("GET", f"/containers/{cid}/stats"):
            return httpx.Response(200, json=self.stats_body)
        if key == ("PUT", f"/containers/{cid}/archive"):
            return httpx.Response(200)
        if key == ("POST", f"/containers/{cid}/exec"):
            return httpx.Response(201, json={"Id": "exec1"})
        if key == ("POST", "/exec/exec1/start"):
            return httpx.Response(
                200, content=encode_frame(StreamType.STDOUT, b"v2.5.0\n")
            )
        if key == ("GET", "/exec/exec1/json"):
            return httpx.Response(200, json={"ExitCode": 0})

        return httpx.Response(404, json={"message": f"unhandled {key}"})

    def client(self) -> DockerEngineClient:
        return DockerEngineClient(
            "http://docker", transport=httpx.MockTransport(self.handler), timeout=5
        )


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


def discovery_body(port: int = 3000) -> dict[str, Any]:
    """Discovery document of a booted server."""
    return {
        "endpoints": {
            "v1": {
                "version": "2.5.0",
                "signalk-http": f"http://localhost:{port}/signalk/v1/api/",
                "signalk-ws": f"ws://localhost:{port}/signalk/v1/stream",
            }
        },
        "server": {"id": "signalk-server-node", "version": "2.5.0"},
    }


@dataclass
class FakeServer:
    """
    Answers discovery requests with a scripted sequence of replies.

    Each step is ``(status, json_body)`` or an exception to raise; the last
    step repeats once the script is exhausted.
    """

    script: list[tuple[int, Any] | Exception] = field(
        default_factory=lambda: [(200, discovery_body())]
    )
    hits: int = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.hits += 1
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(step, Exception):
            raise step
        status, body = step
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_server() -> FakeServer:
    return FakeServer()


def frames(*lines: tuple[StreamType, str]) -> bytes:
    """Multiplexed log buffer from (stream, text) pairs."""
    return b"".join(encode_frame(stream, text.encode()) for stream, text in lines)
