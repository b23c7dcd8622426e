"""
Lifecycle of one disposable server container.

State machine::

    absent -> creating -> running -> stopping -> stopped | killed -> absent

A restart cycles running -> stopping -> creating -> running. Only the
creating -> running transition is gated on readiness.
"""

from __future__ import annotations

import asyncio
import contextlib
import io
import tarfile
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx

from release_harness.container.demux import demux_to_text
from release_harness.container.engine import DockerEngineClient, ExecResult, stream_chunks
from release_harness.container.stats import ContainerStats, CpuSample, compute_stats
from release_harness.container.workspace import Workspace
from release_harness.core.config import Settings, get_settings
from release_harness.core.exceptions import (
    ContainerNotRunningError,
    ContainerPlatformError,
    StartupTimeoutError,
)
from release_harness.core.logging import get_logger

if TYPE_CHECKING:
    from release_harness.logs.classifier import LogClassifier

logger = get_logger("container.manager")

CONTAINER_HOME = "/home/node/.signalk"
CONTAINER_HTTP_PORT = 3000
CONTAINER_HTTPS_PORT = 3443
DISCOVERY_PATH = "/signalk"
TCP_POLL_INTERVAL = 0.5
REMOVE_GRACE_PERIOD = 5

# Engine expects durations in nanoseconds
HEALTHCHECK = {
    "Test": ["CMD", "curl", "-f", f"http://localhost:{CONTAINER_HTTP_PORT}{DISCOVERY_PATH}"],
    "Interval": 5_000_000_000,
    "Timeout": 3_000_000_000,
    "Retries": 12,
    "StartPeriod": 30_000_000_000,
}


class InstanceState(str, Enum):
    ABSENT = "absent"
    CREATING = "creating"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    KILLED = "killed"


@dataclass(frozen=True)
class PortMap:
    """Host-side ports of one instance."""

    http: int = 3000
    https: int = 3443
    tcp: int = 10110
    udp: int = 10111

    @classmethod
    def from_settings(cls, settings: Settings) -> "PortMap":
        return cls(
            http=settings.http_port,
            https=settings.https_port,
            tcp=settings.tcp_port,
            udp=settings.udp_port,
        )


@dataclass(frozen=True)
class StartOverrides:
    """Per-start additions to the container definition."""

    env: dict[str, str] = field(default_factory=dict)
    network_mode: str | None = None
    image: str | None = None


@dataclass
class ManagedInstance:
    name: str
    data_dir: Path
    ports: PortMap
    container_id: str | None = None
    state: InstanceState = InstanceState.ABSENT


@dataclass(frozen=True)
class ConnectionInfo:
    base_url: str
    https_url: str
    ws_url: str
    wss_url: str
    api_url: str
    tcp_port: int
    udp_port: int
    https_port: int
    data_dir: Path
    container_id: str | None


class ContainerManager:
    """
    Boots, health-checks and tears down one server container.

    Usage:
        manager = ContainerManager(settings, classifier=classifier)
        info = await manager.start()
        ... drive traffic at info.tcp_port ...
        await manager.remove()

    Lifecycle calls are not serialised against each other; callers run
    them one at a time.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        engine: DockerEngineClient | None = None,
        classifier: "LogClassifier | None" = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
        host: str = "localhost",
    ):
        self.settings = settings or get_settings()
        self._owns_engine = engine is None
        self.engine = engine or DockerEngineClient.from_settings(self.settings)
        self.classifier = classifier
        self.host = host
        self._http_transport = http_transport

        stamp = int(time.time() * 1000)
        self.instance = ManagedInstance(
            name=f"{self.settings.container_name_prefix}-{stamp}",
            data_dir=Path(self.settings.data_dir_root) / f"signalk-test-data-{stamp}",
            ports=PortMap.from_settings(self.settings),
        )
        self.workspace = Workspace(
            self.instance.data_dir,
            udp_port=self.instance.ports.udp,
            template=self.settings.settings_template,
        )

    @property
    def state(self) -> InstanceState:
        return self.instance.state

    @property
    def container_id(self) -> str | None:
        return self.instance.container_id

    @property
    def connection_info(self) -> ConnectionInfo:
        ports = self.instance.ports
        return ConnectionInfo(
            base_url=f"http://{self.host}:{ports.http}",
            https_url=f"https://{self.host}:{ports.https}",
            ws_url=f"ws://{self.host}:{ports.http}/signalk/v1/stream",
            wss_url=f"wss://{self.host}:{ports.https}/signalk/v1/stream",
            api_url=f"http://{self.host}:{ports.http}/signalk/v1/api",
            tcp_port=ports.tcp,
            udp_port=ports.udp,
            https_port=ports.https,
            data_dir=self.instance.data_dir,
            container_id=self.instance.container_id,
        )

    def _set_phase(self, phase: str) -> None:
        if self.classifier is not None:
            self.classifier.set_phase(phase)

    def _require_container(self) -> str:
        if not self.instance.container_id:
            raise ContainerNotRunningError(
                details={"name": self.instance.name, "state": self.instance.state.value}
            )
        return self.instance.container_id

    def container_config(self, overrides: StartOverrides | None = None) -> dict[str, Any]:
        """Engine create body for this instance."""
        overrides = overrides or StartOverrides()
        ports = self.instance.ports
        env = {
            "SIGNALK_NODE_SETTINGS": f"{CONTAINER_HOME}/settings.json",
            "NMEA0183PORT": str(ports.tcp),
            **overrides.env,
        }
        bindings = {
            f"{CONTAINER_HTTP_PORT}/tcp": ports.http,
            f"{CONTAINER_HTTPS_PORT}/tcp": ports.https,
            f"{ports.tcp}/tcp": ports.tcp,
            f"{ports.udp}/udp": ports.udp,
        }
        return {
            "Image": overrides.image or self.settings.image,
            "Env": [f"{key}={value}" for key, value in env.items()],
            "ExposedPorts": {port: {} for port in bindings},
            "Healthcheck": dict(HEALTHCHECK),
            "HostConfig": {
                "PortBindings": {
                    port: [{"HostPort": str(host_port)}]
                    for port, host_port in bindings.items()
                },
                "Binds": [f"{self.instance.data_dir}:{CONTAINER_HOME}"],
                "RestartPolicy": {"Name": "no"},
                "NetworkMode": overrides.network_mode or "bridge",
            },
        }

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def prepare(self) -> Path:
        """Materialise the working directory; raises WorkspaceError."""
        await asyncio.to_thread(self.workspace.prepare)
        return self.instance.data_dir

    async def start(self, overrides: StartOverrides | None = None) -> ConnectionInfo:
        """Create, start and wait for the server; returns where to reach it."""
        self._set_phase("container-start")
        self.instance.state = InstanceState.CREATING
        await self.prepare()

        name = self.instance.name
        try:
            await self.engine.remove(name, force=True)
            logger.info(f"Removed stale container {name}")
        except ContainerPlatformError as e:
            if not e.not_found:
                raise

        config = self.container_config(overrides)
        try:
            container_id = await self.engine.create_container(name, config)
        except ContainerPlatformError as e:
            if not e.not_found:
                raise
            await self.engine.pull_image(config["Image"])
            container_id = await self.engine.create_container(name, config)
        self.instance.container_id = container_id
        logger.info(f"Created container {name} ({container_id[:12]}) from {config['Image']}")

        if self.classifier is not None:
            # Follow before start so nothing printed at boot is missed
            response = await self.engine.open_log_stream(container_id)
            self.classifier.attach(stream_chunks(response))

        await self.engine.start(container_id)
        await self.wait_for_ready()
        self.instance.state = InstanceState.RUNNING
        logger.info(f"Server ready at {self.connection_info.base_url}")
        return self.connection_info

    async def wait_for_ready(self, timeout: float | None = None) -> None:
        """
        Block until discovery answers with a populated ``endpoints`` map.

        With ``readiness_require_tcp`` the NMEA TCP port must also accept
        connections within the same budget.
        """
        loop = asyncio.get_running_loop()
        budget = timeout if timeout is not None else self.settings.start_timeout
        deadline = loop.time() + budget
        interval = self.settings.readiness_interval

        async with httpx.AsyncClient(
            base_url=f"http://{self.host}:{self.instance.ports.http}",
            transport=self._http_transport,
            timeout=self.settings.readiness_request_timeout,
        ) as client:
            while not await self._discovery_ready(client):
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise await self._startup_timeout(
                        f"Server not ready after {budget}s"
                    )
                await asyncio.sleep(min(interval, remaining))

        if self.settings.readiness_require_tcp:
            await self._wait_for_tcp(deadline)

    async def _discovery_ready(self, client: httpx.AsyncClient) -> bool:
        try:
            response = await client.get(DISCOVERY_PATH)
            if response.status_code != 200:
                return False
            body = response.json()
        except (httpx.HTTPError, ValueError):
            return False
        return isinstance(body, dict) and bool(body.get("endpoints"))

    async def _wait_for_tcp(self, deadline: float) -> None:
        loop = asyncio.get_running_loop()
        port = self.instance.ports.tcp
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise await self._startup_timeout(
                    f"NMEA TCP port {port} not accepting connections"
                )
            try:
                _, writer = await asyncio.wait_for(
                    asyncio.open_connection(self.host, port), remaining
                )
            except (OSError, asyncio.TimeoutError):
                await asyncio.sleep(min(TCP_POLL_INTERVAL, max(remaining, 0)))
                continue
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()
            return

    async def _startup_timeout(self, message: str) -> StartupTimeoutError:
        status = await self.get_status()
        log_tail = ""
        if self.instance.container_id:
            try:
                log_tail = await self.get_logs(self.settings.startup_log_tail)
            except ContainerPlatformError as e:
                log_tail = f"[ERROR FETCHING LOGS: {e}]"
        logger.error(f"{message} (state={self.instance.state.value}, status={status})")
        return StartupTimeoutError(
            message,
            state=self.instance.state.value,
            status=status,
            log_tail=log_tail,
        )

    async def stop(self, grace_period: int = 10) -> None:
        """Graceful stop; a container that is not running is left alone."""
        self._set_phase("container-stop")
        container_id = self.instance.container_id
        if not container_id:
            return

        try:
            info = await self.engine.inspect(container_id)
        except ContainerPlatformError as e:
            if not e.not_found:
                raise
            logger.warning(f"Container {self.instance.name} no longer exists")
            self.instance.container_id = None
            self.instance.state = InstanceState.ABSENT
            return

        if info.get("State", {}).get("Running"):
            self.instance.state = InstanceState.STOPPING
            try:
                await self.engine.stop(container_id, grace_period)
            except ContainerPlatformError as e:
                if not e.not_modified:
                    raise
                logger.debug(f"Container {self.instance.name} already stopped")
        self.instance.state = InstanceState.STOPPED
        logger.info(f"Stopped container {self.instance.name}")

    async def restart(self, grace_period: int = 10) -> ConnectionInfo:
        """Native restart, then the same readiness gate as start."""
        self._set_phase("container-restart")
        container_id = self._require_container()
        self.instance.state = InstanceState.STOPPING
        await self.engine.restart(container_id, grace_period)
        self.instance.state = InstanceState.CREATING
        await self.wait_for_ready()
        self.instance.state = InstanceState.RUNNING
        logger.info(f"Restarted container {self.instance.name}")
        return self.connection_info

    async def kill(self, signal: str = "SIGKILL") -> None:
        """Deliver a signal with no grace period."""
        self._set_phase("container-kill")
        container_id = self._require_container()
        try:
            await self.engine.kill(container_id, signal)
        except ContainerPlatformError as e:
            if not e.conflict:
                raise
            logger.warning(f"Container {self.instance.name} was not running: {e}")
        self.instance.state = InstanceState.KILLED
        logger.info(f"Sent {signal} to container {self.instance.name}")

    async def remove(self, cleanup: bool = True) -> None:
        """Tear everything down. Safe to call more than once."""
        if self.classifier is not None:
            self.classifier.detach()

        container_id = self.instance.container_id
        if container_id:
            try:
                await self.engine.stop(container_id, REMOVE_GRACE_PERIOD)
            except ContainerPlatformError as e:
                logger.debug(f"Stop before remove: {e}")
            try:
                await self.engine.remove(container_id, force=True)
                logger.info(f"Removed container {self.instance.name}")
            except ContainerPlatformError as e:
                if not e.not_found:
                    raise
            self.instance.container_id = None

        self.instance.state = InstanceState.ABSENT
        if cleanup:
            await asyncio.to_thread(self.workspace.cleanup)

    async def aclose(self) -> None:
        if self._owns_engine:
            await self.engine.aclose()

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    async def get_logs(self, tail: int = 100) -> str:
        container_id = self._require_container()
        raw = await self.engine.logs(container_id, tail=tail)
        return demux_to_text(raw)

    async def get_stats(self) -> ContainerStats:
        """CPU from two consecutive cumulative samples, memory from the latest."""
        container_id = self._require_container()
        raw = await self.engine.stats(container_id)
        previous = CpuSample.from_raw(raw.get("precpu_stats") or {})
        current = CpuSample.from_raw(raw.get("cpu_stats") or {})

        if not previous.populated:
            # First read after start has no precpu sample; take a second one
            previous = current
            raw = await self.engine.stats(container_id)
            current = CpuSample.from_raw(raw.get("cpu_stats") or {})

        return compute_stats(previous, current, raw.get("memory_stats") or {})

    async def get_status(self) -> dict[str, Any] | None:
        """Platform view of the container, or None if it cannot be inspected."""
        container_id = self.instance.container_id
        if not container_id:
            return None
        try:
            info = await self.engine.inspect(container_id)
        except ContainerPlatformError as e:
            logger.debug(f"Inspect failed: {e}")
            return None

        state = info.get("State", {})
        running = bool(state.get("Running"))
        return {
            "running": running,
            "status": state.get("Status"),
            "started_at": state.get("StartedAt"),
            "health": (state.get("Health") or {}).get("Status"),
            "exit_code": None if running else state.get("ExitCode"),
        }

    async def exec(self, command: str | list[str]) -> ExecResult:
        """Run a shell command inside the container."""
        container_id = self._require_container()
        cmd = ["sh", "-c", command] if isinstance(command, str) else list(command)
        return await self.engine.exec(container_id, cmd)

    async def copy_to_container(self, local_path: Path | str, container_path: str) -> None:
        """Upload a file or directory into ``container_path`` as a tar archive."""
        container_id = self._require_container()
        source = Path(local_path)

        def build_archive() -> bytes:
            buffer = io.BytesIO()
            with tarfile.open(fileobj=buffer, mode="w") as tar:
                tar.add(source, arcname=source.name)
            return buffer.getvalue()

        archive = await asyncio.to_thread(build_archive)
        await self.engine.put_archive(container_id, container_path, archive)
