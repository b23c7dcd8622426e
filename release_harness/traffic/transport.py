"""
Paced TCP/UDP delivery of generated traffic.

One call sends one batch over one socket. Individual write failures are
collected into the returned ``TransmissionResult`` so a test can assert on
them; only a failed TCP connect aborts the call.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Union

from release_harness.core.config import Settings
from release_harness.core.exceptions import TransportError
from release_harness.core.logging import get_logger
from release_harness.traffic.n2k import PgnMessage
from release_harness.traffic.nmea0183 import Sentence, SentenceGenerator

logger = get_logger("traffic.transport")

Message = Union[str, Sentence, PgnMessage]

NMEA_TERMINATOR = "\r\n"
JSON_TERMINATOR = "\n"


@dataclass(frozen=True)
class DeliveryError:
    """One message (or whole batch) that could not be delivered."""

    error: str
    message: str | None = None
    batch: int | None = None


@dataclass
class TransmissionResult:
    """Outcome of one transport call."""

    attempted: int = 0
    sent: int = 0
    errors: list[DeliveryError] = field(default_factory=list)
    duration: float = 0.0
    source: str | None = None

    @property
    def ok(self) -> bool:
        return not self.errors and self.sent == self.attempted


@dataclass
class PhaseResult:
    """Outcome of one scenario phase."""

    name: str
    protocol: str
    sent: int = 0
    errors: list[DeliveryError] = field(default_factory=list)


@dataclass
class ScenarioResult:
    """Outcome of a scenario file run."""

    name: str
    phases: list[PhaseResult] = field(default_factory=list)
    duration: float = 0.0

    @property
    def total_sent(self) -> int:
        return sum(p.sent for p in self.phases)

    @property
    def total_errors(self) -> int:
        return sum(len(p.errors) for p in self.phases)


def _as_lines(messages: Message | Iterable[Message]) -> list[str]:
    if isinstance(messages, (str, Sentence, PgnMessage)):
        return [str(messages)]
    return [str(m) for m in messages]


def _terminate(line: str, terminator: str) -> bytes:
    return (line.rstrip("\r\n") + terminator).encode("utf-8")


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class _DatagramSender(asyncio.DatagramProtocol):
    """Collects asynchronous send errors (e.g. ICMP port unreachable)."""

    def __init__(self) -> None:
        self.errors: list[Exception] = []

    def error_received(self, exc: Exception) -> None:
        self.errors.append(exc)


class TrafficTransport:
    """
    Sends NMEA 0183 sentences or canboat JSON lines to the server.

    Usage:
        transport = TrafficTransport(host="localhost", tcp_port=10110, udp_port=10111)
        result = await transport.send_tcp(generator.navigation_burst(50))
        assert result.ok
    """

    def __init__(
        self,
        host: str = "localhost",
        tcp_port: int = 10110,
        udp_port: int = 10111,
        udp_host: str | None = None,
        delay: float = 0.1,
        timeout: float = 10.0,
        terminator: str = NMEA_TERMINATOR,
        batch_size: int = 50,
        generator: SentenceGenerator | None = None,
    ):
        self.host = host
        self.tcp_port = tcp_port
        self.udp_host = udp_host or host
        self.udp_port = udp_port
        self.delay = delay
        self.timeout = timeout
        self.terminator = terminator
        self.batch_size = batch_size
        self.generator = generator or SentenceGenerator()

    @classmethod
    def from_settings(cls, settings: Settings, n2k: bool = False) -> "TrafficTransport":
        """Transport aimed at the NMEA 0183 inputs, or the canboat JSON port."""
        return cls(
            host=settings.feeder_host,
            tcp_port=settings.n2k_port if n2k else settings.tcp_port,
            udp_port=settings.udp_port,
            delay=settings.feeder_delay,
            timeout=settings.feeder_timeout,
            terminator=JSON_TERMINATOR if n2k else NMEA_TERMINATOR,
            batch_size=settings.feeder_batch_size,
        )

    async def send_tcp(
        self,
        messages: Message | Iterable[Message],
        *,
        delay: float | None = None,
        timeout: float | None = None,
        terminator: str | None = None,
    ) -> TransmissionResult:
        """Write every message over one TCP connection."""
        lines = _as_lines(messages)
        delay = self.delay if delay is None else delay
        timeout = self.timeout if timeout is None else timeout
        terminator = terminator or self.terminator
        result = TransmissionResult(attempted=len(lines))
        start = time.monotonic()

        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.tcp_port), timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise TransportError(
                f"TCP connection to {self.host}:{self.tcp_port} failed: {_describe(e)}",
                details={"host": self.host, "port": self.tcp_port},
            ) from e

        try:
            for index, line in enumerate(lines):
                try:
                    writer.write(_terminate(line, terminator))
                    await asyncio.wait_for(writer.drain(), timeout)
                    result.sent += 1
                except ConnectionError as e:
                    # Peer went away: nothing after this can be delivered
                    result.errors.append(DeliveryError(_describe(e), line))
                    result.errors.extend(
                        DeliveryError("connection closed", rest)
                        for rest in lines[index + 1:]
                    )
                    logger.warning(
                        f"TCP connection dropped after {result.sent}/{len(lines)} messages"
                    )
                    break
                except (OSError, asyncio.TimeoutError) as e:
                    result.errors.append(DeliveryError(_describe(e), line))

                if delay > 0 and index < len(lines) - 1:
                    await asyncio.sleep(delay)
        finally:
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()

        result.duration = time.monotonic() - start
        return result

    async def send_udp(
        self,
        messages: Message | Iterable[Message],
        *,
        delay: float | None = None,
        timeout: float | None = None,
        terminator: str | None = None,
    ) -> TransmissionResult:
        """Send each message as its own datagram."""
        lines = _as_lines(messages)
        delay = self.delay if delay is None else delay
        terminator = terminator or self.terminator
        result = TransmissionResult(attempted=len(lines))
        start = time.monotonic()

        loop = asyncio.get_running_loop()
        try:
            transport, protocol = await loop.create_datagram_endpoint(
                _DatagramSender, remote_addr=(self.udp_host, self.udp_port)
            )
        except OSError as e:
            raise TransportError(
                f"UDP socket to {self.udp_host}:{self.udp_port} failed: {_describe(e)}",
                details={"host": self.udp_host, "port": self.udp_port},
            ) from e

        # ICMP rejections surface through the protocol, during or after sendto
        def collect(line: str) -> None:
            while protocol.errors:
                result.sent = max(result.sent - 1, 0)
                result.errors.append(
                    DeliveryError(_describe(protocol.errors.pop(0)), line)
                )

        try:
            for index, line in enumerate(lines):
                if index:
                    collect(lines[index - 1])
                try:
                    transport.sendto(_terminate(line, terminator))
                    result.sent += 1
                except OSError as e:
                    result.errors.append(DeliveryError(_describe(e), line))
                collect(line)

                if delay > 0 and index < len(lines) - 1:
                    await asyncio.sleep(delay)
            if lines:
                await asyncio.sleep(0)
                collect(lines[-1])
        finally:
            transport.close()

        result.duration = time.monotonic() - start
        return result

    def _sender(
        self, protocol: str
    ) -> Callable[..., Awaitable[TransmissionResult]]:
        return self.send_udp if protocol == "udp" else self.send_tcp

    async def stream_file(
        self,
        path: Path | str,
        protocol: str = "tcp",
        *,
        delay: float | None = None,
        batch_size: int | None = None,
        terminator: str | None = None,
        sentences_only: bool = True,
    ) -> TransmissionResult:
        """
        Replay a capture file in fixed-size batches.

        With ``sentences_only`` (NMEA 0183 captures) only lines starting with
        ``$`` or ``!`` are sent; otherwise every non-blank line is (canboat
        JSON logs). A batch whose connection fails is recorded, not raised.
        """
        file_path = Path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        lines: list[str] = []
        with file_path.open(encoding="utf-8", errors="replace") as handle:
            for raw in handle:
                line = raw.strip()
                if not line:
                    continue
                if sentences_only and not line.startswith(("$", "!")):
                    continue
                lines.append(line)

        batch_size = batch_size or self.batch_size
        send = self._sender(protocol)
        result = TransmissionResult(attempted=len(lines), source=str(file_path))
        start = time.monotonic()

        for offset in range(0, len(lines), batch_size):
            batch = lines[offset:offset + batch_size]
            try:
                batch_result = await send(batch, delay=delay, terminator=terminator)
            except TransportError as e:
                logger.warning(f"Batch at line {offset} of {file_path.name} failed: {e}")
                result.errors.append(DeliveryError(str(e), batch=offset))
                continue
            result.sent += batch_result.sent
            result.errors.extend(batch_result.errors)

        result.duration = time.monotonic() - start
        return result

    async def run_scenario(self, path: Path | str) -> ScenarioResult:
        """
        Run a JSON scenario file.

        Format::

            {"name": "...", "phases": [
                {"name": "...", "protocol": "tcp"|"udp", "delay": 0.05,
                 "pause_after": 1.0,
                 "file": "capture.nmea" | "sentences": [...] | "generate": {...}}
            ]}

        Delays are in seconds; ``file`` is resolved relative to the scenario.
        """
        scenario_path = Path(path)
        scenario: dict[str, Any] = json.loads(scenario_path.read_text(encoding="utf-8"))
        result = ScenarioResult(name=scenario.get("name", scenario_path.stem))
        start = time.monotonic()

        for phase in scenario.get("phases", []):
            protocol = phase.get("protocol", "tcp")
            phase_result = PhaseResult(name=phase.get("name", ""), protocol=protocol)
            delay = phase.get("delay")
            send = self._sender(protocol)

            try:
                if "file" in phase:
                    file_path = Path(phase["file"])
                    if not file_path.is_absolute():
                        file_path = scenario_path.parent / file_path
                    sent = await self.stream_file(file_path, protocol, delay=delay)
                elif "sentences" in phase:
                    sent = await send(phase["sentences"], delay=delay)
                elif "generate" in phase:
                    sent = await send(self.generator.generate(phase["generate"]), delay=delay)
                else:
                    sent = TransmissionResult()
                phase_result.sent = sent.sent
                phase_result.errors.extend(sent.errors)
            except (TransportError, FileNotFoundError) as e:
                phase_result.errors.append(DeliveryError(f"{phase_result.name}: {e}"))

            result.phases.append(phase_result)

            pause = phase.get("pause_after")
            if pause:
                await asyncio.sleep(pause)

        result.duration = time.monotonic() - start
        return result
