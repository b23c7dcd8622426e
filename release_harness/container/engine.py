"""
Async Docker Engine API client.

Talks to the engine directly over ``httpx.AsyncClient`` (unix socket or
tcp, from ``DOCKER_HOST``) so the followed log stream arrives as the raw
multiplexed bytes the demuxer works on. Every method either returns a
result or raises ``ContainerPlatformError`` carrying the HTTP status.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, AsyncIterator
from urllib.parse import urlparse

import httpx

from release_harness.container.demux import demux_to_text
from release_harness.core.config import Settings
from release_harness.core.exceptions import ContainerPlatformError
from release_harness.core.logging import get_logger

logger = get_logger("container.engine")

# Host part is ignored when talking over a unix socket
UNIX_BASE_URL = "http://docker"


@dataclass(frozen=True)
class ExecResult:
    exit_code: int | None
    output: str


def resolve_docker_host(docker_host: str) -> tuple[str, httpx.AsyncBaseTransport | None]:
    """Map a ``DOCKER_HOST`` value to (base_url, transport)."""
    parsed = urlparse(docker_host)
    if parsed.scheme == "unix":
        return UNIX_BASE_URL, httpx.AsyncHTTPTransport(uds=parsed.path)
    if parsed.scheme == "tcp":
        return f"http://{parsed.netloc}", None
    if parsed.scheme in ("http", "https"):
        return docker_host.rstrip("/"), None
    raise ValueError(f"Unsupported DOCKER_HOST: {docker_host!r}")


def split_image(image: str) -> tuple[str, str]:
    """``registry:5000/repo:tag`` -> (``registry:5000/repo``, ``tag``)."""
    name, sep, tag = image.rpartition(":")
    if not sep or "/" in tag:
        return image, "latest"
    return name, tag


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.reason_phrase


async def stream_chunks(response: httpx.Response) -> AsyncIterator[bytes]:
    """Yield raw body chunks of an open streaming response, closing it after."""
    try:
        async for chunk in response.aiter_raw():
            if chunk:
                yield chunk
    finally:
        await response.aclose()


class DockerEngineClient:
    """
    Minimal awaitable Engine API client.

    Usage:
        engine = DockerEngineClient.from_settings(settings)
        container_id = await engine.create_container("signalk-test-1", config)
        await engine.start(container_id)
        ...
        await engine.aclose()

    304 answers (already started/stopped) are returned to the caller as
    ``ContainerPlatformError.not_modified`` so lifecycle code can tolerate
    them explicitly.
    """

    def __init__(
        self,
        base_url: str = UNIX_BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ):
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=base_url,
            transport=transport,
            timeout=timeout,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "DockerEngineClient":
        base_url, transport = resolve_docker_host(settings.docker_host)
        return cls(base_url, transport=transport, timeout=settings.docker_timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "DockerEngineClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # -------------------------------------------------------------------------
    # Transport helpers
    # -------------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method,
                url,
                params=params,
                json=json_body,
                content=content,
                headers=headers,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except httpx.HTTPError as e:
            raise ContainerPlatformError(
                f"{method} {url} failed: {e}", details={"url": url}
            ) from e

        if response.status_code == 304 or response.status_code >= 400:
            raise ContainerPlatformError(
                f"{method} {url}: {_error_message(response)}",
                status_code=response.status_code,
                details={"url": url},
            )
        return response

    # -------------------------------------------------------------------------
    # System
    # -------------------------------------------------------------------------

    async def ping(self) -> bool:
        response = await self._request("GET", "/_ping")
        return response.text.strip() == "OK"

    async def pull_image(self, image: str) -> None:
        """Pull an image, reading the progress stream until it ends."""
        name, tag = split_image(image)
        url = "/images/create"
        logger.info(f"Pulling image {name}:{tag}")
        request = self._client.build_request(
            "POST",
            url,
            params={"fromImage": name, "tag": tag},
            timeout=httpx.Timeout(self.timeout, read=None),
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise ContainerPlatformError(f"Pull of {image} failed: {e}") from e

        try:
            if response.status_code >= 400:
                await response.aread()
                raise ContainerPlatformError(
                    f"Pull of {image} failed: {_error_message(response)}",
                    status_code=response.status_code,
                )
            async for line in response.aiter_lines():
                if not line.strip():
                    continue
                try:
                    progress = json.loads(line)
                except ValueError:
                    continue
                if progress.get("error"):
                    raise ContainerPlatformError(
                        f"Pull of {image} failed: {progress['error']}"
                    )
        except httpx.HTTPError as e:
            raise ContainerPlatformError(f"Pull of {image} failed: {e}") from e
        finally:
            await response.aclose()

    # -------------------------------------------------------------------------
    # Containers
    # -------------------------------------------------------------------------

    async def create_container(self, name: str, config: dict[str, Any]) -> str:
        response = await self._request(
            "POST", "/containers/create", params={"name": name}, json_body=config
        )
        body = response.json()
        for warning in body.get("Warnings") or []:
            logger.warning(f"Engine warning creating {name}: {warning}")
        return body["Id"]

    async def start(self, container_id: str) -> None:
        await self._request("POST", f"/containers/{container_id}/start")

    async def stop(self, container_id: str, timeout: int = 10) -> None:
        # Engine blocks for up to the grace period
        await self._request(
            "POST",
            f"/containers/{container_id}/stop",
            params={"t": timeout},
            timeout=self.timeout + timeout,
        )

    async def restart(self, container_id: str, timeout: int = 10) -> None:
        await self._request(
            "POST",
            f"/containers/{container_id}/restart",
            params={"t": timeout},
            timeout=self.timeout + timeout,
        )

    async def kill(self, container_id: str, signal: str = "SIGKILL") -> None:
        await self._request(
            "POST", f"/containers/{container_id}/kill", params={"signal": signal}
        )

    async def remove(self, container_id: str, force: bool = True) -> None:
        await self._request(
            "DELETE",
            f"/containers/{container_id}",
            params={"force": str(force).lower(), "v": "true"},
        )

    async def inspect(self, container_id: str) -> dict[str, Any]:
        response = await self._request("GET", f"/containers/{container_id}/json")
        return response.json()

    async def stats(self, container_id: str) -> dict[str, Any]:
        """One stats snapshot (``stream=false``)."""
        response = await self._request(
            "GET", f"/containers/{container_id}/stats", params={"stream": "false"}
        )
        return response.json()

    async def logs(
        self, container_id: str, tail: int | str = 100, timestamps: bool = False
    ) -> bytes:
        """Non-follow log fetch; returns the raw multiplexed body."""
        response = await self._request(
            "GET",
            f"/containers/{container_id}/logs",
            params={
                "stdout": 1,
                "stderr": 1,
                "tail": tail,
                "timestamps": int(timestamps),
            },
        )
        return response.content

    async def open_log_stream(
        self, container_id: str, tail: int = 0, timestamps: bool = True
    ) -> httpx.Response:
        """
        Open a followed log stream.

        Returns the streaming response; pass it to ``stream_chunks`` and
        make sure it is eventually closed. Opening before ``start`` means
        nothing the server prints at boot is missed.
        """
        url = f"/containers/{container_id}/logs"
        request = self._client.build_request(
            "GET",
            url,
            params={
                "follow": 1,
                "stdout": 1,
                "stderr": 1,
                "tail": tail,
                "timestamps": int(timestamps),
            },
            timeout=httpx.Timeout(self.timeout, read=None),
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise ContainerPlatformError(f"GET {url} failed: {e}") from e

        if response.status_code >= 400:
            await response.aread()
            await response.aclose()
            raise ContainerPlatformError(
                f"GET {url}: {_error_message(response)}",
                status_code=response.status_code,
            )
        return response

    async def exec(self, container_id: str, command: list[str]) -> ExecResult:
        """Run a command to completion and collect its demultiplexed output."""
        created = await self._request(
            "POST",
            f"/containers/{container_id}/exec",
            json_body={
                "AttachStdout": True,
                "AttachStderr": True,
                "Cmd": command,
            },
        )
        exec_id = created.json()["Id"]
        started = await self._request(
            "POST",
            f"/exec/{exec_id}/start",
            json_body={"Detach": False, "Tty": False},
        )
        inspected = await self._request("GET", f"/exec/{exec_id}/json")
        return ExecResult(
            exit_code=inspected.json().get("ExitCode"),
            output=demux_to_text(started.content),
        )

    async def put_archive(self, container_id: str, path: str, archive: bytes) -> None:
        await self._request(
            "PUT",
            f"/containers/{container_id}/archive",
            params={"path": path},
            content=archive,
            headers={"Content-Type": "application/x-tar"},
        )
