"""
Disposable server containers.
"""

from release_harness.container.demux import FrameDemuxer, demux_log_buffer, demux_to_text
from release_harness.container.engine import DockerEngineClient, ExecResult
from release_harness.container.manager import (
    ConnectionInfo,
    ContainerManager,
    InstanceState,
    PortMap,
    StartOverrides,
)
from release_harness.container.stats import ContainerStats
from release_harness.container.workspace import Workspace

__all__ = [
    "ConnectionInfo",
    "ContainerManager",
    "ContainerStats",
    "DockerEngineClient",
    "ExecResult",
    "FrameDemuxer",
    "InstanceState",
    "PortMap",
    "StartOverrides",
    "Workspace",
    "demux_log_buffer",
    "demux_to_text",
]
