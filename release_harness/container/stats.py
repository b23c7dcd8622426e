"""Container resource statistics from Docker's cumulative counters."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class CpuSample:
    """Cumulative CPU counters at one instant (nanoseconds)."""

    total_usage: int
    system_usage: int
    online_cpus: int

    @classmethod
    def from_raw(cls, cpu_stats: dict[str, Any]) -> "CpuSample":
        usage = cpu_stats.get("cpu_usage") or {}
        online = cpu_stats.get("online_cpus") or len(usage.get("percpu_usage") or []) or 1
        return cls(
            total_usage=int(usage.get("total_usage") or 0),
            system_usage=int(cpu_stats.get("system_cpu_usage") or 0),
            online_cpus=int(online),
        )

    @property
    def populated(self) -> bool:
        return self.system_usage > 0


@dataclass(frozen=True)
class ContainerStats:
    cpu_percent: float
    memory_usage: int
    memory_limit: int
    memory_percent: float

    @property
    def memory_usage_mb(self) -> float:
        return self.memory_usage / 1024 / 1024

    def to_dict(self) -> dict[str, Any]:
        return {
            "cpu": {"percent": round(self.cpu_percent, 2)},
            "memory": {
                "usage": self.memory_usage,
                "limit": self.memory_limit,
                "percent": round(self.memory_percent, 2),
                "usage_mb": round(self.memory_usage_mb, 2),
            },
        }


def cpu_percent(previous: CpuSample, current: CpuSample) -> float:
    """(delta cpu / delta system) * online cpus * 100; 0 when no time passed."""
    cpu_delta = current.total_usage - previous.total_usage
    system_delta = current.system_usage - previous.system_usage
    if system_delta <= 0 or cpu_delta < 0:
        return 0.0
    return cpu_delta / system_delta * current.online_cpus * 100


def compute_stats(
    previous: CpuSample, current: CpuSample, memory_stats: dict[str, Any]
) -> ContainerStats:
    """Combine two consecutive CPU samples with the latest memory figures."""
    usage = int(memory_stats.get("usage") or 0)
    limit = int(memory_stats.get("limit") or 0)
    return ContainerStats(
        cpu_percent=cpu_percent(previous, current),
        memory_usage=usage,
        memory_limit=limit,
        memory_percent=usage / limit * 100 if limit else 0.0,
    )
