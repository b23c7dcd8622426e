"""
Tests for CPU and memory statistics.
"""

import pytest

from release_harness.container.stats import CpuSample, compute_stats, cpu_percent


def _cpu(total, system, online=2, percpu=None):
    raw = {"cpu_usage": {"total_usage": total}, "system_cpu_usage": system}
    if online is not None:
        raw["online_cpus"] = online
    if percpu is not None:
        raw["cpu_usage"]["percpu_usage"] = percpu
    return raw


class TestCpuSample:
    def test_from_raw(self):
        sample = CpuSample.from_raw(_cpu(100, 1000, online=4))
        assert sample == CpuSample(100, 1000, 4)
        assert sample.populated

    def test_online_cpus_fallbacks(self):
        assert CpuSample.from_raw(_cpu(1, 1, online=None, percpu=[1, 2, 3])).online_cpus == 3
        assert CpuSample.from_raw(_cpu(1, 1, online=None)).online_cpus == 1

    def test_empty_sample_not_populated(self):
        assert not CpuSample.from_raw({}).populated


class TestCpuPercent:
    def test_formula(self):
        """(delta cpu / delta system) * online cpus * 100."""
        previous = CpuSample(1_000, 10_000, 2)
        current = CpuSample(1_500, 12_000, 2)
        assert cpu_percent(previous, current) == pytest.approx(50.0)

    def test_no_system_delta(self):
        sample = CpuSample(1_000, 10_000, 2)
        assert cpu_percent(sample, sample) == 0.0


class TestComputeStats:
    def test_memory(self):
        sample = CpuSample(0, 1, 1)
        stats = compute_stats(sample, sample, {"usage": 50 * 1024 * 1024, "limit": 200 * 1024 * 1024})
        assert stats.memory_percent == pytest.approx(25.0)
        assert stats.memory_usage_mb == pytest.approx(50.0)
        assert stats.to_dict()["memory"]["usage_mb"] == 50.0

    def test_missing_limit(self):
        sample = CpuSample(0, 1, 1)
        assert compute_stats(sample, sample, {}).memory_percent == 0.0
