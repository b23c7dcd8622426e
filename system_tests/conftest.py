"""
System Test Configuration - pytest fixtures for the server under test.

This conftest creates a "grey-box" testing environment where:
1. Tests run against a real server container started from SIGNALK_IMAGE
2. The container's log stream is classified for the whole session
3. Every test runs in its own log phase named after the test
4. Any error the server logs during a test fails that test
5. Markdown and JSON log reports are written when the session ends

CRITICAL: This file must be in system_tests/ to apply only to system tests.
The tests/ folder uses its own conftest with a fake engine.
"""

from __future__ import annotations

import asyncio
from typing import AsyncGenerator, Generator

import docker
import httpx
import pytest
import pytest_asyncio

from release_harness.container.manager import ConnectionInfo, ContainerManager
from release_harness.core.config import Settings, get_settings
from release_harness.core.exceptions import StartupTimeoutError
from release_harness.core.logging import setup_logging
from release_harness.logs.classifier import LogClassifier
from release_harness.logs.report import save_reports
from release_harness.traffic.fixtures import FixtureLoader
from release_harness.traffic.n2k import N2kGenerator
from release_harness.traffic.nmea0183 import SentenceGenerator
from release_harness.traffic.transport import TrafficTransport

# Output written just before a test ends is delivered shortly after
LOG_SETTLE_DELAY = 0.5


# =============================================================================
# CONFIGURATION
# =============================================================================


@pytest.fixture(scope="session")
def harness_settings() -> Settings:
    """Load harness settings from the environment."""
    settings = get_settings()
    setup_logging(settings)
    return settings


# =============================================================================
# DOCKER DAEMON
# =============================================================================


@pytest.fixture(scope="session")
def docker_available() -> Generator[None, None, None]:
    """Skip the suite when no Docker daemon is reachable."""
    try:
        client = docker.from_env()
        client.ping()
    except docker.errors.DockerException as e:
        pytest.skip(f"Docker daemon not available: {e}")
    yield
    client.close()


# =============================================================================
# SERVER UNDER TEST (Session-scoped)
# =============================================================================


@pytest.fixture(scope="session")
def classifier(harness_settings: Settings) -> Generator[LogClassifier, None, None]:
    """Session-wide log classifier; reports are written at teardown."""
    log_classifier = LogClassifier.from_settings(harness_settings)
    yield log_classifier

    md_path, _ = save_reports(log_classifier, harness_settings.report_dir)
    summary = log_classifier.get_summary()
    print("\n" + "=" * 60)
    print("📋 SERVER LOG SUMMARY")
    print("=" * 60)
    print(f"  Errors: {summary.total_errors}")
    print(f"  Warnings: {summary.total_warnings}")
    print(f"  Report: {md_path}")
    print("=" * 60)


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def manager(
    docker_available: None,
    harness_settings: Settings,
    classifier: LogClassifier,
) -> AsyncGenerator[ContainerManager, None]:
    """
    Start one server container for the whole session.

    The container and its working directory are removed at teardown even
    when startup fails.
    """
    container_manager = ContainerManager(harness_settings, classifier=classifier)

    print("\n" + "=" * 60)
    print("🚢 SIGNAL K RELEASE VALIDATION")
    print("=" * 60)
    print(f"  Image: {harness_settings.image}")
    print(f"  Container: {container_manager.instance.name}")
    print("=" * 60)

    try:
        await container_manager.start()
    except StartupTimeoutError as e:
        await container_manager.remove()
        await container_manager.aclose()
        pytest.fail(str(e))

    yield container_manager

    await container_manager.remove()
    await container_manager.aclose()


@pytest.fixture(scope="session")
def server(manager: ContainerManager) -> ConnectionInfo:
    """Where to reach the running server."""
    return manager.connection_info


# =============================================================================
# LOG PHASE (Per-test, autouse)
# =============================================================================


@pytest_asyncio.fixture(autouse=True, loop_scope="session")
async def log_phase(
    request: pytest.FixtureRequest,
    classifier: LogClassifier,
) -> AsyncGenerator[str, None]:
    """
    Run each test in its own log phase.

    Fails the test if the server logged an error while it ran. Tests that
    provoke errors on purpose opt out with ``@pytest.mark.allow_log_errors``.
    """
    phase = request.node.name
    classifier.set_phase(phase)

    yield phase

    await asyncio.sleep(LOG_SETTLE_DELAY)
    if request.node.get_closest_marker("allow_log_errors"):
        return

    errors = classifier.get_phase_errors(phase)
    if errors:
        lines = "\n".join(f"  {e.text}" for e in errors[:10])
        pytest.fail(
            f"\n{'=' * 70}\n"
            f"🚨 SERVER LOG FAILURE - Test triggered errors in the server\n"
            f"{'=' * 70}\n"
            f"Phase: {phase}\n"
            f"{len(errors)} error(s):\n{lines}\n"
            f"{'=' * 70}"
        )


# =============================================================================
# CLIENTS AND TRAFFIC
# =============================================================================


@pytest_asyncio.fixture(loop_scope="session")
async def api_client(
    server: ConnectionInfo,
    harness_settings: Settings,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """
    HTTP client for the server's REST API.

    Usage:
        async def test_endpoint(api_client):
            response = await api_client.get("/signalk")
            assert response.status_code == 200
    """
    async with httpx.AsyncClient(
        base_url=server.base_url,
        timeout=harness_settings.readiness_request_timeout,
    ) as client:
        yield client


@pytest.fixture(scope="session")
def transport(harness_settings: Settings, server: ConnectionInfo) -> TrafficTransport:
    return TrafficTransport.from_settings(harness_settings)


@pytest.fixture
def sentence_generator() -> SentenceGenerator:
    return SentenceGenerator()


@pytest.fixture
def n2k_generator() -> N2kGenerator:
    return N2kGenerator()


@pytest.fixture(scope="session")
def fixture_loader() -> FixtureLoader:
    return FixtureLoader()


# =============================================================================
# PYTEST HOOKS FOR ENHANCED REPORTING
# =============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "workflow: End-to-end traffic test against the running server",
    )
    config.addinivalue_line(
        "markers",
        "smoke: Quick sanity check of the server container",
    )
    config.addinivalue_line(
        "markers",
        "slow: Test that takes more than 10 seconds",
    )
    config.addinivalue_line(
        "markers",
        "allow_log_errors: Test provokes server errors on purpose",
    )


def pytest_collection_modifyitems(config, items):
    """Add markers based on test location."""
    for item in items:
        # Add smoke marker to tests in smoke/ directory
        if "/smoke/" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)

        # Add workflow marker to tests in workflows/ directory
        if "/workflows/" in str(item.fspath):
            item.add_marker(pytest.mark.workflow)
