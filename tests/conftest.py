"""
Shared Test Fixtures for the Integration Runtime
==================================================

This module provides reusable pytest fixtures used across the entire
test suite. Fixtures are organized by layer:

    1. Configuration fixtures
    2. Deterministic time (fake clock + sleep, no-op retry sleeps)
    3. Integration fixtures (MockIntegration)
    4. Facade fixtures (IntegrationRuntime)
"""

from __future__ import annotations

import pytest

from integration_runtime.core.config import RuntimeConfig
from integration_runtime.facade import IntegrationRuntime
from integration_runtime.integrations.mock import MockIntegration
from integration_runtime.transport import retry as retry_module

WEBHOOK_SECRET = "whsec-test-secret"


# =============================================================================
# Configuration
# =============================================================================

@pytest.fixture
def runtime_config():
    """RuntimeConfig with defaults."""
    return RuntimeConfig()


# =============================================================================
# Deterministic Time
# =============================================================================

class FakeClock:
    """Monotonic clock that only moves when told to (or when slept on)."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock():
    """FakeClock usable as a RateGovernor ``clock`` and ``sleep``."""
    return FakeClock()


@pytest.fixture
def retry_sleeps(monkeypatch):
    """Replace retry backoff sleeps with a recorder; returns the delays slept."""
    delays: list[float] = []

    async def _record(delay, token):
        if token is not None:
            token.raise_if_cancelled()
        delays.append(delay)

    monkeypatch.setattr(retry_module, "sleep_or_cancel", _record)
    return delays


# =============================================================================
# Integrations
# =============================================================================

@pytest.fixture
def mock_integration():
    """MockIntegration with a webhook secret and no configured data."""
    return MockIntegration({"webhookSecret": WEBHOOK_SECRET})


# =============================================================================
# Facade
# =============================================================================

@pytest.fixture
async def runtime():
    """Initialized IntegrationRuntime with MockIntegration registered as a kind."""
    instance = IntegrationRuntime(RuntimeConfig())
    await instance.initialize()
    instance.register_kind(MockIntegration)
    yield instance
    await instance.shutdown()
