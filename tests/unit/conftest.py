"""Unit test fixtures (mocks and stubs).

Provides scripted transports and credential stubs for testing without a
network or an Azure login.
"""

from unittest.mock import AsyncMock

import pytest

from disk_orchestrator.credentials import StaticTokenSupplier
from disk_orchestrator.retry.executor import RetryingExecutor
from tests.fixtures import FakeSleep, ScriptedTransport


@pytest.fixture
def scripted_transport() -> ScriptedTransport:
    """Transport replaying scripted responses; add() entries per test."""
    return ScriptedTransport()


@pytest.fixture
def static_credentials() -> StaticTokenSupplier:
    return StaticTokenSupplier("test-token")


@pytest.fixture
def mock_credentials():
    """Mock CredentialSupplier handing out numbered tokens."""
    mock = AsyncMock()
    mock.get_token = AsyncMock(side_effect=[f"token-{i}" for i in range(1, 50)])
    return mock


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def executor(scripted_transport, static_credentials, test_settings, fake_sleep) -> RetryingExecutor:
    """RetryingExecutor over the scripted transport with instant sleeps."""
    return RetryingExecutor(
        scripted_transport,
        static_credentials,
        test_settings,
        sleep=fake_sleep,
    )
