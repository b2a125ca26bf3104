"""Shared test fixtures and configuration for all tests.

This conftest.py provides common fixtures used across unit and integration tests.
"""

import json
from typing import Any, Dict

import pytest

from disk_orchestrator.config import Settings

SUBSCRIPTION_ID = "00000000-0000-0000-0000-000000000001"
RESOURCE_GROUP = "rg-capture"
LOCATION = "westeurope"


@pytest.fixture
def test_settings() -> Settings:
    """Test settings with safe defaults for local testing.

    Override specific settings in individual tests as needed:
        def test_something(test_settings):
            test_settings.MAX_ATTEMPTS = 2
    """
    return Settings(
        # === Application ===
        APP_NAME="Disk Orchestrator (Test)",
        APP_VERSION="0.1.0",
        DEBUG=True,
        LOG_LEVEL="DEBUG",
        ENVIRONMENT="development",
        # === Control Plane ===
        ARM_BASE_URL="https://management.example.test",
        ARM_API_VERSION="2025-04-01",
        # === Retry ===
        MAX_ATTEMPTS=7,
        RETRY_BACKOFF_BASE=1.5,
        RETRY_BACKOFF_CAP=60.0,
        HONOR_RETRY_AFTER=True,
        # === Polling ===
        POLL_INTERVAL=10.0,
        POLL_TIMEOUT=1800.0,
        # === Fan-out ===
        CONCURRENCY_LIMIT=None,
        PROMETHEUS_ENABLED=False,  # Disable metrics in tests unless explicitly needed
    )


@pytest.fixture
def create_vm_payload():
    """Factory fixture for a virtual machine GET payload.

    Usage:
        def test_something(create_vm_payload):
            vm = create_vm_payload(data_disks=["data-0", "data-1"])
    """

    def _create(
        name: str = "vm-source",
        os_disk: str = "vm-source-os",
        data_disks: list[str] | None = None,
        provisioning_state: str = "Succeeded",
    ) -> Dict[str, Any]:
        prefix = f"/subscriptions/{SUBSCRIPTION_ID}/resourceGroups/{RESOURCE_GROUP}/providers/Microsoft.Compute/disks"
        return {
            "name": name,
            "location": LOCATION,
            "properties": {
                "provisioningState": provisioning_state,
                "storageProfile": {
                    "osDisk": {"name": os_disk, "managedDisk": {"id": f"{prefix}/{os_disk}"}},
                    "dataDisks": [
                        {
                            "lun": lun,
                            "name": disk,
                            "createOption": "Attach",
                            "managedDisk": {"id": f"{prefix}/{disk}"},
                        }
                        for lun, disk in enumerate(data_disks or [])
                    ],
                },
            },
        }

    return _create


@pytest.fixture
def provisioning_payload():
    """Factory fixture for a resource payload in a given provisioning state."""

    def _create(state: str | None, **properties: Any) -> str:
        props = dict(properties)
        if state is not None:
            props["provisioningState"] = state
        return json.dumps({"properties": props})

    return _create
