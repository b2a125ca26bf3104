"""Integration test fixtures.

Wires the real stack (HttpxTransport -> RetryingExecutor -> FanOutExecutor /
CompletionPoller -> DiskWorkflows) against an in-process fake of the compute
control plane served through httpx.MockTransport.
"""

import json
from collections import Counter
from typing import Any, Optional

import httpx
import pytest

from disk_orchestrator.compute.workflows import DiskWorkflows
from disk_orchestrator.credentials import StaticTokenSupplier
from disk_orchestrator.polling.poller import CompletionPoller
from disk_orchestrator.retry.executor import RetryingExecutor
from disk_orchestrator.transport.httpx_transport import HttpxTransport
from tests.fixtures import ScaledSleep


def deep_merge(target: dict, patch: dict) -> dict:
    """Merge-patch semantics: dicts merge recursively, everything else replaces."""
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            deep_merge(target[key], value)
        else:
            target[key] = value
    return target


class FakeComputeApi:
    """
    Minimal stateful stand-in for the compute control plane.

    - PUT creates a resource in state Creating (after ``throttle_puts`` 429s)
    - GET reports Creating for ``creating_reads`` reads, then Succeeded
    - PATCH merges the body into the stored resource
    - DELETE removes the resource (204 when it was already gone)
    """

    def __init__(
        self,
        throttle_puts: int = 0,
        retry_after: Optional[str] = "5",
        creating_reads: int = 1,
    ):
        self.throttle_puts = throttle_puts
        self.retry_after = retry_after
        self.creating_reads = creating_reads
        self.resources: dict[str, dict[str, Any]] = {}
        self.put_counts: Counter = Counter()
        self.get_counts: Counter = Counter()
        self.failures: dict[tuple[str, str], httpx.Response] = {}
        self.terminal_states: dict[str, str] = {}
        self.dropped_properties: set[str] = set()
        self.requests: list[httpx.Request] = []

    def fail(self, method: str, path: str, status_code: int, body: str) -> None:
        self.failures[(method, path)] = httpx.Response(status_code, text=body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        failure = self.failures.get((request.method, path))
        if failure is not None:
            return failure

        if request.method == "PUT":
            return self._put(path, json.loads(request.content))
        if request.method == "GET":
            return self._get(path)
        if request.method == "PATCH":
            resource = self.resources.get(path)
            if resource is None:
                return httpx.Response(404, json={"error": {"code": "ResourceNotFound"}})
            deep_merge(resource, json.loads(request.content))
            return httpx.Response(200, json=resource)
        if request.method == "DELETE":
            if self.resources.pop(path, None) is None:
                return httpx.Response(204)
            return httpx.Response(200)
        return httpx.Response(405)

    def _put(self, path: str, body: dict) -> httpx.Response:
        self.put_counts[path] += 1
        if self.put_counts[path] <= self.throttle_puts:
            headers = {"Retry-After": self.retry_after} if self.retry_after else {}
            return httpx.Response(
                429,
                headers=headers,
                json={"error": {"code": "TooManyRequests", "message": "Too many requests"}},
            )

        properties = {
            key: value
            for key, value in (body.get("properties") or {}).items()
            if key not in self.dropped_properties
        }
        properties["provisioningState"] = "Creating"
        resource = {**body, "id": path, "name": path.rsplit("/", 1)[-1], "properties": properties}
        self.resources[path] = resource
        return httpx.Response(201, json=resource)

    def _get(self, path: str) -> httpx.Response:
        self.get_counts[path] += 1
        resource = self.resources.get(path)
        if resource is None:
            return httpx.Response(404, json={"error": {"code": "ResourceNotFound"}})
        if self.get_counts[path] > self.creating_reads:
            state = self.terminal_states.get(path, "Succeeded")
            resource["properties"]["provisioningState"] = state
            if state == "Succeeded":
                resource["properties"]["completionPercent"] = 100.0
        return httpx.Response(200, json=resource)

    def count(self, method: str, path: str) -> int:
        return sum(1 for r in self.requests if r.method == method and r.url.path == path)


@pytest.fixture
def compute_api() -> FakeComputeApi:
    return FakeComputeApi()


@pytest.fixture
def integration_settings(test_settings):
    """Settings for integration tests against the fake control plane."""
    test_settings.POLL_INTERVAL = 10.0
    test_settings.POLL_TIMEOUT = 1800.0
    test_settings.PROMETHEUS_ENABLED = False
    return test_settings


@pytest.fixture
def scaled_sleep() -> ScaledSleep:
    """Every requested second lasts 10ms of wall-clock time."""
    return ScaledSleep(factor=0.01)


@pytest.fixture
async def http_transport(compute_api):
    transport = HttpxTransport(timeout=5.0, connect_timeout=1.0, transport=httpx.MockTransport(compute_api.handler))
    yield transport
    await transport.close()


@pytest.fixture
def live_executor(http_transport, integration_settings, scaled_sleep) -> RetryingExecutor:
    return RetryingExecutor(
        http_transport,
        StaticTokenSupplier("integration-token"),
        integration_settings,
        sleep=scaled_sleep,
    )


@pytest.fixture
def workflows(live_executor, integration_settings, scaled_sleep) -> DiskWorkflows:
    poller = CompletionPoller(live_executor, integration_settings, sleep=scaled_sleep)
    return DiskWorkflows(live_executor, integration_settings, poller=poller)
