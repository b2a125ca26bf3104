"""
Unit tests for RetryingExecutor.

Tests the retry loop against a scripted transport: token refresh per attempt,
Retry-After handling, transport failures, fatal statuses and exhaustion.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from disk_orchestrator.exceptions import CredentialError, RemoteError, ThrottlingError, TransportError
from disk_orchestrator.models.enums import ErrorKind, OperationStatus
from disk_orchestrator.models.operations import OperationDescriptor, RetryPolicy
from disk_orchestrator.retry.executor import RetryingExecutor
from tests.fixtures import FakeSleep, ScriptedTransport, response

PATH = "/subscriptions/sub/resourceGroups/rg/providers/Microsoft.Compute/snapshots/snap-0"


def create_descriptor(method: str = "PUT", body=None) -> OperationDescriptor:
    """Helper to create a snapshot descriptor."""
    return OperationDescriptor(
        method=method,
        url=PATH,
        body=body if body is not None else {"location": "westeurope"},
        api_version="2024-03-02",
        key="snap-0",
    )


# ============================================================================
# Success Scenarios
# ============================================================================


@pytest.mark.asyncio
async def test_success_first_attempt(executor, scripted_transport, fake_sleep):
    scripted_transport.add("PUT", PATH, response(201, {"name": "snap-0"}))

    result = await executor.execute(create_descriptor())

    assert result.status is OperationStatus.SUCCEEDED
    assert result.status_code == 201
    assert result.payload_json() == {"name": "snap-0"}
    assert result.attempt_count == 1
    assert result.error is None
    assert fake_sleep.calls == []


@pytest.mark.asyncio
async def test_request_url_and_headers(executor, scripted_transport):
    scripted_transport.add("PUT", PATH, response(200, {}))

    await executor.execute(create_descriptor())

    (request,) = scripted_transport.requests
    assert request.url == f"https://management.example.test{PATH}?api-version=2024-03-02"
    assert request.headers["Authorization"] == "Bearer test-token"
    assert request.body == {"location": "westeurope"}


@pytest.mark.asyncio
async def test_missing_api_version_falls_back_to_settings(executor, scripted_transport):
    scripted_transport.add("GET", PATH, response(200, {}))

    await executor.execute(OperationDescriptor(method="get", url=PATH))

    assert scripted_transport.requests[0].url.endswith("?api-version=2025-04-01")
    assert scripted_transport.requests[0].method == "GET"


@pytest.mark.asyncio
async def test_empty_body_is_success(executor, scripted_transport):
    """202/204 without a body are successful completions."""
    scripted_transport.add("PATCH", PATH, response(202))

    result = await executor.execute(create_descriptor("PATCH"))

    assert result.succeeded
    assert result.payload == ""
    assert result.payload_json() is None


# ============================================================================
# Retry Scenarios
# ============================================================================


@pytest.mark.asyncio
async def test_throttling_honors_retry_after(executor, scripted_transport, fake_sleep):
    scripted_transport.add(
        "PUT",
        PATH,
        response(429, "Too Many Requests", {"Retry-After": "5"}),
        response(429, "Too Many Requests", {"retry-after": "5"}),
        response(200, {"name": "snap-0"}),
    )

    result = await executor.execute(create_descriptor())

    assert result.succeeded
    assert result.attempt_count == 3
    assert fake_sleep.calls == [5.0, 5.0]


@pytest.mark.asyncio
async def test_server_error_uses_exponential_backoff(executor, scripted_transport, fake_sleep):
    scripted_transport.add(
        "PUT",
        PATH,
        response(503),
        response(500),
        response(502),
        response(200, {}),
    )

    result = await executor.execute(create_descriptor())

    assert result.succeeded
    assert result.attempt_count == 4
    assert fake_sleep.calls == [1.5, 3.0, 6.0]


@pytest.mark.asyncio
async def test_non_numeric_retry_after_falls_back_to_backoff(executor, scripted_transport, fake_sleep):
    scripted_transport.add(
        "PUT",
        PATH,
        response(429, headers={"Retry-After": "Wed, 21 Oct 2026 07:28:00 GMT"}),
        response(200, {}),
    )

    await executor.execute(create_descriptor())

    assert fake_sleep.calls == [1.5]


@pytest.mark.asyncio
async def test_transport_error_is_retried(executor, scripted_transport, fake_sleep):
    scripted_transport.add(
        "PUT",
        PATH,
        TransportError("connection reset"),
        TransportError("timed out"),
        response(200, {}),
    )

    result = await executor.execute(create_descriptor())

    assert result.succeeded
    assert result.attempt_count == 3
    assert fake_sleep.calls == [1.5, 3.0]


@pytest.mark.asyncio
async def test_fresh_token_every_attempt(scripted_transport, mock_credentials, test_settings):
    scripted_transport.add("PUT", PATH, response(503), response(503), response(200, {}))
    executor = RetryingExecutor(scripted_transport, mock_credentials, test_settings, sleep=FakeSleep())

    await executor.execute(create_descriptor())

    assert mock_credentials.get_token.await_count == 3
    assert [r.headers["Authorization"] for r in scripted_transport.requests] == [
        "Bearer token-1",
        "Bearer token-2",
        "Bearer token-3",
    ]


# ============================================================================
# Failure Scenarios
# ============================================================================


@pytest.mark.asyncio
async def test_fatal_status_not_retried(executor, scripted_transport, fake_sleep):
    body = '{"error": {"code": "ResourceNotFound", "message": "Disk not found"}}'
    scripted_transport.add("PUT", PATH, response(404, body))

    result = await executor.execute(create_descriptor())

    assert result.status is OperationStatus.FAILED
    assert result.status_code == 404
    assert result.attempt_count == 1
    assert result.payload == body
    assert result.error.kind is ErrorKind.REMOTE
    assert result.error.retryable is False
    assert fake_sleep.calls == []

    with pytest.raises(RemoteError) as exc_info:
        result.raise_for_status()
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_attempts_exhausted(executor, scripted_transport, fake_sleep):
    scripted_transport.add("PUT", PATH, response(429, "throttled", {"Retry-After": "1"}))
    policy = RetryPolicy(max_attempts=3)

    result = await executor.execute(create_descriptor(), policy)

    assert result.failed
    assert result.attempt_count == 3
    assert result.status_code == 429
    assert result.error.kind is ErrorKind.THROTTLING
    assert result.error.retryable is True
    assert fake_sleep.calls == [1.0, 1.0]
    assert len(scripted_transport.requests) == 3

    with pytest.raises(ThrottlingError):
        result.raise_for_status()


@pytest.mark.asyncio
async def test_single_attempt_policy(executor, scripted_transport, fake_sleep):
    scripted_transport.add("PUT", PATH, response(503))

    result = await executor.execute(create_descriptor(), RetryPolicy(max_attempts=1))

    assert result.failed
    assert result.attempt_count == 1
    assert fake_sleep.calls == []


@pytest.mark.asyncio
async def test_transport_errors_exhausted(executor, scripted_transport):
    scripted_transport.add("PUT", PATH, TransportError("unreachable"))

    result = await executor.execute(create_descriptor(), RetryPolicy(max_attempts=2))

    assert result.failed
    assert result.status_code is None
    assert result.error.kind is ErrorKind.TRANSPORT
    assert result.attempt_count == 2


@pytest.mark.asyncio
async def test_credential_failure_is_fatal(scripted_transport, test_settings):
    credentials = AsyncMock()
    credentials.get_token = AsyncMock(side_effect=CredentialError("az login required"))
    executor = RetryingExecutor(scripted_transport, credentials, test_settings, sleep=FakeSleep())

    result = await executor.execute(create_descriptor())

    assert result.failed
    assert result.error.kind is ErrorKind.CREDENTIAL
    assert result.attempt_count == 1
    assert scripted_transport.requests == []


@pytest.mark.asyncio
async def test_on_attempt_hook(executor, scripted_transport):
    scripted_transport.add("PUT", PATH, response(503), response(200, {}))
    seen = []

    await executor.execute(create_descriptor(), on_attempt=seen.append)

    assert seen == [1, 2]


@pytest.mark.asyncio
async def test_cancellation_propagates(scripted_transport, static_credentials, test_settings):
    """Cancelling the caller interrupts a backoff sleep instead of finalising."""
    scripted_transport.add("PUT", PATH, response(503))
    executor = RetryingExecutor(scripted_transport, static_credentials, test_settings)

    task = asyncio.create_task(executor.execute(create_descriptor()))
    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(scripted_transport.requests) == 1


@pytest.mark.asyncio
async def test_metrics_recorded_when_enabled(executor, scripted_transport, test_settings):
    from prometheus_client import REGISTRY

    test_settings.PROMETHEUS_ENABLED = True
    labels = {"method": "PUT", "outcome": "retryable"}
    before = REGISTRY.get_sample_value("remote_attempts_total", labels) or 0.0
    scripted_transport.add("PUT", PATH, response(503), response(200, {}))

    await executor.execute(create_descriptor())

    assert REGISTRY.get_sample_value("remote_attempts_total", labels) == before + 1
