"""
Retrying request executor.

This module implements the RetryingExecutor that issues one logical remote
operation and retries it on transient failure. It is the single entry point
every batch unit and every poll tick goes through.

Retry Policy:
    1. Fresh token before every attempt (tokens expire during long sequences)
    2. Transport failure (no response): retry with exponential backoff
    3. Status < 400: success, returned immediately (empty body allowed)
    4. Status >= 400 and retryable: wait Retry-After (if numeric) or backoff
    5. Status >= 400 and fatal, or attempts exhausted: Failed result

Usage:
    executor = RetryingExecutor(transport, credentials, settings)
    result = await executor.execute(descriptor, policy)
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional

import structlog

from disk_orchestrator.config import Settings
from disk_orchestrator.config import settings as default_settings
from disk_orchestrator.credentials import CredentialSupplier
from disk_orchestrator.exceptions import TransportError
from disk_orchestrator.models.enums import ErrorClass, ErrorKind, OperationStatus
from disk_orchestrator.models.operations import (
    ErrorDetail,
    OperationDescriptor,
    OperationResult,
    RetryPolicy,
)
from disk_orchestrator.monitoring.metrics import (
    remote_attempts_total,
    remote_operation_seconds,
    remote_retries_total,
)
from disk_orchestrator.retry.backoff import compute_backoff, next_delay
from disk_orchestrator.retry.classifier import classify, is_throttling_text
from disk_orchestrator.transport.base import RemoteTransport, TransportResponse
from disk_orchestrator.transport.urls import build_url

logger = structlog.get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]
UrlResolver = Callable[[OperationDescriptor], str]
AttemptHook = Callable[[int], None]


class RetryingExecutor:
    """
    Executes one remote operation with bounded retries.

    Never raises for a failed call: every outcome (success, fatal error,
    exhausted retries) is finalised as an immutable OperationResult. Only
    asyncio.CancelledError propagates, so callers keep normal cancellation
    semantics.

    Attributes:
        transport: Transport used to put requests on the wire
        credentials: Token supplier, called once per attempt
        settings: Application settings (timeouts, default policy, base URL)
        default_policy: RetryPolicy used when execute() gets none
    """

    def __init__(
        self,
        transport: RemoteTransport,
        credentials: CredentialSupplier,
        settings: Optional[Settings] = None,
        sleep: SleepFunc = asyncio.sleep,
        url_resolver: Optional[UrlResolver] = None,
    ):
        """
        Initialize executor.

        Args:
            transport: RemoteTransport implementation
            credentials: CredentialSupplier implementation
            settings: Application settings (module settings if omitted)
            sleep: Awaitable sleep, injectable for tests
            url_resolver: Maps a descriptor to its request URL
                (default: base URL join + api-version stamping)
        """
        self.transport = transport
        self.credentials = credentials
        self.settings = settings or default_settings
        self.default_policy = RetryPolicy.from_settings(self.settings)
        self._sleep = sleep
        self._url_resolver = url_resolver or self._default_url

    def _default_url(self, descriptor: OperationDescriptor) -> str:
        return build_url(
            descriptor.url,
            descriptor.api_version or self.settings.ARM_API_VERSION,
            self.settings.ARM_BASE_URL,
        )

    def _record_attempt(self, method: str, outcome: str) -> None:
        if self.settings.PROMETHEUS_ENABLED:
            remote_attempts_total.labels(method=method, outcome=outcome).inc()

    def _record_retry(self, reason: str) -> None:
        if self.settings.PROMETHEUS_ENABLED:
            remote_retries_total.labels(reason=reason).inc()

    async def execute(
        self,
        descriptor: OperationDescriptor,
        policy: Optional[RetryPolicy] = None,
        on_attempt: Optional[AttemptHook] = None,
    ) -> OperationResult:
        """
        Execute a descriptor with the retry policy.

        Args:
            descriptor: Operation to issue
            policy: Retry policy (default_policy if omitted)
            on_attempt: Called with the attempt number before each attempt

        Returns:
            OperationResult with attempt_count and elapsed_ms filled in
        """
        policy = policy or self.default_policy
        url = self._url_resolver(descriptor)
        method = descriptor.method
        start_time = time.monotonic()
        attempt = 0

        while True:
            attempt += 1
            if on_attempt is not None:
                on_attempt(attempt)

            try:
                token = await self.credentials.get_token()
            except Exception as e:
                # Credential failures are fatal here; retry belongs to a higher layer
                logger.error(
                    "Credential supplier failed",
                    method=method,
                    url=url,
                    attempt=attempt,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                return self._finalize(
                    descriptor,
                    OperationStatus.FAILED,
                    attempt,
                    start_time,
                    error=ErrorDetail(
                        kind=ErrorKind.CREDENTIAL,
                        message=f"Credential supplier failed: {e}",
                        error_type=type(e).__name__,
                    ),
                )

            headers = {**descriptor.headers, "Authorization": f"Bearer {token}"}
            logger.debug("Issuing request", method=method, url=url, attempt=attempt)

            try:
                response = await self.transport.request(
                    method,
                    url,
                    headers,
                    descriptor.body,
                    timeout=self.settings.REQUEST_TIMEOUT,
                )
            except TransportError as e:
                self._record_attempt(method, "transport_error")
                if classify(e) is ErrorClass.RETRYABLE and attempt < policy.max_attempts:
                    delay = compute_backoff(attempt, policy.base_delay, policy.max_delay)
                    logger.warning(
                        f"Request failed at transport layer (attempt {attempt}/{policy.max_attempts}), "
                        f"retrying in {delay}s",
                        method=method,
                        url=url,
                        attempt=attempt,
                        delay=delay,
                        error=e.message,
                    )
                    self._record_retry("transport")
                    await self._sleep(delay)
                    continue

                logger.error(
                    f"{method} {url} failed at transport layer after {attempt} attempts",
                    method=method,
                    url=url,
                    attempts=attempt,
                    error=e.message,
                )
                return self._finalize(
                    descriptor,
                    OperationStatus.FAILED,
                    attempt,
                    start_time,
                    error=ErrorDetail(
                        kind=ErrorKind.TRANSPORT,
                        message=e.message,
                        retryable=True,
                        error_type=type(e).__name__,
                    ),
                )

            if response.status_code < 400:
                self._record_attempt(method, "success")
                logger.debug(
                    "Request succeeded",
                    method=method,
                    url=url,
                    status_code=response.status_code,
                    attempt=attempt,
                    empty_body=not response.body,
                )
                return self._finalize(
                    descriptor,
                    OperationStatus.SUCCEEDED,
                    attempt,
                    start_time,
                    response=response,
                )

            verdict = classify(status_code=response.status_code, body=response.body)
            retryable = verdict is ErrorClass.RETRYABLE
            self._record_attempt(method, "retryable" if retryable else "fatal")

            if retryable and attempt < policy.max_attempts:
                delay, source = next_delay(attempt, policy, response.header("Retry-After"))
                logger.warning(
                    f"{method} {url} returned HTTP {response.status_code} "
                    f"(attempt {attempt}/{policy.max_attempts}), retrying in {delay}s",
                    method=method,
                    url=url,
                    status_code=response.status_code,
                    attempt=attempt,
                    delay=delay,
                    delay_source=source,
                )
                self._record_retry(self._retry_reason(response))
                await self._sleep(delay)
                continue

            logger.error(
                f"{method} {url} failed with HTTP {response.status_code}",
                method=method,
                url=url,
                status_code=response.status_code,
                attempts=attempt,
                retryable=retryable,
                body=response.body[:500],
            )
            return self._finalize(
                descriptor,
                OperationStatus.FAILED,
                attempt,
                start_time,
                response=response,
                error=ErrorDetail(
                    kind=ErrorKind.THROTTLING if retryable else ErrorKind.REMOTE,
                    message=f"{method} {url} failed with HTTP {response.status_code}",
                    retryable=retryable,
                ),
            )

    @staticmethod
    def _retry_reason(response: TransportResponse) -> str:
        if response.status_code == 429 or is_throttling_text(response.body):
            return "throttling"
        return "server"

    def _finalize(
        self,
        descriptor: OperationDescriptor,
        status: OperationStatus,
        attempt: int,
        start_time: float,
        response: Optional[TransportResponse] = None,
        error: Optional[ErrorDetail] = None,
    ) -> OperationResult:
        elapsed = time.monotonic() - start_time
        if self.settings.PROMETHEUS_ENABLED:
            remote_operation_seconds.labels(
                method=descriptor.method, status=status.value
            ).observe(elapsed)

        return OperationResult(
            descriptor=descriptor,
            status=status,
            status_code=response.status_code if response else None,
            payload=response.body if response else "",
            headers=response.headers if response else {},
            error=error,
            attempt_count=attempt,
            elapsed_ms=int(elapsed * 1000),
        )
