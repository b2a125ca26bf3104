"""
Fan-out/fan-in task executor.

Runs many independent remote operations concurrently as asyncio tasks and
collects exactly one outcome per unit. Units share no domain state: the only
shared resources are the optional concurrency semaphore, the transport's
connection pool and the credential supplier.

Cancellation:
    - Cancelling the task awaiting execute_all/run_all cancels and awaits
      every unit, then re-raises asyncio.CancelledError (no leaked tasks).
    - Setting ``cancel_event`` cancels the outstanding units; each finalises
      with a cancelled Failed result and the full report is still returned.
"""

import asyncio
import contextlib
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Mapping, Optional, Sequence, TypeVar

import structlog

from disk_orchestrator.config import Settings
from disk_orchestrator.models.batch import BatchKey, BatchReport
from disk_orchestrator.models.enums import ErrorKind, OperationStatus
from disk_orchestrator.models.operations import (
    ErrorDetail,
    OperationDescriptor,
    OperationResult,
    RetryPolicy,
)
from disk_orchestrator.monitoring.metrics import batch_units_total
from disk_orchestrator.retry.executor import RetryingExecutor

logger = structlog.get_logger(__name__)

T = TypeVar("T")
UnitFactory = Callable[[], Awaitable[T]]


@dataclass
class _UnitProgress:
    """Per-unit bookkeeping, owned by exactly one unit."""

    attempts: int = 0
    started_at: Optional[float] = None

    def on_attempt(self, attempt: int) -> None:
        self.attempts = attempt

    def elapsed_ms(self) -> int:
        if self.started_at is None:
            return 0
        return int((time.monotonic() - self.started_at) * 1000)


def batch_keys(descriptors: Sequence[OperationDescriptor]) -> list[BatchKey]:
    """
    Stable identities for a batch: descriptor key if set, else its index.

    Raises:
        ValueError: Two descriptors resolve to the same identity
    """
    keys: list[BatchKey] = [
        d.key if d.key is not None else index for index, d in enumerate(descriptors)
    ]
    seen: set[BatchKey] = set()
    for key in keys:
        if key in seen:
            raise ValueError(f"Duplicate descriptor key in batch: {key!r}")
        seen.add(key)
    return keys


async def _cancel_when_set(event: asyncio.Event, tasks: Iterable[asyncio.Task]) -> None:
    await event.wait()
    pending = [task for task in tasks if not task.done()]
    logger.warning("Cancellation requested for batch", outstanding_units=len(pending))
    for task in pending:
        task.cancel()


class FanOutExecutor:
    """
    Concurrent dispatch of independent units followed by aggregation.

    Attributes:
        executor: RetryingExecutor every descriptor goes through
        settings: Application settings (default concurrency limit, metrics)
    """

    def __init__(self, executor: RetryingExecutor, settings: Optional[Settings] = None):
        self.executor = executor
        self.settings = settings or executor.settings

    async def execute_all(
        self,
        descriptors: Sequence[OperationDescriptor],
        policy: Optional[RetryPolicy] = None,
        concurrency_limit: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchReport:
        """
        Execute every descriptor concurrently and wait for all of them.

        Args:
            descriptors: Operations to run; results are keyed by descriptor
                key, or by position when a descriptor has no key
            policy: Retry policy shared by all units (executor default if omitted)
            concurrency_limit: Max units in flight (settings default; None = unbounded)
            cancel_event: When set, outstanding units finalise as cancelled

        Returns:
            BatchReport with exactly one result per descriptor
        """
        keys = batch_keys(descriptors)
        limit = concurrency_limit if concurrency_limit is not None else self.settings.CONCURRENCY_LIMIT
        progress = {key: _UnitProgress() for key in keys}
        by_key = dict(zip(keys, descriptors))

        def unit_for(key: BatchKey) -> UnitFactory[OperationResult]:
            unit_progress = progress[key]
            descriptor = by_key[key]

            async def unit() -> OperationResult:
                unit_progress.started_at = time.monotonic()
                return await self.executor.execute(
                    descriptor, policy, on_attempt=unit_progress.on_attempt
                )

            return unit

        def cancelled(key: BatchKey) -> OperationResult:
            return OperationResult.cancelled_result(
                by_key[key],
                attempt_count=progress[key].attempts,
                elapsed_ms=progress[key].elapsed_ms(),
            )

        def crashed(key: BatchKey, error: Exception) -> OperationResult:
            logger.error(
                "Batch unit raised unexpectedly",
                key=key,
                error_type=type(error).__name__,
                error=str(error),
            )
            return OperationResult(
                descriptor=by_key[key],
                status=OperationStatus.FAILED,
                error=ErrorDetail(
                    kind=ErrorKind.REMOTE,
                    message=f"Unexpected error: {error}",
                    error_type=type(error).__name__,
                ),
                attempt_count=progress[key].attempts,
                elapsed_ms=progress[key].elapsed_ms(),
            )

        logger.info(
            "Starting batch",
            units=len(keys),
            concurrency_limit=limit,
        )
        start_time = time.monotonic()

        results = await self.run_all(
            {key: unit_for(key) for key in keys},
            concurrency_limit=limit,
            cancel_event=cancel_event,
            on_cancel=cancelled,
            on_error=crashed,
        )

        report = BatchReport(
            results=results,
            elapsed_ms=int((time.monotonic() - start_time) * 1000),
            submitted=len(descriptors),
        )

        if self.settings.PROMETHEUS_ENABLED:
            for result in results.values():
                batch_units_total.labels(status=result.status.value).inc()

        log = logger.info if report.all_succeeded else logger.warning
        log(
            "Batch finished",
            units=len(report),
            succeeded=report.succeeded_count,
            failed=report.failed_count,
            failed_keys=list(report.failed),
            elapsed_ms=report.elapsed_ms,
        )
        return report

    async def run_all(
        self,
        units: Mapping[BatchKey, UnitFactory[T]],
        concurrency_limit: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
        on_cancel: Optional[Callable[[BatchKey], T]] = None,
        on_error: Optional[Callable[[BatchKey, Exception], T]] = None,
    ) -> dict[BatchKey, T]:
        """
        Run arbitrary awaitable units concurrently (e.g. one poller per resource).

        Args:
            units: Mapping from identity to a zero-argument coroutine function
            concurrency_limit: Max units in flight (None = unbounded)
            cancel_event: When set, outstanding units are cancelled
            on_cancel: Builds the outcome of a cancelled unit (required with cancel_event)
            on_error: Builds the outcome of a unit that raised; without it the
                first such exception is re-raised once every unit has finished

        Returns:
            Mapping from identity to outcome, in submission order
        """
        if concurrency_limit is not None and concurrency_limit < 1:
            raise ValueError("concurrency_limit must be >= 1")
        if cancel_event is not None and on_cancel is None:
            raise ValueError("on_cancel is required when cancel_event is given")
        if not units:
            return {}

        semaphore = asyncio.Semaphore(concurrency_limit) if concurrency_limit else None

        async def bounded(factory: UnitFactory[T]) -> T:
            if semaphore is None:
                return await factory()
            async with semaphore:
                return await factory()

        tasks = {
            key: asyncio.create_task(bounded(factory), name=f"unit-{key}")
            for key, factory in units.items()
        }

        watcher: Optional[asyncio.Task] = None
        if cancel_event is not None:
            watcher = asyncio.create_task(_cancel_when_set(cancel_event, tasks.values()))

        try:
            outcomes = await asyncio.gather(*tasks.values(), return_exceptions=True)
        finally:
            if watcher is not None:
                watcher.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await watcher

        results: dict[BatchKey, T] = {}
        first_error: Optional[BaseException] = None
        for key, outcome in zip(tasks, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                if on_cancel is None:
                    raise outcome
                results[key] = on_cancel(key)
            elif isinstance(outcome, Exception):
                if on_error is None:
                    first_error = first_error or outcome
                    continue
                results[key] = on_error(key, outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results[key] = outcome

        if first_error is not None:
            raise first_error
        return results
