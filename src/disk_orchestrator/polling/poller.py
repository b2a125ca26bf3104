"""
Completion poller.

Waits for one long-running remote operation (provisioning, background copy,
hydration) to reach a terminal state. State machine:

    Polling --success value--> Succeeded
    Polling --failure value--> Failed    (last state + full payload kept)
    Polling --deadline-------> TimedOut  (final state unknown)

The first read happens immediately; every later read follows a sleep of
``interval`` seconds, clipped to the remaining deadline. A read that fails
after its own retries is a missed tick, not an abort. Each read, retries
included, is bounded by the time left, so ``timeout`` caps wall-clock time.
"""

import asyncio
import contextlib
import json
import time
from typing import Any, Awaitable, Callable, Optional

import structlog

from disk_orchestrator.config import Settings
from disk_orchestrator.models.enums import PollState
from disk_orchestrator.models.operations import OperationResult, RetryPolicy
from disk_orchestrator.models.polling import PollOutcome, PollSpec
from disk_orchestrator.monitoring.metrics import poll_missed_ticks_total, poll_outcomes_total
from disk_orchestrator.retry.executor import RetryingExecutor

logger = structlog.get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


def extract_path(payload: Any, path: tuple[str, ...]) -> Any:
    """Follow a key path through nested dicts; None when any hop is missing."""
    node = payload
    for part in path:
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def _parse_payload(result: OperationResult) -> Any:
    try:
        return result.payload_json()
    except json.JSONDecodeError:
        logger.warning(
            "Status read returned non-JSON payload",
            url=result.descriptor.url,
            payload=result.payload[:200],
        )
        return None


def _as_progress(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class CompletionPoller:
    """
    Single-resource poll loop over the retrying executor.

    The poller has no notion of a batch: to await several resources, run one
    poll() per resource, e.g. through FanOutExecutor.run_all.

    Attributes:
        executor: RetryingExecutor used for every status read
        settings: Application settings (metrics toggle)
        read_policy: Retry policy for status reads (executor default if None)
    """

    def __init__(
        self,
        executor: RetryingExecutor,
        settings: Optional[Settings] = None,
        read_policy: Optional[RetryPolicy] = None,
        sleep: SleepFunc = asyncio.sleep,
        clock: Clock = time.monotonic,
    ):
        self.executor = executor
        self.settings = settings or executor.settings
        self.read_policy = read_policy
        self._sleep = sleep
        self._clock = clock

    async def poll(
        self,
        spec: PollSpec,
        policy: Optional[RetryPolicy] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PollOutcome:
        """
        Poll until a terminal state or the deadline.

        Args:
            spec: What to read and which states are terminal
            policy: Retry policy for each status read (read_policy if omitted)
            cancel_event: When set, the loop stops with a cancelled Failed outcome

        Returns:
            PollOutcome in state Succeeded, Failed or TimedOut
        """
        policy = policy or self.read_policy
        start_time = self._clock()
        ticks = 0
        missed_ticks = 0
        last_state: Optional[str] = None
        last_payload: Any = None
        last_result: Optional[OperationResult] = None
        last_progress: Optional[float] = None

        def finish(state: PollState, cancelled: bool = False) -> PollOutcome:
            outcome = PollOutcome(
                spec=spec,
                state=state,
                last_observed_state=last_state,
                resource=last_payload,
                last_result=last_result,
                last_progress=last_progress,
                ticks=ticks,
                missed_ticks=missed_ticks,
                elapsed_ms=int((self._clock() - start_time) * 1000),
                cancelled=cancelled,
            )
            if self.settings.PROMETHEUS_ENABLED:
                poll_outcomes_total.labels(state=state.value).inc()
            return outcome

        def timed_out() -> PollOutcome:
            logger.error(
                "Timed out waiting for terminal state",
                resource=spec.key,
                last_state=last_state,
                ticks=ticks,
                timeout=spec.timeout,
            )
            return finish(PollState.TIMED_OUT)

        logger.info(
            "Polling started",
            resource=spec.key,
            interval=spec.interval,
            timeout=spec.timeout,
        )

        while True:
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("Polling cancelled", resource=spec.key, ticks=ticks)
                return finish(PollState.FAILED, cancelled=True)

            remaining = spec.timeout - (self._clock() - start_time)
            if remaining <= 0:
                return timed_out()

            ticks += 1
            state: Optional[str] = None
            failure_signal: Optional[str] = None
            try:
                result = await asyncio.wait_for(
                    self.executor.execute(spec.descriptor, policy), remaining
                )
            except asyncio.TimeoutError:
                missed_ticks += 1
                if self.settings.PROMETHEUS_ENABLED:
                    poll_missed_ticks_total.inc()
                logger.warning(
                    "Status read cut off at deadline, counting as missed tick",
                    resource=spec.key,
                    tick=ticks,
                    timeout=spec.timeout,
                )
                return timed_out()

            last_result = result
            if result.succeeded:
                payload = _parse_payload(result)
                if payload is not None:
                    last_payload = payload
                observed = extract_path(payload, spec.state_path)
                state = str(observed) if observed is not None else None
                if spec.progress_path is not None:
                    progress = _as_progress(extract_path(payload, spec.progress_path))
                    if progress is not None:
                        last_progress = progress
                if spec.failure_path is not None:
                    signal = extract_path(payload, spec.failure_path)
                    if signal is not None and str(signal) in spec.failure_states:
                        failure_signal = str(signal)
            else:
                missed_ticks += 1
                if self.settings.PROMETHEUS_ENABLED:
                    poll_missed_ticks_total.inc()
                logger.warning(
                    "Status read failed, counting as missed tick",
                    resource=spec.key,
                    tick=ticks,
                    status_code=result.status_code,
                    error=result.error.message if result.error else None,
                )

            if failure_signal is not None:
                state = failure_signal
            if state is not None:
                last_state = state

            verdict = PollState.FAILED if failure_signal else spec.classify_state(state)
            if verdict is PollState.SUCCEEDED:
                logger.info(
                    "Resource reached success state",
                    resource=spec.key,
                    state=state,
                    ticks=ticks,
                )
                return finish(PollState.SUCCEEDED)
            if verdict is PollState.FAILED:
                logger.error(
                    "Resource ended in failure state",
                    resource=spec.key,
                    state=state,
                    ticks=ticks,
                    resource_payload=last_payload,
                )
                return finish(PollState.FAILED)

            remaining = spec.timeout - (self._clock() - start_time)
            if remaining <= 0:
                return timed_out()

            delay = min(spec.interval, remaining)
            logger.info(
                f"State: {state or 'NotFoundYet'}. Waiting {delay:.1f}s...",
                resource=spec.key,
                state=state,
                progress=last_progress,
                tick=ticks,
            )

            if cancel_event is None:
                await self._sleep(delay)
            else:
                await self._sleep_or_cancel(delay, cancel_event)

    async def _sleep_or_cancel(self, delay: float, cancel_event: asyncio.Event) -> None:
        """Sleep for delay, returning early once cancel_event is set."""
        waiter = asyncio.create_task(cancel_event.wait())
        sleeper = asyncio.create_task(self._sleep(delay))
        try:
            await asyncio.wait({waiter, sleeper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (waiter, sleeper):
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
