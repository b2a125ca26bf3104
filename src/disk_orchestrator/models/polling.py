"""
Completion polling models.

A PollSpec describes how to read one resource and which values of its state
field are terminal. A PollOutcome is the terminal result of one poll loop.
"""

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from disk_orchestrator.exceptions import (
    OperationCancelledError,
    PollFailedError,
    PollTimeoutError,
)
from disk_orchestrator.models.enums import PollState
from disk_orchestrator.models.operations import OperationDescriptor, OperationResult

DEFAULT_SUCCESS_STATES = frozenset({"Succeeded"})
DEFAULT_FAILURE_STATES = frozenset({"Failed", "Canceled", "Cancelled"})


def _as_path(value: Union[str, tuple, list, None]) -> Optional[tuple[str, ...]]:
    if value is None:
        return None
    if isinstance(value, str):
        parts = tuple(part for part in value.split(".") if part)
    else:
        parts = tuple(str(part) for part in value)
    if not parts:
        raise ValueError("path must name at least one field")
    return parts


class PollSpec(BaseModel):
    """
    How to await one resource.

    Attributes:
        descriptor: Read operation (usually GET) returning the resource as JSON
        state_path: Key path of the state field ("properties.provisioningState")
        success_states: State values mapped to Succeeded
        failure_states: State values mapped to Failed
        progress_path: Optional key path of a progress value (copy/hydration percent)
        failure_path: Optional second key path; a value there in failure_states
            ends the poll as Failed whatever the state field says
        interval: Seconds between ticks
        timeout: Overall deadline in seconds
    """

    model_config = ConfigDict(frozen=True)

    descriptor: OperationDescriptor
    state_path: tuple[str, ...] = ("properties", "provisioningState")
    success_states: frozenset[str] = DEFAULT_SUCCESS_STATES
    failure_states: frozenset[str] = DEFAULT_FAILURE_STATES
    progress_path: Optional[tuple[str, ...]] = None
    failure_path: Optional[tuple[str, ...]] = None
    interval: float = Field(default=10.0, gt=0)
    timeout: float = Field(default=1800.0, gt=0)

    @field_validator("state_path", "progress_path", "failure_path", mode="before")
    @classmethod
    def _split_path(cls, value: Any) -> Any:
        return _as_path(value)

    @model_validator(mode="after")
    def _disjoint_states(self) -> "PollSpec":
        overlap = self.success_states & self.failure_states
        if overlap:
            raise ValueError(f"states cannot be both success and failure: {sorted(overlap)}")
        if not self.success_states:
            raise ValueError("success_states must not be empty")
        return self

    @property
    def key(self) -> str:
        return self.descriptor.key or self.descriptor.url

    def classify_state(self, state: Optional[str]) -> PollState:
        """Map an observed state value onto the poller state machine."""
        if state is None:
            return PollState.POLLING
        if state in self.success_states:
            return PollState.SUCCEEDED
        if state in self.failure_states:
            return PollState.FAILED
        return PollState.POLLING


class PollOutcome(BaseModel):
    """
    Terminal result of one poll loop.

    ``resource`` holds the last full payload read, for diagnostics.
    ``missed_ticks`` counts reads that failed after their own retries.
    """

    model_config = ConfigDict(frozen=True)

    spec: PollSpec
    state: PollState
    last_observed_state: Optional[str] = None
    resource: Any = None
    last_result: Optional[OperationResult] = None
    last_progress: Optional[float] = None
    ticks: int = Field(default=0, ge=0)
    missed_ticks: int = Field(default=0, ge=0)
    elapsed_ms: int = Field(default=0, ge=0)
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state is PollState.SUCCEEDED

    @property
    def failed(self) -> bool:
        return not self.succeeded

    def raise_for_state(self) -> "PollOutcome":
        """Raise PollFailedError / PollTimeoutError / OperationCancelledError, or return self."""
        details = {
            "resource": self.spec.key,
            "ticks": self.ticks,
            "elapsed_ms": self.elapsed_ms,
        }
        if self.state is PollState.SUCCEEDED:
            return self
        if self.cancelled:
            raise OperationCancelledError(f"Polling {self.spec.key} cancelled", details=details)
        if self.state is PollState.TIMED_OUT:
            raise PollTimeoutError(
                f"Timed out waiting for {self.spec.key} "
                f"(last state: {self.last_observed_state or 'unknown'})",
                details=details,
            )
        raise PollFailedError(
            f"{self.spec.key} ended in state {self.last_observed_state}",
            state=self.last_observed_state,
            details={**details, "resource_payload": self.resource},
        )
