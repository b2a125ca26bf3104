"""
Enumerations for Disk Orchestrator data models.

All enums are closed taxonomies - no values outside these sets are permitted.
"""

from enum import Enum


class OperationStatus(str, Enum):
    """
    Final outcome of one remote operation.

    TIMED_OUT is reserved for operations finalised by a caller-side deadline;
    the retrying executor itself only produces SUCCEEDED or FAILED.
    """

    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"


class ErrorClass(str, Enum):
    """Verdict of the transient-error classifier."""

    RETRYABLE = "retryable"
    FATAL = "fatal"


class ErrorKind(str, Enum):
    """What went wrong with a failed operation."""

    TRANSPORT = "transport"
    REMOTE = "remote"
    THROTTLING = "throttling"
    CREDENTIAL = "credential"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"


class PollState(str, Enum):
    """
    Completion poller states.

    POLLING is the only non-terminal state; a poll loop never returns it.
    """

    POLLING = "Polling"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"

    @property
    def is_terminal(self) -> bool:
        return self is not PollState.POLLING
