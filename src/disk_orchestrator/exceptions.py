"""
Error taxonomy for remote operations.

The executors never raise these for a failed call; they finalise an
OperationResult / PollOutcome instead. The exceptions exist so callers can
turn a result into a raised error (``raise_for_status`` / ``raise_for_state``)
and so the classifier has typed signals to work with.
"""

from typing import Optional


class RemoteOperationError(Exception):
    """
    Base exception for all remote operation errors.

    All orchestrator exceptions inherit from this to allow catching any
    remote-operation failure with a single except clause.
    """

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class TransportError(RemoteOperationError):
    """
    Raised when no response was received.

    Includes DNS failures, refused connections, resets and timeouts.
    Always retryable.
    """

    pass


class RemoteError(RemoteOperationError):
    """
    Raised when the remote API answered with an error status (>= 400).

    Carries the status code and body for diagnostics.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: str = "",
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code
        self.body = body


class ThrottlingError(RemoteError):
    """
    Remote error recognised as rate limiting or a transient server fault.

    Retried locally with backoff; only surfaces once retries are exhausted.
    """

    pass


class CredentialError(RemoteOperationError):
    """
    Raised when the credential supplier cannot produce a token.

    Fatal at the executor level; retry belongs to a higher layer.
    """

    pass


class OperationCancelledError(RemoteOperationError):
    """Raised for an operation or poll aborted by the caller."""

    pass


class PollTimeoutError(RemoteOperationError):
    """
    Raised when a poll deadline passes without a terminal state.

    Means "final state unknown", not "known bad state".
    """

    pass


class PollFailedError(RemoteOperationError):
    """Raised when a polled resource reached a failure terminal state."""

    def __init__(self, message: str, state: Optional[str] = None, details: dict | None = None):
        super().__init__(message, details)
        self.state = state
