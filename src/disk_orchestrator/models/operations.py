"""
Remote operation models for the request/response cycle.

An OperationDescriptor is submitted once to the retrying executor and
produces exactly one OperationResult. Both are frozen: results are owned by
the task that produced them and never mutated after finalisation.
"""

import json
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from disk_orchestrator.exceptions import (
    CredentialError,
    OperationCancelledError,
    RemoteError,
    RemoteOperationError,
    ThrottlingError,
    TransportError,
)
from disk_orchestrator.models.enums import ErrorKind, OperationStatus

if TYPE_CHECKING:
    from disk_orchestrator.config import Settings

RequestBody = Union[bytes, str, Dict[str, Any], list, None]


class OperationDescriptor(BaseModel):
    """
    One fully specified remote call.

    The body is opaque to the core: bytes and str are sent as-is, mappings and
    lists are JSON-encoded by the transport.
    """

    model_config = ConfigDict(frozen=True)

    method: str = Field(..., description="HTTP method (GET, PUT, PATCH, POST, DELETE)")
    url: str = Field(..., description="Resource path or absolute URL")
    body: RequestBody = Field(default=None, description="Opaque request body")
    api_version: Optional[str] = Field(default=None, description="API version to stamp on the URL")
    headers: Dict[str, str] = Field(default_factory=dict, description="Extra request headers")
    key: Optional[str] = Field(
        default=None,
        description="Stable identity used to correlate the result in a batch",
    )

    @field_validator("method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("method must not be empty")
        return value

    def __str__(self) -> str:
        return f"{self.method} {self.url}"


class ErrorDetail(BaseModel):
    """Diagnostic detail attached to a failed OperationResult."""

    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    message: str
    retryable: bool = False
    error_type: Optional[str] = Field(default=None, description="Exception class name, if any")


class OperationResult(BaseModel):
    """
    Outcome of one OperationDescriptor.

    Attributes:
        descriptor: The descriptor that produced this result
        status: Succeeded, Failed or TimedOut
        status_code: Last HTTP status received (None if no response ever arrived)
        payload: Last response body as text ("" for empty bodies)
        headers: Last response headers
        error: Failure detail (None on success)
        attempt_count: Number of attempts issued
        elapsed_ms: Wall-clock time from first attempt to finalisation
        cancelled: True when the caller aborted the operation
    """

    model_config = ConfigDict(frozen=True)

    descriptor: OperationDescriptor
    status: OperationStatus
    status_code: Optional[int] = None
    payload: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)
    error: Optional[ErrorDetail] = None
    attempt_count: int = Field(default=0, ge=0)
    elapsed_ms: int = Field(default=0, ge=0)
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status is OperationStatus.SUCCEEDED

    @property
    def failed(self) -> bool:
        return not self.succeeded

    def payload_json(self) -> Any:
        """Parse the payload as JSON (None for an empty payload)."""
        if not self.payload:
            return None
        return json.loads(self.payload)

    def raise_for_status(self) -> "OperationResult":
        """Raise the taxonomy exception matching this failure, or return self."""
        if self.succeeded:
            return self

        message = self.error.message if self.error else f"{self.descriptor} failed"
        details = {
            "method": self.descriptor.method,
            "url": self.descriptor.url,
            "attempt_count": self.attempt_count,
        }
        kind = self.error.kind if self.error else ErrorKind.REMOTE

        if kind is ErrorKind.TRANSPORT:
            raise TransportError(message, details=details)
        if kind is ErrorKind.CREDENTIAL:
            raise CredentialError(message, details=details)
        if kind is ErrorKind.CANCELLED:
            raise OperationCancelledError(message, details=details)
        if kind is ErrorKind.THROTTLING:
            raise ThrottlingError(message, status_code=self.status_code, body=self.payload, details=details)
        if kind is ErrorKind.REMOTE:
            raise RemoteError(message, status_code=self.status_code, body=self.payload, details=details)
        raise RemoteOperationError(message, details=details)

    @classmethod
    def cancelled_result(
        cls,
        descriptor: OperationDescriptor,
        attempt_count: int = 0,
        elapsed_ms: int = 0,
    ) -> "OperationResult":
        """Failed result for an operation aborted by the caller."""
        return cls(
            descriptor=descriptor,
            status=OperationStatus.FAILED,
            error=ErrorDetail(kind=ErrorKind.CANCELLED, message=f"{descriptor} cancelled"),
            attempt_count=attempt_count,
            elapsed_ms=elapsed_ms,
            cancelled=True,
        )


class RetryPolicy(BaseModel):
    """
    Retry configuration passed explicitly to the retrying executor.

    Delay for retry i (1-indexed) without a server hint is
    ``min(base_delay * 2 ** (i - 1), max_delay)``.
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=7, ge=1, description="Total attempts including the first")
    base_delay: float = Field(default=1.5, ge=0.0, description="Backoff base in seconds")
    max_delay: float = Field(default=60.0, ge=0.0, description="Backoff ceiling in seconds")
    honor_retry_after: bool = Field(default=True, description="Use numeric Retry-After headers")

    @classmethod
    def from_settings(cls, settings: "Settings") -> "RetryPolicy":
        return cls(
            max_attempts=settings.MAX_ATTEMPTS,
            base_delay=settings.RETRY_BACKOFF_BASE,
            max_delay=settings.RETRY_BACKOFF_CAP,
            honor_retry_after=settings.HONOR_RETRY_AFTER,
        )

    def with_overrides(self, **changes: Any) -> "RetryPolicy":
        return self.model_copy(update=changes)

