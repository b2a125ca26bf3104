"""
Pydantic data models for Disk Orchestrator.

Includes:
- Enums (OperationStatus, ErrorClass, ErrorKind, PollState)
- Operation models (OperationDescriptor, OperationResult, RetryPolicy)
- Polling models (PollSpec, PollOutcome)
- BatchReport (frozen dataclass returned by fan-out executions)
"""

from disk_orchestrator.models.enums import ErrorClass, ErrorKind, OperationStatus, PollState
from disk_orchestrator.models.operations import (
    ErrorDetail,
    OperationDescriptor,
    OperationResult,
    RetryPolicy,
)
from disk_orchestrator.models.polling import PollOutcome, PollSpec
from disk_orchestrator.models.batch import BatchKey, BatchReport

__all__ = [
    # Enums
    "ErrorClass",
    "ErrorKind",
    "OperationStatus",
    "PollState",
    # Operation models
    "ErrorDetail",
    "OperationDescriptor",
    "OperationResult",
    "RetryPolicy",
    # Polling models
    "PollOutcome",
    "PollSpec",
    # Batch
    "BatchKey",
    "BatchReport",
]
