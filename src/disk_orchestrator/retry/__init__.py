"""
Retrying request execution.

Issues one remote operation, retrying on transient failure with bounded
exponential backoff and honouring server Retry-After hints:

1. **Classifier**: Pure retryable/fatal verdict per failure signal
2. **Backoff**: ``min(base * 2 ** (attempt - 1), cap)`` or numeric Retry-After
3. **Executor**: Fresh token per attempt, attempt-bounded retry loop

Main Components:
    - RetryingExecutor: Executes an OperationDescriptor into an OperationResult
    - classify: Transient-error classifier
    - compute_backoff / next_delay: Delay computation

Usage:
    >>> from disk_orchestrator.retry import RetryingExecutor
    >>> executor = RetryingExecutor(transport, credentials, settings)
    >>> result = await executor.execute(descriptor, policy)
"""

from disk_orchestrator.retry.backoff import compute_backoff, next_delay, parse_retry_after
from disk_orchestrator.retry.classifier import (
    RETRYABLE_STATUS_CODES,
    classify,
    is_retryable_status,
    is_throttling_text,
)
from disk_orchestrator.retry.executor import RetryingExecutor

__all__ = [
    "RetryingExecutor",
    "RETRYABLE_STATUS_CODES",
    "classify",
    "is_retryable_status",
    "is_throttling_text",
    "compute_backoff",
    "next_delay",
    "parse_retry_after",
]
