"""
Transient-error classifier.

Pure predicates deciding whether a failed remote call is worth retrying.
Rate limiting, transient server faults and transport failures are
retryable; every other failure is fatal.
"""

import re
from typing import Optional

from disk_orchestrator.exceptions import CredentialError, RemoteError, TransportError
from disk_orchestrator.models.enums import ErrorClass

RETRYABLE_STATUS_CODES = frozenset({408, 409, 429, 500, 502, 503, 504})

# Throttling vocabulary seen in ARM error bodies and az CLI output
THROTTLING_PATTERN = re.compile(
    r"too\s*many\s*requests|retry\s*after|throttl",
    re.IGNORECASE,
)


def is_retryable_status(status_code: Optional[int]) -> bool:
    """True for 408, 409, 429 and the transient 5xx codes."""
    return status_code in RETRYABLE_STATUS_CODES


def is_throttling_text(text: Optional[str]) -> bool:
    """True when the text mentions rate limiting."""
    if not text:
        return False
    return THROTTLING_PATTERN.search(text) is not None


def classify(
    error: Optional[BaseException] = None,
    *,
    status_code: Optional[int] = None,
    body: Optional[str] = None,
) -> ErrorClass:
    """
    Classify a failure signal.

    Args:
        error: Exception raised for the failure, if any
        status_code: HTTP status of the received response, if any
        body: Response body or error output text, if any

    Returns:
        ErrorClass.RETRYABLE or ErrorClass.FATAL
    """
    if isinstance(error, TransportError):
        return ErrorClass.RETRYABLE
    if isinstance(error, CredentialError):
        return ErrorClass.FATAL

    if isinstance(error, RemoteError):
        if status_code is None:
            status_code = error.status_code
        if body is None:
            body = error.body

    if is_retryable_status(status_code):
        return ErrorClass.RETRYABLE
    if is_throttling_text(body):
        return ErrorClass.RETRYABLE

    # CLI-style failures carry the server message in the exception text only
    if error is not None and status_code is None and is_throttling_text(str(error)):
        return ErrorClass.RETRYABLE

    return ErrorClass.FATAL
