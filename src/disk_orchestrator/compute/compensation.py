"""
Verify-then-patch compensation.

Some create calls are accepted but silently drop a property (seen with
``instantAccessDurationMinutes`` on restore points). ensure_property reads
the resource back and, when the property is missing or different, issues a
PATCH carrying only that property. This is an optional caller-level step on
top of a successful OperationResult, not part of the core executors.
"""

import json
from typing import Any, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict

from disk_orchestrator.compute.resources import get_resource, patch_resource
from disk_orchestrator.models.operations import OperationResult, RetryPolicy
from disk_orchestrator.polling.poller import extract_path
from disk_orchestrator.retry.executor import RetryingExecutor

logger = structlog.get_logger(__name__)


class CompensationResult(BaseModel):
    """
    Outcome of one verify-then-patch pass.

    Attributes:
        property_path: Key path that was verified
        expected: Value the caller asked for
        observed: Value read back before any patch (None if missing/unreadable)
        patched: Whether a PATCH was issued
        read_result: Result of the verification read
        patch_result: Result of the PATCH, if one was issued
    """

    model_config = ConfigDict(frozen=True)

    property_path: tuple[str, ...]
    expected: Any
    observed: Any = None
    patched: bool = False
    read_result: OperationResult
    patch_result: Optional[OperationResult] = None

    @property
    def in_effect(self) -> bool:
        """True when the property holds the expected value after this pass."""
        if self.patch_result is not None:
            return self.patch_result.succeeded
        return self.read_result.succeeded and self.observed == self.expected


def nested_body(path: tuple[str, ...], value: Any) -> dict[str, Any]:
    """{"a": {"b": value}} for path ("a", "b")."""
    body: Any = value
    for part in reversed(path):
        body = {part: body}
    return body


async def ensure_property(
    executor: RetryingExecutor,
    resource_id: str,
    property_path: Union[str, tuple[str, ...]],
    expected: Any,
    api_version: Optional[str] = None,
    policy: Optional[RetryPolicy] = None,
) -> CompensationResult:
    """
    Make sure a resource property holds the expected value.

    Args:
        executor: RetryingExecutor for the read and the optional patch
        resource_id: Resource path or URL
        property_path: Dotted path or tuple ("properties.instantAccessDurationMinutes")
        expected: Required value
        api_version: API version of the resource provider
        policy: Retry policy for both calls

    Returns:
        CompensationResult describing what was observed and done
    """
    path = tuple(property_path.split(".")) if isinstance(property_path, str) else tuple(property_path)

    read_result = await executor.execute(get_resource(resource_id, api_version), policy)
    if read_result.failed:
        logger.warning(
            "Cannot verify property, read failed",
            resource=resource_id,
            property=".".join(path),
            status_code=read_result.status_code,
        )
        return CompensationResult(property_path=path, expected=expected, read_result=read_result)

    try:
        observed = extract_path(read_result.payload_json(), path)
    except json.JSONDecodeError:
        observed = None

    if observed == expected:
        logger.debug("Property already in effect", resource=resource_id, property=".".join(path))
        return CompensationResult(
            property_path=path, expected=expected, observed=observed, read_result=read_result
        )

    logger.warning(
        "Property not applied by create call, patching",
        resource=resource_id,
        property=".".join(path),
        expected=expected,
        observed=observed,
    )
    patch_result = await executor.execute(
        patch_resource(resource_id, nested_body(path, expected), api_version), policy
    )
    if patch_result.failed:
        logger.error(
            "Compensating patch failed",
            resource=resource_id,
            property=".".join(path),
            status_code=patch_result.status_code,
        )

    return CompensationResult(
        property_path=path,
        expected=expected,
        observed=observed,
        patched=True,
        read_result=read_result,
        patch_result=patch_result,
    )
