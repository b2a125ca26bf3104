"""Compute control-plane glue: resource descriptors, compensation and workflows."""

from disk_orchestrator.compute.compensation import CompensationResult, ensure_property
from disk_orchestrator.compute.workflows import (
    DiskSource,
    DiskWorkflows,
    WorkflowReport,
    copy_completion_spec,
)

__all__ = [
    "CompensationResult",
    "DiskSource",
    "DiskWorkflows",
    "WorkflowReport",
    "copy_completion_spec",
    "ensure_property",
]
