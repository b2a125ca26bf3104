"""
Concurrent fan-out/fan-in execution.

Components:
- FanOutExecutor: Runs a batch of descriptors (or arbitrary units) concurrently
- batch_keys: Stable identities for a batch of descriptors
"""

from disk_orchestrator.execution.fanout import FanOutExecutor, batch_keys

__all__ = ["FanOutExecutor", "batch_keys"]
