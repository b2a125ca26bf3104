"""
Completion polling for long-running remote operations.

Components:
- CompletionPoller: Single-resource poll loop (Polling -> Succeeded | Failed | TimedOut)
- extract_path: Key-path lookup used for state and progress fields
"""

from disk_orchestrator.polling.poller import CompletionPoller, extract_path

__all__ = ["CompletionPoller", "extract_path"]
