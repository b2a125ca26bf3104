"""
Unit tests for Disk Orchestrator.

Test individual components in isolation:
- Retry classification, backoff and the retrying executor
- Fan-out execution (concurrency limit, failure isolation, cancellation)
- Completion polling (terminal states, timeouts, missed ticks)
- Transport, URL building and credentials
- Resource descriptors and verify-then-patch compensation
"""
