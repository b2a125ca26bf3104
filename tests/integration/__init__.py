"""
Integration tests for Disk Orchestrator.

Run the full stack (httpx transport, retrying executor, fan-out, poller)
against a fake compute control plane served through httpx.MockTransport:
- Throttled snapshot batches honoring Retry-After
- Capture, hydrate, restore point and attach workflows
"""
