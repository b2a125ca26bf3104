"""
Disk Orchestrator for multi-disk VM capture and restore.

Drives point-in-time capture (snapshots, restore point collections) of every
disk attached to a source VM and rehydrates those captures into new managed
disks for a target VM.

Architecture: retrying request executor + asyncio fan-out/fan-in batches +
completion poller, fronting an ARM-style compute control plane over httpx.
"""

__version__ = "0.1.0"
