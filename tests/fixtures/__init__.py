"""
Test doubles for Disk Orchestrator.

Contains:
- ScriptedTransport: RemoteTransport replaying scripted responses per (method, path)
- FakeSleep: Records requested delays without waiting
- ScaledSleep: Real sleep scaled down, for timing assertions
- FakeClock: Clock plus sleep for deterministic poll deadlines
- response(): TransportResponse builder
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union
from urllib.parse import urlsplit

from disk_orchestrator.transport.base import RemoteTransport, TransportResponse

Scripted = Union[TransportResponse, BaseException]


def response(
    status_code: int = 200,
    body: Any = None,
    headers: Optional[Mapping[str, str]] = None,
) -> TransportResponse:
    """Build a TransportResponse; dict/list bodies are JSON-encoded."""
    if body is None:
        text = ""
    elif isinstance(body, str):
        text = body
    else:
        text = json.dumps(body)
    return TransportResponse(status_code=status_code, headers=dict(headers or {}), body=text)


@dataclass
class RecordedRequest:
    method: str
    url: str
    headers: dict
    body: Any

    @property
    def path(self) -> str:
        return urlsplit(self.url).path


class ScriptedTransport(RemoteTransport):
    """
    Replays responses per (method, path).

    Each scripted entry is consumed in order; the last entry repeats forever.
    Exceptions in the script are raised instead of returned.
    """

    def __init__(self, delay: float = 0.0):
        self.script: dict[tuple[str, str], list[Scripted]] = {}
        self.requests: list[RecordedRequest] = []
        self.delay = delay
        self.closed = False

    def add(self, method: str, path: str, *entries: Scripted) -> "ScriptedTransport":
        self.script.setdefault((method.upper(), path), []).extend(entries)
        return self

    def calls(self, method: str, path: str) -> list[RecordedRequest]:
        return [r for r in self.requests if r.method == method.upper() and r.path == path]

    async def request(self, method, url, headers, body=None, timeout=None) -> TransportResponse:
        recorded = RecordedRequest(method=method, url=url, headers=dict(headers), body=body)
        self.requests.append(recorded)
        if self.delay:
            await asyncio.sleep(self.delay)

        queue = self.script.get((method.upper(), recorded.path))
        if not queue:
            raise AssertionError(f"Unscripted request: {method} {url}")
        entry = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(entry, BaseException):
            raise entry
        return entry

    async def close(self) -> None:
        self.closed = True


@dataclass
class FakeSleep:
    """Awaitable sleep that records delays and only yields to the loop."""

    calls: list[float] = field(default_factory=list)

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)
        await asyncio.sleep(0)

    @property
    def total(self) -> float:
        return sum(self.calls)


@dataclass
class ScaledSleep:
    """Real sleep shrunk by ``factor``; keeps relative timing observable."""

    factor: float = 0.001
    calls: list[float] = field(default_factory=list)

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)
        await asyncio.sleep(delay * self.factor)


@dataclass
class FakeClock:
    """Monotonic clock that only moves when its sleep() is awaited."""

    now: float = 1000.0
    calls: list[float] = field(default_factory=list)

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.calls.append(delay)
        self.now += delay
        await asyncio.sleep(0)
