"""
Remote operation transport abstraction and implementations.

Components:
- RemoteTransport: Abstract base class for transports
- TransportResponse: Status, headers and body of a received response
- HttpxTransport: Implementation over httpx.AsyncClient
- build_url: Base-URL joining and api-version stamping
"""

from disk_orchestrator.transport.base import RemoteTransport, TransportResponse, header_lookup
from disk_orchestrator.transport.httpx_transport import HttpxTransport
from disk_orchestrator.transport.urls import build_url

__all__ = [
    "RemoteTransport",
    "TransportResponse",
    "HttpxTransport",
    "build_url",
    "header_lookup",
]
