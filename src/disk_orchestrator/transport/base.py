"""
Abstract remote operation transport.

Defines the interface the retrying executor uses to put one request on the
wire. This abstraction keeps the executor independent of the HTTP library
and lets tests script responses without a network.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

logger = structlog.get_logger(__name__)


class TransportResponse(BaseModel):
    """A response received from the remote API, whatever its status."""

    model_config = ConfigDict(frozen=True)

    status_code: int = Field(..., ge=100, le=599)
    headers: Dict[str, str] = Field(default_factory=dict)
    body: str = ""

    def header(self, name: str) -> Optional[str]:
        return header_lookup(self.headers, name)


def header_lookup(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup over a plain mapping."""
    lowered = name.lower()
    for header, value in headers.items():
        if header.lower() == lowered:
            return value
    return None


class RemoteTransport(ABC):
    """
    Abstract base class for remote operation transports.

    Responsibilities:
    - Send one request with bounded connect/overall timeouts
    - Return status, headers and body for every received response
    - Raise TransportError when no response was received

    Does NOT handle:
    - Authentication (the executor adds the Authorization header)
    - Retry and backoff (that's RetryingExecutor's job)
    - Status interpretation (that's the classifier's job)
    """

    @abstractmethod
    async def request(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: Any = None,
        timeout: Optional[float] = None,
    ) -> TransportResponse:
        """
        Perform one request.

        Args:
            method: HTTP method
            url: Absolute URL
            headers: Request headers
            body: bytes/str sent as-is, mappings and lists JSON-encoded
            timeout: Overall timeout in seconds (None = transport default)

        Returns:
            TransportResponse for any received response, including 4xx/5xx

        Raises:
            TransportError: No response received (network error, timeout)
        """
        pass

    async def close(self) -> None:
        """Release pooled connections. Default implementation does nothing."""
        logger.debug("Closing transport", transport_class=self.__class__.__name__)

    async def __aenter__(self) -> "RemoteTransport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
