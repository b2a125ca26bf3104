"""
httpx implementation of the remote operation transport.

Uses a persistent httpx AsyncClient for connection pooling so that a batch of
concurrent operations shares one pool instead of opening a connection each.
"""

import json
import time
from typing import Any, Mapping, Optional

import httpx
import structlog

from disk_orchestrator.exceptions import TransportError
from disk_orchestrator.transport.base import RemoteTransport, TransportResponse

logger = structlog.get_logger(__name__)


class HttpxTransport(RemoteTransport):
    """
    RemoteTransport backed by httpx.AsyncClient.

    Never raises on HTTP error statuses: a 429 or 503 is a response like any
    other and goes back to the executor for classification.
    """

    def __init__(
        self,
        timeout: float = 60.0,
        connect_timeout: float = 60.0,
        max_connections: int = 20,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize transport.

        Args:
            timeout: Overall request timeout in seconds
            connect_timeout: Connection establishment timeout in seconds
            max_connections: Connection pool size
            transport: Optional httpx transport (e.g. httpx.MockTransport in tests)
        """
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self._limits = httpx.Limits(
            max_keepalive_connections=max_connections,
            max_connections=max_connections,
            keepalive_expiry=30.0,
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        logger.info(
            "httpx transport initialized",
            timeout=timeout,
            connect_timeout=connect_timeout,
            max_connections=max_connections,
        )

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "HttpxTransport":
        return cls(
            timeout=settings.REQUEST_TIMEOUT,
            connect_timeout=settings.CONNECT_TIMEOUT,
            max_connections=settings.HTTP_MAX_CONNECTIONS,
            **kwargs,
        )

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=self.connect_timeout),
                limits=self._limits,
                transport=self._transport,
                follow_redirects=True,
            )
            logger.debug("Created new httpx AsyncClient")
        return self._client

    async def request(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: Any = None,
        timeout: Optional[float] = None,
    ) -> TransportResponse:
        request_headers = {"Accept": "application/json", **headers}
        content: Optional[bytes] = None
        if isinstance(body, bytes):
            content = body
        elif isinstance(body, str):
            content = body.encode("utf-8")
        elif body is not None:
            content = json.dumps(body).encode("utf-8")
        if content is not None:
            request_headers.setdefault("Content-Type", "application/json")

        request_timeout = httpx.Timeout(
            timeout if timeout is not None else self.timeout,
            connect=self.connect_timeout,
        )

        start_time = time.monotonic()
        try:
            response = await self._get_client().request(
                method,
                url,
                headers=request_headers,
                content=content,
                timeout=request_timeout,
            )
        except httpx.TimeoutException as e:
            logger.warning("Request timed out", method=method, url=url, error=str(e))
            raise TransportError(
                f"{method} {url} timed out",
                details={"error_type": type(e).__name__, "error": str(e)},
            ) from e
        except httpx.TransportError as e:
            logger.warning("Request failed at transport layer", method=method, url=url, error=str(e))
            raise TransportError(
                f"{method} {url} failed at transport layer: {e}",
                details={"error_type": type(e).__name__, "error": str(e)},
            ) from e

        latency_ms = int((time.monotonic() - start_time) * 1000)
        logger.debug(
            "Response received",
            method=method,
            url=url,
            status_code=response.status_code,
            latency_ms=latency_ms,
        )

        return TransportResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.text,
        )

    async def close(self) -> None:
        """Close the HTTP client connection."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            logger.debug("Closed httpx client connection")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(timeout={self.timeout}s)"
