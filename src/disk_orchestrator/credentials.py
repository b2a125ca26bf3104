"""
Credential suppliers for the control plane.

The executor asks for a token before every attempt, so suppliers must be
cheap to call repeatedly and safe to call from concurrent tasks. Acquiring
the underlying identity (az login, managed identity) is a precondition
handled outside this package.
"""

import asyncio
import json
import time
from typing import Optional, Protocol

import structlog

from disk_orchestrator.exceptions import CredentialError

logger = structlog.get_logger(__name__)


class CredentialSupplier(Protocol):
    """Anything that can hand out a bearer token."""

    async def get_token(self) -> str:
        """Return a currently valid bearer token, or raise CredentialError."""
        ...


class StaticTokenSupplier:
    """Fixed token, for tests and for tokens minted by an outer tool."""

    def __init__(self, token: str):
        if not token:
            raise ValueError("token must not be empty")
        self._token = token

    async def get_token(self) -> str:
        return self._token

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(token=<redacted>)"


class AzureCliTokenSupplier:
    """
    Token from ``az account get-access-token``.

    Tokens are cached until ``refresh_margin`` seconds before their expiry.
    Concurrent callers may each spawn the CLI once when the cache is cold;
    the result is the same token either way.
    """

    def __init__(
        self,
        resource: str = "https://management.azure.com",
        refresh_margin: float = 300.0,
        az_executable: str = "az",
        timeout: float = 60.0,
    ):
        self.resource = resource
        self.refresh_margin = refresh_margin
        self.az_executable = az_executable
        self.timeout = timeout
        self._token: Optional[str] = None
        self._expires_at: float = 0.0

    async def get_token(self) -> str:
        if self._token and time.time() < self._expires_at - self.refresh_margin:
            return self._token

        token, expires_at = await self._fetch()
        self._token = token
        self._expires_at = expires_at
        return token

    async def _fetch(self) -> tuple[str, float]:
        command = [
            self.az_executable,
            "account",
            "get-access-token",
            "--resource",
            self.resource,
            "-o",
            "json",
        ]
        logger.debug("Acquiring access token from Azure CLI", resource=self.resource)

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CredentialError(
                f"Cannot run {self.az_executable}: {e}",
                details={"resource": self.resource},
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise CredentialError(
                f"az account get-access-token timed out after {self.timeout}s",
                details={"resource": self.resource},
            ) from e

        if process.returncode != 0:
            raise CredentialError(
                "az account get-access-token failed",
                details={
                    "resource": self.resource,
                    "exit_code": process.returncode,
                    "stderr": stderr.decode(errors="replace").strip()[:500],
                },
            )

        return self._parse(stdout.decode())

    def _parse(self, output: str) -> tuple[str, float]:
        try:
            data = json.loads(output)
            token = data["accessToken"]
            # Newer CLI versions add a POSIX "expires_on"; older ones only "expiresOn"
            expires_on = data.get("expires_on")
            if expires_on is not None:
                expires_at = float(expires_on)
            else:
                # Unknown expiry: keep the token for the margin plus one minute
                expires_at = time.time() + self.refresh_margin + 60.0
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise CredentialError(
                "Unexpected output from az account get-access-token",
                details={"resource": self.resource},
            ) from e

        logger.info("Access token acquired", resource=self.resource)
        return token, expires_at
