"""HTTP client for a Nexus node's JSON API."""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import aiohttp

from oria.config import ServiceConfig

from .gateway import LedgerEndpoint, LedgerGateway, LedgerGatewayError
from .result import LedgerErrorKind

log = logging.getLogger(__name__)

READ_ENDPOINTS = {
    LedgerEndpoint.GET_ASSET,
    LedgerEndpoint.GET_ACCOUNT,
    LedgerEndpoint.GET_TRANSACTION,
    LedgerEndpoint.SYSTEM_INFO,
}


class NexusLedgerGateway(LedgerGateway):
    """Talks to ``{base_url}/{endpoint}``; reads are GET with query params,
    writes are POST with a JSON body. Every request is bounded by
    ``NEXUS_TIMEOUT_SECONDS``."""

    DEFAULT_HEADERS = {
        "Content-Type": "application/json",
        "Accept": "application/json",
    }

    def __init__(self, settings: ServiceConfig):
        self.base_url = settings.NEXUS_BASE_URL.rstrip("/")
        self.api_key = settings.NEXUS_API_KEY
        self.timeout = aiohttp.ClientTimeout(
            total=settings.NEXUS_TIMEOUT_SECONDS,
            connect=settings.NEXUS_CONNECT_TIMEOUT_SECONDS,
        )
        self._session: Optional[aiohttp.ClientSession] = None

    async def _ensure_session(self):
        if self._session is None or self._session.closed:
            headers = dict(self.DEFAULT_HEADERS)
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._session = aiohttp.ClientSession(headers=headers, timeout=self.timeout)

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def _request(self, endpoint: LedgerEndpoint, payload: Dict[str, Any]) -> Any:
        await self._ensure_session()
        url = f"{self.base_url}/{endpoint.value}"
        clean = {k: v for k, v in payload.items() if v is not None}
        if endpoint in READ_ENDPOINTS:
            kwargs = {"params": {k: str(v) for k, v in clean.items()}}
            method = "GET"
        else:
            kwargs = {"json": clean}
            method = "POST"

        try:
            async with self._session.request(method, url, **kwargs) as response:
                status = response.status
                raw = await response.read()
        except asyncio.TimeoutError:
            raise LedgerGatewayError(
                LedgerErrorKind.NETWORK_UNREACHABLE, f"Timed out calling {endpoint.value}"
            )
        except aiohttp.ClientError as e:
            raise LedgerGatewayError(
                LedgerErrorKind.NETWORK_UNREACHABLE, f"Nexus node unreachable: {e}"
            )

        body = None
        if raw:
            try:
                body = json.loads(raw.decode("utf-8"))
            except ValueError:
                # also covers UnicodeDecodeError
                body = None

        if isinstance(body, dict) and body.get("error"):
            error = body["error"]
            message = error.get("message") if isinstance(error, dict) else error
            message = str(message) if message not in (None, "") else f"HTTP {status}"
            raise LedgerGatewayError(LedgerErrorKind.REMOTE_REJECTED, message)

        if status >= 500:
            raise LedgerGatewayError(LedgerErrorKind.NETWORK_UNREACHABLE, f"Nexus node returned HTTP {status}")
        if status != 200:
            raise LedgerGatewayError(LedgerErrorKind.REMOTE_REJECTED, f"Nexus node returned HTTP {status}")
        if not isinstance(body, dict):
            raise LedgerGatewayError(LedgerErrorKind.INVALID_RESPONSE, "Nexus node returned malformed JSON")

        return body.get("result")

    async def system_info(self) -> Dict[str, Any]:
        """Node status for health checks; empty dict when unreachable."""
        result = await self.call(LedgerEndpoint.SYSTEM_INFO, {})
        if not result.ok or not isinstance(result.value, dict):
            return {}
        return {
            "version": result.value.get("version"),
            "blocks": result.value.get("blocks"),
            "connections": result.value.get("connections"),
            "synchronizing": result.value.get("synchronizing"),
        }
