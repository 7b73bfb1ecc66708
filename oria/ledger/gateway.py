"""
Ledger gateway interface.

Implementations only provide ``_request``; classification into the three
error kinds, decoding into typed records and audit logging live here so the
real client and the in-memory fake behave identically at the boundary.
No retries happen at this layer.
"""

import abc
import logging
import re
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError as PydanticValidationError

from .records import (
    AccountBalance,
    AssetReceipt,
    IdentityRecord,
    LedgerAsset,
    LedgerField,
    LedgerTransaction,
    SessionRecord,
    TransferReceipt,
)
from .result import LedgerErrorKind, LedgerResult

log = logging.getLogger(__name__)

REDACTED_KEYS = {"password", "pin", "session"}
ADDRESS_RE = re.compile(r"^[0-9a-fA-F]{64}$")


class LedgerEndpoint(str, Enum):
    """Remote API paths, ``<service>/<verb>/<noun>``."""

    CREATE_IDENTITY = "profiles/create/master"
    CREATE_SESSION = "sessions/create/local"
    UNLOCK_SESSION = "sessions/unlock/local"
    TERMINATE_SESSION = "sessions/terminate/local"
    CREATE_ASSET = "assets/create/asset"
    TRANSFER_ASSET = "assets/transfer/asset"
    GET_ASSET = "assets/get/asset"
    GET_ACCOUNT = "finance/get/account"
    GET_TRANSACTION = "ledger/get/transaction"
    SYSTEM_INFO = "system/get/info"


class LedgerGatewayError(Exception):
    """Raised by ``_request`` implementations; carries the classified kind."""

    def __init__(self, kind: LedgerErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = str(message)


def redact(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {k: ("[REDACTED]" if k in REDACTED_KEYS and v is not None else v) for k, v in payload.items()}


def is_ledger_address(value: str) -> bool:
    return bool(ADDRESS_RE.match(value or ""))


class LedgerGateway(abc.ABC):
    """Capability interface over the remote ledger."""

    @abc.abstractmethod
    async def _request(self, endpoint: LedgerEndpoint, payload: Dict[str, Any]) -> Any:
        """Perform the call and return the raw ``result`` member.

        Raises:
            LedgerGatewayError: classified failure
        """

    async def close(self) -> None:
        return None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def call(self, endpoint: LedgerEndpoint, payload: Dict[str, Any]) -> LedgerResult:
        """Uniform entry point. Never raises for remote failures."""
        try:
            raw = await self._request(endpoint, payload)
        except LedgerGatewayError as e:
            log.warning(f"ledger {endpoint.value} {redact(payload)} -> {e.kind.value}: {e.message}")
            return LedgerResult.failure(e.kind, e.message)

        if raw is None:
            log.warning(f"ledger {endpoint.value} {redact(payload)} -> InvalidResponse: empty result")
            return LedgerResult.failure(LedgerErrorKind.INVALID_RESPONSE, "Ledger API returned no result")

        log.info(f"ledger {endpoint.value} {redact(payload)} -> ok")
        return LedgerResult.success(raw)

    async def _call_typed(
        self, endpoint: LedgerEndpoint, payload: Dict[str, Any], model: Type[BaseModel]
    ) -> LedgerResult:
        result = await self.call(endpoint, payload)
        if not result.ok:
            return result
        try:
            return LedgerResult.success(model.model_validate(result.value))
        except PydanticValidationError as e:
            log.warning(f"ledger {endpoint.value}: unexpected result shape: {e.errors()[:1]}")
            return LedgerResult.failure(
                LedgerErrorKind.INVALID_RESPONSE,
                f"Unexpected {endpoint.value} result shape",
            )

    # ------------------------------------------------------------------
    # Typed operations
    # ------------------------------------------------------------------

    async def create_identity(self, username: str, password: str, pin: str) -> LedgerResult:
        payload = {"username": username, "password": password, "pin": pin}
        return await self._call_typed(LedgerEndpoint.CREATE_IDENTITY, payload, IdentityRecord)

    async def create_session(self, username: str, password: str, pin: str) -> LedgerResult:
        payload = {"username": username, "password": password, "pin": pin}
        return await self._call_typed(LedgerEndpoint.CREATE_SESSION, payload, SessionRecord)

    async def unlock_session(self, session: str, pin: str) -> LedgerResult:
        payload = {"session": session, "pin": pin, "transactions": True, "notifications": True}
        return await self.call(LedgerEndpoint.UNLOCK_SESSION, payload)

    async def create_asset(
        self, session: str, pin: Optional[str], name: str, fields: List[LedgerField]
    ) -> LedgerResult:
        payload = {
            "session": session,
            "pin": pin,
            "name": name,
            "format": "JSON",
            "json": [f.model_dump() for f in fields],
        }
        return await self._call_typed(LedgerEndpoint.CREATE_ASSET, payload, AssetReceipt)

    async def transfer_asset(
        self, session: str, pin: Optional[str], address: str, recipient: str
    ) -> LedgerResult:
        payload = {"session": session, "pin": pin, "address": address, "recipient": recipient}
        return await self._call_typed(LedgerEndpoint.TRANSFER_ASSET, payload, TransferReceipt)

    async def get_asset(self, address: Optional[str] = None, name: Optional[str] = None) -> LedgerResult:
        if address:
            payload = {"address": address}
        elif name:
            payload = {"name": name}
        else:
            raise ValueError("address or name is required")
        return await self._call_typed(LedgerEndpoint.GET_ASSET, payload, LedgerAsset)

    async def get_account(self, session: str, name: str = "default") -> LedgerResult:
        payload = {"session": session, "name": name}
        return await self._call_typed(LedgerEndpoint.GET_ACCOUNT, payload, AccountBalance)

    async def get_transaction(self, txid: str) -> LedgerResult:
        return await self._call_typed(LedgerEndpoint.GET_TRANSACTION, {"hash": txid}, LedgerTransaction)
