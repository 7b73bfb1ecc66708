"""Ledger gateway: the only path to the remote Nexus node."""

from .fake import InMemoryLedgerGateway
from .gateway import LedgerEndpoint, LedgerGateway, LedgerGatewayError, is_ledger_address, redact
from .nexus import NexusLedgerGateway
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

__all__ = [
    "AccountBalance",
    "AssetReceipt",
    "IdentityRecord",
    "InMemoryLedgerGateway",
    "LedgerAsset",
    "LedgerEndpoint",
    "LedgerErrorKind",
    "LedgerField",
    "LedgerGateway",
    "LedgerGatewayError",
    "LedgerResult",
    "LedgerTransaction",
    "NexusLedgerGateway",
    "SessionRecord",
    "TransferReceipt",
    "is_ledger_address",
    "redact",
]
