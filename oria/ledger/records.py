"""Typed ledger records decoded at the gateway boundary."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class LedgerField(BaseModel):
    """One entry of an asset's JSON field list."""

    name: str
    type: str = "string"
    value: str
    mutable: bool = False


class IdentityRecord(BaseModel):
    genesis: str
    txid: Optional[str] = None
    username: Optional[str] = None


class SessionRecord(BaseModel):
    session: str
    genesis: Optional[str] = None


class AssetReceipt(BaseModel):
    address: str
    txid: str


class TransferReceipt(BaseModel):
    txid: str
    recipient: Optional[str] = None


class LedgerAsset(BaseModel):
    owner: str
    address: Optional[str] = None
    name: Optional[str] = None
    created: Optional[int] = None
    modified: Optional[int] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class AccountBalance(BaseModel):
    balance: float = 0
    available: float = 0


class LedgerTransaction(BaseModel):
    txid: str
    type: Optional[str] = None
    timestamp: Optional[int] = None
    confirmations: int = 0
    genesis: Optional[str] = None
    contracts: List[Dict[str, Any]] = Field(default_factory=list)
