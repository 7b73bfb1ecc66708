"""Inputs and results exchanged with the boundary layer."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict

from oria.db.models import Asset, AssetTransfer
from oria.ledger import AssetReceipt, LedgerAsset


class MintInput(BaseModel):
    user_id: str
    title: str
    artist: str
    description: Optional[str] = None
    genre: Optional[str] = None
    price: Decimal = Decimal("0")
    is_limited: bool = False
    limited_supply: Optional[int] = None
    audio_url: str
    audio_path: str
    cover_url: Optional[str] = None
    cover_path: Optional[str] = None

    # caller's ledger credentials
    nexus_session: str
    nexus_pin: Optional[str] = None
    estimated_fee: Optional[Decimal] = None


class TransferInput(BaseModel):
    asset_id: str
    user_id: str
    recipient: str  # ledger username or account email
    nexus_session: str
    nexus_pin: Optional[str] = None
    estimated_fee: Optional[Decimal] = None


class AssetResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    asset: Asset
    nexus: Optional[AssetReceipt] = None
    sponsored: bool = False
    sponsorship_reason: Optional[str] = None


class ConfirmationResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    confirmed: bool
    asset: Optional[Asset] = None
    ledger_asset: Optional[LedgerAsset] = None
    error: Optional[str] = None


class VerificationResult(BaseModel):
    verified: bool
    asset: Optional[LedgerAsset] = None
    owner: Optional[str] = None
    error: Optional[str] = None


class TransferResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    transfer: AssetTransfer
    asset: Asset
    txid: Optional[str] = None
    sponsored: bool = False
    sponsorship_reason: Optional[str] = None


class TransferConfirmation(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    confirmed: bool
    new_owner: Optional[str] = None
    current_owner: Optional[str] = None
    transfer: Optional[AssetTransfer] = None
    error: Optional[str] = None


class UserRegistration(BaseModel):
    email: str
    username: str
    password: str
    pin: str
    display_name: Optional[str] = None


class AssetDetail(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    asset: Asset
    blockchain: Optional[VerificationResult] = None
