"""Aggregate exports for SQLModel tables."""

from .asset import Asset, AssetStatusLog
from .base import (
    ASSET_TRANSITIONS,
    TRANSFERABLE_STATUSES,
    AssetStatus,
    SponsoredAction,
    TimeStamped,
    TransferStatus,
    can_transition,
    new_id,
)
from .fee import SponsoredFee
from .transfer import AssetTransfer
from .user import User

__all__ = [
    "ASSET_TRANSITIONS",
    "Asset",
    "AssetStatus",
    "AssetStatusLog",
    "AssetTransfer",
    "SponsoredAction",
    "SponsoredFee",
    "TRANSFERABLE_STATUSES",
    "TimeStamped",
    "TransferStatus",
    "User",
    "can_transition",
    "new_id",
]
