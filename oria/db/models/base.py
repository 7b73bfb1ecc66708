"""Base models and enums shared across SQLModel tables."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from sqlmodel import Field, SQLModel

from oria.utils.timezone import utcnow


def new_id() -> str:
    """Opaque locally-generated primary key."""
    return uuid.uuid4().hex


class TimeStamped(SQLModel, table=False):
    """Mixin that stores creation/update timestamps in UTC."""

    created_at: datetime = Field(default_factory=utcnow, nullable=False, index=True)
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)


class AssetStatus(str, Enum):
    PENDING = "pending"                # 本地创建, 尚未提交到链上
    REGISTERING = "registering"        # Ledger create call in flight
    CONFIRMING = "confirming"          # Got address + txid, awaiting verification
    CONFIRMED = "confirmed"
    TRANSFER_PENDING = "transfer_pending"
    TRANSFERRED = "transferred"
    FAILED = "failed"


class TransferStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class SponsoredAction(str, Enum):
    MINT = "mint"
    TRANSFER = "transfer"


# from -> allowed targets
ASSET_TRANSITIONS = {
    AssetStatus.PENDING: {AssetStatus.REGISTERING},
    AssetStatus.REGISTERING: {AssetStatus.CONFIRMING, AssetStatus.FAILED},
    AssetStatus.CONFIRMING: {
        AssetStatus.CONFIRMED,
        AssetStatus.TRANSFER_PENDING,
        AssetStatus.FAILED,
    },
    AssetStatus.CONFIRMED: {
        AssetStatus.CONFIRMED,
        AssetStatus.TRANSFER_PENDING,
        AssetStatus.TRANSFERRED,
    },
    AssetStatus.TRANSFER_PENDING: {AssetStatus.CONFIRMED},
    AssetStatus.TRANSFERRED: {AssetStatus.CONFIRMED},
    AssetStatus.FAILED: {AssetStatus.REGISTERING},
}

TRANSFERABLE_STATUSES = (AssetStatus.CONFIRMED, AssetStatus.CONFIRMING)


def can_transition(current: AssetStatus, target: AssetStatus) -> bool:
    return target in ASSET_TRANSITIONS.get(AssetStatus(current), set())
