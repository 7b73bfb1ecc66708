"""Ownership transfer attempts."""

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from .base import TimeStamped, TransferStatus, new_id


class AssetTransfer(TimeStamped, SQLModel, table=True):
    """One ownership-change attempt. Immutable once confirmed or failed,
    except for the confirmation stamp written by the re-verification pass."""

    __tablename__ = "asset_transfer"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=64)
    asset_id: str = Field(foreign_key="asset.id", index=True)

    from_user_id: str = Field(index=True, max_length=64)
    from_genesis: Optional[str] = Field(default=None, max_length=128)

    to_user_id: str = Field(index=True, max_length=64)
    to_username: str = Field(max_length=255)  # as supplied by the caller
    to_genesis: Optional[str] = Field(default=None, max_length=128)

    nexus_txid: Optional[str] = Field(default=None, index=True, max_length=128)
    status: TransferStatus = Field(default=TransferStatus.PENDING, index=True)
    error: Optional[str] = Field(default=None, max_length=1024)
    confirmed_at: Optional[datetime] = Field(default=None)
