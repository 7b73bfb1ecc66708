"""Asset tables: the mintable unit and its status audit trail."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlmodel import Field, SQLModel

from oria.utils.timezone import utcnow

from .base import AssetStatus, TimeStamped, new_id


class Asset(TimeStamped, SQLModel, table=True):
    """一个可铸造的音频资产.

    The local record mirrors what has been registered on the ledger.
    ``nexus_address`` is only set once registration returned one.
    """

    __tablename__ = "asset"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=64)
    nexus_name: str = Field(index=True, max_length=128)

    # 当前持有者 (local user id); only a completed transfer changes it
    user_id: str = Field(foreign_key="user.user_id", index=True)

    title: str = Field(max_length=256)
    artist: str = Field(max_length=256)
    description: str = Field(default="", max_length=4096)
    genre: str = Field(default="", max_length=64)
    price: Decimal = Field(default=Decimal("0"), max_digits=18, decimal_places=8)

    is_limited: bool = Field(default=False)
    limited_supply: Optional[int] = Field(default=None)

    # Media references, opaque to the engines
    audio_url: str = Field(max_length=1024)
    audio_path: str = Field(max_length=512)
    cover_url: Optional[str] = Field(default=None, max_length=1024)
    cover_path: Optional[str] = Field(default=None, max_length=512)

    # Ledger linkage
    nexus_address: Optional[str] = Field(default=None, unique=True, index=True, max_length=128)
    nexus_txid: Optional[str] = Field(default=None, index=True, max_length=128)
    owner_genesis: Optional[str] = Field(default=None, max_length=128)

    status: AssetStatus = Field(default=AssetStatus.PENDING, index=True)
    last_error: Optional[str] = Field(default=None, max_length=1024)
    retry_count: int = Field(default=0)
    confirmed_at: Optional[datetime] = Field(default=None)


class AssetStatusLog(SQLModel, table=True):
    """Append-only record of every asset status transition."""

    __tablename__ = "asset_status_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    asset_id: str = Field(foreign_key="asset.id", index=True)
    from_status: Optional[AssetStatus] = Field(default=None)
    to_status: AssetStatus
    note: Optional[str] = Field(default=None, max_length=512)
    created_at: datetime = Field(default_factory=utcnow, index=True)
