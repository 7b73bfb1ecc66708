"""Platform fee audit log."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlmodel import Field, SQLModel

from oria.utils.timezone import utcnow

from .base import SponsoredAction


class SponsoredFee(SQLModel, table=True):
    """平台代付手续费记录, append-only."""

    __tablename__ = "sponsored_fee"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, max_length=64)
    action: SponsoredAction = Field(index=True)
    asset_id: Optional[str] = Field(default=None, index=True, max_length=64)
    txid: str = Field(max_length=128)
    fee_amount: Decimal = Field(max_digits=18, decimal_places=8)
    fee_date: str = Field(index=True, max_length=10)  # UTC YYYY-MM-DD
    platform_genesis: Optional[str] = Field(default=None, max_length=128)
    created_at: datetime = Field(default_factory=utcnow)
