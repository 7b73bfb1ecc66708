# oria/db/models/user.py
from typing import Optional

from sqlmodel import Field, SQLModel

from .base import TimeStamped, new_id


class User(TimeStamped, SQLModel, table=True):
    """本地用户, 每个用户在链上有一条 sigchain (genesis)."""

    user_id: str = Field(default_factory=new_id, primary_key=True, max_length=64)
    email: str = Field(index=True, unique=True, max_length=255)
    display_name: Optional[str] = Field(default=None, max_length=128)

    # Ledger identity
    nexus_username: str = Field(index=True, unique=True, max_length=64)
    nexus_genesis: Optional[str] = Field(default=None, max_length=128)
    nexus_txid: Optional[str] = Field(default=None, max_length=128)
