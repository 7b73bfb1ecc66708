"""Transaction lookup: correlate a ledger txid with local mints and transfers."""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel

from oria.db.store import MarketplaceStore
from oria.errors import ValidationError
from oria.ledger import LedgerGateway, LedgerTransaction

log = logging.getLogger(__name__)

TXID_RE = re.compile(r"^[0-9a-fA-F]{64}$")
# Confirmations after which a transaction counts as settled
MIN_CONFIRMATIONS = 6


class TransactionInfo(BaseModel):
    txid: str
    type: str = "unknown"       # mint, transfer, unknown
    status: str = "not_found"   # local asset/transfer status
    confirmations: int = 0
    confirmed: bool = False
    timestamp: Optional[datetime] = None
    asset: Optional[Dict[str, Any]] = None
    transfer: Optional[Dict[str, Any]] = None
    blockchain: Optional[LedgerTransaction] = None
    blockchain_error: Optional[str] = None


class TransactionService:
    def __init__(self, store: MarketplaceStore, gateway: LedgerGateway):
        self.store = store
        self.gateway = gateway

    async def get_transaction(self, txid: str) -> TransactionInfo:
        if not TXID_RE.match(txid or ""):
            raise ValidationError("Invalid transaction hash format", code="invalid_txid")

        info = TransactionInfo(txid=txid)
        asset = self.store.find_asset_by_txid(txid)
        transfer = None if asset else self.store.find_transfer_by_txid(txid)

        if asset:
            info.type = "mint"
            info.status = asset.status.value
            info.asset = {
                "id": asset.id,
                "title": asset.title,
                "artist": asset.artist,
                "nexus_address": asset.nexus_address,
            }
        elif transfer:
            info.type = "transfer"
            info.status = transfer.status.value
            info.transfer = {
                "id": transfer.id,
                "asset_id": transfer.asset_id,
                "from_user_id": transfer.from_user_id,
                "to_user_id": transfer.to_user_id,
                "to_username": transfer.to_username,
                "status": transfer.status.value,
                "created_at": transfer.created_at,
                "confirmed_at": transfer.confirmed_at,
            }

        # ledger lookup failures are reported, not raised
        result = await self.gateway.get_transaction(txid)
        if result.ok:
            info.blockchain = result.value
            info.confirmations = result.value.confirmations
            if result.value.timestamp:
                info.timestamp = datetime.fromtimestamp(result.value.timestamp, tz=timezone.utc)
        else:
            info.blockchain_error = result.message
            log.info(f"Blockchain tx lookup failed for {txid}: {result.message}")

        info.confirmed = info.status == "confirmed" or info.confirmations >= MIN_CONFIRMATIONS
        return info

    async def get_transaction_status(self, txid: str) -> Dict[str, Any]:
        info = await self.get_transaction(txid)
        return {
            "txid": info.txid,
            "status": info.status,
            "confirmations": info.confirmations,
            "confirmed": info.confirmed,
        }
