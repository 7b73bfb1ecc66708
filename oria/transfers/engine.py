"""
Ownership transfer of a confirmed asset.

Preconditions are checked in a fixed order, each with its own error code.
The asset is then gated into ``transfer_pending`` together with the insert
of the pending transfer row; that gate is what keeps a second transfer of
the same asset out. Any failure after the gate rolls the asset back to
``confirmed`` under its original owner and marks the transfer ``failed``.
"""

import asyncio
import logging
from typing import List

from oria.config import ServiceConfig
from oria.db.models import (
    TRANSFERABLE_STATUSES,
    AssetStatus,
    AssetTransfer,
    SponsoredAction,
    TransferStatus,
)
from oria.db.store import MarketplaceStore
from oria.errors import (
    NotFoundError,
    OwnershipError,
    RemoteRejectedError,
    RemoteTransientError,
    StateConflictError,
    ValidationError,
)
from oria.ledger import LedgerErrorKind, LedgerGateway, LedgerResult
from oria.schemas import TransferConfirmation, TransferInput, TransferResult
from oria.sponsorship import FeeSponsorshipCoordinator
from oria.user_service import UserService
from oria.utils.timezone import utcnow

log = logging.getLogger(__name__)


def remote_error(result: LedgerResult, prefix: str):
    message = f"{prefix}: {result.message}"
    if result.kind == LedgerErrorKind.NETWORK_UNREACHABLE:
        return RemoteTransientError(message)
    return RemoteRejectedError(message)


class TransferEngine:
    def __init__(
        self,
        settings: ServiceConfig,
        gateway: LedgerGateway,
        store: MarketplaceStore,
        sponsor: FeeSponsorshipCoordinator,
        users: UserService,
    ):
        self.settings = settings
        self.gateway = gateway
        self.store = store
        self.sponsor = sponsor
        self.users = users

    async def transfer_asset(self, data: TransferInput) -> TransferResult:
        """Move an asset to another local user.

        Raises:
            NotFoundError: unknown asset or recipient
            OwnershipError: caller does not own the asset
            StateConflictError: status not transferable, or no ledger address
            ValidationError: recipient is the caller
            RemoteTransientError / RemoteRejectedError: ledger failure, after rollback
        """
        asset = self.store.get_asset(data.asset_id)
        if asset is None:
            raise NotFoundError("Asset not found", code="asset_not_found")
        if asset.user_id != data.user_id:
            raise OwnershipError("You do not own this asset")
        if asset.status not in TRANSFERABLE_STATUSES:
            raise StateConflictError(f"Asset cannot be transferred. Current status: {asset.status.value}")
        if not asset.nexus_address:
            raise StateConflictError("Asset has no blockchain address", code="missing_address")
        recipient = self.users.resolve_recipient(data.recipient)
        if recipient.user_id == data.user_id:
            raise ValidationError("Cannot transfer an asset to yourself", code="self_transfer")

        sender = self.store.get_user(data.user_id)
        transfer = AssetTransfer(
            asset_id=asset.id,
            from_user_id=data.user_id,
            from_genesis=asset.owner_genesis or (sender.nexus_genesis if sender else None),
            to_user_id=recipient.user_id,
            to_username=data.recipient,
        )
        asset, transfer = self.store.begin_transfer(transfer)
        log.info(f"🔄 Transfer {transfer.id}: asset {asset.id} {data.user_id} -> {recipient.user_id}")

        decision = None
        settled = False
        try:
            # 链上存在性复核
            check = await self.gateway.get_asset(address=asset.nexus_address)
            if not check.ok:
                raise remote_error(check, "Could not verify asset on blockchain")

            decision = await self.sponsor.reserve(data.estimated_fee)
            if not decision.allowed:
                log.info(f"Transfer {transfer.id}: fee not sponsored ({decision.reason}), user pays own fee")

            result = await self.gateway.transfer_asset(
                data.nexus_session, data.nexus_pin, asset.nexus_address, recipient.nexus_username
            )
            if not result.ok:
                raise remote_error(result, "Transfer failed")

            await self.sponsor.commit(decision, data.user_id, SponsoredAction.TRANSFER, result.value.txid, asset.id)
            settled = True
        except (Exception, asyncio.CancelledError) as e:
            self.store.fail_transfer(transfer.id, str(e))
            log.warning(f"❌ Transfer {transfer.id} rolled back: {e}")
            raise
        finally:
            if decision is not None and not settled:
                await self.sponsor.release(decision)

        try:
            asset, transfer = self.store.complete_transfer(transfer.id, result.value.txid)
        except Exception:
            # ledger already moved the asset; needs manual reconciliation
            log.error(
                f"Transfer {transfer.id} succeeded on ledger (tx {result.value.txid}) "
                f"but could not be recorded; asset {asset.id} left in transfer_pending"
            )
            raise
        log.info(f"✅ Transfer {transfer.id} confirmed (tx {transfer.nexus_txid})")
        return TransferResult(
            transfer=transfer,
            asset=asset,
            txid=transfer.nexus_txid,
            sponsored=decision.allowed,
            sponsorship_reason=decision.reason,
        )

    async def confirm_transfer(self, transfer_id: str) -> TransferConfirmation:
        """Check on the ledger that the asset left the original owner.

        Idempotent: repeated calls after success return the same owner and
        leave the stored state unchanged.
        """
        transfer = self.store.get_transfer(transfer_id)
        if transfer is None:
            raise NotFoundError("Transfer not found", code="transfer_not_found")
        if transfer.status != TransferStatus.CONFIRMED:
            return TransferConfirmation(
                confirmed=False,
                transfer=transfer,
                error=f"Transfer is {transfer.status.value}",
            )

        asset = self.store.require_asset(transfer.asset_id)
        result = await self.gateway.get_asset(address=asset.nexus_address)
        if not result.ok:
            return TransferConfirmation(confirmed=False, transfer=transfer, error=result.message)

        owner = result.value.owner
        if owner == transfer.from_genesis:
            return TransferConfirmation(confirmed=False, current_owner=owner, transfer=transfer)

        recipient = self.store.get_user(transfer.to_user_id)
        recipient_genesis = recipient.nexus_genesis if recipient else None
        if recipient_genesis and owner != recipient_genesis and not self._moved_on(transfer):
            return TransferConfirmation(
                confirmed=False,
                current_owner=owner,
                transfer=transfer,
                error="Ledger owner does not match the transfer recipient",
            )
        # the asset may have moved on since; the record keeps this transfer's recipient
        new_owner = recipient_genesis or owner

        if transfer.confirmed_at is None or transfer.to_genesis != new_owner:
            transfer = self.store.update_transfer(
                transfer.id,
                to_genesis=new_owner,
                confirmed_at=transfer.confirmed_at or utcnow(),
            )

        if (
            owner == new_owner
            and asset.status == AssetStatus.CONFIRMED
            and asset.user_id == transfer.to_user_id
        ):
            self.store.update_asset(
                asset.id,
                status=AssetStatus.TRANSFERRED,
                expected=(AssetStatus.CONFIRMED,),
                note=f"transfer {transfer.id} observed on ledger",
                owner_genesis=owner,
            )

        return TransferConfirmation(confirmed=True, new_owner=new_owner, current_owner=owner, transfer=transfer)

    def _moved_on(self, transfer: AssetTransfer) -> bool:
        """True when the recipient has since passed the asset on."""
        return any(
            later.from_user_id == transfer.to_user_id and later.created_at > transfer.created_at
            for later in self.store.list_transfers(asset_id=transfer.asset_id, status=TransferStatus.CONFIRMED)
        )

    def get_transfer_history(self, asset_id: str) -> List[AssetTransfer]:
        return self.store.list_transfers(asset_id=asset_id)

    async def confirm_outstanding(self) -> List[TransferConfirmation]:
        """Run ``confirm_transfer`` on every confirmed transfer not yet stamped."""
        results = []
        for transfer in self.store.list_transfers(status=TransferStatus.CONFIRMED, unconfirmed_only=True):
            results.append(await self.confirm_transfer(transfer.id))
        return results
