"""Persistence adapter for users, assets, transfers and sponsored fees.

Every public method runs in its own ``session_scope`` so callers never hold
a session across an ``await``. Status changes go through ``_apply_status``
which enforces ``ASSET_TRANSITIONS`` and compare-and-sets the status column,
so a concurrent writer that moved the asset first makes the update fail
instead of silently overwriting it.
"""

import logging
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from oria.db.connection import session_scope
from oria.db.models import (
    TRANSFERABLE_STATUSES,
    Asset,
    AssetStatus,
    AssetStatusLog,
    AssetTransfer,
    SponsoredFee,
    TransferStatus,
    User,
    can_transition,
)
from oria.errors import NotFoundError, StateConflictError
from oria.utils.timezone import utcnow

log = logging.getLogger(__name__)


class MarketplaceStore:
    """Create/read/update access keyed by opaque identifiers."""

    def __init__(self, engine: Engine):
        self.engine = engine

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        with session_scope(self.engine) as session:
            session.add(user)
            session.flush()
            session.refresh(user)
            return user

    def get_user(self, user_id: str) -> Optional[User]:
        with session_scope(self.engine) as session:
            return session.get(User, user_id)

    def find_user_by_username(self, nexus_username: str) -> Optional[User]:
        with session_scope(self.engine) as session:
            stmt = select(User).where(User.nexus_username == nexus_username)
            return session.exec(stmt).first()

    def find_user_by_email(self, email: str) -> Optional[User]:
        with session_scope(self.engine) as session:
            stmt = select(User).where(func.lower(User.email) == email.lower().strip())
            return session.exec(stmt).first()

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------

    def create_asset(self, asset: Asset, note: Optional[str] = None) -> Asset:
        with session_scope(self.engine) as session:
            session.add(asset)
            session.flush()
            session.add(AssetStatusLog(asset_id=asset.id, from_status=None, to_status=asset.status, note=note))
            session.refresh(asset)
            return asset

    def get_asset(self, asset_id: str) -> Optional[Asset]:
        with session_scope(self.engine) as session:
            return session.get(Asset, asset_id)

    def require_asset(self, asset_id: str) -> Asset:
        asset = self.get_asset(asset_id)
        if asset is None:
            raise NotFoundError("Asset not found", code="asset_not_found")
        return asset

    def find_asset_by_txid(self, txid: str) -> Optional[Asset]:
        with session_scope(self.engine) as session:
            return session.exec(select(Asset).where(Asset.nexus_txid == txid)).first()

    def list_assets(
        self,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[AssetStatus]] = None,
        limit: Optional[int] = None,
    ) -> List[Asset]:
        """Newest first."""
        query = select(Asset)
        if user_id:
            query = query.where(Asset.user_id == user_id)
        if statuses:
            query = query.where(Asset.status.in_(list(statuses)))
        query = query.order_by(Asset.created_at.desc())
        if limit:
            query = query.limit(limit)
        with session_scope(self.engine) as session:
            return list(session.exec(query).all())

    def update_asset(
        self,
        asset_id: str,
        status: Optional[AssetStatus] = None,
        note: Optional[str] = None,
        expected: Optional[Iterable[AssetStatus]] = None,
        **fields: Any,
    ) -> Asset:
        """Update fields and optionally move the asset to ``status``.

        Args:
            asset_id: asset to update
            status: target status, validated against the transition table
            note: stored in the status log alongside the transition
            expected: statuses the asset must currently be in
            **fields: other column values to write

        Raises:
            NotFoundError: unknown asset
            StateConflictError: disallowed transition, unexpected current
                status, or a concurrent status change
        """
        with session_scope(self.engine) as session:
            asset = session.get(Asset, asset_id)
            if asset is None:
                raise NotFoundError("Asset not found", code="asset_not_found")
            if expected is not None and asset.status not in set(expected):
                raise StateConflictError(
                    f"Asset cannot be updated in status {asset.status.value}"
                )
            self._apply_status(session, asset, status, note, fields)
            session.refresh(asset)
            return asset

    def _apply_status(
        self,
        session: Session,
        asset: Asset,
        status: Optional[AssetStatus],
        note: Optional[str],
        fields: dict,
    ) -> None:
        values = dict(fields)
        values["updated_at"] = utcnow()
        current = asset.status
        if status is not None:
            if not can_transition(current, status):
                raise StateConflictError(
                    f"Illegal asset transition {current.value} -> {status.value}"
                )
            values["status"] = status

        result = session.execute(
            update(Asset)
            .where(Asset.id == asset.id, Asset.status == current)
            .values(**values)
        )
        if result.rowcount != 1:
            raise StateConflictError("Asset status changed concurrently")

        if status is not None:
            session.add(AssetStatusLog(asset_id=asset.id, from_status=current, to_status=status, note=note))
            log.info(f"Asset {asset.id}: {current.value} -> {status.value}" + (f" ({note})" if note else ""))

    def status_history(self, asset_id: str) -> List[AssetStatusLog]:
        with session_scope(self.engine) as session:
            stmt = (
                select(AssetStatusLog)
                .where(AssetStatusLog.asset_id == asset_id)
                .order_by(AssetStatusLog.id.asc())
            )
            return list(session.exec(stmt).all())

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def begin_transfer(self, transfer: AssetTransfer) -> Tuple[Asset, AssetTransfer]:
        """Insert the pending transfer and flip the asset to ``transfer_pending``
        in one transaction. Fails if the asset left a transferable status."""
        with session_scope(self.engine) as session:
            asset = session.get(Asset, transfer.asset_id)
            if asset is None:
                raise NotFoundError("Asset not found", code="asset_not_found")
            if asset.status not in TRANSFERABLE_STATUSES:
                raise StateConflictError(
                    f"Asset cannot be transferred. Current status: {asset.status.value}"
                )
            self._apply_status(session, asset, AssetStatus.TRANSFER_PENDING, f"transfer {transfer.id}", {})
            session.add(transfer)
            session.flush()
            session.refresh(asset)
            session.refresh(transfer)
            return asset, transfer

    def complete_transfer(self, transfer_id: str, txid: Optional[str]) -> Tuple[Asset, AssetTransfer]:
        """Mark the transfer confirmed and hand the asset to the recipient."""
        with session_scope(self.engine) as session:
            transfer = self._pending_transfer(session, transfer_id)
            asset = session.get(Asset, transfer.asset_id)
            self._apply_status(
                session,
                asset,
                AssetStatus.CONFIRMED,
                f"transfer {transfer.id} to {transfer.to_user_id}",
                {"user_id": transfer.to_user_id},
            )
            transfer.nexus_txid = txid
            transfer.status = TransferStatus.CONFIRMED
            transfer.updated_at = utcnow()
            session.add(transfer)
            session.flush()
            session.refresh(asset)
            session.refresh(transfer)
            return asset, transfer

    def fail_transfer(self, transfer_id: str, error: str) -> Tuple[Asset, AssetTransfer]:
        """Roll the asset back to ``confirmed`` under its original owner."""
        with session_scope(self.engine) as session:
            transfer = self._pending_transfer(session, transfer_id)
            asset = session.get(Asset, transfer.asset_id)
            self._apply_status(session, asset, AssetStatus.CONFIRMED, f"transfer {transfer.id} rolled back", {})
            transfer.status = TransferStatus.FAILED
            transfer.error = error[:1024]
            transfer.updated_at = utcnow()
            session.add(transfer)
            session.flush()
            session.refresh(asset)
            session.refresh(transfer)
            return asset, transfer

    def _pending_transfer(self, session: Session, transfer_id: str) -> AssetTransfer:
        transfer = session.get(AssetTransfer, transfer_id)
        if transfer is None:
            raise NotFoundError("Transfer not found", code="transfer_not_found")
        if transfer.status != TransferStatus.PENDING:
            raise StateConflictError(f"Transfer is already {transfer.status.value}")
        return transfer

    def get_transfer(self, transfer_id: str) -> Optional[AssetTransfer]:
        with session_scope(self.engine) as session:
            return session.get(AssetTransfer, transfer_id)

    def find_transfer_by_txid(self, txid: str) -> Optional[AssetTransfer]:
        with session_scope(self.engine) as session:
            return session.exec(select(AssetTransfer).where(AssetTransfer.nexus_txid == txid)).first()

    def list_transfers(
        self,
        asset_id: Optional[str] = None,
        status: Optional[TransferStatus] = None,
        unconfirmed_only: bool = False,
    ) -> List[AssetTransfer]:
        query = select(AssetTransfer)
        if asset_id:
            query = query.where(AssetTransfer.asset_id == asset_id)
        if status:
            query = query.where(AssetTransfer.status == status)
        if unconfirmed_only:
            query = query.where(AssetTransfer.confirmed_at.is_(None))
        query = query.order_by(AssetTransfer.created_at.desc())
        with session_scope(self.engine) as session:
            return list(session.exec(query).all())

    def update_transfer(self, transfer_id: str, **fields: Any) -> AssetTransfer:
        with session_scope(self.engine) as session:
            transfer = session.get(AssetTransfer, transfer_id)
            if transfer is None:
                raise NotFoundError("Transfer not found", code="transfer_not_found")
            for key, value in fields.items():
                setattr(transfer, key, value)
            transfer.updated_at = utcnow()
            session.add(transfer)
            session.flush()
            session.refresh(transfer)
            return transfer

    # ------------------------------------------------------------------
    # Sponsored fees
    # ------------------------------------------------------------------

    def append_sponsored_fee(self, record: SponsoredFee) -> SponsoredFee:
        with session_scope(self.engine) as session:
            session.add(record)
            session.flush()
            session.refresh(record)
            return record

    def fee_totals_for_date(self, fee_date: str) -> Tuple[Decimal, int]:
        """Return (sum of fee_amount, record count) for a UTC date."""
        with session_scope(self.engine) as session:
            stmt = select(func.sum(SponsoredFee.fee_amount), func.count(SponsoredFee.id)).where(
                SponsoredFee.fee_date == fee_date
            )
            total, count = session.exec(stmt).one()
            return Decimal(str(total or 0)), int(count or 0)

    def list_sponsored_fees(self, fee_date: Optional[str] = None) -> List[SponsoredFee]:
        query = select(SponsoredFee)
        if fee_date:
            query = query.where(SponsoredFee.fee_date == fee_date)
        query = query.order_by(SponsoredFee.id.asc())
        with session_scope(self.engine) as session:
            return list(session.exec(query).all())
