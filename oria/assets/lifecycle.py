"""
Asset lifecycle: mint, registration on the ledger, confirmation polling and
manual retry.

    registering --ledger ok--> confirming --verified--> confirmed
         |                          |
         +--retries exhausted--> failed --manual retry--> registering

Registration retries only the ledger's identity-propagation race (a freshly
created sigchain is not yet visible to the node accepting the asset) and
network failures, with a fixed delay: the cause is a fixed propagation
window, not contention.
"""

import asyncio
import logging
import re
from decimal import Decimal
from typing import Awaitable, Callable, Iterable, List, Optional

from oria.config import ServiceConfig
from oria.db.models import Asset, AssetStatus, SponsoredAction
from oria.db.store import MarketplaceStore
from oria.errors import (
    OriaError,
    OwnershipError,
    RemoteRejectedError,
    RemoteTransientError,
    StateConflictError,
    ValidationError,
)
from oria.ledger import AssetReceipt, LedgerErrorKind, LedgerField, LedgerGateway, LedgerResult, is_ledger_address
from oria.schemas import AssetDetail, AssetResult, ConfirmationResult, MintInput, VerificationResult
from oria.sponsorship import FeeSponsorshipCoordinator
from oria.utils.timezone import utcnow

from .metadata import build_asset_fields, ledger_asset_name

log = logging.getLogger(__name__)

# Node errors raised while the caller's sigchain is still propagating
PROPAGATION_RACE_RE = re.compile(r"duplicate genesis|genesis-id|failed to accept", re.IGNORECASE)

CONFIRMABLE_STATUSES = (AssetStatus.CONFIRMING, AssetStatus.CONFIRMED, AssetStatus.TRANSFERRED)


def is_transient_failure(result: LedgerResult) -> bool:
    if result.ok:
        return False
    if result.kind == LedgerErrorKind.NETWORK_UNREACHABLE:
        return True
    return bool(PROPAGATION_RACE_RE.search(result.message or ""))


class AssetLifecycleEngine:
    """Drives a single asset from mint request to confirmed ledger record."""

    def __init__(
        self,
        settings: ServiceConfig,
        gateway: LedgerGateway,
        store: MarketplaceStore,
        sponsor: FeeSponsorshipCoordinator,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if not settings.BLANK_PLACEHOLDER.strip():
            raise ValueError("BLANK_PLACEHOLDER must be a non-blank string")
        self.settings = settings
        self.gateway = gateway
        self.store = store
        self.sponsor = sponsor
        self._sleep = sleep

        self.max_attempts = max(1, settings.REGISTRATION_MAX_ATTEMPTS)
        self.retry_delay = settings.REGISTRATION_RETRY_DELAY_SECONDS
        self.max_manual_retries = settings.MAX_MANUAL_RETRIES

    # ------------------------------------------------------------------
    # Mint
    # ------------------------------------------------------------------

    async def mint_asset(self, data: MintInput) -> AssetResult:
        """Persist a new asset and register it on the ledger.

        Raises:
            ValidationError: price or supply out of range
            RemoteTransientError: retries exhausted (asset left ``failed``)
            RemoteRejectedError: the node refused the asset (asset left ``failed``)
        """
        if data.price < 0:
            raise ValidationError("Price must be non-negative", code="invalid_price")
        if data.is_limited and data.limited_supply is not None and data.limited_supply <= 0:
            raise ValidationError("Limited supply must be positive", code="invalid_supply")

        asset = Asset(
            nexus_name=ledger_asset_name(data.title, self.settings.ASSET_NAME_PREFIX),
            user_id=data.user_id,
            title=data.title,
            artist=data.artist,
            description=data.description or "",
            genre=data.genre or "",
            price=Decimal(str(data.price)),
            is_limited=data.is_limited,
            limited_supply=data.limited_supply if data.is_limited else None,
            audio_url=data.audio_url,
            audio_path=data.audio_path,
            cover_url=data.cover_url,
            cover_path=data.cover_path,
            status=AssetStatus.REGISTERING,
        )
        asset = self.store.create_asset(asset, note="mint requested")
        log.info(f"🎵 Minting asset {asset.id} ({asset.nexus_name}) for user {data.user_id}")
        return await self._register(asset, data.nexus_session, data.nexus_pin, data.estimated_fee)

    async def _register(
        self,
        asset: Asset,
        nexus_session: str,
        nexus_pin: Optional[str],
        estimated_fee: Optional[Decimal],
    ) -> AssetResult:
        fields = build_asset_fields(asset, self.settings.APP_TAG, self.settings.BLANK_PLACEHOLDER)

        decision = await self.sponsor.reserve(estimated_fee)
        if not decision.allowed:
            log.info(f"Asset {asset.id}: fee not sponsored ({decision.reason}), user pays own fee")

        settled = False
        try:
            try:
                receipt = await self._submit_with_retry(asset, nexus_session, nexus_pin, fields)
            except Exception as e:
                # any failure leaves the asset retryable
                if isinstance(e, OriaError):
                    code, message = e.code, e.message
                else:
                    code, message = "unexpected_error", f"{type(e).__name__}: {e}"
                self.store.update_asset(
                    asset.id,
                    status=AssetStatus.FAILED,
                    note=code,
                    last_error=message[:1024],
                    retry_count=asset.retry_count + 1,
                )
                log.error(f"❌ Asset {asset.id} registration failed: {message}")
                raise

            await self.sponsor.commit(decision, asset.user_id, SponsoredAction.MINT, receipt.txid, asset.id)
            settled = True

            asset = self.store.update_asset(
                asset.id,
                status=AssetStatus.CONFIRMING,
                note=f"tx {receipt.txid}",
                nexus_address=receipt.address,
                nexus_txid=receipt.txid,
                last_error=None,
            )
        finally:
            if not settled:
                await self.sponsor.release(decision)

        log.info(f"✅ Asset {asset.id} registered at {receipt.address} (tx {receipt.txid})")
        return AssetResult(
            asset=asset,
            nexus=receipt,
            sponsored=decision.allowed,
            sponsorship_reason=decision.reason,
        )

    async def _submit_with_retry(
        self,
        asset: Asset,
        nexus_session: str,
        nexus_pin: Optional[str],
        fields: List[LedgerField],
    ) -> AssetReceipt:
        last: Optional[LedgerResult] = None
        for attempt in range(1, self.max_attempts + 1):
            result = await self.gateway.create_asset(nexus_session, nexus_pin, asset.nexus_name, fields)
            if result.ok:
                return result.value

            last = result
            if not is_transient_failure(result):
                raise RemoteRejectedError(f"Nexus registration failed: {result.message}")

            if attempt < self.max_attempts:
                log.warning(
                    f"Asset {asset.id}: attempt {attempt}/{self.max_attempts} failed "
                    f"({result.message}), retrying in {self.retry_delay}s"
                )
                await self._sleep(self.retry_delay)

        raise RemoteTransientError(
            f"Nexus registration failed after {self.max_attempts} attempts: {last.message}"
        )

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def verify_asset(self, address_or_name: str) -> VerificationResult:
        """Look an asset up on the ledger by address (64 hex chars) or name."""
        if is_ledger_address(address_or_name):
            result = await self.gateway.get_asset(address=address_or_name)
        else:
            result = await self.gateway.get_asset(name=address_or_name)

        if not result.ok:
            return VerificationResult(verified=False, error=result.message or "Asset not found on blockchain")
        return VerificationResult(verified=True, asset=result.value, owner=result.value.owner)

    async def confirm_asset_registration(self, asset_id: str) -> ConfirmationResult:
        """Re-query the ledger for a registered asset.

        Absence is reported as ``confirmed=False``; the caller decides
        whether to poll again.
        """
        asset = self.store.require_asset(asset_id)
        if not asset.nexus_address:
            return ConfirmationResult(confirmed=False, asset=asset, error="Asset has no blockchain address")
        if asset.status not in CONFIRMABLE_STATUSES:
            return ConfirmationResult(
                confirmed=False,
                asset=asset,
                error=f"Asset cannot be confirmed in status {asset.status.value}",
            )

        verification = await self.verify_asset(asset.nexus_address)
        if not verification.verified:
            log.info(f"Asset {asset.id} not yet confirmed: {verification.error}")
            return ConfirmationResult(confirmed=False, asset=asset, error=verification.error)

        asset = self.store.update_asset(
            asset.id,
            status=None if asset.status == AssetStatus.CONFIRMED else AssetStatus.CONFIRMED,
            expected=CONFIRMABLE_STATUSES,
            note="ledger verification",
            owner_genesis=verification.owner,
            confirmed_at=asset.confirmed_at or utcnow(),
        )
        return ConfirmationResult(confirmed=True, asset=asset, ledger_asset=verification.asset)

    # ------------------------------------------------------------------
    # Manual retry
    # ------------------------------------------------------------------

    async def retry_asset_registration(
        self,
        asset_id: str,
        nexus_session: str,
        nexus_pin: Optional[str] = None,
        user_id: Optional[str] = None,
        estimated_fee: Optional[Decimal] = None,
    ) -> AssetResult:
        """Re-run registration for a ``failed`` asset with its original metadata."""
        asset = self.store.require_asset(asset_id)
        if user_id is not None and asset.user_id != user_id:
            raise OwnershipError("You do not own this asset")
        if asset.status != AssetStatus.FAILED:
            raise StateConflictError("Asset is not in failed status")
        if asset.retry_count >= self.max_manual_retries:
            raise StateConflictError("Maximum retry attempts reached", code="retry_limit")

        asset = self.store.update_asset(
            asset.id,
            status=AssetStatus.REGISTERING,
            expected=(AssetStatus.FAILED,),
            note=f"manual retry #{asset.retry_count}",
        )
        return await self._register(asset, nexus_session, nexus_pin, estimated_fee)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_user_assets(self, user_id: str, statuses: Optional[Iterable[AssetStatus]] = None) -> List[Asset]:
        """Assets currently owned by ``user_id``, newest first.

        ``transferred`` assets are included: they belong to their new owner.
        """
        return self.store.list_assets(user_id=user_id, statuses=statuses)

    async def get_asset_with_verification(self, asset_id: str) -> AssetDetail:
        asset = self.store.require_asset(asset_id)
        blockchain = None
        if asset.nexus_address:
            blockchain = await self.verify_asset(asset.nexus_address)
        return AssetDetail(asset=asset, blockchain=blockchain)

    async def confirm_pending(self, limit: Optional[int] = None) -> List[ConfirmationResult]:
        """Poll every ``confirming`` asset once."""
        results = []
        for asset in self.store.list_assets(statuses=[AssetStatus.CONFIRMING], limit=limit):
            results.append(await self.confirm_asset_registration(asset.id))
        return results
