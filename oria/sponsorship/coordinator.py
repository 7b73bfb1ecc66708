"""
Platform fee sponsorship.

The platform owns a ledger wallet and pays transaction fees for users up to
a per-transaction ceiling and a daily ceiling (UTC date). One coordinator is
built per process and shared by every engine.

Budget use is two-phase:

1. ``reserve`` checks the ceilings and holds the estimated fee, atomically
   with respect to other reservations;
2. after the ledger call, ``commit`` turns the hold into spend and appends
   the audit record, or ``release`` drops it. A failed remote operation
   never consumes budget.
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from oria.config import ServiceConfig
from oria.db.models import SponsoredAction, SponsoredFee
from oria.db.store import MarketplaceStore
from oria.errors import BudgetExceededError
from oria.ledger import AccountBalance, LedgerGateway
from oria.utils.timezone import utc_date_str, utcnow

log = logging.getLogger(__name__)


class SponsorshipDecision(BaseModel):
    allowed: bool
    fee: Decimal = Decimal("0")
    reason: Optional[str] = None
    reservation_id: Optional[str] = None


class DailyFeeStats(BaseModel):
    date: str
    total_spent: Decimal
    limit: Decimal
    remaining: Decimal
    reserved: Decimal
    transaction_count: int


class FeeSponsorshipCoordinator:
    """Shared platform session cache and daily budget."""

    def __init__(
        self,
        settings: ServiceConfig,
        gateway: LedgerGateway,
        store: MarketplaceStore,
        clock: Callable[[], datetime] = utcnow,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.gateway = gateway
        self.store = store
        self._clock = clock
        self._timer = timer

        self.max_per_tx = Decimal(str(settings.FEE_MAX_PER_TX))
        self.daily_limit = Decimal(str(settings.FEE_DAILY_LIMIT))
        self.standard_fee = Decimal(str(settings.FEE_STANDARD_ESTIMATE))
        self.refresh_interval = settings.PLATFORM_SESSION_REFRESH_SECONDS

        # Platform session state
        self._session: Optional[str] = None
        self._genesis: Optional[str] = None
        self._session_refreshed_at: Optional[float] = None
        self._session_lock = asyncio.Lock()

        # Daily budget state
        self._budget_lock = asyncio.Lock()
        self._day: Optional[str] = None
        self._spent = Decimal("0")
        self._count = 0
        # reservation id -> (UTC date it was taken on, fee)
        self._reserved: Dict[str, Tuple[str, Decimal]] = {}

    # ------------------------------------------------------------------
    # Platform session
    # ------------------------------------------------------------------

    def is_configured(self) -> bool:
        return self.settings.platform_wallet_configured

    @property
    def platform_genesis(self) -> Optional[str]:
        return self._genesis

    def _session_fresh(self) -> bool:
        if not self._session or self._session_refreshed_at is None:
            return False
        return (self._timer() - self._session_refreshed_at) < self.refresh_interval

    async def get_platform_session(self, force: bool = False) -> Optional[str]:
        """Return a cached platform session, logging in again once it is older
        than the refresh interval. ``None`` means sponsorship is unavailable."""
        if not self.is_configured():
            return None
        if not force and self._session_fresh():
            return self._session

        async with self._session_lock:
            if not force and self._session_fresh():
                return self._session

            log.info("Creating/refreshing platform wallet session...")
            login = await self.gateway.create_session(
                self.settings.PLATFORM_USERNAME,
                self.settings.PLATFORM_PASSWORD,
                self.settings.PLATFORM_PIN,
            )
            if login.ok:
                unlock = await self.gateway.unlock_session(login.value.session, self.settings.PLATFORM_PIN)
                if unlock.ok:
                    self._session = login.value.session
                    self._genesis = login.value.genesis
                    self._session_refreshed_at = self._timer()
                    log.info(f"Platform wallet session active: {self._session[:12]}...")
                    return self._session
                failure = unlock
            else:
                failure = login

            log.error(f"Platform wallet login failed: {failure.kind.value}: {failure.message}")
            if self._session_fresh():
                # forced refresh failed; the previous session is still inside its window
                return self._session
            self._session = None
            self._session_refreshed_at = None
            return None

    # ------------------------------------------------------------------
    # Budget
    # ------------------------------------------------------------------

    def _roll_date(self) -> None:
        """Reset the accumulator the first time a new UTC date is seen,
        seeding it from that date's audit rows."""
        today = utc_date_str(self._clock())
        if today == self._day:
            return
        try:
            spent, count = self.store.fee_totals_for_date(today)
        except SQLAlchemyError:
            log.exception("Could not recover sponsored fee totals, starting from zero")
            spent, count = Decimal("0"), 0
        if self._day is not None:
            log.info(f"Sponsorship budget rolled over {self._day} -> {today}")
        self._day = today
        self._spent = spent
        self._count = count

    def _reserved_total(self) -> Decimal:
        """Holds taken on the current date; older holds settle against their own date."""
        return sum((fee for day, fee in self._reserved.values() if day == self._day), Decimal("0"))

    def _check_budget(self, fee: Decimal) -> None:
        if fee > self.max_per_tx:
            raise BudgetExceededError(
                f"Fee {fee} exceeds per-transaction limit of {self.max_per_tx} NXS"
            )
        if self._spent + self._reserved_total() + fee > self.daily_limit:
            raise BudgetExceededError(f"Daily fee limit of {self.daily_limit} NXS reached")

    def _normalize_fee(self, estimated_fee) -> Decimal:
        if estimated_fee is None:
            return self.standard_fee
        return Decimal(str(estimated_fee))

    async def can_sponsor(self, estimated_fee=None) -> SponsorshipDecision:
        """Advisory check; holds nothing."""
        fee = self._normalize_fee(estimated_fee)
        if not self.is_configured():
            return SponsorshipDecision(allowed=False, fee=fee, reason="Platform wallet not configured")
        async with self._budget_lock:
            self._roll_date()
            try:
                self._check_budget(fee)
            except BudgetExceededError as e:
                return SponsorshipDecision(allowed=False, fee=fee, reason=e.message)
        return SponsorshipDecision(allowed=True, fee=fee)

    async def reserve(self, estimated_fee=None) -> SponsorshipDecision:
        """Check the ceilings and hold ``estimated_fee`` until commit/release."""
        fee = self._normalize_fee(estimated_fee)
        if not self.is_configured():
            return SponsorshipDecision(allowed=False, fee=fee, reason="Platform wallet not configured")

        session = await self.get_platform_session()
        if session is None:
            return SponsorshipDecision(allowed=False, fee=fee, reason="Platform wallet session unavailable")

        async with self._budget_lock:
            self._roll_date()
            try:
                self._check_budget(fee)
            except BudgetExceededError as e:
                log.info(f"Cannot sponsor fee: {e.message}")
                return SponsorshipDecision(allowed=False, fee=fee, reason=e.message)
            reservation_id = uuid.uuid4().hex
            self._reserved[reservation_id] = (self._day, fee)
        return SponsorshipDecision(allowed=True, fee=fee, reservation_id=reservation_id)

    async def commit(
        self,
        decision: SponsorshipDecision,
        user_id: str,
        action: SponsoredAction,
        txid: str,
        asset_id: Optional[str] = None,
    ) -> Optional[SponsoredFee]:
        """Record the sponsored fee after the ledger call succeeded."""
        if not decision.allowed or decision.reservation_id is None:
            return None

        async with self._budget_lock:
            held = self._reserved.pop(decision.reservation_id, None)
            if held is None:
                log.warning(f"Reservation {decision.reservation_id} already settled")
                return None
            fee_date, fee = held
            self._roll_date()
            if fee_date == self._day:
                self._spent += fee
                self._count += 1
            else:
                log.info(f"Sponsored fee reserved on {fee_date} committed on {self._day}, booked to {fee_date}")
            record = SponsoredFee(
                user_id=user_id,
                action=action,
                asset_id=asset_id,
                txid=txid,
                fee_amount=fee,
                fee_date=fee_date,
                platform_genesis=self._genesis,
            )

        try:
            record = self.store.append_sponsored_fee(record)
        except SQLAlchemyError:
            # spend is already counted in memory; the audit row is best-effort
            log.exception(f"Failed to persist sponsored fee for tx {txid}")

        log.info(f"Sponsored fee: {action.value} for user {user_id[:8]}... - {fee} NXS")
        return record

    async def release(self, decision: SponsorshipDecision) -> None:
        if decision.reservation_id is None:
            return
        async with self._budget_lock:
            self._reserved.pop(decision.reservation_id, None)

    async def daily_stats(self) -> DailyFeeStats:
        async with self._budget_lock:
            self._roll_date()
            return DailyFeeStats(
                date=self._day,
                total_spent=self._spent,
                limit=self.daily_limit,
                remaining=self.daily_limit - self._spent,
                reserved=self._reserved_total(),
                transaction_count=self._count,
            )

    # ------------------------------------------------------------------
    # Wallet
    # ------------------------------------------------------------------

    async def get_platform_balance(self) -> Optional[AccountBalance]:
        session = await self.get_platform_session()
        if session is None:
            return None
        result = await self.gateway.get_account(session, self.settings.PLATFORM_ACCOUNT_NAME)
        if not result.ok:
            log.error(f"Failed to get platform balance: {result.message}")
            return None
        return result.value

    async def initialize(self) -> bool:
        """Open the platform session at startup and report the wallet state."""
        if not self.is_configured():
            log.info("Platform wallet not configured - users pay their own fees")
            return False

        log.info("Initializing platform wallet...")
        if await self.get_platform_session() is None:
            log.warning("Failed to initialize platform wallet - check credentials")
            return False

        balance = await self.get_platform_balance()
        if balance:
            log.info(f"Platform wallet balance: {balance.balance} NXS ({balance.available} available)")
        log.info(f"Daily fee limit: {self.daily_limit} NXS, max fee per tx: {self.max_per_tx} NXS")
        return True
