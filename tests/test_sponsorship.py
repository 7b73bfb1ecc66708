"""平台代付测试: session cache, daily budget, reserve/commit atomicity."""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

from oria.db.models import SponsoredAction, SponsoredFee
from oria.ledger import LedgerEndpoint, LedgerErrorKind
from oria.sponsorship import FeeSponsorshipCoordinator

from .conftest import make_settings


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class Timer:
    def __init__(self):
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


def _coordinator(market, ledger, settings=None, **kwargs):
    return FeeSponsorshipCoordinator(settings or market.settings, ledger, market.store, **kwargs)


def test_not_configured_declines_without_calling_ledger(market, ledger):
    sponsor = _coordinator(market, ledger, make_settings(PLATFORM_USERNAME=None))

    decision = asyncio.run(sponsor.reserve())

    assert decision.allowed is False
    assert decision.reason == "Platform wallet not configured"
    assert ledger.calls == []
    assert asyncio.run(sponsor.initialize()) is False


def test_mint_without_platform_wallet_is_unsponsored(ledger, alice, mint_request, market):
    market.sponsor.settings = make_settings(PLATFORM_USERNAME=None)

    result = asyncio.run(market.assets.mint_asset(mint_request(alice)))

    assert result.sponsored is False
    assert result.sponsorship_reason == "Platform wallet not configured"
    assert market.store.list_sponsored_fees() == []


def test_session_is_cached_then_refreshed(market, ledger):
    timer = Timer()
    sponsor = _coordinator(market, ledger, timer=timer)

    first = asyncio.run(sponsor.get_platform_session())
    timer.value += 60
    second = asyncio.run(sponsor.get_platform_session())
    assert first == second
    assert len(ledger.calls_to(LedgerEndpoint.CREATE_SESSION)) == 1
    assert len(ledger.calls_to(LedgerEndpoint.UNLOCK_SESSION)) == 1

    timer.value += 30 * 60
    third = asyncio.run(sponsor.get_platform_session())
    assert third != first
    assert len(ledger.calls_to(LedgerEndpoint.CREATE_SESSION)) == 2


def test_concurrent_session_requests_log_in_once(market, ledger):
    sponsor = _coordinator(market, ledger)

    async def run():
        return await asyncio.gather(*(sponsor.get_platform_session() for _ in range(5)))

    sessions = asyncio.run(run())
    assert len(set(sessions)) == 1
    assert len(ledger.calls_to(LedgerEndpoint.CREATE_SESSION)) == 1


def test_failed_login_declines_sponsorship(market, ledger):
    sponsor = _coordinator(market, ledger, make_settings(PLATFORM_PASSWORD="wrong"))

    decision = asyncio.run(sponsor.reserve())

    assert decision.allowed is False
    assert decision.reason == "Platform wallet session unavailable"
    assert asyncio.run(sponsor.initialize()) is False


def test_forced_refresh_failure_keeps_fresh_session(market, ledger):
    sponsor = _coordinator(market, ledger)
    session = asyncio.run(sponsor.get_platform_session())

    ledger.fail_next(LedgerEndpoint.CREATE_SESSION, LedgerErrorKind.NETWORK_UNREACHABLE, "timeout")
    assert asyncio.run(sponsor.get_platform_session(force=True)) == session


def test_per_transaction_ceiling(market, ledger):
    sponsor = _coordinator(market, ledger)

    decision = asyncio.run(sponsor.reserve(Decimal("0.02")))

    assert decision.allowed is False
    assert "per-transaction" in decision.reason


def test_concurrent_reservations_respect_daily_limit(market, ledger):
    sponsor = _coordinator(market, ledger, make_settings(FEE_DAILY_LIMIT=Decimal("0.01")))

    async def run():
        return await asyncio.gather(sponsor.reserve(Decimal("0.006")), sponsor.reserve(Decimal("0.006")))

    decisions = asyncio.run(run())
    assert sorted(d.allowed for d in decisions) == [False, True]
    denied = next(d for d in decisions if not d.allowed)
    assert "Daily fee limit" in denied.reason


def test_concurrent_mints_sponsor_exactly_one(ledger, sleep, alice, mint_request, market):
    market.sponsor.daily_limit = Decimal("0.01")

    async def run():
        return await asyncio.gather(
            market.assets.mint_asset(mint_request(alice, title="One", estimated_fee=Decimal("0.006"))),
            market.assets.mint_asset(mint_request(alice, title="Two", estimated_fee=Decimal("0.006"))),
        )

    results = asyncio.run(run())

    assert sorted(r.sponsored for r in results) == [False, True]
    assert all(r.asset.nexus_address for r in results)
    fees = market.store.list_sponsored_fees()
    assert len(fees) == 1
    assert fees[0].fee_amount == Decimal("0.006")
    stats = asyncio.run(market.sponsor.daily_stats())
    assert stats.total_spent == Decimal("0.006")
    assert stats.reserved == Decimal("0")


def test_commit_records_fee_and_release_frees_hold(market, ledger):
    clock = Clock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))
    sponsor = _coordinator(market, ledger, clock=clock)

    async def run():
        kept = await sponsor.reserve(Decimal("0.01"))
        dropped = await sponsor.reserve(Decimal("0.01"))
        held = await sponsor.daily_stats()
        await sponsor.commit(kept, "u1", SponsoredAction.MINT, "tx-1", asset_id="a1")
        await sponsor.release(dropped)
        # a second commit of the same reservation is a no-op
        await sponsor.commit(kept, "u1", SponsoredAction.MINT, "tx-1", asset_id="a1")
        return held, await sponsor.daily_stats()

    held, stats = asyncio.run(run())

    assert held.reserved == Decimal("0.02")
    assert stats.reserved == Decimal("0")
    assert stats.total_spent == Decimal("0.01")
    assert stats.transaction_count == 1
    assert stats.remaining == Decimal("0.99")
    assert stats.date == "2026-03-01"

    fees = market.store.list_sponsored_fees("2026-03-01")
    assert len(fees) == 1
    assert fees[0].txid == "tx-1"
    assert fees[0].action == SponsoredAction.MINT
    assert fees[0].platform_genesis == sponsor.platform_genesis


def test_unsponsored_decision_commits_nothing(market, ledger):
    sponsor = _coordinator(market, ledger)

    async def run():
        decision = await sponsor.reserve(Decimal("5"))
        return await sponsor.commit(decision, "u1", SponsoredAction.TRANSFER, "tx-1")

    assert asyncio.run(run()) is None
    assert market.store.list_sponsored_fees() == []


def test_budget_resets_on_new_utc_date(market, ledger):
    clock = Clock(datetime(2026, 3, 1, 23, 59, tzinfo=timezone.utc))
    sponsor = _coordinator(market, ledger, make_settings(FEE_DAILY_LIMIT=Decimal("0.01")), clock=clock)

    async def spend():
        decision = await sponsor.reserve(Decimal("0.01"))
        if decision.allowed:
            await sponsor.commit(decision, "u1", SponsoredAction.MINT, f"tx-{clock.now.day}")
        return decision.allowed

    assert asyncio.run(spend()) is True
    assert asyncio.run(spend()) is False

    clock.now = datetime(2026, 3, 2, 0, 1, tzinfo=timezone.utc)
    stats = asyncio.run(sponsor.daily_stats())
    assert stats.date == "2026-03-02"
    assert stats.total_spent == Decimal("0")
    assert asyncio.run(spend()) is True


def test_budget_recovered_from_audit_rows(market, ledger):
    for i in range(3):
        market.store.append_sponsored_fee(
            SponsoredFee(
                user_id="u1",
                action=SponsoredAction.MINT,
                txid=f"tx-{i}",
                fee_amount=Decimal("0.25"),
                fee_date="2026-03-01",
            )
        )
    clock = Clock(datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc))
    sponsor = _coordinator(market, ledger, clock=clock)

    stats = asyncio.run(sponsor.daily_stats())
    assert stats.total_spent == Decimal("0.75")
    assert stats.transaction_count == 3

    decision = asyncio.run(sponsor.can_sponsor(Decimal("0.01")))
    assert decision.allowed is True


def test_can_sponsor_holds_nothing(market, ledger):
    sponsor = _coordinator(market, ledger)
    assert asyncio.run(sponsor.can_sponsor()).allowed is True
    assert asyncio.run(sponsor.daily_stats()).reserved == Decimal("0")


def test_platform_balance_and_initialize(market, ledger):
    sponsor = _coordinator(market, ledger)

    assert asyncio.run(sponsor.initialize()) is True
    balance = asyncio.run(sponsor.get_platform_balance())
    assert balance.balance == 100.0
    assert sponsor.platform_genesis == ledger.identities["platform"]["genesis"]


def test_hold_across_midnight_books_to_reservation_date(market, ledger):
    clock = Clock(datetime(2026, 3, 1, 23, 59, tzinfo=timezone.utc))
    sponsor = _coordinator(market, ledger, make_settings(FEE_DAILY_LIMIT=Decimal("0.01")), clock=clock)

    async def run():
        late = await sponsor.reserve(Decimal("0.01"))
        clock.now = datetime(2026, 3, 2, 0, 1, tzinfo=timezone.utc)
        # yesterday's hold does not count against today
        early = await sponsor.reserve(Decimal("0.01"))
        await sponsor.commit(late, "u1", SponsoredAction.MINT, "tx-late")
        after_late = await sponsor.daily_stats()
        await sponsor.commit(early, "u1", SponsoredAction.MINT, "tx-early")
        return late, early, after_late, await sponsor.daily_stats()

    late, early, after_late, stats = asyncio.run(run())

    assert late.allowed and early.allowed
    assert after_late.total_spent == Decimal("0")
    assert stats.total_spent == Decimal("0.01")
    assert stats.transaction_count == 1
    assert [f.txid for f in market.store.list_sponsored_fees("2026-03-01")] == ["tx-late"]
    assert [f.txid for f in market.store.list_sponsored_fees("2026-03-02")] == ["tx-early"]
