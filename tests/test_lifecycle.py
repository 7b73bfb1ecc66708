"""资产生命周期测试: mint, propagation retries, manual retry, confirmation."""

import asyncio
from decimal import Decimal

import pytest

from oria.db.models import AssetStatus, can_transition
from oria.errors import (
    OwnershipError,
    RemoteRejectedError,
    RemoteTransientError,
    StateConflictError,
    ValidationError,
)
from oria.ledger import LedgerEndpoint, LedgerErrorKind


def _mint(market, data):
    return asyncio.run(market.assets.mint_asset(data))


def _only_asset(market, account):
    assets = market.assets.get_user_assets(account.user_id)
    assert len(assets) == 1
    return assets[0]


def test_mint_registers_and_awaits_confirmation(market, ledger, alice, mint_request, sleep):
    result = _mint(market, mint_request(alice))

    asset = result.asset
    assert asset.status == AssetStatus.CONFIRMING
    assert asset.nexus_address == result.nexus.address
    assert asset.nexus_txid == result.nexus.txid
    assert asset.nexus_address in ledger.assets
    assert asset.nexus_name.startswith("oria_night_drive_")
    assert result.sponsored is True
    assert sleep.delays == []


def test_blank_description_reaches_ledger_as_placeholder(market, ledger, alice, mint_request):
    result = _mint(market, mint_request(alice, description="", genre=None))

    payload = ledger.calls_to(LedgerEndpoint.CREATE_ASSET)[0]
    fields = {f["name"]: f["value"] for f in payload["json"]}
    assert fields["description"] == "-"
    assert fields["genre"] == "-"
    assert payload["format"] == "JSON"
    assert ledger.assets[result.asset.nexus_address]["data"]["description"] == "-"
    # the local record keeps the caller's value
    assert result.asset.description == ""


def test_propagation_race_is_retried_with_fixed_delay(market, ledger, alice, mint_request, sleep):
    ledger.fail_next(
        LedgerEndpoint.CREATE_ASSET,
        LedgerErrorKind.REMOTE_REJECTED,
        "duplicate genesis-id",
        times=2,
    )

    result = _mint(market, mint_request(alice))

    assert sleep.delays == [5.0, 5.0]
    assert len(ledger.calls_to(LedgerEndpoint.CREATE_ASSET)) == 3
    assert result.asset.status == AssetStatus.CONFIRMING
    assert result.asset.nexus_address in ledger.assets
    assert result.asset.retry_count == 0


def test_failed_to_accept_is_transient(market, ledger, alice, mint_request, sleep):
    ledger.fail_next(LedgerEndpoint.CREATE_ASSET, LedgerErrorKind.REMOTE_REJECTED, "Failed to accept")

    result = _mint(market, mint_request(alice))

    assert sleep.delays == [5.0]
    assert result.asset.status == AssetStatus.CONFIRMING


def test_network_errors_exhaust_retries(market, ledger, alice, mint_request, sleep):
    ledger.fail_next(
        LedgerEndpoint.CREATE_ASSET,
        LedgerErrorKind.NETWORK_UNREACHABLE,
        "connection refused",
        times=3,
    )

    with pytest.raises(RemoteTransientError):
        _mint(market, mint_request(alice))

    asset = _only_asset(market, alice)
    assert asset.status == AssetStatus.FAILED
    assert asset.retry_count == 1
    assert "connection refused" in asset.last_error
    assert sleep.delays == [5.0, 5.0]
    assert len(ledger.calls_to(LedgerEndpoint.CREATE_ASSET)) == 3


def test_non_transient_error_aborts_immediately(market, ledger, alice, mint_request, sleep):
    ledger.fail_next(LedgerEndpoint.CREATE_ASSET, LedgerErrorKind.REMOTE_REJECTED, "insufficient balance")

    with pytest.raises(RemoteRejectedError):
        _mint(market, mint_request(alice))

    asset = _only_asset(market, alice)
    assert asset.status == AssetStatus.FAILED
    assert asset.retry_count == 1
    assert "insufficient balance" in asset.last_error
    assert asset.nexus_address is None
    assert sleep.delays == []
    assert len(ledger.calls_to(LedgerEndpoint.CREATE_ASSET)) == 1


def test_invalid_response_is_not_retried(market, ledger, alice, mint_request, sleep):
    ledger.fail_next(LedgerEndpoint.CREATE_ASSET, LedgerErrorKind.INVALID_RESPONSE, "garbage")

    with pytest.raises(RemoteRejectedError):
        _mint(market, mint_request(alice))
    assert sleep.delays == []


def test_failed_registration_consumes_no_budget(market, ledger, alice, mint_request):
    ledger.fail_next(LedgerEndpoint.CREATE_ASSET, LedgerErrorKind.REMOTE_REJECTED, "insufficient balance")

    with pytest.raises(RemoteRejectedError):
        _mint(market, mint_request(alice))

    stats = asyncio.run(market.sponsor.daily_stats())
    assert stats.total_spent == Decimal("0")
    assert stats.reserved == Decimal("0")
    assert stats.transaction_count == 0
    assert market.store.list_sponsored_fees() == []


def test_mint_validation(market, alice, mint_request):
    with pytest.raises(ValidationError):
        _mint(market, mint_request(alice, price=Decimal("-1")))
    with pytest.raises(ValidationError):
        _mint(market, mint_request(alice, is_limited=True, limited_supply=0))
    assert market.assets.get_user_assets(alice.user_id) == []


def test_limited_supply_ignored_when_unlimited(market, alice, mint_request):
    result = _mint(market, mint_request(alice, is_limited=False, limited_supply=10))
    assert result.asset.limited_supply is None


def test_manual_retry_reuses_metadata(market, ledger, alice, mint_request):
    ledger.fail_next(LedgerEndpoint.CREATE_ASSET, LedgerErrorKind.REMOTE_REJECTED, "insufficient balance")
    with pytest.raises(RemoteRejectedError):
        _mint(market, mint_request(alice))
    failed = _only_asset(market, alice)

    result = asyncio.run(
        market.assets.retry_asset_registration(failed.id, alice.session, alice.pin, user_id=alice.user_id)
    )

    assert result.asset.status == AssetStatus.CONFIRMING
    assert result.asset.nexus_name == failed.nexus_name
    assert result.asset.last_error is None
    assert result.asset.retry_count == 1
    calls = ledger.calls_to(LedgerEndpoint.CREATE_ASSET)
    assert len(calls) == 2
    assert calls[0]["json"] == calls[1]["json"]


def test_manual_retry_requires_failed_status(market, alice, mint_request):
    result = _mint(market, mint_request(alice))
    with pytest.raises(StateConflictError):
        asyncio.run(market.assets.retry_asset_registration(result.asset.id, alice.session))


def test_manual_retry_checks_owner(market, ledger, alice, bob, mint_request):
    ledger.fail_next(LedgerEndpoint.CREATE_ASSET, LedgerErrorKind.REMOTE_REJECTED, "insufficient balance")
    with pytest.raises(RemoteRejectedError):
        _mint(market, mint_request(alice))
    failed = _only_asset(market, alice)

    with pytest.raises(OwnershipError):
        asyncio.run(market.assets.retry_asset_registration(failed.id, bob.session, user_id=bob.user_id))


def test_manual_retry_ceiling(market, ledger, alice, mint_request):
    ledger.fail_next(
        LedgerEndpoint.CREATE_ASSET,
        LedgerErrorKind.REMOTE_REJECTED,
        "insufficient balance",
        times=5,
    )
    with pytest.raises(RemoteRejectedError):
        _mint(market, mint_request(alice))
    asset_id = _only_asset(market, alice).id

    for _ in range(4):
        with pytest.raises(RemoteRejectedError):
            asyncio.run(market.assets.retry_asset_registration(asset_id, alice.session))

    asset = market.store.get_asset(asset_id)
    assert asset.retry_count == 5
    assert asset.status == AssetStatus.FAILED

    with pytest.raises(StateConflictError) as exc:
        asyncio.run(market.assets.retry_asset_registration(asset_id, alice.session))
    assert exc.value.code == "retry_limit"
    assert len(ledger.calls_to(LedgerEndpoint.CREATE_ASSET)) == 5


def test_confirmation_polls_until_visible(market, ledger, alice, mint_request):
    result = _mint(market, mint_request(alice))
    address = result.asset.nexus_address
    ledger.hide_asset(address)

    pending = asyncio.run(market.assets.confirm_asset_registration(result.asset.id))
    assert pending.confirmed is False
    assert pending.asset.status == AssetStatus.CONFIRMING
    assert market.store.get_asset(result.asset.id).status == AssetStatus.CONFIRMING

    ledger.reveal_asset(address)
    confirmed = asyncio.run(market.assets.confirm_asset_registration(result.asset.id))
    assert confirmed.confirmed is True
    assert confirmed.asset.status == AssetStatus.CONFIRMED
    assert confirmed.asset.owner_genesis == alice.user.nexus_genesis
    assert confirmed.asset.confirmed_at is not None
    assert confirmed.ledger_asset.address == address


def test_confirmation_is_repeatable(market, alice, mint_request):
    result = _mint(market, mint_request(alice))
    first = asyncio.run(market.assets.confirm_asset_registration(result.asset.id))
    history_len = len(market.store.status_history(result.asset.id))

    second = asyncio.run(market.assets.confirm_asset_registration(result.asset.id))

    assert second.confirmed is True
    assert second.asset.status == AssetStatus.CONFIRMED
    assert second.asset.confirmed_at == first.asset.confirmed_at
    assert len(market.store.status_history(result.asset.id)) == history_len


def test_confirmation_of_failed_asset(market, ledger, alice, mint_request):
    ledger.fail_next(LedgerEndpoint.CREATE_ASSET, LedgerErrorKind.REMOTE_REJECTED, "insufficient balance")
    with pytest.raises(RemoteRejectedError):
        _mint(market, mint_request(alice))

    result = asyncio.run(market.assets.confirm_asset_registration(_only_asset(market, alice).id))
    assert result.confirmed is False
    assert result.asset.status == AssetStatus.FAILED


def test_status_history_follows_transition_table(market, ledger, alice, mint_request):
    ledger.fail_next(LedgerEndpoint.CREATE_ASSET, LedgerErrorKind.REMOTE_REJECTED, "insufficient balance")
    with pytest.raises(RemoteRejectedError):
        _mint(market, mint_request(alice))
    asset_id = _only_asset(market, alice).id
    asyncio.run(market.assets.retry_asset_registration(asset_id, alice.session))
    asyncio.run(market.assets.confirm_asset_registration(asset_id))

    history = market.store.status_history(asset_id)
    assert [h.to_status for h in history] == [
        AssetStatus.REGISTERING,
        AssetStatus.FAILED,
        AssetStatus.REGISTERING,
        AssetStatus.CONFIRMING,
        AssetStatus.CONFIRMED,
    ]
    assert history[0].from_status is None
    for entry in history[1:]:
        assert can_transition(entry.from_status, entry.to_status)


def test_verify_asset_by_name_and_address(market, alice, mint_request):
    result = _mint(market, mint_request(alice))

    by_address = asyncio.run(market.assets.verify_asset(result.asset.nexus_address))
    by_name = asyncio.run(market.assets.verify_asset(result.asset.nexus_name))
    missing = asyncio.run(market.assets.verify_asset("oria_missing_1"))

    assert by_address.verified and by_name.verified
    assert by_name.asset.address == result.asset.nexus_address
    assert by_address.owner == alice.user.nexus_genesis
    assert missing.verified is False
    assert missing.error


def test_get_asset_with_verification(market, alice, mint_request):
    result = _mint(market, mint_request(alice))
    detail = asyncio.run(market.assets.get_asset_with_verification(result.asset.id))
    assert detail.asset.id == result.asset.id
    assert detail.blockchain.verified is True


def test_confirm_pending_sweep(market, ledger, alice, mint_request):
    first = _mint(market, mint_request(alice, title="First"))
    second = _mint(market, mint_request(alice, title="Second"))
    ledger.hide_asset(second.asset.nexus_address)

    results = asyncio.run(market.assets.confirm_pending())

    by_id = {r.asset.id: r.confirmed for r in results}
    assert by_id == {first.asset.id: True, second.asset.id: False}
    statuses = {a.id: a.status for a in market.assets.get_user_assets(alice.user_id)}
    assert statuses[first.asset.id] == AssetStatus.CONFIRMED
    assert statuses[second.asset.id] == AssetStatus.CONFIRMING


def test_get_user_assets_filters_by_owner_and_status(market, alice, bob, mint_request):
    a = _mint(market, mint_request(alice, title="Alpha"))
    _mint(market, mint_request(bob, title="Beta"))

    assert [x.id for x in market.assets.get_user_assets(alice.user_id)] == [a.asset.id]
    assert market.assets.get_user_assets(alice.user_id, statuses=[AssetStatus.CONFIRMED]) == []


def test_unexpected_gateway_error_leaves_asset_retryable(market, ledger, alice, mint_request, monkeypatch):
    def broken(payload):
        raise UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")

    monkeypatch.setattr(ledger, "_handle_create_asset", broken)
    with pytest.raises(UnicodeDecodeError):
        _mint(market, mint_request(alice))

    asset = _only_asset(market, alice)
    assert asset.status == AssetStatus.FAILED
    assert asset.retry_count == 1
    assert "UnicodeDecodeError" in asset.last_error
    assert asyncio.run(market.sponsor.daily_stats()).reserved == Decimal("0")

    monkeypatch.undo()
    result = asyncio.run(market.assets.retry_asset_registration(asset.id, alice.session, alice.pin))
    assert result.asset.status == AssetStatus.CONFIRMING
