"""
Maintenance commands.

    oria init-db
    oria confirm-pending [--limit N]
    oria confirm-transfers
    oria fee-stats
    oria platform-balance
    oria tx-status <txid>
"""
import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from oria.config import config
from oria.container import build_marketplace
from oria.db.init import init_db
from oria.errors import OriaError
from oria.logging_config import setup_logging

log = logging.getLogger(__name__)


def _print(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


async def _confirm_pending(limit: Optional[int]) -> int:
    async with build_marketplace(config) as market:
        results = await market.assets.confirm_pending(limit=limit)
    confirmed = sum(1 for r in results if r.confirmed)
    log.info(f"Confirmation sweep: {confirmed}/{len(results)} assets confirmed")
    _print([{"asset_id": r.asset.id, "confirmed": r.confirmed, "error": r.error} for r in results])
    return 0


async def _confirm_transfers() -> int:
    async with build_marketplace(config) as market:
        results = await market.transfers.confirm_outstanding()
    _print([
        {"transfer_id": r.transfer.id if r.transfer else None, "confirmed": r.confirmed, "new_owner": r.new_owner}
        for r in results
    ])
    return 0


async def _fee_stats() -> int:
    async with build_marketplace(config) as market:
        stats = await market.sponsor.daily_stats()
    _print(stats.model_dump())
    return 0


async def _platform_balance() -> int:
    async with build_marketplace(config) as market:
        if not await market.sponsor.initialize():
            print("Platform wallet unavailable", file=sys.stderr)
            return 1
        balance = await market.sponsor.get_platform_balance()
    _print(balance.model_dump() if balance else None)
    return 0 if balance else 1


async def _tx_status(txid: str) -> int:
    async with build_marketplace(config) as market:
        info = await market.transactions.get_transaction(txid)
    _print(info.model_dump())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="oria", description="Oria marketplace maintenance")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="create database tables")
    pending = sub.add_parser("confirm-pending", help="poll the ledger for every confirming asset")
    pending.add_argument("--limit", type=int, default=None)
    sub.add_parser("confirm-transfers", help="re-verify completed transfers on the ledger")
    sub.add_parser("fee-stats", help="today's sponsored fee totals")
    sub.add_parser("platform-balance", help="platform wallet balance")
    tx = sub.add_parser("tx-status", help="look up a transaction")
    tx.add_argument("txid")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(config.LOG_LEVEL, config.LOG_DIR)

    if args.command == "init-db":
        engine = init_db(config.DB_PATH)
        log.info(f"✓ Database initialized: {engine.url}")
        return 0

    commands = {
        "confirm-pending": lambda: _confirm_pending(args.limit),
        "confirm-transfers": _confirm_transfers,
        "fee-stats": _fee_stats,
        "platform-balance": _platform_balance,
        "tx-status": lambda: _tx_status(args.txid),
    }
    try:
        return asyncio.run(commands[args.command]())
    except OriaError as e:
        log.error(f"{e.code}: {e.message}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
