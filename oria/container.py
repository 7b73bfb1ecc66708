"""Wiring: one coordinator per process, passed by reference to every engine."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel

from oria.assets.lifecycle import AssetLifecycleEngine
from oria.config import ServiceConfig
from oria.config import config as default_config
from oria.db.connection import get_engine
from oria.db.models import *  # noqa: F401,F403
from oria.db.store import MarketplaceStore
from oria.ledger import LedgerGateway, NexusLedgerGateway
from oria.sponsorship import FeeSponsorshipCoordinator
from oria.transactions import TransactionService
from oria.transfers.engine import TransferEngine
from oria.user_service import UserService

log = logging.getLogger(__name__)


@dataclass
class Marketplace:
    settings: ServiceConfig
    gateway: LedgerGateway
    store: MarketplaceStore
    sponsor: FeeSponsorshipCoordinator
    users: UserService
    assets: AssetLifecycleEngine
    transfers: TransferEngine
    transactions: TransactionService

    async def close(self):
        await self.gateway.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def build_marketplace(
    settings: Optional[ServiceConfig] = None,
    gateway: Optional[LedgerGateway] = None,
    engine: Optional[Engine] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Marketplace:
    """Assemble the services. ``gateway`` defaults to the HTTP Nexus client;
    tests inject ``InMemoryLedgerGateway``."""
    settings = settings or default_config
    if engine is None:
        engine = get_engine(settings.DB_PATH)
    SQLModel.metadata.create_all(engine)

    if gateway is None:
        gateway = NexusLedgerGateway(settings)

    store = MarketplaceStore(engine)
    sponsor = FeeSponsorshipCoordinator(settings, gateway, store)
    users = UserService(store, gateway)
    log.info(f"Marketplace wired: ledger={type(gateway).__name__}, db={engine.url}")
    return Marketplace(
        settings=settings,
        gateway=gateway,
        store=store,
        sponsor=sponsor,
        users=users,
        assets=AssetLifecycleEngine(settings, gateway, store, sponsor, sleep=sleep),
        transfers=TransferEngine(settings, gateway, store, sponsor, users),
        transactions=TransactionService(store, gateway),
    )
