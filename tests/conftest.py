"""Shared fixtures: in-memory database, in-memory ledger, recorded sleeps."""

import asyncio
from dataclasses import dataclass
from decimal import Decimal

import pytest

from oria.config import ServiceConfig
from oria.container import build_marketplace
from oria.db.connection import get_engine
from oria.db.models import User
from oria.ledger import InMemoryLedgerGateway
from oria.schemas import MintInput, TransferInput

PLATFORM = ("platform", "platform-pass", "9999")


class RecordingSleep:
    """Stands in for ``asyncio.sleep``; remembers the requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float):
        self.delays.append(delay)
        await asyncio.sleep(0)


@dataclass
class Account:
    user: User
    session: str
    pin: str = "1234"

    @property
    def user_id(self) -> str:
        return self.user.user_id


def make_settings(**overrides) -> ServiceConfig:
    values = dict(
        DB_PATH=":memory:",
        PLATFORM_USERNAME=PLATFORM[0],
        PLATFORM_PASSWORD=PLATFORM[1],
        PLATFORM_PIN=PLATFORM[2],
        FEE_MAX_PER_TX=Decimal("0.01"),
        FEE_DAILY_LIMIT=Decimal("1.0"),
        FEE_STANDARD_ESTIMATE=Decimal("0.01"),
    )
    values.update(overrides)
    return ServiceConfig(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def ledger():
    gateway = InMemoryLedgerGateway()
    gateway.register_identity(*PLATFORM)
    return gateway


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def market(settings, ledger, sleep):
    return build_marketplace(settings, gateway=ledger, engine=get_engine(":memory:"), sleep=sleep)


@pytest.fixture
def open_account(market, ledger):
    """Create a ledger identity, a local user and a live session for it."""

    def _open(username: str) -> Account:
        genesis = ledger.register_identity(username)
        user = market.store.create_user(
            User(
                email=f"{username}@example.com",
                display_name=username.title(),
                nexus_username=username,
                nexus_genesis=genesis,
            )
        )
        session = f"session-{username}"
        ledger.sessions[session] = genesis
        return Account(user=user, session=session)

    return _open


@pytest.fixture
def alice(open_account):
    return open_account("alice")


@pytest.fixture
def bob(open_account):
    return open_account("bob")


def mint_input(account: Account, **overrides) -> MintInput:
    values = dict(
        user_id=account.user_id,
        title="Night Drive",
        artist="Vela",
        description="Synthwave at 3am",
        genre="electronic",
        price=Decimal("2.5"),
        audio_url="https://cdn.example.com/audio/night-drive.mp3",
        audio_path="audio/night-drive.mp3",
        cover_url="https://cdn.example.com/covers/night-drive.png",
        cover_path="covers/night-drive.png",
        nexus_session=account.session,
        nexus_pin=account.pin,
    )
    values.update(overrides)
    return MintInput(**values)


def transfer_input(account: Account, asset_id: str, recipient: str, **overrides) -> TransferInput:
    values = dict(
        asset_id=asset_id,
        user_id=account.user_id,
        recipient=recipient,
        nexus_session=account.session,
        nexus_pin=account.pin,
    )
    values.update(overrides)
    return TransferInput(**values)


@pytest.fixture
def mint_request():
    return mint_input


@pytest.fixture
def transfer_request():
    return transfer_input
