import logging
import re
from typing import Optional

from sqlalchemy.exc import IntegrityError

from oria.db.models import User
from oria.db.store import MarketplaceStore
from oria.errors import NotFoundError, RemoteRejectedError, ValidationError
from oria.ledger import LedgerGateway
from oria.schemas import UserRegistration

log = logging.getLogger(__name__)

_USERNAME_RE = re.compile(r"[^a-z0-9]")
MIN_PIN_LENGTH = 4


def ledger_username(username: str) -> str:
    """Ledger usernames are lower-case alphanumerics."""
    return _USERNAME_RE.sub("", (username or "").lower())


class UserService:
    def __init__(self, store: MarketplaceStore, gateway: LedgerGateway):
        self.store = store
        self.gateway = gateway

    async def register_user(self, data: UserRegistration) -> User:
        """
        Create the user's ledger identity (sigchain) and then the local user.
        The ledger account is created first; nothing is stored locally if it fails.
        """
        username = ledger_username(data.username)
        if not username:
            raise ValidationError("Username must contain letters or digits", code="invalid_username")
        if len(data.pin or "") < MIN_PIN_LENGTH:
            raise ValidationError(
                f"PIN (minimum {MIN_PIN_LENGTH} characters) is required for blockchain transactions",
                code="invalid_pin",
            )
        if self.store.find_user_by_username(username) or self.store.find_user_by_email(data.email):
            raise ValidationError("Username or email already registered", code="duplicate_user")

        result = await self.gateway.create_identity(username, data.password, data.pin)
        if not result.ok:
            raise RemoteRejectedError(f"Blockchain account creation failed: {result.message}")

        user = User(
            email=data.email.lower().strip(),
            display_name=data.display_name or data.username,
            nexus_username=username,
            nexus_genesis=result.value.genesis,
            nexus_txid=result.value.txid,
        )
        try:
            user = self.store.create_user(user)
        except IntegrityError:
            # the ledger has no account deletion, the sigchain stays orphaned
            log.error(f"Local user insert failed after creating sigchain {username}")
            raise ValidationError("Username or email already registered", code="duplicate_user")

        log.info(f"👤 Registered user {user.user_id} with ledger identity {username}")
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        return self.store.get_user(user_id)

    def resolve_recipient(self, recipient: str) -> User:
        """Find a local user by ledger username, then by account email."""
        key = (recipient or "").strip()
        user = self.store.find_user_by_username(key) or self.store.find_user_by_username(key.lower())
        if user is None:
            user = self.store.find_user_by_email(key)
        if user is None:
            raise NotFoundError(f"Recipient not found: {recipient}", code="recipient_not_found")
        return user
