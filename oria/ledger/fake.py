"""In-memory ledger used by tests and local development."""

import asyncio
import hashlib
import uuid
from collections import defaultdict, deque
from typing import Any, Deque, Dict, List, Optional, Tuple

from .gateway import LedgerEndpoint, LedgerGateway, LedgerGatewayError
from .result import LedgerErrorKind


def _hash(*parts: str) -> str:
    return hashlib.sha256(":".join(parts).encode("utf-8")).hexdigest()


class InMemoryLedgerGateway(LedgerGateway):
    """A small ledger simulation with scriptable failures.

    Usage:
        ledger = InMemoryLedgerGateway()
        ledger.fail_next(LedgerEndpoint.CREATE_ASSET, LedgerErrorKind.REMOTE_REJECTED,
                         "duplicate genesis-id", times=2)
    """

    def __init__(self, balance: float = 100.0, latency: float = 0.0):
        self.latency = latency
        self.balance = balance
        self.identities: Dict[str, Dict[str, str]] = {}
        self.sessions: Dict[str, str] = {}
        self.unlocked: set = set()
        self.assets: Dict[str, Dict[str, Any]] = {}
        self.transactions: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[LedgerEndpoint, Dict[str, Any]]] = []
        self._failures: Dict[LedgerEndpoint, Deque[Tuple[LedgerErrorKind, str]]] = defaultdict(deque)
        self._hidden: set = set()

    # ------------------------------------------------------------------
    # Test controls
    # ------------------------------------------------------------------

    def fail_next(self, endpoint: LedgerEndpoint, kind: LedgerErrorKind, message: str, times: int = 1):
        for _ in range(times):
            self._failures[endpoint].append((kind, message))

    def register_identity(self, username: str, password: str = "password", pin: str = "1234") -> str:
        genesis = _hash("genesis", username)
        self.identities[username] = {"password": password, "pin": pin, "genesis": genesis}
        return genesis

    def hide_asset(self, address: str):
        """Make ``get_asset`` report the address as not found (unpropagated)."""
        self._hidden.add(address)

    def reveal_asset(self, address: str):
        self._hidden.discard(address)

    def set_owner(self, address: str, genesis: str):
        self.assets[address]["owner"] = genesis

    def calls_to(self, endpoint: LedgerEndpoint) -> List[Dict[str, Any]]:
        return [payload for ep, payload in self.calls if ep == endpoint]

    # ------------------------------------------------------------------

    async def _request(self, endpoint: LedgerEndpoint, payload: Dict[str, Any]) -> Any:
        self.calls.append((endpoint, payload))
        if self.latency:
            await asyncio.sleep(self.latency)
        else:
            await asyncio.sleep(0)

        if self._failures[endpoint]:
            kind, message = self._failures[endpoint].popleft()
            raise LedgerGatewayError(kind, message)

        handler = getattr(self, f"_handle_{endpoint.name.lower()}", None)
        if handler is None:
            raise LedgerGatewayError(LedgerErrorKind.REMOTE_REJECTED, f"Unsupported endpoint {endpoint.value}")
        return handler(payload)

    def _reject(self, message: str):
        raise LedgerGatewayError(LedgerErrorKind.REMOTE_REJECTED, message)

    def _new_tx(self, kind: str, genesis: str, **contract: Any) -> str:
        txid = _hash("tx", uuid.uuid4().hex)
        self.transactions[txid] = {
            "txid": txid,
            "type": kind,
            "timestamp": 0,
            "confirmations": 1,
            "genesis": genesis,
            "contracts": [dict(id=0, type=kind, **contract)],
        }
        return txid

    def _genesis_for_session(self, session: Optional[str]) -> str:
        genesis = self.sessions.get(session or "")
        if genesis is None:
            self._reject("Session not found")
        return genesis

    def _handle_create_identity(self, payload):
        username = payload["username"]
        if username in self.identities:
            self._reject(f"Profile already exists: {username}")
        genesis = self.register_identity(username, payload["password"], payload["pin"])
        return {"genesis": genesis, "username": username, "txid": self._new_tx("CREATE", genesis)}

    def _handle_create_session(self, payload):
        identity = self.identities.get(payload["username"])
        if identity is None or identity["password"] != payload["password"]:
            self._reject("Invalid credentials")
        session = uuid.uuid4().hex
        self.sessions[session] = identity["genesis"]
        return {"session": session, "genesis": identity["genesis"]}

    def _handle_unlock_session(self, payload):
        self._genesis_for_session(payload.get("session"))
        self.unlocked.add(payload["session"])
        return {"unlocked": {"transactions": True, "notifications": True}}

    def _handle_terminate_session(self, payload):
        self.sessions.pop(payload.get("session"), None)
        return {"success": True}

    def _handle_create_asset(self, payload):
        genesis = self._genesis_for_session(payload.get("session"))
        fields = payload.get("json") or []
        for field in fields:
            if field.get("value") == "":
                self._reject(f"Field {field.get('name')} cannot be empty")
        name = payload["name"]
        for existing in self.assets.values():
            if existing["name"] == name and existing["owner"] == genesis:
                self._reject(f"Name already exists: {name}")
        address = _hash("asset", genesis, name, uuid.uuid4().hex)
        self.assets[address] = {
            "address": address,
            "name": name,
            "owner": genesis,
            "created": 0,
            "modified": 0,
            "data": {f["name"]: f["value"] for f in fields},
        }
        return {"address": address, "txid": self._new_tx("CREATE", genesis, address=address)}

    def _handle_transfer_asset(self, payload):
        genesis = self._genesis_for_session(payload.get("session"))
        asset = self.assets.get(payload.get("address"))
        if asset is None:
            self._reject("Object not found")
        if asset["owner"] != genesis:
            self._reject("Caller is not the owner of this asset")
        recipient = payload["recipient"]
        identity = self.identities.get(recipient)
        recipient_genesis = identity["genesis"] if identity else recipient
        if recipient_genesis not in {i["genesis"] for i in self.identities.values()}:
            self._reject(f"Recipient not found: {recipient}")
        asset["owner"] = recipient_genesis
        txid = self._new_tx("TRANSFER", genesis, address=asset["address"], recipient=recipient_genesis)
        return {"txid": txid, "recipient": recipient_genesis}

    def _handle_get_asset(self, payload):
        address = payload.get("address")
        if address:
            asset = self.assets.get(address)
        else:
            asset = next((a for a in self.assets.values() if a["name"] == payload.get("name")), None)
        if asset is None or asset["address"] in self._hidden:
            self._reject("Object not found")
        return dict(asset)

    def _handle_get_account(self, payload):
        self._genesis_for_session(payload.get("session"))
        return {"balance": self.balance, "available": self.balance}

    def _handle_get_transaction(self, payload):
        tx = self.transactions.get(payload.get("hash"))
        if tx is None:
            self._reject("Transaction not found")
        return dict(tx)

    def _handle_system_info(self, payload):
        return {"version": "in-memory", "blocks": len(self.transactions), "connections": 0, "synchronizing": False}
