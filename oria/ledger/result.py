"""Tagged result returned by every ledger gateway call."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel


class LedgerErrorKind(str, Enum):
    NETWORK_UNREACHABLE = "NetworkUnreachable"  # connection refused, DNS, timeout
    REMOTE_REJECTED = "RemoteRejected"          # structured error from the node
    INVALID_RESPONSE = "InvalidResponse"        # 200 but not the expected shape


class LedgerResult(BaseModel):
    """``{ok: True, value}`` or ``{ok: False, kind, message}``."""

    ok: bool
    value: Any = None
    kind: Optional[LedgerErrorKind] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, value: Any) -> "LedgerResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, kind: LedgerErrorKind, message: str) -> "LedgerResult":
        return cls(ok=False, kind=kind, message=message)

    def __bool__(self) -> bool:
        return self.ok
