"""Ledger-facing asset naming and field-list construction.

The Nexus node refuses empty string values in an asset's field list, so
every blank value is replaced with a one-character placeholder before
submission.
"""

import re
import time
from typing import Any, Callable, List, Optional

from oria.db.models import Asset
from oria.ledger import LedgerField

NAME_SLUG_LENGTH = 30
_SLUG_RE = re.compile(r"[^a-z0-9]")


def ledger_asset_name(title: str, prefix: str = "oria", now_ms: Optional[Callable[[], int]] = None) -> str:
    """``<prefix>_<slug>_<epoch ms>``; collision resistant, not unique."""
    timestamp = now_ms() if now_ms else int(time.time() * 1000)
    slug = _SLUG_RE.sub("_", (title or "").lower())[:NAME_SLUG_LENGTH]
    return f"{prefix}_{slug}_{timestamp}"


def fill_blank(value: Any, placeholder: str = "-") -> str:
    """Stringify ``value``; None/blank become ``placeholder``."""
    if value is None:
        return placeholder
    if isinstance(value, bool):
        text = "true" if value else "false"
    else:
        text = str(value)
    return text if text.strip() else placeholder


def build_asset_fields(asset: Asset, app_tag: str, placeholder: str = "-") -> List[LedgerField]:
    """Immutable metadata payload registered with the asset."""
    created_at = asset.created_at.isoformat() if asset.created_at else None
    raw = [
        ("title", asset.title),
        ("artist", asset.artist),
        ("description", asset.description),
        ("genre", asset.genre),
        ("price", asset.price),
        ("audio_url", asset.audio_url),
        ("cover_url", asset.cover_url),
        ("is_limited", asset.is_limited),
        ("limited_supply", asset.limited_supply if asset.limited_supply is not None else 0),
        ("created_by", asset.user_id),
        ("created_at", created_at),
        ("app", app_tag),
    ]
    return [
        LedgerField(name=name, type="string", value=fill_blank(value, placeholder), mutable=False)
        for name, value in raw
    ]
