from .lifecycle import AssetLifecycleEngine, is_transient_failure
from .metadata import build_asset_fields, fill_blank, ledger_asset_name

__all__ = [
    "AssetLifecycleEngine",
    "build_asset_fields",
    "fill_blank",
    "is_transient_failure",
    "ledger_asset_name",
]
