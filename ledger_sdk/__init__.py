# ledger_sdk/__init__.py
from .config import LedgerConfig
from .contracts import BlockRef, DecodedLog, LedgerClient, LENDING_MARKET_ABI

__all__ = [
    "LedgerConfig",
    "LedgerClient",
    "BlockRef",
    "DecodedLog",
    "LENDING_MARKET_ABI",
]
