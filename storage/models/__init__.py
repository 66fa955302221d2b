"""
Storage Models Package.

============================================================
MODEL ORGANIZATION
============================================================

Domain 1: Watchlist (watchlist.py)
- Account
- Token
- TokenContract
- WatchedAddress
- AccountAddress

Domain 2: Scanning state (scanning.py)
- AlertDecision
- ScanWatermark

============================================================
"""

from storage.models.base import Base, ExactDecimal, TimestampMixin
from storage.models.scanning import AlertDecision, ScanWatermark
from storage.models.watchlist import (
    Account,
    AccountAddress,
    Token,
    TokenContract,
    WatchedAddress,
)


__all__ = [
    "Base",
    "TimestampMixin",
    "ExactDecimal",
    "Account",
    "AccountAddress",
    "Token",
    "TokenContract",
    "WatchedAddress",
    "AlertDecision",
    "ScanWatermark",
]
