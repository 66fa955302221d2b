"""
Storage Repositories Package.

============================================================
REPOSITORIES
============================================================
- WatchlistRepository: accounts, tokens, watched addresses
- AlertDecisionRepository: write-once alert decisions
- WatermarkRepository: per-chain scan watermarks

============================================================
"""

from storage.repositories.base import BaseRepository
from storage.repositories.decisions import AlertDecisionRepository
from storage.repositories.exceptions import (
    ConnectionError,
    DuplicateRecordError,
    IntegrityError,
    QueryError,
    RepositoryException,
    TransactionError,
    ValidationError,
)
from storage.repositories.watchlist import WatchlistRepository, canonical_address
from storage.repositories.watermarks import WatermarkRepository


__all__ = [
    "BaseRepository",
    "AlertDecisionRepository",
    "WatchlistRepository",
    "WatermarkRepository",
    "canonical_address",
    "RepositoryException",
    "ConnectionError",
    "DuplicateRecordError",
    "IntegrityError",
    "QueryError",
    "TransactionError",
    "ValidationError",
]
