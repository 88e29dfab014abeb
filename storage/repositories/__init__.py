"""
Repository Layer Package.

============================================================
PURPOSE
============================================================
The only gateway to the market data store. Sessions are
injected, never created internally, and every database error
is wrapped in a repository exception.

============================================================
USAGE
============================================================

    from storage.repositories import MarketDataRepository

    with database.session_scope() as session:
        repo = MarketDataRepository(session)
        repo.add(row)

============================================================
"""

from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import (
    ConnectionError,
    IntegrityError,
    QueryError,
    RecordNotFoundError,
    RepositoryException,
    TransactionError,
)
from storage.repositories.market_data import MarketDataRepository, PriceSummary


__all__ = [
    "BaseRepository",
    "MarketDataRepository",
    "PriceSummary",
    "RepositoryException",
    "RecordNotFoundError",
    "IntegrityError",
    "ConnectionError",
    "QueryError",
    "TransactionError",
]
