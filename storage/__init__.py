"""
Storage Package.

Persistence of ticker snapshots in the time-indexed store.

Modules:
- database: engine, sessions, connection lifecycle
- models/: ORM models
- repositories/: data access layer
- market_data_writer: one-row-per-snapshot writer
"""

from storage.database import (
    Database,
    DatabaseConnectionError,
    DatabaseError,
    DatabaseInitializationError,
)
from storage.market_data_writer import MarketDataWriter
from storage.repositories import MarketDataRepository, PriceSummary


__all__ = [
    "Database",
    "DatabaseError",
    "DatabaseConnectionError",
    "DatabaseInitializationError",
    "MarketDataWriter",
    "MarketDataRepository",
    "PriceSummary",
]
