"""
Storage Models Package.

ORM models of the market data store.

- Base: declarative base (base.py)
- MarketData: ticker snapshots (market_data.py)
"""

from storage.models.base import Base, SurrogateId
from storage.models.market_data import PRICE_PRECISION, PRICE_SCALE, MarketData


__all__ = [
    "Base",
    "SurrogateId",
    "MarketData",
    "PRICE_PRECISION",
    "PRICE_SCALE",
]
