"""
Market Data Repository.

============================================================
PURPOSE
============================================================
Append and query ticker snapshots in the `market_data` table.

============================================================
DATA LIFECYCLE
============================================================
- Mutability: APPEND-ONLY
- Rows are never merged, updated or deleted here
- Redelivered messages produce additional rows

============================================================
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from storage.models.market_data import MarketData
from storage.repositories.base import BaseRepository


@dataclass(frozen=True)
class PriceSummary:
    """Aggregate price statistics for one symbol over a time window."""
    symbol: str
    low: Optional[Decimal]
    high: Optional[Decimal]
    avg_price: Optional[Decimal]
    count: int


def _as_decimal(value) -> Optional[Decimal]:
    # AVG comes back as float on some backends
    if value is None or isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class MarketDataRepository(BaseRepository[MarketData]):
    """
    Repository for ticker snapshots.

    Sessions are injected by the caller (the persistence writer
    for inserts, ad-hoc callers for queries).
    """

    def __init__(self, session: Session) -> None:
        super().__init__(session, MarketData, "MarketDataRepository")

    # =========================================================
    # CREATE OPERATIONS
    # =========================================================

    def add(self, record: MarketData) -> MarketData:
        """
        Insert a new row and flush to obtain its id.

        The caller commits.
        """
        return self._add(record)

    # =========================================================
    # READ OPERATIONS
    # =========================================================

    def get_by_id(self, record_id: int) -> Optional[MarketData]:
        return self._get_by_id(record_id)

    def get_by_id_or_raise(self, record_id: int) -> MarketData:
        return self._get_by_id_or_raise(record_id)

    def count(self, symbol: Optional[str] = None) -> int:
        """Count rows, optionally for a single symbol."""
        if symbol is None:
            return self._count()
        return self._count(MarketData.symbol == symbol)

    def find_by_symbol_price_above_between(
        self,
        symbol: str,
        price: Decimal,
        start_time: datetime,
        end_time: datetime,
    ) -> List[MarketData]:
        """
        Rows for a symbol with price strictly above `price`,
        observed within [start_time, end_time].

        Rows with a NULL price never match.
        """
        stmt = (
            select(MarketData)
            .where(and_(
                MarketData.symbol == symbol,
                MarketData.price > price,
                MarketData.timestamp >= start_time,
                MarketData.timestamp <= end_time,
            ))
            .order_by(MarketData.timestamp, MarketData.id)
        )
        return self._execute_query(stmt)

    def get_price_summary(
        self,
        symbol: str,
        start_time: datetime,
        end_time: datetime,
    ) -> PriceSummary:
        """
        Low / high / average price and row count for a symbol
        within [start_time, end_time].

        Aggregates ignore NULL prices; count includes every row.
        """
        stmt = (
            select(
                func.min(MarketData.price),
                func.max(MarketData.price),
                func.avg(MarketData.price),
                func.count(MarketData.id),
            )
            .where(and_(
                MarketData.symbol == symbol,
                MarketData.timestamp >= start_time,
                MarketData.timestamp <= end_time,
            ))
        )
        rows = self._execute_rows(stmt, "get_price_summary")
        low, high, avg_price, count = rows[0] if rows else (None, None, None, 0)

        return PriceSummary(
            symbol=symbol,
            low=_as_decimal(low),
            high=_as_decimal(high),
            avg_price=_as_decimal(avg_price),
            count=int(count or 0),
        )
