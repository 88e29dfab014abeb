"""
Market Data ORM Model.

============================================================
PURPOSE
============================================================
Time-indexed ticker snapshots written by the ingestion
pipeline. One row per successfully classified ticker message
per dispatch.

============================================================
DATA LIFECYCLE ROLE
============================================================
- Mutability: APPEND-ONLY (never updated or deleted here)
- Source: Exchange websocket feed, direct or via durable log
- Consumers: Ad-hoc queries, replay from raw_data
- Retention: owned by the store (hypertable policies)

============================================================
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, Index, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base, SurrogateId


# Fixed precision for every price/volume column.
PRICE_PRECISION = 20
PRICE_SCALE = 8


def _price_column(comment: str) -> Mapped[Optional[Decimal]]:
    return mapped_column(
        Numeric(PRICE_PRECISION, PRICE_SCALE, asdecimal=True),
        nullable=True,
        comment=comment,
    )


class MarketData(Base):
    """
    Ticker snapshot as persisted in the store.

    ============================================================
    INVARIANTS
    ============================================================
    - symbol and exchange are always populated
    - any numeric column may be NULL
    - raw_data holds the ticker JSON text for audit and replay
    - no natural-key uniqueness: redelivery produces new rows

    ============================================================
    """

    __tablename__ = "market_data"

    id: Mapped[int] = mapped_column(
        SurrogateId,
        primary_key=True,
        autoincrement=True,
        comment="Store-assigned surrogate id",
    )

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="When the ticker was observed by the dispatcher",
    )

    symbol: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="Product id as received, e.g. BTC-USD",
    )

    exchange: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Feed name",
    )

    price: Mapped[Optional[Decimal]] = _price_column("Last trade price")
    volume: Mapped[Optional[Decimal]] = _price_column("24h volume")
    bid: Mapped[Optional[Decimal]] = _price_column("Best bid")
    ask: Mapped[Optional[Decimal]] = _price_column("Best ask")
    high_24h: Mapped[Optional[Decimal]] = _price_column("24h high")
    low_24h: Mapped[Optional[Decimal]] = _price_column("24h low")
    open_24h: Mapped[Optional[Decimal]] = _price_column("24h open")

    raw_data: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Ticker JSON text",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="Row creation timestamp (UTC)",
    )

    __table_args__ = (
        Index("idx_market_data_timestamp", "timestamp"),
        Index("idx_market_data_symbol", "symbol"),
        Index("idx_market_data_exchange", "exchange"),
    )

    def __repr__(self) -> str:
        return (
            f"MarketData(id={self.id}, symbol={self.symbol!r}, "
            f"exchange={self.exchange!r}, price={self.price})"
        )
