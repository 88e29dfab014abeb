"""
Storage - Market Data Writer.

============================================================
RESPONSIBILITY
============================================================
Persists one TickerSnapshot as one new `market_data` row.

- One session and one INSERT per call
- Commits before returning the store-assigned id
- Rolls back and raises StorageError on any failure
- Never merges or updates existing rows

============================================================
THREADING
============================================================
Safe to call concurrently from event bus workers and log
consumer workers: every call checks out its own session
from the pooled engine. No application-level locking.

============================================================
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from core.clock import ClockProtocol, SystemClock
from data_ingestion.types import StorageError, TickerSnapshot
from storage.database import Database
from storage.models.market_data import MarketData
from storage.repositories.exceptions import RepositoryException
from storage.repositories.market_data import MarketDataRepository


logger = logging.getLogger("storage.market_data_writer")


class MarketDataWriter:
    """Writes ticker snapshots to the store."""

    def __init__(
        self,
        database: Database,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._database = database
        self._clock = clock or SystemClock()

    def _to_row(self, snapshot: TickerSnapshot) -> MarketData:
        return MarketData(
            timestamp=snapshot.observed_at,
            symbol=snapshot.symbol,
            exchange=snapshot.exchange,
            price=snapshot.price,
            volume=snapshot.volume,
            bid=snapshot.bid,
            ask=snapshot.ask,
            high_24h=snapshot.high_24h,
            low_24h=snapshot.low_24h,
            open_24h=snapshot.open_24h,
            raw_data=snapshot.raw_payload,
            created_at=snapshot.created_at or self._clock.now(),
        )

    def write(self, snapshot: TickerSnapshot) -> int:
        """
        Insert the snapshot and commit.

        Returns:
            The new row id

        Raises:
            StorageError: the row was not committed
        """
        session = self._database.new_session()
        try:
            repo = MarketDataRepository(session)
            row = repo.add(self._to_row(snapshot))
            repo.commit()
            logger.debug(f"Stored {snapshot.symbol} tick as row {row.id}")
            return row.id
        except (RepositoryException, SQLAlchemyError) as e:
            session.rollback()
            logger.error(f"Failed to store {snapshot.symbol} tick: {e}")
            raise StorageError(
                f"Failed to store market data: {e}",
                source=snapshot.exchange,
                recoverable=True,
                details={"symbol": snapshot.symbol},
            ) from e
        finally:
            session.close()
