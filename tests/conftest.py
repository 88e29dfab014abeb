"""
Shared fixtures for the market data pipeline tests.

Store tests run against a file-backed SQLite database so that
sessions can be used from several threads at once.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from core.clock import MockClock
from core.config import DatabaseConfig
from data_ingestion.types import TickerSnapshot
from monitoring.metrics import PipelineMetrics
from storage.database import Database


FIXED_TIME = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def mock_clock():
    return MockClock(FIXED_TIME)


@pytest.fixture
def metrics():
    return PipelineMetrics()


@pytest.fixture
def database(tmp_path):
    """Fresh SQLite store with the market_data table created."""
    db = Database(DatabaseConfig(url=f"sqlite:///{tmp_path / 'market_data.db'}"))
    db.create_tables()
    yield db
    db.dispose()


@pytest.fixture
def make_snapshot():
    """Factory for ticker snapshots."""
    def _make(symbol="BTC-USD", price="50000.00", observed_at=FIXED_TIME, **overrides):
        values = dict(
            observed_at=observed_at,
            symbol=symbol,
            exchange="coinbase",
            raw_payload=f'{{"type":"ticker","product_id":"{symbol}"}}',
            price=Decimal(price) if price is not None else None,
        )
        values.update(overrides)
        return TickerSnapshot(**values)
    return _make
