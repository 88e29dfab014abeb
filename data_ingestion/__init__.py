"""
Data Ingestion Package.

Receives feed frames, classifies them and hands tickers to the
persistence writer.

Sub-packages:
- collectors: exchange feed connection
- normalizers: decimal codec and ticker field extraction

Modules:
- dispatcher: classify and route one payload
- ingestion_service: wires the feed to the delivery paths
  (import directly; it depends on messaging)
- types: envelopes, snapshots, outcomes, errors
"""

from data_ingestion.types import (
    DispatchOutcome,
    FailureReason,
    FetchError,
    IngestionError,
    MessageType,
    OutcomeStatus,
    ParseError,
    RawEnvelope,
    StorageError,
    TickerSnapshot,
)
from data_ingestion.dispatcher import MessageDispatcher, SnapshotWriter
from data_ingestion.collectors.coinbase_feed import CoinbaseFeed, ConnectionState


__all__ = [
    # Feed
    "CoinbaseFeed",
    "ConnectionState",
    # Dispatch
    "MessageDispatcher",
    "SnapshotWriter",
    # Types
    "RawEnvelope",
    "TickerSnapshot",
    "MessageType",
    "OutcomeStatus",
    "FailureReason",
    "DispatchOutcome",
    # Errors
    "IngestionError",
    "FetchError",
    "ParseError",
    "StorageError",
]
