"""
Data Ingestion - Collectors Package.

Collectors:
- coinbase_feed: Real-time ticker frames via WebSocket
"""

from data_ingestion.collectors.coinbase_feed import CoinbaseFeed, ConnectionState, FeedSink


__all__ = [
    "CoinbaseFeed",
    "ConnectionState",
    "FeedSink",
]
