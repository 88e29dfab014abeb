"""
Data Ingestion - Ticker Normalizer.

============================================================
RESPONSIBILITY
============================================================
Maps a decoded `ticker` feed object onto a TickerSnapshot.

- Reads every field as text (absent -> "", JSON null -> "null",
  numbers -> their literal text)
- Converts numeric fields through the decimal codec
- Keeps the compact JSON text of the object for replay

============================================================
FIELD MAPPING
============================================================
product_id -> symbol
price      -> price
volume_24h -> volume
bid        -> bid
ask        -> ask
high_24h   -> high_24h
low_24h    -> low_24h
open_24h   -> open_24h

============================================================
"""

import json
from datetime import datetime
from typing import Any, Dict, Optional

from data_ingestion.normalizers.decimal_codec import parse_decimal
from data_ingestion.types import TickerSnapshot


def field_text(obj: Dict[str, Any], name: str) -> str:
    """
    Read a field as text.

    Missing fields and containers read as "", JSON null as "null",
    booleans as "true"/"false", numbers as their decimal text.
    """
    if name not in obj:
        return ""
    value = obj[name]
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return repr(value)
    return ""


def compact_json(obj: Dict[str, Any]) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


class TickerNormalizer:
    """Builds TickerSnapshots for a single exchange."""

    def __init__(self, exchange: str) -> None:
        self._exchange = exchange

    @property
    def exchange(self) -> str:
        return self._exchange

    def normalize(
        self,
        ticker: Dict[str, Any],
        observed_at: datetime,
        raw_payload: Optional[str] = None,
    ) -> TickerSnapshot:
        """
        Build a snapshot from a ticker object.

        Never fails on field content: unusable numeric fields
        become None and a missing product_id becomes "".
        """
        return TickerSnapshot(
            observed_at=observed_at,
            symbol=field_text(ticker, "product_id"),
            exchange=self._exchange,
            raw_payload=raw_payload if raw_payload is not None else compact_json(ticker),
            price=parse_decimal(field_text(ticker, "price")),
            volume=parse_decimal(field_text(ticker, "volume_24h")),
            bid=parse_decimal(field_text(ticker, "bid")),
            ask=parse_decimal(field_text(ticker, "ask")),
            high_24h=parse_decimal(field_text(ticker, "high_24h")),
            low_24h=parse_decimal(field_text(ticker, "low_24h")),
            open_24h=parse_decimal(field_text(ticker, "open_24h")),
        )
