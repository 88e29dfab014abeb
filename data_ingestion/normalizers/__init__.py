"""
Data Ingestion - Normalizers Package.

Normalizers:
- decimal_codec: text -> exact decimal, never raises
- ticker_normalizer: ticker object -> TickerSnapshot
"""

from data_ingestion.normalizers.decimal_codec import parse_decimal
from data_ingestion.normalizers.ticker_normalizer import (
    TickerNormalizer,
    compact_json,
    field_text,
)


__all__ = [
    "parse_decimal",
    "TickerNormalizer",
    "compact_json",
    "field_text",
]
