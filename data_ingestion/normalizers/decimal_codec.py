"""
Data Ingestion - Decimal Field Codec.

Converts textual numeric fields of feed messages into exact
decimals. Absent values and unparseable text become None so
that a single bad field never blocks a row.

Accepted text: optional sign, digits with an optional fraction,
optional exponent. Whitespace, digit separators and the special
values (NaN, Infinity) are rejected.
"""

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Optional


logger = logging.getLogger("normalizers.decimal_codec")

# Textual forms that mean "no value"
NULL_TEXTS = frozenset(("", "null"))

DECIMAL_PATTERN = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")


def parse_decimal(text: Optional[str]) -> Optional[Decimal]:
    """
    Parse a field's text into a Decimal.

    Returns:
        Decimal for numeric text, None for None / "" / "null" or
        for text that is not a plain decimal number. Never raises.
    """
    if text is None or text in NULL_TEXTS:
        return None

    if not isinstance(text, str) or DECIMAL_PATTERN.fullmatch(text) is None:
        logger.warning(f"Failed to parse decimal value: {text!r}")
        return None

    try:
        return Decimal(text)
    except InvalidOperation:
        logger.warning(f"Failed to parse decimal value: {text!r}")
        return None
