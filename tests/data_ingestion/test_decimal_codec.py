"""
Tests for the decimal field codec.
"""

import logging
from decimal import Decimal

import pytest

from data_ingestion.normalizers.decimal_codec import parse_decimal


class TestParseDecimal:
    """Text to exact decimal conversion."""

    @pytest.mark.parametrize("text", [None, "", "null"])
    def test_absent_values_are_none(self, text):
        assert parse_decimal(text) is None

    def test_exact_value_preserved(self):
        value = parse_decimal("3000.00")
        assert value == Decimal("3000.00")
        assert str(value) == "3000.00"

    def test_high_precision_not_rounded(self):
        assert parse_decimal("0.123456789012345678") == Decimal("0.123456789012345678")

    def test_negative_and_exponent(self):
        assert parse_decimal("-1.5") == Decimal("-1.5")
        assert parse_decimal("1E+3") == Decimal("1000")

    def test_garbage_returns_none_and_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="normalizers.decimal_codec"):
            assert parse_decimal("abc") is None
        assert "abc" in caplog.text

    @pytest.mark.parametrize("text", ["NaN", "Infinity", "-Infinity", "sNaN"])
    def test_non_finite_rejected(self, text):
        assert parse_decimal(text) is None

    def test_never_raises_on_odd_text(self):
        for text in ["1.2.3", "--1", "true", "{}", "1,000"]:
            assert parse_decimal(text) is None

    @pytest.mark.parametrize("text", ["1_000", " 1.5", "1.5 ", "\t2", "1,5", "0x10"])
    def test_non_decimal_text_rejected(self, text, caplog):
        with caplog.at_level(logging.WARNING, logger="normalizers.decimal_codec"):
            assert parse_decimal(text) is None
        assert "Failed to parse decimal value" in caplog.text

    @pytest.mark.parametrize("text,expected", [
        ("+2", Decimal("2")),
        (".5", Decimal("0.5")),
        ("5.", Decimal("5")),
        ("1e-8", Decimal("0.00000001")),
    ])
    def test_plain_decimal_forms_accepted(self, text, expected):
        assert parse_decimal(text) == expected
