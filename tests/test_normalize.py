"""
Unit tests for normalization helpers.
"""
from datetime import date

import pytest

from core.normalize import (
    clean_amount,
    clean_ocr_text,
    find_field,
    normalize_bank_name,
    normalize_currency_pair,
    normalize_value_date,
    strip_code_fences,
)


@pytest.mark.parametrize("raw, expected", [
    ("$125,000.00", 125000.0),
    ("1.1120", 1.112),
    (" 50 000 ", 50000.0),
    ("EUR 1,234.50", 1234.5),
    (35, 35.0),
    ("", None),
    (None, None),
    ("n/a", None),
])
def test_clean_amount(raw, expected):
    """Currency symbols and separators are stripped."""
    assert clean_amount(raw) == expected


@pytest.mark.parametrize("raw, expected", [
    ("JPMORGAN CHASE BANK, N.A.", "JPMorgan Chase"),
    ("jpm", "JPMorgan Chase"),
    ("Citibank N.A.", "Citibank"),
    ("WELLS FARGO", "Wells Fargo"),
    ("Bank of America", "Bank of America"),
    ("BOA", "Bank of America"),
    ("HSBC UK", "HSBC"),
    ("Banco Santander", "External/International Bank"),
    (None, "Unidentified Bank"),
    ("   ", "Unidentified Bank"),
])
def test_normalize_bank_name(raw, expected):
    """Printed bank names map onto canonical institutions."""
    assert normalize_bank_name(raw) == expected


def test_normalize_currency_pair():
    """Pair formats and bare currencies normalize to BASE/QUOTE."""
    assert normalize_currency_pair("eur-usd") == "EUR/USD"
    assert normalize_currency_pair("EURUSD") == "EUR/USD"
    assert normalize_currency_pair("USD/JPY") == "USD/JPY"
    assert normalize_currency_pair("EUR") == "USD/EUR"
    assert normalize_currency_pair(None, "GBP") == "USD/GBP"
    assert normalize_currency_pair(None, "USD") == "USD/EUR"
    assert normalize_currency_pair(None, None) == "USD/EUR"


def test_normalize_value_date():
    """Dates are ISO formatted, missing or garbage dates become today."""
    assert normalize_value_date("2024-03-15") == "2024-03-15"
    assert normalize_value_date("March 15, 2024") == "2024-03-15"
    assert normalize_value_date(None) == date.today().isoformat()
    assert normalize_value_date("not a date") == date.today().isoformat()


def test_clean_ocr_text_splits_fee_columns():
    """Glued dollar amounts end up on separate lines."""
    text = "Wire Transfer Fee: $35.00 $15.00\n____\nTotal"
    cleaned = clean_ocr_text(text)

    assert "$35.00\n$15.00" in cleaned
    assert "---" in cleaned
    assert "____" not in cleaned


def test_strip_code_fences():
    """Markdown fences around model output are removed."""
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('{"a": 1}') == '{"a": 1}'


def test_find_field_is_case_insensitive():
    """First present alias wins, empty values are skipped."""
    source = {"Bank": "", "Institution": "HSBC", "AMOUNT": "1,000"}
    assert find_field(source, ("bank", "institution")) == "HSBC"
    assert find_field(source, ("amount", "principal")) == "1,000"
    assert find_field(source, ("rate",)) is None
