"""
Unit tests for dispute letter drafting.
"""
import pytest

from core.dispute import draft_dispute_email
from core.exceptions import ValidationError

QUOTE = {
    "id": "q123",
    "bank": "JPMorgan Chase",
    "pair": "EUR/USD",
    "amount": 100000.0,
    "exchange_rate": 1.1120,
    "mid_market_rate": 1.0850,
    "spread_percentage": 2.48848,
    "markup_cost": 2488.48,
    "total_hidden_cost": 2523.48,
    "value_date": "2024-03-13",
    "fees": [{"name": "Wire fee", "amount": 35.0}],
}


def test_draft_dispute_email():
    """Letter quotes the rates, the fees and the refund request."""
    letter = draft_dispute_email(QUOTE, sender_name="Acme Treasury")

    assert letter["subject"] == "Request for FX markup review: EUR/USD conversion of 100,000.00 (q123)"
    body = letter["body"]
    assert "Dear JPMorgan Chase Relationship Team" in body
    assert "1.1120" in body
    assert "1.0850" in body
    assert "2.49%" in body
    assert "Wire fee: 35.00" in body
    assert "refund the markup of 2,488.48" in body
    assert body.rstrip().endswith("Acme Treasury")


def test_draft_without_fees_or_date():
    """Optional fields fall back to placeholders."""
    quote = {k: v for k, v in QUOTE.items() if k not in ("fees", "value_date")}
    body = draft_dispute_email(quote)["body"]

    assert "Itemized fees" not in body
    assert "n/a" in body
    assert "Treasury Team" in body


def test_draft_requires_mid_market_rate():
    """Unbenchmarked quotes cannot be disputed."""
    with pytest.raises(ValidationError):
        draft_dispute_email({**QUOTE, "mid_market_rate": None})
