"""
Dispute letter drafting for flagged quotes.
"""
from pathlib import Path
from typing import Any, Dict

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from core.exceptions import ValidationError

TEMPLATES_DIR = Path(__file__).parent.parent / "templates"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)
_env.filters["money"] = lambda value: f"{value or 0:,.2f}"
_env.filters["rate"] = lambda value: f"{value or 0:.4f}"

# Optional quote fields the template reads
QUOTE_DEFAULTS: Dict[str, Any] = {
    "id": None,
    "bank": "Unidentified Bank",
    "pair": "USD/EUR",
    "value_date": None,
    "fees": [],
    "markup_cost": 0.0,
    "total_hidden_cost": 0.0,
    "amount": 0.0,
    "exchange_rate": 0.0,
}


def draft_dispute_email(quote: Dict[str, Any], sender_name: str = "Treasury Team") -> Dict[str, str]:
    """
    Render the dispute email for a quote.

    Args:
        quote: Quote document with a benchmarked mid-market rate
        sender_name: Signature line

    Returns:
        {"subject": ..., "body": ...}

    Raises:
        ValidationError: If the quote has no usable mid-market rate
    """
    if not quote.get("mid_market_rate"):
        raise ValidationError(
            "Cannot draft a dispute without a mid-market benchmark",
            details={"quote_id": quote.get("id")}
        )

    quote = {**QUOTE_DEFAULTS, **quote}
    fees = quote.get("fees") or []
    context = {
        "quote": quote,
        "fees": fees,
        "total_fees": sum(fee.get("amount", 0) or 0 for fee in fees),
        "spread": abs(quote.get("spread_percentage") or 0.0),
        "sender_name": sender_name,
    }
    subject = (
        f"Request for FX markup review: {quote.get('pair')} conversion "
        f"of {quote.get('amount') or 0:,.2f} ({quote.get('id')})"
    )
    body = _env.get_template("dispute_email.txt.j2").render(**context)
    return {"subject": subject, "body": body}
