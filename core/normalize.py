"""
Data normalization for extracted wire confirmations.
Handles amount cleaning, bank name canonicalization, currency pairs and OCR text cleanup.
"""
import re
from datetime import date
from typing import Any, Dict, Iterable, Optional

import pandas as pd

from core.logger import setup_logger

logger = setup_logger(__name__)

DEFAULT_BASE_CURRENCY = "USD"
DEFAULT_PAIR = "USD/EUR"

# Substring -> canonical bank name, checked in order
BANK_ALIASES = (
    (("CHASE", "JPM"), "JPMorgan Chase"),
    (("CITI",), "Citibank"),
    (("WELLS",), "Wells Fargo"),
    (("AMERICA", "BOA"), "Bank of America"),
    (("HSBC",), "HSBC"),
)

_CODE_RE = re.compile(r"^[A-Z]{3}$")


def clean_amount(value: Any) -> Optional[float]:
    """
    Clean and normalize a monetary amount or rate.
    Removes currency symbols, spaces and thousands separators, and converts to float.

    Args:
        value: Raw amount value (string or number)

    Returns:
        Normalized float value or None if invalid
    """
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None

    amount_str = str(value).strip()

    if not amount_str:
        return None

    # Remove spaces and common thousands separators
    amount_str = amount_str.replace(" ", "").replace(",", "").replace("\xa0", "")

    # Keep digits, decimal point and minus sign ("$125000.00", "1.0850 EUR")
    cleaned = ""
    for char in amount_str:
        if char.isdigit() or char in [".", "-"]:
            cleaned += char

    if not cleaned:
        logger.debug(f"Failed to parse amount: '{value}' - no numeric content")
        return None

    try:
        result = float(cleaned)
        if result < 0:
            logger.warning(f"Negative amount detected: {result}, using absolute value")
            return abs(result)
        return result
    except (ValueError, TypeError) as e:
        logger.warning(f"Failed to parse amount: '{value}' -> {e}")
        return None


def normalize_bank_name(raw_name: Optional[str]) -> str:
    """
    Map the bank name printed on a confirmation to a canonical institution.

    Args:
        raw_name: Bank name as extracted (any case, may be None)

    Returns:
        Canonical bank name
    """
    if not raw_name or not str(raw_name).strip():
        return "Unidentified Bank"

    upper = str(raw_name).upper()
    for needles, canonical in BANK_ALIASES:
        if any(needle in upper for needle in needles):
            return canonical

    return "External/International Bank"


def normalize_currency_code(code: Optional[str]) -> Optional[str]:
    """Upper-case a three-letter currency code, None when it is not one."""
    if not code:
        return None
    code = str(code).strip().upper()
    return code if _CODE_RE.match(code) else None


def normalize_currency_pair(pair: Optional[str], currency: Optional[str] = None) -> str:
    """
    Normalize a currency pair to BASE/QUOTE.

    Accepts "EUR/USD", "eur-usd", "EURUSD", "EUR_USD" or a bare quote
    currency ("EUR" -> "USD/EUR"). When no pair is given the pair is inferred
    from the transaction currency against USD.

    Args:
        pair: Raw pair string
        currency: Transaction currency used when pair is missing

    Returns:
        Pair in "BASE/QUOTE" form
    """
    if pair:
        compact = re.sub(r"[\s/\-_]", "", str(pair).upper())
        if len(compact) == 6 and compact.isalpha():
            return f"{compact[:3]}/{compact[3:]}"
        if len(compact) == 3 and compact.isalpha():
            return infer_currency_pair(compact)
        logger.warning(f"Unrecognized currency pair '{pair}', inferring from currency")

    return infer_currency_pair(currency)


def infer_currency_pair(currency: Optional[str]) -> str:
    """USD against the transaction currency; USD/EUR when the currency is USD or unknown."""
    code = normalize_currency_code(currency)
    if not code or code == DEFAULT_BASE_CURRENCY:
        return DEFAULT_PAIR
    return f"{DEFAULT_BASE_CURRENCY}/{code}"


def split_pair(pair: str):
    """Split "BASE/QUOTE" into its two codes."""
    base, quote = normalize_currency_pair(pair).split("/")
    return base, quote


def normalize_value_date(value: Optional[str]) -> str:
    """
    Normalize a value date to ISO format, defaulting to today.

    Args:
        value: Raw date (ISO, or anything pandas can parse)

    Returns:
        YYYY-MM-DD string
    """
    if value:
        try:
            parsed = pd.to_datetime(str(value), errors="raise")
            return parsed.date().isoformat()
        except (ValueError, TypeError, OverflowError) as e:
            logger.warning(f"Unparseable value date '{value}': {e}, using today")
    return date.today().isoformat()


def clean_ocr_text(text: str) -> str:
    """
    Tidy raw OCR output before sending it to the structuring model.
    Rules, runs of whitespace and glued fee columns are split onto separate lines.

    Args:
        text: Raw OCR transcript

    Returns:
        Cleaned transcript
    """
    cleaned = re.sub(r"═+", "---", text)
    cleaned = re.sub(r"_+", "---", cleaned)
    cleaned = re.sub(r"\s{3,}", "\n", cleaned)
    cleaned = re.sub(r"(Wire Transfer Fee:\s+)(Foreign Exchange Fee:)", r"\1\n\2", cleaned)
    cleaned = re.sub(r"(\$\d+[\d,]*\.?\d*)\s+(\$\d+[\d,]*\.?\d*)", r"\1\n\2", cleaned)
    cleaned = re.sub(r"(Fee:)(\s*)(\$\d)", r"\1 \3", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"(\$\d+\.\d+)(\()", r"\1 \2", cleaned)
    return cleaned.strip()


def strip_code_fences(content: str) -> str:
    """Strip a surrounding markdown code block from model output."""
    content_stripped = content.strip()
    if content_stripped.startswith("```"):
        lines = content_stripped.split("\n")
        if lines[0].startswith("```"):
            lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        content_stripped = "\n".join(lines).strip()
    return content_stripped


def find_field(source: Dict[str, Any], keys: Iterable[str]) -> Any:
    """
    Case-insensitive lookup of the first present key among aliases.

    Args:
        source: Payload to search
        keys: Candidate key names

    Returns:
        The value, or None when no alias is present or the value is empty
    """
    wanted = [k.lower() for k in keys]
    lowered = {str(k).lower(): v for k, v in source.items()}
    for key in wanted:
        value = lowered.get(key)
        if value not in (None, ""):
            return value
    return None
