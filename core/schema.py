"""
Pydantic schemas for documents, pipeline results and API payloads.
Defines the tolerant extraction schema the LLM output is coerced into.
"""
import math
import re
import time
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, BeforeValidator, Field, field_validator

from core.logger import setup_logger
from core.normalize import clean_amount

logger = setup_logger(__name__)


QuoteStatus = Literal["pending", "analyzed", "flagged", "optimal"]
WorkflowStatus = Literal["uploaded", "analyzed", "reviewed", "approved"]
RateSource = Literal["live", "simulated", "stale"]
MarketStatus = Literal["open", "closed", "historical"]
Plan = Literal["free", "enterprise"]


def now_ms() -> int:
    """Epoch milliseconds, the timestamp unit of every stored document."""
    return int(time.time() * 1000)


def coerce_number(v):
    """Turn LLM/OCR numbers like "$125,000.00" into floats, unknown into None."""
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        return None if math.isnan(v) or math.isinf(v) else float(v)
    return clean_amount(v)


# Minus sign in front of the amount, not inside a date or reference
NEGATIVE_AMOUNT = re.compile(r"(?:^|[^\w.])-\s*[$€£¥]?\s*\.?\d")


def coerce_fee(v):
    """Fee amounts; rebates and credits stated as negatives count as 0."""
    cleaned = coerce_number(v)
    if cleaned is None:
        return None
    if cleaned < 0 or (isinstance(v, str) and NEGATIVE_AMOUNT.search(v.strip())):
        logger.warning(f"Negative fee amount {v!r} counted as 0")
        return 0.0
    return cleaned


def coerce_text(v):
    """Empty strings and non-strings from the model become None."""
    if v is None:
        return None
    text = str(v).strip()
    if not text or text.lower() in ("null", "none", "n/a"):
        return None
    return text


def coerce_fee_items(v):
    """Accept a list of fee dicts, a {name: amount} mapping or nothing."""
    if v is None:
        return []
    if isinstance(v, dict):
        return [{"name": name, "amount": amount} for name, amount in v.items()]
    return v


OptionalNumber = Annotated[Optional[float], BeforeValidator(coerce_number)]
OptionalText = Annotated[Optional[str], BeforeValidator(coerce_text)]
OptionalFee = Annotated[Optional[float], BeforeValidator(coerce_fee)]


class FeeItem(BaseModel):
    """Itemized fee on a wire confirmation."""
    name: str = Field(default="Fee")
    amount: float = Field(default=0.0, ge=0.0)

    @field_validator("amount", mode="before")
    @classmethod
    def clean_fee_amount(cls, v):
        """Fee amounts arrive as strings with currency symbols."""
        cleaned = coerce_fee(v)
        return 0.0 if cleaned is None else cleaned


class Comment(BaseModel):
    """Collaboration note attached to a quote."""
    id: str
    user: str
    text: str
    timestamp: int = Field(default_factory=now_ms)


class ExtractedTransaction(BaseModel):
    """
    Structured fields pulled out of a wire confirmation.
    Every field is optional so a partial extraction still flows downstream.
    """
    bank_name: OptionalText = None
    transaction_reference: OptionalText = None
    sender_name: OptionalText = None
    beneficiary_name: OptionalText = None
    original_amount: OptionalNumber = None
    original_currency: OptionalText = None
    converted_amount: OptionalNumber = None
    converted_currency: OptionalText = None
    exchange_rate_bank: OptionalNumber = None
    currency_pair: OptionalText = None
    value_date: OptionalText = None
    fee_items: Annotated[List[FeeItem], BeforeValidator(coerce_fee_items)] = Field(default_factory=list)
    total_fees: OptionalFee = None
    source: Optional[str] = Field(None, description="Strategy that produced this record (added locally)")
    raw: Dict[str, Any] = Field(default_factory=dict)

    @property
    def fees_total(self) -> float:
        """Explicit total when the document states one, otherwise the item sum."""
        if self.total_fees is not None:
            return self.total_fees
        return sum(item.amount for item in self.fee_items)

    def fee_list(self) -> List[FeeItem]:
        """Fee items for the calculator; a bare total becomes one line item."""
        if self.fee_items:
            return list(self.fee_items)
        if self.total_fees:
            return [FeeItem(name="Total fees", amount=self.total_fees)]
        return []


class BenchmarkComparison(BaseModel):
    """Transaction spread measured against the assumed industry average."""
    industry_average_spread_pct: float
    performed_better: bool
    difference_pct: float
    estimated_annual_cost: float
    estimated_annual_savings_vs_industry: float


class CostBreakdown(BaseModel):
    """Result of the markup calculation."""
    spread_decimal: float = 0.0
    spread_percentage: float = 0.0
    markup_cost: float = 0.0
    total_fees: float = 0.0
    total_hidden_cost: float = 0.0
    total_hidden_percentage: float = 0.0
    dispute_recommended: bool = False
    dispute_reason: Optional[str] = None
    benchmarkable: bool = True
    benchmark: Optional[BenchmarkComparison] = None


class RateQuote(BaseModel):
    """Mid-market reference rate for a pair and date."""
    pair: str
    rate: float
    source: RateSource
    market_status: MarketStatus = "open"
    date_used: str
    note: Optional[str] = None


class LiveRate(BaseModel):
    """Ticker row."""
    id: str
    pair: str
    timestamp: int
    mid_market_rate: float
    bank_rate: float
    rateguard_rate: float
    savings_pips: int
    trend: Literal["up", "down"]


class Quote(BaseModel):
    """One audited bank-wire transaction."""
    id: Optional[str] = None
    user_id: str
    org_id: str
    bank: str = "Unidentified Bank"
    pair: str = "USD/EUR"
    amount: float = 0.0
    exchange_rate: float = 0.0
    mid_market_rate: Optional[float] = None
    rate_source: Optional[RateSource] = None
    rate_note: Optional[str] = None
    fees: List[FeeItem] = Field(default_factory=list)
    markup_cost: float = 0.0
    total_hidden_cost: float = 0.0
    spread_percentage: float = 0.0
    value_date: Optional[str] = None
    status: QuoteStatus = "pending"
    workflow_status: WorkflowStatus = "uploaded"
    dispute_recommended: bool = False
    dispute_drafted: bool = False
    reliability_score: int = 85
    notes: List[Comment] = Field(default_factory=list)
    document_base64: Optional[str] = None
    extraction_raw: Optional[Dict[str, Any]] = None
    created_at: int = Field(default_factory=now_ms)


class Organization(BaseModel):
    """Tenant grouping with a shared credit balance."""
    id: Optional[str] = None
    name: str
    admin_id: str
    members: List[str] = Field(default_factory=list)
    plan: Plan = "free"
    max_seats: int = 3
    credits: int = 0
    subscription_id: Optional[str] = None
    created_at: int = Field(default_factory=now_ms)

    @property
    def is_enterprise(self) -> bool:
        return self.plan == "enterprise"


class UserProfile(BaseModel):
    """Individual identity synced from the identity provider."""
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    org_id: Optional[str] = None
    role: Literal["admin", "member"] = "member"
    company_name: Optional[str] = None
    country: Optional[str] = None
    tax_id: Optional[str] = None
    has_seen_intro: bool = False
    created_at: int = Field(default_factory=now_ms)
    last_seen: int = Field(default_factory=now_ms)


class TeamMember(BaseModel):
    """Team roster row."""
    id: str
    name: str
    role: Literal["Auditor", "Controller", "Manager", "Processor"]
    status: Literal["Online", "Offline"] = "Offline"
    activity: str = ""


class AuditEntry(BaseModel):
    """Append-only audit log row written for every analyzed quote."""
    id: Optional[str] = None
    org_id: str
    user_id: str
    user_name: str
    pair: str
    amount: float
    bank_rate: float
    mid_market_rate: Optional[float] = None
    leakage: float
    timestamp: int = Field(default_factory=now_ms)


class PaymentTransaction(BaseModel):
    """Recorded subscription payment."""
    id: str
    org_id: str
    user_id: str
    subtotal: float = 200.00
    tax_amount: float = 31.00
    total_paid: float = 231.00
    status: str = "COMPLETED"
    created_at: int = Field(default_factory=now_ms)


PRICING_PLAN: Dict[str, Any] = {
    "name": "Global Controller",
    "price": 199,
    "period": "month",
    "features": [
        "Unlimited Bank Wire Audits",
        "Profit Guard FX Benchmarking",
        "Bank Hidden Fee Scorecards",
        "Auto-Dispute Email Generator",
    ],
}
