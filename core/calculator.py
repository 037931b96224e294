"""
Hidden cost calculation for bank FX conversions.

Turns an extracted transaction (amount, bank rate, fee items) and a
mid-market reference rate into a cost breakdown: the spread against
mid-market, the markup it costs, the itemized fees, a benchmark against the
assumed industry-average spread, and a dispute recommendation.

Everything in this module is pure: no I/O, no settings lookups.
"""
import math
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import pandas as pd

from core.schema import BenchmarkComparison, CostBreakdown, FeeItem

DEFAULT_DISPUTE_THRESHOLD_PCT = 1.0
INDUSTRY_AVERAGE_SPREAD_PCT = 2.5
MONTHS_PER_YEAR = 12

FeeLike = Union[FeeItem, Mapping[str, Any]]


def _is_usable_rate(rate: Optional[float]) -> bool:
    return rate is not None and not math.isnan(rate) and not math.isinf(rate) and rate > 0


def _as_fee_items(fees: Iterable[FeeLike]) -> List[FeeItem]:
    return [fee if isinstance(fee, FeeItem) else FeeItem(**fee) for fee in fees or ()]


def calculate_cost_breakdown(
    original_amount: float,
    bank_rate: Optional[float],
    mid_market_rate: Optional[float],
    fees: Iterable[FeeLike] = (),
    dispute_threshold_pct: float = DEFAULT_DISPUTE_THRESHOLD_PCT,
    industry_average_spread_pct: float = INDUSTRY_AVERAGE_SPREAD_PCT,
) -> CostBreakdown:
    """
    Compute the hidden cost of a conversion.

    Args:
        original_amount: Principal converted
        bank_rate: Rate the bank executed at
        mid_market_rate: Reference rate (may be simulated)
        fees: Itemized fees (FeeItem or {"name", "amount"} dicts)
        dispute_threshold_pct: Spread (in percent) above which a dispute is recommended
        industry_average_spread_pct: Assumed average retail spread (in percent)

    Returns:
        CostBreakdown. When either rate is zero, missing or not finite the
        breakdown is marked not benchmarkable and carries fees only.
    """
    amount = float(original_amount or 0.0)
    fee_items = _as_fee_items(fees)
    total_fees = sum(item.amount for item in fee_items)

    if not (_is_usable_rate(mid_market_rate) and _is_usable_rate(bank_rate)):
        return CostBreakdown(
            total_fees=total_fees,
            total_hidden_cost=total_fees,
            total_hidden_percentage=(total_fees / amount * 100) if amount > 0 else 0.0,
            benchmarkable=False,
        )

    spread_decimal = (bank_rate - mid_market_rate) / mid_market_rate
    spread_percentage = spread_decimal * 100
    abs_spread_pct = abs(spread_percentage)

    markup_cost = amount * abs(spread_decimal)
    total_hidden_cost = markup_cost + total_fees
    total_hidden_percentage = (total_hidden_cost / amount * 100) if amount > 0 else 0.0

    dispute_recommended = abs_spread_pct > dispute_threshold_pct
    dispute_reason = None
    if dispute_recommended:
        dispute_reason = (
            f"Spread of {abs_spread_pct:.2f}% exceeds the {dispute_threshold_pct:.2f}% threshold"
        )

    difference_pct = industry_average_spread_pct - abs_spread_pct
    benchmark = BenchmarkComparison(
        industry_average_spread_pct=industry_average_spread_pct,
        performed_better=abs_spread_pct < industry_average_spread_pct,
        difference_pct=difference_pct,
        estimated_annual_cost=total_hidden_cost * MONTHS_PER_YEAR,
        estimated_annual_savings_vs_industry=amount * difference_pct / 100 * MONTHS_PER_YEAR,
    )

    return CostBreakdown(
        spread_decimal=spread_decimal,
        spread_percentage=spread_percentage,
        markup_cost=markup_cost,
        total_fees=total_fees,
        total_hidden_cost=total_hidden_cost,
        total_hidden_percentage=total_hidden_percentage,
        dispute_recommended=dispute_recommended,
        dispute_reason=dispute_reason,
        benchmarkable=True,
        benchmark=benchmark,
    )


def summarize_quotes(quotes: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Aggregate a quote ledger for the dashboard.

    Args:
        quotes: Quote documents (dicts as stored)

    Returns:
        Totals, monthly markup trend and per-bank scorecard rows
    """
    if not quotes:
        return {
            "quote_count": 0,
            "total_markup_cost": 0.0,
            "total_hidden_cost": 0.0,
            "flagged_count": 0,
            "pending_review_count": 0,
            "monthly_markup": [],
            "banks": [],
        }

    df = pd.DataFrame(quotes)
    for column, default in (
        ("markup_cost", 0.0), ("total_hidden_cost", 0.0), ("spread_percentage", 0.0),
        ("status", ""), ("workflow_status", ""), ("bank", "Unidentified Bank"), ("created_at", 0),
    ):
        if column not in df.columns:
            df[column] = default
    df["markup_cost"] = df["markup_cost"].fillna(0.0)
    df["total_hidden_cost"] = df["total_hidden_cost"].fillna(0.0)
    df["abs_spread"] = df["spread_percentage"].fillna(0.0).abs()

    created = pd.to_datetime(df["created_at"], unit="ms", utc=True)
    df["month"] = created.dt.strftime("%Y-%m")

    monthly = (
        df.groupby("month")
        .agg(average_markup=("markup_cost", "mean"), quote_count=("markup_cost", "size"))
        .reset_index()
        .sort_values("month")
    )
    banks = (
        df.groupby("bank")
        .agg(quote_count=("abs_spread", "size"), average_spread_pct=("abs_spread", "mean"),
             total_markup_cost=("markup_cost", "sum"))
        .reset_index()
        .sort_values("quote_count", ascending=False)
    )

    return {
        "quote_count": int(len(df)),
        "total_markup_cost": round(float(df["markup_cost"].sum()), 2),
        "total_hidden_cost": round(float(df["total_hidden_cost"].sum()), 2),
        "flagged_count": int((df["status"] == "flagged").sum()),
        "pending_review_count": int((df["workflow_status"] == "reviewed").sum()),
        "monthly_markup": [
            {"month": row.month, "average_markup": round(float(row.average_markup), 2),
             "count": int(row.quote_count)}
            for row in monthly.itertuples(index=False)
        ],
        "banks": [
            {
                "bank": row.bank,
                "quote_count": int(row.quote_count),
                "average_spread_pct": round(float(row.average_spread_pct), 4),
                "total_markup_cost": round(float(row.total_markup_cost), 2),
            }
            for row in banks.itertuples(index=False)
        ],
    }
