"""
Unit tests for ledger export.
"""
from pathlib import Path

import pandas as pd

from core.exporters import (
    RESULT_COLUMN,
    SHEET_NAME,
    build_ledger_frame,
    create_output_filename,
    export_ledger,
    format_result_column,
)

QUOTES = [
    {
        "id": "q1", "created_at": 1710331200000, "bank": "HSBC", "pair": "USD/EUR", "amount": 1000.0,
        "exchange_rate": 0.95, "mid_market_rate": 0.92, "spread_percentage": 3.26, "markup_cost": 32.6,
        "total_hidden_cost": 32.6, "status": "flagged", "workflow_status": "uploaded",
        "dispute_recommended": True, "notes": [{"id": "n1", "user": "Uma", "text": "Call bank"}],
    },
    {
        "id": "q2", "created_at": 1710331200000, "bank": "Citibank", "pair": "USD/JPY", "amount": 500.0,
        "exchange_rate": 151.2, "mid_market_rate": 151.2, "spread_percentage": 0.0, "markup_cost": 0.0,
        "total_hidden_cost": 0.0, "status": "optimal", "workflow_status": "approved",
        "dispute_recommended": False,
    },
]


def test_format_result_column():
    """Result column summarizes the verdict."""
    assert format_result_column(QUOTES[0]) == (
        "FLAGGED: dispute recommended | Spread: 3.26% | Hidden cost: 32.60 | Notes: 1"
    )
    assert format_result_column(QUOTES[1]).startswith("OK | Spread: 0.00%")
    assert format_result_column({"mid_market_rate": None}).startswith("UNBENCHMARKED")


def test_build_ledger_frame():
    """Display columns in ledger order with a trailing Result column."""
    df = build_ledger_frame(QUOTES)

    assert list(df.columns)[-1] == RESULT_COLUMN
    assert df.loc[0, "Bank"] == "HSBC"
    assert df.loc[0, "Date"] == "2024-03-13 12:00"


def test_export_xlsx(tmp_path):
    """Excel export round trips through openpyxl."""
    output = export_ledger(QUOTES, str(tmp_path / "ledger.xlsx"))

    df = pd.read_excel(output, sheet_name=SHEET_NAME)
    assert len(df) == 2
    assert df.loc[1, "Bank"] == "Citibank"


def test_export_empty_ledger(tmp_path):
    """An empty ledger still produces the header row."""
    output = export_ledger([], str(tmp_path / "empty.csv"), fmt="csv")

    df = pd.read_csv(output)
    assert df.empty
    assert "Quote ID" in df.columns


def test_create_output_filename(tmp_path):
    """Filenames are timestamped per organization."""
    path = create_output_filename("org1", "csv", base_path=str(tmp_path))
    assert Path(path).parent == tmp_path
    assert Path(path).name.startswith("quote_ledger_org1_")
    assert path.endswith(".csv")
