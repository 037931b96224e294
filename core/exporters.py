"""
Quote ledger exporters.
Writes the organization's audited quotes to Excel or CSV with a Result column.
"""
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import pandas as pd

from core.config import get_settings
from core.exceptions import ExportError
from core.logger import setup_logger

logger = setup_logger(__name__)

LEDGER_COLUMNS = {
    "created_at": "Date",
    "id": "Quote ID",
    "bank": "Bank",
    "pair": "Pair",
    "amount": "Amount",
    "exchange_rate": "Bank Rate",
    "mid_market_rate": "Mid-Market Rate",
    "spread_percentage": "Spread %",
    "markup_cost": "Markup Cost",
    "total_hidden_cost": "Total Hidden Cost",
    "status": "Status",
    "workflow_status": "Workflow",
}

RESULT_COLUMN = "Result"
SHEET_NAME = "Quote Ledger"


def format_result_column(quote: Dict[str, Any]) -> str:
    """
    Format the Result column content for one quote.

    Format: FLAGGED: dispute recommended | Spread: {spread}% | Hidden cost: {cost}

    Args:
        quote: Quote document

    Returns:
        Formatted result string
    """
    if quote.get("mid_market_rate") in (None, 0):
        result = "UNBENCHMARKED: no mid-market rate"
    elif quote.get("dispute_recommended"):
        result = "FLAGGED: dispute recommended"
    else:
        result = "OK"

    spread = quote.get("spread_percentage") or 0.0
    hidden = quote.get("total_hidden_cost") or 0.0
    result += f" | Spread: {spread:.2f}% | Hidden cost: {hidden:,.2f}"

    notes = quote.get("notes") or []
    if notes:
        result += f" | Notes: {len(notes)}"

    return result


def build_ledger_frame(quotes: List[Dict[str, Any]]) -> pd.DataFrame:
    """
    Build the ledger DataFrame, one row per quote in input order.

    Args:
        quotes: Quote documents

    Returns:
        DataFrame with display column names and a trailing Result column
    """
    df = pd.DataFrame(quotes, columns=list(LEDGER_COLUMNS))
    if not df.empty:
        df["created_at"] = (
            pd.to_datetime(df["created_at"], unit="ms", utc=True).dt.strftime("%Y-%m-%d %H:%M")
        )
    df = df.rename(columns=LEDGER_COLUMNS)
    df[RESULT_COLUMN] = [format_result_column(q) for q in quotes]
    return df


def export_ledger(
    quotes: List[Dict[str, Any]],
    output_path: str,
    fmt: Literal["xlsx", "csv"] = "xlsx"
) -> str:
    """
    Export quotes to a file.

    Args:
        quotes: Quote documents
        output_path: Output file path
        fmt: "xlsx" or "csv"

    Returns:
        Path to created file

    Raises:
        ExportError: If export fails
    """
    logger.info(f"Exporting {len(quotes)} quotes to {output_path}")

    output_file = Path(output_path)
    output_file.parent.mkdir(parents=True, exist_ok=True)

    try:
        output_df = build_ledger_frame(quotes)

        if fmt == "csv":
            output_df.to_csv(output_path, index=False)
            return output_path

        with pd.ExcelWriter(output_path, engine="xlsxwriter") as writer:
            output_df.to_excel(writer, sheet_name=SHEET_NAME, index=False)

            workbook = writer.book
            worksheet = writer.sheets[SHEET_NAME]

            # Result column wraps
            wrap_format = workbook.add_format({"text_wrap": True, "valign": "top"})
            result_col_idx = len(output_df.columns) - 1
            worksheet.set_column(result_col_idx, result_col_idx, 60, wrap_format)

            # Auto-fit other columns (approximate)
            for idx, col in enumerate(output_df.columns[:-1]):
                values = output_df[col].astype(str).map(len)
                max_len = max(values.max() if len(values) else 0, len(str(col)))
                worksheet.set_column(idx, idx, min(max_len + 2, 40))

        logger.info(f"Successfully exported to {output_path}")
        return output_path

    except Exception as e:
        logger.error(f"Failed to export ledger: {e}")
        raise ExportError(
            "Failed to export quote ledger",
            details={"output_path": output_path, "format": fmt, "error": str(e)}
        )


def create_output_filename(org_id: str, fmt: str = "xlsx", base_path: Optional[str] = None) -> str:
    """
    Create timestamped output filename.

    Args:
        org_id: Organization the ledger belongs to
        fmt: File extension
        base_path: Base directory path (defaults to configured storage)

    Returns:
        Full output file path
    """
    if base_path is None:
        base_path = get_settings().temp_storage_path

    Path(base_path).mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
    filename = f"quote_ledger_{org_id}_{timestamp}.{fmt}"

    return str(Path(base_path) / filename)
