"""
Quote review workflow.
Manual cycle uploaded -> analyzed -> reviewed -> approved -> uploaded.
"""
from typing import Tuple

from core.exceptions import ValidationError
from core.schema import CostBreakdown

WORKFLOW_STATES: Tuple[str, ...] = ("uploaded", "analyzed", "reviewed", "approved")
INITIAL_WORKFLOW_STATUS = "uploaded"


def next_workflow_status(current: str) -> str:
    """
    Advance a quote one step through the review cycle.

    Args:
        current: Current workflow status

    Returns:
        Next status, wrapping from "approved" back to "uploaded"

    Raises:
        ValidationError: If the status is not part of the cycle
    """
    if current not in WORKFLOW_STATES:
        raise ValidationError(
            f"Unknown workflow status: {current}",
            details={"status": current, "allowed": list(WORKFLOW_STATES)}
        )
    return WORKFLOW_STATES[(WORKFLOW_STATES.index(current) + 1) % len(WORKFLOW_STATES)]


def initial_status(breakdown: CostBreakdown) -> str:
    """Analysis label assigned when a quote is created."""
    if not breakdown.benchmarkable:
        return "pending"
    if breakdown.dispute_recommended:
        return "flagged"
    if breakdown.spread_decimal <= 0:
        return "optimal"
    return "analyzed"
