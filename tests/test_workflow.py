"""
Unit tests for the quote review workflow.
"""
import pytest

from core.calculator import calculate_cost_breakdown
from core.exceptions import ValidationError
from core.workflow import WORKFLOW_STATES, initial_status, next_workflow_status


def test_workflow_cycle():
    """uploaded -> analyzed -> reviewed -> approved -> uploaded."""
    assert next_workflow_status("uploaded") == "analyzed"
    assert next_workflow_status("analyzed") == "reviewed"
    assert next_workflow_status("reviewed") == "approved"
    assert next_workflow_status("approved") == "uploaded"


def test_four_advances_return_to_start():
    """The cycle has period four from every state."""
    for state in WORKFLOW_STATES:
        current = state
        for _ in range(4):
            current = next_workflow_status(current)
        assert current == state


def test_unknown_workflow_status():
    """Unknown states are rejected."""
    with pytest.raises(ValidationError):
        next_workflow_status("archived")


def test_initial_status():
    """Analysis label depends on benchmarkability, dispute flag and spread sign."""
    assert initial_status(calculate_cost_breakdown(1000, 1.1, 0)) == "pending"
    assert initial_status(calculate_cost_breakdown(1000, 1.05, 1.0)) == "flagged"
    assert initial_status(calculate_cost_breakdown(1000, 1.0, 1.0)) == "optimal"
    assert initial_status(calculate_cost_breakdown(1000, 0.999, 1.0)) == "optimal"
    assert initial_status(calculate_cost_breakdown(1000, 1.005, 1.0)) == "analyzed"
