"""
MOC Studio
Approval consensus over a request's approver set.

Rules, evaluated in order:
    1. any approver rejected            → rejected   (single veto)
    2. any approver changes_requested   → changes_requested
    3. every approver approved          → approved   (unanimity)
    4. otherwise                        → pending

An empty approver set is pending: a request cannot be approved by nobody.
"""

from __future__ import annotations

from collections import Counter
from typing import Iterable

from mocstudio.core.exceptions import MissingComment

# Decisions that must carry an explanatory comment
COMMENT_REQUIRED_DECISIONS = {"rejected", "changes_requested"}


def evaluate_consensus(statuses: Iterable[str]) -> str:
    statuses = list(statuses)
    if not statuses:
        return "pending"
    if "rejected" in statuses:
        return "rejected"
    if "changes_requested" in statuses:
        return "changes_requested"
    if all(s == "approved" for s in statuses):
        return "approved"
    return "pending"


def consensus_summary(statuses: Iterable[str]) -> dict:
    """
    Consensus plus per-status counts, for approver panels and API responses.

    Returns:
        {"consensus", "total", "pending", "approved", "rejected", "changes_requested"}
    """
    statuses = list(statuses)
    counts = Counter(statuses)
    return {
        "consensus": evaluate_consensus(statuses),
        "total": len(statuses),
        "pending": counts.get("pending", 0),
        "approved": counts.get("approved", 0),
        "rejected": counts.get("rejected", 0),
        "changes_requested": counts.get("changes_requested", 0),
    }


def require_decision_comment(decision: str, comments: str | None) -> None:
    """Raise MissingComment when a rejection or change request has no comment."""
    if decision in COMMENT_REQUIRED_DECISIONS and not (comments or "").strip():
        raise MissingComment(decision)
