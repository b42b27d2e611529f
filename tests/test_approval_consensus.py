"""
Approval consensus unit tests: veto, unanimity, empty set, comment rule.
"""

import pytest

from mocstudio.core.exceptions import MissingComment, ValidationError
from mocstudio.services.approval_consensus import (
    consensus_summary,
    evaluate_consensus,
    require_decision_comment,
)


class TestEvaluateConsensus:
    def test_empty_set_is_pending(self):
        assert evaluate_consensus([]) == "pending"

    def test_all_approved(self):
        assert evaluate_consensus(["approved", "approved", "approved"]) == "approved"

    def test_partial_approval_is_pending(self):
        assert evaluate_consensus(["approved", "approved", "pending"]) == "pending"

    def test_single_rejection_vetoes(self):
        assert evaluate_consensus(["approved", "rejected"]) == "rejected"
        assert evaluate_consensus(["pending", "rejected", "pending"]) == "rejected"

    def test_rejection_beats_changes_requested(self):
        assert evaluate_consensus(["changes_requested", "rejected"]) == "rejected"

    def test_changes_requested(self):
        assert evaluate_consensus(["approved", "changes_requested", "pending"]) == "changes_requested"

    def test_accepts_generator(self):
        assert evaluate_consensus(s for s in ["approved"]) == "approved"


class TestSummary:
    def test_counts(self):
        summary = consensus_summary(["approved", "pending", "pending"])
        assert summary == {
            "consensus": "pending",
            "total": 3,
            "pending": 2,
            "approved": 1,
            "rejected": 0,
            "changes_requested": 0,
        }


class TestCommentRule:
    @pytest.mark.parametrize("decision", ["rejected", "changes_requested"])
    @pytest.mark.parametrize("comments", [None, "", "   "])
    def test_comment_required(self, decision, comments):
        with pytest.raises(MissingComment) as exc:
            require_decision_comment(decision, comments)
        assert exc.value.decision == decision

    def test_missing_comment_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            require_decision_comment("rejected", None)

    def test_approval_needs_no_comment(self):
        require_decision_comment("approved", None)

    def test_comment_present(self):
        require_decision_comment("rejected", "Relief valve sizing not verified")
