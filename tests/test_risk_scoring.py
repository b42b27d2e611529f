"""
Risk scoring unit tests.

Tests cover:
  - probability × severity score
  - tier boundaries (4/5, 9/10, 14/15)
  - input validation at the write boundary
  - risk recomputation on create/update
  - GET /api/v1/risk/assess
"""

import pytest

from mocstudio.core.exceptions import ValidationError
from mocstudio.services.moc_lifecycle import create_request, update_request
from mocstudio.services.risk_scoring import (
    assess_risk,
    calculate_risk_score,
    risk_tier,
    validate_risk_value,
)


class TestScore:
    def test_score_is_product(self):
        assert calculate_risk_score(3, 4) == 12
        assert calculate_risk_score(1, 1) == 1
        assert calculate_risk_score(5, 5) == 25

    @pytest.mark.parametrize("score,tier", [
        (1, "low"), (4, "low"),
        (5, "medium"), (9, "medium"),
        (10, "high"), (14, "high"),
        (15, "critical"), (25, "critical"),
    ])
    def test_tier_boundaries(self, score, tier):
        assert risk_tier(score) == tier

    def test_assess_risk(self):
        result = assess_risk(3, 4)
        assert result.score == 12
        assert result.tier == "high"
        assert result.to_dict() == {"probability": 3, "severity": 4, "score": 12, "tier": "high"}


class TestValidation:
    @pytest.mark.parametrize("value", [1, 5, "3", " 2 "])
    def test_accepts_in_range(self, value):
        assert 1 <= validate_risk_value("risk_probability", value) <= 5

    @pytest.mark.parametrize("value", [0, 6, -1, "7"])
    def test_rejects_out_of_range(self, value):
        with pytest.raises(ValidationError) as exc:
            validate_risk_value("risk_severity", value)
        assert "risk_severity" in exc.value.details

    @pytest.mark.parametrize("value", [None, "high", 2.5, "2.5", True])
    def test_rejects_non_integers(self, value):
        with pytest.raises(ValidationError):
            validate_risk_value("risk_probability", value)


class TestRequestRisk:
    def test_created_request_is_scored(self, owner, payload):
        moc = create_request(payload(risk_probability=3, risk_severity=4), owner.id)
        assert moc.risk_score == 12
        assert moc.risk_tier == "high"

    def test_unscored_request_has_no_tier(self, owner, payload):
        body = payload()
        body.pop("risk_probability")
        moc = create_request(body, owner.id)
        assert moc.risk_score is None
        assert moc.risk_tier is None

    def test_update_recomputes(self, draft, owner):
        moc = update_request(draft.id, {"risk_severity": 5}, owner.id)
        assert moc.risk_score == 15
        assert moc.risk_tier == "critical"

    def test_out_of_range_rejected_on_create(self, owner, payload):
        with pytest.raises(ValidationError):
            create_request(payload(risk_probability=6), owner.id)


class TestAssessEndpoint:
    def test_assess(self, client):
        res = client.get("/api/v1/risk/assess?probability=2&severity=5")
        assert res.status_code == 200
        assert res.get_json() == {"probability": 2, "severity": 5, "score": 10, "tier": "high"}

    def test_assess_invalid(self, client):
        res = client.get("/api/v1/risk/assess?probability=0&severity=5")
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"
