"""
Reporting tests.

Tests cover:
  - approval time: ceil per request, half-up average, approved only
  - completion rate and half-up rounding
  - histograms and distributions
  - monthly series
  - windowed report / dashboard over the database
  - /api/v1/reports endpoints
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from mocstudio.models import db
from mocstudio.models.moc import Facility, MOCRequest
from mocstudio.models.task import MOCTask
from mocstudio.services import reporting
from mocstudio.services.moc_lifecycle import create_request


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def _req(**kwargs):
    kwargs.setdefault("status", "draft")
    kwargs.setdefault("priority", "medium")
    return MOCRequest(title="r", request_number="MOC-X", **kwargs)


# ═════════════════════════════════════════════════════════════════════════
# PURE AGGREGATION
# ═════════════════════════════════════════════════════════════════════════

class TestRounding:
    @pytest.mark.parametrize("value,expected", [
        (2.5, 3), (6.5, 7), (2.49, 2), (0.5, 1), (7.0, 7), (0, 0),
    ])
    def test_round_half_up(self, value, expected):
        assert reporting.round_half_up(value) == expected


class TestApprovalTime:
    def test_whole_days(self):
        r = _req(status="approved", submitted_at=_utc(2024, 2, 1), completed_at=_utc(2024, 2, 9))
        assert reporting.approval_days(r) == 8

    def test_partial_day_is_ceiled(self):
        r = _req(status="approved", submitted_at=_utc(2024, 2, 1, 10), completed_at=_utc(2024, 2, 3, 11))
        assert reporting.approval_days(r) == 3

    def test_naive_timestamps_treated_as_utc(self):
        r = _req(status="approved", submitted_at=datetime(2024, 2, 1), completed_at=_utc(2024, 2, 2))
        assert reporting.approval_days(r) == 1

    def test_missing_timestamps(self):
        assert reporting.approval_days(_req(status="approved", submitted_at=_utc(2024, 2, 1))) is None

    def test_average_ceils_then_rounds_half_up(self):
        requests = [
            _req(status="approved", submitted_at=_utc(2024, 2, 1), completed_at=_utc(2024, 2, 9)),
            _req(status="approved", submitted_at=_utc(2024, 3, 1), completed_at=_utc(2024, 3, 6)),
        ]
        assert reporting.average_approval_days(requests) == 7

    def test_average_ignores_other_statuses(self):
        requests = [
            _req(status="approved", submitted_at=_utc(2024, 2, 1), completed_at=_utc(2024, 2, 3)),
            _req(status="rejected", submitted_at=_utc(2024, 2, 1), completed_at=_utc(2024, 2, 28)),
            _req(status="implemented", submitted_at=_utc(2024, 2, 1), completed_at=_utc(2024, 2, 20)),
        ]
        assert reporting.average_approval_days(requests) == 2

    def test_average_of_nothing_is_none(self):
        assert reporting.average_approval_days([]) is None
        assert reporting.average_approval_days([_req(status="rejected")]) is None


class TestRates:
    def test_completion_rate(self):
        tasks = [MOCTask(title="a", status="completed"), MOCTask(title="b", status="pending"),
                 MOCTask(title="c", status="pending")]
        assert reporting.task_completion_rate(tasks) == 33
        tasks[1].status = "completed"
        assert reporting.task_completion_rate(tasks) == 67

    def test_completion_rate_half_up(self):
        tasks = [MOCTask(title=str(i), status="pending") for i in range(8)]
        tasks[0].status = "completed"
        # 1/8 = 12.5%
        assert reporting.task_completion_rate(tasks) == 13

    def test_completion_rate_without_tasks(self):
        assert reporting.task_completion_rate([]) is None

    def test_overdue_requests(self):
        today = date(2024, 5, 10)
        requests = [
            _req(status="under_review", review_deadline=date(2024, 5, 9)),
            _req(status="submitted", review_deadline=date(2024, 5, 10)),
            _req(status="approved", review_deadline=date(2024, 5, 1)),
            _req(status="draft"),
        ]
        assert reporting.overdue_request_count(requests, today) == 2


class TestHistograms:
    def test_status_histogram_has_every_status(self):
        hist = reporting.status_histogram([_req(status="approved"), _req(status="approved")])
        assert hist == {
            "draft": 0, "submitted": 0, "under_review": 0,
            "approved": 2, "rejected": 0, "implemented": 0,
        }

    def test_priority_histogram(self):
        hist = reporting.priority_histogram([_req(priority="critical"), _req(priority="low")])
        assert hist == {"low": 1, "medium": 0, "high": 0, "critical": 1}

    def test_change_type_histogram_omits_absent(self):
        hist = reporting.change_type_histogram([
            _req(change_type="software_change"), _req(change_type="software_change"), _req(),
        ])
        assert hist == {"software_change": 2}

    def test_risk_tier_histogram(self):
        hist = reporting.risk_tier_histogram([_req(risk_tier="high"), _req()])
        assert hist == {"low": 0, "medium": 0, "high": 1, "critical": 0}

    def test_facility_distribution(self):
        north = Facility(name="North", code="N")
        requests = [_req(facility=north), _req(facility=north), _req()]
        assert reporting.facility_distribution(requests) == [
            {"name": "North", "count": 2},
            {"name": "Unassigned", "count": 1},
        ]

    def test_facility_distribution_top_ten(self):
        requests = [_req(facility=Facility(name=f"F{i:02d}", code=str(i))) for i in range(12)]
        assert len(reporting.facility_distribution(requests)) == 10

    def test_risk_distribution(self):
        requests = [
            _req(risk_category="process_safety", risk_probability=3, risk_severity=4),
            _req(risk_category="process_safety", risk_probability=1, risk_severity=1),
            _req(),
        ]
        assert reporting.risk_distribution(requests) == [
            {"category": "process_safety", "count": 2, "avg_score": 7},
            {"category": "Unassessed", "count": 1, "avg_score": 0},
        ]


class TestSeries:
    def test_month_range(self):
        months = reporting.month_range(date(2023, 11, 20), date(2024, 2, 1))
        assert months == [date(2023, 11, 1), date(2023, 12, 1), date(2024, 1, 1), date(2024, 2, 1)]

    def test_monthly_trend(self):
        requests = [
            _req(created_at=_utc(2024, 1, 5), status="approved", completed_at=_utc(2024, 2, 2)),
            _req(created_at=_utc(2024, 1, 20), status="rejected", completed_at=_utc(2024, 1, 25)),
            _req(created_at=_utc(2024, 2, 14)),
        ]
        trend = reporting.monthly_trend(requests, date(2024, 1, 1), date(2024, 3, 31))
        assert trend == [
            {"month": "2024-01", "label": "Jan 2024", "created": 2, "approved": 0, "rejected": 1},
            {"month": "2024-02", "label": "Feb 2024", "created": 1, "approved": 1, "rejected": 0},
            {"month": "2024-03", "label": "Mar 2024", "created": 0, "approved": 0, "rejected": 0},
        ]

    def test_approval_time_trend(self):
        requests = [
            _req(status="approved", submitted_at=_utc(2024, 2, 1), completed_at=_utc(2024, 2, 9)),
            _req(status="approved", submitted_at=_utc(2024, 2, 10), completed_at=_utc(2024, 2, 15)),
        ]
        trend = reporting.approval_time_trend(requests, date(2024, 1, 1), date(2024, 2, 29))
        assert [t["avg_days"] for t in trend] == [None, 7]


# ═════════════════════════════════════════════════════════════════════════
# DATABASE-BACKED REPORTS
# ═════════════════════════════════════════════════════════════════════════

@pytest.fixture()
def dated_requests(owner, payload):
    """Three requests created on fixed dates in 2024."""
    created = {}
    for title, when in (
        ("january", _utc(2024, 1, 15, 9)),
        ("feb-end", _utc(2024, 2, 29, 23, 30)),
        ("april", _utc(2024, 4, 2, 8)),
    ):
        moc = create_request(payload(title=title), owner.id)
        moc.created_at = when
        created[title] = moc
    approved = created["january"]
    approved.status = "approved"
    approved.submitted_at = _utc(2024, 1, 16)
    approved.completed_at = _utc(2024, 1, 20, 12)
    db.session.commit()
    return created


class TestWindowedReport:
    def test_window_filters_on_created_at(self, dated_requests):
        titles = {r.title for r in reporting.fetch_requests(date(2024, 2, 1), date(2024, 2, 29))}
        assert titles == {"feb-end"}

    def test_datetime_bound_is_inclusive(self, dated_requests):
        titles = {r.title for r in reporting.fetch_requests(None, _utc(2024, 2, 29, 23, 30))}
        assert titles == {"january", "feb-end"}

    def test_build_report(self, dated_requests):
        report = reporting.build_report(date(2024, 1, 1), date(2024, 3, 31), now=_utc(2024, 4, 1))
        assert report["window"] == {"from": "2024-01-01", "to": "2024-03-31"}
        assert report["summary"]["total"] == 2
        assert report["summary"]["approved"] == 1
        assert report["summary"]["average_approval_days"] == 5
        assert report["summary"]["task_completion_rate"] is None
        assert report["by_status"]["draft"] == 1
        assert report["by_facility"] == [{"name": "North Refinery", "count": 2}]
        assert [m["month"] for m in report["trend"]] == ["2024-01", "2024-02", "2024-03"]

    def test_reversed_window_is_swapped(self, dated_requests):
        report = reporting.build_report(date(2024, 3, 31), date(2024, 1, 1), now=_utc(2024, 4, 1))
        assert report["window"] == {"from": "2024-01-01", "to": "2024-03-31"}
        assert report["summary"]["total"] == 2

    def test_dashboard(self, dated_requests):
        stats = reporting.build_dashboard_stats(now=_utc(2024, 4, 10))
        assert stats["total"] == 3
        assert stats["this_month_count"] == 1
        assert stats["last_month_count"] == 0
        assert stats["average_approval_days"] == 5
        assert stats["task_stats"]["completion_rate"] is None


class TestReportAPI:
    def test_summary(self, client, dated_requests, owner, auth):
        res = client.get("/api/v1/reports/summary?from=2024-01-01&to=2024-02-29", headers=auth(owner))
        assert res.status_code == 200
        assert res.get_json()["summary"]["total"] == 2

    def test_summary_bad_date(self, client, owner, auth):
        res = client.get("/api/v1/reports/summary?from=yesterday", headers=auth(owner))
        assert res.status_code == 422

    def test_dashboard_requires_identity(self, client):
        res = client.get("/api/v1/reports/dashboard")
        assert res.status_code == 403

    def test_dashboard(self, client, draft, owner, auth):
        res = client.get("/api/v1/reports/dashboard", headers=auth(owner))
        assert res.status_code == 200
        body = res.get_json()
        assert body["total"] == 1
        assert body["by_status"]["draft"] == 1
