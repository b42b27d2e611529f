"""
MOC Studio
Reporting: read-only metrics over MOC requests and tasks.

Two layers:
    - Query contract: ``fetch_requests`` / ``fetch_tasks`` push the
      created_at window into SQL and return ORM rows.
    - Pure aggregation: every other function takes already-fetched rows
      and returns plain dicts/lists. No session access, no hidden state.

Rounding follows the dashboard convention: approval time is ceiled per
request, averaged, then rounded half-up; percentages are rounded half-up.
"""

from __future__ import annotations

import math
from collections import Counter, OrderedDict
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable

from sqlalchemy.orm import selectinload

from mocstudio.models.moc import OPEN_STATUSES, TERMINAL_STATUSES, MOCRequest
from mocstudio.models.task import MOCTask
from mocstudio.services.risk_scoring import RISK_TIERS
from mocstudio.services.task_service import compute_task_stats
from mocstudio.utils.helpers import as_utc

_STATUS_ORDER = ("draft", "submitted", "under_review", "approved", "rejected", "implemented")
_PRIORITY_ORDER = ("low", "medium", "high", "critical")

CHANGE_TYPE_LABELS = {
    "equipment_modification": "Equipment Modification",
    "equipment_replacement": "Equipment Replacement",
    "equipment_addition": "Equipment Addition",
    "procedure_change": "Procedure Change",
    "software_change": "Software Change",
    "major_change": "Major Change",
}

_DAY_SECONDS = 24 * 60 * 60


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (2.5 → 3), unlike round()."""
    return math.floor(value + 0.5)


# ═══════════════════════════════════════════════════════════════════════════
#  Query contract
# ═══════════════════════════════════════════════════════════════════════════

def _window_bounds(date_from, date_to):
    """Turn date/datetime bounds into (start_inclusive, end_exclusive_or_inclusive)."""
    start = end = None
    end_inclusive = True
    if date_from is not None:
        if isinstance(date_from, datetime):
            start = as_utc(date_from)
        else:
            start = datetime.combine(date_from, time.min, tzinfo=timezone.utc)
    if date_to is not None:
        if isinstance(date_to, datetime):
            end = as_utc(date_to)
        else:
            end = datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=timezone.utc)
            end_inclusive = False
    return start, end, end_inclusive


def fetch_requests(date_from=None, date_to=None) -> list[MOCRequest]:
    """Requests whose created_at falls in [date_from, date_to], newest first."""
    start, end, end_inclusive = _window_bounds(date_from, date_to)
    q = MOCRequest.query.options(selectinload(MOCRequest.facility))
    if start is not None:
        q = q.filter(MOCRequest.created_at >= start)
    if end is not None:
        q = q.filter(MOCRequest.created_at <= end if end_inclusive else MOCRequest.created_at < end)
    return q.order_by(MOCRequest.created_at.desc()).all()


def fetch_tasks(date_from=None, date_to=None) -> list[MOCTask]:
    """Tasks whose created_at falls in [date_from, date_to]."""
    start, end, end_inclusive = _window_bounds(date_from, date_to)
    q = MOCTask.query
    if start is not None:
        q = q.filter(MOCTask.created_at >= start)
    if end is not None:
        q = q.filter(MOCTask.created_at <= end if end_inclusive else MOCTask.created_at < end)
    return q.all()


# ═══════════════════════════════════════════════════════════════════════════
#  Histograms
# ═══════════════════════════════════════════════════════════════════════════

def status_histogram(requests: Iterable) -> dict:
    counts = Counter(r.status or "draft" for r in requests)
    return {s: counts.get(s, 0) for s in _STATUS_ORDER}


def priority_histogram(requests: Iterable) -> dict:
    counts = Counter(r.priority or "medium" for r in requests)
    return {p: counts.get(p, 0) for p in _PRIORITY_ORDER}


def change_type_histogram(requests: Iterable) -> dict:
    """Counts per change type; requests without a type are left out."""
    counts = Counter(r.change_type for r in requests if r.change_type)
    return {k: counts[k] for k in CHANGE_TYPE_LABELS if k in counts}


def risk_tier_histogram(requests: Iterable) -> dict:
    counts = Counter(r.risk_tier for r in requests if r.risk_tier)
    return {t: counts.get(t, 0) for t in RISK_TIERS}


def facility_distribution(requests: Iterable, limit: int = 10) -> list[dict]:
    """Top facilities by request count: [{"name", "count"}]."""
    counts = Counter(
        (r.facility.name if getattr(r, "facility", None) else "Unassigned")
        for r in requests
    )
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return [{"name": name, "count": count} for name, count in ranked[:limit]]


def risk_distribution(requests: Iterable) -> list[dict]:
    """Per risk category: [{"category", "count", "avg_score"}]. Unscored requests count as 0."""
    buckets: OrderedDict[str, list[int]] = OrderedDict()
    for r in requests:
        category = r.risk_category or "Unassessed"
        score = (r.risk_probability or 0) * (r.risk_severity or 0)
        buckets.setdefault(category, []).append(score)
    return [
        {"category": category, "count": len(scores), "avg_score": round_half_up(sum(scores) / len(scores))}
        for category, scores in buckets.items()
    ]


# ═══════════════════════════════════════════════════════════════════════════
#  Approval time & overdue
# ═══════════════════════════════════════════════════════════════════════════

def approval_days(request) -> int | None:
    """Whole days from submission to completion, ceiled; None without both timestamps."""
    if not request.submitted_at or not request.completed_at:
        return None
    delta = as_utc(request.completed_at) - as_utc(request.submitted_at)
    return math.ceil(delta.total_seconds() / _DAY_SECONDS)


def average_approval_days(requests: Iterable) -> int | None:
    """
    Mean approval time over approved requests.

    Each request is ceiled to whole days before averaging; the mean is
    rounded half-up. Returns None (not 0) when nothing qualifies.
    """
    days = [
        d for d in (approval_days(r) for r in requests if r.status == "approved")
        if d is not None
    ]
    if not days:
        return None
    return round_half_up(sum(days) / len(days))


def overdue_request_count(requests: Iterable, today: date) -> int:
    """Requests past their review deadline that have not reached a decision."""
    return sum(
        1 for r in requests
        if r.review_deadline and r.status not in TERMINAL_STATUSES and r.review_deadline <= today
    )


def task_completion_rate(tasks: Iterable) -> int | None:
    """Completed / total as a half-up integer percent; None when there are no tasks."""
    tasks = list(tasks)
    if not tasks:
        return None
    completed = sum(1 for t in tasks if t.status == "completed")
    return round_half_up(completed / len(tasks) * 100)


# ═══════════════════════════════════════════════════════════════════════════
#  Monthly series
# ═══════════════════════════════════════════════════════════════════════════

def _month_start(value: date) -> date:
    return date(value.year, value.month, 1)


def _next_month(value: date) -> date:
    return date(value.year + (value.month == 12), value.month % 12 + 1, 1)


def month_range(date_from: date, date_to: date) -> list[date]:
    """First day of every calendar month touched by [date_from, date_to]."""
    if isinstance(date_from, datetime):
        date_from = as_utc(date_from).date()
    if isinstance(date_to, datetime):
        date_to = as_utc(date_to).date()
    months = []
    current = _month_start(date_from)
    while current <= date_to:
        months.append(current)
        current = _next_month(current)
    return months


def _in_month(value, month: date) -> bool:
    if value is None:
        return False
    value = as_utc(value)
    return value.year == month.year and value.month == month.month


def monthly_trend(requests: Iterable, date_from: date, date_to: date) -> list[dict]:
    """
    Chronological [{"month", "label", "created", "approved", "rejected"}].

    created counts by created_at; approved / rejected by completed_at.
    """
    requests = list(requests)
    series = []
    for month in month_range(date_from, date_to):
        series.append({
            "month": month.strftime("%Y-%m"),
            "label": month.strftime("%b %Y"),
            "created": sum(1 for r in requests if _in_month(r.created_at, month)),
            "approved": sum(
                1 for r in requests if r.status == "approved" and _in_month(r.completed_at, month)
            ),
            "rejected": sum(
                1 for r in requests if r.status == "rejected" and _in_month(r.completed_at, month)
            ),
        })
    return series


def approval_time_trend(requests: Iterable, date_from: date, date_to: date) -> list[dict]:
    """Chronological [{"month", "label", "avg_days"}] over requests approved in each month."""
    requests = list(requests)
    series = []
    for month in month_range(date_from, date_to):
        approved = [r for r in requests if r.status == "approved" and _in_month(r.completed_at, month)]
        series.append({
            "month": month.strftime("%Y-%m"),
            "label": month.strftime("%b %Y"),
            "avg_days": average_approval_days(approved),
        })
    return series


# ═══════════════════════════════════════════════════════════════════════════
#  Assembled reports
# ═══════════════════════════════════════════════════════════════════════════

def summarize(requests: list, tasks: list, today: date) -> dict:
    task_stats = compute_task_stats(tasks, today)
    statuses = Counter(r.status for r in requests)
    return {
        "total": len(requests),
        "approved": statuses.get("approved", 0),
        "rejected": statuses.get("rejected", 0),
        "implemented": statuses.get("implemented", 0),
        "pending": sum(statuses.get(s, 0) for s in OPEN_STATUSES),
        "overdue_requests": overdue_request_count(requests, today),
        "average_approval_days": average_approval_days(requests),
        "total_tasks": task_stats["total"],
        "completed_tasks": task_stats["completed"],
        "overdue_tasks": task_stats["overdue"],
        "task_completion_rate": task_completion_rate(tasks),
    }


def build_report(date_from: date, date_to: date, now: datetime | None = None) -> dict:
    """Windowed report for the reports page."""
    now = as_utc(now) if now else datetime.now(timezone.utc)
    if date_from > date_to:
        date_from, date_to = date_to, date_from
    requests = fetch_requests(date_from, date_to)
    tasks = fetch_tasks(date_from, date_to)
    today = now.date()

    return {
        "window": {"from": date_from.isoformat(), "to": date_to.isoformat()},
        "summary": summarize(requests, tasks, today),
        "by_status": status_histogram(requests),
        "by_priority": priority_histogram(requests),
        "by_change_type": change_type_histogram(requests),
        "by_risk_tier": risk_tier_histogram(requests),
        "by_facility": facility_distribution(requests),
        "risk_distribution": risk_distribution(requests),
        "trend": monthly_trend(requests, date_from, date_to),
        "approval_time_trend": approval_time_trend(requests, date_from, date_to),
        "task_stats": compute_task_stats(tasks, today),
    }


def build_dashboard_stats(now: datetime | None = None) -> dict:
    """Unwindowed headline numbers for the dashboard."""
    now = as_utc(now) if now else datetime.now(timezone.utc)
    today = now.date()
    requests = fetch_requests()
    tasks = fetch_tasks()

    this_month = _month_start(today)
    last_month = _month_start(this_month - timedelta(days=1))
    task_stats = compute_task_stats(tasks, today)
    task_stats["completion_rate"] = task_completion_rate(tasks)

    return {
        "total": len(requests),
        "by_status": status_histogram(requests),
        "by_priority": priority_histogram(requests),
        "by_change_type": change_type_histogram(requests),
        "average_approval_days": average_approval_days(requests),
        "overdue_count": overdue_request_count(requests, today),
        "this_month_count": sum(1 for r in requests if _in_month(r.created_at, this_month)),
        "last_month_count": sum(1 for r in requests if _in_month(r.created_at, last_month)),
        "task_stats": task_stats,
    }

