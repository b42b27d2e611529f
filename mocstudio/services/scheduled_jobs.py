"""
MOC Studio
Scheduled Jobs.

Concrete sweeps triggered by an external cron through SchedulerService.

Jobs:
    - task_due_reminder: reminds assignees of open tasks due today or tomorrow
    - overdue_review_scanner: warns owners of requests past their review deadline

Review deadlines never change a request's status; the scanner only notifies.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any

from mocstudio.models.moc import TERMINAL_STATUSES, MOCRequest
from mocstudio.models.task import CLOSED_TASK_STATUSES, MOCTask
from mocstudio.services.notification import NotificationService
from mocstudio.services.scheduler_service import register_job
from mocstudio.utils.helpers import utc_today

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Task Due Reminder
# ═══════════════════════════════════════════════════════════════════════════

@register_job("task_due_reminder")
def send_task_due_reminders(app, today: date | None = None) -> dict[str, Any]:
    """Notify assignees of open tasks due today or tomorrow."""
    today = today or utc_today()
    tomorrow = today + timedelta(days=1)

    tasks = (
        MOCTask.query
        .filter(
            MOCTask.due_date >= today,
            MOCTask.due_date <= tomorrow,
            MOCTask.status.notin_(CLOSED_TASK_STATUSES),
            MOCTask.assigned_to.isnot(None),
        )
        .all()
    )

    results = {"tasks_due": len(tasks), "notifications_created": 0}
    for task in tasks:
        created = NotificationService.notify("task_due", moc=task.moc_request, task=task)
        results["notifications_created"] += len(created)

    logger.info("Task due reminder: %s", results)
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Overdue Review Scanner
# ═══════════════════════════════════════════════════════════════════════════

@register_job("overdue_review_scanner")
def scan_overdue_reviews(app, today: date | None = None) -> dict[str, Any]:
    """Warn owners of requests whose review deadline has passed without a decision."""
    today = today or utc_today()

    requests = (
        MOCRequest.query
        .filter(
            MOCRequest.review_deadline <= today,
            MOCRequest.status.notin_(TERMINAL_STATUSES),
        )
        .all()
    )

    results = {"requests_overdue": len(requests), "notifications_created": 0}
    for moc in requests:
        created = NotificationService.notify("review_overdue", moc=moc)
        results["notifications_created"] += len(created)

    logger.info("Overdue review scanner: %s", results)
    return results
