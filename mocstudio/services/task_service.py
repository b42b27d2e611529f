"""
MOC Studio
Task Service: follow-up action items on MOC requests.

Tasks are plain work trackers: any status may follow any other. The only
rule is that ``completed_at`` tracks the completed status exactly.

Transaction policy: methods use flush(), never commit().
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import date, datetime, timezone
from typing import Iterable

from mocstudio.core.exceptions import NotFoundError, ValidationError
from mocstudio.models import db
from mocstudio.models.auth import Profile
from mocstudio.models.history import write_history
from mocstudio.models.task import TASK_PRIORITIES, TASK_STATUSES, MOCTask
from mocstudio.services.moc_lifecycle import get_request
from mocstudio.services.notification import NotificationService
from mocstudio.services.permission import check_permission
from mocstudio.utils.helpers import parse_date, utc_today

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = ("title", "description", "status", "priority", "assigned_to", "due_date")


def _validate(field: str, value):
    if field == "title":
        value = (value or "").strip()
        if not value:
            raise ValidationError("title is required", details={"title": "required"})
        return value
    if field == "description":
        return (value or "").strip()
    if field == "status":
        if value not in TASK_STATUSES:
            raise ValidationError(f"Invalid status. Must be one of: {sorted(TASK_STATUSES)}",
                                  details={"status": "invalid"})
        return value
    if field == "priority":
        if value not in TASK_PRIORITIES:
            raise ValidationError(f"Invalid priority. Must be one of: {sorted(TASK_PRIORITIES)}",
                                  details={"priority": "invalid"})
        return value
    if field == "assigned_to":
        if value and not db.session.get(Profile, value):
            raise ValidationError("Unknown assignee", details={"assigned_to": "not found"})
        return value or None
    if field == "due_date":
        if value in (None, ""):
            return None
        parsed = parse_date(value)
        if parsed is None:
            raise ValidationError("Invalid due_date", details={"due_date": "invalid"})
        return parsed
    return value


def _set_status(task: MOCTask, status: str) -> None:
    task.status = status
    if status == "completed":
        task.completed_at = task.completed_at or datetime.now(timezone.utc)
    else:
        task.completed_at = None


def _get_task(task_id: str) -> MOCTask:
    task = db.session.get(MOCTask, task_id)
    if not task:
        raise NotFoundError(resource="MOCTask", resource_id=task_id)
    return task


def _notify_assignee(task: MOCTask, actor_id: str) -> None:
    actor = db.session.get(Profile, actor_id)
    NotificationService.notify(
        "task_assigned", moc=task.moc_request, task=task, actor_id=actor_id,
        actor_name=actor.display_name if actor else None,
    )


def create_task(request_id: str, data: dict, user_id: str) -> MOCTask:
    """Create a task on a request; defaults to pending / medium."""
    check_permission(user_id, "task_manage")
    moc = get_request(request_id)
    data = data or {}

    task = MOCTask(
        moc_request_id=moc.id,
        title=_validate("title", data.get("title")),
        description=_validate("description", data.get("description")),
        priority=_validate("priority", data.get("priority") or "medium"),
        assigned_to=_validate("assigned_to", data.get("assigned_to")),
        due_date=_validate("due_date", data.get("due_date")),
        created_by=user_id,
    )
    _set_status(task, _validate("status", data.get("status") or "pending"))
    db.session.add(task)
    db.session.flush()

    write_history(
        moc_request_id=moc.id,
        action="task_created",
        user_id=user_id,
        details={"task_id": task.id, "title": task.title, "assigned_to": task.assigned_to},
    )
    if task.assigned_to:
        _notify_assignee(task, user_id)
    return task


def update_task(task_id: str, data: dict, user_id: str) -> MOCTask:
    """Update status / assignee / priority / due date / text fields."""
    check_permission(user_id, "task_manage")
    task = _get_task(task_id)
    data = data or {}

    changes = {}
    previous_assignee = task.assigned_to
    for field in _UPDATABLE_FIELDS:
        if field not in data:
            continue
        new = _validate(field, data[field])
        old = getattr(task, field)
        if old == new:
            continue
        changes[field] = {
            "old": old.isoformat() if isinstance(old, date) else old,
            "new": new.isoformat() if isinstance(new, date) else new,
        }
        if field == "status":
            _set_status(task, new)
        else:
            setattr(task, field, new)
    db.session.flush()

    if changes:
        write_history(
            moc_request_id=task.moc_request_id,
            action="task_updated",
            user_id=user_id,
            details={"task_id": task.id, "changes": changes},
        )
    if task.assigned_to and task.assigned_to != previous_assignee:
        _notify_assignee(task, user_id)
    return task


def delete_task(task_id: str, user_id: str) -> None:
    check_permission(user_id, "task_manage")
    task = _get_task(task_id)
    write_history(
        moc_request_id=task.moc_request_id,
        action="task_deleted",
        user_id=user_id,
        details={"task_id": task.id, "title": task.title},
    )
    db.session.delete(task)
    db.session.flush()


def list_tasks(request_id: str) -> list[MOCTask]:
    moc = get_request(request_id)
    return moc.tasks.order_by(MOCTask.due_date.is_(None), MOCTask.due_date.asc(), MOCTask.created_at.asc()).all()


def compute_task_stats(tasks: Iterable[MOCTask], today: date | None = None) -> dict:
    """
    Derived stats for a set of tasks, recomputed on every read.

    Returns:
        {"total", "pending", "in_progress", "completed", "cancelled", "overdue"}
    """
    today = today or utc_today()
    tasks = list(tasks)
    counts = Counter(t.status for t in tasks)
    stats = {"total": len(tasks)}
    for status in ("pending", "in_progress", "completed", "cancelled"):
        stats[status] = counts.get(status, 0)
    stats["overdue"] = sum(1 for t in tasks if t.is_overdue(today))
    return stats
