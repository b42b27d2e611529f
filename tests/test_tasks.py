"""
Task tracker tests: completed_at bookkeeping, overdue derivation, stats, API.
"""

from datetime import date, timedelta

import pytest

from mocstudio.core.exceptions import NotFoundError, ValidationError
from mocstudio.models import db
from mocstudio.models.notification import Notification
from mocstudio.models.task import MOCTask
from mocstudio.services.task_service import (
    compute_task_stats,
    create_task,
    delete_task,
    list_tasks,
    update_task,
)
from mocstudio.utils.helpers import utc_today


@pytest.fixture()
def technician(make_profile):
    return make_profile("tech@plant.test", role="maintenance_technician", full_name="Tom Tech")


class TestCompletedAt:
    def test_completed_sets_timestamp(self, draft, owner):
        task = create_task(draft.id, {"title": "Update P&ID"}, owner.id)
        assert task.status == "pending"
        assert task.priority == "medium"
        assert task.completed_at is None

        update_task(task.id, {"status": "completed"}, owner.id)
        assert task.completed_at is not None

    def test_reopen_clears_timestamp(self, draft, owner):
        task = create_task(draft.id, {"title": "Train operators", "status": "completed"}, owner.id)
        assert task.completed_at is not None

        update_task(task.id, {"status": "in_progress"}, owner.id)
        assert task.completed_at is None

        update_task(task.id, {"status": "completed"}, owner.id)
        assert task.completed_at is not None

    def test_any_status_may_follow_any_other(self, draft, owner):
        task = create_task(draft.id, {"title": "Pre-startup review", "status": "cancelled"}, owner.id)
        update_task(task.id, {"status": "pending"}, owner.id)
        assert task.status == "pending"


class TestOverdue:
    def test_overdue_until_completed(self, draft, owner):
        yesterday = utc_today() - timedelta(days=1)
        task = create_task(
            draft.id,
            {"title": "Leak test", "status": "in_progress", "due_date": yesterday.isoformat()},
            owner.id,
        )
        assert task.is_overdue() is True

        update_task(task.id, {"status": "completed"}, owner.id)
        assert task.is_overdue() is False

    def test_overdue_from_the_due_date(self):
        task = MOCTask(title="t", status="in_progress", due_date=date(2024, 3, 10))
        assert task.is_overdue(date(2024, 3, 9)) is False
        assert task.is_overdue(date(2024, 3, 10)) is True
        assert task.is_overdue(date(2024, 3, 11)) is True

    def test_default_today_is_utc(self):
        task = MOCTask(title="t", status="pending", due_date=utc_today())
        assert task.is_overdue() is True
        assert task.to_dict()["is_overdue"] is True

        task.due_date = utc_today() + timedelta(days=1)
        assert task.is_overdue() is False

    def test_cancelled_is_never_overdue(self):
        task = MOCTask(title="t", status="cancelled", due_date=date(2024, 1, 1))
        assert task.is_overdue(date(2024, 6, 1)) is False

    def test_no_due_date_is_never_overdue(self):
        assert MOCTask(title="t", status="pending").is_overdue() is False


class TestStats:
    def test_compute_task_stats(self):
        today = date(2024, 5, 1)
        tasks = [
            MOCTask(title="a", status="pending", due_date=date(2024, 4, 30)),
            MOCTask(title="b", status="in_progress", due_date=date(2024, 5, 2)),
            MOCTask(title="c", status="completed", due_date=date(2024, 4, 1)),
            MOCTask(title="d", status="cancelled"),
        ]
        assert compute_task_stats(tasks, today) == {
            "total": 4,
            "pending": 1,
            "in_progress": 1,
            "completed": 1,
            "cancelled": 1,
            "overdue": 1,
        }

    def test_empty(self):
        stats = compute_task_stats([], date(2024, 1, 1))
        assert stats["total"] == 0
        assert stats["overdue"] == 0


class TestTaskService:
    def test_assignment_notifies_assignee(self, draft, owner, technician):
        create_task(draft.id, {"title": "Replace gasket", "assigned_to": technician.id}, owner.id)
        notes = Notification.query.filter_by(user_id=technician.id, category="task_assigned").all()
        assert len(notes) == 1
        assert notes[0].reference_type == "moc_task"

    def test_reassignment_notifies_new_assignee(self, draft, owner, technician, make_profile):
        task = create_task(draft.id, {"title": "Replace gasket", "assigned_to": technician.id}, owner.id)
        other = make_profile(role="maintenance_technician")
        update_task(task.id, {"assigned_to": other.id}, owner.id)
        assert Notification.query.filter_by(user_id=other.id, category="task_assigned").count() == 1

    def test_self_assignment_not_notified(self, draft, technician):
        create_task(draft.id, {"title": "Own task", "assigned_to": technician.id}, technician.id)
        assert Notification.query.filter_by(user_id=technician.id).count() == 0

    def test_invalid_status(self, draft, owner):
        with pytest.raises(ValidationError):
            create_task(draft.id, {"title": "x", "status": "done"}, owner.id)

    def test_unknown_assignee(self, draft, owner):
        with pytest.raises(ValidationError):
            create_task(draft.id, {"title": "x", "assigned_to": "ghost"}, owner.id)

    def test_list_orders_by_due_date(self, draft, owner):
        create_task(draft.id, {"title": "later", "due_date": "2030-02-01"}, owner.id)
        create_task(draft.id, {"title": "no date"}, owner.id)
        create_task(draft.id, {"title": "sooner", "due_date": "2030-01-01"}, owner.id)
        db.session.commit()
        assert [t.title for t in list_tasks(draft.id)] == ["sooner", "later", "no date"]

    def test_delete(self, draft, owner):
        task = create_task(draft.id, {"title": "temp"}, owner.id)
        task_id = task.id
        delete_task(task_id, owner.id)
        db.session.commit()
        assert db.session.get(MOCTask, task_id) is None
        with pytest.raises(NotFoundError):
            update_task(task_id, {"status": "completed"}, owner.id)


class TestTaskAPI:
    def test_crud(self, client, draft, owner, auth):
        res = client.post(
            f"/api/v1/moc-requests/{draft.id}/tasks",
            json={"title": "Update SOP-12", "priority": "high"},
            headers=auth(owner),
        )
        assert res.status_code == 201
        task = res.get_json()
        assert task["status"] == "pending"

        res = client.put(f"/api/v1/tasks/{task['id']}", json={"status": "completed"}, headers=auth(owner))
        assert res.status_code == 200
        assert res.get_json()["completed_at"] is not None

        res = client.get(f"/api/v1/moc-requests/{draft.id}/tasks", headers=auth(owner))
        body = res.get_json()
        assert body["total"] == 1
        assert body["stats"]["completed"] == 1

        res = client.delete(f"/api/v1/tasks/{task['id']}", headers=auth(owner))
        assert res.status_code == 200

    def test_create_without_identity(self, client, draft):
        res = client.post(f"/api/v1/moc-requests/{draft.id}/tasks", json={"title": "x"})
        assert res.status_code == 403

    def test_missing_request(self, client, owner, auth):
        res = client.post("/api/v1/moc-requests/nope/tasks", json={"title": "x"}, headers=auth(owner))
        assert res.status_code == 404
