"""
MOC Studio
Task domain model.

Models:
    - MOCTask: follow-up work item attached to an MOC request
"""

import uuid
from datetime import date, datetime, timezone

from mocstudio.models import db
from mocstudio.utils.helpers import utc_today


# ── Constants ────────────────────────────────────────────────────────────────

TASK_STATUSES = {"pending", "in_progress", "completed", "cancelled"}
TASK_PRIORITIES = {"low", "medium", "high", "critical"}
CLOSED_TASK_STATUSES = {"completed", "cancelled"}


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class MOCTask(db.Model):
    """
    Follow-up task for an MOC request.

    ``completed_at`` is set iff status is completed; the task service keeps
    the two in step on every update.
    """

    __tablename__ = "moc_tasks"
    __table_args__ = (
        db.Index("idx_moc_task_assignee", "assigned_to"),
        db.Index("idx_moc_task_due", "due_date"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    moc_request_id = db.Column(
        db.String(36), db.ForeignKey("moc_requests.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    assigned_to = db.Column(db.String(36), db.ForeignKey("profiles.id"), nullable=True)
    created_by = db.Column(db.String(36), db.ForeignKey("profiles.id"), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="pending")
    priority = db.Column(db.String(20), nullable=False, default="medium")
    due_date = db.Column(db.Date, nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    moc_request = db.relationship("MOCRequest", back_populates="tasks")
    assignee = db.relationship("Profile", foreign_keys=[assigned_to])

    def is_overdue(self, today: date | None = None) -> bool:
        if self.status in CLOSED_TASK_STATUSES or not self.due_date:
            return False
        return self.due_date <= (today or utc_today())

    def to_dict(self):
        return {
            "id": self.id,
            "moc_request_id": self.moc_request_id,
            "title": self.title,
            "description": self.description,
            "assigned_to": self.assigned_to,
            "assignee": self.assignee.to_dict() if self.assignee else None,
            "created_by": self.created_by,
            "status": self.status,
            "priority": self.priority,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "is_overdue": self.is_overdue(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<MOCTask {self.id}: {self.title[:40]} ({self.status})>"
