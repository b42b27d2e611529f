"""
MOC Studio
History domain model.

Models:
    - HistoryEvent: immutable, append-only trail for MOC lifecycle events.
"""

import uuid
from datetime import datetime, timezone

from mocstudio.models import db


# ── Constants ────────────────────────────────────────────────────────────────

HISTORY_ACTIONS = {
    "created",
    "updated",
    "submitted",
    "status_changed",
    "approved",
    "rejected",
    "changes_requested",
    "revised",
    "implemented",
    "decision_recorded",
    "comment_added",
    "task_created",
    "task_updated",
    "task_deleted",
}


class HistoryEvent(db.Model):
    """
    One row per lifecycle event on an MOC request.

    ``details`` carries the event payload: from/to status for transitions,
    {field: {old, new}} for edits, the decision and comment for approver
    responses.
    """

    __tablename__ = "moc_history"
    __table_args__ = (
        db.Index("idx_moc_history_request", "moc_request_id", "created_at"),
        db.Index("idx_moc_history_action", "action"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    moc_request_id = db.Column(
        db.String(36), db.ForeignKey("moc_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True, comment="NULL for system-generated events",
    )
    action = db.Column(db.String(40), nullable=False, comment="created | submitted | approved | …")
    details = db.Column(db.JSON, default=dict)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    moc_request = db.relationship("MOCRequest", back_populates="history")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "moc_request_id": self.moc_request_id,
            "user_id": self.user_id,
            "action": self.action,
            "details": self.details or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<HistoryEvent {self.action} on {self.moc_request_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_history(
    *,
    moc_request_id: str,
    action: str,
    user_id: str | None = None,
    details: dict | None = None,
) -> HistoryEvent:
    """
    Append a single history row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) HistoryEvent instance.
    """
    if action not in HISTORY_ACTIONS:
        raise ValueError(f"Unknown history action: {action}")

    event = HistoryEvent(
        moc_request_id=moc_request_id,
        user_id=user_id,
        action=action,
        details=details or {},
    )
    db.session.add(event)
    db.session.flush()
    return event
