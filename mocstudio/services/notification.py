"""
MOC Studio
Notification policy and delivery.

``plan_notifications`` decides who must hear about a lifecycle event and
with what payload. It is pure: it reads attributes off the request/task
it is given and returns ``NotificationRequest`` values. The actor is never
notified about their own action and each recipient appears at most once
per event (the first rule that names them wins).

``NotificationService`` persists the planned requests as in-app
notifications and hands each one to the email delivery collaborator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable

from flask import current_app

from mocstudio.models import db
from mocstudio.models.auth import Profile
from mocstudio.models.notification import Notification
from mocstudio.services.email_service import EmailService

logger = logging.getLogger(__name__)


NOTIFICATION_EVENTS = {
    "submitted",
    "revised",
    "status_changed",
    "approved",
    "rejected",
    "changes_requested",
    "implemented",
    "comment_added",
    "task_assigned",
    "task_due",
    "review_overdue",
}

STATUS_LABELS = {
    "draft": "Draft",
    "submitted": "Submitted",
    "under_review": "Under Review",
    "approved": "Approved",
    "rejected": "Rejected",
    "implemented": "Implemented",
}


@dataclass(frozen=True)
class NotificationRequest:
    """One notification obligation: who, which category, about what."""
    recipient: str
    category: str
    reference_type: str
    reference_id: str
    title: str
    message: str = ""
    type: str = "info"
    template_data: dict = field(default_factory=dict, compare=False, hash=False)

    def to_dict(self) -> dict:
        return {
            "recipient": self.recipient,
            "category": self.category,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "template_data": dict(self.template_data),
        }


# ═══════════════════════════════════════════════════════════════════════════
#  Policy
# ═══════════════════════════════════════════════════════════════════════════

def _moc_data(moc, base_url: str = "") -> dict:
    return {
        "moc_id": moc.id,
        "moc_number": moc.request_number,
        "moc_title": moc.title,
        "action_url": f"{base_url.rstrip('/')}/moc/{moc.id}" if base_url else "",
    }


def _label(status: str | None) -> str:
    return STATUS_LABELS.get(status, status or "Unknown")


def plan_notifications(
    event: str,
    *,
    moc=None,
    actor_id: str | None = None,
    approvers: Iterable[str] = (),
    task=None,
    old_status: str | None = None,
    new_status: str | None = None,
    comment: str | None = None,
    actor_name: str | None = None,
    base_url: str = "",
) -> list[NotificationRequest]:
    """
    Map a lifecycle event to the notifications it obliges.

    Args:
        event: One of NOTIFICATION_EVENTS.
        moc: The affected request (needs id, request_number, title,
            created_by, notify_stakeholders).
        actor_id: User who caused the event; never notified.
        approvers: User ids of the request's approvers. For decision outcomes,
            only the reviewers who had not yet responded.
        task: The affected task for task_assigned / task_due.
        old_status, new_status: For status-change events.
        comment: Comment body for comment_added.
        actor_name: Display name of the actor, used in message text.

    Returns:
        De-duplicated list of NotificationRequest.
    """
    if event not in NOTIFICATION_EVENTS:
        raise ValueError(f"Unknown notification event: {event}")

    planned: list[NotificationRequest] = []
    seen: set[str] = set()

    def add(recipients, **kwargs):
        for recipient in recipients:
            if not recipient or recipient == actor_id or recipient in seen:
                continue
            seen.add(recipient)
            planned.append(NotificationRequest(recipient=recipient, **kwargs))

    approvers = list(approvers)

    # ── Task events ──────────────────────────────────────────────────────
    if event in ("task_assigned", "task_due"):
        data = _moc_data(moc, base_url) if moc is not None else {}
        data.update({
            "task_id": task.id,
            "task_title": task.title,
            "due_date": task.due_date.isoformat() if task.due_date else "",
            "assigned_by": actor_name or "",
        })
        if event == "task_assigned":
            add([task.assigned_to], category="task_assigned",
                reference_type="moc_task", reference_id=task.id,
                title=f"New task assigned: {task.title}",
                message=f"You have been assigned a task on {data.get('moc_number', 'an MOC request')}.",
                type="info", template_data=data)
        else:
            add([task.assigned_to], category="task_due",
                reference_type="moc_task", reference_id=task.id,
                title=f"Task due soon: {task.title}",
                message=f"Due date: {data['due_date']}.",
                type="warning", template_data=data)
        return planned

    owner = moc.created_by
    stakeholders = list(moc.notify_stakeholders or [])
    data = _moc_data(moc, base_url)
    ref = {"reference_type": "moc_request", "reference_id": moc.id}

    # ── Review requests ──────────────────────────────────────────────────
    if event in ("submitted", "revised"):
        verb = "submitted" if event == "submitted" else "revised and resubmitted"
        add(approvers, category="moc_approval", **ref,
            title=f"Approval requested: {moc.request_number}",
            message=f"{moc.title} was {verb} and awaits your decision.",
            type="info", template_data=data)
        status_data = dict(data, old_status=_label(old_status or "draft"),
                           new_status=_label(new_status or "submitted"))
        add(stakeholders, category="moc_status", **ref,
            title=f"{moc.request_number} {verb}",
            message=f"{moc.title} is now {_label(new_status or 'submitted')}.",
            type="info", template_data=status_data)
        return planned

    # ── Comments ─────────────────────────────────────────────────────────
    if event == "comment_added":
        preview = (comment or "")[:140]
        add([owner, *approvers, *stakeholders], category="comment", **ref,
            title=f"New comment on {moc.request_number}",
            message=preview,
            type="info",
            template_data=dict(data, comment_author=actor_name or "Someone",
                               comment_preview=preview))
        return planned

    # ── Deadline sweep ───────────────────────────────────────────────────
    if event == "review_overdue":
        deadline = moc.review_deadline.isoformat() if moc.review_deadline else ""
        add([owner], category="system", **ref,
            title=f"Review overdue: {moc.request_number}",
            message=f"{moc.title} passed its review deadline ({deadline}) without a decision.",
            type="warning", template_data=dict(data, review_deadline=deadline))
        return planned

    # ── Status changes ───────────────────────────────────────────────────
    status_data = dict(data, old_status=_label(old_status), new_status=_label(new_status or moc.status))
    if event == "approved":
        add([owner, *stakeholders, *approvers], category="moc_status", **ref,
            title=f"{moc.request_number} approved",
            message=f"{moc.title} was approved by all reviewers.",
            type="success", template_data=status_data)
    elif event == "rejected":
        add([owner, *stakeholders, *approvers], category="moc_status", **ref,
            title=f"{moc.request_number} rejected",
            message=f"{moc.title} was rejected.",
            type="error", template_data=status_data)
    elif event == "changes_requested":
        add([owner], category="moc_status", **ref,
            title=f"Changes requested on {moc.request_number}",
            message=f"{moc.title} was returned for revision.",
            type="warning", template_data=status_data)
        add([*approvers, *stakeholders], category="moc_status", **ref,
            title=f"Changes requested on {moc.request_number}",
            message=f"{moc.title} was returned to its owner for revision.",
            type="info", template_data=status_data)
    elif event == "implemented":
        add([owner, *stakeholders, *approvers], category="moc_status", **ref,
            title=f"{moc.request_number} implemented",
            message=f"{moc.title} has been implemented.",
            type="success", template_data=status_data)
    else:  # status_changed
        add([owner, *stakeholders, *approvers], category="moc_status", **ref,
            title=f"{moc.request_number} is now {_label(new_status or moc.status)}",
            message=f"Status changed from {_label(old_status)} to {_label(new_status or moc.status)}.",
            type="info", template_data=status_data)
    return planned


# ═══════════════════════════════════════════════════════════════════════════
#  Delivery
# ═══════════════════════════════════════════════════════════════════════════

class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create / deliver ──────────────────────────────────────────────────

    @staticmethod
    def create(*, user_id, title, message="", category="system", type="info",
               reference_type=None, reference_id=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (flushed, not committed).
        """
        notif = Notification(
            user_id=user_id,
            title=title,
            message=message,
            category=category,
            type=type,
            reference_type=reference_type,
            reference_id=reference_id,
        )
        db.session.add(notif)
        db.session.flush()
        return notif

    @classmethod
    def deliver(cls, requests: Iterable[NotificationRequest], *, send_email: bool = True) -> list[Notification]:
        """
        Persist each planned request as an in-app notification and pass it
        to the email collaborator. Delivery errors propagate so the
        surrounding transaction rolls back.
        """
        created = []
        for req in requests:
            profile = db.session.get(Profile, req.recipient)
            if profile is None:
                logger.warning("Notification recipient %s not found, skipping", req.recipient)
                continue
            notif = cls.create(
                user_id=req.recipient,
                title=req.title,
                message=req.message,
                category=req.category,
                type=req.type,
                reference_type=req.reference_type,
                reference_id=req.reference_id,
            )
            if send_email and profile.is_active and profile.email:
                EmailService.send_from_template(
                    to_email=profile.email,
                    to_name=profile.display_name,
                    template_name=req.category,
                    context=dict(req.template_data, title=req.title, message=req.message),
                )
                notif.email_sent = True
            created.append(notif)
        if created:
            logger.info(
                "Delivered %d notification(s)", len(created),
                extra={"event_type": "notification.delivered"},
            )
        return created

    @classmethod
    def notify(cls, event: str, **kwargs) -> list[Notification]:
        """Plan and deliver in one step."""
        kwargs.setdefault("base_url", current_app.config.get("APP_BASE_URL", ""))
        return cls.deliver(plan_notifications(event, **kwargs))

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(user_id, unread_only=False, category=None, limit=50, offset=0):
        """Retrieve notifications for a recipient, newest first."""
        q = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        if category:
            q = q.filter_by(category=category)
        total = q.count()
        items = q.order_by(Notification.created_at.desc()).offset(offset).limit(limit).all()
        return items, total

    @staticmethod
    def unread_count(user_id):
        """Return count of unread notifications."""
        return Notification.query.filter_by(user_id=user_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user_id):
        """Mark a single notification as read. Only the recipient may do so."""
        notif = db.session.get(Notification, notification_id)
        if notif and notif.user_id == user_id:
            notif.mark_read()
            db.session.flush()
            return notif
        return None

    @staticmethod
    def mark_all_read(user_id):
        """Mark all notifications for a recipient as read."""
        now = datetime.now(timezone.utc)
        count = (
            Notification.query
            .filter_by(user_id=user_id, is_read=False)
            .update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        )
        db.session.flush()
        return count
