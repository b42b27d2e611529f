"""
MOC Studio
MOC Lifecycle Service.

Manages MOC request status transitions with:
  - Transition validation (MOC_TRANSITIONS)
  - Owner / role checks
  - Submission guards (required fields, risk range, approvers)
  - Approver decisions and consensus re-evaluation under a row lock
  - History trail via write_history
  - Notification obligations via NotificationService

Transaction policy: functions use flush(), never commit(). The calling
blueprint commits once per HTTP action so a transition and its history
events land together.

Usage:
    from mocstudio.services.moc_lifecycle import record_decision

    result = record_decision(
        approver_id="abc",
        user_id="user-1",
        decision="approved",
    )
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime, timezone

from flask import current_app
from sqlalchemy.orm.exc import StaleDataError

from mocstudio.core.exceptions import (
    ConcurrentModification,
    InvalidTransition,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from mocstudio.models import db
from mocstudio.models.auth import APP_ROLES, Profile
from mocstudio.models.history import HistoryEvent, write_history
from mocstudio.models.moc import (
    CHANGE_TYPES,
    DECISION_STATUSES,
    EDITABLE_FIELDS,
    MOC_PRIORITIES,
    MOC_TRANSITIONS,
    Approver,
    Facility,
    MOCComment,
    MOCRequest,
    next_request_number,
)
from mocstudio.services.approval_consensus import evaluate_consensus, require_decision_comment
from mocstudio.services.notification import NotificationService
from mocstudio.services.permission import check_permission, get_profile, require_role
from mocstudio.services.risk_scoring import validate_risk_value
from mocstudio.utils.helpers import parse_date

logger = logging.getLogger(__name__)

_DATE_FIELDS = ("target_implementation_date", "review_deadline")
_LIST_FIELDS = ("affected_systems", "affected_areas")
_REQUIRED_ON_SUBMIT = ("title", "facility_id", "description", "justification")

# consensus outcome → (transition action, history action)
_CONSENSUS_ACTIONS = {
    "approved": ("approve", "approved"),
    "rejected": ("reject", "rejected"),
    "changes_requested": ("request_changes", "changes_requested"),
}


def _utcnow():
    return datetime.now(timezone.utc)


@contextmanager
def _version_guard(moc_id):
    """Translate an optimistic-lock failure on flush into ConcurrentModification."""
    try:
        yield
    except StaleDataError as exc:
        raise ConcurrentModification(resource="MOCRequest", resource_id=moc_id) from exc


def _log_event(message, moc, event_type, user_id=None, **fields):
    logger.info(
        message, moc.request_number, *fields.values(),
        extra={
            "moc_id": moc.id,
            "request_number": moc.request_number,
            "user_id": user_id,
            "event_type": event_type,
        },
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Lookups
# ═══════════════════════════════════════════════════════════════════════════

def get_request(request_id: str, *, lock: bool = False) -> MOCRequest:
    """Load a request, optionally under SELECT … FOR UPDATE."""
    q = MOCRequest.query.filter_by(id=request_id)
    if lock:
        q = q.with_for_update()
    moc = q.first()
    if not moc:
        raise NotFoundError(resource="MOCRequest", resource_id=request_id)
    return moc


def _require_owner(moc: MOCRequest, user_id: str, action: str) -> None:
    if moc.created_by != user_id:
        raise PermissionDenied(user_id, action, "only the request owner may do this")


def _approver_user_ids(moc: MOCRequest) -> list[str]:
    return [a.user_id for a in moc.approvers]


# ═══════════════════════════════════════════════════════════════════════════
#  Transition table
# ═══════════════════════════════════════════════════════════════════════════

def validate_transition(moc: MOCRequest, action: str) -> dict:
    """
    Validate whether an action is valid for the current state.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None}
    """
    rule = MOC_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": moc.status, "to": None,
                "reason": f"Unknown action: {action}"}

    if moc.status not in rule["from"]:
        return {"valid": False, "from": moc.status, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{moc.status}'"}

    return {"valid": True, "from": moc.status, "to": rule["to"], "reason": None}


def get_available_transitions(moc: MOCRequest) -> list[dict]:
    """Return the actions valid from the request's current status."""
    return [
        {"action": action, "to": rule["to"]}
        for action, rule in MOC_TRANSITIONS.items()
        if moc.status in rule["from"]
    ]


def _apply_transition(moc: MOCRequest, action: str, user_id: str | None, details: dict | None = None) -> tuple[str, str]:
    """Move ``moc`` along one edge of MOC_TRANSITIONS and record it."""
    validation = validate_transition(moc, action)
    if not validation["valid"]:
        raise InvalidTransition(moc.status, validation["to"] or action, validation["reason"])

    now = _utcnow()
    previous = moc.status
    moc.status = validation["to"]

    if action == "submit" and moc.submitted_at is None:
        moc.submitted_at = now
    elif action in ("approve", "reject", "implement") and moc.completed_at is None:
        moc.completed_at = now

    write_history(
        moc_request_id=moc.id,
        action="status_changed",
        user_id=user_id,
        details={"action": action, "from": previous, "to": moc.status, **(details or {})},
    )
    _log_event("MOC %s: %s → %s", moc, "moc.transition", user_id,
               previous=previous, to=moc.status)
    return previous, moc.status


# ═══════════════════════════════════════════════════════════════════════════
#  Field handling
# ═══════════════════════════════════════════════════════════════════════════

def _clean_id_list(values, field_name: str) -> list[str]:
    if values is None:
        return []
    if not isinstance(values, (list, tuple)):
        raise ValidationError(f"{field_name} must be a list", details={field_name: "invalid"})
    seen = []
    for value in values:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{field_name} must contain non-empty strings",
                                  details={field_name: "invalid"})
        if value.strip() not in seen:
            seen.append(value.strip())
    return seen


def _coerce_field(field: str, value):
    if field == "title":
        value = (value or "").strip()
        if not value:
            raise ValidationError("title is required", details={"title": "required"})
        return value
    if field in ("description", "justification", "mitigation_measures",
                 "estimated_duration", "risk_category"):
        return (value or "").strip()
    if field == "facility_id":
        if value and not db.session.get(Facility, value):
            raise ValidationError("Unknown facility", details={"facility_id": "not found"})
        return value or None
    if field == "change_type":
        if value and value not in CHANGE_TYPES:
            raise ValidationError(f"Invalid change_type. Must be one of: {sorted(CHANGE_TYPES)}",
                                  details={"change_type": "invalid"})
        return value or None
    if field == "priority":
        value = value or "medium"
        if value not in MOC_PRIORITIES:
            raise ValidationError(f"Invalid priority. Must be one of: {sorted(MOC_PRIORITIES)}",
                                  details={"priority": "invalid"})
        return value
    if field in ("is_temporary", "requires_hazop"):
        return bool(value)
    if field in _LIST_FIELDS:
        return _clean_id_list(value, field)
    if field == "notify_stakeholders":
        ids = _clean_id_list(value, field)
        unknown = [uid for uid in ids if not db.session.get(Profile, uid)]
        if unknown:
            raise ValidationError("Unknown stakeholder profile(s)",
                                  details={"notify_stakeholders": unknown})
        return ids
    if field in ("risk_probability", "risk_severity"):
        if value is None or value == "":
            return None
        return validate_risk_value(field, value)
    if field in _DATE_FIELDS:
        if value in (None, ""):
            return None
        parsed = parse_date(value)
        if parsed is None:
            raise ValidationError(f"Invalid date for {field}", details={field: "invalid"})
        return parsed
    return value


def _jsonable(value):
    return value.isoformat() if isinstance(value, (date, datetime)) else value


def _apply_fields(moc: MOCRequest, data: dict) -> dict:
    """Copy editable fields from ``data`` onto ``moc``; return {field: {old, new}}."""
    changes = {}
    for field in (*EDITABLE_FIELDS, "risk_probability", "risk_severity", *_DATE_FIELDS):
        if field not in data:
            continue
        new = _coerce_field(field, data[field])
        old = getattr(moc, field)
        if old != new:
            changes[field] = {"old": _jsonable(old), "new": _jsonable(new)}
            setattr(moc, field, new)
    moc.recalculate_risk()
    return changes


def _missing_for_submit(moc: MOCRequest, approver_count: int) -> dict:
    missing = {}
    for field in _REQUIRED_ON_SUBMIT:
        if not getattr(moc, field):
            missing[field] = "required"
    for field in ("risk_probability", "risk_severity"):
        value = getattr(moc, field)
        if value is None:
            missing[field] = "required"
        else:
            try:
                validate_risk_value(field, value)
            except ValidationError:
                missing[field] = "out of range"
    if not (moc.affected_systems or moc.affected_areas):
        missing["affected_systems"] = "at least one affected system or area is required"
    if approver_count < 1:
        missing["approvers"] = "at least one approver is required"
    return missing


def _normalise_approvers(approvers, owner_id: str) -> list[tuple[str, str]]:
    """Return [(user_id, role_required)] for the submitted approver list."""
    if approvers is None:
        return []
    if not isinstance(approvers, (list, tuple)):
        raise ValidationError("approvers must be a list", details={"approvers": "invalid"})

    result: list[tuple[str, str]] = []
    seen: set[str] = set()
    for entry in approvers:
        if isinstance(entry, dict):
            user_id = entry.get("user_id")
            role = entry.get("role_required") or "approval_committee"
        else:
            user_id, role = entry, "approval_committee"
        if not user_id or not isinstance(user_id, str):
            raise ValidationError("Approver user_id is required", details={"approvers": "invalid"})
        if role not in APP_ROLES:
            raise ValidationError(f"Invalid role_required. Must be one of: {sorted(APP_ROLES)}",
                                  details={"approvers": f"invalid role: {role}"})
        if user_id == owner_id:
            raise ValidationError("The request owner cannot approve their own request",
                                  details={"approvers": "owner not allowed"})
        profile = db.session.get(Profile, user_id)
        if not profile or not profile.is_active:
            raise ValidationError("Unknown or inactive approver", details={"approvers": user_id})
        if user_id in seen:
            continue
        seen.add(user_id)
        result.append((user_id, role))
    return result


# ═══════════════════════════════════════════════════════════════════════════
#  Draft operations
# ═══════════════════════════════════════════════════════════════════════════

def create_request(data: dict, user_id: str) -> MOCRequest:
    """Create a draft request with its request number and a ``created`` event."""
    check_permission(user_id, "moc_create")
    data = data or {}

    moc = MOCRequest(
        created_by=user_id,
        status="draft",
        title=_coerce_field("title", data.get("title")),
        priority="medium",
        affected_systems=[],
        affected_areas=[],
        notify_stakeholders=[],
    )
    _apply_fields(moc, data)
    prefix = current_app.config.get("REQUEST_NUMBER_PREFIX", "MOC")
    moc.request_number = next_request_number(prefix=prefix)

    db.session.add(moc)
    db.session.flush()

    write_history(
        moc_request_id=moc.id,
        action="created",
        user_id=user_id,
        details={"request_number": moc.request_number, "title": moc.title},
    )
    _log_event("MOC %s created", moc, "moc.created", user_id)
    return moc


def update_request(request_id: str, data: dict, user_id: str, *, expected_version: int | None = None) -> MOCRequest:
    """Edit a draft. Submitted requests change only through the state machine."""
    moc = get_request(request_id)
    _require_owner(moc, user_id, "update")
    if moc.status != "draft":
        raise InvalidTransition(moc.status, "update", "only draft requests can be edited")
    if expected_version is not None and expected_version != moc.version:
        raise ConcurrentModification(resource="MOCRequest", resource_id=moc.id)

    with _version_guard(moc.id):
        changes = _apply_fields(moc, data or {})
        db.session.flush()
        if changes:
            write_history(
                moc_request_id=moc.id,
                action="updated",
                user_id=user_id,
                details={"changes": changes},
            )
    return moc


def delete_request(request_id: str, user_id: str) -> None:
    """
    Hard-delete a draft together with its history, tasks and comments.

    Drafts were never submitted, so their trail leaves with them. Anything
    past draft cannot be deleted and keeps its history.
    """
    moc = get_request(request_id)
    _require_owner(moc, user_id, "delete")
    if moc.status != "draft":
        raise InvalidTransition(moc.status, "delete", "only draft requests can be deleted")
    _log_event("MOC %s deleted", moc, "moc.deleted", user_id)
    db.session.delete(moc)
    db.session.flush()


# ═══════════════════════════════════════════════════════════════════════════
#  Submission & review
# ═══════════════════════════════════════════════════════════════════════════

def submit_request(request_id: str, user_id: str, approvers, stakeholders=None) -> MOCRequest:
    """
    Draft → Submitted.

    Args:
        approvers: user ids, or dicts with ``user_id`` and optional ``role_required``.
        stakeholders: optional user ids copied on status changes.

    Raises:
        ValidationError: incomplete request or bad approver list.
        InvalidTransition: request is not a draft.
    """
    moc = get_request(request_id, lock=True)
    _require_owner(moc, user_id, "submit")

    validation = validate_transition(moc, "submit")
    if not validation["valid"]:
        raise InvalidTransition(moc.status, validation["to"], validation["reason"])

    reviewers = _normalise_approvers(approvers, moc.created_by)
    if stakeholders is not None:
        moc.notify_stakeholders = _coerce_field("notify_stakeholders", stakeholders)

    missing = _missing_for_submit(moc, len(reviewers))
    if missing:
        raise ValidationError("Request is incomplete and cannot be submitted", details=missing)

    with _version_guard(moc.id):
        _apply_transition(moc, "submit", user_id)
        for reviewer_id, role in reviewers:
            moc.approvers.append(Approver(user_id=reviewer_id, role_required=role, status="pending"))
        db.session.flush()

        write_history(
            moc_request_id=moc.id,
            action="submitted",
            user_id=user_id,
            details={
                "request_number": moc.request_number,
                "approvers": [r[0] for r in reviewers],
                "risk_score": moc.risk_score,
                "risk_tier": moc.risk_tier,
            },
        )

    NotificationService.notify(
        "submitted", moc=moc, actor_id=user_id,
        approvers=[r[0] for r in reviewers],
        old_status="draft", new_status=moc.status,
    )
    return moc


def record_decision(
    approver_id: str,
    user_id: str,
    decision: str,
    comments: str | None = None,
    *,
    expected_version: int | None = None,
) -> dict:
    """
    Record one approver's decision and re-evaluate consensus.

    Runs under a row lock on the parent request; the ``version`` column
    catches writers that bypass the lock.

    Returns:
        {"approver", "moc", "consensus", "transition"} where ``transition``
        is the fired action ("approve" / "reject" / "request_changes") or None.
    """
    if decision not in DECISION_STATUSES:
        raise ValidationError(
            f"Invalid decision. Must be one of: {sorted(DECISION_STATUSES)}",
            details={"decision": "invalid"},
        )

    approver = db.session.get(Approver, approver_id)
    if not approver:
        raise NotFoundError(resource="Approver", resource_id=approver_id)
    if approver.user_id != user_id:
        raise PermissionDenied(user_id, "decide", "only the assigned approver may decide")
    require_decision_comment(decision, comments)

    moc = get_request(approver.moc_request_id, lock=True)
    db.session.refresh(approver)
    if expected_version is not None and expected_version != moc.version:
        raise ConcurrentModification(resource="MOCRequest", resource_id=moc.id)

    if moc.status not in ("submitted", "under_review"):
        raise InvalidTransition(moc.status, decision, "request is not open for review")
    if moc.awaiting_revision:
        raise InvalidTransition(moc.status, decision, "request is awaiting revision by its owner")
    if approver.status != "pending":
        raise InvalidTransition(approver.status, decision, "decision already recorded")

    now = _utcnow()
    transition = None

    with _version_guard(moc.id):
        approver.status = decision
        approver.comments = (comments or "").strip() or None
        approver.responded_at = now
        # Bump the request row so concurrent deciders collide on ``version``.
        moc.updated_at = now

        write_history(
            moc_request_id=moc.id,
            action="decision_recorded",
            user_id=user_id,
            details={
                "approver_id": approver.id,
                "decision": decision,
                "comments": approver.comments,
                "review_round": moc.review_round,
            },
        )

        # Reviewers still to respond; captured before a changes_requested reset.
        waiting = [a.user_id for a in moc.approvers if a.status == "pending"]

        if moc.status == "submitted":
            previous, _ = _apply_transition(moc, "start_review", user_id)
            NotificationService.notify(
                "status_changed", moc=moc, actor_id=user_id,
                approvers=waiting,
                old_status=previous, new_status=moc.status,
            )

        consensus = evaluate_consensus(a.status for a in moc.approvers)
        if consensus in _CONSENSUS_ACTIONS:
            transition, history_action = _CONSENSUS_ACTIONS[consensus]
            previous, _ = _apply_transition(moc, transition, user_id, {"consensus": consensus})
            history_details = {"consensus": consensus, "comments": approver.comments}

            if consensus == "changes_requested":
                history_details["decisions"] = {a.user_id: a.status for a in moc.approvers}
                for other in moc.approvers:
                    other.status = "pending"
                    other.comments = None
                    other.responded_at = None
                moc.awaiting_revision = True

            write_history(
                moc_request_id=moc.id,
                action=history_action,
                user_id=user_id,
                details=history_details,
            )
        db.session.flush()

    if transition:
        NotificationService.notify(
            _CONSENSUS_ACTIONS[consensus][1], moc=moc, actor_id=user_id,
            approvers=waiting,
            old_status="under_review", new_status=moc.status,
        )

    return {"approver": approver, "moc": moc, "consensus": consensus, "transition": transition}


def revise_request(request_id: str, data: dict, user_id: str) -> MOCRequest:
    """
    Owner resubmits a request that came back with changes requested.

    All approvers were reset to pending when the changes were requested;
    this opens the next review round and notifies them again.
    """
    moc = get_request(request_id, lock=True)
    _require_owner(moc, user_id, "revise")
    if not moc.awaiting_revision:
        raise InvalidTransition(moc.status, "revise", "no changes were requested on this request")

    with _version_guard(moc.id):
        changes = _apply_fields(moc, data or {})
        missing = _missing_for_submit(moc, len(moc.approvers))
        if missing:
            raise ValidationError("Request is incomplete and cannot be resubmitted", details=missing)

        moc.awaiting_revision = False
        moc.review_round += 1
        write_history(
            moc_request_id=moc.id,
            action="revised",
            user_id=user_id,
            details={"changes": changes, "review_round": moc.review_round},
        )
        db.session.flush()

    _log_event("MOC %s revised (round %s)", moc, "moc.revised", user_id, round=moc.review_round)
    NotificationService.notify(
        "revised", moc=moc, actor_id=user_id, approvers=_approver_user_ids(moc),
        old_status=moc.status, new_status=moc.status,
    )
    return moc


def mark_implemented(request_id: str, user_id: str) -> dict:
    """
    Approved → Implemented. Administrators only.

    Calling it again on an implemented request changes nothing.

    Returns:
        {"moc": MOCRequest, "changed": bool}
    """
    require_role(user_id, "administrator")
    moc = get_request(request_id, lock=True)
    if moc.status == "implemented":
        return {"moc": moc, "changed": False}

    with _version_guard(moc.id):
        previous, _ = _apply_transition(moc, "implement", user_id)
        write_history(
            moc_request_id=moc.id,
            action="implemented",
            user_id=user_id,
            details={"completed_at": moc.completed_at.isoformat() if moc.completed_at else None},
        )
        db.session.flush()

    NotificationService.notify(
        "implemented", moc=moc, actor_id=user_id, approvers=_approver_user_ids(moc),
        old_status=previous, new_status=moc.status,
    )
    return {"moc": moc, "changed": True}


# ═══════════════════════════════════════════════════════════════════════════
#  Comments & history
# ═══════════════════════════════════════════════════════════════════════════

def add_comment(request_id: str, user_id: str, content: str, parent_comment_id: str | None = None) -> MOCComment:
    profile = get_profile(user_id)
    moc = get_request(request_id)

    content = (content or "").strip()
    if not content:
        raise ValidationError("content is required", details={"content": "required"})
    if parent_comment_id:
        parent = db.session.get(MOCComment, parent_comment_id)
        if not parent or parent.moc_request_id != moc.id:
            raise ValidationError("Parent comment not found on this request",
                                  details={"parent_comment_id": "invalid"})

    comment = MOCComment(
        moc_request_id=moc.id,
        user_id=user_id,
        content=content,
        parent_comment_id=parent_comment_id,
    )
    db.session.add(comment)
    db.session.flush()

    write_history(
        moc_request_id=moc.id,
        action="comment_added",
        user_id=user_id,
        details={"comment_id": comment.id, "preview": content[:140]},
    )
    NotificationService.notify(
        "comment_added", moc=moc, actor_id=user_id, approvers=_approver_user_ids(moc),
        comment=content, actor_name=profile.display_name,
    )
    return comment


def list_comments(request_id: str) -> list[MOCComment]:
    moc = get_request(request_id)
    return moc.comments.order_by(MOCComment.created_at.asc()).all()


def list_history(request_id: str) -> list[HistoryEvent]:
    moc = get_request(request_id)
    return moc.history.order_by(HistoryEvent.created_at.asc()).all()
