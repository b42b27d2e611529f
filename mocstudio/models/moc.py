"""
MOC Studio
Management-of-Change domain models.

Models:
    - Facility: site an MOC request applies to
    - MOCRequest: a change proposal moving through the lifecycle
    - Approver: one required reviewer's decision record for one request
    - MOCComment: discussion thread entry on a request

Architecture chain: Facility → MOCRequest → Approver / MOCTask / MOCComment / HistoryEvent
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import func

from mocstudio.models import db
from mocstudio.services.risk_scoring import calculate_risk_score, risk_tier


# ── Constants ────────────────────────────────────────────────────────────────

MOC_STATUSES = {"draft", "submitted", "under_review", "approved", "rejected", "implemented"}
TERMINAL_STATUSES = {"approved", "rejected", "implemented"}
OPEN_STATUSES = {"draft", "submitted", "under_review"}

MOC_PRIORITIES = {"low", "medium", "high", "critical"}

CHANGE_TYPES = {
    "equipment_modification",
    "equipment_replacement",
    "equipment_addition",
    "procedure_change",
    "software_change",
    "major_change",
}

APPROVAL_STATUSES = {"pending", "approved", "rejected", "changes_requested"}
DECISION_STATUSES = APPROVAL_STATUSES - {"pending"}

# action → {from: [...], to: status}
MOC_TRANSITIONS = {
    "submit": {"from": ["draft"], "to": "submitted"},
    "start_review": {"from": ["submitted"], "to": "under_review"},
    "approve": {"from": ["under_review"], "to": "approved"},
    "reject": {"from": ["under_review"], "to": "rejected"},
    "request_changes": {"from": ["under_review"], "to": "under_review"},
    "implement": {"from": ["approved"], "to": "implemented"},
}

# Fields the owner may edit while the request is a draft (or returned for revision)
EDITABLE_FIELDS = (
    "title", "description", "justification", "facility_id", "change_type",
    "priority", "is_temporary", "estimated_duration", "affected_systems",
    "affected_areas", "risk_category", "mitigation_measures", "requires_hazop",
    "notify_stakeholders",
)


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ═══════════════════════════════════════════════════════════════════════════
#  FACILITY
# ═══════════════════════════════════════════════════════════════════════════

class Facility(db.Model):
    """An industrial site that change requests are raised against."""

    __tablename__ = "facilities"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    code = db.Column(db.String(30), unique=True, nullable=False)
    location = db.Column(db.String(300), default="")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "location": self.location,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Facility {self.code}: {self.name}>"


# ═══════════════════════════════════════════════════════════════════════════
#  MOC REQUEST
# ═══════════════════════════════════════════════════════════════════════════

class MOCRequest(db.Model):
    """
    A Management-of-Change proposal.

    ``status`` is owned by the lifecycle service and only moves along
    MOC_TRANSITIONS. ``version`` is the optimistic-lock column: every UPDATE
    checks and bumps it, so two writers racing on consensus cannot both win.
    """

    __tablename__ = "moc_requests"
    __table_args__ = (
        db.Index("idx_moc_status", "status"),
        db.Index("idx_moc_created_at", "created_at"),
        db.Index("idx_moc_created_by", "created_by"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    request_number = db.Column(
        db.String(30), unique=True, nullable=False,
        comment="Auto-generated: MOC-2024-0001",
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    justification = db.Column(db.Text, default="")
    facility_id = db.Column(
        db.String(36), db.ForeignKey("facilities.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    change_type = db.Column(db.String(40), nullable=True)
    priority = db.Column(db.String(20), nullable=False, default="medium")
    status = db.Column(db.String(20), nullable=False, default="draft")

    # Scope
    is_temporary = db.Column(db.Boolean, nullable=False, default=False)
    estimated_duration = db.Column(db.String(100), default="")
    affected_systems = db.Column(db.JSON, default=list)
    affected_areas = db.Column(db.JSON, default=list)

    # Risk assessment
    risk_probability = db.Column(db.Integer, nullable=True, comment="1-5 scale")
    risk_severity = db.Column(db.Integer, nullable=True, comment="1-5 scale")
    risk_score = db.Column(db.Integer, nullable=True, comment="probability × severity")
    risk_tier = db.Column(db.String(10), nullable=True, comment="low/medium/high/critical")
    risk_category = db.Column(db.String(60), default="")
    mitigation_measures = db.Column(db.Text, default="")
    requires_hazop = db.Column(db.Boolean, nullable=False, default=False)

    # Approvals
    notify_stakeholders = db.Column(db.JSON, default=list, comment="user ids copied on status changes")
    target_implementation_date = db.Column(db.Date, nullable=True)
    review_deadline = db.Column(db.Date, nullable=True)
    awaiting_revision = db.Column(
        db.Boolean, nullable=False, default=False,
        comment="True after consensus returned the request to its owner",
    )
    review_round = db.Column(db.Integer, nullable=False, default=1)

    created_by = db.Column(db.String(36), db.ForeignKey("profiles.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    version = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version}

    facility = db.relationship("Facility")
    creator = db.relationship("Profile", foreign_keys=[created_by])
    approvers = db.relationship(
        "Approver", back_populates="moc_request",
        cascade="all, delete-orphan", order_by="Approver.created_at",
    )
    tasks = db.relationship(
        "MOCTask", back_populates="moc_request",
        cascade="all, delete-orphan", lazy="dynamic",
    )
    comments = db.relationship(
        "MOCComment", back_populates="moc_request",
        cascade="all, delete-orphan", lazy="dynamic",
    )
    history = db.relationship(
        "HistoryEvent", back_populates="moc_request",
        cascade="all, delete-orphan", lazy="dynamic",
    )

    def recalculate_risk(self):
        """Recompute risk_score and risk_tier from probability & severity."""
        if self.risk_probability is None or self.risk_severity is None:
            self.risk_score = None
            self.risk_tier = None
            return
        self.risk_score = calculate_risk_score(self.risk_probability, self.risk_severity)
        self.risk_tier = risk_tier(self.risk_score)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self, include_approvers=False):
        data = {
            "id": self.id,
            "request_number": self.request_number,
            "title": self.title,
            "description": self.description,
            "justification": self.justification,
            "facility_id": self.facility_id,
            "facility": self.facility.to_dict() if self.facility else None,
            "change_type": self.change_type,
            "priority": self.priority,
            "status": self.status,
            "is_temporary": self.is_temporary,
            "estimated_duration": self.estimated_duration,
            "affected_systems": self.affected_systems or [],
            "affected_areas": self.affected_areas or [],
            "risk_probability": self.risk_probability,
            "risk_severity": self.risk_severity,
            "risk_score": self.risk_score,
            "risk_tier": self.risk_tier,
            "risk_category": self.risk_category,
            "mitigation_measures": self.mitigation_measures,
            "requires_hazop": self.requires_hazop,
            "notify_stakeholders": self.notify_stakeholders or [],
            "target_implementation_date": _iso(self.target_implementation_date),
            "review_deadline": _iso(self.review_deadline),
            "awaiting_revision": self.awaiting_revision,
            "review_round": self.review_round,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "submitted_at": _iso(self.submitted_at),
            "completed_at": _iso(self.completed_at),
            "updated_at": _iso(self.updated_at),
            "version": self.version,
        }
        if include_approvers:
            data["approvers"] = [a.to_dict() for a in self.approvers]
        return data

    def __repr__(self):
        return f"<MOCRequest {self.request_number}: {self.status}>"


# ═══════════════════════════════════════════════════════════════════════════
#  APPROVER
# ═══════════════════════════════════════════════════════════════════════════

class Approver(db.Model):
    """
    One required reviewer's decision for one MOC request.

    Starts pending and moves once to approved / rejected / changes_requested
    when the matching user responds. A changes-requested consensus resets the
    whole set to pending for the next review round.
    """

    __tablename__ = "moc_approvers"
    __table_args__ = (
        db.UniqueConstraint("moc_request_id", "user_id", name="uq_moc_approver_user"),
        db.Index("idx_moc_approver_user_status", "user_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    moc_request_id = db.Column(
        db.String(36), db.ForeignKey("moc_requests.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    user_id = db.Column(db.String(36), db.ForeignKey("profiles.id"), nullable=False)
    role_required = db.Column(db.String(30), nullable=False, default="approval_committee")
    status = db.Column(db.String(20), nullable=False, default="pending")
    comments = db.Column(db.Text, nullable=True)
    responded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    moc_request = db.relationship("MOCRequest", back_populates="approvers")
    user = db.relationship("Profile", foreign_keys=[user_id])

    def to_dict(self):
        return {
            "id": self.id,
            "moc_request_id": self.moc_request_id,
            "user_id": self.user_id,
            "approver": self.user.to_dict() if self.user else None,
            "role_required": self.role_required,
            "status": self.status,
            "comments": self.comments,
            "responded_at": _iso(self.responded_at),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Approver {self.user_id} on {self.moc_request_id}: {self.status}>"


# ═══════════════════════════════════════════════════════════════════════════
#  COMMENT
# ═══════════════════════════════════════════════════════════════════════════

class MOCComment(db.Model):
    """A discussion entry on a request. Replies point at their parent."""

    __tablename__ = "moc_comments"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    moc_request_id = db.Column(
        db.String(36), db.ForeignKey("moc_requests.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    user_id = db.Column(db.String(36), db.ForeignKey("profiles.id"), nullable=False)
    content = db.Column(db.Text, nullable=False)
    parent_comment_id = db.Column(
        db.String(36), db.ForeignKey("moc_comments.id", ondelete="CASCADE"), nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    moc_request = db.relationship("MOCRequest", back_populates="comments")
    author = db.relationship("Profile", foreign_keys=[user_id])

    def to_dict(self):
        return {
            "id": self.id,
            "moc_request_id": self.moc_request_id,
            "user_id": self.user_id,
            "author": self.author.to_dict() if self.author else None,
            "content": self.content,
            "parent_comment_id": self.parent_comment_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


# ═══════════════════════════════════════════════════════════════════════════
#  REQUEST NUMBER SEQUENCE
# ═══════════════════════════════════════════════════════════════════════════

def next_request_number(prefix: str = "MOC", year: int | None = None) -> str:
    """
    Generate the next request number for the year: MOC-2024-0001, MOC-2024-0002, ...

    Locks the current highest row where the backend supports it. The unique
    constraint on request_number is the final guard: a collision surfaces as
    IntegrityError at commit and the caller gets a 409, with no retry.
    """
    year = year or datetime.now(timezone.utc).year
    full_prefix = f"{prefix}-{year}-"
    last = (
        MOCRequest.query
        .filter(MOCRequest.request_number.like(f"{full_prefix}%"))
        .order_by(func.length(MOCRequest.request_number).desc(), MOCRequest.request_number.desc())
        .with_for_update()
        .first()
    )
    num = 1
    if last:
        try:
            num = int(last.request_number.rsplit("-", 1)[1]) + 1
        except (IndexError, ValueError):
            num = 1
    return f"{full_prefix}{num:04d}"
