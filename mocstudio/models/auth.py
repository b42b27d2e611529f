"""
MOC Studio
Identity model.

Models:
    - Profile: a user known to the engine, with the single role used for
      authorization checks (approver assignment, forced implementation).
"""

import uuid
from datetime import datetime, timezone

from mocstudio.models import db


# ── Constants ────────────────────────────────────────────────────────────────

APP_ROLES = {
    "administrator",
    "facility_manager",
    "process_engineer",
    "maintenance_technician",
    "hse_coordinator",
    "approval_committee",
}


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class Profile(db.Model):
    """A user profile resolved by the identity collaborator."""

    __tablename__ = "profiles"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    email = db.Column(db.String(255), unique=True, nullable=False)
    full_name = db.Column(db.String(200), nullable=True)
    department = db.Column(db.String(100), nullable=True)
    role = db.Column(
        db.String(30), nullable=False, default="process_engineer",
        comment="administrator | facility_manager | process_engineer | …",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @property
    def display_name(self) -> str:
        return self.full_name or self.email

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "department": self.department,
            "role": self.role,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Profile {self.email} ({self.role})>"
