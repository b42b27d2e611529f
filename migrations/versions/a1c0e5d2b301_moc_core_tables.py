"""moc_core_tables

Creates the MOC engine schema:
  - profiles          users and their single application role
  - facilities        sites requests are raised against
  - moc_requests      change proposals (optimistic lock on ``version``)
  - moc_approvers     one decision record per reviewer per request
  - moc_comments      threaded discussion
  - moc_tasks         follow-up work items
  - moc_history       append-only lifecycle trail
  - notifications     in-app inbox

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: a1c0e5d2b301
Revises:
Create Date: 2026-10-19 09:12:40.118204
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'a1c0e5d2b301'
down_revision = None
branch_labels = None
depends_on = None


def _id():
    return sa.Column("id", sa.String(length=36), nullable=False)


def _request_fk():
    return sa.Column("moc_request_id", sa.String(length=36), nullable=False)


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Profiles ─────────────────────────────────────────────────────────
    if "profiles" not in existing:
        op.create_table(
            "profiles",
            _id(),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=True),
            sa.Column("department", sa.String(length=100), nullable=True),
            sa.Column("role", sa.String(length=30), nullable=False,
                      server_default="process_engineer",
                      comment="administrator | facility_manager | process_engineer | …"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )

    # ── Facilities ───────────────────────────────────────────────────────
    if "facilities" not in existing:
        op.create_table(
            "facilities",
            _id(),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("code", sa.String(length=30), nullable=False),
            sa.Column("location", sa.String(length=300), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("code"),
        )

    # ── MOC Requests ─────────────────────────────────────────────────────
    if "moc_requests" not in existing:
        op.create_table(
            "moc_requests",
            _id(),
            sa.Column("request_number", sa.String(length=30), nullable=False,
                      comment="Auto-generated: MOC-2024-0001"),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("justification", sa.Text(), nullable=True),
            sa.Column("facility_id", sa.String(length=36), nullable=True),
            sa.Column("change_type", sa.String(length=40), nullable=True),
            sa.Column("priority", sa.String(length=20), nullable=False, server_default="medium"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
            sa.Column("is_temporary", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("estimated_duration", sa.String(length=100), nullable=True),
            sa.Column("affected_systems", sa.JSON(), nullable=True),
            sa.Column("affected_areas", sa.JSON(), nullable=True),
            sa.Column("risk_probability", sa.Integer(), nullable=True, comment="1-5 scale"),
            sa.Column("risk_severity", sa.Integer(), nullable=True, comment="1-5 scale"),
            sa.Column("risk_score", sa.Integer(), nullable=True, comment="probability × severity"),
            sa.Column("risk_tier", sa.String(length=10), nullable=True, comment="low/medium/high/critical"),
            sa.Column("risk_category", sa.String(length=60), nullable=True),
            sa.Column("mitigation_measures", sa.Text(), nullable=True),
            sa.Column("requires_hazop", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("notify_stakeholders", sa.JSON(), nullable=True,
                      comment="user ids copied on status changes"),
            sa.Column("target_implementation_date", sa.Date(), nullable=True),
            sa.Column("review_deadline", sa.Date(), nullable=True),
            sa.Column("awaiting_revision", sa.Boolean(), nullable=False, server_default=sa.false(),
                      comment="True after consensus returned the request to its owner"),
            sa.Column("review_round", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_by", sa.String(length=36), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.ForeignKeyConstraint(["facility_id"], ["facilities.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["created_by"], ["profiles.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("request_number"),
        )
        op.create_index("idx_moc_status", "moc_requests", ["status"])
        op.create_index("idx_moc_created_at", "moc_requests", ["created_at"])
        op.create_index("idx_moc_created_by", "moc_requests", ["created_by"])
        op.create_index("ix_moc_requests_facility_id", "moc_requests", ["facility_id"])

    # ── Approvers ────────────────────────────────────────────────────────
    if "moc_approvers" not in existing:
        op.create_table(
            "moc_approvers",
            _id(),
            _request_fk(),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("role_required", sa.String(length=30), nullable=False,
                      server_default="approval_committee"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("comments", sa.Text(), nullable=True),
            sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["moc_request_id"], ["moc_requests.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["profiles.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("moc_request_id", "user_id", name="uq_moc_approver_user"),
        )
        op.create_index("idx_moc_approver_user_status", "moc_approvers", ["user_id", "status"])
        op.create_index("ix_moc_approvers_moc_request_id", "moc_approvers", ["moc_request_id"])

    # ── Comments ─────────────────────────────────────────────────────────
    if "moc_comments" not in existing:
        op.create_table(
            "moc_comments",
            _id(),
            _request_fk(),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("parent_comment_id", sa.String(length=36), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["moc_request_id"], ["moc_requests.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["profiles.id"]),
            sa.ForeignKeyConstraint(["parent_comment_id"], ["moc_comments.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_moc_comments_moc_request_id", "moc_comments", ["moc_request_id"])

    # ── Tasks ────────────────────────────────────────────────────────────
    if "moc_tasks" not in existing:
        op.create_table(
            "moc_tasks",
            _id(),
            _request_fk(),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("assigned_to", sa.String(length=36), nullable=True),
            sa.Column("created_by", sa.String(length=36), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("priority", sa.String(length=20), nullable=False, server_default="medium"),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["moc_request_id"], ["moc_requests.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["assigned_to"], ["profiles.id"]),
            sa.ForeignKeyConstraint(["created_by"], ["profiles.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_moc_task_assignee", "moc_tasks", ["assigned_to"])
        op.create_index("idx_moc_task_due", "moc_tasks", ["due_date"])
        op.create_index("ix_moc_tasks_moc_request_id", "moc_tasks", ["moc_request_id"])

    # ── History ──────────────────────────────────────────────────────────
    if "moc_history" not in existing:
        op.create_table(
            "moc_history",
            _id(),
            _request_fk(),
            sa.Column("user_id", sa.String(length=36), nullable=True,
                      comment="NULL for system-generated events"),
            sa.Column("action", sa.String(length=40), nullable=False,
                      comment="created | submitted | approved | …"),
            sa.Column("details", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["moc_request_id"], ["moc_requests.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_moc_history_request", "moc_history", ["moc_request_id", "created_at"])
        op.create_index("idx_moc_history_action", "moc_history", ["action"])

    # ── Notifications ────────────────────────────────────────────────────
    if "notifications" not in existing:
        op.create_table(
            "notifications",
            _id(),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("type", sa.String(length=20), nullable=False, server_default="info"),
            sa.Column("category", sa.String(length=30), nullable=False, server_default="system"),
            sa.Column("reference_type", sa.String(length=30), nullable=True,
                      comment="moc_request / moc_task"),
            sa.Column("reference_id", sa.String(length=36), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("email_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_notification_user_read", "notifications", ["user_id", "is_read"])
        op.create_index("ix_notifications_user_id", "notifications", ["user_id"])


def downgrade():
    for table in (
        "notifications",
        "moc_history",
        "moc_tasks",
        "moc_comments",
        "moc_approvers",
        "moc_requests",
        "facilities",
        "profiles",
    ):
        op.drop_table(table)
