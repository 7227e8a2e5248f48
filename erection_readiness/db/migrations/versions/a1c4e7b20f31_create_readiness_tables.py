"""Create readiness engine tables

Revision ID: a1c4e7b20f31
Revises:
Create Date: 2026-10-19

Upstream records (projects, work packages, tasks, RFIs, drawing sets and
revisions, deliveries), engine-owned constraints, the derived readiness /
permission caches and the audit log.
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "a1c4e7b20f31"
down_revision = None
branch_labels = None
depends_on = None

ENUM_NAMES = (
    "task_type",
    "task_status",
    "work_package_phase",
    "work_package_status",
    "rfi_status",
    "drawing_set_status",
    "delivery_status",
    "constraint_type",
    "constraint_severity",
    "constraint_status",
    "readiness_status",
    "permission_status",
    "risk_level",
    "audit_actor_kind",
    "audit_action",
)

readiness_status = sa.Enum("READY", "READY_WITH_WARNINGS", "NOT_READY", name="readiness_status")
permission_status = sa.Enum(
    "BLOCKED", "PM_APPROVAL_REQUIRED", "ENGINEER_REVIEW_REQUIRED", "RELEASED",
    name="permission_status",
)
risk_level = sa.Enum("low", "medium", "high", "critical", name="risk_level")


def _id(**kwargs) -> sa.Column:
    return sa.Column("id", sa.String(length=128), primary_key=True, **kwargs)


def _project_fk() -> sa.Column:
    return sa.Column(
        "project_id", sa.String(length=128), sa.ForeignKey("projects.id"), nullable=False, index=True
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )


def upgrade() -> None:
    op.create_table(
        "projects",
        _id(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("project_number", sa.String(length=64), nullable=True, index=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="in_progress"),
        _created_at(),
    )

    op.create_table(
        "work_packages",
        _id(),
        _project_fk(),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column(
            "phase",
            sa.Enum(
                "detailing", "fabrication", "delivery", "erection", "closeout",
                name="work_package_phase",
            ),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum("active", "on_hold", "complete", name="work_package_status"),
            nullable=False,
        ),
        sa.Column("linked_drawing_set_ids", sa.JSON, nullable=False),
        sa.Column("linked_delivery_ids", sa.JSON, nullable=False),
        sa.Column("out_of_sequence", sa.Boolean, nullable=False, server_default=sa.false()),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "tasks",
        _id(),
        _project_fk(),
        sa.Column(
            "work_package_id",
            sa.String(length=128),
            sa.ForeignKey("work_packages.id"),
            nullable=True,
            index=True,
        ),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("task_type", sa.Enum("ERECTION", "OTHER", name="task_type"), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "not_started", "in_progress", "blocked", "on_hold", "completed", "cancelled",
                name="task_status",
            ),
            nullable=False,
        ),
        sa.Column("predecessor_ids", sa.JSON, nullable=False),
        sa.Column("erection_area", sa.String(length=128), nullable=True, index=True),
        sa.Column("hold_area", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("hold_reason", sa.Text, nullable=True),
        sa.Column("install_sequence_number", sa.Integer, nullable=True),
        sa.Column("planned_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("planned_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("baseline_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("baseline_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("float_consumed_hours", sa.Float, nullable=False, server_default="0"),
        sa.Column("linked_rfi_ids", sa.JSON, nullable=False),
        sa.Column("linked_drawing_set_ids", sa.JSON, nullable=False),
        sa.Column("linked_delivery_ids", sa.JSON, nullable=False),
        sa.Column("gating_delivery_ids", sa.JSON, nullable=False),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_tasks_project_type", "tasks", ["project_id", "task_type"])
    op.create_index("ix_tasks_project_area", "tasks", ["project_id", "erection_area"])
    op.create_index("ix_tasks_project_sequence", "tasks", ["project_id", "install_sequence_number"])

    op.create_table(
        "rfis",
        _id(),
        _project_fk(),
        sa.Column("rfi_number", sa.String(length=32), nullable=True),
        sa.Column("subject", sa.String(length=500), nullable=False, server_default=""),
        sa.Column(
            "status",
            sa.Enum("draft", "submitted", "under_review", "answered", "closed", name="rfi_status"),
            nullable=False,
            index=True,
        ),
        sa.Column("is_blocker", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("linked_task_ids", sa.JSON, nullable=False),
        sa.Column("linked_drawing_set_ids", sa.JSON, nullable=False),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )

    op.create_table(
        "drawing_sets",
        _id(),
        _project_fk(),
        sa.Column("set_number", sa.String(length=64), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False, server_default=""),
        sa.Column(
            "status",
            sa.Enum("IFA", "BFA", "BFS", "REV", "FFF", name="drawing_set_status"),
            nullable=False,
        ),
        _created_at(),
    )

    op.create_table(
        "drawing_revisions",
        _id(),
        _project_fk(),
        sa.Column(
            "drawing_set_id",
            sa.String(length=128),
            sa.ForeignKey("drawing_sets.id"),
            nullable=False,
            index=True,
        ),
        sa.Column("revision_number", sa.String(length=32), nullable=False, server_default="0"),
        sa.Column("is_current", sa.Boolean, nullable=False, server_default=sa.true()),
        _created_at(),
    )

    op.create_table(
        "deliveries",
        _id(),
        _project_fk(),
        sa.Column("delivery_number", sa.String(length=64), nullable=True),
        sa.Column("package_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column(
            "delivery_status",
            sa.Enum(
                "scheduled", "in_transit", "delayed", "exception", "received", "closed",
                name="delivery_status",
            ),
            nullable=False,
        ),
        sa.Column("scheduled_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("linked_work_package_ids", sa.JSON, nullable=False),
        _created_at(),
    )

    op.create_table(
        "constraints",
        _id(),
        _project_fk(),
        sa.Column("task_id", sa.String(length=128), sa.ForeignKey("tasks.id"), nullable=True, index=True),
        sa.Column(
            "work_package_id",
            sa.String(length=128),
            sa.ForeignKey("work_packages.id"),
            nullable=True,
            index=True,
        ),
        sa.Column(
            "constraint_type",
            sa.Enum(
                "DRAWING_NOT_RELEASED",
                "RFI_RESPONSE_REQUIRED",
                "DELIVERY_PENDING",
                "AREA_HOLD",
                "PREDECESSOR_INCOMPLETE",
                "ENGINEER_REVIEW_REQUIRED",
                "OTHER",
                name="constraint_type",
            ),
            nullable=False,
        ),
        sa.Column("severity", sa.Enum("BLOCKER", "WARNING", name="constraint_severity"), nullable=False),
        sa.Column("status", sa.Enum("OPEN", "CLEARED", name="constraint_status"), nullable=False),
        sa.Column("evidence_links", sa.JSON, nullable=False),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("owner_role", sa.String(length=32), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.Column("cleared_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cleared_by", sa.String(length=128), nullable=True),
    )
    op.create_index(
        "ix_constraints_project_type_status", "constraints", ["project_id", "constraint_type", "status"]
    )
    op.create_index("ix_constraints_task_status", "constraints", ["task_id", "status"])
    op.create_index("ix_constraints_wp_status", "constraints", ["work_package_id", "status"])

    op.create_table(
        "readiness_records",
        sa.Column("task_id", sa.String(length=128), sa.ForeignKey("tasks.id"), primary_key=True),
        sa.Column("project_id", sa.String(length=128), nullable=False, index=True),
        sa.Column("work_package_id", sa.String(length=128), nullable=True, index=True),
        sa.Column("readiness_status", readiness_status, nullable=False),
        sa.Column("blocker_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("warning_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("drivers", sa.JSON, nullable=False),
        sa.Column("evaluated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "work_package_readiness",
        sa.Column(
            "work_package_id", sa.String(length=128), sa.ForeignKey("work_packages.id"), primary_key=True
        ),
        sa.Column("project_id", sa.String(length=128), nullable=False, index=True),
        sa.Column("lookahead_ready", readiness_status, nullable=False),
        sa.Column("lookahead_blockers", sa.Integer, nullable=False, server_default="0"),
        sa.Column("lookahead_warnings", sa.Integer, nullable=False, server_default="0"),
        sa.Column("task_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("evaluated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "execution_permissions",
        sa.Column(
            "work_package_id", sa.String(length=128), sa.ForeignKey("work_packages.id"), primary_key=True
        ),
        sa.Column("project_id", sa.String(length=128), nullable=False, index=True),
        sa.Column("permission_status", permission_status, nullable=False),
        sa.Column("computed_status", permission_status, nullable=False),
        sa.Column("blocking_reason", sa.Text, nullable=True),
        sa.Column("risk_level", risk_level, nullable=False),
        sa.Column("risk_score", sa.Integer, nullable=False, server_default="0"),
        sa.Column("risk_drivers", sa.JSON, nullable=False),
        sa.Column("approved_by", sa.String(length=128), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("override_reason", sa.Text, nullable=True),
        sa.Column("override_readiness", readiness_status, nullable=True),
        sa.Column("override_risk_level", risk_level, nullable=True),
        sa.Column("evaluated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "audit_log",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), index=True),
        sa.Column(
            "actor_kind",
            sa.Enum("human", "agent", "system", name="audit_actor_kind"),
            nullable=False,
        ),
        sa.Column("actor_id", sa.String(length=128), nullable=False, index=True),
        sa.Column(
            "action",
            sa.Enum(
                "created", "updated", "status_changed", "cleared", "overridden", "override_dropped",
                name="audit_action",
            ),
            nullable=False,
            index=True,
        ),
        sa.Column("entity_kind", sa.String(length=50), nullable=False, index=True),
        sa.Column("entity_id", sa.String(length=128), nullable=False, index=True),
        sa.Column("before", sa.JSON, nullable=True),
        sa.Column("after", sa.JSON, nullable=True),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("trace_id", sa.String(length=36), nullable=True, index=True),
    )
    op.create_index("ix_audit_log_entity", "audit_log", ["entity_kind", "entity_id"])
    op.create_index("ix_audit_log_entity_ts", "audit_log", ["entity_kind", "entity_id", "ts"])


def downgrade() -> None:
    op.drop_index("ix_audit_log_entity_ts", table_name="audit_log")
    op.drop_index("ix_audit_log_entity", table_name="audit_log")
    op.drop_table("audit_log")
    op.drop_table("execution_permissions")
    op.drop_table("work_package_readiness")
    op.drop_table("readiness_records")
    op.drop_index("ix_constraints_wp_status", table_name="constraints")
    op.drop_index("ix_constraints_task_status", table_name="constraints")
    op.drop_index("ix_constraints_project_type_status", table_name="constraints")
    op.drop_table("constraints")
    op.drop_table("deliveries")
    op.drop_table("drawing_revisions")
    op.drop_table("drawing_sets")
    op.drop_table("rfis")
    op.drop_index("ix_tasks_project_sequence", table_name="tasks")
    op.drop_index("ix_tasks_project_area", table_name="tasks")
    op.drop_index("ix_tasks_project_type", table_name="tasks")
    op.drop_table("tasks")
    op.drop_table("work_packages")
    op.drop_table("projects")

    # Drop PostgreSQL enum types (no-op for SQLite)
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for name in ENUM_NAMES:
            op.execute(f"DROP TYPE IF EXISTS {name}")
