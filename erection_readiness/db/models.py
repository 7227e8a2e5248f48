"""
SQLAlchemy models for the Erection Readiness engine.

Upstream records (Project, Task, WorkPackage, RFI, DrawingSet,
DrawingRevision, Delivery) are owned by the surrounding system and only read
or lightly updated here. Constraint rows are opened and cleared by the
engine. ReadinessRecord, WorkPackageReadiness and ExecutionPermission are
derived caches, one row per task / package, overwritten on every
recomputation.

Id sets (predecessors, evidence links, linked records) are stored as JSON
lists of ids rather than relationships so that graph work stays independent of
the storage layer.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.sql import func

from ..engine.enums import (
    ConstraintStatus,
    ConstraintType,
    DeliveryStatus,
    DrawingSetStatus,
    PermissionStatus,
    ReadinessStatus,
    RFIStatus,
    RiskLevel,
    Severity,
    TaskStatus,
    TaskType,
    WorkPackagePhase,
    WorkPackageStatus,
)
from .base import Base
from .ids import generate_ulid


def _db_enum(enum_cls, name: str) -> Enum:
    """Database enum mirroring a python enum's values."""
    return Enum(*[member.value for member in enum_cls], name=name)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


task_type_enum = _db_enum(TaskType, "task_type")
task_status_enum = _db_enum(TaskStatus, "task_status")
wp_phase_enum = _db_enum(WorkPackagePhase, "work_package_phase")
wp_status_enum = _db_enum(WorkPackageStatus, "work_package_status")
rfi_status_enum = _db_enum(RFIStatus, "rfi_status")
drawing_set_status_enum = _db_enum(DrawingSetStatus, "drawing_set_status")
delivery_status_enum = _db_enum(DeliveryStatus, "delivery_status")
constraint_type_enum = _db_enum(ConstraintType, "constraint_type")
severity_enum = _db_enum(Severity, "constraint_severity")
constraint_status_enum = _db_enum(ConstraintStatus, "constraint_status")
readiness_status_enum = _db_enum(ReadinessStatus, "readiness_status")
permission_status_enum = _db_enum(PermissionStatus, "permission_status")
risk_level_enum = _db_enum(RiskLevel, "risk_level")


# =============================================================================
# Upstream records
# =============================================================================


class ProjectModel(Base):
    """SQLAlchemy model for projects."""

    __tablename__ = "projects"

    id = Column(String(128), primary_key=True, default=generate_ulid)
    name = Column(String(255), nullable=False)
    project_number = Column(String(64), nullable=True, index=True)
    status = Column(String(32), nullable=False, default="in_progress")
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "project_number": self.project_number,
            "status": self.status,
            "created_at": _iso(self.created_at),
        }


class WorkPackageModel(Base):
    """SQLAlchemy model for work packages."""

    __tablename__ = "work_packages"

    id = Column(String(128), primary_key=True, default=generate_ulid)
    project_id = Column(String(128), ForeignKey("projects.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False, default="")
    phase = Column(wp_phase_enum, nullable=False, default=WorkPackagePhase.DETAILING.value)
    status = Column(wp_status_enum, nullable=False, default=WorkPackageStatus.ACTIVE.value)

    linked_drawing_set_ids = Column(JSON, nullable=False, default=list)
    linked_delivery_ids = Column(JSON, nullable=False, default=list)
    out_of_sequence = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "phase": self.phase,
            "status": self.status,
            "linked_drawing_set_ids": list(self.linked_drawing_set_ids or []),
            "linked_delivery_ids": list(self.linked_delivery_ids or []),
            "out_of_sequence": self.out_of_sequence,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class TaskModel(Base):
    """SQLAlchemy model for schedulable tasks."""

    __tablename__ = "tasks"

    id = Column(String(128), primary_key=True, default=generate_ulid)
    project_id = Column(String(128), ForeignKey("projects.id"), nullable=False, index=True)
    work_package_id = Column(
        String(128), ForeignKey("work_packages.id"), nullable=True, index=True
    )
    name = Column(String(255), nullable=False, default="")
    task_type = Column(task_type_enum, nullable=False, default=TaskType.OTHER.value)
    status = Column(task_status_enum, nullable=False, default=TaskStatus.NOT_STARTED.value)

    # Predecessor task ids (adjacency list; cycles rejected before persistence)
    predecessor_ids = Column(JSON, nullable=False, default=list)

    # Erection area hold
    erection_area = Column(String(128), nullable=True, index=True)
    hold_area = Column(Boolean, nullable=False, default=False)
    hold_reason = Column(Text, nullable=True)

    install_sequence_number = Column(Integer, nullable=True)

    # Planning
    planned_start = Column(DateTime(timezone=True), nullable=True)
    planned_end = Column(DateTime(timezone=True), nullable=True)
    baseline_start = Column(DateTime(timezone=True), nullable=True)
    baseline_end = Column(DateTime(timezone=True), nullable=True)
    actual_start = Column(DateTime(timezone=True), nullable=True)
    actual_end = Column(DateTime(timezone=True), nullable=True)
    float_consumed_hours = Column(Float, nullable=False, default=0.0)

    # Links to upstream records
    linked_rfi_ids = Column(JSON, nullable=False, default=list)
    linked_drawing_set_ids = Column(JSON, nullable=False, default=list)
    linked_delivery_ids = Column(JSON, nullable=False, default=list)
    gating_delivery_ids = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    __table_args__ = (
        Index("ix_tasks_project_type", "project_id", "task_type"),
        Index("ix_tasks_project_area", "project_id", "erection_area"),
        Index("ix_tasks_project_sequence", "project_id", "install_sequence_number"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "work_package_id": self.work_package_id,
            "name": self.name,
            "task_type": self.task_type,
            "status": self.status,
            "predecessor_ids": list(self.predecessor_ids or []),
            "erection_area": self.erection_area,
            "hold_area": self.hold_area,
            "hold_reason": self.hold_reason,
            "install_sequence_number": self.install_sequence_number,
            "planned_start": _iso(self.planned_start),
            "planned_end": _iso(self.planned_end),
            "baseline_start": _iso(self.baseline_start),
            "baseline_end": _iso(self.baseline_end),
            "actual_start": _iso(self.actual_start),
            "actual_end": _iso(self.actual_end),
            "float_consumed_hours": self.float_consumed_hours,
            "linked_rfi_ids": list(self.linked_rfi_ids or []),
            "linked_drawing_set_ids": list(self.linked_drawing_set_ids or []),
            "linked_delivery_ids": list(self.linked_delivery_ids or []),
            "gating_delivery_ids": list(self.gating_delivery_ids or []),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class RFIModel(Base):
    """SQLAlchemy model for requests for information."""

    __tablename__ = "rfis"

    id = Column(String(128), primary_key=True, default=generate_ulid)
    project_id = Column(String(128), ForeignKey("projects.id"), nullable=False, index=True)
    rfi_number = Column(String(32), nullable=True)
    subject = Column(String(500), nullable=False, default="")
    status = Column(rfi_status_enum, nullable=False, default=RFIStatus.DRAFT.value, index=True)
    is_blocker = Column(Boolean, nullable=False, default=False)
    linked_task_ids = Column(JSON, nullable=False, default=list)
    linked_drawing_set_ids = Column(JSON, nullable=False, default=list)
    due_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "rfi_number": self.rfi_number,
            "subject": self.subject,
            "status": self.status,
            "is_blocker": self.is_blocker,
            "linked_task_ids": list(self.linked_task_ids or []),
            "linked_drawing_set_ids": list(self.linked_drawing_set_ids or []),
            "due_date": _iso(self.due_date),
            "created_at": _iso(self.created_at),
        }


class DrawingSetModel(Base):
    """SQLAlchemy model for drawing sets."""

    __tablename__ = "drawing_sets"

    id = Column(String(128), primary_key=True, default=generate_ulid)
    project_id = Column(String(128), ForeignKey("projects.id"), nullable=False, index=True)
    set_number = Column(String(64), nullable=True)
    title = Column(String(255), nullable=False, default="")
    status = Column(
        drawing_set_status_enum, nullable=False, default=DrawingSetStatus.IFA.value
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "set_number": self.set_number,
            "title": self.title,
            "status": self.status,
            "created_at": _iso(self.created_at),
        }


class DrawingRevisionModel(Base):
    """SQLAlchemy model for drawing revisions."""

    __tablename__ = "drawing_revisions"

    id = Column(String(128), primary_key=True, default=generate_ulid)
    project_id = Column(String(128), ForeignKey("projects.id"), nullable=False, index=True)
    drawing_set_id = Column(
        String(128), ForeignKey("drawing_sets.id"), nullable=False, index=True
    )
    revision_number = Column(String(32), nullable=False, default="0")
    is_current = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "drawing_set_id": self.drawing_set_id,
            "revision_number": self.revision_number,
            "is_current": self.is_current,
            "created_at": _iso(self.created_at),
        }


class DeliveryModel(Base):
    """SQLAlchemy model for material deliveries."""

    __tablename__ = "deliveries"

    id = Column(String(128), primary_key=True, default=generate_ulid)
    project_id = Column(String(128), ForeignKey("projects.id"), nullable=False, index=True)
    delivery_number = Column(String(64), nullable=True)
    package_name = Column(String(255), nullable=False, default="")
    delivery_status = Column(
        delivery_status_enum, nullable=False, default=DeliveryStatus.SCHEDULED.value
    )
    scheduled_date = Column(DateTime(timezone=True), nullable=True)
    linked_work_package_ids = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "delivery_number": self.delivery_number,
            "package_name": self.package_name,
            "delivery_status": self.delivery_status,
            "scheduled_date": _iso(self.scheduled_date),
            "linked_work_package_ids": list(self.linked_work_package_ids or []),
            "created_at": _iso(self.created_at),
        }


# =============================================================================
# Engine-owned records
# =============================================================================


class ConstraintModel(Base):
    """A typed, gradeable blocking condition on a task and/or work package.

    Invariants:
    - CLEARED rows are history and are never modified again.
    - Rows are never deleted.
    """

    __tablename__ = "constraints"

    id = Column(String(128), primary_key=True, default=generate_ulid)
    project_id = Column(String(128), ForeignKey("projects.id"), nullable=False, index=True)
    task_id = Column(String(128), ForeignKey("tasks.id"), nullable=True, index=True)
    work_package_id = Column(
        String(128), ForeignKey("work_packages.id"), nullable=True, index=True
    )

    constraint_type = Column(constraint_type_enum, nullable=False)
    severity = Column(severity_enum, nullable=False)
    status = Column(
        constraint_status_enum, nullable=False, default=ConstraintStatus.OPEN.value
    )
    evidence_links = Column(JSON, nullable=False, default=list)

    notes = Column(Text, nullable=True)
    owner_role = Column(String(32), nullable=True)
    due_date = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    created_by = Column(String(128), nullable=True)
    cleared_at = Column(DateTime(timezone=True), nullable=True)
    cleared_by = Column(String(128), nullable=True)

    __table_args__ = (
        Index("ix_constraints_project_type_status", "project_id", "constraint_type", "status"),
        Index("ix_constraints_task_status", "task_id", "status"),
        Index("ix_constraints_wp_status", "work_package_id", "status"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "task_id": self.task_id,
            "work_package_id": self.work_package_id,
            "constraint_type": self.constraint_type,
            "severity": self.severity,
            "status": self.status,
            "evidence_links": list(self.evidence_links or []),
            "notes": self.notes,
            "owner_role": self.owner_role,
            "due_date": _iso(self.due_date),
            "created_at": _iso(self.created_at),
            "created_by": self.created_by,
            "cleared_at": _iso(self.cleared_at),
            "cleared_by": self.cleared_by,
        }


class ReadinessRecordModel(Base):
    """Cached readiness verdict for one erection task."""

    __tablename__ = "readiness_records"

    task_id = Column(String(128), ForeignKey("tasks.id"), primary_key=True)
    project_id = Column(String(128), nullable=False, index=True)
    work_package_id = Column(String(128), nullable=True, index=True)
    readiness_status = Column(readiness_status_enum, nullable=False)
    blocker_count = Column(Integer, nullable=False, default=0)
    warning_count = Column(Integer, nullable=False, default=0)
    drivers = Column(JSON, nullable=False, default=list)
    evaluated_at = Column(DateTime(timezone=True), nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "project_id": self.project_id,
            "work_package_id": self.work_package_id,
            "readiness_status": self.readiness_status,
            "blocker_count": self.blocker_count,
            "warning_count": self.warning_count,
            "drivers": list(self.drivers or []),
            "evaluated_at": _iso(self.evaluated_at),
        }


class WorkPackageReadinessModel(Base):
    """Cached lookahead readiness for one work package."""

    __tablename__ = "work_package_readiness"

    work_package_id = Column(String(128), ForeignKey("work_packages.id"), primary_key=True)
    project_id = Column(String(128), nullable=False, index=True)
    lookahead_ready = Column(readiness_status_enum, nullable=False)
    lookahead_blockers = Column(Integer, nullable=False, default=0)
    lookahead_warnings = Column(Integer, nullable=False, default=0)
    task_count = Column(Integer, nullable=False, default=0)
    evaluated_at = Column(DateTime(timezone=True), nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "work_package_id": self.work_package_id,
            "project_id": self.project_id,
            "lookahead_ready": self.lookahead_ready,
            "lookahead_blockers": self.lookahead_blockers,
            "lookahead_warnings": self.lookahead_warnings,
            "task_count": self.task_count,
            "evaluated_at": _iso(self.evaluated_at),
        }


class ExecutionPermissionModel(Base):
    """Gate state for one work package, with optional manual override."""

    __tablename__ = "execution_permissions"

    work_package_id = Column(String(128), ForeignKey("work_packages.id"), primary_key=True)
    project_id = Column(String(128), nullable=False, index=True)

    permission_status = Column(permission_status_enum, nullable=False)
    computed_status = Column(permission_status_enum, nullable=False)
    blocking_reason = Column(Text, nullable=True)

    risk_level = Column(risk_level_enum, nullable=False)
    risk_score = Column(Integer, nullable=False, default=0)
    risk_drivers = Column(JSON, nullable=False, default=list)

    # Manual override
    approved_by = Column(String(128), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    override_reason = Column(Text, nullable=True)
    override_readiness = Column(readiness_status_enum, nullable=True)
    override_risk_level = Column(risk_level_enum, nullable=True)

    evaluated_at = Column(DateTime(timezone=True), nullable=False)

    @property
    def is_overridden(self) -> bool:
        return self.approved_by is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "work_package_id": self.work_package_id,
            "project_id": self.project_id,
            "permission_status": self.permission_status,
            "computed_status": self.computed_status,
            "blocking_reason": self.blocking_reason,
            "risk_level": self.risk_level,
            "risk_score": self.risk_score,
            "risk_drivers": list(self.risk_drivers or []),
            "approved_by": self.approved_by,
            "approved_at": _iso(self.approved_at),
            "override_reason": self.override_reason,
            "is_overridden": self.is_overridden,
            "evaluated_at": _iso(self.evaluated_at),
        }
