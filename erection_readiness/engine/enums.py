"""
Canonical enums for the readiness engine.

Every rule table in the engine is keyed by one of these closed sets. Adding a
member here without extending the tables is caught by the completeness checks
in the modules that own those tables.
"""

from enum import Enum


class TaskType(str, Enum):
    """Schedulable task kinds. Only erection work is readiness-gated."""

    ERECTION = "ERECTION"
    OTHER = "OTHER"


class TaskStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_TASK_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED})


class WorkPackagePhase(str, Enum):
    DETAILING = "detailing"
    FABRICATION = "fabrication"
    DELIVERY = "delivery"
    ERECTION = "erection"
    CLOSEOUT = "closeout"


class WorkPackageStatus(str, Enum):
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    COMPLETE = "complete"


class ConstraintType(str, Enum):
    """Blocking condition kinds."""

    DRAWING_NOT_RELEASED = "DRAWING_NOT_RELEASED"
    RFI_RESPONSE_REQUIRED = "RFI_RESPONSE_REQUIRED"
    DELIVERY_PENDING = "DELIVERY_PENDING"
    AREA_HOLD = "AREA_HOLD"
    PREDECESSOR_INCOMPLETE = "PREDECESSOR_INCOMPLETE"
    ENGINEER_REVIEW_REQUIRED = "ENGINEER_REVIEW_REQUIRED"
    OTHER = "OTHER"


class Severity(str, Enum):
    BLOCKER = "BLOCKER"
    WARNING = "WARNING"


class ConstraintStatus(str, Enum):
    OPEN = "OPEN"
    CLEARED = "CLEARED"


class ReadinessStatus(str, Enum):
    """Three-valued readiness verdict, in ascending dominance order."""

    READY = "READY"
    READY_WITH_WARNINGS = "READY_WITH_WARNINGS"
    NOT_READY = "NOT_READY"


class PermissionStatus(str, Enum):
    BLOCKED = "BLOCKED"
    PM_APPROVAL_REQUIRED = "PM_APPROVAL_REQUIRED"
    ENGINEER_REVIEW_REQUIRED = "ENGINEER_REVIEW_REQUIRED"
    RELEASED = "RELEASED"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RFIStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    ANSWERED = "answered"
    CLOSED = "closed"


RESOLVED_RFI_STATUSES = frozenset({RFIStatus.ANSWERED, RFIStatus.CLOSED})


class DrawingSetStatus(str, Enum):
    """Detailing approval stages; only FFF (fit for fabrication) is released."""

    IFA = "IFA"
    BFA = "BFA"
    BFS = "BFS"
    REV = "REV"
    FFF = "FFF"


class DeliveryStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_TRANSIT = "in_transit"
    DELAYED = "delayed"
    EXCEPTION = "exception"
    RECEIVED = "received"
    CLOSED = "closed"


ARRIVED_DELIVERY_STATUSES = frozenset({DeliveryStatus.RECEIVED, DeliveryStatus.CLOSED})
LATE_DELIVERY_STATUSES = frozenset({DeliveryStatus.DELAYED, DeliveryStatus.EXCEPTION})


class MutationKind(str, Enum):
    """Kinds of upstream mutation notifications."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class EntityName(str, Enum):
    """Entities reachable through the generic entity store."""

    PROJECT = "Project"
    TASK = "Task"
    WORK_PACKAGE = "WorkPackage"
    RFI = "RFI"
    DRAWING_SET = "DrawingSet"
    DRAWING_REVISION = "DrawingRevision"
    DELIVERY = "Delivery"
    CONSTRAINT = "Constraint"


class ActorKind(str, Enum):
    HUMAN = "human"
    AGENT = "agent"
    SYSTEM = "system"


def require_exhaustive(table: dict, enum_cls, table_name: str) -> dict:
    """Fail at import time when a rule table does not cover every enum member."""
    missing = [member.value for member in enum_cls if member not in table]
    if missing:
        raise RuntimeError(f"{table_name} is missing entries for: {', '.join(missing)}")
    return table
