"""
Constraint store.

Data access plus derivation rules for Constraint rows:
- opening is idempotent: an OPEN constraint with the same scope, type and
  evidence link is returned unchanged instead of duplicated
- clearing never deletes; it stamps ``cleared_at`` / ``cleared_by`` and the
  row becomes immutable history
- only OPEN constraints participate in readiness evaluation
- syncing reconciles every OPEN row citing one piece of evidence against the
  scopes it currently touches, so unlinked or downgraded evidence never
  leaves a stale row behind
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog

from ..db.audit_service import AuditService
from ..db.ids import as_utc, utc_now
from ..db.models import ConstraintModel, TaskModel
from ..db.store import EntityStore
from .enums import (
    ConstraintStatus,
    ConstraintType,
    EntityName,
    Severity,
    require_exhaustive,
)
from .errors import MISSING_IDENTIFIER, UNKNOWN_CONSTRAINT_TYPE, ValidationError, require_identifier

logger = structlog.get_logger(__name__)

DEFAULT_SEVERITY: Dict[ConstraintType, Severity] = require_exhaustive(
    {
        ConstraintType.DRAWING_NOT_RELEASED: Severity.BLOCKER,
        ConstraintType.RFI_RESPONSE_REQUIRED: Severity.BLOCKER,
        ConstraintType.DELIVERY_PENDING: Severity.WARNING,
        ConstraintType.AREA_HOLD: Severity.BLOCKER,
        ConstraintType.PREDECESSOR_INCOMPLETE: Severity.BLOCKER,
        ConstraintType.ENGINEER_REVIEW_REQUIRED: Severity.WARNING,
        ConstraintType.OTHER: Severity.WARNING,
    },
    ConstraintType,
    "DEFAULT_SEVERITY",
)

OWNER_ROLE: Dict[ConstraintType, str] = require_exhaustive(
    {
        ConstraintType.DRAWING_NOT_RELEASED: "DETAILING",
        ConstraintType.RFI_RESPONSE_REQUIRED: "PM",
        ConstraintType.DELIVERY_PENDING: "FAB",
        ConstraintType.AREA_HOLD: "FIELD",
        ConstraintType.PREDECESSOR_INCOMPLETE: "FIELD",
        ConstraintType.ENGINEER_REVIEW_REQUIRED: "ENGINEER",
        ConstraintType.OTHER: "PM",
    },
    ConstraintType,
    "OWNER_ROLE",
)


def parse_constraint_type(value: Any) -> ConstraintType:
    """Map a raw value onto the closed set of constraint types."""
    try:
        return ConstraintType(value)
    except ValueError:
        raise ValidationError(
            code=UNKNOWN_CONSTRAINT_TYPE,
            message=f"Unknown constraint type '{value}'",
            details={"allowed": [t.value for t in ConstraintType]},
        ) from None


def default_severity(constraint_type: Any) -> Severity:
    return DEFAULT_SEVERITY[parse_constraint_type(constraint_type)]


def is_open(constraint: ConstraintModel) -> bool:
    return constraint.status == ConstraintStatus.OPEN.value


def _scope_key(task_id: Optional[str], work_package_id: Optional[str]) -> Tuple[str, str]:
    return ("task", task_id) if task_id else ("package", work_package_id)


@dataclass
class SyncOutcome:
    opened: List[ConstraintModel] = field(default_factory=list)
    updated: List[ConstraintModel] = field(default_factory=list)
    cleared: List[ConstraintModel] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.opened or self.updated or self.cleared)


class ConstraintStore:
    """Open, clear and query Constraint rows."""

    def __init__(
        self,
        store: EntityStore,
        audit: Optional[AuditService] = None,
        actor_id: str = "readiness-engine",
    ):
        self.store = store
        self.audit = audit or AuditService(store.db)
        self.actor_id = actor_id

    def find_open(
        self,
        project_id: str,
        constraint_type: ConstraintType,
        evidence_link: Optional[str],
        task_id: Optional[str] = None,
        work_package_id: Optional[str] = None,
    ) -> Optional[ConstraintModel]:
        rows = self.store.filter(
            EntityName.CONSTRAINT,
            project_id=project_id,
            constraint_type=constraint_type,
            status=ConstraintStatus.OPEN,
            task_id=task_id,
            work_package_id=work_package_id,
        )
        for row in rows:
            if evidence_link is None or evidence_link in (row.evidence_links or []):
                return row
        return None

    def open(
        self,
        project_id: str,
        constraint_type: Any,
        evidence_link: Optional[str] = None,
        task_id: Optional[str] = None,
        work_package_id: Optional[str] = None,
        severity: Optional[Severity] = None,
        notes: Optional[str] = None,
        due_date: Optional[datetime] = None,
        actor_id: Optional[str] = None,
        trace_id: Optional[str] = None,
    ) -> Tuple[ConstraintModel, bool]:
        """
        Open a constraint unless an identical OPEN one already exists.

        Returns:
            (constraint, created) where ``created`` is False for the no-op case.
        """
        project_id = require_identifier(project_id, "project_id")
        if not task_id and not work_package_id:
            raise ValidationError(
                code=MISSING_IDENTIFIER,
                message="A constraint needs a task_id or a work_package_id",
                details={"field": "task_id|work_package_id"},
            )
        ctype = parse_constraint_type(constraint_type)

        existing = self.find_open(project_id, ctype, evidence_link, task_id, work_package_id)
        if existing is not None:
            return existing, False

        row = self._create(
            project_id,
            ctype,
            evidence_link,
            task_id=task_id,
            work_package_id=work_package_id,
            severity=severity or DEFAULT_SEVERITY[ctype],
            notes=notes,
            due_date=due_date,
            actor_id=actor_id or self.actor_id,
            trace_id=trace_id,
        )
        self.store.commit()
        return row, True

    def sync(
        self,
        project_id: str,
        constraint_type: Any,
        evidence_link: str,
        scopes: Iterable[Tuple[Optional[str], Optional[str]]],
        severity: Optional[Severity] = None,
        notes: Optional[str] = None,
        due_date: Optional[datetime] = None,
        actor_id: Optional[str] = None,
        trace_id: Optional[str] = None,
    ) -> SyncOutcome:
        """
        Make the OPEN constraints citing ``evidence_link`` match ``scopes``.

        Each scope is a ``(task_id, work_package_id)`` pair; a task scope is
        keyed by the task alone. Missing scopes are opened, OPEN rows whose
        scope is no longer listed are cleared, and rows whose severity, notes,
        due date or package drifted are updated in place. An empty ``scopes``
        clears everything of this type citing the evidence.
        """
        project_id = require_identifier(project_id, "project_id")
        evidence_link = require_identifier(evidence_link, "evidence_link")
        ctype = parse_constraint_type(constraint_type)
        severity = Severity(severity) if severity else DEFAULT_SEVERITY[ctype]
        actor_id = actor_id or self.actor_id

        wanted: Dict[Tuple[str, str], Tuple[Optional[str], Optional[str]]] = {}
        for task_id, work_package_id in scopes:
            if not task_id and not work_package_id:
                continue
            wanted.setdefault(_scope_key(task_id, work_package_id), (task_id, work_package_id))

        outcome = SyncOutcome()
        rows = self.store.filter_linked(
            EntityName.CONSTRAINT,
            "evidence_links",
            evidence_link,
            order_by="created_at",
            project_id=project_id,
            constraint_type=ctype,
            status=ConstraintStatus.OPEN,
        )
        for row in rows:
            key = _scope_key(row.task_id, row.work_package_id)
            if key not in wanted:
                self._clear_row(row, actor_id, trace_id, note=f"{ctype.value} no longer linked to {evidence_link}")
                outcome.cleared.append(row)
                continue
            _, work_package_id = wanted.pop(key)
            if self._refresh_row(row, severity, notes, due_date, work_package_id, actor_id, trace_id):
                outcome.updated.append(row)

        for task_id, work_package_id in wanted.values():
            outcome.opened.append(
                self._create(
                    project_id,
                    ctype,
                    evidence_link,
                    task_id=task_id,
                    work_package_id=work_package_id,
                    severity=severity,
                    notes=notes,
                    due_date=due_date,
                    actor_id=actor_id,
                    trace_id=trace_id,
                )
            )

        if outcome.changed:
            self.store.commit()
            logger.info(
                "constraints_synced",
                constraint_type=ctype.value,
                evidence=evidence_link,
                opened=len(outcome.opened),
                updated=len(outcome.updated),
                cleared=len(outcome.cleared),
            )
        return outcome

    def _create(
        self,
        project_id: str,
        ctype: ConstraintType,
        evidence_link: Optional[str],
        task_id: Optional[str],
        work_package_id: Optional[str],
        severity: Severity,
        notes: Optional[str],
        due_date: Optional[datetime],
        actor_id: str,
        trace_id: Optional[str],
    ) -> ConstraintModel:
        row = self.store.create(
            EntityName.CONSTRAINT,
            {
                "project_id": project_id,
                "task_id": task_id,
                "work_package_id": work_package_id,
                "constraint_type": ctype,
                "severity": severity,
                "status": ConstraintStatus.OPEN,
                "evidence_links": [evidence_link] if evidence_link else [],
                "notes": notes,
                "owner_role": OWNER_ROLE[ctype],
                "due_date": due_date,
                "created_at": utc_now(),
                "created_by": actor_id,
            },
            commit=False,
        )
        self.audit.log_create(
            entity_kind="Constraint",
            entity_id=row.id,
            after=row.to_dict(),
            actor_id=actor_id,
            trace_id=trace_id,
        )
        logger.info(
            "constraint_opened",
            constraint_id=row.id,
            constraint_type=ctype.value,
            task_id=task_id,
            work_package_id=work_package_id,
            evidence=evidence_link,
        )
        return row

    def _refresh_row(
        self,
        row: ConstraintModel,
        severity: Severity,
        notes: Optional[str],
        due_date: Optional[datetime],
        work_package_id: Optional[str],
        actor_id: str,
        trace_id: Optional[str],
    ) -> bool:
        """Bring an OPEN row in line with its evidence. Returns True if anything changed."""
        before: Dict[str, Any] = {}
        after: Dict[str, Any] = {}
        if row.severity != severity.value:
            before["severity"], after["severity"] = row.severity, severity.value
        if row.notes != notes:
            before["notes"], after["notes"] = row.notes, notes
        if as_utc(row.due_date) != as_utc(due_date):
            before["due_date"] = row.due_date.isoformat() if row.due_date else None
            after["due_date"] = due_date.isoformat() if due_date else None
        if row.work_package_id != work_package_id:
            before["work_package_id"], after["work_package_id"] = row.work_package_id, work_package_id
        if not after:
            return False

        row.severity = severity.value
        row.notes = notes
        row.due_date = due_date
        row.work_package_id = work_package_id
        self.audit.log_update(
            entity_kind="Constraint",
            entity_id=row.id,
            before=before,
            after=after,
            actor_id=actor_id,
            trace_id=trace_id,
        )
        logger.info("constraint_refreshed", constraint_id=row.id, changed=sorted(after))
        return True

    def clear(
        self,
        constraint_type: Any,
        evidence_link: str,
        project_id: Optional[str] = None,
        task_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        trace_id: Optional[str] = None,
    ) -> List[ConstraintModel]:
        """Clear every OPEN constraint of ``constraint_type`` citing ``evidence_link``."""
        ctype = parse_constraint_type(constraint_type)
        evidence_link = require_identifier(evidence_link, "evidence_link")
        criteria: Dict[str, Any] = {"constraint_type": ctype, "status": ConstraintStatus.OPEN}
        if project_id:
            criteria["project_id"] = project_id
        if task_id:
            criteria["task_id"] = task_id

        cleared = []
        for row in self.store.filter_linked(
            EntityName.CONSTRAINT, "evidence_links", evidence_link, **criteria
        ):
            self._clear_row(row, actor_id, trace_id, note=f"{ctype.value} resolved by {evidence_link}")
            cleared.append(row)
        if cleared:
            self.store.commit()
            logger.info(
                "constraints_cleared",
                constraint_type=ctype.value,
                evidence=evidence_link,
                count=len(cleared),
            )
        return cleared

    def clear_by_id(
        self, constraint_id: str, actor_id: Optional[str] = None, trace_id: Optional[str] = None
    ) -> Optional[ConstraintModel]:
        """Clear one constraint by id. Already-cleared rows are returned untouched."""
        row = self.store.get(EntityName.CONSTRAINT, constraint_id)
        if row is None or not is_open(row):
            return row
        self._clear_row(row, actor_id, trace_id, note="Cleared manually")
        self.store.commit()
        return row

    def _clear_row(
        self,
        row: ConstraintModel,
        actor_id: Optional[str],
        trace_id: Optional[str],
        note: Optional[str] = None,
    ) -> None:
        before = {"status": row.status}
        row.status = ConstraintStatus.CLEARED.value
        row.cleared_at = utc_now()
        row.cleared_by = actor_id or self.actor_id
        self.audit.log_cleared(
            entity_kind="Constraint",
            entity_id=row.id,
            before=before,
            actor_id=row.cleared_by,
            note=note,
            trace_id=trace_id,
        )

    def open_for_task(self, task: TaskModel) -> List[ConstraintModel]:
        """OPEN constraints on the task itself plus package-wide ones on its package."""
        rows = self.store.filter(
            EntityName.CONSTRAINT,
            order_by="created_at",
            task_id=task.id,
            status=ConstraintStatus.OPEN,
        )
        if task.work_package_id:
            rows += self.store.filter(
                EntityName.CONSTRAINT,
                order_by="created_at",
                work_package_id=task.work_package_id,
                task_id=None,
                status=ConstraintStatus.OPEN,
            )
        return rows

    def open_for_package(self, work_package_id: str, task_ids: Optional[List[str]] = None) -> List[ConstraintModel]:
        """OPEN constraints on the package and, optionally, on the given tasks."""
        rows = self.store.filter(
            EntityName.CONSTRAINT,
            work_package_id=work_package_id,
            status=ConstraintStatus.OPEN,
        )
        if task_ids:
            seen = {row.id for row in rows}
            rows += [
                row
                for row in self.store.filter(
                    EntityName.CONSTRAINT, task_id=list(task_ids), status=ConstraintStatus.OPEN
                )
                if row.id not in seen
            ]
        return rows
