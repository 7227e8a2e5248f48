"""
Readiness evaluator.

Aggregates every open blocking condition of an erection task into one
verdict:

- NOT_READY            if blocker_count > 0
- READY_WITH_WARNINGS  if warning_count > 0
- READY                otherwise

Conditions come from two places: OPEN Constraint rows (on the task or
package-wide on its work package) and implicit conditions read straight from
linked upstream records (unreleased drawing sets, open RFIs, pending
deliveries, area hold, incomplete predecessors). Both are reduced to
``Finding`` values and merged by (constraint_type, evidence id), keeping the
most severe. A linked record that cannot be found contributes nothing.

Only ERECTION tasks are evaluated. Evaluation writes the task's
ReadinessRecord and never touches the Task row.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from ..db.ids import utc_now
from ..db.models import ReadinessRecordModel, TaskModel, WorkPackageModel
from ..db.store import EntityStore
from .constraints import ConstraintStore
from .enums import (
    ARRIVED_DELIVERY_STATUSES,
    RESOLVED_RFI_STATUSES,
    ConstraintType,
    DeliveryStatus,
    DrawingSetStatus,
    EntityName,
    ReadinessStatus,
    RFIStatus,
    Severity,
    TaskStatus,
    TaskType,
)
from .errors import TASK_NOT_FOUND, ValidationError

logger = structlog.get_logger(__name__)

_SEVERITY_RANK = {Severity.WARNING: 0, Severity.BLOCKER: 1}


@dataclass(frozen=True)
class Finding:
    """One open condition contributing to a task's readiness."""

    constraint_type: ConstraintType
    severity: Severity
    evidence_id: str
    summary: str
    constraint_id: Optional[str] = None

    @property
    def key(self) -> Tuple[ConstraintType, str]:
        return (self.constraint_type, self.evidence_id)

    @property
    def driver(self) -> str:
        return (
            f"{self.severity.value}: {self.constraint_type.value} - "
            f"{self.summary} [{self.evidence_id}]"
        )


@dataclass
class ReadinessVerdict:
    readiness_status: ReadinessStatus
    blocker_count: int = 0
    warning_count: int = 0
    drivers: List[str] = field(default_factory=list)
    findings: List[Finding] = field(default_factory=list)

    @property
    def warning_drivers(self) -> List[str]:
        return [f.driver for f in self.findings if f.severity == Severity.WARNING]

    def to_dict(self) -> Dict[str, object]:
        return {
            "readiness_status": self.readiness_status.value,
            "blocker_count": self.blocker_count,
            "warning_count": self.warning_count,
            "drivers": list(self.drivers),
        }


READY_VERDICT = ReadinessVerdict(readiness_status=ReadinessStatus.READY)


def merge_findings(findings: Iterable[Finding]) -> List[Finding]:
    """Collapse findings sharing a key, keeping the most severe (first wins ties)."""
    merged: Dict[Tuple[ConstraintType, str], Finding] = {}
    for finding in findings:
        current = merged.get(finding.key)
        if current is None or _SEVERITY_RANK[finding.severity] > _SEVERITY_RANK[current.severity]:
            merged[finding.key] = finding
    return list(merged.values())


def compute_verdict(findings: Iterable[Finding]) -> ReadinessVerdict:
    """Pure verdict rule over a set of findings. Drivers list blockers first."""
    merged = merge_findings(findings)
    blockers = [f for f in merged if f.severity == Severity.BLOCKER]
    warnings = [f for f in merged if f.severity == Severity.WARNING]

    if blockers:
        status = ReadinessStatus.NOT_READY
    elif warnings:
        status = ReadinessStatus.READY_WITH_WARNINGS
    else:
        status = ReadinessStatus.READY

    ordered = blockers + warnings
    return ReadinessVerdict(
        readiness_status=status,
        blocker_count=len(blockers),
        warning_count=len(warnings),
        drivers=[f.driver for f in ordered],
        findings=ordered,
    )


def _unique(*id_lists: Iterable[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for ids in id_lists:
        for item in ids or []:
            seen.setdefault(item, None)
    return list(seen)


def is_erection(task: TaskModel) -> bool:
    return task.task_type == TaskType.ERECTION.value


class ReadinessEvaluator:
    """Evaluate and cache readiness for erection tasks."""

    def __init__(self, store: EntityStore, constraints: Optional[ConstraintStore] = None):
        self.store = store
        self.constraints = constraints or ConstraintStore(store)

    # Collection -------------------------------------------------------------

    def collect(self, task: TaskModel) -> List[Finding]:
        """Gather every open condition affecting ``task``."""
        package: Optional[WorkPackageModel] = self.store.get(
            EntityName.WORK_PACKAGE, task.work_package_id
        )
        findings = self._explicit(task)
        findings += self._drawing_sets(task, package)
        findings += self._rfis(task)
        findings += self._deliveries(task, package)
        findings += self._area_hold(task)
        findings += self._predecessors(task)
        return findings

    def _explicit(self, task: TaskModel) -> List[Finding]:
        findings = []
        for row in self.constraints.open_for_task(task):
            ctype = ConstraintType(row.constraint_type)
            evidence = (row.evidence_links or [row.id])[0]
            findings.append(
                Finding(
                    constraint_type=ctype,
                    severity=Severity(row.severity),
                    evidence_id=evidence,
                    summary=row.notes or f"Open {ctype.value.lower().replace('_', ' ')} constraint",
                    constraint_id=row.id,
                )
            )
        return findings

    def _drawing_sets(self, task: TaskModel, package: Optional[WorkPackageModel]) -> List[Finding]:
        ids = _unique(
            task.linked_drawing_set_ids,
            package.linked_drawing_set_ids if package else [],
        )
        findings = []
        for drawing_set_id in ids:
            drawing_set = self.store.get(EntityName.DRAWING_SET, drawing_set_id)
            if drawing_set is None:
                logger.debug("linked_drawing_set_missing", task_id=task.id, drawing_set_id=drawing_set_id)
                continue
            if drawing_set.status != DrawingSetStatus.FFF.value:
                findings.append(
                    Finding(
                        constraint_type=ConstraintType.DRAWING_NOT_RELEASED,
                        severity=Severity.BLOCKER,
                        evidence_id=drawing_set.id,
                        summary=f"Drawing set {drawing_set.set_number or drawing_set.id} "
                        f"not released ({drawing_set.status})",
                    )
                )
        return findings

    def _rfis(self, task: TaskModel) -> List[Finding]:
        rfis = {}
        for rfi_id in task.linked_rfi_ids or []:
            rfi = self.store.get(EntityName.RFI, rfi_id)
            if rfi is None:
                logger.debug("linked_rfi_missing", task_id=task.id, rfi_id=rfi_id)
                continue
            rfis[rfi.id] = rfi
        for rfi in self.store.filter_linked(
            EntityName.RFI, "linked_task_ids", task.id, project_id=task.project_id
        ):
            rfis.setdefault(rfi.id, rfi)

        findings = []
        for rfi in rfis.values():
            if RFIStatus(rfi.status) in RESOLVED_RFI_STATUSES:
                continue
            label = f"RFI #{rfi.rfi_number}" if rfi.rfi_number else f"RFI {rfi.id}"
            findings.append(
                Finding(
                    constraint_type=ConstraintType.RFI_RESPONSE_REQUIRED,
                    severity=Severity.BLOCKER if rfi.is_blocker else Severity.WARNING,
                    evidence_id=rfi.id,
                    summary=f"{label} '{rfi.subject}' awaiting response ({rfi.status})",
                )
            )
        return findings

    def _deliveries(self, task: TaskModel, package: Optional[WorkPackageModel]) -> List[Finding]:
        gating = set(task.gating_delivery_ids or [])
        ids = _unique(
            task.linked_delivery_ids,
            task.gating_delivery_ids,
            package.linked_delivery_ids if package else [],
        )
        deliveries = {}
        for delivery_id in ids:
            delivery = self.store.get(EntityName.DELIVERY, delivery_id)
            if delivery is None:
                logger.debug("linked_delivery_missing", task_id=task.id, delivery_id=delivery_id)
                continue
            deliveries[delivery.id] = delivery
        if package is not None:
            for delivery in self.store.filter_linked(
                EntityName.DELIVERY, "linked_work_package_ids", package.id,
                project_id=task.project_id,
            ):
                deliveries.setdefault(delivery.id, delivery)

        findings = []
        for delivery in deliveries.values():
            if DeliveryStatus(delivery.delivery_status) in ARRIVED_DELIVERY_STATUSES:
                continue
            label = " ".join(
                part for part in (delivery.delivery_number or delivery.id, delivery.package_name) if part
            )
            findings.append(
                Finding(
                    constraint_type=ConstraintType.DELIVERY_PENDING,
                    severity=Severity.BLOCKER if delivery.id in gating else Severity.WARNING,
                    evidence_id=delivery.id,
                    summary=f"Delivery {label} not on site ({delivery.delivery_status})",
                )
            )
        return findings

    def _area_hold(self, task: TaskModel) -> List[Finding]:
        if not task.hold_area:
            return []
        area = task.erection_area or "unassigned area"
        reason = f": {task.hold_reason}" if task.hold_reason else ""
        return [
            Finding(
                constraint_type=ConstraintType.AREA_HOLD,
                severity=Severity.BLOCKER,
                evidence_id=task.id,
                summary=f"Erection area '{area}' on hold{reason}",
            )
        ]

    def _predecessors(self, task: TaskModel) -> List[Finding]:
        findings = []
        for predecessor_id in task.predecessor_ids or []:
            predecessor = self.store.get(EntityName.TASK, predecessor_id)
            if predecessor is None:
                logger.debug("predecessor_missing", task_id=task.id, predecessor_id=predecessor_id)
                continue
            if predecessor.status != TaskStatus.COMPLETED.value:
                findings.append(
                    Finding(
                        constraint_type=ConstraintType.PREDECESSOR_INCOMPLETE,
                        severity=Severity.BLOCKER,
                        evidence_id=predecessor.id,
                        summary=f"Predecessor '{predecessor.name or predecessor.id}' "
                        f"is {predecessor.status}",
                    )
                )
        return findings

    # Evaluation -------------------------------------------------------------

    def verdict(self, task: TaskModel) -> ReadinessVerdict:
        """Compute the verdict without persisting it. Non-erection tasks are READY."""
        if not is_erection(task):
            return READY_VERDICT
        return compute_verdict(self.collect(task))

    def evaluate(self, task: TaskModel, commit: bool = True) -> Optional[ReadinessRecordModel]:
        """
        Evaluate ``task`` and overwrite its ReadinessRecord.

        Returns None for non-erection tasks, which are never evaluated.
        """
        if not is_erection(task):
            return None

        verdict = compute_verdict(self.collect(task))
        record = self.store.db.get(ReadinessRecordModel, task.id)
        if record is None:
            record = ReadinessRecordModel(task_id=task.id)
            self.store.db.add(record)
        record.project_id = task.project_id
        record.work_package_id = task.work_package_id
        record.readiness_status = verdict.readiness_status.value
        record.blocker_count = verdict.blocker_count
        record.warning_count = verdict.warning_count
        record.drivers = verdict.drivers
        record.evaluated_at = utc_now()

        if commit:
            self.store.commit()
        else:
            self.store.flush()
        logger.debug(
            "task_evaluated",
            task_id=task.id,
            readiness=verdict.readiness_status.value,
            blockers=verdict.blocker_count,
            warnings=verdict.warning_count,
        )
        return record

    def evaluate_by_id(self, task_id: str) -> Optional[ReadinessRecordModel]:
        task = self.store.get(EntityName.TASK, task_id)
        if task is None:
            raise ValidationError(
                code=TASK_NOT_FOUND,
                message=f"Task '{task_id}' not found",
                details={"task_id": task_id},
            )
        return self.evaluate(task)
