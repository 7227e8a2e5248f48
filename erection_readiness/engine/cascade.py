"""
Event cascade coordinator.

Reacts to upstream mutation notifications of the form::

    {"event": {"type": "create|update|delete", "entity_name": "RFI", "entity_id": "..."},
     "data": {...after-image...}}

For a mutation that resolves to a project, in order:

1. derive or clear the Constraint rows implied by the change
2. re-evaluate every ERECTION task in the project
3. roll up every package holding a re-evaluated task
4. recompute the execution permission of those packages

Every sub-operation commits on its own. A failure is rolled back, logged with
the id it concerned and collected into ``CascadeResult.failures``; it never
aborts its siblings. Each run carries a trace id that is stamped on the audit
entries it writes.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import structlog

from ..config import Settings, get_settings
from ..db.audit_service import AuditService
from ..db.ids import generate_ulid
from ..db.store import EntityStore, resolve_entity
from .constraints import ConstraintStore
from .enums import (
    ARRIVED_DELIVERY_STATUSES,
    RESOLVED_RFI_STATUSES,
    ConstraintType,
    DrawingSetStatus,
    EntityName,
    MutationKind,
    Severity,
    TaskStatus,
)
from .errors import INVALID_NOTIFICATION, ValidationError, require_identifier
from .permission import PermissionService
from .readiness import ReadinessEvaluator
from .rollup import WorkPackageRollup

logger = structlog.get_logger(__name__)

# Task statuses an answered RFI releases
RELEASABLE_TASK_STATUSES = frozenset({TaskStatus.BLOCKED.value, TaskStatus.ON_HOLD.value})


@dataclass
class Notification:
    kind: MutationKind
    entity_name: EntityName
    entity_id: str
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_delete(self) -> bool:
        return self.kind == MutationKind.DELETE


def parse_notification(payload: Mapping[str, Any]) -> Notification:
    """Validate a raw notification payload."""
    event = payload.get("event") if isinstance(payload, Mapping) else None
    if not isinstance(event, Mapping):
        raise ValidationError(
            code=INVALID_NOTIFICATION,
            message="Notification must carry an 'event' object",
        )
    try:
        kind = MutationKind(event.get("type"))
    except ValueError:
        raise ValidationError(
            code=INVALID_NOTIFICATION,
            message=f"Unknown mutation type '{event.get('type')}'",
            details={"allowed": [k.value for k in MutationKind]},
        ) from None
    data = payload.get("data") or {}
    if not isinstance(data, Mapping):
        raise ValidationError(code=INVALID_NOTIFICATION, message="'data' must be an object")
    return Notification(
        kind=kind,
        entity_name=resolve_entity(event.get("entity_name")),
        entity_id=require_identifier(event.get("entity_id") or data.get("id"), "entity_id"),
        data=dict(data),
    )


@dataclass
class CascadeResult:
    trace_id: str
    project_id: Optional[str] = None
    ignored: bool = False
    constraints_opened: int = 0
    constraints_updated: int = 0
    constraints_cleared: int = 0
    tasks_released: int = 0
    tasks_evaluated: int = 0
    tasks_failed: int = 0
    packages_rolled_up: int = 0
    packages_failed: int = 0
    permissions_updated: int = 0
    permissions_failed: int = 0
    failures: List[Dict[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _field(record: Any, name: str, default: Any = None) -> Any:
    if record is None:
        return default
    if isinstance(record, Mapping):
        return record.get(name, default)
    return getattr(record, name, default)


def _as_datetime(value: Any) -> Optional[datetime]:
    return value if isinstance(value, datetime) else None


class CascadeCoordinator:
    """Propagate upstream changes through constraints, readiness and permissions."""

    def __init__(self, store: EntityStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()
        self.actor_id = self.settings.system_actor_id
        self.audit = AuditService(store.db)
        self.constraints = ConstraintStore(store, self.audit, self.actor_id)
        self.evaluator = ReadinessEvaluator(store, self.constraints)
        self.rollup = WorkPackageRollup(store, self.evaluator)
        self.permissions = PermissionService(
            store, rollup=self.rollup, audit=self.audit, settings=self.settings
        )

    # Entry points -----------------------------------------------------------

    def handle(self, payload: Mapping[str, Any]) -> CascadeResult:
        """Process one mutation notification."""
        notification = parse_notification(payload)
        result = CascadeResult(trace_id=generate_ulid())
        log = logger.bind(
            trace_id=result.trace_id,
            entity_name=notification.entity_name.value,
            entity_id=notification.entity_id,
            mutation=notification.kind.value,
        )

        record = self._record_for(notification)
        project_id = self._project_id(notification, record)
        if not project_id:
            log.warning("cascade_ignored_no_project")
            result.ignored = True
            return result
        result.project_id = project_id

        self._guard(
            result,
            "sync",
            notification.entity_id,
            lambda: self._sync(notification.entity_name, record, notification.is_delete, project_id, result),
        )
        self._propagate(project_id, result)
        log.info(
            "cascade_completed",
            project_id=project_id,
            opened=result.constraints_opened,
            cleared=result.constraints_cleared,
            evaluated=result.tasks_evaluated,
            failures=len(result.failures),
        )
        return result

    def recompute_project(self, project_id: str) -> CascadeResult:
        """Full constraint sync for a project followed by a complete re-evaluation."""
        project_id = require_identifier(project_id, "project_id")
        result = CascadeResult(trace_id=generate_ulid(), project_id=project_id)

        for entity_name in (
            EntityName.RFI,
            EntityName.DRAWING_SET,
            EntityName.DELIVERY,
            EntityName.TASK,
        ):
            for row in self.store.filter(entity_name, order_by="id", project_id=project_id):
                row_id = row.id
                self._guard(
                    result,
                    "sync",
                    row_id,
                    lambda row=row, entity_name=entity_name: self._sync(
                        entity_name, row, False, project_id, result, release_tasks=False
                    ),
                )

        self._propagate(project_id, result)
        logger.info(
            "project_recomputed",
            trace_id=result.trace_id,
            project_id=project_id,
            evaluated=result.tasks_evaluated,
            permissions=result.permissions_updated,
            failures=len(result.failures),
        )
        return result

    def propagate(self, project_id: str) -> CascadeResult:
        """Steps 2-4 only, for callers that already wrote their own constraint changes."""
        result = CascadeResult(trace_id=generate_ulid(), project_id=project_id)
        self._propagate(project_id, result)
        return result

    # Helpers ----------------------------------------------------------------

    def _record_for(self, notification: Notification) -> Any:
        """Stored row when it still exists, otherwise the notification's after-image."""
        if not notification.is_delete:
            row = self.store.get(notification.entity_name, notification.entity_id)
            if row is not None:
                return row
        return {**notification.data, "id": notification.entity_id}

    def _project_id(self, notification: Notification, record: Any) -> Optional[str]:
        if notification.entity_name == EntityName.PROJECT:
            return notification.entity_id
        project_id = notification.data.get("project_id") or _field(record, "project_id")
        if not project_id:
            stored = self.store.get(notification.entity_name, notification.entity_id)
            project_id = _field(stored, "project_id")
        return project_id

    def _guard(self, result: CascadeResult, stage: str, item_id: str, action: Callable[[], Any]) -> bool:
        try:
            action()
            return True
        except Exception as exc:
            self.store.rollback()
            result.failures.append({"stage": stage, "id": item_id, "error": str(exc)})
            logger.error(
                "cascade_step_failed",
                trace_id=result.trace_id,
                stage=stage,
                item_id=item_id,
                error=str(exc),
                exc_info=True,
            )
            return False

    # Step 1: constraint derivation -----------------------------------------

    def _sync(
        self,
        entity_name: EntityName,
        record: Any,
        deleted: bool,
        project_id: str,
        result: CascadeResult,
        release_tasks: bool = True,
    ) -> None:
        if entity_name == EntityName.RFI:
            self._sync_rfi(record, deleted, project_id, result, release_tasks)
        elif entity_name == EntityName.DRAWING_SET:
            self._sync_drawing_set(record, deleted, project_id, result)
        elif entity_name == EntityName.DRAWING_REVISION:
            parent = self.store.get(EntityName.DRAWING_SET, _field(record, "drawing_set_id"))
            if parent is not None:
                self._sync_drawing_set(parent, False, project_id, result)
        elif entity_name == EntityName.DELIVERY:
            self._sync_delivery(record, deleted, project_id, result)
        elif entity_name == EntityName.TASK:
            self._sync_task(record, deleted, project_id, result)
        elif entity_name == EntityName.WORK_PACKAGE:
            self._sync_work_package(project_id, result)

    def _reconcile(
        self,
        result: CascadeResult,
        project_id: str,
        constraint_type: ConstraintType,
        evidence: str,
        scopes: List[Tuple[Optional[str], Optional[str]]],
        **kwargs,
    ) -> None:
        outcome = self.constraints.sync(
            project_id, constraint_type, evidence, scopes, trace_id=result.trace_id, **kwargs
        )
        result.constraints_opened += len(outcome.opened)
        result.constraints_updated += len(outcome.updated)
        result.constraints_cleared += len(outcome.cleared)

    def _clear(self, result: CascadeResult, constraint_type: ConstraintType, evidence: str, project_id: str) -> None:
        cleared = self.constraints.clear(
            constraint_type, evidence, project_id=project_id, trace_id=result.trace_id
        )
        result.constraints_cleared += len(cleared)

    def _sync_rfi(
        self, rfi: Any, deleted: bool, project_id: str, result: CascadeResult, release_tasks: bool = True
    ) -> None:
        rfi_id = _field(rfi, "id")
        status = _field(rfi, "status")
        linked_task_ids = list(_field(rfi, "linked_task_ids") or [])

        if deleted or status in {s.value for s in RESOLVED_RFI_STATUSES}:
            self._clear(result, ConstraintType.RFI_RESPONSE_REQUIRED, rfi_id, project_id)
            if release_tasks:
                # Links may be recorded on either side
                back_linked = self.store.filter_linked(
                    EntityName.TASK, "linked_rfi_ids", rfi_id, order_by="id", project_id=project_id
                )
                for task_id in dict.fromkeys(linked_task_ids + [t.id for t in back_linked]):
                    self._release_task(task_id, rfi_id, result)
            return

        number = _field(rfi, "rfi_number")
        notes = f"RFI #{number}: {_field(rfi, 'subject', '')}" if number else f"RFI: {_field(rfi, 'subject', '')}"
        scopes: List[Tuple[Optional[str], Optional[str]]] = []
        for task_id in linked_task_ids:
            task = self.store.get(EntityName.TASK, task_id)
            if task is not None:
                scopes.append((task.id, task.work_package_id))

        drawing_set_ids = set(_field(rfi, "linked_drawing_set_ids") or [])
        if drawing_set_ids:
            for work_package in self.store.work_packages(project_id):
                if drawing_set_ids.intersection(work_package.linked_drawing_set_ids or []):
                    scopes.append((None, work_package.id))

        self._reconcile(
            result,
            project_id,
            ConstraintType.RFI_RESPONSE_REQUIRED,
            rfi_id,
            scopes,
            severity=Severity.BLOCKER if _field(rfi, "is_blocker") else Severity.WARNING,
            notes=notes,
            due_date=_as_datetime(_field(rfi, "due_date")),
        )

    def _release_task(self, task_id: str, rfi_id: str, result: CascadeResult) -> None:
        task = self.store.get(EntityName.TASK, task_id)
        if task is None or task.status not in RELEASABLE_TASK_STATUSES:
            return
        old_status = task.status
        new_status = TaskStatus.IN_PROGRESS if task.actual_start else TaskStatus.NOT_STARTED
        self.store.update(EntityName.TASK, task.id, {"status": new_status}, commit=False)
        self.audit.log_status_change(
            entity_kind="Task",
            entity_id=task.id,
            old_status=old_status,
            new_status=new_status.value,
            actor_id=self.actor_id,
            note=f"Released: RFI {rfi_id} resolved",
            trace_id=result.trace_id,
        )
        self.store.commit()
        result.tasks_released += 1
        logger.info("task_released", task_id=task.id, rfi_id=rfi_id, status=new_status.value)

    def _sync_drawing_set(self, drawing_set: Any, deleted: bool, project_id: str, result: CascadeResult) -> None:
        set_id = _field(drawing_set, "id")
        status = _field(drawing_set, "status")
        if deleted or status == DrawingSetStatus.FFF.value:
            self._clear(result, ConstraintType.DRAWING_NOT_RELEASED, set_id, project_id)
            return

        label = _field(drawing_set, "set_number") or set_id
        scopes = [
            (None, work_package.id)
            for work_package in self.store.work_packages(project_id)
            if set_id in (work_package.linked_drawing_set_ids or [])
        ]
        self._reconcile(
            result,
            project_id,
            ConstraintType.DRAWING_NOT_RELEASED,
            set_id,
            scopes,
            notes=f"Drawing set {label} not FFF ({status})",
        )

    def _sync_delivery(self, delivery: Any, deleted: bool, project_id: str, result: CascadeResult) -> None:
        delivery_id = _field(delivery, "id")
        status = _field(delivery, "delivery_status")
        if deleted or status in {s.value for s in ARRIVED_DELIVERY_STATUSES}:
            self._clear(result, ConstraintType.DELIVERY_PENDING, delivery_id, project_id)
            return

        label = _field(delivery, "delivery_number") or delivery_id
        package_name = _field(delivery, "package_name")
        scopes = [
            (None, work_package_id)
            for work_package_id in _field(delivery, "linked_work_package_ids") or []
            if self.store.get(EntityName.WORK_PACKAGE, work_package_id) is not None
        ]
        self._reconcile(
            result,
            project_id,
            ConstraintType.DELIVERY_PENDING,
            delivery_id,
            scopes,
            severity=Severity.WARNING,
            notes=f"Delivery {label} - {package_name}" if package_name else f"Delivery {label}",
            due_date=_as_datetime(_field(delivery, "scheduled_date")),
        )

    def _sync_work_package(self, project_id: str, result: CascadeResult) -> None:
        """A package's drawing links feed both drawing and drawing-linked RFI constraints."""
        for drawing_set in self.store.filter(EntityName.DRAWING_SET, order_by="id", project_id=project_id):
            self._sync_drawing_set(drawing_set, False, project_id, result)
        for rfi in self.store.filter(EntityName.RFI, order_by="id", project_id=project_id):
            if rfi.linked_drawing_set_ids:
                self._sync_rfi(rfi, False, project_id, result, release_tasks=False)

    def _sync_task(self, task: Any, deleted: bool, project_id: str, result: CascadeResult) -> None:
        task_id = _field(task, "id")
        if deleted or not _field(task, "hold_area"):
            self._clear(result, ConstraintType.AREA_HOLD, task_id, project_id)
            return
        area = _field(task, "erection_area") or "unassigned"
        reason = _field(task, "hold_reason")
        self._reconcile(
            result,
            project_id,
            ConstraintType.AREA_HOLD,
            task_id,
            [(task_id, _field(task, "work_package_id"))],
            notes=f"Area {area} on hold: {reason}" if reason else f"Area {area} on hold",
        )

    # Steps 2-4: propagation -------------------------------------------------

    def _propagate(self, project_id: str, result: CascadeResult) -> None:
        package_ids = set()
        task_ids = [t.id for t in self.store.erection_tasks(project_id)]
        for task_id in task_ids:

            def evaluate(task_id=task_id):
                task = self.store.get(EntityName.TASK, task_id)
                if task is None:
                    return
                self.evaluator.evaluate(task)
                if task.work_package_id:
                    package_ids.add(task.work_package_id)

            if self._guard(result, "evaluate", task_id, evaluate):
                result.tasks_evaluated += 1
            else:
                result.tasks_failed += 1

        for work_package_id in sorted(package_ids):
            work_package = self.store.get(EntityName.WORK_PACKAGE, work_package_id)
            if work_package is None:
                continue
            if not self._guard(result, "rollup", work_package_id, lambda wp=work_package: self.rollup.rollup(wp)):
                result.packages_failed += 1
                continue
            result.packages_rolled_up += 1

            if self._guard(
                result,
                "permission",
                work_package_id,
                lambda wp=work_package: self.permissions.recompute(wp, trace_id=result.trace_id),
            ):
                result.permissions_updated += 1
            else:
                result.permissions_failed += 1
