"""
Schedule batch operations.

Area hold/release, install sequence shifts, baseline capture and predecessor
edits. Batch operations write each task in its own commit and report per-task
outcomes; validation failures are raised before anything is written.
"""

from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import structlog

from ..config import Settings, get_settings
from ..db.audit_service import AuditService
from ..db.ids import as_utc
from ..db.models import TaskModel
from ..db.store import EntityStore
from .enums import TERMINAL_TASK_STATUSES, EntityName, TaskStatus
from .errors import (
    BASELINE_IMMUTABLE,
    CROSS_PROJECT_EDGE,
    INVALID_SEQUENCE,
    SEQUENCE_COLLISION,
    TASK_NOT_FOUND,
    ValidationError,
    require_identifier,
)
from .graph import ensure_edge_allowed

logger = structlog.get_logger(__name__)


def compute_float_consumed_hours(
    baseline_start: Optional[datetime], actual_start: Optional[datetime]
) -> float:
    """Hours the actual start slipped past the baseline start (never negative)."""
    if baseline_start is None or actual_start is None:
        return 0.0
    delta = as_utc(actual_start) - as_utc(baseline_start)
    return max(0.0, round(delta.total_seconds() / 3600.0, 2))


@dataclass
class BatchResult:
    matched: int = 0
    succeeded: int = 0
    failed: int = 0
    failed_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ScheduleService:
    """Batch schedule edits over a project's tasks."""

    def __init__(self, store: EntityStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()
        self.audit = AuditService(store.db)

    def _apply(
        self,
        result: BatchResult,
        task: TaskModel,
        changes: Dict[str, Any],
        actor_id: Optional[str],
        note: str,
    ) -> None:
        task_id = task.id
        try:
            before = {k: task.to_dict().get(k) for k in changes}
            self.store.update(EntityName.TASK, task_id, changes, commit=False)
            self.audit.log_update(
                entity_kind="Task",
                entity_id=task_id,
                before=before,
                after={k: task.to_dict().get(k) for k in changes},
                actor_kind="human" if actor_id else "system",
                actor_id=actor_id or self.settings.system_actor_id,
                note=note,
            )
            self.store.commit()
            result.succeeded += 1
        except Exception as exc:
            self.store.rollback()
            result.failed += 1
            result.failed_ids.append(task_id)
            logger.error("schedule_write_failed", task_id=task_id, note=note, error=str(exc), exc_info=True)

    def _batch(
        self,
        tasks: List[TaskModel],
        changes_for: Callable[[TaskModel], Optional[Dict[str, Any]]],
        actor_id: Optional[str],
        note: str,
    ) -> BatchResult:
        result = BatchResult(matched=len(tasks))
        for task in tasks:
            changes = changes_for(task)
            if changes is None:
                result.succeeded += 1
                continue
            self._apply(result, task, changes, actor_id, note)
        return result

    # Area hold -------------------------------------------------------------

    def _area_tasks(self, project_id: str, erection_area: str) -> List[TaskModel]:
        return self.store.filter(
            EntityName.TASK,
            order_by="id",
            project_id=require_identifier(project_id, "project_id"),
            erection_area=require_identifier(erection_area, "erection_area"),
        )

    def hold_area(
        self,
        project_id: str,
        erection_area: str,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> BatchResult:
        """Hold every task in an area; terminal tasks keep their status."""

        def changes_for(task: TaskModel) -> Dict[str, Any]:
            changes: Dict[str, Any] = {"hold_area": True, "hold_reason": reason}
            if TaskStatus(task.status) not in TERMINAL_TASK_STATUSES:
                changes["status"] = TaskStatus.ON_HOLD
            return changes

        result = self._batch(
            self._area_tasks(project_id, erection_area), changes_for, actor_id,
            f"Area {erection_area} placed on hold",
        )
        logger.info("area_held", project_id=project_id, area=erection_area, **result.to_dict())
        return result

    def release_area(
        self, project_id: str, erection_area: str, actor_id: Optional[str] = None
    ) -> BatchResult:
        """Lift an area hold. Task status is left as it is."""
        result = self._batch(
            self._area_tasks(project_id, erection_area),
            lambda task: {"hold_area": False, "hold_reason": None},
            actor_id,
            f"Area {erection_area} released",
        )
        logger.info("area_released", project_id=project_id, area=erection_area, **result.to_dict())
        return result

    # Install sequence ------------------------------------------------------

    def push_sequence(
        self, project_id: str, threshold: int, delta: int, actor_id: Optional[str] = None
    ) -> BatchResult:
        """Add ``delta`` to every install_sequence_number >= ``threshold``."""
        project_id = require_identifier(project_id, "project_id")
        sequenced = [
            t
            for t in self.store.filter(EntityName.TASK, order_by="id", project_id=project_id)
            if t.install_sequence_number is not None
        ]
        shifted = [t for t in sequenced if t.install_sequence_number >= threshold]
        proposed = {
            t.id: t.install_sequence_number + delta if t.install_sequence_number >= threshold
            else t.install_sequence_number
            for t in sequenced
        }

        below_one = sorted(task_id for task_id, number in proposed.items() if number < 1)
        if below_one:
            raise ValidationError(
                code=INVALID_SEQUENCE,
                message=f"Shifting by {delta} from {threshold} would move tasks below sequence 1",
                details={"task_ids": below_one, "threshold": threshold, "delta": delta},
            )
        duplicates = sorted(n for n, count in Counter(proposed.values()).items() if count > 1)
        if duplicates:
            raise ValidationError(
                code=SEQUENCE_COLLISION,
                message=f"Shifting by {delta} from {threshold} would duplicate sequence numbers",
                details={"numbers": duplicates, "threshold": threshold, "delta": delta},
            )

        if delta == 0:
            return BatchResult(matched=len(shifted), succeeded=len(shifted))
        result = self._batch(
            shifted,
            lambda task: {"install_sequence_number": proposed[task.id]},
            actor_id,
            f"Install sequence shifted by {delta} from {threshold}",
        )
        logger.info(
            "sequence_shifted",
            project_id=project_id,
            threshold=threshold,
            delta=delta,
            **result.to_dict(),
        )
        return result

    # Baselines -------------------------------------------------------------

    def capture_baseline(self, project_id: str, actor_id: Optional[str] = None) -> BatchResult:
        """Copy planned dates into baselines that are still unset."""
        tasks = [
            t
            for t in self.store.filter(
                EntityName.TASK, order_by="id", project_id=require_identifier(project_id, "project_id")
            )
            if t.planned_start is not None or t.planned_end is not None
        ]

        def changes_for(task: TaskModel) -> Optional[Dict[str, Any]]:
            changes = {}
            if task.baseline_start is None and task.planned_start is not None:
                changes["baseline_start"] = task.planned_start
            if task.baseline_end is None and task.planned_end is not None:
                changes["baseline_end"] = task.planned_end
            return changes or None

        result = self._batch(tasks, changes_for, actor_id, "Baseline captured")
        logger.info("baseline_captured", project_id=project_id, **result.to_dict())
        return result

    def set_baseline(
        self,
        task_id: str,
        baseline_start: Optional[datetime] = None,
        baseline_end: Optional[datetime] = None,
        actor_id: Optional[str] = None,
    ) -> TaskModel:
        """Set a task's baseline. A baseline that is already set cannot change."""
        task = self._require_task(task_id)
        changes = {}
        for name, value in (("baseline_start", baseline_start), ("baseline_end", baseline_end)):
            if value is None:
                continue
            current = getattr(task, name)
            if current is not None and as_utc(current) != as_utc(value):
                raise ValidationError(
                    code=BASELINE_IMMUTABLE,
                    message=f"Task '{task.id}' already has {name} {as_utc(current).isoformat()}",
                    details={"task_id": task.id, "field": name},
                )
            if current is None:
                changes[name] = value

        if changes:
            result = BatchResult(matched=1)
            self._apply(result, task, changes, actor_id, "Baseline set")
            if result.failed:
                raise RuntimeError(f"Failed to write baseline for task {task.id}")
        return task

    # Predecessors ----------------------------------------------------------

    def _require_task(self, task_id: str) -> TaskModel:
        task_id = require_identifier(task_id, "task_id")
        task = self.store.get(EntityName.TASK, task_id)
        if task is None:
            raise ValidationError(
                code=TASK_NOT_FOUND,
                message=f"Task '{task_id}' not found",
                details={"task_id": task_id},
            )
        return task

    def add_predecessor(
        self, task_id: str, predecessor_id: str, actor_id: Optional[str] = None
    ) -> TaskModel:
        """Persist ``predecessor_id -> task_id`` after the graph validator accepts it."""
        task = self._require_task(task_id)
        predecessor = self._require_task(predecessor_id)
        if predecessor.project_id != task.project_id:
            raise ValidationError(
                code=CROSS_PROJECT_EDGE,
                message=f"Task '{predecessor.id}' belongs to another project",
                details={
                    "task_id": task.id,
                    "predecessor_id": predecessor.id,
                    "task_project_id": task.project_id,
                    "predecessor_project_id": predecessor.project_id,
                },
            )
        ensure_edge_allowed(task.id, predecessor.id, self.store.tasks(task.project_id))

        if predecessor.id in (task.predecessor_ids or []):
            return task
        before = list(task.predecessor_ids or [])
        # Reassign so the JSON column is flagged dirty
        task.predecessor_ids = before + [predecessor.id]
        self.audit.log_update(
            entity_kind="Task",
            entity_id=task.id,
            before={"predecessor_ids": before},
            after={"predecessor_ids": task.predecessor_ids},
            actor_kind="human" if actor_id else "system",
            actor_id=actor_id or self.settings.system_actor_id,
            note=f"Predecessor {predecessor.id} added",
        )
        self.store.commit()
        logger.info("predecessor_added", task_id=task.id, predecessor_id=predecessor.id)
        return task
