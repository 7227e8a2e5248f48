"""
Start gate.

Decides whether a task may move to ``in_progress``. Erection tasks are
re-evaluated on every request; a NOT_READY verdict is a normal refusal
result, not an exception. Non-erection tasks are never gated.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from ..config import Settings, get_settings
from ..db.audit_service import AuditService
from ..db.ids import utc_now
from ..db.models import TaskModel
from ..db.store import EntityStore
from .enums import TERMINAL_TASK_STATUSES, EntityName, ReadinessStatus, TaskStatus
from .errors import INVALID_TASK_STATE, TASK_NOT_FOUND, ValidationError, require_identifier
from .readiness import ReadinessEvaluator, is_erection
from .schedule import compute_float_consumed_hours

logger = structlog.get_logger(__name__)


@dataclass
class StartResult:
    """Outcome of a start request."""

    allowed: bool
    task_id: str
    readiness_status: ReadinessStatus
    blocker_count: int = 0
    warning_count: int = 0
    drivers: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    task: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "allowed": self.allowed,
            "task_id": self.task_id,
            "readiness_status": self.readiness_status.value,
            "blocker_count": self.blocker_count,
            "warning_count": self.warning_count,
            "drivers": self.drivers,
            "warnings": self.warnings,
        }
        if not self.allowed:
            body["error"] = "blocked"
        if self.task is not None:
            body["task"] = self.task
        return body


class StartGate:
    """Gate task starts on fresh readiness."""

    def __init__(
        self,
        store: EntityStore,
        evaluator: Optional[ReadinessEvaluator] = None,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.audit = AuditService(store.db)
        self.evaluator = evaluator or ReadinessEvaluator(store)

    def request_start(self, task_id: str, actor_id: Optional[str] = None) -> StartResult:
        task_id = require_identifier(task_id, "task_id")
        task: Optional[TaskModel] = self.store.get(EntityName.TASK, task_id)
        if task is None:
            raise ValidationError(
                code=TASK_NOT_FOUND,
                message=f"Task '{task_id}' not found",
                details={"task_id": task_id},
            )
        if not is_erection(task):
            return self._start(task, StartResult(True, task.id, ReadinessStatus.READY), actor_id)
        if TaskStatus(task.status) in TERMINAL_TASK_STATUSES:
            raise ValidationError(
                code=INVALID_TASK_STATE,
                message=f"Task '{task_id}' is {task.status} and cannot be started",
                details={"task_id": task_id, "status": task.status},
            )

        record = self.evaluator.evaluate(task)
        status = ReadinessStatus(record.readiness_status)
        drivers = list(record.drivers or [])
        if status == ReadinessStatus.NOT_READY:
            logger.info(
                "start_refused",
                task_id=task.id,
                blockers=record.blocker_count,
                drivers=drivers,
            )
            return StartResult(
                allowed=False,
                task_id=task.id,
                readiness_status=status,
                blocker_count=record.blocker_count,
                warning_count=record.warning_count,
                drivers=drivers,
            )

        return self._start(
            task,
            StartResult(
                allowed=True,
                task_id=task.id,
                readiness_status=status,
                warning_count=record.warning_count,
                drivers=drivers,
                warnings=drivers if status == ReadinessStatus.READY_WITH_WARNINGS else [],
            ),
            actor_id,
        )

    def _start(self, task: TaskModel, result: StartResult, actor_id: Optional[str]) -> StartResult:
        old_status = task.status
        if task.actual_start is None:
            task.actual_start = utc_now()
        task.status = TaskStatus.IN_PROGRESS.value
        task.float_consumed_hours = compute_float_consumed_hours(task.baseline_start, task.actual_start)
        if old_status != task.status:
            self.audit.log_status_change(
                entity_kind="Task",
                entity_id=task.id,
                old_status=old_status,
                new_status=task.status,
                actor_kind="human" if actor_id else "system",
                actor_id=actor_id or self.settings.system_actor_id,
                note="Start requested",
            )
        self.store.commit()
        logger.info("task_started", task_id=task.id, readiness=result.readiness_status.value)
        result.task = task.to_dict()
        return result
