"""
Readiness API Routes.

All endpoints are prefixed with /readiness. Validation failures map to 422
(404 for unknown tasks and work packages); a refused start maps to 409 with
the structured refusal as the detail.
"""

from typing import Any, Dict, NoReturn, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..config import get_settings
from ..db.base import get_db
from ..db.models import ExecutionPermissionModel, ReadinessRecordModel, WorkPackageReadinessModel
from ..db.store import EntityStore
from ..schemas.requests import (
    AreaHold,
    AreaRelease,
    BaselineCapture,
    BatchResponse,
    MutationNotification,
    PermissionOverride,
    PredecessorEdge,
    SequenceShift,
    StartRequest,
    TaskBaseline,
)
from .cascade import CascadeCoordinator
from .enums import EntityName
from .errors import TASK_NOT_FOUND, ValidationError
from .graph import validate_edge
from .permission import PermissionService
from .readiness import ReadinessEvaluator
from .rollup import WorkPackageRollup
from .schedule import BatchResult, ScheduleService
from .start_gate import StartGate

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/readiness", tags=["readiness"])


def _reject(exc: ValidationError) -> NoReturn:
    raise HTTPException(status_code=404 if exc.is_not_found else 422, detail=exc.to_dict())


def _batch_response(db: Session, project_id: str, result: BatchResult) -> Dict[str, Any]:
    body = result.to_dict()
    if get_settings().cascade_on_direct_writes:
        body["cascade"] = CascadeCoordinator(EntityStore(db)).recompute_project(project_id).to_dict()
    return BatchResponse(**body).model_dump()


# =============================================================================
# Task Endpoints
# =============================================================================


@router.post("/tasks/{task_id}/predecessors/validate")
async def validate_predecessor(
    task_id: str,
    edge: PredecessorEdge,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Check a proposed predecessor edge without writing anything."""
    store = EntityStore(db)
    task = store.get(EntityName.TASK, task_id)
    if task is None:
        _reject(ValidationError(TASK_NOT_FOUND, f"Task '{task_id}' not found", {"task_id": task_id}))
    try:
        return validate_edge(task.id, edge.predecessor_id, store.tasks(task.project_id)).to_dict()
    except ValidationError as exc:
        _reject(exc)


@router.post("/tasks/{task_id}/predecessors", status_code=201)
async def add_predecessor(
    task_id: str,
    edge: PredecessorEdge,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Persist a predecessor edge after cycle validation."""
    store = EntityStore(db)
    try:
        task = ScheduleService(store).add_predecessor(task_id, edge.predecessor_id, edge.actor_id)
    except ValidationError as exc:
        _reject(exc)

    body: Dict[str, Any] = {"status": "success", "task": task.to_dict()}
    if get_settings().cascade_on_direct_writes:
        body["cascade"] = CascadeCoordinator(store).propagate(task.project_id).to_dict()
    return body


@router.post("/tasks/{task_id}/start")
async def start_task(
    task_id: str,
    request: Optional[StartRequest] = None,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Request to start a task. Refused with 409 when the task is NOT_READY."""
    try:
        result = StartGate(EntityStore(db)).request_start(
            task_id, actor_id=request.actor_id if request else None
        )
    except ValidationError as exc:
        _reject(exc)

    if not result.allowed:
        raise HTTPException(status_code=409, detail=result.to_dict())
    return result.to_dict()


@router.get("/tasks/{task_id}")
async def get_task_readiness(
    task_id: str,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Get the cached readiness record of a task."""
    store = EntityStore(db)
    task = store.get(EntityName.TASK, task_id)
    if task is None:
        _reject(ValidationError(TASK_NOT_FOUND, f"Task '{task_id}' not found", {"task_id": task_id}))
    record = db.get(ReadinessRecordModel, task.id)
    return {"task": task.to_dict(), "readiness": record.to_dict() if record else None}


@router.post("/tasks/{task_id}/evaluate")
async def evaluate_task(
    task_id: str,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Re-evaluate one task now."""
    try:
        record = ReadinessEvaluator(EntityStore(db)).evaluate_by_id(task_id)
    except ValidationError as exc:
        _reject(exc)
    if record is None:
        return {"task_id": task_id, "readiness_status": "READY", "evaluated": False}
    return {**record.to_dict(), "evaluated": True}


@router.put("/tasks/{task_id}/baseline")
async def set_task_baseline(
    task_id: str,
    baseline: TaskBaseline,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Set a task's baseline dates. Existing baselines are immutable."""
    try:
        task = ScheduleService(EntityStore(db)).set_baseline(
            task_id, baseline.baseline_start, baseline.baseline_end, baseline.actor_id
        )
    except ValidationError as exc:
        _reject(exc)
    return task.to_dict()


# =============================================================================
# Work Package Endpoints
# =============================================================================


@router.get("/work-packages/{wp_id}")
async def get_work_package_readiness(
    wp_id: str,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Get package readiness and execution permission, computing them if missing."""
    store = EntityStore(db)
    rollup = WorkPackageRollup(store)
    try:
        work_package = rollup.require_package(wp_id)
    except ValidationError as exc:
        _reject(exc)

    readiness = db.get(WorkPackageReadinessModel, work_package.id) or rollup.rollup(work_package)
    permission = db.get(ExecutionPermissionModel, work_package.id)
    if permission is None:
        permission = PermissionService(store, rollup=rollup).recompute(work_package)
    return {
        "work_package": work_package.to_dict(),
        "readiness": readiness.to_dict(),
        "permission": permission.to_dict(),
    }


@router.post("/work-packages/{wp_id}/permission/override")
async def override_permission(
    wp_id: str,
    override: PermissionOverride,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Manually set a package's execution permission."""
    try:
        permission = PermissionService(EntityStore(db)).override(
            wp_id, override.status, override.approved_by, override.reason
        )
    except ValidationError as exc:
        _reject(exc)
    return permission.to_dict()


@router.delete("/work-packages/{wp_id}/permission/override")
async def clear_permission_override(
    wp_id: str,
    actor_id: Optional[str] = None,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Drop a manual override; the computed status applies again."""
    try:
        permission = PermissionService(EntityStore(db)).clear_override(wp_id, actor_id=actor_id)
    except ValidationError as exc:
        _reject(exc)
    return permission.to_dict()


# =============================================================================
# Project Endpoints
# =============================================================================


@router.post("/projects/{project_id}/areas/hold")
async def hold_area(
    project_id: str,
    hold: AreaHold,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Place every task in an erection area on hold."""
    try:
        result = ScheduleService(EntityStore(db)).hold_area(
            project_id, hold.erection_area, hold.reason, hold.actor_id
        )
    except ValidationError as exc:
        _reject(exc)
    return _batch_response(db, project_id, result)


@router.post("/projects/{project_id}/areas/release")
async def release_area(
    project_id: str,
    release: AreaRelease,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Lift an erection area hold."""
    try:
        result = ScheduleService(EntityStore(db)).release_area(
            project_id, release.erection_area, release.actor_id
        )
    except ValidationError as exc:
        _reject(exc)
    return _batch_response(db, project_id, result)


@router.post("/projects/{project_id}/sequence/shift")
async def shift_sequence(
    project_id: str,
    shift: SequenceShift,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Shift install sequence numbers at or above a threshold."""
    try:
        result = ScheduleService(EntityStore(db)).push_sequence(
            project_id, shift.threshold, shift.delta, shift.actor_id
        )
    except ValidationError as exc:
        _reject(exc)
    return _batch_response(db, project_id, result)


@router.post("/projects/{project_id}/baseline")
async def capture_baseline(
    project_id: str,
    capture: Optional[BaselineCapture] = None,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Copy planned dates into unset baselines."""
    try:
        result = ScheduleService(EntityStore(db)).capture_baseline(
            project_id, capture.actor_id if capture else None
        )
    except ValidationError as exc:
        _reject(exc)
    return result.to_dict()


@router.post("/projects/{project_id}/recompute")
async def recompute_project(
    project_id: str,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Manual recovery: full constraint sync and re-evaluation of a project."""
    try:
        result = CascadeCoordinator(EntityStore(db)).recompute_project(project_id)
    except ValidationError as exc:
        _reject(exc)
    return result.to_dict()


# =============================================================================
# Mutation Notifications
# =============================================================================


@router.post("/events", status_code=202)
async def handle_mutation(
    notification: MutationNotification,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Process an upstream mutation notification through the cascade."""
    try:
        result = CascadeCoordinator(EntityStore(db)).handle(notification.model_dump())
    except ValidationError as exc:
        _reject(exc)
    if result.failures:
        logger.warning(
            "cascade_partial_failure",
            trace_id=result.trace_id,
            failures=len(result.failures),
        )
    return result.to_dict()
