from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, conint, constr


class PredecessorEdge(BaseModel):
    """A proposed ``predecessor -> task`` edge."""

    predecessor_id: constr(min_length=1, max_length=128)
    actor_id: Optional[constr(min_length=1, max_length=128)] = None


class StartRequest(BaseModel):
    actor_id: Optional[constr(min_length=1, max_length=128)] = None


class PermissionOverride(BaseModel):
    """Manual permission override granted by a named approver."""

    status: Literal["BLOCKED", "PM_APPROVAL_REQUIRED", "ENGINEER_REVIEW_REQUIRED", "RELEASED"]
    approved_by: constr(min_length=1, max_length=128)
    reason: Optional[constr(max_length=4000)] = None


class AreaHold(BaseModel):
    erection_area: constr(min_length=1, max_length=128)
    reason: Optional[constr(max_length=4000)] = None
    actor_id: Optional[constr(min_length=1, max_length=128)] = None


class AreaRelease(BaseModel):
    erection_area: constr(min_length=1, max_length=128)
    actor_id: Optional[constr(min_length=1, max_length=128)] = None


class SequenceShift(BaseModel):
    """Shift every install sequence number >= ``threshold`` by ``delta``."""

    threshold: conint(ge=1)
    delta: int
    actor_id: Optional[constr(min_length=1, max_length=128)] = None


class BaselineCapture(BaseModel):
    actor_id: Optional[constr(min_length=1, max_length=128)] = None


class TaskBaseline(BaseModel):
    baseline_start: Optional[datetime] = None
    baseline_end: Optional[datetime] = None
    actor_id: Optional[constr(min_length=1, max_length=128)] = None


class MutationEvent(BaseModel):
    type: Literal["create", "update", "delete"]
    entity_name: constr(min_length=1, max_length=64)
    entity_id: constr(min_length=1, max_length=128)


class MutationNotification(BaseModel):
    """Upstream mutation notification with the record's after-image."""

    event: MutationEvent
    data: Dict[str, Any] = Field(default_factory=dict)


class BatchResponse(BaseModel):
    matched: int
    succeeded: int
    failed: int
    failed_ids: List[str] = Field(default_factory=list)
    cascade: Optional[Dict[str, Any]] = None
