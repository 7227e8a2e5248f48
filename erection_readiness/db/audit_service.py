"""
Audit Log Service.

Entries are added to the caller's session and committed together with the
change they describe, so a rolled-back write leaves no audit trace.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from .audit_models import AuditLogModel
from .ids import generate_ulid, utc_now


class AuditService:
    """Service for managing audit log entries.

    Usage:
        audit = AuditService(db_session)
        audit.log_status_change("Task", task.id, "blocked", "not_started", actor_id="cascade")
        db_session.commit()
    """

    def __init__(self, db: Session):
        self.db = db

    def _record(
        self,
        action: str,
        entity_kind: str,
        entity_id: str,
        before: Optional[Dict[str, Any]],
        after: Optional[Dict[str, Any]],
        actor_kind: str,
        actor_id: str,
        note: Optional[str],
        trace_id: Optional[str],
    ) -> AuditLogModel:
        entry = AuditLogModel(
            id=generate_ulid(),
            ts=utc_now(),
            actor_kind=actor_kind,
            actor_id=actor_id,
            action=action,
            entity_kind=entity_kind,
            entity_id=entity_id,
            before=before,
            after=after,
            note=note,
            trace_id=trace_id,
        )
        self.db.add(entry)
        return entry

    def log_create(
        self,
        entity_kind: str,
        entity_id: str,
        after: Dict[str, Any],
        actor_kind: str = "system",
        actor_id: str = "unknown",
        note: Optional[str] = None,
        trace_id: Optional[str] = None,
    ) -> AuditLogModel:
        """Log the creation of an entity (e.g. a Constraint opened by a cascade)."""
        return self._record(
            "created", entity_kind, entity_id, None, after,
            actor_kind, actor_id, note, trace_id,
        )

    def log_update(
        self,
        entity_kind: str,
        entity_id: str,
        before: Dict[str, Any],
        after: Dict[str, Any],
        actor_kind: str = "system",
        actor_id: str = "unknown",
        note: Optional[str] = None,
        trace_id: Optional[str] = None,
    ) -> AuditLogModel:
        """Log an update to an entity.

        Args:
            entity_kind: Type of entity (e.g., "Task", "ExecutionPermission")
            entity_id: ID of the entity
            before: Changed fields before the update
            after: Changed fields after the update
            actor_kind: Type of actor ("human", "agent", "system")
            actor_id: ID of the actor
            note: Optional human-readable note
            trace_id: Optional trace ID for correlation
        """
        return self._record(
            "updated", entity_kind, entity_id, before, after,
            actor_kind, actor_id, note, trace_id,
        )

    def log_status_change(
        self,
        entity_kind: str,
        entity_id: str,
        old_status: str,
        new_status: str,
        actor_kind: str = "system",
        actor_id: str = "unknown",
        note: Optional[str] = None,
        trace_id: Optional[str] = None,
    ) -> AuditLogModel:
        """Log a status change on an entity."""
        return self._record(
            "status_changed",
            entity_kind,
            entity_id,
            {"status": old_status},
            {"status": new_status},
            actor_kind,
            actor_id,
            note or f"Status changed: {old_status} -> {new_status}",
            trace_id,
        )

    def log_cleared(
        self,
        entity_kind: str,
        entity_id: str,
        before: Dict[str, Any],
        actor_kind: str = "system",
        actor_id: str = "unknown",
        note: Optional[str] = None,
        trace_id: Optional[str] = None,
    ) -> AuditLogModel:
        """Log a constraint being cleared."""
        return self._record(
            "cleared", entity_kind, entity_id, before, {"status": "CLEARED"},
            actor_kind, actor_id, note, trace_id,
        )

    def log_override(
        self,
        entity_id: str,
        before: Dict[str, Any],
        after: Dict[str, Any],
        actor_id: str,
        note: Optional[str] = None,
        dropped: bool = False,
        trace_id: Optional[str] = None,
    ) -> AuditLogModel:
        """Log a manual permission override being applied or dropped."""
        return self._record(
            "override_dropped" if dropped else "overridden",
            "ExecutionPermission",
            entity_id,
            before,
            after,
            "system" if dropped else "human",
            actor_id,
            note,
            trace_id,
        )

    # Query methods

    def query_by_entity(
        self,
        entity_kind: str,
        entity_id: str,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AuditLogModel]:
        """Get audit history for a specific entity, newest first."""
        return (
            self.db.query(AuditLogModel)
            .filter(
                AuditLogModel.entity_kind == entity_kind,
                AuditLogModel.entity_id == entity_id,
            )
            .order_by(desc(AuditLogModel.ts))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def query_by_trace(self, trace_id: str, limit: int = 100) -> List[AuditLogModel]:
        """Get all audit entries written by one cascade run, newest first."""
        return (
            self.db.query(AuditLogModel)
            .filter(AuditLogModel.trace_id == trace_id)
            .order_by(desc(AuditLogModel.ts))
            .limit(limit)
            .all()
        )
