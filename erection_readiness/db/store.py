"""
Generic entity store.

The engine reads and writes upstream records through this one interface
(filter / get / create / update by entity name), so rule code never depends on
a particular table layout. Writes commit individually by default: the store
offers no cross-entity transaction.
"""

from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Type

from sqlalchemy.orm import Session

from ..engine.enums import EntityName, TaskType
from ..engine.errors import UNKNOWN_ENTITY, ValidationError
from .base import Base
from .models import (
    ConstraintModel,
    DeliveryModel,
    DrawingRevisionModel,
    DrawingSetModel,
    ProjectModel,
    RFIModel,
    TaskModel,
    WorkPackageModel,
)

ENTITY_MODELS: Dict[EntityName, Type[Base]] = {
    EntityName.PROJECT: ProjectModel,
    EntityName.TASK: TaskModel,
    EntityName.WORK_PACKAGE: WorkPackageModel,
    EntityName.RFI: RFIModel,
    EntityName.DRAWING_SET: DrawingSetModel,
    EntityName.DRAWING_REVISION: DrawingRevisionModel,
    EntityName.DELIVERY: DeliveryModel,
    EntityName.CONSTRAINT: ConstraintModel,
}


def _coerce(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return [_coerce(v) for v in value]
    if isinstance(value, list):
        return [_coerce(v) for v in value]
    return value


def resolve_entity(entity_name: Any) -> EntityName:
    """Map a notification entity name onto the closed set of known entities."""
    try:
        return EntityName(entity_name)
    except ValueError:
        raise ValidationError(
            code=UNKNOWN_ENTITY,
            message=f"Unknown entity '{entity_name}'",
            details={"known": [e.value for e in EntityName]},
        ) from None


class EntityStore:
    """Filter/create/update access to every entity the engine consumes."""

    def __init__(self, db: Session):
        self.db = db

    def model_for(self, entity_name: Any) -> Type[Base]:
        return ENTITY_MODELS[resolve_entity(entity_name)]

    def _columns(self, model: Type[Base]) -> set:
        return {c.name for c in model.__table__.columns}

    def get(self, entity_name: Any, entity_id: Optional[str]):
        """Fetch one record by primary key, or None."""
        if not entity_id:
            return None
        return self.db.get(self.model_for(entity_name), entity_id)

    def filter(self, entity_name: Any, order_by: Optional[str] = None, **criteria) -> List[Any]:
        """Filter by column equality; list/set values mean IN, None means IS NULL."""
        model = self.model_for(entity_name)
        query = self.db.query(model)
        for field, value in criteria.items():
            column = getattr(model, field)
            value = _coerce(value)
            if value is None:
                query = query.filter(column.is_(None))
            elif isinstance(value, list):
                if not value:
                    return []
                query = query.filter(column.in_(value))
            else:
                query = query.filter(column == value)
        if order_by:
            query = query.order_by(getattr(model, order_by))
        return query.all()

    def filter_linked(
        self, entity_name: Any, list_field: str, linked_id: str, **criteria
    ) -> List[Any]:
        """Filter records whose JSON id list ``list_field`` contains ``linked_id``.

        Membership is checked in Python so it behaves the same on SQLite and
        PostgreSQL.
        """
        return [
            row
            for row in self.filter(entity_name, **criteria)
            if linked_id in (getattr(row, list_field) or [])
        ]

    def create(self, entity_name: Any, data: Dict[str, Any], commit: bool = True):
        """Create a record; keys that are not columns are ignored."""
        model = self.model_for(entity_name)
        columns = self._columns(model)
        row = model(**{k: _coerce(v) for k, v in data.items() if k in columns})
        self.db.add(row)
        if commit:
            self.db.commit()
            self.db.refresh(row)
        else:
            self.db.flush()
        return row

    def update(self, entity_name: Any, entity_id: str, changes: Dict[str, Any], commit: bool = True):
        """Apply column changes to one record. Returns None if it does not exist."""
        row = self.get(entity_name, entity_id)
        if row is None:
            return None
        columns = self._columns(type(row))
        for field, value in changes.items():
            if field in columns and field != "id":
                setattr(row, field, _coerce(value))
        if commit:
            self.db.commit()
            self.db.refresh(row)
        return row

    def commit(self) -> None:
        self.db.commit()

    def flush(self) -> None:
        self.db.flush()

    def rollback(self) -> None:
        self.db.rollback()

    # Convenience queries used across the engine

    def tasks(self, project_id: str) -> List[TaskModel]:
        return self.filter(EntityName.TASK, project_id=project_id)

    def erection_tasks(self, project_id: str) -> List[TaskModel]:
        return self.filter(
            EntityName.TASK,
            order_by="id",
            project_id=project_id,
            task_type=TaskType.ERECTION,
        )

    def package_erection_tasks(self, work_package_id: str) -> List[TaskModel]:
        return self.filter(
            EntityName.TASK,
            order_by="id",
            work_package_id=work_package_id,
            task_type=TaskType.ERECTION,
        )

    def work_packages(self, project_id: str, ids: Optional[Iterable[str]] = None) -> List[WorkPackageModel]:
        if ids is not None:
            return self.filter(EntityName.WORK_PACKAGE, order_by="id", id=list(ids))
        return self.filter(EntityName.WORK_PACKAGE, order_by="id", project_id=project_id)
