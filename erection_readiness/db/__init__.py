"""
Database package for the Erection Readiness engine.
"""

from .base import Base, get_db, get_engine, get_session_local, init_database
from .models import (
    ConstraintModel,
    DeliveryModel,
    DrawingRevisionModel,
    DrawingSetModel,
    ExecutionPermissionModel,
    ProjectModel,
    ReadinessRecordModel,
    RFIModel,
    TaskModel,
    WorkPackageModel,
    WorkPackageReadinessModel,
)

__all__ = [
    "Base",
    "get_db",
    "get_engine",
    "get_session_local",
    "init_database",
    "ConstraintModel",
    "DeliveryModel",
    "DrawingRevisionModel",
    "DrawingSetModel",
    "ExecutionPermissionModel",
    "ProjectModel",
    "ReadinessRecordModel",
    "RFIModel",
    "TaskModel",
    "WorkPackageModel",
    "WorkPackageReadinessModel",
]
