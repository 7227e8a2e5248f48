"""
Error classes for the readiness engine.

Only validation failures are exceptions. A refused start is a normal result
(see ``start_gate.StartResult``) and a failed cascade sub-operation is
collected into ``cascade.CascadeResult``; neither is raised.
"""

from typing import Any, Dict, Optional

# Stable error codes
CYCLE_DETECTED = "CYCLE_DETECTED"
SELF_PREDECESSOR = "SELF_PREDECESSOR"
CROSS_PROJECT_EDGE = "CROSS_PROJECT_EDGE"
TASK_NOT_FOUND = "TASK_NOT_FOUND"
WORK_PACKAGE_NOT_FOUND = "WORK_PACKAGE_NOT_FOUND"
MISSING_IDENTIFIER = "MISSING_IDENTIFIER"
UNKNOWN_CONSTRAINT_TYPE = "UNKNOWN_CONSTRAINT_TYPE"
UNKNOWN_ENTITY = "UNKNOWN_ENTITY"
SEQUENCE_COLLISION = "SEQUENCE_COLLISION"
INVALID_SEQUENCE = "INVALID_SEQUENCE"
BASELINE_IMMUTABLE = "BASELINE_IMMUTABLE"
INVALID_TASK_STATE = "INVALID_TASK_STATE"
INVALID_PERMISSION_STATUS = "INVALID_PERMISSION_STATUS"
INVALID_NOTIFICATION = "INVALID_NOTIFICATION"

NOT_FOUND_CODES = frozenset({TASK_NOT_FOUND, WORK_PACKAGE_NOT_FOUND})


class ValidationError(Exception):
    """
    Raised when a request is rejected before anything is written.

    Attributes:
        code: Stable error code for programmatic handling
        message: Human-readable error description
        details: Offending detail, e.g. the cycle path
    """

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"{code}: {message}")

    @property
    def is_not_found(self) -> bool:
        return self.code in NOT_FOUND_CODES

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return {
            "error": "validation_failed",
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class CycleError(ValidationError):
    """A proposed predecessor edge would close a cycle."""

    def __init__(self, task_id: str, predecessor_id: str, path: list):
        self.path = list(path)
        super().__init__(
            code=CYCLE_DETECTED,
            message=f"Adding {predecessor_id} as predecessor of {task_id} creates a cycle: "
            + " -> ".join(self.path),
            details={"task_id": task_id, "predecessor_id": predecessor_id, "cycle": self.path},
        )


def require_identifier(value: Optional[str], name: str) -> str:
    """Reject missing or blank identifiers."""
    if value is None or not str(value).strip():
        raise ValidationError(
            code=MISSING_IDENTIFIER,
            message=f"'{name}' is required",
            details={"field": name},
        )
    return str(value).strip()
