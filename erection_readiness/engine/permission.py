"""
Execution permission state machine.

Automatic rule, first match wins:
1. readiness NOT_READY                      -> BLOCKED
2. risk critical                            -> BLOCKED
3. open ENGINEER_REVIEW_REQUIRED constraint -> ENGINEER_REVIEW_REQUIRED
4. risk medium or high                      -> PM_APPROVAL_REQUIRED
5. otherwise                                -> RELEASED

A manual override pins ``permission_status`` while the package's readiness
and risk level stay what they were when the override was granted. As soon as
either moves, the override is dropped and the automatic rule applies again.
"""

from typing import Any, Dict, Optional

import structlog

from ..config import Settings, get_settings
from ..db.audit_service import AuditService
from ..db.ids import utc_now
from ..db.models import (
    ExecutionPermissionModel,
    WorkPackageModel,
    WorkPackageReadinessModel,
)
from ..db.store import EntityStore
from .constraints import ConstraintStore
from .enums import (
    ConstraintType,
    PermissionStatus,
    ReadinessStatus,
    RiskLevel,
    require_exhaustive,
)
from .errors import INVALID_PERMISSION_STATUS, ValidationError, require_identifier
from .risk import RiskAssessment, RiskScorer
from .rollup import WorkPackageRollup

logger = structlog.get_logger(__name__)

_READINESS_GATE: Dict[ReadinessStatus, Optional[PermissionStatus]] = require_exhaustive(
    {
        ReadinessStatus.NOT_READY: PermissionStatus.BLOCKED,
        ReadinessStatus.READY_WITH_WARNINGS: None,
        ReadinessStatus.READY: None,
    },
    ReadinessStatus,
    "_READINESS_GATE",
)

_RISK_GATE: Dict[RiskLevel, PermissionStatus] = require_exhaustive(
    {
        RiskLevel.LOW: PermissionStatus.RELEASED,
        RiskLevel.MEDIUM: PermissionStatus.PM_APPROVAL_REQUIRED,
        RiskLevel.HIGH: PermissionStatus.PM_APPROVAL_REQUIRED,
        RiskLevel.CRITICAL: PermissionStatus.BLOCKED,
    },
    RiskLevel,
    "_RISK_GATE",
)


def derive_permission(
    readiness: ReadinessStatus, risk_level: RiskLevel, engineer_review_open: bool = False
) -> PermissionStatus:
    """Pure automatic permission rule."""
    readiness = ReadinessStatus(readiness)
    risk_level = RiskLevel(risk_level)

    gated = _READINESS_GATE[readiness]
    if gated is not None:
        return gated
    by_risk = _RISK_GATE[risk_level]
    if by_risk == PermissionStatus.BLOCKED:
        return by_risk
    if engineer_review_open:
        return PermissionStatus.ENGINEER_REVIEW_REQUIRED
    return by_risk


def blocking_reason(
    status: PermissionStatus, readiness: ReadinessStatus, risk: RiskAssessment
) -> Optional[str]:
    if status == PermissionStatus.RELEASED:
        return None
    if status == PermissionStatus.BLOCKED:
        if readiness == ReadinessStatus.NOT_READY:
            return "Work package has unresolved blockers"
        return f"Critical execution risk (score {risk.score})"
    if status == PermissionStatus.ENGINEER_REVIEW_REQUIRED:
        return "Engineer review required"
    return f"PM approval required: {risk.level.value} risk (score {risk.score})"


def parse_permission_status(value: Any) -> PermissionStatus:
    try:
        return PermissionStatus(value)
    except ValueError:
        raise ValidationError(
            code=INVALID_PERMISSION_STATUS,
            message=f"Unknown permission status '{value}'",
            details={"allowed": [s.value for s in PermissionStatus]},
        ) from None


class PermissionService:
    """Recompute, override and clear ExecutionPermission rows."""

    def __init__(
        self,
        store: EntityStore,
        rollup: Optional[WorkPackageRollup] = None,
        scorer: Optional[RiskScorer] = None,
        audit: Optional[AuditService] = None,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.audit = audit or AuditService(store.db)
        self.rollup = rollup or WorkPackageRollup(store)
        self.scorer = scorer or RiskScorer(store, self.settings)
        self.constraints = ConstraintStore(store, self.audit, self.settings.system_actor_id)

    def get(self, work_package_id: str) -> Optional[ExecutionPermissionModel]:
        return self.store.db.get(ExecutionPermissionModel, work_package_id)

    def _readiness(self, work_package: WorkPackageModel) -> ReadinessStatus:
        row = self.store.db.get(WorkPackageReadinessModel, work_package.id)
        if row is None:
            row = self.rollup.rollup(work_package, commit=False)
        return ReadinessStatus(row.lookahead_ready)

    def _engineer_review_open(self, work_package: WorkPackageModel) -> bool:
        task_ids = [t.id for t in self.store.package_erection_tasks(work_package.id)]
        return any(
            row.constraint_type == ConstraintType.ENGINEER_REVIEW_REQUIRED.value
            for row in self.constraints.open_for_package(work_package.id, task_ids)
        )

    def recompute(
        self,
        work_package: WorkPackageModel,
        trace_id: Optional[str] = None,
        commit: bool = True,
    ) -> ExecutionPermissionModel:
        """Re-derive the gate state for ``work_package``, honouring a live override."""
        readiness = self._readiness(work_package)
        risk = self.scorer.assess(work_package)
        computed = derive_permission(readiness, risk.level, self._engineer_review_open(work_package))

        row = self.get(work_package.id)
        previous = None
        if row is None:
            row = ExecutionPermissionModel(work_package_id=work_package.id)
            self.store.db.add(row)
        else:
            previous = row.permission_status

        row.project_id = work_package.project_id
        row.computed_status = computed.value
        row.risk_level = risk.level.value
        row.risk_score = risk.score
        row.risk_drivers = risk.drivers
        row.evaluated_at = utc_now()

        if row.is_overridden:
            basis_holds = (
                row.override_readiness == readiness.value
                and row.override_risk_level == risk.level.value
            )
            if basis_holds:
                if commit:
                    self.store.commit()
                else:
                    self.store.flush()
                return row
            self._drop_override(
                row,
                actor_id=self.settings.system_actor_id,
                note=f"Basis changed: readiness {row.override_readiness} -> {readiness.value}, "
                f"risk {row.override_risk_level} -> {risk.level.value}",
                trace_id=trace_id,
            )

        row.permission_status = computed.value
        row.blocking_reason = blocking_reason(computed, readiness, risk)
        if previous is not None and previous != computed.value:
            self.audit.log_status_change(
                entity_kind="ExecutionPermission",
                entity_id=work_package.id,
                old_status=previous,
                new_status=computed.value,
                actor_id=self.settings.system_actor_id,
                trace_id=trace_id,
            )
            logger.info(
                "permission_changed",
                work_package_id=work_package.id,
                old_status=previous,
                new_status=computed.value,
            )

        if commit:
            self.store.commit()
        else:
            self.store.flush()
        return row

    def override(
        self,
        work_package_id: str,
        status: Any,
        approved_by: str,
        reason: Optional[str] = None,
        trace_id: Optional[str] = None,
    ) -> ExecutionPermissionModel:
        """Pin ``permission_status`` against the package's current readiness and risk."""
        target = parse_permission_status(status)
        approved_by = require_identifier(approved_by, "approved_by")
        work_package = self.rollup.require_package(work_package_id)

        row = self.recompute(work_package, trace_id=trace_id, commit=False)
        before = row.to_dict()
        row.permission_status = target.value
        row.approved_by = approved_by
        row.approved_at = utc_now()
        row.override_reason = reason
        row.override_readiness = self._readiness(work_package).value
        row.override_risk_level = row.risk_level
        row.blocking_reason = None if target == PermissionStatus.RELEASED else reason

        self.audit.log_override(
            entity_id=work_package.id,
            before=before,
            after=row.to_dict(),
            actor_id=approved_by,
            note=reason,
            trace_id=trace_id,
        )
        self.store.commit()
        logger.info(
            "permission_overridden",
            work_package_id=work_package.id,
            status=target.value,
            computed_status=row.computed_status,
            approved_by=approved_by,
        )
        return row

    def clear_override(
        self, work_package_id: str, actor_id: Optional[str] = None, trace_id: Optional[str] = None
    ) -> ExecutionPermissionModel:
        """Drop an override explicitly; the computed status applies again."""
        work_package = self.rollup.require_package(work_package_id)
        row = self.get(work_package.id)
        if row is None or not row.is_overridden:
            return self.recompute(work_package, trace_id=trace_id)

        self._drop_override(
            row,
            actor_id=actor_id or self.settings.system_actor_id,
            note="Override cleared",
            trace_id=trace_id,
        )
        self.store.commit()
        return self.recompute(work_package, trace_id=trace_id)

    def _drop_override(
        self,
        row: ExecutionPermissionModel,
        actor_id: str,
        note: str,
        trace_id: Optional[str],
    ) -> None:
        before = row.to_dict()
        row.approved_by = None
        row.approved_at = None
        row.override_reason = None
        row.override_readiness = None
        row.override_risk_level = None
        row.permission_status = row.computed_status
        self.audit.log_override(
            entity_id=row.work_package_id,
            before=before,
            after=row.to_dict(),
            actor_id=actor_id,
            note=note,
            dropped=True,
            trace_id=trace_id,
        )
        logger.info("permission_override_dropped", work_package_id=row.work_package_id, reason=note)
