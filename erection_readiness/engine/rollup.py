"""
Work package rollup.

Folds the ReadinessRecords of every ERECTION task owned by a package into one
lookahead verdict. Dominance: NOT_READY > READY_WITH_WARNINGS > READY. A
package with no erection tasks is READY with zero counts.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Optional

import structlog

from ..db.ids import utc_now
from ..db.models import ReadinessRecordModel, WorkPackageModel, WorkPackageReadinessModel
from ..db.store import EntityStore
from .enums import EntityName, ReadinessStatus
from .errors import WORK_PACKAGE_NOT_FOUND, ValidationError
from .readiness import ReadinessEvaluator

logger = structlog.get_logger(__name__)

_DOMINANCE = {
    ReadinessStatus.READY: 0,
    ReadinessStatus.READY_WITH_WARNINGS: 1,
    ReadinessStatus.NOT_READY: 2,
}


@dataclass
class RollupSummary:
    lookahead_ready: ReadinessStatus
    lookahead_blockers: int = 0
    lookahead_warnings: int = 0
    task_count: int = 0


def dominant(statuses: Iterable[ReadinessStatus]) -> ReadinessStatus:
    """Most severe status among ``statuses``; READY for an empty input."""
    return max(statuses, key=_DOMINANCE.__getitem__, default=ReadinessStatus.READY)


def fold_readiness(records: Iterable[ReadinessRecordModel]) -> RollupSummary:
    """Fold child records into a package summary. Totals are plain sums."""
    records = list(records)
    return RollupSummary(
        lookahead_ready=dominant(ReadinessStatus(r.readiness_status) for r in records),
        lookahead_blockers=sum(r.blocker_count or 0 for r in records),
        lookahead_warnings=sum(r.warning_count or 0 for r in records),
        task_count=len(records),
    )


class WorkPackageRollup:
    """Compute and cache WorkPackageReadiness rows."""

    def __init__(self, store: EntityStore, evaluator: Optional[ReadinessEvaluator] = None):
        self.store = store
        self.evaluator = evaluator or ReadinessEvaluator(store)

    def rollup(self, work_package: WorkPackageModel, commit: bool = True) -> WorkPackageReadinessModel:
        """Fold child readiness for ``work_package``, evaluating unevaluated tasks first."""
        records = []
        for task in self.store.package_erection_tasks(work_package.id):
            record = self.store.db.get(ReadinessRecordModel, task.id)
            if record is None:
                record = self.evaluator.evaluate(task, commit=False)
            records.append(record)

        summary = fold_readiness(records)
        row = self.store.db.get(WorkPackageReadinessModel, work_package.id)
        if row is None:
            row = WorkPackageReadinessModel(work_package_id=work_package.id)
            self.store.db.add(row)
        row.project_id = work_package.project_id
        row.lookahead_ready = summary.lookahead_ready.value
        row.lookahead_blockers = summary.lookahead_blockers
        row.lookahead_warnings = summary.lookahead_warnings
        row.task_count = summary.task_count
        row.evaluated_at = utc_now()

        if commit:
            self.store.commit()
        else:
            self.store.flush()
        logger.debug(
            "work_package_rolled_up",
            work_package_id=work_package.id,
            readiness=summary.lookahead_ready.value,
            tasks=summary.task_count,
        )
        return row

    def rollup_by_id(self, work_package_id: str) -> WorkPackageReadinessModel:
        return self.rollup(self.require_package(work_package_id))

    def require_package(self, work_package_id: str) -> WorkPackageModel:
        work_package = self.store.get(EntityName.WORK_PACKAGE, work_package_id)
        if work_package is None:
            raise ValidationError(
                code=WORK_PACKAGE_NOT_FOUND,
                message=f"Work package '{work_package_id}' not found",
                details={"work_package_id": work_package_id},
            )
        return work_package

    def summary_of(self, work_package_id: str) -> Dict[str, object]:
        row = self.store.db.get(WorkPackageReadinessModel, work_package_id)
        return row.to_dict() if row else {}
