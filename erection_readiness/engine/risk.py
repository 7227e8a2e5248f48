"""
Execution risk scoring for work packages.

Score contributions:
    open RFIs linked to the package's drawing sets or tasks   5 each
    linked drawing set unreleased or with superseded revisions  10
    package flagged out of sequence                             15
    a package task waits on an incomplete predecessor           12
    a linked delivery is delayed or in exception                 8

Levels use inclusive upper bounds from settings (default 20 / 40 / 70);
anything above the high bound is critical.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..config import Settings, get_settings
from ..db.models import WorkPackageModel
from ..db.store import EntityStore
from .enums import (
    LATE_DELIVERY_STATUSES,
    RESOLVED_RFI_STATUSES,
    DeliveryStatus,
    DrawingSetStatus,
    EntityName,
    RFIStatus,
    RiskLevel,
    TaskStatus,
)

RFI_WEIGHT = 5
DRAWING_PENDING_WEIGHT = 10
OUT_OF_SEQUENCE_WEIGHT = 15
UNMET_PREDECESSOR_WEIGHT = 12
LATE_DELIVERY_WEIGHT = 8


@dataclass
class RiskFactors:
    open_rfi_count: int = 0
    drawing_revision_pending: bool = False
    out_of_sequence: bool = False
    schedule_dependency_unmet: bool = False
    late_delivery: bool = False


@dataclass
class RiskAssessment:
    score: int
    level: RiskLevel
    drivers: List[str] = field(default_factory=list)
    factors: Optional[RiskFactors] = None

    def to_dict(self) -> Dict[str, object]:
        return {"risk_score": self.score, "risk_level": self.level.value, "drivers": self.drivers}


def score_factors(factors: RiskFactors):
    """Return ``(score, drivers)`` for a set of risk factors."""
    score = 0
    drivers = []
    if factors.open_rfi_count:
        score += factors.open_rfi_count * RFI_WEIGHT
        drivers.append(f"{factors.open_rfi_count} open RFIs")
    if factors.drawing_revision_pending:
        score += DRAWING_PENDING_WEIGHT
        drivers.append("Drawing revisions pending")
    if factors.out_of_sequence:
        score += OUT_OF_SEQUENCE_WEIGHT
        drivers.append("Out of sequence")
    if factors.schedule_dependency_unmet:
        score += UNMET_PREDECESSOR_WEIGHT
        drivers.append("Schedule dependencies unmet")
    if factors.late_delivery:
        score += LATE_DELIVERY_WEIGHT
        drivers.append("Late delivery risk")
    return score, drivers


def level_for(score: int, settings: Optional[Settings] = None) -> RiskLevel:
    settings = settings or get_settings()
    if score <= settings.risk_low_max:
        return RiskLevel.LOW
    if score <= settings.risk_medium_max:
        return RiskLevel.MEDIUM
    if score <= settings.risk_high_max:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


class RiskScorer:
    """Gather risk factors for a package from the entity store and score them."""

    def __init__(self, store: EntityStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()

    def factors(self, work_package: WorkPackageModel) -> RiskFactors:
        drawing_set_ids = set(work_package.linked_drawing_set_ids or [])
        tasks = self.store.filter(EntityName.TASK, work_package_id=work_package.id)
        task_ids = {t.id for t in tasks}

        open_rfis = [
            rfi
            for rfi in self.store.filter(EntityName.RFI, project_id=work_package.project_id)
            if RFIStatus(rfi.status) not in RESOLVED_RFI_STATUSES
            and (
                drawing_set_ids.intersection(rfi.linked_drawing_set_ids or [])
                or task_ids.intersection(rfi.linked_task_ids or [])
            )
        ]

        drawing_pending = False
        if drawing_set_ids:
            sets = self.store.filter(EntityName.DRAWING_SET, id=sorted(drawing_set_ids))
            superseded = self.store.filter(
                EntityName.DRAWING_REVISION, drawing_set_id=sorted(drawing_set_ids), is_current=False
            )
            drawing_pending = bool(superseded) or any(
                s.status != DrawingSetStatus.FFF.value for s in sets
            )

        dependency_unmet = False
        for task in tasks:
            if task.status not in (TaskStatus.NOT_STARTED.value, TaskStatus.IN_PROGRESS.value):
                continue
            for predecessor_id in task.predecessor_ids or []:
                predecessor = self.store.get(EntityName.TASK, predecessor_id)
                if predecessor is not None and predecessor.status != TaskStatus.COMPLETED.value:
                    dependency_unmet = True
                    break
            if dependency_unmet:
                break

        delivery_ids = set(work_package.linked_delivery_ids or [])
        late_delivery = any(
            DeliveryStatus(d.delivery_status) in LATE_DELIVERY_STATUSES
            and (d.id in delivery_ids or work_package.id in (d.linked_work_package_ids or []))
            for d in self.store.filter(EntityName.DELIVERY, project_id=work_package.project_id)
        )

        return RiskFactors(
            open_rfi_count=len(open_rfis),
            drawing_revision_pending=drawing_pending,
            out_of_sequence=bool(work_package.out_of_sequence),
            schedule_dependency_unmet=dependency_unmet,
            late_delivery=late_delivery,
        )

    def assess(self, work_package: WorkPackageModel) -> RiskAssessment:
        factors = self.factors(work_package)
        score, drivers = score_factors(factors)
        return RiskAssessment(
            score=score,
            level=level_for(score, self.settings),
            drivers=drivers,
            factors=factors,
        )
