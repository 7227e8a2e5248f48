"""
Tests for the readiness evaluator.

Verifies:
- NOT_READY iff blocker_count > 0
- each implicit condition (drawings, RFIs, deliveries, hold, predecessors)
- merging of explicit and implicit findings
- non-erection tasks are never evaluated
"""

import pytest

from erection_readiness.db.models import ReadinessRecordModel
from erection_readiness.engine.constraints import ConstraintStore
from erection_readiness.engine.enums import ConstraintType, ReadinessStatus, Severity
from erection_readiness.engine.errors import TASK_NOT_FOUND, ValidationError
from erection_readiness.engine.readiness import (
    Finding,
    ReadinessEvaluator,
    compute_verdict,
    merge_findings,
)


@pytest.fixture
def evaluator(store):
    return ReadinessEvaluator(store)


def finding(ctype, severity, evidence="e-1"):
    return Finding(constraint_type=ctype, severity=severity, evidence_id=evidence, summary="x")


class TestVerdict:
    def test_no_findings_is_ready(self):
        verdict = compute_verdict([])
        assert verdict.readiness_status == ReadinessStatus.READY
        assert verdict.blocker_count == 0
        assert verdict.drivers == []

    def test_warnings_only(self):
        verdict = compute_verdict([finding(ConstraintType.DELIVERY_PENDING, Severity.WARNING)])
        assert verdict.readiness_status == ReadinessStatus.READY_WITH_WARNINGS
        assert verdict.warning_count == 1

    def test_any_blocker_is_not_ready(self):
        verdict = compute_verdict(
            [
                finding(ConstraintType.DELIVERY_PENDING, Severity.WARNING, "d-1"),
                finding(ConstraintType.AREA_HOLD, Severity.BLOCKER, "t-1"),
            ]
        )
        assert verdict.readiness_status == ReadinessStatus.NOT_READY
        assert verdict.blocker_count == 1
        assert verdict.warning_count == 1
        # Blockers first
        assert verdict.drivers[0].startswith("BLOCKER")
        assert verdict.drivers[1].startswith("WARNING")

    def test_merge_keeps_most_severe(self):
        merged = merge_findings(
            [
                finding(ConstraintType.RFI_RESPONSE_REQUIRED, Severity.WARNING, "r-1"),
                finding(ConstraintType.RFI_RESPONSE_REQUIRED, Severity.BLOCKER, "r-1"),
                finding(ConstraintType.RFI_RESPONSE_REQUIRED, Severity.WARNING, "r-2"),
            ]
        )
        assert len(merged) == 2
        by_evidence = {f.evidence_id: f.severity for f in merged}
        assert by_evidence == {"r-1": Severity.BLOCKER, "r-2": Severity.WARNING}


class TestEvaluate:
    def test_clean_task_is_ready(self, evaluator, project, seed, work_package):
        task = seed.task(project, work_package)
        record = evaluator.evaluate(task)
        assert record.readiness_status == "READY"
        assert record.blocker_count == 0
        assert record.project_id == project.id
        assert record.work_package_id == work_package.id

    def test_open_blocker_rfi_blocks_with_named_driver(self, evaluator, project, seed):
        task = seed.task(project)
        rfi = seed.rfi(project, linked_task_ids=[task.id])

        record = evaluator.evaluate(task)

        assert record.readiness_status == "NOT_READY"
        assert record.blocker_count == 1
        assert "RFI #12" in record.drivers[0]
        assert rfi.id in record.drivers[0]

    def test_non_blocker_rfi_warns(self, evaluator, project, seed):
        task = seed.task(project)
        rfi = seed.rfi(project, is_blocker=False)
        task.linked_rfi_ids = [rfi.id]

        record = evaluator.evaluate(task)
        assert record.readiness_status == "READY_WITH_WARNINGS"
        assert record.warning_count == 1

    def test_answered_rfi_does_not_count(self, evaluator, project, seed):
        task = seed.task(project)
        seed.rfi(project, status="answered", linked_task_ids=[task.id])
        assert evaluator.evaluate(task).readiness_status == "READY"

    def test_unreleased_package_drawing_blocks(self, evaluator, project, seed):
        drawing_set = seed.drawing_set(project, status="BFA")
        work_package = seed.work_package(project, linked_drawing_set_ids=[drawing_set.id])
        task = seed.task(project, work_package)

        record = evaluator.evaluate(task)
        assert record.readiness_status == "NOT_READY"
        assert "E-100" in record.drivers[0]

    def test_released_drawing_is_fine(self, evaluator, project, seed):
        drawing_set = seed.drawing_set(project, status="FFF")
        task = seed.task(project, linked_drawing_set_ids=[drawing_set.id])
        assert evaluator.evaluate(task).readiness_status == "READY"

    def test_pending_delivery_warns_unless_gating(self, evaluator, project, seed):
        delivery = seed.delivery(project)
        work_package = seed.work_package(project, linked_delivery_ids=[delivery.id])
        warned = seed.task(project, work_package)
        gated = seed.task(project, work_package, gating_delivery_ids=[delivery.id])

        assert evaluator.evaluate(warned).readiness_status == "READY_WITH_WARNINGS"
        assert evaluator.evaluate(gated).readiness_status == "NOT_READY"

    def test_received_delivery_is_fine(self, evaluator, project, seed):
        delivery = seed.delivery(project, delivery_status="received")
        task = seed.task(project, gating_delivery_ids=[delivery.id])
        assert evaluator.evaluate(task).readiness_status == "READY"

    def test_area_hold_blocks(self, evaluator, project, seed):
        task = seed.task(project, erection_area="Grid A", hold_area=True, hold_reason="Crane down")
        record = evaluator.evaluate(task)
        assert record.readiness_status == "NOT_READY"
        assert "Crane down" in record.drivers[0]

    def test_incomplete_predecessor_blocks(self, evaluator, project, seed):
        predecessor = seed.task(project, name="Set columns", task_type="OTHER", status="in_progress")
        task = seed.task(project, predecessor_ids=[predecessor.id])
        record = evaluator.evaluate(task)
        assert record.readiness_status == "NOT_READY"
        assert "Set columns" in record.drivers[0]

    def test_completed_predecessor_is_fine(self, evaluator, project, seed):
        predecessor = seed.task(project, status="completed")
        task = seed.task(project, predecessor_ids=[predecessor.id])
        assert evaluator.evaluate(task).readiness_status == "READY"

    def test_missing_linked_records_are_absent(self, evaluator, project, seed):
        task = seed.task(
            project,
            predecessor_ids=["ghost-task"],
            linked_rfi_ids=["ghost-rfi"],
            linked_drawing_set_ids=["ghost-set"],
            gating_delivery_ids=["ghost-delivery"],
        )
        assert evaluator.evaluate(task).readiness_status == "READY"

    def test_explicit_constraint_merges_with_implicit_finding(self, store, evaluator, project, seed):
        task = seed.task(project)
        rfi = seed.rfi(project, linked_task_ids=[task.id])
        ConstraintStore(store).open(
            project.id, ConstraintType.RFI_RESPONSE_REQUIRED, rfi.id, task_id=task.id
        )
        record = evaluator.evaluate(task)
        assert record.blocker_count == 1

    def test_explicit_engineer_review_warns(self, store, evaluator, project, seed, work_package):
        task = seed.task(project, work_package)
        ConstraintStore(store).open(
            project.id, "ENGINEER_REVIEW_REQUIRED", "calc-7", work_package_id=work_package.id
        )
        record = evaluator.evaluate(task)
        assert record.readiness_status == "READY_WITH_WARNINGS"

    def test_record_is_overwritten(self, evaluator, db_session, project, seed):
        task = seed.task(project, hold_area=True)
        assert evaluator.evaluate(task).readiness_status == "NOT_READY"
        task.hold_area = False
        assert evaluator.evaluate(task).readiness_status == "READY"
        assert db_session.query(ReadinessRecordModel).count() == 1

    def test_task_row_is_not_modified(self, evaluator, project, seed):
        task = seed.task(project, hold_area=True)
        before = task.to_dict()
        evaluator.evaluate(task)
        assert task.to_dict() == before

    def test_non_erection_task_is_skipped(self, evaluator, db_session, project, seed):
        task = seed.task(project, task_type="OTHER", hold_area=True)
        assert evaluator.evaluate(task) is None
        assert evaluator.verdict(task).readiness_status == ReadinessStatus.READY
        assert db_session.query(ReadinessRecordModel).count() == 0

    def test_evaluate_by_id_unknown_task(self, evaluator):
        with pytest.raises(ValidationError) as exc_info:
            evaluator.evaluate_by_id("missing")
        assert exc_info.value.code == TASK_NOT_FOUND
        assert exc_info.value.is_not_found
