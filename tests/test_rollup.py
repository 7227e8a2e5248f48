"""
Tests for work package rollup.

Verifies:
- dominance NOT_READY > READY_WITH_WARNINGS > READY
- blocker/warning totals are plain sums over child tasks
- empty packages are READY with zero counts
"""

import pytest

from erection_readiness.db.models import ReadinessRecordModel, WorkPackageReadinessModel
from erection_readiness.engine.enums import ReadinessStatus
from erection_readiness.engine.errors import WORK_PACKAGE_NOT_FOUND, ValidationError
from erection_readiness.engine.rollup import WorkPackageRollup, dominant, fold_readiness


@pytest.fixture
def rollup(store):
    return WorkPackageRollup(store)


def record(status, blockers=0, warnings=0):
    return ReadinessRecordModel(
        task_id="t",
        project_id="p",
        readiness_status=status,
        blocker_count=blockers,
        warning_count=warnings,
    )


class TestFold:
    def test_dominance(self):
        assert dominant([]) == ReadinessStatus.READY
        assert dominant([ReadinessStatus.READY, ReadinessStatus.READY_WITH_WARNINGS]) == (
            ReadinessStatus.READY_WITH_WARNINGS
        )
        assert dominant(
            [ReadinessStatus.NOT_READY, ReadinessStatus.READY_WITH_WARNINGS, ReadinessStatus.READY]
        ) == ReadinessStatus.NOT_READY

    def test_warnings_are_summed(self):
        summary = fold_readiness(
            [
                record("READY"),
                record("READY_WITH_WARNINGS", warnings=2),
                record("READY"),
            ]
        )
        assert summary.lookahead_ready == ReadinessStatus.READY_WITH_WARNINGS
        assert summary.lookahead_blockers == 0
        assert summary.lookahead_warnings == 2
        assert summary.task_count == 3

    def test_one_blocked_task_blocks_the_package(self):
        summary = fold_readiness(
            [record("NOT_READY", blockers=1, warnings=1), record("READY_WITH_WARNINGS", warnings=3)]
        )
        assert summary.lookahead_ready == ReadinessStatus.NOT_READY
        assert summary.lookahead_blockers == 1
        assert summary.lookahead_warnings == 4


class TestRollup:
    def test_empty_package_is_ready(self, rollup, work_package):
        row = rollup.rollup(work_package)
        assert row.lookahead_ready == "READY"
        assert row.lookahead_blockers == 0
        assert row.lookahead_warnings == 0
        assert row.task_count == 0

    def test_evaluates_tasks_without_records(self, rollup, db_session, project, seed, work_package):
        seed.task(project, work_package, hold_area=True)
        seed.task(project, work_package, name="Erect grid B")

        row = rollup.rollup(work_package)

        assert row.lookahead_ready == "NOT_READY"
        assert row.lookahead_blockers == 1
        assert row.task_count == 2
        assert db_session.query(ReadinessRecordModel).count() == 2

    def test_only_erection_tasks_count(self, rollup, project, seed, work_package):
        seed.task(project, work_package, task_type="OTHER", hold_area=True)
        row = rollup.rollup(work_package)
        assert row.lookahead_ready == "READY"
        assert row.task_count == 0

    def test_row_is_overwritten(self, rollup, db_session, project, seed, work_package):
        rollup.rollup(work_package)
        seed.task(project, work_package, hold_area=True)
        row = rollup.rollup(work_package)
        assert row.lookahead_ready == "NOT_READY"
        assert db_session.query(WorkPackageReadinessModel).count() == 1

    def test_unknown_package(self, rollup):
        with pytest.raises(ValidationError) as exc_info:
            rollup.rollup_by_id("missing")
        assert exc_info.value.code == WORK_PACKAGE_NOT_FOUND

    def test_summary_of(self, rollup, work_package):
        assert rollup.summary_of(work_package.id) == {}
        rollup.rollup(work_package)
        assert rollup.summary_of(work_package.id)["lookahead_ready"] == "READY"
