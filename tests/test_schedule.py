"""
Tests for schedule batch operations.

Verifies:
- area hold/release report matched/succeeded/failed counts
- sequence shifts validate before writing anything
- baselines are write-once
- predecessor edits go through the graph validator
"""

from datetime import datetime, timedelta, timezone

import pytest

from erection_readiness.db.audit_service import AuditService
from erection_readiness.engine.errors import (
    BASELINE_IMMUTABLE,
    CROSS_PROJECT_EDGE,
    CYCLE_DETECTED,
    INVALID_SEQUENCE,
    SEQUENCE_COLLISION,
    TASK_NOT_FOUND,
    CycleError,
    ValidationError,
)
from erection_readiness.engine.schedule import ScheduleService

PLANNED = datetime(2026, 4, 6, 7, 0, tzinfo=timezone.utc)


@pytest.fixture
def schedule(store, settings):
    return ScheduleService(store, settings)


def sequenced(seed, project, *numbers):
    return [seed.task(project, name=f"Seq {n}", install_sequence_number=n) for n in numbers]


class TestAreaHold:
    def test_hold_area(self, schedule, db_session, project, seed):
        first = seed.task(project, erection_area="Grid A")
        done = seed.task(project, erection_area="Grid A", status="completed")
        other = seed.task(project, erection_area="Grid B")

        result = schedule.hold_area(project.id, "Grid A", reason="Crane down", actor_id="super-1")

        assert result.to_dict() == {"matched": 2, "succeeded": 2, "failed": 0, "failed_ids": []}
        for task in (first, done, other):
            db_session.refresh(task)
        assert first.hold_area and first.status == "on_hold"
        assert first.hold_reason == "Crane down"
        assert done.hold_area and done.status == "completed"
        assert not other.hold_area

        [entry] = AuditService(db_session).query_by_entity("Task", first.id)
        assert entry.before["status"] == "not_started"
        assert entry.after["status"] == "on_hold"

    def test_release_area_keeps_status(self, schedule, db_session, project, seed):
        task = seed.task(project, erection_area="Grid A")
        schedule.hold_area(project.id, "Grid A", reason="Crane down")

        result = schedule.release_area(project.id, "Grid A")

        assert result.succeeded == 1
        db_session.refresh(task)
        assert not task.hold_area
        assert task.hold_reason is None
        assert task.status == "on_hold"

    def test_empty_area(self, schedule, project):
        assert schedule.hold_area(project.id, "Grid Q").matched == 0

    def test_area_required(self, schedule, project):
        with pytest.raises(ValidationError):
            schedule.hold_area(project.id, "")

    def test_failed_write_is_reported(self, schedule, store, project, seed, monkeypatch):
        good = seed.task(project, erection_area="Grid A")
        bad = seed.task(project, erection_area="Grid A", name="Bad")
        original = store.update

        def flaky(entity_name, entity_id, changes, commit=True):
            if entity_id == bad.id:
                raise RuntimeError("disk full")
            return original(entity_name, entity_id, changes, commit=commit)

        monkeypatch.setattr(store, "update", flaky)
        result = schedule.hold_area(project.id, "Grid A")

        assert result.matched == 2
        assert result.succeeded == 1
        assert result.failed == 1
        assert result.failed_ids == [bad.id]
        assert store.get("Task", good.id).hold_area


class TestSequence:
    def test_push_sequence(self, schedule, db_session, project, seed):
        tasks = sequenced(seed, project, 1, 2, 3, 4)

        result = schedule.push_sequence(project.id, threshold=3, delta=10)

        assert result.matched == 2
        assert result.succeeded == 2
        for task in tasks:
            db_session.refresh(task)
        assert [t.install_sequence_number for t in tasks] == [1, 2, 13, 14]

    def test_zero_delta_is_identity(self, schedule, db_session, project, seed):
        tasks = sequenced(seed, project, 1, 2)
        result = schedule.push_sequence(project.id, threshold=1, delta=0)
        assert result.succeeded == 2
        assert AuditService(db_session).query_by_entity("Task", tasks[0].id) == []

    def test_push_then_pull_back_restores_numbers(self, schedule, db_session, project, seed):
        tasks = sequenced(seed, project, 1, 2, 5, 9)

        schedule.push_sequence(project.id, threshold=5, delta=3)
        for task in tasks:
            db_session.refresh(task)
        assert [t.install_sequence_number for t in tasks] == [1, 2, 8, 12]

        result = schedule.push_sequence(project.id, threshold=8, delta=-3)

        assert result.matched == 2
        for task in tasks:
            db_session.refresh(task)
        assert [t.install_sequence_number for t in tasks] == [1, 2, 5, 9]

    def test_collision_rejected_before_writing(self, schedule, db_session, project, seed):
        tasks = sequenced(seed, project, 1, 2, 5)
        with pytest.raises(ValidationError) as exc_info:
            schedule.push_sequence(project.id, threshold=5, delta=-3)
        assert exc_info.value.code == SEQUENCE_COLLISION
        assert exc_info.value.details["numbers"] == [2]
        db_session.refresh(tasks[2])
        assert tasks[2].install_sequence_number == 5

    def test_below_one_rejected(self, schedule, project, seed):
        sequenced(seed, project, 2, 3)
        with pytest.raises(ValidationError) as exc_info:
            schedule.push_sequence(project.id, threshold=2, delta=-2)
        assert exc_info.value.code == INVALID_SEQUENCE

    def test_unsequenced_tasks_are_ignored(self, schedule, project, seed):
        seed.task(project)
        sequenced(seed, project, 1)
        assert schedule.push_sequence(project.id, threshold=1, delta=1).matched == 1


class TestBaseline:
    def test_capture_fills_unset_baselines(self, schedule, db_session, project, seed):
        fresh = seed.task(project, planned_start=PLANNED, planned_end=PLANNED + timedelta(days=2))
        fixed = seed.task(
            project,
            planned_start=PLANNED + timedelta(days=5),
            baseline_start=PLANNED,
            baseline_end=PLANNED + timedelta(days=1),
        )
        seed.task(project)

        result = schedule.capture_baseline(project.id)

        assert result.matched == 2
        assert result.succeeded == 2
        db_session.refresh(fresh)
        db_session.refresh(fixed)
        assert fresh.baseline_start.replace(tzinfo=None) == PLANNED.replace(tzinfo=None)
        assert fixed.baseline_start.replace(tzinfo=None) == PLANNED.replace(tzinfo=None)
        assert AuditService(db_session).query_by_entity("Task", fixed.id) == []

    def test_set_baseline_once(self, schedule, project, seed):
        task = seed.task(project)
        schedule.set_baseline(task.id, baseline_start=PLANNED, actor_id="pm-1")
        assert task.baseline_start is not None

        # Same value again is accepted
        schedule.set_baseline(task.id, baseline_start=PLANNED)

        with pytest.raises(ValidationError) as exc_info:
            schedule.set_baseline(task.id, baseline_start=PLANNED + timedelta(days=1))
        assert exc_info.value.code == BASELINE_IMMUTABLE

    def test_set_baseline_unknown_task(self, schedule):
        with pytest.raises(ValidationError) as exc_info:
            schedule.set_baseline("missing", baseline_start=PLANNED)
        assert exc_info.value.code == TASK_NOT_FOUND


class TestPredecessors:
    def test_add_predecessor(self, schedule, db_session, project, seed):
        first = seed.task(project, name="Columns")
        second = seed.task(project, name="Beams")

        task = schedule.add_predecessor(second.id, first.id, actor_id="planner-2")

        assert task.predecessor_ids == [first.id]
        [entry] = AuditService(db_session).query_by_entity("Task", second.id)
        assert entry.after == {"predecessor_ids": [first.id]}

    def test_duplicate_is_a_no_op(self, schedule, db_session, project, seed):
        first = seed.task(project)
        second = seed.task(project, predecessor_ids=[first.id])
        schedule.add_predecessor(second.id, first.id)
        assert second.predecessor_ids == [first.id]
        assert AuditService(db_session).query_by_entity("Task", second.id) == []

    def test_cycle_rejected(self, schedule, db_session, project, seed):
        first = seed.task(project)
        second = seed.task(project, predecessor_ids=[first.id])

        with pytest.raises(CycleError) as exc_info:
            schedule.add_predecessor(first.id, second.id)

        assert exc_info.value.code == CYCLE_DETECTED
        assert exc_info.value.path == [first.id, second.id, first.id]
        db_session.refresh(first)
        assert first.predecessor_ids == []

    def test_cross_project_rejected(self, schedule, project, seed):
        other_project = seed.project(name="Depot 4")
        task = seed.task(project)
        foreign = seed.task(other_project)
        with pytest.raises(ValidationError) as exc_info:
            schedule.add_predecessor(task.id, foreign.id)
        assert exc_info.value.code == CROSS_PROJECT_EDGE
