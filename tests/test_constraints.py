"""
Tests for the constraint store.

Verifies:
- opening is idempotent per (scope, type, evidence)
- clearing stamps cleared_at/cleared_by and never deletes
- severity defaults and unknown types
- syncing reconciles OPEN rows against the scopes evidence still touches
"""

import pytest

from erection_readiness.db.audit_service import AuditService
from erection_readiness.db.models import ConstraintModel
from erection_readiness.engine.constraints import (
    DEFAULT_SEVERITY,
    ConstraintStore,
    default_severity,
    parse_constraint_type,
)
from erection_readiness.engine.enums import ConstraintType, Severity
from erection_readiness.engine.errors import (
    MISSING_IDENTIFIER,
    UNKNOWN_CONSTRAINT_TYPE,
    ValidationError,
)


@pytest.fixture
def constraints(store):
    return ConstraintStore(store)


class TestSeverityMapping:
    def test_every_type_has_a_default(self):
        assert set(DEFAULT_SEVERITY) == set(ConstraintType)

    def test_blocking_types(self):
        assert default_severity("DRAWING_NOT_RELEASED") == Severity.BLOCKER
        assert default_severity(ConstraintType.AREA_HOLD) == Severity.BLOCKER
        assert default_severity("DELIVERY_PENDING") == Severity.WARNING

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_constraint_type("FABRICATION_COMPLETE_REQUIRED")
        assert exc_info.value.code == UNKNOWN_CONSTRAINT_TYPE


class TestOpen:
    def test_open_creates_row(self, constraints, project, seed, work_package):
        task = seed.task(project, work_package)
        row, created = constraints.open(
            project.id, "RFI_RESPONSE_REQUIRED", "rfi-1", task_id=task.id, notes="RFI #1"
        )
        assert created
        assert row.status == "OPEN"
        assert row.severity == "BLOCKER"
        assert row.owner_role == "PM"
        assert row.evidence_links == ["rfi-1"]
        assert row.created_by == "readiness-engine"

    def test_open_is_idempotent(self, constraints, db_session, project, work_package):
        first, created_first = constraints.open(
            project.id, "DELIVERY_PENDING", "del-1", work_package_id=work_package.id
        )
        second, created_second = constraints.open(
            project.id, "DELIVERY_PENDING", "del-1", work_package_id=work_package.id
        )
        assert created_first and not created_second
        assert first.id == second.id
        assert db_session.query(ConstraintModel).count() == 1

    def test_different_scope_is_a_new_constraint(self, constraints, db_session, project, seed, work_package):
        task = seed.task(project, work_package)
        constraints.open(project.id, "AREA_HOLD", task.id, task_id=task.id)
        constraints.open(project.id, "AREA_HOLD", task.id, work_package_id=work_package.id)
        assert db_session.query(ConstraintModel).count() == 2

    def test_open_requires_scope(self, constraints, project):
        with pytest.raises(ValidationError) as exc_info:
            constraints.open(project.id, "OTHER", "x")
        assert exc_info.value.code == MISSING_IDENTIFIER

    def test_open_writes_audit_entry(self, constraints, db_session, project, work_package):
        row, _ = constraints.open(project.id, "OTHER", "note-1", work_package_id=work_package.id)
        history = AuditService(db_session).query_by_entity("Constraint", row.id)
        assert [entry.action for entry in history] == ["created"]


class TestClear:
    def test_clear_marks_cleared(self, constraints, db_session, project, work_package):
        row, _ = constraints.open(
            project.id, "DRAWING_NOT_RELEASED", "ds-1", work_package_id=work_package.id
        )
        cleared = constraints.clear("DRAWING_NOT_RELEASED", "ds-1", project_id=project.id, actor_id="pm-1")

        assert [c.id for c in cleared] == [row.id]
        db_session.refresh(row)
        assert row.status == "CLEARED"
        assert row.cleared_by == "pm-1"
        assert row.cleared_at is not None
        # Never deleted
        assert db_session.query(ConstraintModel).count() == 1

    def test_clear_only_matches_type_and_evidence(self, constraints, project, work_package):
        constraints.open(project.id, "DRAWING_NOT_RELEASED", "ds-1", work_package_id=work_package.id)
        constraints.open(project.id, "DRAWING_NOT_RELEASED", "ds-2", work_package_id=work_package.id)
        constraints.open(project.id, "RFI_RESPONSE_REQUIRED", "ds-1", work_package_id=work_package.id)

        cleared = constraints.clear("DRAWING_NOT_RELEASED", "ds-1")
        assert len(cleared) == 1
        assert len(constraints.open_for_package(work_package.id)) == 2

    def test_clear_twice_is_a_no_op(self, constraints, project, work_package):
        constraints.open(project.id, "DELIVERY_PENDING", "del-1", work_package_id=work_package.id)
        assert len(constraints.clear("DELIVERY_PENDING", "del-1")) == 1
        assert constraints.clear("DELIVERY_PENDING", "del-1") == []

    def test_reopen_after_clear_creates_new_row(self, constraints, db_session, project, work_package):
        first, _ = constraints.open(project.id, "OTHER", "x", work_package_id=work_package.id)
        constraints.clear("OTHER", "x")
        second, created = constraints.open(project.id, "OTHER", "x", work_package_id=work_package.id)
        assert created
        assert second.id != first.id
        assert db_session.query(ConstraintModel).count() == 2

    def test_clear_by_id(self, constraints, project, work_package):
        row, _ = constraints.open(project.id, "OTHER", "x", work_package_id=work_package.id)
        cleared = constraints.clear_by_id(row.id, actor_id="pm-1")
        assert cleared.status == "CLEARED"
        again = constraints.clear_by_id(row.id, actor_id="someone-else")
        assert again.cleared_by == "pm-1"


class TestSync:
    def test_opens_missing_scopes(self, constraints, project, seed, work_package):
        task = seed.task(project, work_package)

        outcome = constraints.sync(
            project.id,
            "RFI_RESPONSE_REQUIRED",
            "rfi-1",
            [(task.id, work_package.id), (None, work_package.id)],
            severity=Severity.WARNING,
        )

        assert len(outcome.opened) == 2
        assert {row.severity for row in outcome.opened} == {"WARNING"}
        assert outcome.updated == outcome.cleared == []

    def test_unchanged_evidence_is_a_no_op(self, constraints, project, work_package):
        scopes = [(None, work_package.id)]
        constraints.sync(project.id, "DRAWING_NOT_RELEASED", "ds-1", scopes, notes="E-100 at IFA")
        outcome = constraints.sync(project.id, "DRAWING_NOT_RELEASED", "ds-1", scopes, notes="E-100 at IFA")
        assert not outcome.changed

    def test_drifted_severity_is_updated_in_place(self, constraints, db_session, project, seed):
        task = seed.task(project)
        [row] = constraints.sync(project.id, "RFI_RESPONSE_REQUIRED", "rfi-1", [(task.id, None)]).opened
        assert row.severity == "BLOCKER"

        outcome = constraints.sync(
            project.id, "RFI_RESPONSE_REQUIRED", "rfi-1", [(task.id, None)], severity=Severity.WARNING
        )

        assert outcome.updated == [row]
        assert row.severity == "WARNING"
        assert row.status == "OPEN"
        updates = [e for e in AuditService(db_session).query_by_entity("Constraint", row.id) if e.action == "updated"]
        assert updates[0].before == {"severity": "BLOCKER"}
        assert updates[0].after == {"severity": "WARNING"}

    def test_unlisted_scopes_are_cleared(self, constraints, db_session, project, seed, work_package):
        kept = seed.task(project)
        dropped = seed.task(project, name="Dropped")
        constraints.sync(
            project.id, "RFI_RESPONSE_REQUIRED", "rfi-1", [(kept.id, None), (dropped.id, None), (None, work_package.id)]
        )

        outcome = constraints.sync(project.id, "RFI_RESPONSE_REQUIRED", "rfi-1", [(kept.id, None)])

        assert sorted(row.task_id or row.work_package_id for row in outcome.cleared) == sorted(
            [dropped.id, work_package.id]
        )
        assert [row.task_id for row in constraints.open_for_task(kept)] == [kept.id]
        assert db_session.query(ConstraintModel).count() == 3

    def test_empty_scopes_clear_everything(self, constraints, project, work_package):
        constraints.sync(project.id, "DELIVERY_PENDING", "del-1", [(None, work_package.id)])
        outcome = constraints.sync(project.id, "DELIVERY_PENDING", "del-1", [])
        assert len(outcome.cleared) == 1
        assert constraints.open_for_package(work_package.id) == []

    def test_other_evidence_is_untouched(self, constraints, project, work_package):
        constraints.sync(project.id, "DELIVERY_PENDING", "del-1", [(None, work_package.id)])
        constraints.sync(project.id, "DELIVERY_PENDING", "del-2", [])
        assert len(constraints.open_for_package(work_package.id)) == 1


class TestQueries:
    def test_open_for_task_includes_package_wide_rows(self, constraints, project, seed, work_package):
        task = seed.task(project, work_package)
        other = seed.task(project, work_package, name="Other")
        constraints.open(project.id, "OTHER", "mine", task_id=task.id)
        constraints.open(project.id, "OTHER", "theirs", task_id=other.id)
        constraints.open(project.id, "DELIVERY_PENDING", "del-1", work_package_id=work_package.id)

        evidence = sorted(row.evidence_links[0] for row in constraints.open_for_task(task))
        assert evidence == ["del-1", "mine"]
