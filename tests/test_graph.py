"""
Tests for the predecessor graph validator.

Verifies:
- self-predecessor and transitive cycles are rejected with a witness path
- acyclic edges are accepted
- find_cycles() audits an existing graph
"""

import pytest

from erection_readiness.engine.errors import (
    CYCLE_DETECTED,
    MISSING_IDENTIFIER,
    SELF_PREDECESSOR,
    CycleError,
    ValidationError,
)
from erection_readiness.engine.graph import (
    build_adjacency,
    ensure_edge_allowed,
    find_cycles,
    validate_edge,
)


def chain(*ids):
    """Tasks where each id depends on the previous one."""
    tasks = [{"id": ids[0], "predecessor_ids": []}]
    for prev, current in zip(ids, ids[1:]):
        tasks.append({"id": current, "predecessor_ids": [prev]})
    return tasks


class TestValidateEdge:
    def test_self_predecessor_rejected(self):
        result = validate_edge("A", "A", chain("A", "B"))
        assert not result.valid
        assert result.reason == SELF_PREDECESSOR
        assert result.cycle == ["A", "A"]

    def test_direct_cycle_rejected(self):
        # B already depends on A; making B a predecessor of A closes the loop
        result = validate_edge("A", "B", chain("A", "B"))
        assert not result.valid
        assert result.reason == CYCLE_DETECTED
        assert result.cycle == ["A", "B", "A"]

    def test_transitive_cycle_rejected(self):
        result = validate_edge("A", "D", chain("A", "B", "C", "D"))
        assert not result.valid
        assert result.cycle[0] == "A"
        assert result.cycle[-1] == "A"
        assert result.cycle == ["A", "D", "C", "B", "A"]

    def test_acyclic_edge_accepted(self):
        result = validate_edge("D", "A", chain("A", "B", "C", "D"))
        assert result.valid
        assert result.cycle == []
        assert result.reason is None

    def test_unrelated_tasks_accepted(self):
        tasks = chain("A", "B") + [{"id": "X", "predecessor_ids": []}]
        assert validate_edge("X", "B", tasks).valid

    def test_accepts_orm_like_objects(self):
        class Row:
            def __init__(self, id, predecessor_ids):
                self.id = id
                self.predecessor_ids = predecessor_ids

        rows = [Row("A", []), Row("B", ["A"])]
        assert not validate_edge("A", "B", rows).valid

    def test_does_not_mutate_input(self):
        tasks = chain("A", "B")
        validate_edge("A", "B", tasks)
        assert tasks == chain("A", "B")

    def test_missing_identifier(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_edge("", "A", [])
        assert exc_info.value.code == MISSING_IDENTIFIER


class TestEnsureEdgeAllowed:
    def test_raises_cycle_error_with_path(self):
        with pytest.raises(CycleError) as exc_info:
            ensure_edge_allowed("A", "C", chain("A", "B", "C"))
        error = exc_info.value
        assert error.code == CYCLE_DETECTED
        assert error.details["cycle"] == ["A", "C", "B", "A"]
        assert error.to_dict()["error"] == "validation_failed"

    def test_raises_for_self_predecessor(self):
        with pytest.raises(ValidationError) as exc_info:
            ensure_edge_allowed("A", "A", [])
        assert exc_info.value.code == SELF_PREDECESSOR

    def test_passes_for_valid_edge(self):
        ensure_edge_allowed("C", "A", chain("A", "B", "C"))


class TestFindCycles:
    def test_no_cycles(self):
        assert find_cycles(chain("A", "B", "C")) == []

    def test_reports_existing_cycle(self):
        tasks = [
            {"id": "A", "predecessor_ids": ["C"]},
            {"id": "B", "predecessor_ids": ["A"]},
            {"id": "C", "predecessor_ids": ["B"]},
        ]
        cycles = find_cycles(tasks)
        assert len(cycles) == 1
        assert cycles[0][0] == cycles[0][-1]
        assert set(cycles[0]) == {"A", "B", "C"}

    def test_ignores_unknown_predecessors(self):
        assert find_cycles([{"id": "A", "predecessor_ids": ["ghost"]}]) == []


def test_build_adjacency_skips_rows_without_id():
    adjacency = build_adjacency([{"predecessor_ids": ["A"]}, {"id": "B", "predecessor_ids": None}])
    assert adjacency == {"B": []}
