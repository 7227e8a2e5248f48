"""
Dependency graph validator for task predecessor edges.

The graph is held as an adjacency map ``{task_id: [predecessor ids]}`` built
from plain task records, never from live object references, so the same
checks run against ORM rows, dicts or test fixtures.

Rules:
- a task may not be its own predecessor (rejected without traversal)
- an edge ``task -> predecessor`` is rejected when ``task`` is already
  reachable from ``predecessor`` by following predecessor edges; the path
  found is returned as the cycle witness
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .errors import SELF_PREDECESSOR, CycleError, ValidationError, require_identifier

AdjacencyMap = Dict[str, List[str]]


def _field(task: Any, name: str) -> Any:
    if isinstance(task, Mapping):
        return task.get(name)
    return getattr(task, name, None)


def build_adjacency(tasks: Iterable[Any]) -> AdjacencyMap:
    """Index predecessor edges by task id."""
    adjacency: AdjacencyMap = {}
    for task in tasks:
        task_id = _field(task, "id")
        if task_id is None:
            continue
        adjacency[str(task_id)] = [str(p) for p in (_field(task, "predecessor_ids") or [])]
    return adjacency


@dataclass
class EdgeValidation:
    """Outcome of checking one proposed predecessor edge."""

    task_id: str
    predecessor_id: str
    valid: bool
    cycle: List[str] = field(default_factory=list)
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "predecessor_id": self.predecessor_id,
            "valid": self.valid,
            "cycle": self.cycle,
            "reason": self.reason,
        }


def _find_path(adjacency: AdjacencyMap, start: str, target: str) -> Optional[List[str]]:
    """Iterative DFS from ``start`` along predecessor edges looking for ``target``."""
    visited = {start}
    # Each stack entry carries the path that reached it
    stack: List[List[str]] = [[start]]
    while stack:
        path = stack.pop()
        node = path[-1]
        if node == target:
            return path
        for predecessor in reversed(adjacency.get(node, [])):
            if predecessor == target:
                return path + [predecessor]
            if predecessor not in visited:
                visited.add(predecessor)
                stack.append(path + [predecessor])
    return None


def validate_edge(
    task_id: str, proposed_predecessor_id: str, all_tasks_in_project: Iterable[Any]
) -> EdgeValidation:
    """
    Check whether ``proposed_predecessor_id`` may become a predecessor of ``task_id``.

    Pure: nothing is written. O(V+E) per call.

    Returns:
        EdgeValidation with ``valid=False`` and the cycle path
        ``[task_id, proposed_predecessor_id, ..., task_id]`` when rejected.
    """
    task_id = require_identifier(task_id, "task_id")
    proposed_predecessor_id = require_identifier(
        proposed_predecessor_id, "proposed_predecessor_id"
    )

    if task_id == proposed_predecessor_id:
        return EdgeValidation(
            task_id=task_id,
            predecessor_id=proposed_predecessor_id,
            valid=False,
            cycle=[task_id, task_id],
            reason=SELF_PREDECESSOR,
        )

    adjacency = build_adjacency(all_tasks_in_project)
    path = _find_path(adjacency, proposed_predecessor_id, task_id)
    if path is not None:
        return EdgeValidation(
            task_id=task_id,
            predecessor_id=proposed_predecessor_id,
            valid=False,
            cycle=[task_id] + path,
            reason="CYCLE_DETECTED",
        )

    return EdgeValidation(task_id=task_id, predecessor_id=proposed_predecessor_id, valid=True)


def ensure_edge_allowed(
    task_id: str, proposed_predecessor_id: str, all_tasks_in_project: Iterable[Any]
) -> None:
    """Raise instead of returning a negative validation."""
    result = validate_edge(task_id, proposed_predecessor_id, all_tasks_in_project)
    if result.valid:
        return
    if result.reason == SELF_PREDECESSOR:
        raise ValidationError(
            code=SELF_PREDECESSOR,
            message=f"Task {task_id} cannot be its own predecessor",
            details=result.to_dict(),
        )
    raise CycleError(task_id, proposed_predecessor_id, result.cycle)


def find_cycles(all_tasks_in_project: Iterable[Any]) -> List[List[str]]:
    """
    Audit an existing graph and return one witness path per cycle found.

    Used for recovery when edges were written without going through the
    validator. Each witness starts and ends at the same task id.
    """
    adjacency = build_adjacency(all_tasks_in_project)
    white, grey, black = 0, 1, 2
    colour = {node: white for node in adjacency}
    cycles: List[List[str]] = []

    for root in sorted(adjacency):
        if colour[root] != white:
            continue
        colour[root] = grey
        path = [root]
        iterators = [iter(adjacency.get(root, []))]
        while iterators:
            nxt = next(iterators[-1], None)
            if nxt is None:
                colour[path.pop()] = black
                iterators.pop()
                continue
            state = colour.get(nxt, black)  # edges to unknown tasks are ignored
            if state == grey:
                start = path.index(nxt)
                cycles.append(path[start:] + [nxt])
            elif state == white:
                colour[nxt] = grey
                path.append(nxt)
                iterators.append(iter(adjacency.get(nxt, [])))
    return cycles
