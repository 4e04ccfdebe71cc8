"""
Reconciliation order for Flux Kustomizations.

Given units with ``dependsOn`` edges, produce an order in which every unit
comes after all of its transitive dependencies. The walk follows input order,
so the result is stable for a fixed input; it is not a unique ordering between
independent subgraphs.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable

from fluxenv.core.errors import CyclicDependencyError
from fluxenv.models import NamespacedName, ReconciliationUnit


class _Mark(Enum):
    IN_PROGRESS = 1
    DONE = 2


def build_adjacency(
    units: Iterable[ReconciliationUnit],
) -> dict[NamespacedName, list[NamespacedName]]:
    """Map each unit to the units it depends on, preserving input order."""
    adjacency: dict[NamespacedName, list[NamespacedName]] = {}
    for unit in units:
        deps = adjacency.setdefault(unit.identity, [])
        deps.extend(unit.depends_on)
    return adjacency


def dedupe(items: Iterable[NamespacedName]) -> list[NamespacedName]:
    """Remove duplicates, keeping first-seen order."""
    return list(dict.fromkeys(items))


def order_units(units: Iterable[ReconciliationUnit]) -> list[NamespacedName]:
    """
    Order units so dependencies precede their dependents.

    Args:
        units: Units as read from the cluster

    Returns:
        Identities in reconciliation order, each appearing once

    Raises:
        CyclicDependencyError: If the dependency graph contains a cycle
    """
    adjacency = build_adjacency(units)
    marks: dict[NamespacedName, _Mark] = {}
    order: list[NamespacedName] = []

    # pending[i] holds the unvisited dependencies of path[i]
    for root in adjacency:
        if root in marks:
            continue
        marks[root] = _Mark.IN_PROGRESS
        path = [root]
        pending = [iter(adjacency[root])]

        while pending:
            dep = next(pending[-1], None)
            if dep is None:
                pending.pop()
                node = path.pop()
                marks[node] = _Mark.DONE
                order.append(node)
                continue

            mark = marks.get(dep)
            if mark is _Mark.DONE:
                continue
            if mark is _Mark.IN_PROGRESS:
                start = path.index(dep)
                raise CyclicDependencyError(path[start:] + [dep])

            marks[dep] = _Mark.IN_PROGRESS
            path.append(dep)
            pending.append(iter(adjacency.get(dep, ())))

    return dedupe(order)
