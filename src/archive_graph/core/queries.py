"""
Graph Query Engine.

Both queries only touch the part of the graph reachable backwards from the
seeds, so their cost follows the size of the answer rather than the size of
the archive.
"""

import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass

from archive_graph.core.errors import CycleDetected
from archive_graph.core.graph import DependencyGraph
from archive_graph.models.package import RelationKind

logger = logging.getLogger(__name__)


def _check_nodes(graph: DependencyGraph, nodes: Iterable[int]) -> list[int]:
    checked = []
    for node in nodes:
        if not 0 <= node < len(graph):
            raise ValueError(f"Unknown node id: {node}")
        checked.append(node)
    return checked


def _walk_dependents(graph: DependencyGraph, seeds: list[int], kinds) -> list[int]:
    """Breadth-first walk over incoming edges; returns nodes in visit order."""
    seen = set(seeds)
    order = list(dict.fromkeys(seeds))
    queue = deque(order)
    while queue:
        node = queue.popleft()
        for edge in graph.incoming(node):
            if kinds is not None and edge.kind not in kinds:
                continue
            if edge.source not in seen:
                seen.add(edge.source)
                order.append(edge.source)
                queue.append(edge.source)
    return order


def reverse_closure(
    graph: DependencyGraph,
    seeds: Iterable[int],
    kinds: Iterable[RelationKind] | None = None,
) -> frozenset[int]:
    """
    Every node that transitively depends on any seed, plus the seeds.

    Args:
        graph: The dependency graph.
        seeds: Node ids whose dependents are wanted.
        kinds: Relation kinds to follow; None follows every edge.
    """
    kinds = frozenset(kinds) if kinds is not None else None
    return frozenset(_walk_dependents(graph, _check_nodes(graph, seeds), kinds))


@dataclass(frozen=True)
class RebuildSet:
    """
    Ordered rebuild plan.

    ``steps`` lists groups of node ids, dependencies before dependents. A
    single-node step is an ordinary package; a larger step is a cycle whose
    members have no meaningful order among themselves.
    """

    steps: tuple[tuple[int, ...], ...]
    cycles: tuple[CycleDetected, ...] = ()

    @property
    def order(self) -> tuple[int, ...]:
        return tuple(node for step in self.steps for node in step)

    def __len__(self) -> int:
        return sum(len(step) for step in self.steps)

    def __contains__(self, node: object) -> bool:
        return any(node in step for step in self.steps)


def rebuild_set(
    graph: DependencyGraph,
    changed: Iterable[int],
    kinds: Iterable[RelationKind],
    include_changed: bool = True,
) -> RebuildSet:
    """
    Compute what needs rebuilding after ``changed`` nodes change ABI.

    The dependents reachable via ``kinds`` are ordered topologically with
    dependencies first. Strongly connected groups are emitted as one step
    each and reported as CycleDetected diagnostics.
    """
    kinds = frozenset(kinds)
    changed_ids = _check_nodes(graph, changed)
    visited = _walk_dependents(graph, changed_ids, kinds)
    members = set(visited)

    def successors(node: int) -> list[int]:
        return [
            edge.target
            for edge in graph.outgoing(node)
            if edge.kind in kinds and edge.target in members
        ]

    steps: list[tuple[int, ...]] = []
    cycles: list[CycleDetected] = []
    for component in _strongly_connected(visited, successors):
        group = tuple(sorted(component))
        is_cycle = len(group) > 1 or group[0] in successors(group[0])
        if is_cycle:
            cycle = CycleDetected(group, tuple(graph.describe(node) for node in group))
            logger.info(f"CycleDetected: {cycle}")
            cycles.append(cycle)
        if not include_changed:
            group = tuple(node for node in group if node not in changed_ids)
            if not group:
                continue
        steps.append(group)

    return RebuildSet(tuple(steps), tuple(cycles))


def _strongly_connected(nodes: list[int], successors) -> list[list[int]]:
    """Iterative Tarjan; components come out dependencies-first."""
    index_of: dict[int, int] = {}
    low: dict[int, int] = {}
    stack: list[int] = []
    on_stack: set[int] = set()
    components: list[list[int]] = []
    counter = 0

    for root in nodes:
        if root in index_of:
            continue
        index_of[root] = low[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)
        work = [(root, iter(successors(root)))]

        while work:
            node, pending = work[-1]
            descended = False
            for succ in pending:
                if succ not in index_of:
                    index_of[succ] = low[succ] = counter
                    counter += 1
                    stack.append(succ)
                    on_stack.add(succ)
                    work.append((succ, iter(successors(succ))))
                    descended = True
                    break
                if succ in on_stack:
                    low[node] = min(low[node], index_of[succ])
            if descended:
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                low[parent] = min(low[parent], low[node])

            if low[node] == index_of[node]:
                component = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node:
                        break
                components.append(component)

    return components


def resolve_seeds(
    graph: DependencyGraph,
    names: Iterable[str],
    architectures: Iterable[str] | None = None,
) -> tuple[list[int], list[str]]:
    """
    Map package names to node ids.

    Args:
        graph: The dependency graph.
        names: Package names, optionally ``name:arch``.
        architectures: Restrict unqualified names to these architectures.

    Returns:
        Tuple of (node ids, names that matched nothing).
    """
    allowed = frozenset(architectures) | {"all"} if architectures is not None else None
    ids: list[int] = []
    seen: set[int] = set()
    missing: list[str] = []
    for name in names:
        base, _, arch = name.partition(":")
        if arch:
            node = graph.node_id(base, arch)
            matches = [node] if node is not None else []
        else:
            matches = [
                node
                for node in graph.ids_for(base)
                if allowed is None or graph.record(node).architecture in allowed
            ]
        if not matches:
            missing.append(name)
        for node in matches:
            if node not in seen:
                seen.add(node)
                ids.append(node)
    return ids, missing
