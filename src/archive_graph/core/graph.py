"""
Dependency Graph Builder.

Nodes live in an arena (a tuple of PackageRecords, the position is the node
id) and edges refer to nodes by id, so dependency cycles need no special
handling. A graph is built once from a consistent snapshot and never
modified afterwards.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass

from archive_graph.core.errors import UnresolvedDependency
from archive_graph.models.package import (
    PSEUDO_ARCHITECTURES,
    SOURCE_ARCHITECTURE,
    DependencyAlternative,
    DependencyGroup,
    PackageRecord,
    RelationKind,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Edge:
    """Directed edge from a dependent node to the node satisfying one group."""

    source: int
    target: int
    kind: RelationKind
    group: DependencyGroup
    alternative: DependencyAlternative

    @property
    def label(self) -> str:
        return self.kind.edge_label


class DependencyGraph:
    """Immutable multi-architecture dependency graph."""

    def __init__(
        self,
        nodes: Iterable[PackageRecord],
        edges: Iterable[Edge],
        target_architectures: frozenset[str],
        unresolved: Iterable[UnresolvedDependency] = (),
        superseded: Iterable[PackageRecord] = (),
    ):
        self.nodes: tuple[PackageRecord, ...] = tuple(nodes)
        self.edges: tuple[Edge, ...] = tuple(edges)
        self.target_architectures = frozenset(target_architectures)
        self.unresolved: tuple[UnresolvedDependency, ...] = tuple(unresolved)
        self.superseded: tuple[PackageRecord, ...] = tuple(superseded)

        self._index = {record.key: node for node, record in enumerate(self.nodes)}
        by_name: dict[str, list[int]] = defaultdict(list)
        for node, record in enumerate(self.nodes):
            by_name[record.name].append(node)
        self._by_name = {name: tuple(ids) for name, ids in by_name.items()}

        outgoing: list[list[int]] = [[] for _ in self.nodes]
        incoming: list[list[int]] = [[] for _ in self.nodes]
        for edge_id, edge in enumerate(self.edges):
            outgoing[edge.source].append(edge_id)
            incoming[edge.target].append(edge_id)
        self._outgoing = tuple(tuple(ids) for ids in outgoing)
        self._incoming = tuple(tuple(ids) for ids in incoming)

    def __len__(self) -> int:
        return len(self.nodes)

    def __repr__(self) -> str:
        return f"DependencyGraph(nodes={len(self.nodes)}, edges={len(self.edges)})"

    def record(self, node: int) -> PackageRecord:
        return self.nodes[node]

    def node_id(self, name: str, architecture: str) -> int | None:
        return self._index.get((name, architecture))

    def ids_for(self, name: str) -> tuple[int, ...]:
        """All node ids carrying ``name``, across architectures."""
        return self._by_name.get(name, ())

    def outgoing(self, node: int) -> tuple[Edge, ...]:
        return tuple(self.edges[i] for i in self._outgoing[node])

    def incoming(self, node: int) -> tuple[Edge, ...]:
        return tuple(self.edges[i] for i in self._incoming[node])

    def describe(self, node: int) -> str:
        record = self.nodes[node]
        return f"{record.name}:{record.architecture}"


class _CandidateArchitectures:
    """Candidate architectures for an alternative, cached per dependent arch."""

    def __init__(self, targets: frozenset[str]):
        self.targets = targets
        self.ordered = tuple(sorted(targets))
        self._cache: dict[tuple, tuple[str, ...]] = {}

    def __call__(self, dependent_arch: str, alt: DependencyAlternative) -> tuple[str, ...]:
        key = (dependent_arch, alt.arch_qualifier, alt.arch_restrictions)
        cached = self._cache.get(key)
        if cached is None:
            cached = self._cache[key] = self._compute(dependent_arch, alt)
        return cached

    def _compute(self, own: str, alt: DependencyAlternative) -> tuple[str, ...]:
        qualifier = alt.arch_qualifier
        if qualifier and qualifier not in ("any", "native"):
            return (qualifier,)

        if qualifier == "native" and own in self.targets:
            archs = [own, "all"]
        else:
            archs = [own] if own in self.targets else []
            archs.append("all")
            archs.extend(arch for arch in self.ordered if arch != own)

        if alt.arch_restrictions:
            negated = alt.arch_restrictions[0].startswith("!")
            patterns = [arch.lstrip("!") for arch in alt.arch_restrictions]
            archs = [
                arch
                for arch in archs
                if arch == "all" or any(arch_matches(arch, pattern) for pattern in patterns) != negated
            ]
        return tuple(archs)


def _os_cpu(arch: str) -> tuple[str, str]:
    os_name, sep, cpu = arch.partition("-")
    # bare names such as amd64 are linux-amd64
    return (os_name, cpu) if sep else ("linux", arch)


def arch_matches(arch: str, pattern: str) -> bool:
    """
    Match a concrete architecture against a dpkg architecture wildcard.

    ``any`` matches everything, ``<os>-any`` and ``any-<cpu>`` match on one
    part of the os-cpu pair, anything else must name the same pair.
    """
    if pattern in ("any", arch):
        return True
    arch_os, arch_cpu = _os_cpu(arch)
    pattern_os, pattern_cpu = _os_cpu(pattern)
    return pattern_os in ("any", arch_os) and pattern_cpu in ("any", arch_cpu)


def build_graph(records: Iterable[PackageRecord], target_architectures: Iterable[str]) -> DependencyGraph:
    """
    Build a dependency graph from the records of one snapshot.

    Args:
        records: Binary (and optionally source) package records.
        target_architectures: Concrete host architectures to resolve against.
            Pseudo-architectures are ignored.

    Returns:
        A DependencyGraph with one node per (name, architecture), holding the
        highest version seen, and one edge per resolved dependency group.
    """
    targets = frozenset(
        arch for arch in target_architectures if arch not in PSEUDO_ARCHITECTURES and arch != SOURCE_ARCHITECTURE
    )
    node_archs = targets | {"all", SOURCE_ARCHITECTURE}

    # --- 1. Keep the newest version per (name, architecture) ---
    best: dict[tuple[str, str], PackageRecord] = {}
    superseded: list[PackageRecord] = []
    skipped = 0
    for record in records:
        if record.architecture not in node_archs:
            skipped += 1
            continue
        current = best.get(record.key)
        if current is None:
            best[record.key] = record
        elif record.version > current.version:
            superseded.append(current)
            best[record.key] = record
        elif record.version < current.version:
            superseded.append(record)

    if skipped:
        logger.debug(f"Ignored {skipped} records outside the target architectures")
    for record in superseded:
        logger.debug(f"Superseded: {record} (newer version kept)")

    nodes = list(best.values())
    index = {record.key: node for node, record in enumerate(nodes)}
    candidates = _CandidateArchitectures(targets)

    # --- 2 & 3. Resolve each group to its first matching alternative ---
    edges: list[Edge] = []
    unresolved: list[UnresolvedDependency] = []
    for node, record in enumerate(nodes):
        for group in record.relations:
            edge = _resolve_group(node, record, group, index, nodes, candidates)
            if edge is not None:
                edges.append(edge)
            else:
                logger.debug(f"Unresolved {group.kind.field_name} of {record}: {group}")
                unresolved.append(
                    UnresolvedDependency(
                        node=node,
                        package=record.name,
                        architecture=record.architecture,
                        relation=group.kind.value,
                        raw=group.raw or str(group),
                    )
                )

    logger.info(
        f"Built graph: {len(nodes)} nodes, {len(edges)} edges, "
        f"{len(unresolved)} unresolved groups, {len(superseded)} superseded records"
    )
    return DependencyGraph(nodes, edges, targets, unresolved, superseded)


def _resolve_group(node, record, group, index, nodes, candidates) -> Edge | None:
    for alt in group.alternatives:
        for arch in candidates(record.architecture, alt):
            target = index.get((alt.name, arch))
            if target is None:
                continue
            if alt.constraint is not None and not alt.constraint.satisfied_by(nodes[target].version):
                continue
            return Edge(node, target, group.kind, group, alt)
    return None
