"""
Reporter Protocol — Base interface for all report backends.

Reporters receive flat ReportRecord rows. ``report_records`` turns an
AnalysisReport into those rows in a fixed order: coverage first, then the
closure, the rebuild order, cycles and diagnostics. binNMU schedules and
migration blockers have their own row builders.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from archive_graph.parsers.excuses import Excuses, migration_blockers

if TYPE_CHECKING:
    from archive_graph.core.analyzer import AnalysisReport, BinNMUSchedule

REPORT_KINDS = ("coverage", "closure", "rebuild", "cycle", "unresolved", "record-error", "binnmu", "blocker")


@dataclass(frozen=True)
class ReportRecord:
    kind: str
    package: str | None = None
    architecture: str | None = None
    version: str | None = None
    detail: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Serialize to a JSON-compatible dictionary, dropping empty fields."""
        data = {"kind": self.kind}
        for name in ("package", "architecture", "version"):
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        if self.detail:
            data["detail"] = self.detail
        return data


@runtime_checkable
class Reporter(Protocol):
    """Protocol that all reporters must implement."""

    async def export(self, record: ReportRecord) -> None:
        """Emit a single report row."""
        ...

    async def finalize(self) -> None:
        """Called after all rows have been emitted. Use for cleanup."""
        ...


def _coverage_records(snapshot) -> Iterator[ReportRecord]:
    for row in snapshot.coverage:
        detail = {"component": row.component, "status": row.status, "records": row.records}
        if row.url:
            detail["url"] = row.url
        if row.from_cache:
            detail["from_cache"] = True
        if row.error:
            detail["error"] = row.error
        yield ReportRecord("coverage", architecture=row.architecture, detail=detail)
    yield ReportRecord(
        "coverage",
        detail={
            "contributing_architectures": snapshot.contributing_architectures,
            "missing_architectures": snapshot.missing_architectures,
        },
    )


def report_records(report: AnalysisReport) -> Iterator[ReportRecord]:
    """Flatten an analysis report into reporter rows."""
    graph = report.graph

    def row(kind: str, node: int, **detail) -> ReportRecord:
        record = graph.record(node)
        return ReportRecord(kind, record.name, record.architecture, str(record.version), detail)

    yield from _coverage_records(report.snapshot)

    seeds = set(report.seeds)
    for node in sorted(report.closure, key=graph.describe):
        yield row("closure", node, seed=node in seeds)

    for position, step in enumerate(report.rebuild.steps):
        for node in step:
            yield row("rebuild", node, step=position)

    for cycle in report.rebuild.cycles:
        yield ReportRecord("cycle", detail={"members": [graph.describe(node) for node in cycle.nodes]})

    for missing in report.missing_seeds:
        yield ReportRecord("unresolved", package=missing, detail={"reason": "seed not found"})
    for dep in graph.unresolved:
        yield ReportRecord(
            "unresolved",
            dep.package,
            dep.architecture,
            detail={"relation": dep.relation, "raw": dep.raw},
        )

    for error in report.snapshot.record_errors:
        yield ReportRecord(
            "record-error",
            error.package,
            detail={"kind": error.kind.value, "field": error.field, "message": str(error)},
        )


def binnmu_records(schedule: BinNMUSchedule) -> Iterator[ReportRecord]:
    """Rows for a binNMU schedule, coverage first."""
    yield from _coverage_records(schedule.snapshot)
    for request, line in zip(schedule.requests, schedule.lines):
        yield ReportRecord(
            "binnmu",
            request.source,
            version=request.version,
            detail={"architectures": list(request.architectures), "command": line},
        )


def blocker_records(excuses: Excuses) -> Iterator[ReportRecord]:
    """Rows for excuses items held back by other items."""
    blockers = migration_blockers(excuses)
    for item in excuses.sources:
        if item.item_name not in blockers:
            continue
        detail = {"item": item.item_name, "blocked_by": blockers[item.item_name], "candidate": item.is_candidate}
        if item.maintainer:
            detail["maintainer"] = item.maintainer
        if item.excuses:
            detail["excuses"] = item.excuses
        yield ReportRecord("blocker", item.source, version=item.new_version, detail=detail)
