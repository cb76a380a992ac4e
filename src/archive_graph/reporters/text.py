"""
Text Reporter — human-readable tables rendered with rich.

Rows are collected per kind and printed as one section each in
``finalize``, so the coverage section always heads the output.
"""

import logging
from collections import defaultdict
from pathlib import Path

from rich.console import Console
from rich.table import Table

from archive_graph.reporters.base import REPORT_KINDS, ReportRecord

logger = logging.getLogger(__name__)

_TITLES = {
    "coverage": "Index coverage",
    "closure": "Reverse-dependency closure",
    "rebuild": "Rebuild order",
    "cycle": "Dependency cycles",
    "unresolved": "Unresolved dependencies",
    "record-error": "Rejected records",
    "binnmu": "binNMUs",
    "blocker": "Migration blockers",
}


class TextReporter:
    """Renders report rows as rich tables on a console or into a file."""

    def __init__(self, output: Path | None = None, console: Console | None = None):
        self.output = output
        self.console = console
        self.rows: dict[str, list[ReportRecord]] = defaultdict(list)
        self.count = 0

    async def export(self, record: ReportRecord) -> None:
        self.rows[record.kind].append(record)
        self.count += 1

    async def finalize(self) -> None:
        if self.output is not None:
            self.output.parent.mkdir(parents=True, exist_ok=True)
            with open(self.output, "w", encoding="utf-8") as handle:
                self._render(Console(file=handle, width=120, no_color=True))
        else:
            self._render(self.console or Console())
        logger.info(f"[TEXT] Report complete: {self.count} rows")

    def _render(self, console: Console) -> None:
        for kind in REPORT_KINDS:
            rows = self.rows.get(kind)
            if kind == "coverage":
                if rows:
                    self._render_coverage(console, rows)
            elif kind == "binnmu" and rows:
                # plain lines so they can be pasted into wanna-build
                for row in rows:
                    console.print(row.detail["command"], markup=False, highlight=False)
            elif rows:
                console.print(self._table(kind, rows))

    def _render_coverage(self, console: Console, rows: list[ReportRecord]) -> None:
        table = Table(title=_TITLES["coverage"])
        for column in ("Component", "Architecture", "Status", "Records", "Note"):
            table.add_column(column)
        summary = {}
        for row in rows:
            if row.architecture is None:
                summary = row.detail
                continue
            status = row.detail.get("status", "")
            style = "green" if status == "ok" else "red"
            note = row.detail.get("error") or ("cached" if row.detail.get("from_cache") else "")
            table.add_row(
                row.detail.get("component", ""),
                row.architecture,
                f"[{style}]{status}[/{style}]",
                str(row.detail.get("records", 0)),
                note,
            )
        console.print(table)
        contributing = ", ".join(summary.get("contributing_architectures", [])) or "none"
        missing = ", ".join(summary.get("missing_architectures", [])) or "none"
        console.print(f"Contributing architectures: {contributing}")
        console.print(f"Missing architectures: {missing}")

    def _table(self, kind: str, rows: list[ReportRecord]) -> Table:
        table = Table(title=f"{_TITLES[kind]} ({len(rows)})")
        match kind:
            case "closure":
                for column in ("Package", "Architecture", "Version", "Seed"):
                    table.add_column(column)
                for row in rows:
                    table.add_row(row.package, row.architecture, row.version, "*" if row.detail.get("seed") else "")
            case "rebuild":
                for column in ("Step", "Package", "Architecture", "Version"):
                    table.add_column(column)
                for row in rows:
                    table.add_row(str(row.detail["step"]), row.package, row.architecture, row.version)
            case "cycle":
                table.add_column("Members")
                for row in rows:
                    table.add_row(" -> ".join(row.detail["members"]))
            case "blocker":
                for column in ("Item", "Version", "Blocked by", "Maintainer"):
                    table.add_column(column)
                for row in rows:
                    table.add_row(
                        row.detail["item"],
                        row.version,
                        ", ".join(row.detail["blocked_by"]),
                        row.detail.get("maintainer", ""),
                    )
            case "unresolved":
                for column in ("Package", "Architecture", "Relation", "Dependency"):
                    table.add_column(column)
                for row in rows:
                    table.add_row(
                        row.package or "",
                        row.architecture or "",
                        row.detail.get("relation", ""),
                        row.detail.get("raw") or row.detail.get("reason", ""),
                    )
            case _:
                for column in ("Package", "Kind", "Message"):
                    table.add_column(column)
                for row in rows:
                    table.add_row(row.package or "?", row.detail.get("kind", ""), row.detail.get("message", ""))
        return table
