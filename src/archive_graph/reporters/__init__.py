"""Report backends for analysis results."""

from pathlib import Path

from archive_graph.reporters.base import (
    REPORT_KINDS,
    Reporter,
    ReportRecord,
    binnmu_records,
    blocker_records,
    report_records,
)
from archive_graph.reporters.jsonl import JSONLinesReporter
from archive_graph.reporters.text import TextReporter


def get_reporter(format_name: str, output: str | Path | None = None) -> Reporter:
    """Factory function to create a reporter by format name."""
    out = Path(output) if output else None
    match format_name:
        case "text":
            return TextReporter(output=out)
        case "jsonl":
            return JSONLinesReporter(output=out)
        case _:
            raise ValueError(f"Unknown report format: {format_name!r}. Use 'text' or 'jsonl'.")


async def emit(reporter: Reporter, records) -> int:
    """Feed every row to ``reporter`` and finalize it. Returns the row count."""
    count = 0
    for record in records:
        await reporter.export(record)
        count += 1
    await reporter.finalize()
    return count


__all__ = [
    "REPORT_KINDS",
    "Reporter",
    "ReportRecord",
    "TextReporter",
    "JSONLinesReporter",
    "binnmu_records",
    "blocker_records",
    "emit",
    "get_reporter",
    "report_records",
]
