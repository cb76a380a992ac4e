"""
JSON Lines Reporter — one JSON object per report row.
"""

import json
import logging
import sys
from pathlib import Path

import aiofiles

from archive_graph.reporters.base import ReportRecord

logger = logging.getLogger(__name__)


class JSONLinesReporter:
    """
    Writes ReportRecord rows as JSON Lines.

    Rows go to ``output`` when given (opened lazily on the first row),
    otherwise to stdout.
    """

    def __init__(self, output: Path | None = None):
        self.output = output
        self.count = 0
        self._file = None

    async def export(self, record: ReportRecord) -> None:
        line = json.dumps(record.to_dict(), sort_keys=True) + "\n"
        if self.output is None:
            sys.stdout.write(line)
        else:
            if self._file is None:
                self.output.parent.mkdir(parents=True, exist_ok=True)
                self._file = await aiofiles.open(self.output, "w", encoding="utf-8")
            await self._file.write(line)
        self.count += 1

    async def finalize(self) -> None:
        if self._file is not None:
            await self._file.close()
            self._file = None
        elif self.output is not None:
            # nothing exported, still leave an empty file behind
            self.output.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(self.output, "w", encoding="utf-8"):
                pass
        else:
            sys.stdout.flush()
        logger.info(f"[JSONL] Report complete: {self.count} rows written to {self.output or 'stdout'}")
