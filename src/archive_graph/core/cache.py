"""
On-disk cache of decoded index files.

Layout::

    cache_dir/
    └── unstable/
        └── main/
            └── amd64/
                ├── 3f2a9c0d1b7e4a55.decoded   # decoded Packages text
                └── 3f2a9c0d1b7e4a55.stamp     # Last-Modified HTTP date

The file name is derived from the remote Last-Modified value, so a changed
upstream file never overwrites an entry another reader may still be using.
Entries are published with an atomic rename; a failed or cancelled write
leaves nothing behind.
"""

from __future__ import annotations

import datetime
import hashlib
import logging
import os
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path

import aiofiles
from dateutil.parser import parse as parse_date

logger = logging.getLogger(__name__)

DECODED_SUFFIX = ".decoded"
STAMP_SUFFIX = ".stamp"
TEMP_MARKER = ".tmp-"


def try_parse_date(date_str: str | None) -> datetime.datetime | None:
    """Parse an HTTP date, returning None if it is missing or unparsable."""
    try:
        return parse_date(date_str) if date_str else None
    except (ValueError, OverflowError) as e:
        logger.debug(f"Failed to parse date '{date_str}': {e}")
        return None


@dataclass(frozen=True)
class CacheKey:
    suite: str
    component: str
    architecture: str
    last_modified: str

    @property
    def digest(self) -> str:
        return hashlib.sha256(self.last_modified.encode()).hexdigest()[:16]


@dataclass(frozen=True)
class CacheEntry:
    key: CacheKey
    path: Path


class CacheStore:
    """Filesystem cache keyed by (suite, component, architecture, last-modified)."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def directory(self, suite: str, component: str, architecture: str) -> Path:
        return self.root / suite / component / architecture

    def _paths(self, key: CacheKey) -> tuple[Path, Path]:
        base = self.directory(key.suite, key.component, key.architecture)
        return base / f"{key.digest}{DECODED_SUFFIX}", base / f"{key.digest}{STAMP_SUFFIX}"

    def read(self, key: CacheKey) -> Path | None:
        """Return the decoded file for ``key``, or None on a miss."""
        decoded, stamp = self._paths(key)
        try:
            if stamp.read_text(encoding="utf-8").strip() != key.last_modified:
                return None
            if not decoded.is_file():
                return None
            with decoded.open("rb"):
                pass
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"Cache miss for {decoded}: {e}")
            return None
        return decoded

    def latest(self, suite: str, component: str, architecture: str) -> CacheEntry | None:
        """Newest readable entry for the given index, by Last-Modified date."""
        best: tuple[datetime.datetime, CacheEntry] | None = None
        for entry in self._entries(suite, component, architecture):
            when = try_parse_date(entry.key.last_modified)
            if when is None:
                continue
            if best is None or when > best[0]:
                best = (when, entry)
        return best[1] if best else None

    def _entries(self, suite: str, component: str, architecture: str) -> list[CacheEntry]:
        base = self.directory(suite, component, architecture)
        if not base.is_dir():
            return []
        entries = []
        for stamp in base.glob(f"*{STAMP_SUFFIX}"):
            try:
                last_modified = stamp.read_text(encoding="utf-8").strip()
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Unreadable cache stamp {stamp}: {e}")
                continue
            key = CacheKey(suite, component, architecture, last_modified)
            path = self.read(key)
            if path is not None:
                entries.append(CacheEntry(key, path))
        return entries

    async def write(self, key: CacheKey, chunks: AsyncIterator[bytes]) -> Path:
        """Stream ``chunks`` into the cache entry for ``key`` and publish it."""
        decoded, stamp = self._paths(key)
        decoded.parent.mkdir(parents=True, exist_ok=True)
        token = uuid.uuid4().hex[:8]
        tmp_decoded = decoded.with_name(f"{decoded.name}{TEMP_MARKER}{token}")
        tmp_stamp = stamp.with_name(f"{stamp.name}{TEMP_MARKER}{token}")

        try:
            async with aiofiles.open(tmp_decoded, "wb") as f:
                async for chunk in chunks:
                    await f.write(chunk)
            async with aiofiles.open(tmp_stamp, "w", encoding="utf-8") as f:
                await f.write(key.last_modified)
            os.replace(tmp_decoded, decoded)
            os.replace(tmp_stamp, stamp)
        except BaseException:
            for tmp in (tmp_decoded, tmp_stamp):
                tmp.unlink(missing_ok=True)
            raise

        logger.debug(f"Cached {decoded}")
        return decoded

    def clean(self) -> int:
        """
        Remove leftover temp files, half-written entries and entries
        superseded by a newer Last-Modified date. Returns the number of
        files removed.
        """
        if not self.root.is_dir():
            return 0

        removed = 0
        directories = {path.parent for path in self.root.rglob(f"*{DECODED_SUFFIX}*")}
        directories |= {path.parent for path in self.root.rglob(f"*{STAMP_SUFFIX}*")}
        for base in sorted(directories):
            keep: set[str] = set()
            try:
                suite, component, architecture = base.relative_to(self.root).parts
            except ValueError:
                logger.warning(f"Unexpected cache directory {base}")
                continue
            latest = self.latest(suite, component, architecture)
            if latest is not None:
                keep = {latest.key.digest}

            for path in base.iterdir():
                if not path.is_file():
                    continue
                digest = path.name.split(".", 1)[0]
                if TEMP_MARKER in path.name or digest not in keep:
                    path.unlink(missing_ok=True)
                    logger.info(f"Removed stale cache file: {path}")
                    removed += 1

        logger.info(f"Cache cleanup complete. Removed {removed} files.")
        return removed
