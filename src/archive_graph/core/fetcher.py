"""
Index Fetcher/Decoder.

Downloads Packages and Sources indices from a Debian mirror, decompresses
them while streaming and stores the decoded text in the CacheStore. A
conditional request is sent whenever a cached copy exists, so unchanged
indices are never downloaded twice.
"""

from __future__ import annotations

import datetime
import logging
import lzma
import zlib
from collections.abc import AsyncIterator, Iterator
from dataclasses import dataclass
from email.utils import format_datetime
from enum import Enum
from pathlib import Path
from urllib.parse import urlparse

from archive_graph.core.cache import CacheKey, CacheStore
from archive_graph.core.errors import DecodeError, FetchError
from archive_graph.core.transport import Transport
from archive_graph.models.package import SOURCE_ARCHITECTURE

logger = logging.getLogger(__name__)


class Compression(Enum):
    """Compression of a remote index file."""

    XZ = "xz"
    GZIP = "gz"
    RAW = "raw"

    @property
    def suffix(self) -> str:
        return "" if self is Compression.RAW else f".{self.value}"

    @classmethod
    def parse(cls, name: str) -> "Compression":
        aliases = {"xz": cls.XZ, "lzma": cls.XZ, "gz": cls.GZIP, "gzip": cls.GZIP, "raw": cls.RAW, "none": cls.RAW}
        try:
            return aliases[name.strip().lower()]
        except KeyError:
            raise ValueError(f"Unknown compression: {name!r}. Use 'xz', 'gz' or 'raw'.") from None

    @classmethod
    def from_path(cls, path: str) -> "Compression":
        """Pick the compression from a URL or file name extension."""
        name = urlparse(path).path
        if name.endswith(".xz"):
            return cls.XZ
        if name.endswith(".gz"):
            return cls.GZIP
        return cls.RAW

    @classmethod
    def from_headers(cls, headers: dict[str, str], url: str) -> "Compression":
        """Content-Type wins over the file extension when it names a format."""
        content_type = {k.lower(): v for k, v in headers.items()}.get("content-type", "")
        content_type = content_type.split(";")[0].strip().lower()
        if content_type in ("application/x-xz", "application/xz"):
            return cls.XZ
        if content_type in ("application/gzip", "application/x-gzip"):
            return cls.GZIP
        return cls.from_path(url)


DEFAULT_COMPRESSIONS = (Compression.XZ, Compression.GZIP, Compression.RAW)


class StreamDecoder:
    """Incremental decoder for gzip, xz or uncompressed byte streams."""

    def __init__(self, compression: Compression, url: str | None = None):
        self.compression = compression
        self.url = url
        self._decoder = self._new_decoder()

    def _new_decoder(self):
        match self.compression:
            case Compression.GZIP:
                return zlib.decompressobj(wbits=31)
            case Compression.XZ:
                return lzma.LZMADecompressor(format=lzma.FORMAT_XZ)
        return None

    def decode(self, chunk: bytes) -> bytes:
        if self._decoder is None:
            return chunk
        out = []
        try:
            while chunk:
                # concatenated members/streams continue with a fresh decoder
                if self._decoder.eof:
                    self._decoder = self._new_decoder()
                out.append(self._decoder.decompress(chunk))
                chunk = self._decoder.unused_data if self._decoder.eof else b""
        except (zlib.error, lzma.LZMAError, EOFError) as e:
            raise DecodeError(f"Corrupt {self.compression.value} stream: {e}", url=self.url) from e
        return b"".join(out)

    def finish(self) -> bytes:
        if self._decoder is None:
            return b""
        if not self._decoder.eof:
            raise DecodeError(f"Truncated {self.compression.value} stream", url=self.url)
        if self.compression is Compression.GZIP:
            return self._decoder.flush()
        return b""


async def decode_stream(
    chunks: AsyncIterator[bytes], compression: Compression, url: str | None = None
) -> AsyncIterator[bytes]:
    """Decode an async byte stream chunk by chunk."""
    decoder = StreamDecoder(compression, url)
    async for chunk in chunks:
        data = decoder.decode(chunk)
        if data:
            yield data
    tail = decoder.finish()
    if tail:
        yield tail


def iter_lines(path: Path) -> Iterator[str]:
    """Yield text lines of a decoded index file."""
    with open(path, encoding="utf-8", errors="replace") as handle:
        yield from handle


@dataclass(frozen=True)
class FetchResult:
    url: str
    path: Path
    last_modified: str
    from_cache: bool
    compression: Compression = Compression.RAW


class IndexFetcher:
    """
    Fetches and decodes archive index files through a Transport into a
    CacheStore.

    ``downloads`` counts bodies actually retrieved, ``cache_hits`` counts
    requests answered from the cache.
    """

    def __init__(self, transport: Transport, cache: CacheStore, mirror: str):
        self.transport = transport
        self.cache = cache
        self.mirror = mirror.rstrip("/")
        self.downloads = 0
        self.cache_hits = 0

    def index_url(self, suite: str, architecture: str, component: str, compression: Compression) -> str:
        if architecture == SOURCE_ARCHITECTURE:
            rel_path = f"dists/{suite}/{component}/source/Sources{compression.suffix}"
        else:
            rel_path = f"dists/{suite}/{component}/binary-{architecture}/Packages{compression.suffix}"
        return f"{self.mirror}/{rel_path}"

    async def fetch(
        self,
        suite: str,
        architecture: str,
        component: str,
        compression: Compression = Compression.XZ,
    ) -> FetchResult:
        """Fetch one index file in the given compression."""
        url = self.index_url(suite, architecture, component, compression)
        return await self._fetch(url, suite, component, architecture, compression)

    async def fetch_index(
        self,
        suite: str,
        architecture: str,
        component: str,
        compressions=DEFAULT_COMPRESSIONS,
    ) -> FetchResult:
        """Try each compression in turn, moving on when the mirror answers 404."""
        last_error: FetchError | None = None
        for compression in compressions:
            try:
                return await self.fetch(suite, architecture, component, compression)
            except FetchError as e:
                if e.status != 404:
                    raise
                logger.debug(f"{e.url} not found, trying next compression")
                last_error = e
        raise last_error or FetchError(f"No compression to try for {suite}/{component}/{architecture}")

    async def fetch_url(self, url: str, suite: str, component: str, name: str) -> FetchResult:
        """Fetch an arbitrary file, negotiating compression from the response."""
        return await self._fetch(url, suite, component, name, None)

    async def _fetch(
        self,
        url: str,
        suite: str,
        component: str,
        architecture: str,
        compression: Compression | None,
    ) -> FetchResult:
        cached = self.cache.latest(suite, component, architecture)
        headers = {"If-Modified-Since": cached.key.last_modified} if cached else {}

        async with self.transport.fetch(url, headers) as response:
            if response.not_modified:
                if cached is not None and self.cache.read(cached.key) is not None:
                    self.cache_hits += 1
                    logger.debug(f"Not modified, using cache: {url}")
                    return FetchResult(url, cached.path, cached.key.last_modified, True, compression or Compression.RAW)
                logger.warning(f"Got 304 for {url} without a usable cache entry")
            elif response.ok:
                return await self._store(url, suite, component, architecture, compression, response)
            else:
                raise FetchError(f"HTTP {response.status} for {url}", url=url, status=response.status)

        # 304 but the cache vanished: ask again without conditions
        async with self.transport.fetch(url, {}) as response:
            if not response.ok:
                raise FetchError(f"HTTP {response.status} for {url}", url=url, status=response.status)
            return await self._store(url, suite, component, architecture, compression, response)

    async def _store(self, url, suite, component, architecture, compression, response) -> FetchResult:
        kind = compression or Compression.from_headers(response.headers, url)
        last_modified = response.last_modified or format_datetime(
            datetime.datetime.now(datetime.timezone.utc), usegmt=True
        )
        key = CacheKey(suite, component, architecture, last_modified)

        existing = self.cache.read(key)
        if existing is not None:
            self.cache_hits += 1
            logger.debug(f"Server ignored If-Modified-Since, cache still current: {url}")
            return FetchResult(url, existing, last_modified, True, kind)

        try:
            path = await self.cache.write(key, decode_stream(response.chunks, kind, url))
        except OSError as e:
            raise FetchError(f"Cannot write cache entry for {url}: {e}", url=url) from e
        self.downloads += 1
        logger.info(f"Downloaded {url}")
        return FetchResult(url, path, last_modified, False, kind)
