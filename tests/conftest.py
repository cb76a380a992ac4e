"""Shared fixtures: sample index text and a fake Debian mirror served through httpx.MockTransport."""

import gzip
import lzma

import httpx
import pytest

from archive_graph.core.intern import InternTable
from archive_graph.core.transport import ExponentialBackoff, HttpxTransport

MIRROR = "https://mirror.test/debian"
LAST_MODIFIED = "Sat, 17 Oct 2026 08:12:44 GMT"

PACKAGES_AMD64 = """\
Package: foo
Version: 1.0
Architecture: amd64
Depends: bar (>= 2.0)

Package: bar
Version: 2.1
Architecture: amd64
Multi-Arch: same
Source: bar-src (2.1-1)

Package: baz
Version: 3.0-1
Architecture: amd64
Depends: foo | bar, libdoesnotexist1

Package: noversion
Architecture: amd64
"""

PACKAGES_ARM64 = """\
Package: foo
Version: 1.0
Architecture: arm64
Depends: bar (>= 2.0)

Package: bar
Version: 2.1
Architecture: arm64
Multi-Arch: same
Source: bar-src (2.1-1)
"""


def compress(data: bytes, compression: str) -> bytes:
    if compression == "gz":
        return gzip.compress(data)
    if compression == "xz":
        return lzma.compress(data, format=lzma.FORMAT_XZ)
    return data


class FakeMirror:
    """In-memory mirror that honours If-Modified-Since."""

    def __init__(self, base: str = MIRROR):
        self.base = base
        self.prefix = httpx.URL(base).path.rstrip("/")
        self.files: dict[str, tuple[bytes, str | None, dict]] = {}
        self.statuses: dict[str, int] = {}
        self.requests: list[httpx.Request] = []

    def add(self, path: str, body: bytes, last_modified: str | None = LAST_MODIFIED, headers=None):
        self.files[f"{self.prefix}/{path}"] = (body, last_modified, dict(headers or {}))

    def add_packages(self, arch: str, text: str, compression: str = "xz", suite="unstable", component="main", **kwargs):
        suffix = "" if compression == "raw" else f".{compression}"
        path = f"dists/{suite}/{component}/binary-{arch}/Packages{suffix}"
        self.add(path, compress(text.encode(), compression), **kwargs)

    def add_sources(self, text: str, compression: str = "xz", suite="unstable", component="main"):
        suffix = "" if compression == "raw" else f".{compression}"
        self.add(f"dists/{suite}/{component}/source/Sources{suffix}", compress(text.encode(), compression))

    def fail(self, path: str, status: int):
        self.statuses[f"{self.prefix}/{path}"] = status

    def requests_for(self, path: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.path == f"{self.prefix}/{path}"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path in self.statuses:
            return httpx.Response(self.statuses[path])
        if path not in self.files:
            return httpx.Response(404)
        body, last_modified, headers = self.files[path]
        if last_modified and request.headers.get("if-modified-since") == last_modified:
            return httpx.Response(304)
        if last_modified:
            headers = {**headers, "Last-Modified": last_modified}
        return httpx.Response(200, content=body, headers=headers)

    def transport(self) -> HttpxTransport:
        client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        return HttpxTransport(client=client, backoff=ExponentialBackoff(base_delay=0, max_delay=0, max_retries=0))


@pytest.fixture
def interner():
    return InternTable()


@pytest.fixture
def mirror():
    return FakeMirror()
