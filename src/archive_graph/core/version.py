"""
Debian package versions.

A version is ``[epoch:]upstream_version[-debian_revision]``. Ordering follows
dpkg's comparison algorithm (delegated to python-debian), so ``1.10 > 1.9``,
``1.0~rc1 < 1.0`` and any epoch outweighs the rest of the string.
"""

from __future__ import annotations

import functools
import re

from debian.debian_support import version_compare

from archive_graph.core.errors import VersionError
from archive_graph.core.intern import InternTable

_UPSTREAM_RE = re.compile(r"^[A-Za-z0-9.+~-]+$")
_REVISION_RE = re.compile(r"^[A-Za-z0-9.+~]+$")
_DIGITS_RE = re.compile(r"\d+")


def _non_digits(part: str) -> str:
    # Versions that compare equal share their non-digit runs exactly
    return _DIGITS_RE.sub("", part)


@functools.total_ordering
class PackageVersion:
    """A parsed Debian version with dpkg ordering semantics."""

    __slots__ = ("epoch", "upstream_version", "debian_revision", "text")

    def __init__(
        self,
        epoch: int | None,
        upstream_version: str,
        debian_revision: str | None = None,
        text: str | None = None,
    ):
        if epoch is not None and epoch < 0:
            raise VersionError("invalid epoch")
        if not upstream_version or not _UPSTREAM_RE.match(upstream_version):
            raise VersionError(f"invalid upstream version {upstream_version!r}")
        if debian_revision is not None and not _REVISION_RE.match(debian_revision):
            raise VersionError(f"invalid Debian revision {debian_revision!r}")

        self.epoch = epoch
        self.upstream_version = upstream_version
        self.debian_revision = debian_revision
        self.text = text if text is not None else self._format()

    @classmethod
    def parse(cls, value: str, interner: InternTable | None = None) -> "PackageVersion":
        """Parse a version string, raising VersionError if it is malformed."""
        text = value.strip()
        rest = text
        epoch = None
        if ":" in rest:
            epoch_str, rest = rest.split(":", 1)
            if not epoch_str.isdigit():
                raise VersionError(f"invalid epoch in {value!r}")
            epoch = int(epoch_str)

        revision = None
        if "-" in rest:
            rest, revision = rest.rsplit("-", 1)

        if interner is not None:
            text = interner.intern(text)
        return cls(epoch, rest, revision, text=text)

    def _format(self) -> str:
        result = self.upstream_version
        if self.epoch is not None:
            result = f"{self.epoch}:{result}"
        if self.debian_revision is not None:
            result = f"{result}-{self.debian_revision}"
        return result

    @property
    def is_native(self) -> bool:
        """True when there is no Debian revision."""
        return self.debian_revision is None

    @property
    def has_epoch(self) -> bool:
        return self.epoch is not None

    def epoch_or_0(self) -> int:
        return self.epoch or 0

    def compare(self, other: "PackageVersion") -> int:
        if self.text is other.text:
            return 0
        return version_compare(self.text, other.text)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PackageVersion):
            return NotImplemented
        return self.compare(other) == 0

    def __lt__(self, other: "PackageVersion") -> bool:
        if not isinstance(other, PackageVersion):
            return NotImplemented
        return self.compare(other) < 0

    def __hash__(self) -> int:
        return hash(
            (
                self.epoch_or_0(),
                _non_digits(self.upstream_version),
                _non_digits(self.debian_revision or ""),
            )
        )

    def __str__(self) -> str:
        return self.text

    def __repr__(self) -> str:
        return f"PackageVersion({self.text!r})"
