"""
Error taxonomy for archive ingestion and graph analysis.

Exceptions cover conditions that abort a unit of work (a run, an index file,
a single record). Informational findings that never abort anything
(unresolved dependencies, dependency cycles) are plain dataclasses collected
into results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ArchiveGraphError(Exception):
    """Base class for all archive-graph errors."""

    retryable = False


class FetchError(ArchiveGraphError):
    """Network failure or unexpected HTTP status while fetching an index."""

    retryable = True

    def __init__(self, message: str, url: str | None = None, status: int | None = None):
        super().__init__(message)
        self.url = url
        self.status = status


class DecodeError(ArchiveGraphError):
    """Corrupt or truncated compressed stream. Signals a broken upstream file."""

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message)
        self.url = url


class ParseError(ArchiveGraphError):
    """Malformed line in RFC822-style stanza text."""

    def __init__(self, message: str, line_number: int | None = None, line: str | None = None):
        super().__init__(message)
        self.line_number = line_number
        self.line = line

    def __str__(self) -> str:
        base = super().__str__()
        if self.line_number is not None:
            return f"line {self.line_number}: {base}"
        return base


class VersionError(ValueError):
    """Invalid Debian version string."""


class RecordErrorKind(Enum):
    MISSING_FIELD = "missing-field"
    INVALID_VERSION = "invalid-version"
    INVALID_RELATION = "invalid-relation"
    UNSATISFIABLE_GROUP = "unsatisfiable-group"


class RecordError(ArchiveGraphError):
    """
    Problem with a single package record.

    MISSING_FIELD and INVALID_VERSION reject the record; INVALID_RELATION and
    UNSATISFIABLE_GROUP are warnings attached to an otherwise valid record.
    """

    def __init__(
        self,
        kind: RecordErrorKind,
        field_name: str,
        message: str,
        package: str | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.field = field_name
        self.package = package

    @classmethod
    def missing_field(cls, name: str, package: str | None = None) -> "RecordError":
        return cls(RecordErrorKind.MISSING_FIELD, name, f"missing required field {name!r}", package)

    @classmethod
    def invalid_version(cls, value: str, package: str | None = None, reason: str = "") -> "RecordError":
        message = f"invalid version {value!r}"
        if reason:
            message = f"{message}: {reason}"
        return cls(RecordErrorKind.INVALID_VERSION, "Version", message, package)

    @classmethod
    def unsatisfiable_group(cls, field_name: str, raw: str, package: str | None = None) -> "RecordError":
        return cls(
            RecordErrorKind.UNSATISFIABLE_GROUP,
            field_name,
            f"no usable alternative left in {field_name} group {raw!r}",
            package,
        )

    @classmethod
    def invalid_relation(
        cls, field_name: str, raw: str, package: str | None = None, reason: str = ""
    ) -> "RecordError":
        message = f"dropped {field_name} alternative {raw!r}"
        if reason:
            message = f"{message}: {reason}"
        return cls(RecordErrorKind.INVALID_RELATION, field_name, message, package)

    @property
    def is_fatal(self) -> bool:
        return self.kind in (RecordErrorKind.MISSING_FIELD, RecordErrorKind.INVALID_VERSION)

    def __repr__(self) -> str:
        return f"RecordError({self.kind.name}, {self.field!r}, package={self.package!r})"


@dataclass(frozen=True)
class UnresolvedDependency:
    """A dependency group with no alternative inside the loaded snapshot."""

    node: int
    package: str
    architecture: str
    relation: str
    raw: str


@dataclass(frozen=True)
class CycleDetected:
    """A strongly connected group of packages found while ordering a rebuild."""

    nodes: tuple[int, ...]
    packages: tuple[str, ...] = field(default_factory=tuple)

    def __str__(self) -> str:
        names = ", ".join(self.packages) if self.packages else ", ".join(map(str, self.nodes))
        return f"dependency cycle: {names}"
