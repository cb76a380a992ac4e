"""
Package Record Model — typed view of binary and source index stanzas.

Records are created once per stanza during ingestion and never modified.
All strings held here (names, architectures, version text) come from the
shared InternTable.
"""

from dataclasses import dataclass, field
from enum import Enum

from archive_graph.core.version import PackageVersion

SOURCE_ARCHITECTURE = "source"
PSEUDO_ARCHITECTURES = frozenset({"all", "any"})


class RelationKind(Enum):
    """Relationship fields understood by the record builder."""

    DEPENDS = "depends"
    PRE_DEPENDS = "pre-depends"
    RECOMMENDS = "recommends"
    SUGGESTS = "suggests"
    BUILD_DEPENDS = "build-depends"
    BUILD_DEPENDS_ARCH = "build-depends-arch"
    BUILD_DEPENDS_INDEP = "build-depends-indep"

    @property
    def field_name(self) -> str:
        return "-".join(part.capitalize() for part in self.value.split("-"))

    @property
    def is_build(self) -> bool:
        return self.value.startswith("build-")

    @property
    def edge_label(self) -> str:
        return "build-depends-on" if self.is_build else "depends-on"

    @classmethod
    def parse(cls, name: str) -> "RelationKind":
        try:
            return cls(name.strip().lower())
        except ValueError:
            valid = ", ".join(kind.value for kind in cls)
            raise ValueError(f"Unknown relation kind: {name!r}. Use one of: {valid}") from None


RUNTIME_RELATIONS = frozenset({RelationKind.DEPENDS, RelationKind.PRE_DEPENDS})
BUILD_RELATIONS = frozenset(kind for kind in RelationKind if kind.is_build)


@dataclass(frozen=True)
class VersionConstraint:
    """A ``(op version)`` restriction on a dependency alternative."""

    operator: str  # one of <<, <=, =, >=, >>
    version: PackageVersion

    def satisfied_by(self, candidate: PackageVersion) -> bool:
        cmp = candidate.compare(self.version)
        match self.operator:
            case "<<":
                return cmp < 0
            case "<=":
                return cmp <= 0
            case "=":
                return cmp == 0
            case ">=":
                return cmp >= 0
            case ">>":
                return cmp > 0
        raise ValueError(f"Unknown relation operator: {self.operator!r}")

    def __str__(self) -> str:
        return f"({self.operator} {self.version})"


@dataclass(frozen=True)
class DependencyAlternative:
    """One ``|``-separated choice inside a dependency group."""

    name: str
    arch_qualifier: str | None = None  # "any", "native" or an explicit architecture
    constraint: VersionConstraint | None = None
    arch_restrictions: tuple[str, ...] = ()  # bracket list, "!" prefix kept

    def __str__(self) -> str:
        text = self.name
        if self.arch_qualifier:
            text = f"{text}:{self.arch_qualifier}"
        if self.constraint:
            text = f"{text} {self.constraint}"
        if self.arch_restrictions:
            text = f"{text} [{' '.join(self.arch_restrictions)}]"
        return text


@dataclass(frozen=True)
class DependencyGroup:
    """Alternatives of which any one satisfies the relation."""

    kind: RelationKind
    alternatives: tuple[DependencyAlternative, ...]
    raw: str = ""

    def __str__(self) -> str:
        return " | ".join(str(alt) for alt in self.alternatives)


@dataclass(frozen=True)
class SourceRef:
    """Link from a binary package to the source package that built it."""

    name: str
    version: PackageVersion | None = None


@dataclass(frozen=True)
class PackageRecord:
    """
    A single binary or source package entry of one archive snapshot.

    Source stanzas use the pseudo-architecture ``source``; their declared
    ``Architecture`` list is kept in ``declared_architectures``.
    """

    name: str
    version: PackageVersion
    architecture: str
    source: SourceRef | None = None
    relations: tuple[DependencyGroup, ...] = ()
    multi_arch: str | None = None
    component: str | None = None
    is_source: bool = False
    declared_architectures: tuple[str, ...] = field(default_factory=tuple)

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, self.architecture)

    @property
    def source_name(self) -> str:
        """Source package name; Debian omits ``Source`` when it equals Package."""
        if self.is_source:
            return self.name
        return self.source.name if self.source else self.name

    @property
    def source_version(self) -> PackageVersion:
        if self.source and self.source.version is not None:
            return self.source.version
        return self.version

    def relations_of(self, kinds) -> tuple[DependencyGroup, ...]:
        return tuple(group for group in self.relations if group.kind in kinds)

    def __str__(self) -> str:
        return f"{self.name}_{self.version}_{self.architecture}"

    def to_dict(self) -> dict:
        """Serialize to a JSON-compatible dictionary."""
        return {
            "name": self.name,
            "version": str(self.version),
            "architecture": self.architecture,
            "source": self.source_name,
            "source_version": str(self.source_version),
            "multi_arch": self.multi_arch,
            "component": self.component,
            "relations": {
                kind.value: [str(group) for group in self.relations if group.kind is kind]
                for kind in RelationKind
                if any(group.kind is kind for group in self.relations)
            },
        }
