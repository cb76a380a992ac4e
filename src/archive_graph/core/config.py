"""
Analysis configuration.

One value object carries every option the CLI (or a library caller) can set.
Each option has a default, so ``AnalysisConfig()`` describes a sensible run
against Debian unstable.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from archive_graph.core.fetcher import DEFAULT_COMPRESSIONS, Compression
from archive_graph.models.package import (
    PSEUDO_ARCHITECTURES,
    RUNTIME_RELATIONS,
    SOURCE_ARCHITECTURE,
    RelationKind,
)

logger = logging.getLogger(__name__)

DEFAULT_MIRROR = "https://deb.debian.org/debian"

RELEASE_ARCHITECTURES = (
    "amd64",
    "arm64",
    "armel",
    "armhf",
    "i386",
    "mips64el",
    "ppc64el",
    "riscv64",
    "s390x",
)


def default_cache_dir() -> Path:
    """$XDG_CACHE_HOME/archive-graph, falling back to ~/.cache/archive-graph."""
    base = os.environ.get("XDG_CACHE_HOME")
    return (Path(base) if base else Path.home() / ".cache") / "archive-graph"


@dataclass
class AnalysisConfig:
    """Options for one analysis run."""

    suite: str = "unstable"
    mirror: str = DEFAULT_MIRROR
    components: list[str] = field(default_factory=lambda: ["main"])
    target_architectures: frozenset[str] = field(default_factory=lambda: frozenset(RELEASE_ARCHITECTURES))
    strict: bool = False
    relation_kinds: frozenset[RelationKind] = RUNTIME_RELATIONS
    seeds: list[str] = field(default_factory=list)
    include_sources: bool = False
    max_concurrent_fetches: int = 4
    cache_dir: Path = field(default_factory=default_cache_dir)
    compressions: tuple[Compression, ...] = DEFAULT_COMPRESSIONS

    def __post_init__(self):
        archs = frozenset(self.target_architectures)
        pseudo = archs & (PSEUDO_ARCHITECTURES | {SOURCE_ARCHITECTURE})
        if pseudo:
            logger.warning(f"Ignoring pseudo-architectures in target set: {', '.join(sorted(pseudo))}")
        self.target_architectures = archs - pseudo
        if not self.target_architectures:
            raise ValueError("At least one concrete target architecture is required")

        if self.max_concurrent_fetches < 1:
            raise ValueError("max_concurrent_fetches must be at least 1")

        self.relation_kinds = frozenset(
            RelationKind.parse(kind) if isinstance(kind, str) else kind for kind in self.relation_kinds
        )
        if not self.relation_kinds:
            raise ValueError("At least one relation kind is required")

        self.compressions = tuple(
            Compression.parse(c) if isinstance(c, str) else c for c in self.compressions
        )
        self.components = [c for c in self.components if c] or ["main"]
        self.cache_dir = Path(self.cache_dir)
        self.mirror = self.mirror.rstrip("/")

    @property
    def follows_build_relations(self) -> bool:
        return any(kind.is_build for kind in self.relation_kinds)

    @property
    def loads_sources(self) -> bool:
        """Sources indices are needed for build relations or when asked for."""
        return self.include_sources or self.follows_build_relations

    @classmethod
    def from_env(cls, **overrides) -> "AnalysisConfig":
        """Build a config, taking the mirror from ARCHIVE_GRAPH_MIRROR if set."""
        values = {}
        if mirror := os.environ.get("ARCHIVE_GRAPH_MIRROR"):
            values["mirror"] = mirror
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)
