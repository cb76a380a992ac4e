"""
Build PackageRecords from parsed stanzas.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from archive_graph.core.errors import RecordError, VersionError
from archive_graph.core.intern import InternTable
from archive_graph.core.version import PackageVersion
from archive_graph.models.package import (
    RUNTIME_RELATIONS,
    SOURCE_ARCHITECTURE,
    PackageRecord,
    RelationKind,
    SourceRef,
)
from archive_graph.parsers.relations import parse_relations

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("Package", "Version", "Architecture")


def _parse_source_field(value: str, interner: InternTable) -> SourceRef:
    # "Source: foo" or "Source: foo (1.2-3)" for binNMUs and version skew
    name, _, rest = value.strip().partition(" ")
    version = None
    rest = rest.strip()
    if rest.startswith("(") and rest.endswith(")"):
        try:
            version = PackageVersion.parse(rest[1:-1], interner)
        except VersionError:
            logger.debug(f"Ignoring unparsable source version in {value!r}")
    return SourceRef(interner.intern(name), version)


def build_record(
    stanza,
    interner: InternTable,
    relation_kinds: Iterable[RelationKind] = RUNTIME_RELATIONS,
    *,
    is_source: bool = False,
    component: str | None = None,
    diagnostics: list | None = None,
) -> PackageRecord:
    """
    Create a PackageRecord from one stanza.

    Args:
        stanza: Mapping with case-insensitive field access (a Stanza).
        interner: Shared string table.
        relation_kinds: Relationship fields to parse; others are ignored.
        is_source: The stanza comes from a Sources index.
        component: Archive component the stanza was loaded from.
        diagnostics: Optional list collecting non-fatal RecordErrors.

    Raises:
        RecordError: A required field is missing or the version is invalid.
    """
    package = stanza.get("Package")
    for name in REQUIRED_FIELDS:
        value = stanza.get(name)
        if value is None or not value.strip():
            raise RecordError.missing_field(name, package)

    name = interner.intern(package.strip())
    raw_version = stanza["Version"].strip()
    try:
        version = PackageVersion.parse(raw_version, interner)
    except VersionError as e:
        raise RecordError.invalid_version(raw_version, name, str(e)) from e

    declared = tuple(interner.intern(arch) for arch in stanza["Architecture"].split())
    if is_source:
        architecture = interner.intern(SOURCE_ARCHITECTURE)
        source = None
    else:
        architecture = declared[0]
        source = _parse_source_field(stanza["Source"], interner) if stanza.get("Source") else None

    relations = []
    for kind in relation_kinds:
        value = stanza.get(kind.field_name)
        if value:
            relations.extend(parse_relations(value, kind, interner, diagnostics, package=name))

    multi_arch = stanza.get("Multi-Arch")
    return PackageRecord(
        name=name,
        version=version,
        architecture=architecture,
        source=source,
        relations=tuple(relations),
        multi_arch=interner.intern(multi_arch.strip()) if multi_arch else None,
        component=interner.intern(component) if component else None,
        is_source=is_source,
        declared_architectures=declared,
    )


@dataclass
class RecordBatch:
    """Records built from one index together with the stanzas that failed."""

    records: list[PackageRecord] = field(default_factory=list)
    errors: list[RecordError] = field(default_factory=list)
    warnings: list[RecordError] = field(default_factory=list)


def build_records(
    stanzas,
    interner: InternTable,
    relation_kinds: Iterable[RelationKind] = RUNTIME_RELATIONS,
    *,
    is_source: bool = False,
    component: str | None = None,
) -> RecordBatch:
    """Build records for every stanza; a bad stanza never stops the batch."""
    kinds = tuple(relation_kinds)
    batch = RecordBatch()
    for stanza in stanzas:
        try:
            batch.records.append(
                build_record(
                    stanza,
                    interner,
                    kinds,
                    is_source=is_source,
                    component=component,
                    diagnostics=batch.warnings,
                )
            )
        except RecordError as e:
            logger.warning(f"Skipping record: {e} (package={e.package})")
            batch.errors.append(e)
    return batch
