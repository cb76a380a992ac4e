"""
Dependency field parser.

Parses the relationship fields of Packages and Sources stanzas, e.g.::

    Depends: libc6 (>= 2.34), python3:any | python3-minimal
    Build-Depends: debhelper-compat (= 13), libfoo-dev [amd64 arm64] <!nocheck>

Groups are comma separated, alternatives inside a group are ``|`` separated.
An alternative that cannot be parsed is dropped on its own; the rest of the
stanza is unaffected.
"""

import logging
import re

from archive_graph.core.errors import RecordError, VersionError
from archive_graph.core.intern import InternTable
from archive_graph.core.version import PackageVersion
from archive_graph.models.package import (
    DependencyAlternative,
    DependencyGroup,
    RelationKind,
    VersionConstraint,
)

logger = logging.getLogger(__name__)

_ALTERNATIVE_RE = re.compile(
    r"""
    ^(?P<name>[a-z0-9][a-z0-9.+\-]*)
    (?::(?P<qualifier>[a-z0-9][a-z0-9\-]*))?
    \s*(?:\(\s*(?P<op>[<>=]*)\s*(?P<version>[^)\s]*)\s*\))?
    \s*(?:\[(?P<archs>[^\]]*)\])?
    \s*(?P<profiles>(?:<[^>]*>\s*)*)$
    """,
    re.VERBOSE | re.IGNORECASE,
)

_OPERATORS = {
    "<<": "<<",
    "<=": "<=",
    "=": "=",
    ">=": ">=",
    ">>": ">>",
    # obsolete spellings, treated by dpkg as <= and >=
    "<": "<=",
    ">": ">=",
}


def parse_alternative(text: str, interner: InternTable) -> DependencyAlternative:
    """Parse one alternative. Raises ValueError when it is not well formed."""
    match = _ALTERNATIVE_RE.match(text.strip())
    if not match:
        raise ValueError("unrecognized relation syntax")

    constraint = None
    if match.group("op") is not None or match.group("version") is not None:
        op = _OPERATORS.get(match.group("op") or "")
        if op is None:
            raise ValueError(f"invalid relation operator {match.group('op')!r}")
        if not match.group("version"):
            raise ValueError("missing version in constraint")
        try:
            version = PackageVersion.parse(match.group("version"), interner)
        except VersionError as e:
            raise ValueError(str(e)) from e
        constraint = VersionConstraint(op, version)

    qualifier = match.group("qualifier")
    archs = ()
    if match.group("archs") is not None:
        archs = tuple(interner.intern(arch) for arch in match.group("archs").split())
        if not archs:
            raise ValueError("empty architecture restriction")
        negated = {arch.startswith("!") for arch in archs}
        if len(negated) > 1:
            raise ValueError("mixed positive and negated architectures")

    return DependencyAlternative(
        name=interner.intern(match.group("name").lower()),
        arch_qualifier=interner.intern(qualifier.lower()) if qualifier else None,
        constraint=constraint,
        arch_restrictions=archs,
    )


def parse_relations(
    text: str,
    kind: RelationKind,
    interner: InternTable,
    diagnostics: list | None = None,
    package: str | None = None,
) -> tuple[DependencyGroup, ...]:
    """
    Parse a relationship field value into dependency groups.

    Args:
        text: Raw field value, possibly spanning several lines.
        kind: Which relationship field the value came from.
        interner: Shared string table.
        diagnostics: Optional list collecting non-fatal RecordErrors.
        package: Package name used in diagnostics.

    Returns:
        Tuple of DependencyGroup in field order. Groups without any usable
        alternative are left out.
    """
    groups = []
    flat = " ".join(text.split())
    for raw_group in flat.split(","):
        raw_group = raw_group.strip()
        if not raw_group:
            continue

        alternatives = []
        for raw_alt in raw_group.split("|"):
            try:
                alternatives.append(parse_alternative(raw_alt, interner))
            except ValueError as e:
                error = RecordError.invalid_relation(kind.field_name, raw_alt.strip(), package, str(e))
                logger.warning(f"{package or '<unknown>'}: {error}")
                if diagnostics is not None:
                    diagnostics.append(error)

        if not alternatives:
            error = RecordError.unsatisfiable_group(kind.field_name, raw_group, package)
            logger.warning(f"{package or '<unknown>'}: {error}")
            if diagnostics is not None:
                diagnostics.append(error)
            continue

        groups.append(DependencyGroup(kind, tuple(alternatives), raw_group))

    return tuple(groups)
