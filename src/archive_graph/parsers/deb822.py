"""
RFC822-style stanza parser for Debian archive indices.

Handles the control-file conventions used by Packages and Sources files:
- ``Field: value`` starts a field, field names are case-insensitive
- lines starting with whitespace continue the previous field
- a continuation consisting of ``.`` stands for an empty line
- blank lines separate stanzas
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, MutableMapping

from archive_graph.core.errors import ParseError

logger = logging.getLogger(__name__)


class Stanza(MutableMapping):
    """
    Ordered mapping of field name to raw value with case-insensitive keys.

    The spelling of the first occurrence of a field is kept for serialization.
    Setting an existing field again replaces its value in place.
    """

    __slots__ = ("_fields",)

    def __init__(self, items: Iterable[tuple[str, str]] = ()):
        self._fields: dict[str, tuple[str, str]] = {}
        for key, value in items:
            self[key] = value

    def __getitem__(self, key: str) -> str:
        return self._fields[key.lower()][1]

    def __setitem__(self, key: str, value: str) -> None:
        folded = key.lower()
        existing = self._fields.get(folded)
        self._fields[folded] = (existing[0] if existing else key, value)

    def __delitem__(self, key: str) -> None:
        del self._fields[key.lower()]

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self._fields.values())

    def __len__(self) -> int:
        return len(self._fields)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self._fields

    def __repr__(self) -> str:
        return f"Stanza({list(self.items())!r})"


class StanzaParser:
    """
    Turns a sequence of text lines into a lazy sequence of stanzas.

    With ``strict=True`` the first malformed line raises ParseError. Otherwise
    the line is skipped and the error is kept in ``warnings`` for the most
    recent pass.
    """

    def __init__(self, strict: bool = False):
        self.strict = strict
        self.warnings: list[ParseError] = []

    def parse(self, lines: Iterable[str]) -> Iterator[Stanza]:
        """Start a new forward-only pass over ``lines``."""
        self.warnings = []
        return self._parse(lines, self.warnings)

    def _parse(self, lines: Iterable[str], warnings: list[ParseError]) -> Iterator[Stanza]:
        current = Stanza()
        field: str | None = None

        for number, raw in enumerate(lines, start=1):
            line = raw.rstrip("\r\n")

            if not line:
                if current:
                    yield current
                current = Stanza()
                field = None
                continue

            if line.startswith("#"):
                continue

            if line[0] in " \t":
                if field is None:
                    if not line.strip():
                        continue
                    self._malformed("continuation line without a field", number, line, warnings)
                    continue
                content = line[1:]
                if content.strip() in ("", "."):
                    content = ""
                current[field] = f"{current[field]}\n{content}"
                continue

            name, sep, value = line.partition(":")
            name = name.strip()
            if not sep or not name or " " in name:
                self._malformed("expected 'Field: value'", number, line, warnings)
                continue

            field = name
            current[field] = value.strip()

        if current:
            yield current

    def _malformed(self, message: str, number: int, line: str, warnings: list[ParseError]) -> None:
        error = ParseError(message, line_number=number, line=line)
        if self.strict:
            raise error
        logger.warning(f"Skipping malformed stanza line: {error}")
        warnings.append(error)


def iter_stanzas(lines: Iterable[str], strict: bool = False) -> Iterator[Stanza]:
    """Convenience wrapper around StanzaParser.parse()."""
    return StanzaParser(strict=strict).parse(lines)


def parse_text(text: str, strict: bool = False) -> list[Stanza]:
    """Parse a complete document held in memory."""
    return list(iter_stanzas(text.splitlines(), strict=strict))


def dump_stanza(stanza: MutableMapping) -> str:
    """Serialize one stanza back to control-file text (no trailing blank line)."""
    out = []
    for name, value in stanza.items():
        first, *rest = value.split("\n")
        out.append(f"{name}: {first}" if first else f"{name}:")
        for line in rest:
            out.append(f" {line}" if line.strip() else " .")
    return "\n".join(out) + "\n"


def dump_stanzas(stanzas: Iterable[MutableMapping]) -> str:
    return "\n".join(dump_stanza(stanza) for stanza in stanzas)
