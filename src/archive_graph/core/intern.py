"""
Process-wide string interning.

An archive snapshot repeats the same package names, architectures and version
strings across tens of thousands of stanzas. Routing them through one table
keeps a single copy of each and lets comparisons short-circuit on identity.
"""

import threading


class InternTable:
    """
    Append-only table of canonical strings.

    Lookups of already interned strings never take the lock; inserting a new
    string does. The table is created once per process and shared by reference
    with every component that builds records; it is never cleared.
    """

    def __init__(self):
        self._strings: dict[str, str] = {}
        self._lock = threading.Lock()

    def intern(self, text: str) -> str:
        """Return the canonical instance for ``text``."""
        canonical = self._strings.get(text)
        if canonical is not None:
            return canonical
        with self._lock:
            return self._strings.setdefault(text, text)

    def get(self, text: str) -> str | None:
        """Return the canonical instance if ``text`` was interned before."""
        return self._strings.get(text)

    def __contains__(self, text: object) -> bool:
        return text in self._strings

    def __len__(self) -> int:
        return len(self._strings)

    def __repr__(self) -> str:
        return f"InternTable(size={len(self)})"
