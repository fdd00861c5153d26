"""
RPM package filtering logic.

This module provides the architecture filter applied to manifest packages
before they are classified.
"""

from __future__ import annotations

from typing import Iterable, Iterator

from repomirror.plugins.rpm.models import PackageRecord

NOARCH = "noarch"


class ArchitectureFilter:
    """Set of accepted package architectures.

    An empty filter accepts every architecture. ``noarch`` packages are
    always accepted since they install on any architecture.
    """

    def __init__(self, architectures: Iterable[str] = ()):
        self.architectures = frozenset(a.strip() for a in architectures if a.strip())

    @property
    def accepts_all(self) -> bool:
        return not self.architectures

    def accepts(self, arch: str) -> bool:
        """Check if a package architecture passes the filter."""
        return self.accepts_all or arch == NOARCH or arch in self.architectures

    def apply(self, packages: Iterable[PackageRecord]) -> Iterator[PackageRecord]:
        """Yield the packages whose architecture passes the filter."""
        return (pkg for pkg in packages if self.accepts(pkg.architecture))

    def __repr__(self) -> str:
        if self.accepts_all:
            return "ArchitectureFilter(all)"
        return f"ArchitectureFilter({', '.join(sorted(self.architectures))})"
