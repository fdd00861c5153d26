"""
Data models for RPM repository metadata.

These models describe what the sync engine reads from ``repomd.xml`` and the
primary manifest, and what it decides for each package. They live only for
the duration of one sync.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from repomirror.core.checksums import ChecksumType

PRIMARY_TYPE = "primary"


@dataclass
class MetadataEntry:
    """A ``<data>`` element of repomd.xml."""

    type: str  # e.g., "primary", "filelists", "other", "updateinfo"
    location: str  # Relative path (e.g., "repodata/abc123-primary.xml.gz")
    checksum: str | None = None
    checksum_type: ChecksumType = ChecksumType.UNKNOWN

    @property
    def is_primary(self) -> bool:
        return self.type == PRIMARY_TYPE


@dataclass
class RepositoryIndex:
    """Parsed repomd.xml, entries in document order."""

    entries: list[MetadataEntry] = field(default_factory=list)

    def __iter__(self):
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def primary_entries(self) -> list[MetadataEntry]:
        """Get the entries describing package manifests."""
        return [entry for entry in self.entries if entry.is_primary]


@dataclass
class PackageRecord:
    """A ``<package>`` element of the primary manifest."""

    architecture: str
    location: str  # Relative URL to package file, unique within a manifest
    checksum_type: ChecksumType
    checksum: str  # Upstream checksum, the source of truth
    name: str | None = None


@dataclass
class PackageManifest:
    """Parsed primary manifest."""

    packages: list[PackageRecord] = field(default_factory=list)

    def __iter__(self):
        return iter(self.packages)

    def __len__(self) -> int:
        return len(self.packages)


@dataclass
class ClassificationResult:
    """Decision for every accepted package of a manifest.

    Skipped packages (local checksum could not be computed) are only counted;
    they are neither downloaded nor recycled in this generation.
    """

    to_download: list[PackageRecord] = field(default_factory=list)
    to_recycle: list[PackageRecord] = field(default_factory=list)
    skipped: int = 0

    def merge(self, other: ClassificationResult) -> None:
        """Add the decisions of another manifest.

        A location listed by several manifests is kept once. If any of them
        decided to download it, it is downloaded and not recycled.
        """
        downloads = {pkg.location for pkg in self.to_download}
        for pkg in other.to_download:
            if pkg.location not in downloads:
                downloads.add(pkg.location)
                self.to_download.append(pkg)

        recycles: set[str] = set()
        to_recycle = []
        for pkg in self.to_recycle + other.to_recycle:
            if pkg.location not in downloads and pkg.location not in recycles:
                recycles.add(pkg.location)
                to_recycle.append(pkg)
        self.to_recycle = to_recycle

        self.skipped += other.skipped

    @property
    def total(self) -> int:
        return len(self.to_download) + len(self.to_recycle) + self.skipped


@dataclass
class SyncResult:
    """Result of a repository sync operation."""

    packages_downloaded: int
    packages_recycled: int
    packages_skipped: int
    packages_total: int
    bytes_downloaded: int
    metadata_files_downloaded: int
