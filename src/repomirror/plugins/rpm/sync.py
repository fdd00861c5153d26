"""
RPM repository sync plugin.

This module mirrors an RPM repository from upstream into a FileStorage. Each
run stores fresh metadata and decides per package, by comparing upstream
and local checksums, whether to download it again or carry the local copy
over into the new generation.
"""

from __future__ import annotations

from urllib.parse import urljoin

from repomirror.core.checksums import ChecksumType, normalize_checksum
from repomirror.core.config import DownloadConfig, ProxyConfig, RepositoryConfig, SSLConfig
from repomirror.core.downloader import Downloader, FetchStream
from repomirror.core.errors import ChecksumError, HttpError, StoredFileNotFoundError
from repomirror.core.output import SyncOutputter
from repomirror.core.storage import FileStorage
from repomirror.plugins.rpm import parsers
from repomirror.plugins.rpm.compression import detect_compression
from repomirror.plugins.rpm.filters import ArchitectureFilter
from repomirror.plugins.rpm.models import (
    ClassificationResult,
    PackageRecord,
    SyncResult,
)

REPOMD_PATH = "repodata/repomd.xml"

# Signature files, not every repository publishes them
OPTIONAL_PATHS = (f"{REPOMD_PATH}.asc", f"{REPOMD_PATH}.key")


class RpmSyncer:
    """Syncs one RPM repository from its feed URL into a FileStorage.

    Handles:
    - Storing repomd.xml and every metadata file it references
    - Classifying primary.xml packages as download / recycle / skip
    - Downloading changed packages, recycling unchanged ones
    - Committing the new generation

    Any error except a missing signature file aborts the sync and leaves the
    previously committed generation untouched.
    """

    def __init__(
        self,
        storage: FileStorage,
        config: RepositoryConfig,
        downloader: Downloader | None = None,
        output: SyncOutputter | None = None,
        download_config: DownloadConfig | None = None,
        proxy_config: ProxyConfig | None = None,
        ssl_config: SSLConfig | None = None,
    ):
        """Initialize RPM syncer.

        Args:
            storage: Storage of this repository
            config: Repository configuration
            downloader: HTTP downloader (default: one built from the configs)
            output: Output handler for progress and messages
            download_config: Download configuration, if downloader is not given
            proxy_config: Global proxy configuration, if downloader is not given
            ssl_config: Global SSL/TLS configuration, if downloader is not given
        """
        self.storage = storage
        self.config = config
        self.output = output or SyncOutputter()
        self.arch_filter = ArchitectureFilter(config.architectures)

        self._owns_downloader = downloader is None
        self.downloader = downloader or Downloader(
            config,
            download_config=download_config,
            proxy_config=proxy_config,
            ssl_config=ssl_config,
        )

        self.bytes_downloaded = 0
        self.metadata_files_downloaded = 0

    def url_for(self, path: str) -> str:
        """Get the upstream URL of a repo-relative path."""
        return urljoin(self.config.feed + "/", path)

    def sync(self) -> SyncResult:
        """Sync repository from upstream.

        Returns:
            SyncResult with sync statistics

        Raises:
            MirrorError: On any fatal error; nothing is committed in that case
        """
        self.output.header(
            self.config.id,
            self.config.feed,
            architectures=", ".join(sorted(self.arch_filter.architectures)) or "all",
        )
        self.bytes_downloaded = 0
        self.metadata_files_downloaded = 0

        self.storage.begin()
        try:
            classification = self.process_metadata()
            self.download_packages(classification.to_download)
            self.recycle_packages(classification.to_recycle)

            self.output.phase("Committing", number=4)
            self.storage.commit()
        except BaseException:
            self.storage.abort()
            raise

        result = SyncResult(
            packages_downloaded=len(classification.to_download),
            packages_recycled=len(classification.to_recycle),
            packages_skipped=classification.skipped,
            packages_total=classification.total,
            bytes_downloaded=self.bytes_downloaded,
            metadata_files_downloaded=self.metadata_files_downloaded,
        )
        self.output.summary(
            packages_downloaded=result.packages_downloaded,
            packages_recycled=result.packages_recycled,
            packages_skipped=result.packages_skipped,
            metadata_files_downloaded=result.metadata_files_downloaded,
            total_size_mb=f"{result.bytes_downloaded / 1024 / 1024:.2f} MB",
        )
        return result

    def process_metadata(self) -> ClassificationResult:
        """Store all metadata files and classify the packages they list.

        Returns:
            Merged classification of all primary manifests
        """
        self.output.phase("Processing metadata", number=1)

        with self._fetch_store(REPOMD_PATH) as stream:
            index = parsers.decode_index(stream)
        self.metadata_files_downloaded += 1
        self.output.info(f"Found {len(index)} metadata files in repomd.xml")

        classification = ClassificationResult()
        for entry in index:
            if entry.is_primary:
                classification.merge(
                    self.process_primary(entry.location, entry.checksum or "", entry.checksum_type)
                )
            else:
                self._download_store(entry.location, entry.checksum or "", entry.checksum_type)
                self.metadata_files_downloaded += 1

        if not index.primary_entries():
            self.output.warning("No primary metadata in repomd.xml, no packages to sync")

        for path in OPTIONAL_PATHS:
            self._download_optional(path)

        return classification

    def process_primary(
        self,
        location: str,
        checksum: str = "",
        checksum_type: ChecksumType = ChecksumType.SHA256,
    ) -> ClassificationResult:
        """Store a primary manifest and classify its packages.

        Args:
            location: Repo-relative path of the manifest
            checksum: Checksum announced in repomd.xml
            checksum_type: Algorithm of checksum

        Returns:
            ClassificationResult for the manifest
        """
        self.output.verbose(f"  → primary manifest: {location}")
        with self._fetch_store(location, checksum, checksum_type) as stream:
            manifest = parsers.decode_manifest(stream, detect_compression(location))
        self.metadata_files_downloaded += 1
        self.output.info(f"Found {len(manifest)} packages in repository")

        classification = self.classify(manifest)
        self.output.info(
            f"{len(classification.to_download)} to download, "
            f"{len(classification.to_recycle)} up to date, "
            f"{classification.skipped} skipped"
        )
        return classification

    def classify(self, packages) -> ClassificationResult:
        """Decide for each accepted package whether to download or recycle it.

        The upstream checksum is trusted; the local file is recycled only if
        its checksum, computed with the upstream algorithm, is identical.

        Args:
            packages: Iterable of PackageRecord

        Returns:
            ClassificationResult
        """
        result = ClassificationResult()
        for pkg in self.arch_filter.apply(packages):
            if pkg.checksum_type is ChecksumType.UNKNOWN:
                self.output.verbose(
                    f"  → {pkg.location}: unsupported checksum type, will be downloaded"
                )
                result.to_download.append(pkg)
                continue

            try:
                stored_checksum = self.storage.checksum(pkg.location, pkg.checksum_type)
            except StoredFileNotFoundError:
                self.output.verbose(f"  → {pkg.location}: not found, will be downloaded")
                result.to_download.append(pkg)
                continue
            except ChecksumError as e:
                self.output.warning(f"Skipping {pkg.location}: checksum evaluation failed: {e}")
                result.skipped += 1
                continue

            if stored_checksum != normalize_checksum(pkg.checksum):
                self.output.verbose(
                    f"  → {pkg.location}: checksum mismatch, will be redownloaded "
                    f"[repo vs local] = [{pkg.checksum} vs {stored_checksum}]"
                )
                result.to_download.append(pkg)
            else:
                self.output.verbose(f"  → {pkg.location}: up to date, will be recycled")
                result.to_recycle.append(pkg)

        return result

    def download_packages(self, packages: list[PackageRecord]) -> None:
        """Download packages into the new generation, stopping at the first error."""
        self.output.phase("Downloading packages", number=2)
        self.output.info(f"Downloading {len(packages)} packages...")

        self.output.start_progress(len(packages), "Downloading packages", "packages")
        try:
            for i, pkg in enumerate(packages, 1):
                self.output.downloading(pkg.location, i, len(packages))
                self.bytes_downloaded += self._download_store(
                    pkg.location, pkg.checksum, pkg.checksum_type
                )
                self.output.update_progress()
        finally:
            self.output.finish_progress()

    def recycle_packages(self, packages: list[PackageRecord]) -> None:
        """Carry unchanged packages over into the new generation."""
        self.output.phase("Recycling packages", number=3)
        self.output.info(f"Recycling {len(packages)} packages...")
        for pkg in packages:
            self.storage.recycle(pkg.location)

    def _fetch_store(
        self,
        path: str,
        checksum: str = "",
        checksum_type: ChecksumType = ChecksumType.SHA256,
    ) -> FetchStream:
        """Fetch a repo-relative path with its body teed into storage."""
        url = self.url_for(path)
        self.output.verbose(f"Downloading {url}")
        stream = self.downloader.fetch(url)
        try:
            stream.add_consumer(self.storage.streaming_writer(path, checksum, checksum_type))
        except BaseException:
            stream.abort()
            raise
        return stream

    def _download_store(
        self,
        path: str,
        checksum: str = "",
        checksum_type: ChecksumType = ChecksumType.SHA256,
    ) -> int:
        """Download a repo-relative path straight into storage.

        Returns:
            Number of bytes downloaded
        """
        with self._fetch_store(path, checksum, checksum_type) as stream:
            stream.drain()
        return stream.bytes_read

    def _download_optional(self, path: str) -> None:
        """Download a file that upstream may legitimately not have."""
        try:
            self._download_store(path)
        except HttpError as e:
            if not e.is_not_found:
                raise
            self.output.verbose(f"  → {path}: not found upstream (404), ignoring")
            return
        self.metadata_files_downloaded += 1

    def close(self) -> None:
        """Release the downloader if this syncer created it."""
        if self._owns_downloader:
            self.downloader.close()

    def __enter__(self) -> "RpmSyncer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
