"""
Generation-based file storage for mirrored repositories.

The committed generation lives in the repository directory itself and
mirrors the upstream layout path for path:

    /var/lib/repomirror/rocky9-baseos/repodata/repomd.xml
    /var/lib/repomirror/rocky9-baseos/Packages/b/bash-5.1.8-9.el9.x86_64.rpm

A sync builds the next generation in a sibling ``<dir>-in-progress``
directory: new files are streamed into it, unchanged files are hardlinked
into it from the committed generation. ``commit()`` swaps the two
directories, so until it completes the previous generation stays intact and
readable.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path, PurePosixPath

from repomirror.core.checksums import ChecksumType, hash_fileobj, normalize_checksum
from repomirror.core.downloader import StreamConsumer
from repomirror.core.errors import (
    ChecksumError,
    CommitError,
    RecycleError,
    StorageError,
    StoredFileNotFoundError,
)

logger = logging.getLogger(__name__)


class StoringWriter(StreamConsumer):
    """Stream consumer that writes chunks to a file in the staging generation.

    Data goes to a temporary file next to the destination, which is renamed
    into place on ``close()``. A partially written file never appears under
    its final name.
    """

    def __init__(
        self,
        dest: Path,
        expected_checksum: str = "",
        checksum_type: ChecksumType = ChecksumType.SHA256,
    ):
        """Initialize storing writer.

        Args:
            dest: Final path of the file
            expected_checksum: Checksum announced by upstream (advisory only)
            checksum_type: Algorithm of expected_checksum

        Raises:
            StorageError: If the temporary file cannot be created
        """
        self.dest = dest
        self.expected_checksum = normalize_checksum(expected_checksum)
        self.bytes_written = 0
        self._hash = None
        if self.expected_checksum and checksum_type is not ChecksumType.UNKNOWN:
            self._hash = checksum_type.new_hash()

        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            self._file = tempfile.NamedTemporaryFile(
                delete=False, dir=dest.parent, prefix=f".{dest.name}.", suffix=".part"
            )
        except OSError as e:
            raise StorageError(f"Cannot create {dest}: {e}") from e
        self.tmp_path = Path(self._file.name)

    def on_chunk(self, data: bytes) -> None:
        try:
            self._file.write(data)
        except OSError as e:
            raise StorageError(f"Cannot write {self.dest}: {e}") from e
        if self._hash is not None:
            self._hash.update(data)
        self.bytes_written += len(data)

    def close(self) -> None:
        """Flush the temporary file and move it to its final name."""
        try:
            self._file.close()
            self.tmp_path.replace(self.dest)
        except OSError as e:
            self.tmp_path.unlink(missing_ok=True)
            raise StorageError(f"Cannot store {self.dest}: {e}") from e

        if self._hash is not None:
            actual = self._hash.hexdigest()
            if actual != self.expected_checksum:
                logger.warning(
                    f"Checksum mismatch for {self.dest}: "
                    f"expected {self.expected_checksum}, got {actual}"
                )

    def abort(self) -> None:
        """Drop the temporary file."""
        self._file.close()
        self.tmp_path.unlink(missing_ok=True)


class FileStorage:
    """Local storage of one mirrored repository.

    Paths passed to the public methods are repo-relative POSIX paths, as
    found in repository metadata (e.g. ``repodata/repomd.xml``).

    Only one sync may work on a storage directory at a time.
    """

    def __init__(self, directory: Path):
        """Initialize file storage.

        Args:
            directory: Directory holding the committed generation
        """
        self.directory = Path(directory)
        self.staging_path = self.directory.with_name(f"{self.directory.name}-in-progress")
        self.old_path = self.directory.with_name(f"{self.directory.name}-old")

    def _resolve(self, root: Path, path: str) -> Path:
        """Map a repo-relative path below root.

        Raises:
            StorageError: If the path is empty, absolute or escapes root
        """
        relative = PurePosixPath(path)
        if not relative.parts or relative.is_absolute() or ".." in relative.parts:
            raise StorageError(f"Invalid repository path: {path!r}")
        return root.joinpath(*relative.parts)

    def recover(self) -> None:
        """Repair the directory layout after an interrupted commit."""
        if not self.old_path.exists():
            return
        if self.directory.exists():
            logger.info(f"Removing leftover previous generation {self.old_path}")
            shutil.rmtree(self.old_path)
        else:
            logger.warning(f"Restoring previous generation from {self.old_path}")
            self.old_path.rename(self.directory)

    def begin(self) -> None:
        """Start a new generation with an empty staging directory.

        Raises:
            StorageError: If the staging directory cannot be prepared
        """
        try:
            self.recover()
            if self.staging_path.exists():
                logger.info(f"Discarding stale staging directory {self.staging_path}")
                shutil.rmtree(self.staging_path)
            self.staging_path.mkdir(parents=True)
        except OSError as e:
            raise StorageError(f"Cannot prepare {self.staging_path}: {e}") from e

    def streaming_writer(
        self,
        path: str,
        expected_checksum: str = "",
        checksum_type: ChecksumType = ChecksumType.SHA256,
    ) -> StoringWriter:
        """Get a stream consumer storing a file in the new generation.

        Args:
            path: Repo-relative path
            expected_checksum: Upstream checksum, logged on mismatch but not enforced
            checksum_type: Algorithm of expected_checksum

        Returns:
            StoringWriter to attach to a fetch stream
        """
        return StoringWriter(self._resolve(self.staging_path, path), expected_checksum, checksum_type)

    def checksum(self, path: str, checksum_type: ChecksumType) -> str:
        """Compute the checksum of a file in the committed generation.

        Args:
            path: Repo-relative path
            checksum_type: Algorithm to use

        Returns:
            Hex-encoded digest

        Raises:
            StoredFileNotFoundError: If no file is stored at path
            ChecksumError: If the file cannot be read or the algorithm is unsupported
        """
        try:
            target = self._resolve(self.directory, path)
        except StorageError as e:
            raise ChecksumError(str(e)) from e

        if checksum_type is ChecksumType.UNKNOWN:
            raise ChecksumError(f"Unsupported checksum algorithm for {path}")

        try:
            with open(target, "rb") as f:
                return hash_fileobj(f, checksum_type)
        except FileNotFoundError as e:
            raise StoredFileNotFoundError(f"File not stored: {path}") from e
        except OSError as e:
            raise ChecksumError(f"Cannot read {target}: {e}") from e

    def recycle(self, path: str) -> None:
        """Carry a committed file over into the new generation.

        The file is hardlinked (copied when links are not possible), so the
        committed generation stays untouched until commit.

        Raises:
            RecycleError: If the file is not stored or cannot be linked/copied
        """
        try:
            source = self._resolve(self.directory, path)
            dest = self._resolve(self.staging_path, path)
        except StorageError as e:
            raise RecycleError(str(e)) from e

        if not source.is_file():
            raise RecycleError(f"Cannot recycle {path}: not stored")

        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.unlink(missing_ok=True)
            try:
                os.link(source, dest)
            except OSError:
                # Cross-device or no hardlink support
                shutil.copy2(source, dest)
        except OSError as e:
            raise RecycleError(f"Cannot recycle {path}: {e}") from e

    def commit(self) -> None:
        """Promote the staged generation and drop the previous one.

        Raises:
            CommitError: If the staged generation cannot be promoted; the
                previous generation is left in place
        """
        had_previous = self.directory.exists()

        try:
            self.staging_path.mkdir(parents=True, exist_ok=True)
            if had_previous:
                self.directory.rename(self.old_path)
        except OSError as e:
            raise CommitError(f"Cannot commit {self.directory}: {e}") from e

        try:
            self.staging_path.rename(self.directory)
        except OSError as e:
            if had_previous:
                self._rollback()
            raise CommitError(f"Cannot commit {self.directory}: {e}") from e

        if had_previous:
            try:
                shutil.rmtree(self.old_path)
            except OSError as e:
                # recover() finishes the job on the next sync
                logger.warning(f"Cannot remove previous generation {self.old_path}: {e}")

    def _rollback(self) -> None:
        try:
            self.old_path.rename(self.directory)
        except OSError as e:
            logger.error(
                f"Cannot restore {self.directory} from {self.old_path}: {e} "
                "(restored on next sync)"
            )

    def abort(self) -> None:
        """Discard the staged generation."""
        shutil.rmtree(self.staging_path, ignore_errors=True)
