"""Checksum algorithms and streaming digest helpers."""

from __future__ import annotations

import hashlib
from enum import Enum
from typing import BinaryIO

CHUNK_SIZE = 65536


class ChecksumType(Enum):
    """Checksum algorithms understood by the sync engine."""

    SHA1 = "sha1"
    SHA256 = "sha256"
    UNKNOWN = "unknown"

    @classmethod
    def from_name(cls, name: str | None) -> "ChecksumType":
        """Map a metadata checksum type attribute to an algorithm.

        ``sha`` is the legacy spelling of SHA-1 used by old createrepo
        versions. Anything unrecognised maps to ``UNKNOWN``, which is never
        considered a match.
        """
        candidate = (name or "").strip().lower()
        if candidate in ("sha", "sha1"):
            return cls.SHA1
        if candidate == "sha256":
            return cls.SHA256
        return cls.UNKNOWN

    def new_hash(self) -> "hashlib._Hash":
        """Create a fresh hash object for this algorithm.

        Raises:
            ValueError: For ``UNKNOWN``
        """
        if self is ChecksumType.UNKNOWN:
            raise ValueError("Unsupported checksum algorithm")
        return hashlib.new(self.value)


def normalize_checksum(value: str | None) -> str:
    """Normalize a hex digest for comparison (whitespace and case)."""
    return (value or "").strip().lower()


def hash_fileobj(fileobj: BinaryIO, checksum_type: ChecksumType) -> str:
    """Compute the hex digest of a binary file object in chunks.

    Args:
        fileobj: Readable binary file object
        checksum_type: Algorithm to use

    Returns:
        Hex-encoded digest
    """
    digest = checksum_type.new_hash()
    for chunk in iter(lambda: fileobj.read(CHUNK_SIZE), b""):
        digest.update(chunk)
    return digest.hexdigest()
