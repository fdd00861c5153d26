"""Streaming decompression for RPM metadata."""

from __future__ import annotations

import bz2
import gzip
import lzma
from typing import BinaryIO, Literal

import zstandard as zstd

from repomirror.core.errors import DecompressionError

CompressionFormat = Literal["gzip", "zstandard", "bzip2", "xz", "none"]


def detect_compression(filename: str) -> CompressionFormat:
    """Detect compression format from filename extension.

    Primary manifests are gzip-compressed unless the name says otherwise, so
    unrecognised extensions map to gzip.

    Args:
        filename: Filename to check (e.g., "primary.xml.gz", "primary.xml.zst")

    Returns:
        Compression format
    """
    if filename.endswith(".gz"):
        return "gzip"
    elif filename.endswith(".zst"):
        return "zstandard"
    elif filename.endswith(".bz2"):
        return "bzip2"
    elif filename.endswith(".xz"):
        return "xz"
    elif filename.endswith(".xml"):
        return "none"
    return "gzip"


def open_decompressed(fileobj: BinaryIO, compression: CompressionFormat) -> BinaryIO:
    """Wrap a binary stream in a decompressing reader.

    Decompression happens lazily while the returned object is read; corrupt
    input surfaces as an exception from ``read()``. Closing the returned
    reader leaves fileobj open.

    Args:
        fileobj: Readable stream of compressed bytes
        compression: Compression format

    Returns:
        Readable stream of decompressed bytes

    Raises:
        DecompressionError: If compression format is unknown
    """
    if compression == "gzip":
        return gzip.GzipFile(fileobj=fileobj, mode="rb")
    elif compression == "zstandard":
        dctx = zstd.ZstdDecompressor()
        return dctx.stream_reader(fileobj, closefd=False)
    elif compression == "bzip2":
        return bz2.BZ2File(fileobj, mode="rb")
    elif compression == "xz":
        return lzma.LZMAFile(fileobj, mode="rb")
    elif compression == "none":
        return fileobj
    raise DecompressionError(f"Unknown compression format: {compression}")
