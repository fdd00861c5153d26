"""
RPM repository metadata parsers.

This module decodes repomd.xml and primary manifests incrementally while
they are being downloaded. Both namespaced documents (as produced by
createrepo) and bare ones are accepted.
"""

from __future__ import annotations

import logging
import lzma
import xml.etree.ElementTree as ET
import zlib
from typing import BinaryIO, Iterator

import zstandard as zstd

from repomirror.core.checksums import ChecksumType
from repomirror.core.errors import DecompressionError, MalformedMetadataError
from repomirror.plugins.rpm.compression import CompressionFormat, open_decompressed
from repomirror.plugins.rpm.models import (
    MetadataEntry,
    PackageManifest,
    PackageRecord,
    RepositoryIndex,
)

logger = logging.getLogger(__name__)

# Errors raised by the decompressors on corrupt or truncated input
_DECOMPRESSION_ERRORS = (OSError, EOFError, zlib.error, lzma.LZMAError, zstd.ZstdError)


def _local_name(tag: str) -> str:
    """Strip the namespace from an element tag."""
    return tag.rsplit("}", 1)[-1]


def _find(elem: ET.Element, name: str) -> ET.Element | None:
    """Find a direct child by local name, ignoring namespaces."""
    for child in elem:
        if _local_name(child.tag) == name:
            return child
    return None


def _text(elem: ET.Element | None) -> str | None:
    if elem is None or elem.text is None:
        return None
    return elem.text.strip()


def _iter_elements(source: BinaryIO, root_name: str, name: str) -> Iterator[ET.Element]:
    """Yield the top-level ``name`` elements of a document as they complete.

    Elements are cleared after being yielded so memory use does not grow
    with the document size.

    Raises:
        MalformedMetadataError: On XML errors or an unexpected root element
    """
    root = None
    try:
        for event, elem in ET.iterparse(source, events=("start", "end")):
            if event == "start":
                if root is None:
                    root = elem
                    if _local_name(elem.tag) != root_name:
                        raise MalformedMetadataError(
                            f"Expected <{root_name}> document, got <{_local_name(elem.tag)}>"
                        )
                continue
            if elem is not root and _local_name(elem.tag) == name:
                yield elem
                elem.clear()
                root.clear()
    except ET.ParseError as e:
        raise MalformedMetadataError(f"Invalid <{root_name}> document: {e}") from e

    if root is None:
        raise MalformedMetadataError(f"Empty <{root_name}> document")


def decode_index(stream: BinaryIO) -> RepositoryIndex:
    """Parse repomd.xml.

    Args:
        stream: Readable stream of repomd.xml

    Returns:
        RepositoryIndex with one entry per ``<data>`` element, in document order

    Raises:
        MalformedMetadataError: On XML errors
    """
    index = RepositoryIndex()
    for data_elem in _iter_elements(stream, "repomd", "data"):
        file_type = data_elem.get("type")
        location_elem = _find(data_elem, "location")
        location = location_elem.get("href") if location_elem is not None else None
        if not file_type or not location:
            logger.warning("Skipping repomd.xml <data> entry without type or location")
            continue

        checksum_elem = _find(data_elem, "checksum")
        index.entries.append(
            MetadataEntry(
                type=file_type,
                location=location,
                checksum=_text(checksum_elem),
                checksum_type=ChecksumType.from_name(
                    checksum_elem.get("type") if checksum_elem is not None else None
                ),
            )
        )
    return index


def _package_record(pkg_elem: ET.Element) -> PackageRecord | None:
    location_elem = _find(pkg_elem, "location")
    location = location_elem.get("href") if location_elem is not None else None
    if not location:
        logger.warning(f"Skipping package without location: {_text(_find(pkg_elem, 'name'))}")
        return None

    checksum_elem = _find(pkg_elem, "checksum")
    return PackageRecord(
        architecture=_text(_find(pkg_elem, "arch")) or "",
        location=location,
        checksum_type=ChecksumType.from_name(
            checksum_elem.get("type") if checksum_elem is not None else None
        ),
        checksum=_text(checksum_elem) or "",
        name=_text(_find(pkg_elem, "name")),
    )


def iter_manifest(stream: BinaryIO, compression: CompressionFormat = "gzip") -> Iterator[PackageRecord]:
    """Decompress and parse a primary manifest, yielding packages as they are read.

    Args:
        stream: Readable stream of the compressed manifest
        compression: Compression format of the stream

    Yields:
        PackageRecord per ``<package>`` element

    Raises:
        DecompressionError: If the stream cannot be decompressed
        MalformedMetadataError: If the decompressed document is not valid
    """
    reader = open_decompressed(stream, compression)
    try:
        for pkg_elem in _iter_elements(reader, "metadata", "package"):
            record = _package_record(pkg_elem)
            if record is not None:
                yield record
    except _DECOMPRESSION_ERRORS as e:
        raise DecompressionError(f"Cannot decompress {compression} manifest: {e}") from e
    finally:
        if reader is not stream:
            reader.close()


def decode_manifest(stream: BinaryIO, compression: CompressionFormat = "gzip") -> PackageManifest:
    """Decompress and parse a whole primary manifest.

    Args:
        stream: Readable stream of the compressed manifest
        compression: Compression format of the stream

    Returns:
        PackageManifest

    Raises:
        DecompressionError: If the stream cannot be decompressed
        MalformedMetadataError: If the decompressed document is not valid
    """
    return PackageManifest(packages=list(iter_manifest(stream, compression)))
