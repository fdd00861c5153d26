"""RPM (yum/dnf) repository support."""

from repomirror.plugins.rpm.filters import ArchitectureFilter
from repomirror.plugins.rpm.parsers import decode_index, decode_manifest, iter_manifest
from repomirror.plugins.rpm.sync import RpmSyncer

__all__ = [
    "ArchitectureFilter",
    "RpmSyncer",
    "decode_index",
    "decode_manifest",
    "iter_manifest",
]
