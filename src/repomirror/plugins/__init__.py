"""Plugin system for repomirror repository types."""

from repomirror.plugins.rpm.sync import RpmSyncer

__all__ = [
    "RpmSyncer",
]
