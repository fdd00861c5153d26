"""
repomirror - Incremental RPM repository mirroring

A CLI tool that keeps a local copy of a remote yum repository up to date,
downloading only packages whose checksums changed since the last sync.
"""

__version__ = "0.1.0"
__license__ = "MIT"

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _version

try:
    __version__ = _version("repomirror")
except PackageNotFoundError:
    # Package not installed yet
    pass
