"""
Core functionality for repomirror.

This package provides core services like configuration management,
HTTP fetching and generation-based storage.
"""

from repomirror.core.config import (
    AuthConfig,
    ConfigLoader,
    DownloadConfig,
    GlobalConfig,
    ProxyConfig,
    RepositoryConfig,
    SSLConfig,
    StorageConfig,
    create_example_config,
    load_config,
)
from repomirror.core.downloader import Downloader, FetchStream, StreamConsumer
from repomirror.core.storage import FileStorage

__all__ = [
    "AuthConfig",
    "ConfigLoader",
    "DownloadConfig",
    "Downloader",
    "FetchStream",
    "FileStorage",
    "GlobalConfig",
    "ProxyConfig",
    "RepositoryConfig",
    "SSLConfig",
    "StorageConfig",
    "StreamConsumer",
    "create_example_config",
    "load_config",
]
