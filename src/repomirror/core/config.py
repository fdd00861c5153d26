"""
Configuration for repomirror.

Settings are read from a YAML file and validated with Pydantic. Repository
definitions may be spread over several files via an ``include:`` glob.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

AUTH_TYPES = ("client_cert", "basic", "bearer", "custom")

CONFIG_ENV_VAR = "REPOMIRROR_CONFIG"

DEFAULT_CONFIG_PATHS = [
    Path("/etc/repomirror/config.yaml"),
    Path.home() / ".config" / "repomirror" / "config.yaml",
    Path("config.yaml"),
]


class ProxyConfig(BaseModel):
    """Forward proxy used to reach upstream repositories."""

    http_proxy: Optional[str] = None
    https_proxy: Optional[str] = None
    no_proxy: Optional[str] = None  # comma separated host list
    username: Optional[str] = None
    password: Optional[str] = None


class SSLConfig(BaseModel):
    """TLS settings for upstream connections."""

    verify: bool = True

    # Trust anchors: a bundle on disk, or PEM text embedded in the config
    ca_bundle: Optional[str] = None
    ca_cert: Optional[str] = None

    # mTLS
    client_cert: Optional[str] = None
    client_key: Optional[str] = None


class AuthConfig(BaseModel):
    """Credentials presented to an upstream repository."""

    type: str

    # client_cert: explicit pair, or an entitlement directory (RHEL CDN)
    cert_file: Optional[str] = None
    key_file: Optional[str] = None
    cert_dir: Optional[str] = None

    # basic
    username: Optional[str] = None
    password: Optional[str] = None

    # bearer
    token: Optional[str] = None

    # custom: sent verbatim, e.g. {"X-API-Key": "secret"}
    headers: Optional[Dict[str, str]] = None

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        if v not in AUTH_TYPES:
            raise ValueError(f"Invalid auth type: {v}. Must be one of {list(AUTH_TYPES)}")
        return v


class DownloadConfig(BaseModel):
    """HTTP transfer tuning."""

    timeout: int = 300  # seconds, per request
    chunk_size: int = 65536  # bytes handed to stream consumers at a time

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v < 1:
            raise ValueError("timeout must be at least 1 second")
        return v

    @field_validator("chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        if v < 1024:
            raise ValueError("chunk_size must be at least 1024 bytes")
        return v


class RepositoryConfig(BaseModel):
    """One upstream RPM repository to mirror."""

    id: str
    name: Optional[str] = None
    feed: str  # base URL, the directory holding repodata/
    enabled: bool = True

    # Empty means every architecture; noarch always passes
    architectures: List[str] = Field(default_factory=list)

    # Overrides {storage.base_path}/{id}
    path: Optional[str] = None

    auth: Optional[AuthConfig] = None

    # Take precedence over the global proxy/ssl sections
    proxy: Optional[ProxyConfig] = None
    ssl: Optional[SSLConfig] = None

    @field_validator("feed")
    @classmethod
    def validate_feed(cls, v: str) -> str:
        """Require an HTTP(S) URL and drop trailing slashes."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Invalid feed URL: {v}. Must start with http:// or https://")
        return v.rstrip("/")

    @property
    def display_name(self) -> str:
        return self.name or self.id


class StorageConfig(BaseModel):
    """Where mirrored repositories live on disk."""

    base_path: str = "/var/lib/repomirror"

    def get_repository_path(self, repo: RepositoryConfig) -> Path:
        """Get the committed-generation directory of a repository."""
        return Path(repo.path) if repo.path else Path(self.base_path) / repo.id


class GlobalConfig(BaseModel):
    """Top-level configuration document."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    download: DownloadConfig = Field(default_factory=DownloadConfig)
    proxy: Optional[ProxyConfig] = None
    ssl: Optional[SSLConfig] = None
    repositories: List[RepositoryConfig] = Field(default_factory=list)

    # Glob, relative to the main file, of files contributing more repositories
    include: Optional[str] = None

    def get_repository(self, repo_id: str) -> Optional[RepositoryConfig]:
        return next((repo for repo in self.repositories if repo.id == repo_id), None)

    def get_enabled_repositories(self) -> List[RepositoryConfig]:
        return [repo for repo in self.repositories if repo.enabled]


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path) as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"YAML syntax error in {path}:\n{e}") from e


class ConfigLoader:
    """Reads a configuration file and the files it includes."""

    def __init__(self, config_path: Path):
        self.config_path = Path(config_path)

    def load(self) -> GlobalConfig:
        """Parse and validate the configuration.

        Returns:
            GlobalConfig instance

        Raises:
            FileNotFoundError: If the main file is missing
            ValueError: On YAML syntax or validation errors
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        config_data = _read_yaml(self.config_path)

        if config_data.get("include"):
            repositories = list(config_data.get("repositories") or [])
            repositories.extend(self._load_includes(config_data["include"]))
            config_data["repositories"] = repositories

        try:
            return GlobalConfig(**config_data)
        except Exception as e:
            raise ValueError(f"Configuration validation error in {self.config_path}:\n{e}") from e

    def _load_includes(self, include_pattern: str) -> List[Dict[str, Any]]:
        """Collect the repository definitions of all included YAML files.

        Args:
            include_pattern: Glob relative to the main file (e.g. "conf.d/*.yaml")

        Returns:
            Repository definitions in file name order
        """
        matches = sorted(self.config_path.parent.glob(include_pattern))
        repositories: List[Dict[str, Any]] = []
        for path in matches:
            if path.is_file() and path.suffix in (".yaml", ".yml"):
                repositories.extend(_read_yaml(path).get("repositories") or [])
        return repositories


def load_config(config_path: Optional[Path] = None) -> GlobalConfig:
    """Locate and load the configuration.

    Lookup order: config_path (the --config flag), then $REPOMIRROR_CONFIG,
    then DEFAULT_CONFIG_PATHS. An explicitly named file must exist; if none
    of the default locations has one, built-in defaults are used.

    Raises:
        FileNotFoundError: If an explicitly named file is missing
        ValueError: If the file is invalid
    """
    if config_path:
        return ConfigLoader(config_path).load()

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        if not Path(env_path).exists():
            raise FileNotFoundError(
                f"Configuration file not found: {env_path} (from {CONFIG_ENV_VAR})"
            )
        return ConfigLoader(Path(env_path)).load()

    for path in DEFAULT_CONFIG_PATHS:
        if path.exists():
            return ConfigLoader(path).load()
    return GlobalConfig()


def create_example_config(output_path: Path) -> None:
    """Write an example configuration to output_path."""
    example_config = {
        "storage": {"base_path": "/var/lib/repomirror"},
        "download": {"timeout": 300, "chunk_size": 65536},
        "proxy": {
            "https_proxy": "http://squid.example.net:3128",
            "no_proxy": "localhost,127.0.0.1",
        },
        "repositories": [
            {
                "id": "rocky9-baseos",
                "name": "Rocky Linux 9 BaseOS",
                "feed": "https://dl.rockylinux.org/pub/rocky/9/BaseOS/x86_64/os",
                "enabled": True,
                "architectures": ["x86_64"],
            },
            {
                "id": "rhel9-baseos",
                "name": "RHEL 9 BaseOS",
                "feed": "https://cdn.redhat.com/content/dist/rhel9/9/x86_64/baseos/os",
                "enabled": False,
                "auth": {"type": "client_cert", "cert_dir": "/etc/pki/entitlement"},
            },
        ],
        "include": "conf.d/*.yaml",
    }

    with open(output_path, "w") as f:
        yaml.safe_dump(example_config, f, default_flow_style=False, sort_keys=False)
