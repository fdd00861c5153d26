"""Shared fixtures: a fake upstream RPM repository served through requests."""

import gzip
import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path

import pytest

from repomirror.core.config import RepositoryConfig
from repomirror.core.downloader import Downloader
from repomirror.core.output import OutputLevel, SyncOutputter
from repomirror.core.storage import FileStorage
from repomirror.plugins.rpm.sync import RpmSyncer

FEED = "https://mirror.example.com/rocky/9/BaseOS/x86_64/os"
PRIMARY_PATH = "repodata/0a1b2c-primary.xml.gz"
FILELISTS_PATH = "repodata/3d4e5f-filelists.xml.gz"

REPO_NS = "http://linux.duke.edu/metadata/repo"
COMMON_NS = "http://linux.duke.edu/metadata/common"


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FakeRaw:
    """Stand-in for the urllib3 response behind a requests.Response."""

    def __init__(self, response: "FakeResponse"):
        self.response = response

    def stream(self, amt: int = 65536, decode_content: bool | None = None):
        return self.response.raw_chunks(amt, decode_content)


class FakeResponse:
    """Minimal stand-in for a streaming requests.Response."""

    def __init__(
        self,
        body: bytes = b"",
        status_code: int = 200,
        url: str = "",
        headers: dict[str, str] | None = None,
    ):
        self.body = body
        self.status_code = status_code
        self.url = url
        self.headers = headers or {}
        self.raw = FakeRaw(self)
        self.close_count = 0

    def raw_chunks(self, chunk_size: int, decode_content: bool | None):
        body = self.body
        # urllib3 only undoes the Content-Encoding when asked to
        if decode_content and self.headers.get("Content-Encoding") == "gzip":
            body = gzip.decompress(body)
        for offset in range(0, len(body), chunk_size):
            yield body[offset : offset + chunk_size]

    def close(self) -> None:
        self.close_count += 1


@dataclass
class Package:
    location: str
    arch: str
    body: bytes
    checksum_type: str = "sha256"
    checksum: str | None = None

    @property
    def name(self) -> str:
        return Path(self.location).name.split("-")[0]


def build_repomd(entries: list[tuple[str, str, bytes]]) -> bytes:
    """Build repomd.xml from (type, location, content) tuples."""
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<repomd xmlns="{REPO_NS}" xmlns:rpm="http://linux.duke.edu/metadata/rpm">',
        "  <revision>1704672000</revision>",
    ]
    for file_type, location, content in entries:
        parts.append(
            f'  <data type="{file_type}">\n'
            f'    <checksum type="sha256">{sha256_hex(content)}</checksum>\n'
            f'    <location href="{location}"/>\n'
            f"    <size>{len(content)}</size>\n"
            "  </data>"
        )
    parts.append("</repomd>")
    return "\n".join(parts).encode("utf-8")


def build_primary(packages: list[Package]) -> bytes:
    """Build an uncompressed primary.xml."""
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<metadata xmlns="{COMMON_NS}" xmlns:rpm="http://linux.duke.edu/metadata/rpm" '
        f'packages="{len(packages)}">',
    ]
    for pkg in packages:
        checksum = pkg.checksum if pkg.checksum is not None else sha256_hex(pkg.body)
        parts.append(
            '<package type="rpm">\n'
            f"  <name>{pkg.name}</name>\n"
            f"  <arch>{pkg.arch}</arch>\n"
            '  <version epoch="0" ver="1.0" rel="1.el9"/>\n'
            f'  <checksum type="{pkg.checksum_type}" pkgid="YES">{checksum}</checksum>\n'
            f'  <location href="{pkg.location}"/>\n'
            "</package>"
        )
    parts.append("</metadata>")
    return "\n".join(parts).encode("utf-8")


class FakeUpstream:
    """Serves files of a fake repository to Downloader.session.get."""

    def __init__(self, feed: str = FEED):
        self.feed = feed
        self.files: dict[str, bytes] = {}
        self.statuses: dict[str, int] = {}
        self.encodings: dict[str, str] = {}
        self.requests: list[str] = []
        self.responses: list[FakeResponse] = []

    def publish(
        self,
        packages: list[Package],
        with_signature: bool = False,
        with_filelists: bool = True,
    ) -> None:
        """Replace the repository content."""
        self.files = {}
        primary = gzip.compress(build_primary(packages))
        entries = [("primary", PRIMARY_PATH, primary)]
        self.files[PRIMARY_PATH] = primary
        if with_filelists:
            filelists = gzip.compress(b"<filelists/>")
            entries.append(("filelists", FILELISTS_PATH, filelists))
            self.files[FILELISTS_PATH] = filelists
        self.files["repodata/repomd.xml"] = build_repomd(entries)
        if with_signature:
            self.files["repodata/repomd.xml.asc"] = b"-----BEGIN PGP SIGNATURE-----\n"
            self.files["repodata/repomd.xml.key"] = b"-----BEGIN PGP PUBLIC KEY BLOCK-----\n"
        for pkg in packages:
            self.files[pkg.location] = pkg.body

    def get(self, url: str, **kwargs) -> FakeResponse:
        self.requests.append(url)
        path = url[len(self.feed) + 1 :]
        if path in self.statuses:
            response = FakeResponse(b"error", self.statuses[path], url)
        elif path in self.files:
            headers = {"Content-Encoding": self.encodings[path]} if path in self.encodings else {}
            response = FakeResponse(self.files[path], 200, url, headers)
        else:
            response = FakeResponse(b"not found", 404, url)
        self.responses.append(response)
        return response

    def requested_paths(self) -> list[str]:
        return [url[len(self.feed) + 1 :] for url in self.requests]


@pytest.fixture
def upstream():
    """Fake upstream repository."""
    return FakeUpstream()


@pytest.fixture
def storage(tmp_path):
    """Empty storage for the mirrored repository."""
    return FileStorage(tmp_path / "mirror" / "rocky9-baseos")


@pytest.fixture
def make_syncer(storage, upstream):
    """Factory for syncers talking to the fake upstream."""

    def _make(architectures=()):
        config = RepositoryConfig(
            id="rocky9-baseos", feed=FEED, architectures=list(architectures)
        )
        downloader = Downloader(config)
        downloader.session.get = upstream.get
        return RpmSyncer(
            storage,
            config,
            downloader=downloader,
            output=SyncOutputter(OutputLevel.QUIET),
        )

    return _make


def store_committed(storage: FileStorage, path: str, content: bytes) -> Path:
    """Place a file directly into the committed generation."""
    target = storage.directory / path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(content)
    return target


@pytest.fixture
def committed_file(storage):
    """Helper placing files into the committed generation of storage."""

    def _store(path: str, content: bytes) -> Path:
        return store_committed(storage, path, content)

    return _store


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Undo logging setup done by CLI invocations."""
    root = logging.getLogger()
    level, handlers = root.level, list(root.handlers)
    yield
    root.setLevel(level)
    root.handlers[:] = handlers
