"""
Tests for the RPM sync plugin.

This module tests RpmSyncer end to end against a fake upstream, focusing on
the download / recycle / skip classification and on leaving the previous
generation intact when a sync fails.
"""

import hashlib
from unittest.mock import Mock

import pytest

from conftest import FEED, FILELISTS_PATH, PRIMARY_PATH, Package, sha256_hex
from repomirror.core.checksums import ChecksumType
from repomirror.core.errors import DecompressionError, HttpError
from repomirror.plugins.rpm.models import ClassificationResult, PackageRecord

PKG_A = Package("pkgs/a-1.0.rpm", "x86_64", b"package a contents")
PKG_B = Package("pkgs/b-2.0.rpm", "x86_64", b"package b contents")


class TestInitialSync:
    """Tests for syncing into an empty storage."""

    def test_empty_store_downloads_package(self, make_syncer, upstream, storage):
        """Test that every package is downloaded into an empty storage."""
        upstream.publish([PKG_A])
        syncer = make_syncer()

        result = syncer.sync()

        assert result.packages_downloaded == 1
        assert result.packages_recycled == 0
        assert result.bytes_downloaded == len(PKG_A.body)
        assert (storage.directory / "pkgs/a-1.0.rpm").read_bytes() == PKG_A.body
        # Committed: staging directory promoted
        assert not storage.staging_path.exists()
        assert not storage.old_path.exists()

    def test_metadata_files_stored_verbatim(self, make_syncer, upstream, storage):
        """Test that repomd.xml, primary and auxiliary metadata are stored as served."""
        upstream.publish([PKG_A])

        result = make_syncer().sync()

        for path in ("repodata/repomd.xml", PRIMARY_PATH, FILELISTS_PATH):
            assert (storage.directory / path).read_bytes() == upstream.files[path]
        assert result.metadata_files_downloaded == 3

    def test_gzip_content_encoding_stored_compressed(self, make_syncer, upstream, storage):
        """Test that a .gz file served with Content-Encoding: gzip keeps its compression."""
        upstream.publish([PKG_A])
        upstream.encodings[PRIMARY_PATH] = "gzip"

        result = make_syncer().sync()

        assert (storage.directory / PRIMARY_PATH).read_bytes() == upstream.files[PRIMARY_PATH]
        assert result.packages_downloaded == 1

    def test_metadata_fetched_before_packages(self, make_syncer, upstream):
        """Test the fetch order: index, index entries, signatures, packages."""
        upstream.publish([PKG_A])

        make_syncer().sync()

        assert upstream.requested_paths() == [
            "repodata/repomd.xml",
            PRIMARY_PATH,
            FILELISTS_PATH,
            "repodata/repomd.xml.asc",
            "repodata/repomd.xml.key",
            "pkgs/a-1.0.rpm",
        ]

    def test_every_response_released_once(self, make_syncer, upstream):
        """Test that each HTTP response is closed exactly once."""
        upstream.publish([PKG_A, PKG_B], with_signature=True)

        make_syncer().sync()

        assert upstream.responses
        assert all(response.close_count == 1 for response in upstream.responses)


class TestIncrementalSync:
    """Tests for syncing over a previous generation."""

    def test_second_sync_downloads_nothing(self, make_syncer, upstream):
        """Test that syncing an unchanged repository twice only recycles."""
        upstream.publish([PKG_A, PKG_B])
        make_syncer().sync()
        upstream.requests.clear()

        result = make_syncer().sync()

        assert result.packages_downloaded == 0
        assert result.packages_recycled == 2
        assert "pkgs/a-1.0.rpm" not in upstream.requested_paths()
        assert "pkgs/b-2.0.rpm" not in upstream.requested_paths()

    def test_matching_local_file_recycled(self, make_syncer, upstream, storage, committed_file):
        """Test that a local file with the upstream checksum is kept without fetching."""
        upstream.publish([PKG_A])
        committed_file("pkgs/a-1.0.rpm", PKG_A.body)

        result = make_syncer().sync()

        assert result.packages_downloaded == 0
        assert result.packages_recycled == 1
        assert "pkgs/a-1.0.rpm" not in upstream.requested_paths()
        assert (storage.directory / "pkgs/a-1.0.rpm").read_bytes() == PKG_A.body

    def test_checksum_mismatch_redownloads(self, make_syncer, upstream, storage, committed_file):
        """Test that a corrupted local file is downloaded again."""
        upstream.publish([PKG_A])
        committed_file("pkgs/a-1.0.rpm", b"truncated")

        result = make_syncer().sync()

        assert result.packages_downloaded == 1
        assert result.packages_recycled == 0
        assert (storage.directory / "pkgs/a-1.0.rpm").read_bytes() == PKG_A.body

    def test_removed_package_gone_after_commit(self, make_syncer, upstream, storage):
        """Test that files no longer referenced upstream disappear."""
        upstream.publish([PKG_A, PKG_B])
        make_syncer().sync()

        upstream.publish([PKG_A])
        make_syncer().sync()

        assert (storage.directory / "pkgs/a-1.0.rpm").exists()
        assert not (storage.directory / "pkgs/b-2.0.rpm").exists()

    def test_unknown_checksum_type_forces_download(
        self, make_syncer, upstream, storage, committed_file
    ):
        """Test that a package with an unsupported checksum type is never recycled."""
        pkg = Package(
            "pkgs/c-3.0.rpm",
            "x86_64",
            b"package c",
            checksum_type="md5",
            checksum=hashlib.md5(b"package c").hexdigest(),
        )
        upstream.publish([pkg])
        committed_file("pkgs/c-3.0.rpm", b"package c")

        result = make_syncer().sync()

        assert result.packages_downloaded == 1
        assert result.packages_recycled == 0
        assert "pkgs/c-3.0.rpm" in upstream.requested_paths()

    def test_sha1_checksum_recycled(self, make_syncer, upstream, committed_file):
        """Test that legacy "sha" checksums are compared with SHA-1."""
        pkg = Package(
            "pkgs/d-4.0.rpm",
            "noarch",
            b"package d",
            checksum_type="sha",
            checksum=hashlib.sha1(b"package d").hexdigest(),
        )
        upstream.publish([pkg])
        committed_file("pkgs/d-4.0.rpm", b"package d")

        result = make_syncer().sync()

        assert result.packages_recycled == 1

    def test_unreadable_local_file_skipped(self, make_syncer, upstream, storage):
        """Test that a package whose local checksum fails is skipped, not fetched."""
        upstream.publish([PKG_A, PKG_B])
        # A directory in place of the file makes hashing fail
        (storage.directory / "pkgs/a-1.0.rpm").mkdir(parents=True)

        result = make_syncer().sync()

        assert result.packages_skipped == 1
        assert result.packages_downloaded == 1
        assert "pkgs/a-1.0.rpm" not in upstream.requested_paths()
        assert not (storage.directory / "pkgs/a-1.0.rpm").exists()


class TestClassification:
    """Tests for RpmSyncer.classify()."""

    def test_architecture_filter(self, make_syncer):
        """Test that noarch passes an arch filter and foreign arches are dropped."""
        syncer = make_syncer(architectures=["x86_64"])
        records = [
            PackageRecord("x86_64", "pkgs/a.rpm", ChecksumType.SHA256, "aa"),
            PackageRecord("noarch", "pkgs/b.rpm", ChecksumType.SHA256, "bb"),
            PackageRecord("i686", "pkgs/c.rpm", ChecksumType.SHA256, "cc"),
        ]

        result = syncer.classify(records)

        assert [pkg.location for pkg in result.to_download] == ["pkgs/a.rpm", "pkgs/b.rpm"]
        assert result.to_recycle == []
        assert result.skipped == 0

    def test_empty_filter_accepts_all(self, make_syncer):
        """Test that no configured architectures means every package is considered."""
        syncer = make_syncer()
        records = [
            PackageRecord("aarch64", "pkgs/a.rpm", ChecksumType.SHA256, "aa"),
            PackageRecord("i686", "pkgs/c.rpm", ChecksumType.SHA256, "cc"),
        ]

        result = syncer.classify(records)

        assert len(result.to_download) == 2

    def test_checksum_comparison_ignores_case(self, make_syncer, committed_file):
        """Test that upper-case upstream digests match local ones."""
        committed_file("pkgs/a.rpm", b"content")
        record = PackageRecord(
            "x86_64", "pkgs/a.rpm", ChecksumType.SHA256, sha256_hex(b"content").upper()
        )

        result = make_syncer().classify([record])

        assert result.to_recycle == [record]

    def test_filtered_arch_not_downloaded(self, make_syncer, upstream, storage):
        """Test that a filtered-out package is neither fetched nor stored."""
        foreign = Package("pkgs/e-1.0.i686.rpm", "i686", b"i686 package")
        upstream.publish([PKG_A, foreign])

        result = make_syncer(architectures=["x86_64"]).sync()

        assert result.packages_total == 1
        assert "pkgs/e-1.0.i686.rpm" not in upstream.requested_paths()
        assert not (storage.directory / "pkgs/e-1.0.i686.rpm").exists()

    def test_skipped_package_reported_once(self, make_syncer, storage):
        """Test that an unreadable local file yields a single warning."""
        (storage.directory / "pkgs/a.rpm").mkdir(parents=True)
        syncer = make_syncer()
        syncer.output = Mock()
        record = PackageRecord("x86_64", "pkgs/a.rpm", ChecksumType.SHA256, "aa")

        result = syncer.classify([record])

        assert result.skipped == 1
        syncer.output.warning.assert_called_once()
        assert "pkgs/a.rpm" in syncer.output.warning.call_args.args[0]

    def test_merge_prefers_download(self):
        """Test merging manifests that list the same location."""
        fresh = PackageRecord("x86_64", "pkgs/a.rpm", ChecksumType.SHA256, "new")
        stale = PackageRecord("x86_64", "pkgs/a.rpm", ChecksumType.SHA256, "old")
        shared = PackageRecord("noarch", "pkgs/b.rpm", ChecksumType.SHA256, "bb")
        first = ClassificationResult(to_recycle=[stale, shared])
        second = ClassificationResult(to_download=[fresh], to_recycle=[shared], skipped=1)

        first.merge(second)

        assert first.to_download == [fresh]
        assert first.to_recycle == [shared]
        assert first.skipped == 1

    def test_merge_keeps_first_download(self):
        """Test that a location downloaded by both manifests is fetched once."""
        a1 = PackageRecord("x86_64", "pkgs/a.rpm", ChecksumType.SHA256, "aa")
        a2 = PackageRecord("x86_64", "pkgs/a.rpm", ChecksumType.SHA256, "aa")
        result = ClassificationResult(to_download=[a1])

        result.merge(ClassificationResult(to_download=[a2]))

        assert result.to_download == [a1]


class TestFailures:
    """Tests for error handling during sync."""

    def test_missing_signature_files_tolerated(self, make_syncer, upstream, storage):
        """Test that 404 on repomd.xml.asc and repomd.xml.key is not an error."""
        upstream.publish([PKG_A], with_signature=False)

        make_syncer().sync()

        assert not (storage.directory / "repodata/repomd.xml.asc").exists()

    def test_signature_files_stored(self, make_syncer, upstream, storage):
        """Test that signature files are mirrored when upstream has them."""
        upstream.publish([PKG_A], with_signature=True)

        result = make_syncer().sync()

        assert (storage.directory / "repodata/repomd.xml.asc").exists()
        assert (storage.directory / "repodata/repomd.xml.key").exists()
        assert result.metadata_files_downloaded == 5

    def test_signature_server_error_fatal(self, make_syncer, upstream, storage):
        """Test that errors other than 404 on signature files abort the sync."""
        upstream.publish([PKG_A])
        upstream.statuses["repodata/repomd.xml.asc"] = 503

        with pytest.raises(HttpError) as exc_info:
            make_syncer().sync()

        assert exc_info.value.status_code == 503
        assert not storage.directory.exists()
        assert not storage.staging_path.exists()

    def test_missing_repomd_fatal(self, make_syncer, upstream, storage):
        """Test that a missing repomd.xml aborts the sync."""
        with pytest.raises(HttpError) as exc_info:
            make_syncer().sync()

        assert exc_info.value.is_not_found
        assert not storage.directory.exists()

    def test_failed_download_keeps_previous_generation(
        self, make_syncer, upstream, storage
    ):
        """Test that a failed package download leaves the committed generation intact."""
        upstream.publish([PKG_A, PKG_B])
        make_syncer().sync()
        old_repomd = (storage.directory / "repodata/repomd.xml").read_bytes()

        new_b = Package("pkgs/b-2.0.rpm", "x86_64", b"rebuilt package b")
        upstream.publish([PKG_A, new_b])
        upstream.statuses["pkgs/b-2.0.rpm"] = 500

        with pytest.raises(HttpError):
            make_syncer().sync()

        assert (storage.directory / "pkgs/b-2.0.rpm").read_bytes() == PKG_B.body
        assert (storage.directory / "repodata/repomd.xml").read_bytes() == old_repomd
        assert not storage.staging_path.exists()

    def test_corrupt_primary_fatal(self, make_syncer, upstream, storage):
        """Test that a primary manifest that is not gzip aborts the sync."""
        upstream.publish([PKG_A])
        upstream.files[PRIMARY_PATH] = b"<metadata/>"

        with pytest.raises(DecompressionError):
            make_syncer().sync()

        assert not storage.directory.exists()
        assert "pkgs/a-1.0.rpm" not in upstream.requested_paths()

    def test_url_for(self, make_syncer):
        """Test URL building for repo-relative paths."""
        syncer = make_syncer()
        assert syncer.url_for("repodata/repomd.xml") == f"{FEED}/repodata/repomd.xml"
        assert syncer.url_for("Packages/b/bash.rpm") == f"{FEED}/Packages/b/bash.rpm"
