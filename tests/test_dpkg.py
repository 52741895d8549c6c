"""Tests for the dpkg package database scanner."""

import hashlib
from unittest.mock import patch

import pytest

from conftest import Symlink
from core.context import ScanContext
from core.exceptions import InvariantViolation, ScanCancelled, ScannerException
from core.layer import Layer
from core.models import Package, PackageKind, ScannerKind
from scanners.deb822 import parse_source_field, parse_stanzas
from scanners.dpkg import DpkgScanner


@pytest.fixture
def scanner():
    return DpkgScanner()


def packages_by_name(packages):
    return {p.name: p for p in packages}


class TestDeb822:
    """Tests for control-file parsing."""

    def test_stanzas_and_continuations(self):
        """Test field names are case-insensitive and continuations are kept."""
        stanzas = parse_stanzas(
            b"Package: foo\nDescription: short\n more text\n\n\n# comment\nPACKAGE: bar\n"
        )
        assert stanzas == [
            {"package": "foo", "description": "short\nmore text"},
            {"package": "bar"},
        ]

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("bar", ("bar", None)),
            ("bar (2.0-1)", ("bar", "2.0-1")),
            ("shadow (1:4.8.1-1ubuntu5)", ("shadow", "1:4.8.1-1ubuntu5")),
            ("  glibc  ", ("glibc", None)),
        ],
    )
    def test_source_field(self, value, expected):
        assert parse_source_field(value) == expected


class TestParseStatus:
    """Tests for status file parsing."""

    def test_single_binary_package(self):
        """Test a plain stanza yields one BINARY package with no source."""
        packages = DpkgScanner.parse_status(
            b"Package: foo\nVersion: 1.0\nArchitecture: amd64\n", "var/lib/dpkg/status"
        )
        assert packages == [
            Package(
                name="foo",
                version="1.0",
                kind=PackageKind.BINARY,
                arch="amd64",
                package_db="var/lib/dpkg/status",
            )
        ]

    def test_source_package_shares_binary_version(self):
        """Test a bare Source field synthesizes a SOURCE package at the binary version."""
        (pkg,) = DpkgScanner.parse_status(
            b"Package: foo\nVersion: 1.0\nArchitecture: amd64\nSource: bar\n", "var/lib/dpkg/status"
        )
        assert pkg.source == Package(
            name="bar", version="1.0", kind=PackageKind.SOURCE, package_db="var/lib/dpkg/status"
        )

    def test_source_package_embedded_version(self):
        """Test an explicit version in the Source field takes precedence."""
        (pkg,) = DpkgScanner.parse_status(
            b"Package: foo\nVersion: 1.0+b1\nSource: bar (1.0)\n", "var/lib/dpkg/status"
        )
        assert pkg.source.name == "bar"
        assert pkg.source.version == "1.0"

    def test_skips_removed_packages(self, sample_status):
        """Test packages with only configuration files left are skipped."""
        packages = DpkgScanner.parse_status(sample_status.encode(), "var/lib/dpkg/status")
        assert [p.name for p in packages] == ["libc6", "bash", "login"]

    def test_skips_stanzas_without_package(self):
        assert DpkgScanner.parse_status(b"Version: 1.0\n", "db/status") == []


class TestDpkgScanner:
    """Tests for scanning layers."""

    def test_identity(self, scanner):
        identity = scanner.identity()
        assert identity.name == "dpkg"
        assert identity.kind == ScannerKind.PACKAGE

    def test_absent_without_database(self, scanner, make_layer, ctx):
        """Test a layer without dpkg files is absent, not empty."""
        layer = make_layer({"etc/os-release": "ID=ubuntu\n"})
        assert scanner.scan(ctx, layer) is None

    def test_partial_database_is_not_a_database(self, scanner, make_layer, ctx):
        """Test a directory with only one of the required files is ignored."""
        layer = make_layer({"var/lib/dpkg/status": "Package: foo\nVersion: 1.0\n"})
        assert scanner.scan(ctx, layer) is None

    def test_required_files_must_share_directory(self, scanner, make_layer, ctx):
        layer = make_layer(
            {
                "var/lib/dpkg/status": "Package: foo\nVersion: 1.0\n",
                "var/lib/other/available": "",
            }
        )
        assert scanner.scan(ctx, layer) is None

    def test_empty_database(self, scanner, make_layer, ctx):
        """Test a database with no packages yields an empty list."""
        layer = make_layer({"var/lib/dpkg/status": "", "var/lib/dpkg/available": ""})
        assert scanner.scan(ctx, layer) == []

    def test_scan_database(self, scanner, make_layer, ctx, dpkg_layer_entries):
        """Test packages, sources and provenance from a full database."""
        layer = make_layer(dpkg_layer_entries)
        packages = packages_by_name(scanner.scan(ctx, layer))

        assert set(packages) == {"libc6", "bash", "login"}
        assert all(p.package_db == "var/lib/dpkg/status" for p in packages.values())
        assert packages["libc6"].source.name == "glibc"
        assert packages["libc6"].source.version == "2.31-0ubuntu9.9"
        assert packages["login"].source.version == "1:4.8.1-1ubuntu5"
        assert packages["bash"].source is None

    def test_metadata_sets_repository_hint(self, scanner, make_layer, ctx, dpkg_layer_entries):
        """Test info/<name>.md5sums fingerprints the matching package."""
        layer = make_layer(dpkg_layer_entries)
        packages = packages_by_name(scanner.scan(ctx, layer))

        expected = hashlib.md5(dpkg_layer_entries["var/lib/dpkg/info/bash.md5sums"].encode()).hexdigest()
        assert packages["bash"].repository_hint == expected
        assert packages["libc6"].repository_hint == ""

    def test_arch_qualified_metadata(self, scanner, make_layer, ctx, dpkg_layer_entries):
        entries = dict(dpkg_layer_entries)
        entries["var/lib/dpkg/info/libc6:amd64.md5sums"] = "abc  lib/libc.so.6\n"
        packages = packages_by_name(scanner.scan(ctx, make_layer(entries)))
        assert packages["libc6"].repository_hint == hashlib.md5(b"abc  lib/libc.so.6\n").hexdigest()

    def test_metadata_for_unknown_package_ignored(self, scanner, make_layer, ctx, dpkg_layer_entries):
        """Test metadata for a package not in the database is not an error."""
        entries = dict(dpkg_layer_entries)
        entries["var/lib/dpkg/info/ghost.md5sums"] = "xyz  usr/bin/ghost\n"
        packages = scanner.scan(ctx, make_layer(entries))
        assert "ghost" not in packages_by_name(packages)
        assert len(packages) == 3

    def test_multiple_databases(self, scanner, make_layer, ctx, dpkg_layer_entries):
        """Test every confirmed database directory is read with its own provenance."""
        entries = dict(dpkg_layer_entries)
        entries["opt/chroot/var/lib/dpkg/status"] = "Package: zlib1g\nVersion: 1.2.11\n"
        entries["opt/chroot/var/lib/dpkg/available"] = ""
        packages = scanner.scan(ctx, make_layer(entries))

        dbs = {p.name: p.package_db for p in packages}
        assert dbs["zlib1g"] == "opt/chroot/var/lib/dpkg/status"
        assert dbs["bash"] == "var/lib/dpkg/status"

    def test_database_vanished_is_invariant_violation(self, scanner, make_layer, ctx):
        """Test a status file that is no longer a regular file fails the scan."""
        layer = make_layer(
            {
                "var/lib/dpkg/status": Symlink("status.real"),
                "var/lib/dpkg/available": "",
            }
        )
        with patch.object(DpkgScanner, "_locate", return_value=["var/lib/dpkg"]):
            with pytest.raises(InvariantViolation):
                scanner.scan(ctx, layer)

    def test_archive_ends_before_status_is_absent(self, scanner, make_layer, ctx):
        """Test a database whose status file is never reached is treated as absent."""
        layer = make_layer({"etc/hostname": "box\n"})
        with patch.object(DpkgScanner, "_locate", return_value=["var/lib/dpkg"]):
            assert scanner.scan(ctx, layer) is None

    def test_corrupt_archive(self, scanner, tmp_path, ctx):
        path = tmp_path / "corrupt.tar"
        path.write_bytes(b"\x00garbage" * 100)
        with pytest.raises(ScannerException):
            scanner.scan(ctx, Layer(hash="sha256:corrupt", path=path))

    def test_cancellation(self, scanner, make_layer, dpkg_layer_entries):
        """Test a cancelled context interrupts the scan."""
        ctx = ScanContext()
        ctx.cancel()
        with pytest.raises(ScanCancelled):
            scanner.scan(ctx, make_layer(dpkg_layer_entries))

    def test_deterministic(self, scanner, make_layer, ctx, dpkg_layer_entries):
        layer = make_layer(dpkg_layer_entries)
        assert scanner.scan(ctx, layer) == scanner.scan(ctx, layer)
