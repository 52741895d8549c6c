"""Tests for the Ubuntu and Debian distribution scanners."""

import pytest

from conftest import BIONIC_OS_RELEASE, BOOKWORM_OS_RELEASE, Symlink
from core.models import ScannerKind
from scanners.debian import DebianDistributionScanner
from scanners.osrelease import ReleaseSignature, match_signature
from scanners.ubuntu import UBUNTU_SIGNATURES, UbuntuDistributionScanner

BIONIC_LSB_RELEASE = """\
DISTRIB_ID=Ubuntu
DISTRIB_RELEASE=18.04
DISTRIB_CODENAME=bionic
DISTRIB_DESCRIPTION="Ubuntu 18.04.6 LTS"
"""


class TestSignatures:
    """Tests for release signature matching."""

    def test_keyword_then_codename(self):
        """Test the keyword must precede the codename."""
        signature = ReleaseSignature.keyword("ubuntu", "focal", "20.04")
        assert match_signature(b"NAME=Ubuntu\nVERSION_CODENAME=focal\n", (signature,)) is signature
        assert match_signature(b"VERSION_CODENAME=focal\nNAME=Ubuntu\n", (signature,)) is None

    def test_case_insensitive(self):
        signature = ReleaseSignature.keyword("ubuntu", "focal", "20.04")
        assert match_signature(b"UBUNTU FOCAL", (signature,)) is signature

    def test_whole_words_only(self):
        signature = ReleaseSignature.keyword("ubuntu", "eoan", "19.10")
        assert match_signature(b"ubuntu theoanimal", (signature,)) is None

    def test_declared_order_wins(self):
        """Test content matching two signatures returns the earlier one."""
        content = b"Ubuntu bionic\nUbuntu precise\n"
        matched = match_signature(content, UBUNTU_SIGNATURES)
        assert matched.codename == "bionic"

        reversed_order = tuple(reversed(UBUNTU_SIGNATURES))
        assert match_signature(content, reversed_order).codename == "precise"


class TestUbuntuScanner:
    """Tests for UbuntuDistributionScanner."""

    @pytest.fixture
    def scanner(self):
        return UbuntuDistributionScanner()

    def test_identity(self, scanner):
        assert scanner.identity().kind == ScannerKind.DISTRIBUTION
        assert scanner.name() == "ubuntu"

    def test_absent_without_probe_files(self, scanner, make_layer, ctx):
        """Test a layer without os-release or lsb-release is absent."""
        layer = make_layer({"usr/bin/env": b"\x7fELF"})
        assert scanner.scan(ctx, layer) is None

    def test_os_release(self, scanner, make_layer, ctx):
        layer = make_layer({"etc/os-release": BIONIC_OS_RELEASE})
        (dist,) = scanner.scan(ctx, layer)
        assert dist.did == "ubuntu"
        assert dist.version_id == "18.04"
        assert dist.version_code_name == "bionic"
        assert dist.pretty_name == "Ubuntu 18.04 (Bionic)"
        assert dist.source_path == "etc/os-release"

    def test_lsb_release_fallback(self, scanner, make_layer, ctx):
        """Test the legacy lsb-release file is used when os-release is missing."""
        layer = make_layer({"etc/lsb-release": BIONIC_LSB_RELEASE})
        (dist,) = scanner.scan(ctx, layer)
        assert dist.version_code_name == "bionic"
        assert dist.source_path == "etc/lsb-release"

    def test_os_release_preferred(self, scanner, make_layer, ctx):
        """Test the first probe file in order wins over the fallback."""
        layer = make_layer(
            {
                "etc/os-release": "NAME=Ubuntu\nVERSION_CODENAME=jammy\n",
                "etc/lsb-release": BIONIC_LSB_RELEASE,
            }
        )
        (dist,) = scanner.scan(ctx, layer)
        assert dist.version_id == "22.04"

    def test_unmatched_fallback_is_used(self, scanner, make_layer, ctx):
        layer = make_layer(
            {
                "etc/os-release": "NAME=Something\n",
                "etc/lsb-release": BIONIC_LSB_RELEASE,
            }
        )
        (dist,) = scanner.scan(ctx, layer)
        assert dist.source_path == "etc/lsb-release"

    def test_symlinked_os_release(self, scanner, make_layer, ctx):
        layer = make_layer(
            {
                "usr/lib/os-release": BIONIC_OS_RELEASE,
                "etc/os-release": Symlink("../usr/lib/os-release"),
            }
        )
        (dist,) = scanner.scan(ctx, layer)
        assert dist.version_code_name == "bionic"

    def test_checked_but_unmatched(self, scanner, make_layer, ctx):
        """Test probe files that match no signature yield an empty result."""
        layer = make_layer({"etc/os-release": BOOKWORM_OS_RELEASE})
        assert scanner.scan(ctx, layer) == []


class TestDebianScanner:
    """Tests for DebianDistributionScanner."""

    @pytest.fixture
    def scanner(self):
        return DebianDistributionScanner()

    def test_bookworm(self, scanner, make_layer, ctx):
        layer = make_layer({"etc/os-release": BOOKWORM_OS_RELEASE})
        (dist,) = scanner.scan(ctx, layer)
        assert dist.did == "debian"
        assert dist.version_id == "12"
        assert dist.version_code_name == "bookworm"

    def test_ubuntu_is_not_debian(self, scanner, make_layer, ctx):
        """Test an Ubuntu os-release mentioning debian only as ID_LIKE does not match."""
        layer = make_layer({"etc/os-release": BIONIC_OS_RELEASE})
        assert scanner.scan(ctx, layer) == []
