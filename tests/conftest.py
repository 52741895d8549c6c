"""
Pytest fixtures and configuration for Strata tests.

Provides shared fixtures and test utilities across the test suite.
"""

import hashlib
import io
import tarfile
from pathlib import Path
from typing import Optional, Union

import pytest

from core.context import ScanContext
from core.layer import Layer
from core.models import (
    Distribution,
    LayerDescriptor,
    Package,
    PackageKind,
    ScannerIdentity,
    ScannerKind,
)
from core.scanner_interface import PackageScanner


class Symlink(str):
    """Marks a layer entry as a symbolic link to the given target."""


LayerEntry = Union[bytes, str, Symlink, None]


def build_layer_archive(path: Path, entries: dict[str, LayerEntry], compression: str = "") -> Path:
    """
    Write a tar archive holding the given entries.

    Values are file contents (bytes or str), a Symlink target, or None for
    a directory.
    """
    mode = f"w:{compression}" if compression else "w"
    with tarfile.open(path, mode) as tf:
        for name, value in entries.items():
            info = tarfile.TarInfo(name)
            info.mtime = 0
            if value is None:
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tf.addfile(info)
            elif isinstance(value, Symlink):
                info.type = tarfile.SYMTYPE
                info.linkname = str(value)
                tf.addfile(info)
            else:
                data = value.encode() if isinstance(value, str) else value
                info.size = len(data)
                info.mode = 0o644
                tf.addfile(info, io.BytesIO(data))
    return path


def sha256_digest(path: Path) -> str:
    return "sha256:" + hashlib.sha256(path.read_bytes()).hexdigest()


@pytest.fixture
def make_layer(tmp_path):
    """Factory building a Layer from a mapping of archive paths to contents."""
    counter = {"n": 0}

    def _make(entries: dict[str, LayerEntry], ordinal: int = 0, compression: str = "") -> Layer:
        counter["n"] += 1
        archive = build_layer_archive(tmp_path / f"layer-{counter['n']}.tar", entries, compression)
        return Layer(hash=sha256_digest(archive), path=archive, ordinal=ordinal)

    return _make


@pytest.fixture
def make_descriptor(tmp_path):
    """Factory writing a layer archive and returning its descriptor."""
    counter = {"n": 0}

    def _make(entries: dict[str, LayerEntry]) -> LayerDescriptor:
        counter["n"] += 1
        archive = build_layer_archive(tmp_path / f"blob-{counter['n']}.tar", entries)
        return LayerDescriptor(digest=sha256_digest(archive), uri=archive.as_uri())

    return _make


@pytest.fixture
def ctx():
    """Fresh scan context without a deadline."""
    return ScanContext()


SAMPLE_STATUS = """\
Package: libc6
Status: install ok installed
Architecture: amd64
Source: glibc
Version: 2.31-0ubuntu9.9

Package: bash
Status: install ok installed
Architecture: amd64
Version: 5.0-6ubuntu1.2

Package: removed-pkg
Status: deinstall ok config-files
Architecture: amd64
Version: 1.0

Package: login
Status: install ok installed
Architecture: amd64
Source: shadow (1:4.8.1-1ubuntu5)
Version: 1:4.8.1-1ubuntu5.20.04.4
"""

BIONIC_OS_RELEASE = """\
NAME="Ubuntu"
VERSION="18.04.6 LTS (Bionic Beaver)"
ID=ubuntu
ID_LIKE=debian
PRETTY_NAME="Ubuntu 18.04.6 LTS"
VERSION_ID="18.04"
VERSION_CODENAME=bionic
UBUNTU_CODENAME=bionic
"""

BOOKWORM_OS_RELEASE = """\
PRETTY_NAME="Debian GNU/Linux 12 (bookworm)"
NAME="Debian GNU/Linux"
VERSION_ID="12"
VERSION="12 (bookworm)"
VERSION_CODENAME=bookworm
ID=debian
"""


@pytest.fixture
def sample_status():
    """dpkg status file with installed, removed and source-bearing packages."""
    return SAMPLE_STATUS


@pytest.fixture
def dpkg_layer_entries(sample_status):
    """Entries of a layer holding a complete dpkg database."""
    return {
        "var/lib/dpkg": None,
        "var/lib/dpkg/status": sample_status,
        "var/lib/dpkg/available": "",
        "var/lib/dpkg/info/bash.md5sums": "d41d8cd98f00b204e9800998ecf8427e  bin/bash\n",
    }


@pytest.fixture
def sample_package():
    """Sample binary package."""
    return Package(
        name="bash",
        version="5.0-6ubuntu1.2",
        kind=PackageKind.BINARY,
        arch="amd64",
        package_db="var/lib/dpkg/status",
    )


@pytest.fixture
def sample_distribution():
    """Sample Ubuntu distribution."""
    return Distribution(
        did="ubuntu",
        name="Ubuntu",
        version="18.04 (Bionic)",
        version_code_name="bionic",
        version_id="18.04",
        pretty_name="Ubuntu 18.04 (Bionic)",
        source_path="etc/os-release",
    )


class FakePackageScanner(PackageScanner):
    """
    Package scanner returning canned results and counting invocations.

    ``result`` may be a list of packages, None, an exception to raise, or a
    callable taking (ctx, layer).
    """

    def __init__(self, name: str = "fake", version: str = "v1", result=(), network: bool = False):
        self._name = name
        self._version = version
        self.result = result
        self.network = network
        self.calls = 0
        self.payload: Optional[bytes] = None

    def name(self) -> str:
        return self._name

    def version(self) -> str:
        return self._version

    def requires_network(self) -> bool:
        return self.network

    def configure(self, payload: bytes) -> None:
        self.payload = payload

    def scan(self, ctx, layer):
        self.calls += 1
        if isinstance(self.result, Exception):
            raise self.result
        if callable(self.result):
            return self.result(ctx, layer)
        if self.result is None:
            return None
        return list(self.result)


@pytest.fixture
def fake_scanner_cls():
    """The FakePackageScanner class, for tests building several instances."""
    return FakePackageScanner


@pytest.fixture
def package_identity():
    return ScannerIdentity(name="fake", version="v1", kind=ScannerKind.PACKAGE)
