"""
Scanner plugin interface for layer indexing.

Defines the contract every scanner implements. A scanner is identified by
its (name, version, kind) triple; the kind determines which entity type its
``scan`` method returns.
"""

import hashlib
from abc import ABC, abstractmethod
from typing import Optional

from core.context import ScanContext
from core.layer import Layer
from core.models import (
    Distribution,
    Package,
    Repository,
    ScannerIdentity,
    ScannerKind,
)


class VersionedScanner(ABC):
    """
    Abstract base class for all scanners.

    Result semantics of ``scan``:
        - None: the layer contains nothing this scanner recognizes
        - []: the trigger condition was met but nothing was extracted
        - raised exception: the scanner could not complete

    Implementations must not retain the Layer or any stream past return.
    """

    _config_digest = ""

    @abstractmethod
    def name(self) -> str:
        """
        Return the scanner name.

        Returns:
            Scanner identifier (e.g., "dpkg", "ubuntu")
        """
        pass

    @abstractmethod
    def version(self) -> str:
        """
        Return the scanner version.

        Bumping the version invalidates every cached result of the scanner.
        """
        pass

    @abstractmethod
    def kind(self) -> ScannerKind:
        """Return the kind of entities this scanner produces."""
        pass

    @abstractmethod
    def scan(self, ctx: ScanContext, layer: Layer) -> Optional[list]:
        """
        Scan a layer.

        Args:
            ctx: Scan context, checked at each archive read
            layer: Layer to scan

        Returns:
            Entities found, [] if triggered but empty, None if absent

        Raises:
            Exception: Any failure; isolated to this scanner and layer
        """
        pass

    def identity(self) -> ScannerIdentity:
        """Return the identity used for caching, including the applied configuration."""
        return ScannerIdentity(
            name=self.name(),
            version=self.version(),
            kind=self.kind(),
            config_digest=self._config_digest,
        )

    def requires_network(self) -> bool:
        """
        Whether the scanner needs network access.

        Network-capable scanners are disabled in airgap mode.
        """
        return False

    def configure(self, payload: bytes) -> None:
        """
        Receive this scanner's opaque configuration payload.

        Decoding is up to the scanner; the default ignores it.
        """
        return None

    def apply_config(self, payload: bytes) -> None:
        """
        Configure the scanner and fold the payload into its identity.

        Findings produced under one payload are never served for another.
        """
        self.configure(payload)
        self._config_digest = hashlib.sha256(payload).hexdigest()[:12]


class PackageScanner(VersionedScanner):
    """Scanner producing Package entities."""

    def kind(self) -> ScannerKind:
        return ScannerKind.PACKAGE

    @abstractmethod
    def scan(self, ctx: ScanContext, layer: Layer) -> Optional[list[Package]]:
        pass


class DistributionScanner(VersionedScanner):
    """Scanner producing Distribution entities."""

    def kind(self) -> ScannerKind:
        return ScannerKind.DISTRIBUTION

    @abstractmethod
    def scan(self, ctx: ScanContext, layer: Layer) -> Optional[list[Distribution]]:
        pass


class RepositoryScanner(VersionedScanner):
    """Scanner producing Repository entities."""

    def kind(self) -> ScannerKind:
        return ScannerKind.REPOSITORY

    @abstractmethod
    def scan(self, ctx: ScanContext, layer: Layer) -> Optional[list[Repository]]:
        pass


__all__ = [
    "VersionedScanner",
    "PackageScanner",
    "DistributionScanner",
    "RepositoryScanner",
]
