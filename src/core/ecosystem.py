"""
Ecosystems and indexer configuration.

An Ecosystem is a named, fixed bundle of scanners that are always run
together (e.g., a distribution probe paired with its native package
database scanner). IndexerConfig is the explicit configuration value built
at startup and passed to the controller; there is no global registry.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from constants import (
    DEFAULT_FETCH_BACKOFF,
    DEFAULT_FETCH_RETRIES,
    DEFAULT_MAX_FETCH_WORKERS,
    DEFAULT_MAX_LAYER_WORKERS,
    DEFAULT_MAX_SCANNER_WORKERS,
)
from core.exceptions import ConfigurationException
from core.models import ScannerIdentity
from core.scanner_interface import (
    DistributionScanner,
    PackageScanner,
    RepositoryScanner,
    VersionedScanner,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Ecosystem:
    """
    Named bundle of scanners applied together.

    Attributes:
        name: Ecosystem name (e.g., "dpkg")
        package_scanners: Package scanners of the ecosystem
        distribution_scanners: Distribution probes of the ecosystem
        repository_scanners: Repository scanners of the ecosystem
    """

    name: str
    package_scanners: tuple[PackageScanner, ...] = ()
    distribution_scanners: tuple[DistributionScanner, ...] = ()
    repository_scanners: tuple[RepositoryScanner, ...] = ()

    @property
    def scanners(self) -> tuple[VersionedScanner, ...]:
        """All scanners of the ecosystem, distribution probes first."""
        return self.distribution_scanners + self.package_scanners + self.repository_scanners

    def identities(self) -> list[ScannerIdentity]:
        return [s.identity() for s in self.scanners]


@dataclass
class IndexerConfig:
    """
    Configuration of one indexer instance.

    Attributes:
        ecosystems: Ecosystems whose scanners are applied to every layer
        scanner_configs: Opaque configuration payloads keyed by scanner name
        airgap: Disable scanners that require network access
        max_layer_workers: Layers of one manifest scanned concurrently
        max_scanner_workers: Scanners run concurrently on one layer
        max_fetch_workers: Layers fetched concurrently
        fetch_retries: Attempts per layer fetch before giving up
        fetch_backoff: Base delay for exponential backoff between attempts
        timeout: Optional deadline in seconds for one indexing request
    """

    ecosystems: tuple[Ecosystem, ...] = ()
    scanner_configs: dict[str, bytes] = field(default_factory=dict)
    airgap: bool = False
    max_layer_workers: int = DEFAULT_MAX_LAYER_WORKERS
    max_scanner_workers: int = DEFAULT_MAX_SCANNER_WORKERS
    max_fetch_workers: int = DEFAULT_MAX_FETCH_WORKERS
    fetch_retries: int = DEFAULT_FETCH_RETRIES
    fetch_backoff: float = DEFAULT_FETCH_BACKOFF
    timeout: Optional[float] = None

    def __post_init__(self):
        self.ecosystems = tuple(self.ecosystems)
        self._validate()
        self._configure_scanners()

    def _validate(self) -> None:
        """Reject configurations the controller cannot run."""
        for attr in ("max_layer_workers", "max_scanner_workers", "max_fetch_workers", "fetch_retries"):
            if getattr(self, attr) < 1:
                raise ConfigurationException(f"{attr} must be at least 1")
        if self.fetch_backoff < 0:
            raise ConfigurationException("fetch_backoff must not be negative")

        names = [e.name for e in self.ecosystems]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigurationException(f"Duplicate ecosystem names: {', '.join(duplicates)}")

        # One version per (name, kind).
        seen: dict[tuple[str, str], str] = {}
        for scanner in self._all_scanners():
            key = (scanner.name(), scanner.kind().value)
            version = scanner.version()
            if seen.setdefault(key, version) != version:
                raise ConfigurationException(
                    f"Scanner {scanner.name()} configured at versions {seen[key]} and {version}"
                )

    def _configure_scanners(self) -> None:
        """Hand each scanner its opaque configuration payload."""
        known = {s.name() for s in self._all_scanners()}
        for name in self.scanner_configs:
            if name not in known:
                logger.warning(f"Configuration provided for unknown scanner: {name}")

        for scanner in self._all_scanners():
            payload = self.scanner_configs.get(scanner.name())
            if payload is None:
                continue
            try:
                scanner.apply_config(payload)
            except Exception as e:
                raise ConfigurationException(
                    f"Invalid configuration for scanner {scanner.name()}: {e}"
                ) from e
            logger.debug(f"Configured scanner {scanner.identity()}")

    def _all_scanners(self) -> list[VersionedScanner]:
        scanners = []
        seen = set()
        for ecosystem in self.ecosystems:
            for scanner in ecosystem.scanners:
                if id(scanner) in seen:
                    continue
                seen.add(id(scanner))
                scanners.append(scanner)
        return scanners

    def active_scanners(self, airgap: Optional[bool] = None) -> list[VersionedScanner]:
        """
        Resolve the scanner set applied to every layer.

        Scanners shared between ecosystems are run once. In airgap mode,
        scanners requiring network access are removed; local-only scanners
        and their cache entries are unaffected.

        Args:
            airgap: Override of the configured airgap flag

        Returns:
            Scanners in ecosystem order, one per identity
        """
        airgap = self.airgap if airgap is None else airgap
        active: list[VersionedScanner] = []
        identities: set[ScannerIdentity] = set()
        for scanner in self._all_scanners():
            identity = scanner.identity()
            if identity in identities:
                continue
            if airgap and scanner.requires_network():
                logger.debug(f"Airgap mode: disabling network scanner {identity}")
                continue
            identities.add(identity)
            active.append(scanner)
        return active

    def active_identities(self, airgap: Optional[bool] = None) -> tuple[ScannerIdentity, ...]:
        """Sorted identity set of the active scanners."""
        return tuple(
            sorted(
                (s.identity() for s in self.active_scanners(airgap)),
                key=lambda i: (i.kind.value, i.name, i.version, i.config_digest),
            )
        )
