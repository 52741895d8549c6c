"""
Domain models for layer indexing.

This module defines the core data structures used throughout the application.
All models are immutable (frozen dataclasses) and are shared between
worker threads and the findings cache.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Union


class ScannerKind(str, Enum):
    """Kinds of scanners; the kind determines the entity type a scanner returns."""

    PACKAGE = "package"
    DISTRIBUTION = "distribution"
    REPOSITORY = "repository"


class PackageKind(str, Enum):
    """Binary packages are installed artifacts, source packages are what they were built from."""

    BINARY = "binary"
    SOURCE = "source"


class LayerStatus(str, Enum):
    """Outcome of scanning one layer with its full scanner set."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class IndexState(str, Enum):
    """States of a manifest indexing request."""

    FETCHING = "fetching"
    SCANNING = "scanning"
    COALESCING = "coalescing"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class ScannerIdentity:
    """
    Identity of a scanner for caching and invalidation.

    Two scanners are cache-equivalent only if every field matches, so a
    version bump or a different configuration payload never reuses findings
    produced under the old one.

    Attributes:
        name: Scanner name (e.g., "dpkg")
        version: Scanner version (e.g., "v0.0.2")
        kind: Kind of entities the scanner produces
        config_digest: Short digest of the applied configuration payload,
            empty when the scanner runs with its defaults
    """

    name: str
    version: str
    kind: ScannerKind
    config_digest: str = ""

    def __str__(self) -> str:
        base = f"{self.kind.value}/{self.name}@{self.version}"
        return f"{base}+{self.config_digest}" if self.config_digest else base

    def unconfigured(self) -> "ScannerIdentity":
        """The identity with its configuration digest dropped."""
        return replace(self, config_digest="")

    @property
    def cache_key(self) -> str:
        """Filesystem-safe key fragment shared by every configuration of the scanner."""
        return f"{self.kind.value}-{self.name}-{self.version}"

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "version": self.version,
            "kind": self.kind.value,
            "config_digest": self.config_digest,
        }

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> "ScannerIdentity":
        """Create from dictionary."""
        return cls(
            name=data["name"],
            version=data["version"],
            kind=ScannerKind(data["kind"]),
            config_digest=data.get("config_digest", ""),
        )


@dataclass(frozen=True)
class Package:
    """
    A software package discovered in a layer.

    Attributes:
        name: Package name
        version: Package version string, verbatim from the database
        kind: BINARY or SOURCE
        arch: Architecture (e.g., "amd64"), empty for source packages
        package_db: Path of the database file the package was read from
        repository_hint: Opaque content fingerprint for change detection
        source: Optional SOURCE package this binary was built from
    """

    name: str
    version: str
    kind: PackageKind = PackageKind.BINARY
    arch: str = ""
    package_db: str = ""
    repository_hint: str = ""
    source: Optional["Package"] = None

    def key(self) -> tuple[str, str, str, str]:
        """Identity used to collapse duplicates within one database."""
        return (self.name, self.version, self.kind.value, self.arch)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "version": self.version,
            "kind": self.kind.value,
            "arch": self.arch,
            "package_db": self.package_db,
            "repository_hint": self.repository_hint,
            "source": self.source.to_dict() if self.source else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Package":
        """Create from dictionary."""
        source = data.get("source")
        return cls(
            name=data["name"],
            version=data.get("version", ""),
            kind=PackageKind(data.get("kind", PackageKind.BINARY.value)),
            arch=data.get("arch", ""),
            package_db=data.get("package_db", ""),
            repository_hint=data.get("repository_hint", ""),
            source=cls.from_dict(source) if source else None,
        )


@dataclass(frozen=True)
class Distribution:
    """
    Classification of a layer's base operating system.

    Attributes:
        did: Distribution id as found in os-release (e.g., "ubuntu")
        name: Human readable name
        version: Release version (e.g., "18.04")
        version_code_name: Release codename (e.g., "bionic")
        version_id: Numeric version id
        pretty_name: Full display name
        arch: Architecture, when known
        cpe: CPE name, when known
        source_path: Probe file the classification was made from
    """

    did: str
    name: str
    version: str = ""
    version_code_name: str = ""
    version_id: str = ""
    pretty_name: str = ""
    arch: str = ""
    cpe: str = ""
    source_path: str = ""

    def key(self) -> tuple[str, str, str]:
        return (self.did, self.version_id, self.version_code_name)

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary for serialization."""
        return {
            "did": self.did,
            "name": self.name,
            "version": self.version,
            "version_code_name": self.version_code_name,
            "version_id": self.version_id,
            "pretty_name": self.pretty_name,
            "arch": self.arch,
            "cpe": self.cpe,
            "source_path": self.source_path,
        }

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> "Distribution":
        """Create from dictionary."""
        return cls(**{k: data.get(k, "") for k in cls.__dataclass_fields__})


@dataclass(frozen=True)
class Repository:
    """
    A software repository packages may have been installed from.

    Attributes:
        name: Repository name (e.g., "focal/main")
        key: Signing key reference, if configured
        uri: Repository URI
        cpe: CPE name, when known
        source_path: Configuration file the repository was declared in
        archive_type: Archive type for apt entries ("deb" or "deb-src")
    """

    name: str
    key: str = ""
    uri: str = ""
    cpe: str = ""
    source_path: str = ""
    archive_type: str = ""

    def key_tuple(self) -> tuple[str, str, str]:
        return (self.name, self.uri, self.archive_type)

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "key": self.key,
            "uri": self.uri,
            "cpe": self.cpe,
            "source_path": self.source_path,
            "archive_type": self.archive_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> "Repository":
        """Create from dictionary."""
        return cls(**{k: data.get(k, "") for k in cls.__dataclass_fields__})


Entity = Union[Package, Distribution, Repository]


@dataclass(frozen=True)
class LayerFindings:
    """
    Output of one scanner on one layer.

    Produced once per (layer hash, scanner identity) and cached forever.
    Must not contain nondeterministic content such as timestamps.

    Attributes:
        layer_hash: Content digest of the scanned layer
        scanner: Identity of the scanner that produced the findings
        absent: True when the scanner recognized nothing in the layer
        packages: Packages found (package scanners only)
        distributions: Distributions found (distribution scanners only)
        repositories: Repositories found (repository scanners only)
    """

    layer_hash: str
    scanner: ScannerIdentity
    absent: bool = False
    packages: tuple[Package, ...] = ()
    distributions: tuple[Distribution, ...] = ()
    repositories: tuple[Repository, ...] = ()

    @classmethod
    def from_entities(
        cls,
        layer_hash: str,
        scanner: ScannerIdentity,
        entities: Optional[list[Entity]],
    ) -> "LayerFindings":
        """
        Route a scanner's result into the collection matching its kind.

        Args:
            layer_hash: Layer digest
            scanner: Scanner identity
            entities: Scanner result, None meaning "absent"

        Returns:
            LayerFindings for the pair
        """
        if entities is None:
            return cls(layer_hash=layer_hash, scanner=scanner, absent=True)

        items = tuple(entities)
        if scanner.kind == ScannerKind.PACKAGE:
            return cls(layer_hash=layer_hash, scanner=scanner, packages=items)
        if scanner.kind == ScannerKind.DISTRIBUTION:
            return cls(layer_hash=layer_hash, scanner=scanner, distributions=items)
        return cls(layer_hash=layer_hash, scanner=scanner, repositories=items)

    @property
    def entities(self) -> tuple[Entity, ...]:
        """All entities regardless of kind."""
        return self.packages + self.distributions + self.repositories

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "layer_hash": self.layer_hash,
            "scanner": self.scanner.to_dict(),
            "absent": self.absent,
            "packages": [p.to_dict() for p in self.packages],
            "distributions": [d.to_dict() for d in self.distributions],
            "repositories": [r.to_dict() for r in self.repositories],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LayerFindings":
        """Create from dictionary."""
        return cls(
            layer_hash=data["layer_hash"],
            scanner=ScannerIdentity.from_dict(data["scanner"]),
            absent=data.get("absent", False),
            packages=tuple(Package.from_dict(p) for p in data.get("packages", [])),
            distributions=tuple(
                Distribution.from_dict(d) for d in data.get("distributions", [])
            ),
            repositories=tuple(
                Repository.from_dict(r) for r in data.get("repositories", [])
            ),
        )


@dataclass(frozen=True)
class ScannerFailure:
    """
    Record of one scanner failing on one layer.

    Attributes:
        layer_hash: Layer digest
        scanner: Identity of the failed scanner
        error: Error message
        cancelled: Whether the scan was interrupted by cancellation
    """

    layer_hash: str
    scanner: ScannerIdentity
    error: str
    cancelled: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "layer_hash": self.layer_hash,
            "scanner": self.scanner.to_dict(),
            "error": self.error,
            "cancelled": self.cancelled,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ScannerFailure":
        """Create from dictionary."""
        return cls(
            layer_hash=data["layer_hash"],
            scanner=ScannerIdentity.from_dict(data["scanner"]),
            error=data.get("error", ""),
            cancelled=data.get("cancelled", False),
        )


@dataclass(frozen=True)
class LayerResult:
    """
    All findings and failures for one layer of a manifest.

    Attributes:
        layer_hash: Layer digest
        ordinal: Position of the layer in the manifest (0 is the base)
        findings: Successful per-scanner findings
        failures: Per-scanner failures
    """

    layer_hash: str
    ordinal: int
    findings: tuple[LayerFindings, ...] = ()
    failures: tuple[ScannerFailure, ...] = ()

    @property
    def status(self) -> LayerStatus:
        """A layer fails only when no scanner succeeded and at least one failed."""
        if self.failures and not self.findings:
            return LayerStatus.FAILED
        if self.failures:
            return LayerStatus.PARTIAL
        return LayerStatus.SUCCESS

    def summary(self) -> "LayerSummary":
        """Annotation recorded in the manifest report."""
        return LayerSummary(
            layer_hash=self.layer_hash,
            ordinal=self.ordinal,
            status=self.status,
            failures=self.failures,
        )


@dataclass(frozen=True)
class LayerSummary:
    """Per-layer success/partial-failure annotation of an IndexReport."""

    layer_hash: str
    ordinal: int
    status: LayerStatus
    failures: tuple[ScannerFailure, ...] = ()

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "layer_hash": self.layer_hash,
            "ordinal": self.ordinal,
            "status": self.status.value,
            "failures": [f.to_dict() for f in self.failures],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LayerSummary":
        """Create from dictionary."""
        return cls(
            layer_hash=data["layer_hash"],
            ordinal=data["ordinal"],
            status=LayerStatus(data["status"]),
            failures=tuple(ScannerFailure.from_dict(f) for f in data.get("failures", [])),
        )


@dataclass(frozen=True)
class LayerDescriptor:
    """
    Reference to one layer blob, as listed in a manifest.

    Attributes:
        digest: Content digest (e.g., "sha256:...")
        uri: Location the Fetcher retrieves the blob from
        media_type: OCI/Docker media type of the blob
        headers: Extra request headers for remote retrieval
    """

    digest: str
    uri: str = ""
    media_type: str = ""
    headers: dict[str, str] = field(default_factory=dict, hash=False, compare=False)

    @classmethod
    def from_dict(cls, data: dict) -> "LayerDescriptor":
        """Create from dictionary."""
        return cls(
            digest=data["digest"] if "digest" in data else data["hash"],
            uri=data.get("uri", ""),
            media_type=data.get("media_type", data.get("mediaType", "")),
            headers=dict(data.get("headers", {})),
        )


@dataclass(frozen=True)
class Manifest:
    """
    An image manifest: ordered layers, base layer first.

    Attributes:
        manifest_id: Manifest digest
        layers: Layer descriptors in filesystem overlay order
    """

    manifest_id: str
    layers: tuple[LayerDescriptor, ...]

    @classmethod
    def from_dict(cls, data: dict) -> "Manifest":
        """Create from dictionary."""
        return cls(
            manifest_id=data.get("manifest_id", data.get("hash", "")),
            layers=tuple(LayerDescriptor.from_dict(layer) for layer in data.get("layers", [])),
        )


@dataclass(frozen=True)
class IndexReport:
    """
    Manifest-level inventory produced by coalescing all layers.

    Attributes:
        manifest_id: Manifest digest
        state: Final state of the indexing request
        packages: Deduplicated packages visible in the final filesystem
        distributions: Distribution of the final image (at most one result set)
        repositories: Repositories visible in the final filesystem
        layers: Per-layer status annotations, in manifest order
        scanners: Active scanner identities the report was built with
        success: Whether indexing completed
        error: Error details if indexing failed
        cache_hit: Whether the report was served from the store
    """

    manifest_id: str
    state: IndexState = IndexState.DONE
    packages: tuple[Package, ...] = ()
    distributions: tuple[Distribution, ...] = ()
    repositories: tuple[Repository, ...] = ()
    layers: tuple[LayerSummary, ...] = ()
    scanners: tuple[ScannerIdentity, ...] = ()
    success: bool = True
    error: Optional[str] = None
    cache_hit: bool = False

    @property
    def degraded(self) -> bool:
        """True when any layer failed or only partially succeeded."""
        return any(layer.status != LayerStatus.SUCCESS for layer in self.layers)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "manifest_id": self.manifest_id,
            "state": self.state.value,
            "success": self.success,
            "error": self.error,
            "packages": [p.to_dict() for p in self.packages],
            "distributions": [d.to_dict() for d in self.distributions],
            "repositories": [r.to_dict() for r in self.repositories],
            "layers": [layer.to_dict() for layer in self.layers],
            "scanners": [s.to_dict() for s in self.scanners],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "IndexReport":
        """Create from dictionary."""
        return cls(
            manifest_id=data["manifest_id"],
            state=IndexState(data.get("state", IndexState.DONE.value)),
            packages=tuple(Package.from_dict(p) for p in data.get("packages", [])),
            distributions=tuple(
                Distribution.from_dict(d) for d in data.get("distributions", [])
            ),
            repositories=tuple(
                Repository.from_dict(r) for r in data.get("repositories", [])
            ),
            layers=tuple(LayerSummary.from_dict(layer) for layer in data.get("layers", [])),
            scanners=tuple(ScannerIdentity.from_dict(s) for s in data.get("scanners", [])),
            success=data.get("success", True),
            error=data.get("error"),
        )
