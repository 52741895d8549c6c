"""Debian distribution scanner."""

from core.models import Distribution
from scanners.osrelease import ReleaseProbeScanner, ReleaseSignature

DEBIAN_RELEASES = (
    ("buster", "10"),
    ("bullseye", "11"),
    ("bookworm", "12"),
    ("trixie", "13"),
    ("jessie", "8"),
    ("stretch", "9"),
)

DEBIAN_SIGNATURES = tuple(
    ReleaseSignature.keyword("debian", codename, version_id)
    for codename, version_id in DEBIAN_RELEASES
)


class DebianDistributionScanner(ReleaseProbeScanner):
    """Attempts to discover if a layer displays characteristics of a Debian distribution."""

    NAME = "debian"
    VERSION = "v0.0.1"

    signatures = DEBIAN_SIGNATURES

    def name(self) -> str:
        return self.NAME

    def version(self) -> str:
        return self.VERSION

    def to_distribution(self, signature: ReleaseSignature, source_path: str) -> Distribution:
        return Distribution(
            did="debian",
            name="Debian GNU/Linux",
            version=f"{signature.version_id} ({signature.codename})",
            version_code_name=signature.codename,
            version_id=signature.version_id,
            pretty_name=f"Debian GNU/Linux {signature.version_id} ({signature.codename})",
            source_path=source_path,
        )
