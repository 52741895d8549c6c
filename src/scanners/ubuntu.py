"""Ubuntu distribution scanner."""

from core.models import Distribution
from scanners.osrelease import ReleaseProbeScanner, ReleaseSignature

# Order matters: the first matching signature wins.
UBUNTU_RELEASES = (
    ("artful", "17.10"),
    ("bionic", "18.04"),
    ("cosmic", "18.10"),
    ("disco", "19.04"),
    ("precise", "12.04"),
    ("trusty", "14.04"),
    ("xenial", "16.04"),
    ("eoan", "19.10"),
    ("focal", "20.04"),
    ("impish", "21.10"),
    ("jammy", "22.04"),
    ("noble", "24.04"),
)

UBUNTU_SIGNATURES = tuple(
    ReleaseSignature.keyword("ubuntu", codename, version_id)
    for codename, version_id in UBUNTU_RELEASES
)


def release_to_distribution(signature: ReleaseSignature, source_path: str = "") -> Distribution:
    """Build the Distribution for an Ubuntu release."""
    title = signature.codename.capitalize()
    return Distribution(
        did="ubuntu",
        name="Ubuntu",
        version=f"{signature.version_id} ({title})",
        version_code_name=signature.codename,
        version_id=signature.version_id,
        pretty_name=f"Ubuntu {signature.version_id} ({title})",
        source_path=source_path,
    )


class UbuntuDistributionScanner(ReleaseProbeScanner):
    """Attempts to discover if a layer displays characteristics of an Ubuntu distribution."""

    NAME = "ubuntu"
    VERSION = "v0.0.2"

    signatures = UBUNTU_SIGNATURES

    def name(self) -> str:
        return self.NAME

    def version(self) -> str:
        return self.VERSION

    def to_distribution(self, signature: ReleaseSignature, source_path: str) -> Distribution:
        return release_to_distribution(signature, source_path)
