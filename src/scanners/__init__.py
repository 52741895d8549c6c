"""
Built-in scanners and ecosystems.

Ecosystems are constructed on demand and handed to IndexerConfig; nothing
here is a mutable module-level registry.
"""

from core.ecosystem import Ecosystem
from core.exceptions import ConfigurationException
from scanners.apt_sources import AptSourcesScanner
from scanners.debian import DebianDistributionScanner
from scanners.dpkg import DpkgScanner
from scanners.ubuntu import UbuntuDistributionScanner


def dpkg_ecosystem() -> Ecosystem:
    """dpkg databases together with the distributions and repositories they come from."""
    return Ecosystem(
        name="dpkg",
        package_scanners=(DpkgScanner(),),
        distribution_scanners=(UbuntuDistributionScanner(), DebianDistributionScanner()),
        repository_scanners=(AptSourcesScanner(),),
    )


ECOSYSTEM_FACTORIES = {
    "dpkg": dpkg_ecosystem,
}


def default_ecosystems() -> list[Ecosystem]:
    """Fresh instances of every built-in ecosystem."""
    return [factory() for factory in ECOSYSTEM_FACTORIES.values()]


def ecosystems_by_name(names: list[str]) -> list[Ecosystem]:
    """
    Build the named ecosystems.

    Raises:
        ConfigurationException: If a name is unknown
    """
    unknown = [n for n in names if n not in ECOSYSTEM_FACTORIES]
    if unknown:
        raise ConfigurationException(
            f"Unknown ecosystem(s): {', '.join(unknown)}. "
            f"Valid ecosystems: {', '.join(ECOSYSTEM_FACTORIES)}"
        )
    return [ECOSYSTEM_FACTORIES[n]() for n in names]


__all__ = [
    "AptSourcesScanner",
    "DebianDistributionScanner",
    "DpkgScanner",
    "UbuntuDistributionScanner",
    "default_ecosystems",
    "dpkg_ecosystem",
    "ecosystems_by_name",
]
