"""
Coalescing of per-layer findings into a manifest-level report.

Layers are applied in manifest order, earliest first, modelling an overlay
filesystem: a later layer that produces entities for a provenance path
(the database or configuration file they were read from) replaces what
earlier layers reported for that same path, while entities from other
paths accumulate.
"""

import logging
from typing import Callable, Iterable, TypeVar

from core.models import (
    Distribution,
    IndexReport,
    IndexState,
    LayerResult,
    Package,
    Repository,
    ScannerIdentity,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _dedupe(items: Iterable[T], key: Callable[[T], tuple]) -> list[T]:
    """Drop repeated items, keeping the first occurrence and original order."""
    seen = set()
    unique = []
    for item in items:
        k = key(item)
        if k in seen:
            continue
        seen.add(k)
        unique.append(item)
    return unique


def _group_by_path(items: Iterable[T], path: Callable[[T], str]) -> dict[str, list[T]]:
    groups: dict[str, list[T]] = {}
    for item in items:
        groups.setdefault(path(item), []).append(item)
    return groups


class Coalescer:
    """
    Merges ordered layer results into one IndexReport.

    Rules:
        - Packages and repositories are grouped by provenance path; the
          latest layer touching a path wins for that path, even when
          layers in between did not touch it.
        - Different provenance paths are unioned.
        - The distribution comes from the last layer that produced a
          non-empty distribution result.
    """

    def coalesce(
        self,
        manifest_id: str,
        results: list[LayerResult],
        scanners: tuple[ScannerIdentity, ...] = (),
    ) -> IndexReport:
        """
        Merge layer results.

        Args:
            manifest_id: Manifest digest
            results: One LayerResult per layer (any order; sorted by ordinal)
            scanners: Active scanner identities recorded in the report

        Returns:
            IndexReport in the coalescing state; the controller finalizes it
        """
        ordered = sorted(results, key=lambda r: r.ordinal)

        packages_by_path: dict[str, list[Package]] = {}
        repositories_by_path: dict[str, list[Repository]] = {}
        distributions: list[Distribution] = []

        for result in ordered:
            layer_packages = [p for f in result.findings for p in f.packages]
            for path, packages in _group_by_path(layer_packages, lambda p: p.package_db).items():
                if path in packages_by_path:
                    logger.debug(
                        f"Layer {result.ordinal} ({result.layer_hash}) supersedes packages from {path}"
                    )
                packages_by_path[path] = _dedupe(packages, Package.key)

            layer_repositories = [r for f in result.findings for r in f.repositories]
            for path, repositories in _group_by_path(
                layer_repositories, lambda r: r.source_path
            ).items():
                repositories_by_path[path] = _dedupe(repositories, Repository.key_tuple)

            layer_distributions = [d for f in result.findings for d in f.distributions]
            if layer_distributions:
                distributions = _dedupe(layer_distributions, Distribution.key)

        packages = [p for group in packages_by_path.values() for p in group]
        repositories = [r for group in repositories_by_path.values() for r in group]

        logger.debug(
            f"Coalesced {len(ordered)} layers of {manifest_id}: "
            f"{len(packages)} packages from {len(packages_by_path)} databases, "
            f"{len(distributions)} distributions, {len(repositories)} repositories"
        )

        return IndexReport(
            manifest_id=manifest_id,
            state=IndexState.COALESCING,
            packages=tuple(packages),
            distributions=tuple(distributions),
            repositories=tuple(repositories),
            layers=tuple(r.summary() for r in ordered),
            scanners=tuple(scanners),
        )
