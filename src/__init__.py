"""
Strata - Container Layer Indexer

Indexes container image layers to discover installed packages, distributions
and source repositories, producing a manifest-level inventory report for
vulnerability matching.
"""

__version__ = "0.3.0"
__author__ = "Strata Authors"

from core.models import (
    IndexReport,
    LayerFindings,
    Package,
    Distribution,
    Repository,
)

__all__ = [
    "IndexReport",
    "LayerFindings",
    "Package",
    "Distribution",
    "Repository",
]
