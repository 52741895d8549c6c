"""Core indexing logic: models, scanning, caching and coalescing."""

from core.models import (
    Distribution,
    IndexReport,
    IndexState,
    LayerFindings,
    Package,
    Repository,
    ScannerIdentity,
)
from core.exceptions import StrataException

__all__ = [
    "Distribution",
    "IndexReport",
    "IndexState",
    "LayerFindings",
    "Package",
    "Repository",
    "ScannerIdentity",
    "StrataException",
]
