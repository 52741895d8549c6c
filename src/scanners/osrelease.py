"""
Shared release-signature probing for distribution scanners.

A probe reads a small fixed set of well-known files and matches their
content against an ordered list of release signatures. The first file
(in probe order) matching any signature wins; within one file, the
signature list order breaks ties.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional

from core.context import ScanContext
from core.layer import Layer
from core.models import Distribution
from core.scanner_interface import DistributionScanner

logger = logging.getLogger(__name__)

OS_RELEASE_PATH = "etc/os-release"
LSB_RELEASE_PATH = "etc/lsb-release"
PROBE_PATHS = (OS_RELEASE_PATH, LSB_RELEASE_PATH)


@dataclass(frozen=True)
class ReleaseSignature:
    """
    A release and the pattern identifying it.

    Attributes:
        codename: Release codename (e.g., "bionic")
        version_id: Release version id (e.g., "18.04")
        pattern: Compiled case-insensitive, dot-all pattern
    """

    codename: str
    version_id: str
    pattern: re.Pattern

    @classmethod
    def keyword(cls, keyword: str, codename: str, version_id: str) -> "ReleaseSignature":
        """Signature requiring ``keyword`` followed anywhere later by ``codename``."""
        pattern = re.compile(
            rf"\b{re.escape(keyword)}\b.*\b{re.escape(codename)}\b",
            re.IGNORECASE | re.DOTALL,
        )
        return cls(codename=codename, version_id=version_id, pattern=pattern)


def match_signature(
    content: bytes, signatures: tuple[ReleaseSignature, ...]
) -> Optional[ReleaseSignature]:
    """Return the first signature (in list order) matching the content."""
    text = content.decode("utf-8", errors="replace")
    for signature in signatures:
        if signature.pattern.search(text):
            return signature
    return None


class ReleaseProbeScanner(DistributionScanner):
    """
    Distribution scanner probing os-release style files.

    Subclasses provide ``signatures`` and ``to_distribution``.
    """

    probe_paths: tuple[str, ...] = PROBE_PATHS
    signatures: tuple[ReleaseSignature, ...] = ()
    to_distribution: Callable[[ReleaseSignature, str], Distribution]

    def scan(self, ctx: ScanContext, layer: Layer) -> Optional[list[Distribution]]:
        """
        Inspect the layer's os-release or lsb-release file.

        If neither file is found, None is returned. If files are found but
        no signature matches, an empty list is returned.
        """
        log = ctx.span(logger)
        files = layer.files(*self.probe_paths, ctx=ctx)
        if not files:
            log.debug("didn't find an os-release or lsb-release file")
            return None

        for path in self.probe_paths:
            content = files.get(path)
            if content is None:
                continue
            signature = match_signature(content, self.signatures)
            if signature is not None:
                log.debug(f"{path} matched release {signature.codename}")
                return [self.to_distribution(signature, path)]

        return []
