"""
Per-layer scan execution.

Runs the resolved scanner set against one layer with bounded parallelism,
tolerating the failure of individual scanners.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed

from constants import DEFAULT_MAX_SCANNER_WORKERS
from core.cache import FindingsIndex
from core.context import ScanContext
from core.exceptions import ScanCancelled
from core.layer import Layer
from core.models import LayerFindings, LayerResult, LayerStatus, ScannerFailure
from core.scanner_interface import VersionedScanner

logger = logging.getLogger(__name__)


class LayerScanRunner:
    """
    Executes a scanner set against one layer.

    Every scanner goes through the FindingsIndex, so cached results are
    reused and concurrent requests for the same (layer, scanner) share
    one scan. A scanner's failure is recorded without discarding the
    results of its siblings.
    """

    def __init__(
        self,
        index: FindingsIndex,
        max_workers: int = DEFAULT_MAX_SCANNER_WORKERS,
    ):
        """
        Initialize the runner.

        Args:
            index: Deduplicating findings index
            max_workers: Maximum scanners run concurrently on one layer
        """
        self.index = index
        self.max_workers = max_workers

    def scan_layer(
        self,
        ctx: ScanContext,
        layer: Layer,
        scanners: list[VersionedScanner],
    ) -> LayerResult:
        """
        Run every scanner against a layer.

        Args:
            ctx: Scan context of the indexing request
            layer: Layer to scan
            scanners: Resolved scanner set

        Returns:
            LayerResult with findings and per-scanner failures
        """
        ctx = ctx.with_fields(layer=layer.hash)
        log = ctx.span(logger)
        log.debug(f"Scanning layer {layer.ordinal} with {len(scanners)} scanners")

        findings: dict[int, LayerFindings] = {}
        failures: dict[int, ScannerFailure] = {}

        if not scanners:
            return LayerResult(layer_hash=layer.hash, ordinal=layer.ordinal)

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(scanners))) as executor:
            future_to_scanner = {
                executor.submit(self._run_scanner, ctx, layer, scanner): (i, scanner)
                for i, scanner in enumerate(scanners)
            }

            for future in as_completed(future_to_scanner):
                i, scanner = future_to_scanner[future]
                result = future.result()
                if isinstance(result, ScannerFailure):
                    failures[i] = result
                else:
                    findings[i] = result

        # Keep scanner order regardless of completion order.
        result = LayerResult(
            layer_hash=layer.hash,
            ordinal=layer.ordinal,
            findings=tuple(findings[i] for i in sorted(findings)),
            failures=tuple(failures[i] for i in sorted(failures)),
        )

        if result.status == LayerStatus.FAILED:
            log.error(f"All {len(failures)} scanners failed on layer {layer.ordinal}")
        elif result.status == LayerStatus.PARTIAL:
            log.warning(
                f"Layer {layer.ordinal}: {len(findings)} scanners succeeded, {len(failures)} failed"
            )
        else:
            log.debug(f"Layer {layer.ordinal}: {len(findings)} scanners succeeded")

        return result

    def _run_scanner(
        self, ctx: ScanContext, layer: Layer, scanner: VersionedScanner
    ):
        """Run one scanner, converting any failure into a ScannerFailure."""
        identity = scanner.identity()
        ctx = ctx.with_fields(scanner=str(identity))
        log = ctx.span(logger)

        try:
            findings = self.index.get_or_scan(ctx, layer, scanner)
        except ScanCancelled as e:
            log.info(f"Scan cancelled: {e}")
            return ScannerFailure(
                layer_hash=layer.hash,
                scanner=identity,
                error=str(e),
                cancelled=True,
            )
        except Exception as e:
            log.error(f"Scan failed: {e}")
            return ScannerFailure(layer_hash=layer.hash, scanner=identity, error=str(e))

        if findings.absent:
            log.debug("Nothing recognized")
        else:
            log.debug(f"Found {len(findings.entities)} entities")
        return findings
