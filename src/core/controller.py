"""
Orchestrates indexing of one manifest.

The controller drives a request through Fetching -> Scanning -> Coalescing
-> Persisting -> Done. Fetch and store faults move it to Failed; scanner
faults are absorbed as partial results unless every layer failed.
"""

import logging
import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import replace
from typing import Optional

from constants import FINISHED_STATE_HISTORY
from core.cache import FindingsIndex
from core.coalescer import Coalescer
from core.context import ScanContext
from core.ecosystem import IndexerConfig
from core.error_classification import ErrorClassifier, backoff_delay
from core.exceptions import (
    FetchException,
    IndexingException,
    ScanCancelled,
    StoreException,
)
from core.layer import Layer
from core.layer_scanner import LayerScanRunner
from core.models import (
    IndexReport,
    IndexState,
    LayerDescriptor,
    LayerResult,
    LayerStatus,
    Manifest,
    ScannerIdentity,
)
from core.persistence import Store
from integrations.fetcher import Fetcher

logger = logging.getLogger(__name__)


class IndexController:
    """
    Indexes manifests: fetch, scan, coalesce, persist.

    One controller can serve concurrent ``index_manifest`` calls; the shared
    FindingsIndex deduplicates scans of layers common to several manifests.
    """

    def __init__(
        self,
        config: IndexerConfig,
        fetcher: Fetcher,
        store: Store,
        index: Optional[FindingsIndex] = None,
    ):
        """
        Initialize the controller.

        Args:
            config: Explicit indexer configuration
            fetcher: Layer retrieval collaborator
            store: Report and findings storage
            index: Findings index to share between controllers (one is
                created over ``store`` if omitted)
        """
        self.config = config
        self.fetcher = fetcher
        self.store = store
        self.index = index or FindingsIndex(store)
        self.runner = LayerScanRunner(self.index, max_workers=config.max_scanner_workers)
        self.coalescer = Coalescer()
        self._states_lock = threading.Lock()
        self._active: dict[str, IndexState] = {}
        self._finished: OrderedDict[str, IndexState] = OrderedDict()

    def _transition(self, ctx: ScanContext, manifest_id: str, state: IndexState) -> None:
        with self._states_lock:
            if state in (IndexState.DONE, IndexState.FAILED):
                self._active.pop(manifest_id, None)
                self._finished[manifest_id] = state
                self._finished.move_to_end(manifest_id)
                while len(self._finished) > FINISHED_STATE_HISTORY:
                    self._finished.popitem(last=False)
            else:
                self._active[manifest_id] = state
        ctx.span(logger).debug(f"-> {state.value}")

    def state(self, manifest_id: str) -> Optional[IndexState]:
        """
        State of a manifest's indexing request.

        In-progress requests report their current state; only the most
        recently finished requests are remembered.
        """
        with self._states_lock:
            return self._active.get(manifest_id) or self._finished.get(manifest_id)

    def in_progress(self) -> int:
        """Number of manifests currently being indexed."""
        with self._states_lock:
            return len(self._active)

    @property
    def airgap(self) -> bool:
        return self.config.airgap or self.fetcher.airgap

    def active_identities(self) -> tuple[ScannerIdentity, ...]:
        return self.config.active_identities(self.airgap)

    def index_manifest(
        self, manifest: Manifest, ctx: Optional[ScanContext] = None, force: bool = False
    ) -> IndexReport:
        """
        Index one manifest.

        Args:
            manifest: Manifest with layers in overlay order
            ctx: Cancellation and logging context (a fresh one honoring the
                configured timeout is created if omitted)
            force: Re-index even if a matching report is stored

        Returns:
            Final IndexReport (state DONE)

        Raises:
            FetchException: If a layer could not be fetched
            IndexingException: If every layer failed to scan
            StoreException: If the report could not be persisted
            ScanCancelled: If ctx was cancelled
        """
        if ctx is None:
            ctx = ScanContext(timeout=self.config.timeout)
        ctx = ctx.with_fields(manifest=manifest.manifest_id)
        log = ctx.span(logger)
        manifest_id = manifest.manifest_id

        scanners = self.config.active_scanners(self.airgap)
        identities = self.active_identities()

        cached = None if force else self._cached_report(manifest_id, identities)
        if cached is not None:
            log.info(f"✓ {manifest_id} (cached report)")
            self._transition(ctx, manifest_id, IndexState.DONE)
            return cached

        log.info(f"Indexing {manifest_id}: {len(manifest.layers)} layers, {len(scanners)} scanners")

        layers: list[Layer] = []
        try:
            self._transition(ctx, manifest_id, IndexState.FETCHING)
            try:
                layers = self._fetch_layers(ctx, manifest.layers)
            except FetchException as e:
                log.error(f"Fetch failed: {e}")
                self._transition(ctx, manifest_id, IndexState.FAILED)
                raise

            self._transition(ctx, manifest_id, IndexState.SCANNING)
            results = self._scan_layers(ctx, layers, scanners)
            ctx.check()

            if results and all(r.status == LayerStatus.FAILED for r in results):
                self._transition(ctx, manifest_id, IndexState.FAILED)
                raise IndexingException(manifest_id, "every layer failed to scan")

            self._transition(ctx, manifest_id, IndexState.COALESCING)
            report = self.coalescer.coalesce(manifest_id, results, identities)
            report = replace(report, state=IndexState.DONE)

            self._transition(ctx, manifest_id, IndexState.PERSISTING)
            try:
                self.store.persist_report(manifest_id, report)
            except StoreException as e:
                log.error(f"Persisting report failed: {e}")
                self._transition(ctx, manifest_id, IndexState.FAILED)
                raise

            self._transition(ctx, manifest_id, IndexState.DONE)
        except ScanCancelled:
            log.warning(f"Indexing cancelled: {ctx.reason}")
            self._transition(ctx, manifest_id, IndexState.FAILED)
            raise
        finally:
            for layer in layers:
                self.fetcher.release(layer)

        degraded = sum(1 for layer in report.layers if layer.status != LayerStatus.SUCCESS)
        log.info(
            f"✓ {manifest_id} - {len(report.packages)} packages, "
            f"{len(report.distributions)} distributions, {len(report.repositories)} repositories"
            + (f" ({degraded} degraded layers)" if degraded else "")
        )
        return report

    def _cached_report(
        self, manifest_id: str, identities: tuple[ScannerIdentity, ...]
    ) -> Optional[IndexReport]:
        """Return a stored report built with exactly the active scanner set."""
        try:
            report = self.store.get_report(manifest_id)
        except StoreException as e:
            logger.warning(f"Ignoring unreadable stored report: {e}")
            return None
        if report is None or not report.success or report.state != IndexState.DONE:
            return None
        if set(report.scanners) != set(identities):
            logger.debug(f"Stored report for {manifest_id} used a different scanner set")
            return None
        return replace(report, cache_hit=True)

    def _fetch_layers(self, ctx: ScanContext, descriptors: tuple[LayerDescriptor, ...]) -> list[Layer]:
        """Fetch every layer with bounded parallelism, all or nothing."""
        fetched: dict[int, Layer] = {}
        if not descriptors:
            return []
        fetch_ctx = ctx.child()

        workers = min(self.config.max_fetch_workers, len(descriptors))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_ordinal = {
                executor.submit(self._fetch_with_retry, fetch_ctx, descriptor, i): i
                for i, descriptor in enumerate(descriptors)
            }
            error: Optional[BaseException] = None
            for future in as_completed(future_to_ordinal):
                if future.cancelled():
                    continue
                ordinal = future_to_ordinal[future]
                try:
                    fetched[ordinal] = future.result()
                    continue
                except (FetchException, ScanCancelled) as e:
                    failure = e
                except Exception as e:
                    failure = FetchException(descriptors[ordinal].digest, f"{type(e).__name__}: {e}")
                    failure.__cause__ = e
                if error is not None:
                    continue
                error = failure
                # Stop queued fetches and wake up backoff sleeps.
                fetch_ctx.cancel(f"fetch failed: {failure}")
                for pending in future_to_ordinal:
                    pending.cancel()

        if error is not None:
            for layer in fetched.values():
                self.fetcher.release(layer)
            raise error

        return [fetched[i] for i in sorted(fetched)]

    def _fetch_with_retry(
        self, ctx: ScanContext, descriptor: LayerDescriptor, ordinal: int
    ) -> Layer:
        """
        Fetch one layer, retrying transient failures with exponential backoff.

        Raises:
            FetchException: On a permanent failure or when attempts run out
            ScanCancelled: If ctx is cancelled while waiting
        """
        log = ctx.with_fields(layer=descriptor.digest).span(logger)
        attempt = 0
        while True:
            attempt += 1
            ctx.check()
            try:
                return self.fetcher.get(descriptor, ordinal)
            except FetchException as e:
                classified = ErrorClassifier.classify(e.reason, e.error_type)
                if not classified.retry_recommended or attempt >= self.config.fetch_retries:
                    log.error(
                        f"Fetch failed after {attempt} attempt(s) "
                        f"({classified.category.value}): {e.reason}"
                    )
                    raise
                delay = backoff_delay(attempt, self.config.fetch_backoff, classified)
                log.warning(
                    f"Fetch attempt {attempt} failed ({classified.category.value}), "
                    f"retrying in {delay:.1f}s: {e.reason}"
                )
                if ctx.wait(delay):
                    ctx.check()

    def _scan_layers(
        self, ctx: ScanContext, layers: list[Layer], scanners: list
    ) -> list[LayerResult]:
        """Scan layers with bounded parallelism; results keep manifest order."""
        if not layers:
            return []

        results: dict[int, LayerResult] = {}
        workers = min(self.config.max_layer_workers, len(layers))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_layer = {
                executor.submit(self.runner.scan_layer, ctx, layer, scanners): layer
                for layer in layers
            }
            for i, future in enumerate(as_completed(future_to_layer), 1):
                layer = future_to_layer[future]
                results[layer.ordinal] = future.result()
                logger.debug(f"Progress: {i}/{len(layers)} layers scanned")

        return [results[layer.ordinal] for layer in layers]
