"""
Content-addressed caching and deduplication of layer scans.

FindingsCache stores per-(layer, scanner) findings as individual JSON files,
keyed by layer digest and scanner identity. FindingsIndex sits in front of a
Store and guarantees at most one in-flight scan per key, even when several
manifests referencing the same layer are indexed concurrently.
"""

import json
import logging
import os
import shutil
import threading
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import Optional

from constants import INFLIGHT_POLL_INTERVAL
from core.context import ScanContext
from core.exceptions import ScanCancelled, ScannerException
from core.layer import Layer
from core.models import LayerFindings, ScannerIdentity
from core.scanner_interface import VersionedScanner

logger = logging.getLogger(__name__)


class FindingsCache:
    """
    File-backed cache of layer findings.

    Each entry is stored as a separate JSON file under a directory named
    after the scanner identity. This approach provides:
    - Fast lookups without loading the entire cache into memory
    - Invalidation of one scanner identity by removing one directory
    - Atomic writes to prevent corruption
    """

    def __init__(self, cache_dir: Path, enabled: bool = True):
        """
        Initialize findings cache.

        Args:
            cache_dir: Directory to store cache files
            enabled: Whether caching is enabled
        """
        self.cache_dir = cache_dir
        self.enabled = enabled
        self.hits = 0
        self.misses = 0
        self._stats_lock = threading.Lock()

        if self.enabled:
            self._setup_cache_dir()

    def _setup_cache_dir(self) -> None:
        """Create cache directory if it doesn't exist."""
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Findings cache directory: {self.cache_dir}")
        except OSError as e:
            logger.warning(f"Failed to create cache directory: {e}")
            self.enabled = False

    def _get_cache_path(self, layer_hash: str, identity: ScannerIdentity) -> Path:
        """
        Get file path for a cache entry.

        Args:
            layer_hash: Layer digest
            identity: Scanner identity

        Returns:
            Path to cache file
        """
        # Sanitize key for filesystem
        safe_hash = layer_hash.replace("/", "_").replace(":", "_")
        safe_scanner = identity.cache_key.replace("/", "_").replace(":", "_")
        if identity.config_digest:
            safe_hash = f"{safe_hash}.{identity.config_digest}"
        return self.cache_dir / safe_scanner / f"{safe_hash}.json"

    def _count(self, hit: bool) -> None:
        with self._stats_lock:
            if hit:
                self.hits += 1
            else:
                self.misses += 1

    def get(self, layer_hash: str, identity: ScannerIdentity) -> Optional[LayerFindings]:
        """
        Retrieve cached findings.

        Args:
            layer_hash: Layer digest
            identity: Scanner identity

        Returns:
            Cached LayerFindings if available, None otherwise
        """
        if not self.enabled:
            self._count(False)
            return None

        cache_path = self._get_cache_path(layer_hash, identity)

        try:
            if not cache_path.exists():
                self._count(False)
                return None

            with open(cache_path, "r") as f:
                data = json.load(f)

            findings = LayerFindings.from_dict(data)

            # Validate key matches
            if findings.layer_hash != layer_hash or findings.scanner != identity:
                logger.warning(f"Cache key mismatch for {layer_hash} ({identity})")
                self._count(False)
                return None

            logger.debug(f"Cache hit for {layer_hash} ({identity})")
            self._count(True)
            return findings

        except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
            logger.warning(f"Corrupted cache entry for {layer_hash} ({identity}): {e}")
            # Remove corrupted cache file
            try:
                cache_path.unlink()
            except OSError:
                pass
            self._count(False)
            return None

        except OSError as e:
            logger.error(f"Unexpected error reading cache for {layer_hash}: {e}")
            self._count(False)
            return None

    def put(self, findings: LayerFindings) -> None:
        """
        Store findings in cache.

        Args:
            findings: LayerFindings to cache
        """
        if not self.enabled:
            return

        cache_path = self._get_cache_path(findings.layer_hash, findings.scanner)
        temp_path = cache_path.with_suffix(f".{threading.get_ident()}.tmp")

        try:
            cache_path.parent.mkdir(parents=True, exist_ok=True)

            # Atomic write: write to temp file, then rename
            with open(temp_path, "w") as f:
                json.dump(findings.to_dict(), f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())

            temp_path.replace(cache_path)
            logger.debug(f"Cached findings for {findings.layer_hash} ({findings.scanner})")

        except OSError as e:
            logger.error(f"Failed to cache findings for {findings.layer_hash}: {e}")
            # Clean up temp file if it exists
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    pass

    def invalidate(self, identity: ScannerIdentity) -> int:
        """
        Drop every entry cached for one scanner version, whatever its configuration.

        Args:
            identity: Scanner identity to invalidate

        Returns:
            Number of entries removed
        """
        scanner_dir = self._get_cache_path("x", identity).parent
        if not scanner_dir.exists():
            return 0

        count = sum(1 for _ in scanner_dir.glob("*.json"))
        shutil.rmtree(scanner_dir, ignore_errors=True)
        logger.info(f"Invalidated {count} cache entries for {identity}")
        return count

    def clear(self) -> int:
        """
        Clear all cached entries.

        Returns:
            Number of cache files deleted
        """
        if not self.enabled or not self.cache_dir.exists():
            return 0

        deleted = 0
        for cache_file in self.cache_dir.glob("*/*.json"):
            try:
                cache_file.unlink()
                deleted += 1
            except OSError as e:
                logger.warning(f"Failed to delete cache file {cache_file}: {e}")

        logger.info(f"Cleared {deleted} cache entries")
        return deleted

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate as percentage."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return (self.hits / total) * 100

    def summary(self) -> str:
        """Get cache usage summary."""
        if not self.enabled:
            return "Cache disabled"

        total = self.hits + self.misses
        if total == 0:
            return "No cache activity"

        return f"Cache: {self.hits} hits, {self.misses} misses ({self.hit_rate:.1f}% hit rate)"


class FindingsIndex:
    """
    Deduplicating front for layer scans.

    Keyed by (layer hash, scanner identity). The first requester of a key
    runs the scan; concurrent requesters for the same key wait on that
    single computation. Only successful results reach the store, so failed
    or cancelled scans leave no entry behind.
    """

    def __init__(self, store: "Store"):
        """
        Initialize the index.

        Args:
            store: Store holding cached findings
        """
        self.store = store
        self.executions = 0
        self._lock = threading.Lock()
        self._inflight: dict[tuple[str, ScannerIdentity], Future] = {}

    def get_or_scan(
        self, ctx: ScanContext, layer: Layer, scanner: VersionedScanner
    ) -> LayerFindings:
        """
        Return findings for (layer, scanner), scanning at most once.

        Args:
            ctx: Scan context of the requester
            layer: Layer to scan
            scanner: Scanner to run

        Returns:
            LayerFindings, from cache or from a fresh scan

        Raises:
            ScanCancelled: If the requester's context is cancelled
            ScannerException: If the scan failed
        """
        identity = scanner.identity()
        key = (layer.hash, identity)

        while True:
            ctx.check()
            cached = self.store.get_cached_findings(layer.hash, identity)
            if cached is not None:
                return cached

            with self._lock:
                future = self._inflight.get(key)
                leader = future is None
                if leader:
                    future = Future()
                    self._inflight[key] = future

            if leader:
                return self._run(ctx, layer, scanner, key, future)

            try:
                return self._wait(ctx, future)
            except ScanCancelled:
                if ctx.cancelled:
                    raise
                # The leader was cancelled, not us: take over the key.
                logger.debug(f"In-flight scan of {layer.hash} ({identity}) was cancelled, retrying")

    def _run(
        self,
        ctx: ScanContext,
        layer: Layer,
        scanner: VersionedScanner,
        key: tuple[str, ScannerIdentity],
        future: Future,
    ) -> LayerFindings:
        """Run the scan as leader of ``key`` and publish the outcome."""
        identity = key[1]
        try:
            findings = self.store.get_cached_findings(layer.hash, identity)
            if findings is None:
                findings = self._scan(ctx, layer, scanner)
                self.store.put_cached_findings(findings)
            future.set_result(findings)
            return findings
        except BaseException as e:
            future.set_exception(e)
            raise
        finally:
            with self._lock:
                self._inflight.pop(key, None)

    def _scan(self, ctx: ScanContext, layer: Layer, scanner: VersionedScanner) -> LayerFindings:
        identity = scanner.identity()
        with self._lock:
            self.executions += 1
        try:
            entities = scanner.scan(ctx, layer)
        except (ScanCancelled, ScannerException):
            raise
        except Exception as e:
            raise ScannerException(layer.hash, str(identity), f"{type(e).__name__}: {e}") from e

        # A result that raced with cancellation is discarded, not cached.
        ctx.check()
        return LayerFindings.from_entities(layer.hash, identity, entities)

    @staticmethod
    def _wait(ctx: ScanContext, future: Future) -> LayerFindings:
        while True:
            ctx.check()
            try:
                return future.result(timeout=INFLIGHT_POLL_INTERVAL)
            except FutureTimeoutError:
                continue

    def invalidate(self, identity: ScannerIdentity) -> int:
        """Drop cached findings of one scanner identity."""
        return self.store.invalidate_findings(identity)

    def inflight(self) -> int:
        """Number of scans currently in flight."""
        with self._lock:
            return len(self._inflight)
