"""
Report and findings persistence.

Defines the Store collaborator used by the controller and two
implementations: an in-process MemoryStore and a FileStore writing JSON
documents to disk.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from core.cache import FindingsCache
from core.exceptions import StoreException
from core.models import IndexReport, LayerFindings, ScannerIdentity

logger = logging.getLogger(__name__)


class Store(ABC):
    """
    Abstract base class for report and findings storage.

    ``persist_report`` must be an idempotent upsert keyed by manifest id.
    """

    @abstractmethod
    def persist_report(self, manifest_id: str, report: IndexReport) -> None:
        """
        Save a manifest's report, replacing any previous one.

        Raises:
            StoreException: If the report cannot be saved
        """
        pass

    @abstractmethod
    def get_report(self, manifest_id: str) -> Optional[IndexReport]:
        """Load a previously persisted report, or None."""
        pass

    @abstractmethod
    def get_cached_findings(
        self, layer_hash: str, identity: ScannerIdentity
    ) -> Optional[LayerFindings]:
        """Load cached findings for (layer, scanner), or None."""
        pass

    @abstractmethod
    def put_cached_findings(self, findings: LayerFindings) -> None:
        """Record findings for (layer, scanner)."""
        pass

    @abstractmethod
    def invalidate_findings(self, identity: ScannerIdentity) -> int:
        """
        Drop all findings cached for one scanner version, across configurations.

        Returns:
            Number of entries removed
        """
        pass


class MemoryStore(Store):
    """Thread-safe in-memory store, useful for tests and one-shot runs."""

    def __init__(self):
        self._lock = threading.Lock()
        self._reports: dict[str, IndexReport] = {}
        self._findings: dict[tuple[str, ScannerIdentity], LayerFindings] = {}

    def persist_report(self, manifest_id: str, report: IndexReport) -> None:
        with self._lock:
            self._reports[manifest_id] = report

    def get_report(self, manifest_id: str) -> Optional[IndexReport]:
        with self._lock:
            return self._reports.get(manifest_id)

    def get_cached_findings(
        self, layer_hash: str, identity: ScannerIdentity
    ) -> Optional[LayerFindings]:
        with self._lock:
            return self._findings.get((layer_hash, identity))

    def put_cached_findings(self, findings: LayerFindings) -> None:
        with self._lock:
            # First writer wins: findings are immutable once produced.
            self._findings.setdefault((findings.layer_hash, findings.scanner), findings)

    def invalidate_findings(self, identity: ScannerIdentity) -> int:
        with self._lock:
            target = identity.unconfigured()
            keys = [k for k in self._findings if k[1].unconfigured() == target]
            for k in keys:
                del self._findings[k]
            return len(keys)


class FileStore(Store):
    """
    Store backed by JSON files on disk.

    Reports are written to ``<root>/reports`` and findings to
    ``<root>/findings`` through a FindingsCache.
    """

    def __init__(self, root: Path, cache_enabled: bool = True):
        """
        Initialize the file store.

        Args:
            root: Root directory of the store
            cache_enabled: Whether layer findings are cached
        """
        self.root = root
        self.reports_dir = root / "reports"
        self.findings = FindingsCache(root / "findings", enabled=cache_enabled)
        try:
            self.reports_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreException(None, f"cannot create {self.reports_dir}: {e}") from e

    def _report_path(self, manifest_id: str) -> Path:
        safe_id = manifest_id.replace("/", "_").replace(":", "_")
        return self.reports_dir / f"{safe_id}.json"

    def persist_report(self, manifest_id: str, report: IndexReport) -> None:
        """
        Save a report atomically.

        Raises:
            StoreException: If save fails
        """
        path = self._report_path(manifest_id)
        try:
            # Write atomically by writing to temp file then renaming
            temp_path = path.with_suffix(f".{threading.get_ident()}.tmp")
            temp_path.write_text(json.dumps(report.to_dict(), indent=2, sort_keys=True))
            temp_path.replace(path)
            logger.debug(f"Saved report for {manifest_id}: {path}")
        except (OSError, TypeError, ValueError) as e:
            raise StoreException(manifest_id, f"failed to save report: {e}") from e

    def get_report(self, manifest_id: str) -> Optional[IndexReport]:
        """
        Load a report.

        Raises:
            StoreException: If the report exists but cannot be read
        """
        path = self._report_path(manifest_id)
        if not path.exists():
            return None
        try:
            return IndexReport.from_dict(json.loads(path.read_text()))
        except json.JSONDecodeError as e:
            raise StoreException(manifest_id, f"invalid report file: {e}") from e
        except (OSError, KeyError, ValueError) as e:
            raise StoreException(manifest_id, f"failed to load report: {e}") from e

    def clear_reports(self) -> int:
        """Delete every stored report, returning how many were removed."""
        deleted = 0
        for path in self.reports_dir.glob("*.json"):
            try:
                path.unlink()
                deleted += 1
            except OSError as e:
                logger.warning(f"Failed to delete report {path}: {e}")
        logger.info(f"Cleared {deleted} stored reports")
        return deleted

    def get_cached_findings(
        self, layer_hash: str, identity: ScannerIdentity
    ) -> Optional[LayerFindings]:
        return self.findings.get(layer_hash, identity)

    def put_cached_findings(self, findings: LayerFindings) -> None:
        self.findings.put(findings)

    def invalidate_findings(self, identity: ScannerIdentity) -> int:
        return self.findings.invalidate(identity)


__all__ = ["Store", "MemoryStore", "FileStore"]
