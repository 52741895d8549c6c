"""
Exception hierarchy for Strata.

Provides a standardized exception hierarchy for consistent error handling
across the application. All exceptions inherit from StrataException.
"""

from typing import Optional


class StrataException(Exception):
    """Base exception for all Strata errors."""
    pass


class LayerException(StrataException):
    """A layer's archive could not be read."""

    def __init__(self, layer_hash: str, reason: str):
        """
        Initialize layer exception.

        Args:
            layer_hash: Digest of the unreadable layer
            reason: Reason for failure
        """
        self.layer_hash = layer_hash
        self.reason = reason
        super().__init__(f"Unable to read layer {layer_hash}: {reason}")


class ScannerException(StrataException):
    """One scanner could not complete on one layer."""

    def __init__(self, layer_hash: str, scanner: str, reason: str):
        """
        Initialize scanner exception.

        Args:
            layer_hash: Digest of the layer being scanned
            scanner: Scanner identity string
            reason: Reason for failure
        """
        self.layer_hash = layer_hash
        self.scanner = scanner
        self.reason = reason
        super().__init__(f"Scanner {scanner} failed on layer {layer_hash}: {reason}")


class InvariantViolation(ScannerException):
    """The layer archive changed underneath a multi-pass scan."""
    pass


class ScanCancelled(StrataException):
    """A scan was interrupted by cancellation or deadline expiry."""

    def __init__(self, reason: str = "scan cancelled"):
        self.reason = reason
        super().__init__(reason)


class FetchException(StrataException):
    """Layer retrieval failed."""

    def __init__(self, digest: str, reason: str, error_type: str = "unknown"):
        """
        Initialize fetch exception.

        Args:
            digest: Digest of the layer that failed to fetch
            reason: Reason for failure
            error_type: Coarse error type used for retry classification
        """
        self.digest = digest
        self.reason = reason
        self.error_type = error_type
        super().__init__(f"Failed to fetch layer {digest}: {reason}")


class StoreException(StrataException):
    """Persisting or loading a report failed."""

    def __init__(self, manifest_id: Optional[str], reason: str):
        self.manifest_id = manifest_id
        self.reason = reason
        if manifest_id:
            super().__init__(f"Store operation failed for {manifest_id}: {reason}")
        else:
            super().__init__(f"Store operation failed: {reason}")


class IndexingException(StrataException):
    """No layer of a manifest produced any findings."""

    def __init__(self, manifest_id: str, reason: str):
        self.manifest_id = manifest_id
        self.reason = reason
        super().__init__(f"Indexing {manifest_id} failed: {reason}")


class ConfigurationException(StrataException):
    """Configuration is invalid or missing."""
    pass


__all__ = [
    "StrataException",
    "LayerException",
    "ScannerException",
    "InvariantViolation",
    "ScanCancelled",
    "FetchException",
    "StoreException",
    "IndexingException",
    "ConfigurationException",
]
