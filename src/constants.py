"""
Centralized configuration constants for Strata.

This module provides a single source of truth for configuration values
that are used across multiple modules, making them easier to update
and maintain.
"""

from pathlib import Path

# ============================================================================
# Concurrency and Performance
# ============================================================================

DEFAULT_MAX_LAYER_WORKERS = 4
"""Default number of layers of one manifest scanned concurrently."""

DEFAULT_MAX_SCANNER_WORKERS = 4
"""Default number of scanners run concurrently against one layer."""

DEFAULT_MAX_FETCH_WORKERS = 4
"""Default number of layers fetched concurrently."""

INFLIGHT_POLL_INTERVAL = 0.1
"""Seconds between cancellation checks while waiting on another scan (100ms)."""

FINISHED_STATE_HISTORY = 256
"""Finished requests whose final state a controller remembers."""

# ============================================================================
# Retry Configuration
# ============================================================================

DEFAULT_FETCH_RETRIES = 3
"""Maximum attempts for fetching one layer before the request fails."""

DEFAULT_FETCH_BACKOFF = 1.0
"""Base delay in seconds for exponential backoff between fetch attempts."""

MAX_FETCH_BACKOFF = 30.0
"""Upper bound on a single backoff delay (30 seconds)."""

# ============================================================================
# Timeouts (in seconds)
# ============================================================================

DEFAULT_INDEX_TIMEOUT = None
"""Default deadline for one indexing request (None disables it)."""

HTTP_FETCH_TIMEOUT = 60
"""Timeout for one layer blob download request (1 minute)."""

HTTP_CHUNK_SIZE = 1024 * 1024
"""Chunk size for streaming blob downloads (1 MiB)."""

# ============================================================================
# Archive Handling
# ============================================================================

MAX_SYMLINK_HOPS = 16
"""Maximum symlinks followed when resolving a path inside a layer."""

# ============================================================================
# Resource Paths
# ============================================================================

DEFAULT_CACHE_DIR = Path(".strata-cache")
"""Default directory for cached findings and persisted reports."""

DEFAULT_CONFIG_FILE = Path("strata.yaml")
"""Default indexer configuration file."""
