"""
Layer retrieval.

The Fetcher turns a manifest's layer descriptor into a Layer whose archive
is available on local disk. LocalFetcher reads blobs already on disk (an
OCI image layout's ``blobs`` directory or explicit file URIs); HTTPFetcher
downloads blobs with requests into a scratch directory.
"""

import hashlib
import logging
import shutil
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import requests

from constants import HTTP_CHUNK_SIZE, HTTP_FETCH_TIMEOUT
from core.exceptions import FetchException
from core.layer import Layer
from core.models import LayerDescriptor

logger = logging.getLogger(__name__)


def split_digest(digest: str) -> tuple[str, str]:
    """
    Split "algorithm:hex" into its parts.

    Raises:
        FetchException: If the digest is malformed
    """
    algorithm, sep, value = digest.partition(":")
    if not sep or not algorithm or not value:
        raise FetchException(digest, "malformed digest", error_type="not_found")
    return algorithm, value.lower()


def verify_digest(digest: str, path: Path) -> None:
    """
    Check a file's content against its digest.

    Digests using an algorithm hashlib does not provide are accepted as-is.

    Raises:
        FetchException: On mismatch
    """
    algorithm, expected = split_digest(digest)
    if algorithm not in hashlib.algorithms_available:
        logger.debug(f"Cannot verify {algorithm} digest for {digest}, skipping")
        return

    h = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(HTTP_CHUNK_SIZE), b""):
            h.update(chunk)
    if h.hexdigest() != expected:
        raise FetchException(
            digest,
            f"digest mismatch (got {algorithm}:{h.hexdigest()})",
            error_type="digest_mismatch",
        )


class Fetcher(ABC):
    """
    Abstract base class for layer retrieval.

    The ``airgap`` signal tells the controller to disable scanners that
    require network access; it does not affect local-only scanners.
    """

    def __init__(self, airgap: bool = False):
        self._airgap = airgap

    @property
    def airgap(self) -> bool:
        return self._airgap

    @abstractmethod
    def get(self, descriptor: LayerDescriptor, ordinal: int = 0) -> Layer:
        """
        Make a layer's archive available locally.

        Args:
            descriptor: Layer descriptor from the manifest
            ordinal: Position of the layer in the manifest

        Returns:
            Layer handle

        Raises:
            FetchException: If the layer cannot be retrieved
        """
        pass

    def release(self, layer: Layer) -> None:
        """Release resources held for a fetched layer."""
        return None

    def close(self) -> None:
        """Release everything held by the fetcher."""
        return None


class LocalFetcher(Fetcher):
    """
    Fetcher for blobs already on local disk.

    Descriptors with a ``file://`` or plain path URI are read from there;
    otherwise blobs are looked up as ``<blob_dir>/<algorithm>/<hex>``.
    """

    def __init__(self, blob_dir: Optional[Path] = None, verify: bool = True, airgap: bool = False):
        """
        Initialize local fetcher.

        Args:
            blob_dir: Directory laid out like an OCI layout's ``blobs``
            verify: Whether to check blob content against its digest
            airgap: Airgap signal for the controller
        """
        super().__init__(airgap=airgap)
        self.blob_dir = blob_dir
        self.verify = verify

    def _locate(self, descriptor: LayerDescriptor) -> Path:
        if descriptor.uri:
            parsed = urlparse(descriptor.uri)
            if parsed.scheme in ("", "file"):
                return Path(parsed.path if parsed.scheme == "file" else descriptor.uri)
            raise FetchException(
                descriptor.digest,
                f"unsupported URI scheme for local fetch: {parsed.scheme}",
                error_type="not_found",
            )
        if self.blob_dir is None:
            raise FetchException(descriptor.digest, "no URI and no blob directory", error_type="not_found")
        algorithm, value = split_digest(descriptor.digest)
        return self.blob_dir / algorithm / value

    def get(self, descriptor: LayerDescriptor, ordinal: int = 0) -> Layer:
        path = self._locate(descriptor)
        if not path.is_file():
            raise FetchException(descriptor.digest, f"blob not found at {path}", error_type="not_found")
        if self.verify:
            verify_digest(descriptor.digest, path)
        logger.debug(f"Using local blob {path} for {descriptor.digest}")
        return Layer(hash=descriptor.digest, path=path, ordinal=ordinal)


class HTTPFetcher(Fetcher):
    """
    Fetcher downloading layer blobs over HTTP(S).

    Blobs are streamed to a scratch directory, verified against their
    digest, and removed again on ``release``.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        scratch_dir: Optional[Path] = None,
        timeout: int = HTTP_FETCH_TIMEOUT,
        airgap: bool = False,
    ):
        """
        Initialize HTTP fetcher.

        Args:
            session: requests session (a new one is created if omitted)
            scratch_dir: Directory for downloaded blobs (temporary if omitted)
            timeout: Per-request timeout in seconds
            airgap: Airgap signal for the controller
        """
        super().__init__(airgap=airgap)
        self.session = session or requests.Session()
        self.timeout = timeout
        self._owns_scratch = scratch_dir is None
        self.scratch_dir = scratch_dir or Path(tempfile.mkdtemp(prefix="strata-"))
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._refs: dict[Path, int] = {}

    def _target(self, descriptor: LayerDescriptor) -> Path:
        algorithm, value = split_digest(descriptor.digest)
        return self.scratch_dir / f"{algorithm}-{value}"

    def get(self, descriptor: LayerDescriptor, ordinal: int = 0) -> Layer:
        if not descriptor.uri:
            raise FetchException(descriptor.digest, "descriptor has no URI", error_type="not_found")

        target = self._target(descriptor)
        with self._lock:
            # Blobs shared by several requests are downloaded once.
            if target in self._refs and target.exists():
                self._refs[target] += 1
                return Layer(hash=descriptor.digest, path=target, ordinal=ordinal)

        self._download(descriptor, target)
        with self._lock:
            self._refs[target] = self._refs.get(target, 0) + 1
        return Layer(hash=descriptor.digest, path=target, ordinal=ordinal)

    def _download(self, descriptor: LayerDescriptor, target: Path) -> None:
        """Stream a blob to disk and verify it."""
        partial = target.with_suffix(f".{threading.get_ident()}.part")
        logger.info(f"Fetching layer {descriptor.digest}")
        try:
            response = self.session.get(
                descriptor.uri,
                headers=descriptor.headers,
                stream=True,
                timeout=self.timeout,
            )
            response.raise_for_status()
            with open(partial, "wb") as f:
                for chunk in response.iter_content(chunk_size=HTTP_CHUNK_SIZE):
                    f.write(chunk)
            verify_digest(descriptor.digest, partial)
            partial.replace(target)
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else 0
            raise FetchException(
                descriptor.digest, f"HTTP {status}: {e}", error_type=self._error_type(status)
            ) from e
        except requests.Timeout as e:
            raise FetchException(descriptor.digest, f"request timed out: {e}", error_type="timeout") from e
        except requests.RequestException as e:
            raise FetchException(descriptor.digest, str(e)) from e
        except OSError as e:
            raise FetchException(descriptor.digest, f"writing blob failed: {e}") from e
        finally:
            if partial.exists():
                partial.unlink()

    @staticmethod
    def _error_type(status: int) -> str:
        if status == 404:
            return "not_found"
        if status in (401, 403):
            return "auth"
        if status == 429:
            return "rate_limit"
        return "unknown"

    def release(self, layer: Layer) -> None:
        with self._lock:
            count = self._refs.get(layer.path, 0) - 1
            if count > 0:
                self._refs[layer.path] = count
                return
            self._refs.pop(layer.path, None)
        try:
            layer.path.unlink()
        except FileNotFoundError:
            pass

    def close(self) -> None:
        if self._owns_scratch:
            shutil.rmtree(self.scratch_dir, ignore_errors=True)
