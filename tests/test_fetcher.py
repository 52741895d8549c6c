"""Tests for layer fetchers."""

from unittest.mock import Mock

import pytest
import requests

from conftest import build_layer_archive, sha256_digest
from core.exceptions import FetchException
from core.models import LayerDescriptor
from integrations.fetcher import HTTPFetcher, LocalFetcher, split_digest, verify_digest


@pytest.fixture
def blob(tmp_path):
    """A layer archive and its digest."""
    path = build_layer_archive(tmp_path / "blob.tar", {"etc/os-release": "ID=ubuntu\n"})
    return path, sha256_digest(path)


class TestDigests:
    """Tests for digest helpers."""

    def test_split(self):
        assert split_digest("sha256:ABC") == ("sha256", "abc")

    @pytest.mark.parametrize("digest", ["sha256", "sha256:", ":abc"])
    def test_malformed(self, digest):
        with pytest.raises(FetchException):
            split_digest(digest)

    def test_verify_ok(self, blob):
        path, digest = blob
        verify_digest(digest, path)

    def test_verify_mismatch(self, blob):
        path, _ = blob
        with pytest.raises(FetchException) as exc_info:
            verify_digest("sha256:" + "0" * 64, path)
        assert exc_info.value.error_type == "digest_mismatch"

    def test_unknown_algorithm_skipped(self, blob):
        path, _ = blob
        verify_digest("made-up-algo:1234", path)


class TestLocalFetcher:
    """Tests for LocalFetcher."""

    def test_file_uri(self, blob):
        path, digest = blob
        layer = LocalFetcher().get(LayerDescriptor(digest=digest, uri=path.as_uri()), ordinal=2)
        assert layer.path == path
        assert layer.hash == digest
        assert layer.ordinal == 2

    def test_blob_dir_layout(self, tmp_path, blob):
        """Test blobs are found as <blob_dir>/<algorithm>/<hex>."""
        path, digest = blob
        algorithm, value = split_digest(digest)
        (tmp_path / "blobs" / algorithm).mkdir(parents=True)
        target = tmp_path / "blobs" / algorithm / value
        target.write_bytes(path.read_bytes())

        layer = LocalFetcher(blob_dir=tmp_path / "blobs").get(LayerDescriptor(digest=digest))
        assert layer.path == target

    def test_missing_blob(self, tmp_path):
        fetcher = LocalFetcher(blob_dir=tmp_path)
        with pytest.raises(FetchException) as exc_info:
            fetcher.get(LayerDescriptor(digest="sha256:" + "1" * 64))
        assert exc_info.value.error_type == "not_found"

    def test_digest_mismatch(self, blob):
        path, _ = blob
        with pytest.raises(FetchException, match="digest mismatch"):
            LocalFetcher().get(LayerDescriptor(digest="sha256:" + "2" * 64, uri=str(path)))

    def test_remote_uri_rejected(self):
        with pytest.raises(FetchException, match="unsupported URI scheme"):
            LocalFetcher().get(LayerDescriptor(digest="sha256:aa", uri="https://registry/blob"))

    def test_airgap_signal(self):
        assert LocalFetcher(airgap=True).airgap is True
        assert LocalFetcher().airgap is False


class TestHTTPFetcher:
    """Tests for HTTPFetcher with a mocked requests session."""

    def _session(self, content=b"", status_error=None, side_effect=None):
        session = Mock(spec=requests.Session)
        if side_effect is not None:
            session.get.side_effect = side_effect
            return session
        response = Mock()
        response.iter_content.return_value = [content]
        if status_error is not None:
            response.raise_for_status.side_effect = status_error
        session.get.return_value = response
        return session

    def _http_error(self, status):
        response = Mock()
        response.status_code = status
        return requests.HTTPError(f"{status} Client Error", response=response)

    def test_download_and_release(self, tmp_path, blob):
        """Test a blob is downloaded, verified, and removed on release."""
        path, digest = blob
        session = self._session(content=path.read_bytes())
        fetcher = HTTPFetcher(session=session, scratch_dir=tmp_path / "scratch")
        descriptor = LayerDescriptor(
            digest=digest, uri="https://registry/v2/x/blobs/" + digest, headers={"Authorization": "Bearer t"}
        )

        layer = fetcher.get(descriptor)
        assert layer.path.read_bytes() == path.read_bytes()
        _, kwargs = session.get.call_args
        assert kwargs["headers"] == {"Authorization": "Bearer t"}
        assert kwargs["stream"] is True

        fetcher.release(layer)
        assert not layer.path.exists()

    def test_shared_blob_downloaded_once(self, tmp_path, blob):
        """Test a blob held by two requests survives the first release."""
        path, digest = blob
        session = self._session(content=path.read_bytes())
        fetcher = HTTPFetcher(session=session, scratch_dir=tmp_path / "scratch")
        descriptor = LayerDescriptor(digest=digest, uri="https://registry/blob")

        first = fetcher.get(descriptor)
        second = fetcher.get(descriptor)
        assert session.get.call_count == 1

        fetcher.release(first)
        assert second.path.exists()
        fetcher.release(second)
        assert not second.path.exists()

    @pytest.mark.parametrize(
        "status,error_type",
        [(404, "not_found"), (401, "auth"), (403, "auth"), (429, "rate_limit"), (500, "unknown")],
    )
    def test_http_errors(self, tmp_path, status, error_type):
        session = self._session(status_error=self._http_error(status))
        fetcher = HTTPFetcher(session=session, scratch_dir=tmp_path)
        with pytest.raises(FetchException) as exc_info:
            fetcher.get(LayerDescriptor(digest="sha256:" + "3" * 64, uri="https://registry/blob"))
        assert exc_info.value.error_type == error_type

    def test_timeout(self, tmp_path):
        session = self._session(side_effect=requests.Timeout("read timed out"))
        fetcher = HTTPFetcher(session=session, scratch_dir=tmp_path)
        with pytest.raises(FetchException) as exc_info:
            fetcher.get(LayerDescriptor(digest="sha256:" + "4" * 64, uri="https://registry/blob"))
        assert exc_info.value.error_type == "timeout"

    def test_corrupt_download_leaves_nothing(self, tmp_path):
        """Test a digest mismatch removes the partial download."""
        session = self._session(content=b"tampered")
        scratch = tmp_path / "scratch"
        fetcher = HTTPFetcher(session=session, scratch_dir=scratch)
        with pytest.raises(FetchException) as exc_info:
            fetcher.get(LayerDescriptor(digest="sha256:" + "5" * 64, uri="https://registry/blob"))
        assert exc_info.value.error_type == "digest_mismatch"
        assert list(scratch.iterdir()) == []

    def test_close_removes_owned_scratch(self):
        fetcher = HTTPFetcher(session=self._session())
        scratch = fetcher.scratch_dir
        assert scratch.exists()
        fetcher.close()
        assert not scratch.exists()
