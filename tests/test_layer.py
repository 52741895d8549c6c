"""Tests for layer archive access and scan contexts."""

import logging
import threading
import time

import pytest

from conftest import Symlink
from core.context import ScanContext
from core.exceptions import LayerException, ScanCancelled
from core.layer import Layer, iter_entries, normalize_path


class TestNormalizePath:
    """Tests for archive member name normalization."""

    @pytest.mark.parametrize(
        "name",
        ["etc/os-release", "./etc/os-release", "/etc/os-release", "etc//os-release", "etc/./os-release"],
    )
    def test_variants(self, name):
        assert normalize_path(name) == "etc/os-release"


class TestLayerFiles:
    """Tests for Layer.files."""

    def test_reads_requested_files(self, make_layer):
        """Test only requested regular files are returned."""
        layer = make_layer({"./etc/os-release": "ID=ubuntu\n", "etc/hostname": "box\n"})
        files = layer.files("etc/os-release", "etc/lsb-release")
        assert files == {"etc/os-release": b"ID=ubuntu\n"}

    def test_follows_symlinks(self, make_layer):
        """Test relative and absolute symlinks resolve within the archive."""
        layer = make_layer(
            {
                "usr/lib/os-release": "ID=ubuntu\n",
                "etc/os-release": Symlink("../usr/lib/os-release"),
                "etc/lsb-release": Symlink("/usr/lib/os-release"),
            }
        )
        files = layer.files("etc/os-release", "etc/lsb-release")
        assert files["etc/os-release"] == b"ID=ubuntu\n"
        assert files["etc/lsb-release"] == b"ID=ubuntu\n"

    def test_dangling_symlink_is_missing(self, make_layer):
        layer = make_layer({"etc/os-release": Symlink("../usr/lib/os-release")})
        assert layer.files("etc/os-release") == {}

    def test_symlink_loop_is_missing(self, make_layer):
        layer = make_layer({"etc/a": Symlink("b"), "etc/b": Symlink("a")})
        assert layer.files("etc/a") == {}

    def test_compressed_archive(self, make_layer):
        """Test gzip-compressed layers are readable."""
        layer = make_layer({"etc/os-release": "ID=debian\n"}, compression="gz")
        assert layer.files("etc/os-release") == {"etc/os-release": b"ID=debian\n"}

    def test_unreadable_archive(self, tmp_path):
        """Test a corrupt archive raises LayerException."""
        path = tmp_path / "garbage.tar"
        path.write_bytes(b"this is not a tar archive" * 10)
        layer = Layer(hash="sha256:bad", path=path)
        with pytest.raises(LayerException, match="sha256:bad"):
            layer.files("etc/os-release")

    def test_missing_archive(self, tmp_path):
        layer = Layer(hash="sha256:gone", path=tmp_path / "missing.tar")
        with pytest.raises(LayerException):
            layer.reader()

    def test_cancelled_context(self, make_layer):
        """Test reading stops when the context is cancelled."""
        layer = make_layer({"etc/os-release": "ID=ubuntu\n"})
        ctx = ScanContext()
        ctx.cancel("stop")
        with pytest.raises(ScanCancelled, match="stop"):
            layer.files("etc/os-release", ctx=ctx)


class TestIterEntries:
    """Tests for repeated streaming passes."""

    def test_independent_passes(self, make_layer, ctx):
        """Test each pass rewinds the stream."""
        layer = make_layer({"a": "1", "b": "2"})
        with layer.reader() as rd:
            first = [m.name for m, _ in iter_entries(ctx, rd)]
            second = [m.name for m, _ in iter_entries(ctx, rd)]
        assert first == second == ["a", "b"]

    def test_readers_do_not_share_cursor(self, make_layer, ctx):
        layer = make_layer({"a": "1", "b": "2"})
        with layer.reader() as one, layer.reader() as two:
            next(iter_entries(ctx, one))
            assert [m.name for m, _ in iter_entries(ctx, two)] == ["a", "b"]


class TestScanContext:
    """Tests for ScanContext cancellation and spans."""

    def test_with_fields_shares_cancellation(self):
        ctx = ScanContext()
        span = ctx.with_fields(layer="sha256:aa")
        ctx.cancel("done")
        assert span.cancelled
        assert span.reason == "done"
        assert span.fields == {"layer": "sha256:aa"}

    def test_child_cancel_does_not_reach_parent(self):
        """Test cancelling a child leaves its parent running."""
        parent = ScanContext()
        child = parent.child()
        child.cancel("fetch failed")
        assert child.cancelled
        assert not parent.cancelled

    def test_parent_cancel_reaches_child(self):
        parent = ScanContext()
        child = parent.child()
        parent.cancel("shutdown")
        assert child.cancelled
        with pytest.raises(ScanCancelled, match="shutdown"):
            child.check()

    def test_deadline(self):
        """Test an expired deadline cancels the context."""
        ctx = ScanContext(timeout=0)
        with pytest.raises(ScanCancelled, match="deadline exceeded"):
            ctx.check()

    def test_wait_wakes_on_cancel(self):
        """Test wait returns early once the context is cancelled."""
        ctx = ScanContext()
        threading.Timer(0.05, ctx.cancel).start()
        start = time.monotonic()
        assert ctx.wait(5) is True
        assert time.monotonic() - start < 2

    def test_wait_times_out(self):
        assert ScanContext().wait(0.01) is False

    def test_span_prefixes_fields(self, caplog):
        """Test span loggers attribute messages to the layer and scanner."""
        ctx = ScanContext(fields={"layer": "sha256:aa", "scanner": "package/dpkg@v1"})
        with caplog.at_level(logging.INFO):
            ctx.span(logging.getLogger("strata.test")).info("hello")
        assert "[layer=sha256:aa scanner=package/dpkg@v1] hello" in caplog.text
