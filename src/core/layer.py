"""
Layer handle and archive access helpers.

A Layer is an immutable handle to one content-addressed filesystem diff.
Content is a tar archive (optionally compressed) on local disk; every call
to ``reader`` opens an independent stream so scanners never share a cursor.
"""

import logging
import posixpath
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

from constants import MAX_SYMLINK_HOPS
from core.context import ScanContext
from core.exceptions import LayerException

logger = logging.getLogger(__name__)


def normalize_path(name: str) -> str:
    """
    Normalize an archive member name for comparisons.

    Strips leading "./" and "/" and collapses redundant separators, so
    "./etc//os-release" and "/etc/os-release" both become "etc/os-release".
    """
    cleaned = posixpath.normpath("/" + name).lstrip("/")
    return cleaned


@dataclass(frozen=True)
class Layer:
    """
    Immutable handle to one layer's archive.

    Attributes:
        hash: Content digest; the layer's identity
        path: Local path of the tar archive
        ordinal: Position in the manifest being indexed
    """

    hash: str
    path: Path
    ordinal: int = 0

    def reader(self) -> BinaryIO:
        """
        Open a new seekable stream over the raw archive.

        The caller owns the stream and must close it.

        Returns:
            Binary file object positioned at the start of the archive

        Raises:
            LayerException: If the archive cannot be opened
        """
        try:
            return open(self.path, "rb")
        except OSError as e:
            raise LayerException(self.hash, f"opening layer failed: {e}") from e

    def files(self, *paths: str, ctx: Optional[ScanContext] = None) -> dict[str, bytes]:
        """
        Read a few well-known files from the layer.

        Symbolic links inside the archive are followed. Requested paths
        that are not present as regular files are left out of the result.

        Args:
            *paths: Paths relative to the layer root (e.g., "etc/os-release")
            ctx: Optional context checked between archive entries

        Returns:
            Mapping of requested path to file content

        Raises:
            LayerException: If the archive is unreadable
            ScanCancelled: If ctx is cancelled while reading
        """
        wanted = {normalize_path(p): p for p in paths}
        found: dict[str, bytes] = {}

        try:
            with tarfile.open(self.path, mode="r:*") as tf:
                members: dict[str, tarfile.TarInfo] = {}
                for member in tf:
                    if ctx is not None:
                        ctx.check()
                    members[normalize_path(member.name)] = member

                for name, requested in wanted.items():
                    member = self._resolve(members, name)
                    if member is None or not member.isreg():
                        continue
                    fh = tf.extractfile(member)
                    if fh is None:
                        continue
                    found[requested] = fh.read()
        except (tarfile.TarError, OSError) as e:
            raise LayerException(self.hash, f"reading archive failed: {e}") from e

        return found

    @staticmethod
    def _resolve(
        members: dict[str, tarfile.TarInfo], name: str
    ) -> Optional[tarfile.TarInfo]:
        """Follow symlinks and hardlinks within the archive."""
        for _ in range(MAX_SYMLINK_HOPS):
            member = members.get(name)
            if member is None:
                return None
            if member.issym():
                target = member.linkname
                if target.startswith("/"):
                    name = normalize_path(target)
                else:
                    name = normalize_path(posixpath.join(posixpath.dirname(name), target))
                continue
            if member.islnk():
                name = normalize_path(member.linkname)
                continue
            return member
        logger.debug(f"Too many symlink hops resolving {name}")
        return None

    def __str__(self) -> str:
        return self.hash


def iter_entries(
    ctx: ScanContext, fileobj: BinaryIO
) -> Iterator[tuple[tarfile.TarInfo, tarfile.TarFile]]:
    """
    Make one full streaming pass over an archive.

    The stream is rewound first, so repeated calls are independent passes.
    Cancellation is checked before every entry.

    Args:
        ctx: Scan context
        fileobj: Seekable archive stream

    Yields:
        (member, tarfile) pairs; the member's content is readable through
        ``tarfile.extractfile`` until the next entry is requested
    """
    fileobj.seek(0)
    with tarfile.open(fileobj=fileobj, mode="r|*") as tf:
        for member in tf:
            ctx.check()
            yield member, tf
