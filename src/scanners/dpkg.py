"""
dpkg package database scanner.

Looks for directories that look like dpkg databases and examines the
"status" file found there. The database location is not assumed, so the
archive is searched in several independent passes: one to locate candidate
databases, one to parse each status file, and one to fingerprint packages
from their ``info/<package>.md5sums`` files.
"""

import hashlib
import logging
import posixpath
import tarfile
from dataclasses import replace
from typing import BinaryIO, Optional

from core.context import ScanContext
from core.exceptions import InvariantViolation, ScannerException
from core.layer import Layer, iter_entries, normalize_path
from core.models import Package, PackageKind
from core.scanner_interface import PackageScanner
from scanners.deb822 import parse_source_field, parse_stanzas

logger = logging.getLogger(__name__)

DATABASE_FILES = ("status", "available")
"""Files that must all be present in a directory for it to count as a database."""

STATUS_FILE = "status"
METADATA_SUFFIX = ".md5sums"

NOT_INSTALLED_STATES = {"not-installed", "config-files"}
"""dpkg package states whose files are no longer on disk."""


class DpkgScanner(PackageScanner):
    """
    Package scanner for dpkg databases.

    It does not respect any dpkg configuration files.
    """

    NAME = "dpkg"
    VERSION = "v0.0.3"

    def name(self) -> str:
        return self.NAME

    def version(self) -> str:
        return self.VERSION

    def scan(self, ctx: ScanContext, layer: Layer) -> Optional[list[Package]]:
        """
        Find dpkg databases in the layer and read their installed packages.

        Returns:
            Packages found, or None if the layer has no dpkg database

        Raises:
            InvariantViolation: If a database file vanished between passes
            ScannerException: If the archive cannot be read
        """
        log = ctx.span(logger)
        log.debug("start")

        with layer.reader() as rd:
            try:
                databases = self._locate(ctx, rd)
                log.debug("scanned for possible databases")
                if not databases:
                    return None

                packages: list[Package] = []
                for db in databases:
                    log.debug(f"examining package database {db}")
                    found = self._extract(ctx, rd, layer, db)
                    if found is None:
                        return None
                    found = self._attach_hints(ctx, rd, db, found)
                    log.debug(f"found {len(found)} packages in {db}")
                    packages.extend(found)
            except tarfile.TarError as e:
                raise ScannerException(
                    layer.hash, str(self.identity()), f"reading archive failed: {e}"
                ) from e

        log.debug("done")
        return packages

    def _locate(self, ctx: ScanContext, rd: BinaryIO) -> list[str]:
        """
        Locate pass: score directories by the database files they hold.

        Returns:
            Directories holding every required database file, sorted
        """
        seen: dict[str, set[str]] = {}
        for member, _ in iter_entries(ctx, rd):
            if not member.isreg():
                continue
            path = normalize_path(member.name)
            base = posixpath.basename(path)
            if base in DATABASE_FILES:
                seen.setdefault(posixpath.dirname(path), set()).add(base)

        # Partial matches are not databases.
        return sorted(d for d, files in seen.items() if len(files) == len(DATABASE_FILES))

    def _extract(
        self, ctx: ScanContext, rd: BinaryIO, layer: Layer, db: str
    ) -> Optional[list[Package]]:
        """
        Extract pass: parse the status file of one database.

        Returns:
            Packages in file order, or None if the archive ended before the
            status file was reached
        """
        fn = posixpath.join(db, STATUS_FILE)
        content: Optional[bytes] = None

        for member, tf in iter_entries(ctx, rd):
            if normalize_path(member.name) != fn:
                continue
            fh = tf.extractfile(member) if member.isreg() else None
            if fh is None:
                logger.error(f"unable to get reader for file {fn}")
                raise InvariantViolation(
                    layer.hash, str(self.identity()), f"{fn} existed, but now doesn't"
                )
            content = fh.read()
            break

        if content is None:
            return None
        return self.parse_status(content, fn)

    @staticmethod
    def parse_status(content: bytes, package_db: str) -> list[Package]:
        """
        Parse a dpkg status file.

        Args:
            content: Raw status file content
            package_db: Path recorded as each package's provenance

        Returns:
            BINARY packages, each with its SOURCE package attached when the
            stanza names one
        """
        packages = []
        for stanza in parse_stanzas(content):
            name = stanza.get("package")
            if not name:
                continue

            status = stanza.get("status", "").split()
            if status and status[-1] in NOT_INSTALLED_STATES:
                continue

            version = stanza.get("version", "")
            source = None
            if stanza.get("source"):
                source_name, source_version = parse_source_field(stanza["source"])
                source = Package(
                    name=source_name,
                    # Without an explicit version the source is assumed to
                    # share the binary's version.
                    version=source_version or version,
                    kind=PackageKind.SOURCE,
                    package_db=package_db,
                )

            packages.append(
                Package(
                    name=name,
                    version=version,
                    kind=PackageKind.BINARY,
                    arch=stanza.get("architecture", ""),
                    package_db=package_db,
                    source=source,
                )
            )
        return packages

    def _attach_hints(
        self, ctx: ScanContext, rd: BinaryIO, db: str, packages: list[Package]
    ) -> list[Package]:
        """
        Metadata pass: fingerprint packages from their md5sums files.

        Returns:
            Packages with ``repository_hint`` set where metadata was found
        """
        by_name: dict[str, list[int]] = {}
        for i, pkg in enumerate(packages):
            by_name.setdefault(pkg.name, []).append(i)

        prefix = posixpath.join(db, "info") + "/"
        hinted = list(packages)
        for member, tf in iter_entries(ctx, rd):
            path = normalize_path(member.name)
            if not path.startswith(prefix) or not path.endswith(METADATA_SUFFIX):
                continue
            n = posixpath.basename(path)[: -len(METADATA_SUFFIX)]
            name, _, arch = n.partition(":")

            indexes = by_name.get(name)
            if not indexes:
                logger.debug(f"extra metadata found for {name}, ignoring")
                continue
            if arch:
                indexes = [i for i in indexes if packages[i].arch == arch] or indexes

            fh = tf.extractfile(member) if member.isreg() else None
            if fh is None:
                logger.warning(f"unable to read package metadata for {name}")
                continue
            try:
                digest = hashlib.md5(fh.read()).hexdigest()
            except (OSError, tarfile.TarError) as e:
                logger.warning(f"unable to read package metadata for {name}: {e}")
                continue

            for i in indexes:
                hinted[i] = replace(hinted[i], repository_hint=digest)

        return hinted
