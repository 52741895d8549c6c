"""
apt repository scanner.

Reads apt's source lists, both the one-line format (``sources.list`` and
``sources.list.d/*.list``) and the deb822 format (``sources.list.d/*.sources``),
and reports one Repository per suite and component.
"""

import logging
import posixpath
import tarfile
from typing import Optional

import yaml

from core.context import ScanContext
from core.exceptions import ScannerException
from core.layer import Layer, iter_entries, normalize_path
from core.models import Repository
from core.scanner_interface import RepositoryScanner
from scanners.deb822 import parse_stanzas

logger = logging.getLogger(__name__)

SOURCES_LIST = "etc/apt/sources.list"
SOURCES_DIR = "etc/apt/sources.list.d"


def _is_sources_file(path: str) -> bool:
    if path == SOURCES_LIST:
        return True
    if posixpath.dirname(path) != SOURCES_DIR:
        return False
    return path.endswith(".list") or path.endswith(".sources")


def _parse_options(text: str) -> dict[str, str]:
    """Parse the ``[key=value ...]`` options of a one-line entry."""
    options = {}
    for item in text.split():
        key, sep, value = item.partition("=")
        if sep:
            options[key.lower()] = value
    return options


class AptSourcesScanner(RepositoryScanner):
    """
    Repository scanner for apt source lists.

    Configuration payload (YAML), all keys optional::

        include_deb_src: false   # also report "deb-src" entries
    """

    NAME = "apt-sources"
    VERSION = "v0.0.2"

    def __init__(self):
        self.types = {"deb"}

    def name(self) -> str:
        return self.NAME

    def version(self) -> str:
        return self.VERSION

    def configure(self, payload: bytes) -> None:
        options = yaml.safe_load(payload) or {}
        if not isinstance(options, dict):
            raise ValueError("expected a mapping")
        if options.get("include_deb_src"):
            self.types = {"deb", "deb-src"}

    def scan(self, ctx: ScanContext, layer: Layer) -> Optional[list[Repository]]:
        """
        Read every apt source list in the layer.

        Returns:
            Repositories found, [] if lists exist but declare none, or None
            if the layer has no source lists
        """
        files: dict[str, bytes] = {}
        with layer.reader() as rd:
            try:
                for member, tf in iter_entries(ctx, rd):
                    path = normalize_path(member.name)
                    if not member.isreg() or not _is_sources_file(path):
                        continue
                    fh = tf.extractfile(member)
                    if fh is not None:
                        files[path] = fh.read()
            except tarfile.TarError as e:
                raise ScannerException(
                    layer.hash, str(self.identity()), f"reading archive failed: {e}"
                ) from e

        if not files:
            return None

        repositories: list[Repository] = []
        for path in sorted(files):
            if path.endswith(".sources"):
                found = self._parse_deb822(files[path], path)
            else:
                found = self._parse_one_line(files[path], path)
            ctx.span(logger).debug(f"{path}: {len(found)} repositories")
            repositories.extend(found)
        return repositories

    def _parse_one_line(self, content: bytes, path: str) -> list[Repository]:
        repositories = []
        for raw in content.decode("utf-8", errors="replace").splitlines():
            line = raw.split("#", 1)[0].strip()
            if not line:
                continue

            fields = line.split(None, 1)
            if len(fields) < 2 or fields[0] not in self.types:
                continue
            archive_type, rest = fields[0], fields[1].strip()

            options: dict[str, str] = {}
            if rest.startswith("["):
                end = rest.find("]")
                if end == -1:
                    logger.debug(f"{path}: unterminated options in {raw!r}")
                    continue
                options = _parse_options(rest[1:end])
                rest = rest[end + 1:]

            fields = rest.split()
            if len(fields) < 2:
                logger.debug(f"{path}: malformed entry {raw!r}")
                continue
            uri, suite, components = fields[0], fields[1], fields[2:]
            repositories.extend(
                self._repositories(
                    archive_type, uri, suite, components, options.get("signed-by", ""), path
                )
            )
        return repositories

    def _parse_deb822(self, content: bytes, path: str) -> list[Repository]:
        repositories = []
        for stanza in parse_stanzas(content):
            if stanza.get("enabled", "yes").lower() == "no":
                continue
            archive_types = sorted(set(stanza.get("types", "").split()) & self.types)
            if not archive_types:
                continue
            key = stanza.get("signed-by", "")
            # Inline keys are multi-line; only file references are kept.
            if "\n" in key:
                key = ""
            components = stanza.get("components", "").split()
            for archive_type in archive_types:
                for uri in stanza.get("uris", "").split():
                    for suite in stanza.get("suites", "").split():
                        repositories.extend(
                            self._repositories(archive_type, uri, suite, components, key, path)
                        )
        return repositories

    @staticmethod
    def _repositories(
        archive_type: str, uri: str, suite: str, components: list[str], key: str, path: str
    ) -> list[Repository]:
        # A flat repository has no components; its suite ends in "/".
        if not components:
            return [
                Repository(
                    name=suite, key=key, uri=uri, source_path=path, archive_type=archive_type
                )
            ]
        return [
            Repository(
                name=f"{suite}/{component}",
                key=key,
                uri=uri,
                source_path=path,
                archive_type=archive_type,
            )
            for component in components
        ]
