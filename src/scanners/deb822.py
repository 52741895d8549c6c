"""
Parser for Debian control-file syntax (deb822).

Used for the dpkg status database and for deb822-style apt ``.sources``
files: stanzas separated by blank lines, each a sequence of ``Field: value``
lines, with continuation lines starting with whitespace.
"""

import re
from typing import Optional

_SOURCE_RE = re.compile(r"^(?P<name>[^\s(]+)(?:\s*\((?P<version>[^)]+)\))?\s*$")


def parse_stanzas(data: bytes) -> list[dict[str, str]]:
    """
    Parse control-file content into stanzas.

    Field names are lowercased, since they are case-insensitive.
    Continuation lines are appended to the previous field, separated by a
    newline. Comment lines (starting with "#") are skipped.

    Args:
        data: Raw file content

    Returns:
        One dictionary per stanza, in file order
    """
    stanzas: list[dict[str, str]] = []
    current: dict[str, str] = {}
    last_field: Optional[str] = None

    for line in data.decode("utf-8", errors="replace").splitlines():
        if not line.strip():
            if current:
                stanzas.append(current)
            current = {}
            last_field = None
            continue
        if line.startswith("#"):
            continue
        if line[0] in " \t":
            if last_field is not None:
                current[last_field] += "\n" + line.strip()
            continue

        name, sep, value = line.partition(":")
        if not sep:
            # Not a field; tolerate and move on.
            continue
        last_field = name.strip().lower()
        current[last_field] = value.strip()

    if current:
        stanzas.append(current)
    return stanzas


def parse_source_field(value: str) -> tuple[str, Optional[str]]:
    """
    Split a dpkg ``Source`` field into name and optional version.

    ``"bar"`` gives ``("bar", None)``; ``"bar (2.0-1)"`` gives
    ``("bar", "2.0-1")``.
    """
    match = _SOURCE_RE.match(value.strip())
    if not match:
        return value.strip(), None
    return match.group("name"), match.group("version")
