"""Line classification and document-level header scanning."""

from __future__ import annotations

import re
from enum import Enum
from typing import Iterator

from abcgrid.models import PercMap

_HEADER_RE = re.compile(r"^[A-Za-z]:")
_PERCMAP_RE = re.compile(r"^%%percmap\s+(\S+)\s+(\d+)", re.MULTILINE)
_KEY_RE = re.compile(r"(?:^|\n)K:([^\n]*)|\[K:([^\]]*)\]")
_HEADER_KEY_RE = re.compile(r"(?:^|\n)K:([^\n]*)")

DEFAULT_KEY = "C"


class LineKind(str, Enum):
    COMMENT = "comment"
    LYRIC = "lyric"
    HEADER = "header"
    MUSIC = "music"


def classify_line(line: str) -> LineKind:
    """
    Classify one line of an ABC document.

    Comments and directives start with ``%``, lyrics with ``w:`` / ``W:``,
    and any other ``<letter>:`` prefix is a header field. Everything else,
    blank lines included, is music.
    """
    stripped = line.strip()
    if stripped.startswith("%"):
        return LineKind.COMMENT
    if stripped.startswith(("w:", "W:")):
        return LineKind.LYRIC
    if _HEADER_RE.match(stripped):
        return LineKind.HEADER
    return LineKind.MUSIC


def music_lines(document: str) -> Iterator[str]:
    """Yield the non-blank music lines of *document*, stripped."""
    for line in document.split("\n"):
        stripped = line.strip()
        if stripped and classify_line(stripped) is LineKind.MUSIC:
            yield stripped


def parse_percmaps(document: str, labels: dict[int, str] | None = None) -> list[PercMap]:
    """Collect every ``%%percmap <char> <midi>`` directive in document order."""
    labels = labels or {}
    maps: list[PercMap] = []
    for match in _PERCMAP_RE.finditer(document):
        midi = int(match.group(2))
        maps.append(PercMap(char=match.group(1), midi=midi, label=labels.get(midi, f"Drum {midi}")))
    return maps


def header_value(document: str, field: str) -> str | None:
    """Value of the first ``<field>:`` header line, stripped, or ``None``."""
    pattern = re.compile(rf"^{re.escape(field)}:([^\n]*)", re.MULTILINE)
    match = pattern.search(document)
    return match.group(1).strip() if match else None


def key_at(document: str, cursor: int) -> str:
    """
    Key signature in force at *cursor*.

    The last ``K:`` line or inline ``[K:..]`` field before the cursor wins.
    When there is none (the cursor sits in the header above ``K:``), the
    first ``K:`` line after the cursor is used, then ``C``.
    """
    cursor = max(0, min(cursor, len(document)))
    found: str | None = None
    for match in _KEY_RE.finditer(document[:cursor]):
        found = (match.group(1) if match.group(1) is not None else match.group(2)).strip()

    if found is None:
        forward = _HEADER_KEY_RE.search(document, max(0, cursor - 1))
        if forward:
            found = forward.group(1).strip()

    return found or DEFAULT_KEY
