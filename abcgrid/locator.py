"""Bar locator: finds the measure around a cursor in a full ABC document."""

from __future__ import annotations

import re
from dataclasses import dataclass

from abcgrid.lines import LineKind, classify_line
from abcgrid.models import BarContext

PIPE = "|"

# One or more leading inline fields such as "[V:1]" or "[V:1][K:perc]".
_INLINE_FIELDS_RE = re.compile(r"^\s*((?:\[[A-Za-z]:[^\]]*\]\s*)+)")
# One bar line with its glued marks. The first group closes the bar on the
# left (repeat colons, "[|", "|]"); the second opens the bar on the right
# (repeat colons, first/second ending numbers). Each "|" is its own bar line,
# so "||" holds an empty bar between its pipes. A bare "::" splits in two.
_BAR_LINE_RE = re.compile(r"(:*\[?\|\]?)(:*(?:\[?\d+(?:[,\-]\d+)*)?)|(:)(:)")


def _line_bounds(document: str, cursor: int) -> tuple[int, int]:
    line_start = document.rfind("\n", 0, cursor) + 1
    line_end = document.find("\n", cursor)
    if line_end == -1:
        line_end = len(document)
    return line_start, line_end


@dataclass(frozen=True)
class _BarLine:
    """A bar line with its marks; ``split`` ends the part that closes the left bar."""

    start: int
    split: int
    end: int

    def is_before(self, offset: int) -> bool:
        """True when a cursor at *offset* edits the bar to the right of this line."""
        return offset >= self.split


def _bar_lines(text: str) -> list[_BarLine]:
    lines: list[_BarLine] = []
    for match in _BAR_LINE_RE.finditer(text):
        closing = match.group(1) if match.group(1) is not None else match.group(3)
        lines.append(_BarLine(start=match.start(), split=match.start() + len(closing), end=match.end()))
    return lines


def locate_bar(document: str, cursor: int) -> BarContext | None:
    """
    Find the bar of music that contains *cursor*.

    Returns ``None`` on comment, lyric and header lines, where grid editing
    is inactive. Otherwise the context spans from just after the nearest
    bar line before the cursor to the next bar line after it (or the line
    edges). Repeat colons, ``[|``/``|]`` and ending numbers belong to the bar
    line, never to the editable region, and leading inline fields like
    ``[V:1]`` are excluded. When only inline fields are present the context
    collapses to ``start == end``.
    """
    cursor = max(0, min(cursor, len(document)))
    line_start, line_end = _line_bounds(document, cursor)
    line = document[line_start:line_end]

    if classify_line(line) is not LineKind.MUSIC:
        return None

    offset = cursor - line_start
    start, end = 0, len(line)
    for bar_line in _bar_lines(line):
        if bar_line.is_before(offset):
            start = bar_line.end
        else:
            end = bar_line.start
            break

    fields = _INLINE_FIELDS_RE.match(line[start:end])
    if fields:
        start += fields.end()

    if start > end:
        start = end

    return BarContext(start=line_start + start, end=line_start + end, text=line[start:end])


def previous_bar_text(document: str, context: BarContext) -> str:
    """
    Text of the bar before *context*, stripped, or ``""``.

    Walks back to the bar line that closes the previous bar, then to the
    bar line (or line start) that opens it.
    """
    before = document[: context.start]
    bar_lines = _bar_lines(before)
    if not bar_lines:
        return ""

    close_start = bar_lines[-1].start
    open_end = bar_lines[-2].end if len(bar_lines) > 1 else 0
    open_end = max(open_end, before.rfind("\n", 0, close_start) + 1)
    return before[open_end:close_start].strip()


def apply_edit(context: BarContext, new_text: str) -> BarContext:
    """Context after *new_text* replaced the bar: ``end`` shifts by the length delta."""
    delta = len(new_text) - len(context.text)
    return BarContext(start=context.start, end=context.end + delta, text=new_text)


def needs_closing_delimiter(document: str, end: int, lookahead: int = 3) -> bool:
    """
    True when nothing in the few characters after *end* closes the bar.

    Used before writing an edited bar back, so a bar whose length changed
    does not run into the following one.
    """
    peek = document[end : end + lookahead].lstrip(" \t")
    return not peek.startswith((PIPE, ":", "[|"))
