"""
Tokenizer: turns the text of one bar into time-stamped tokens.

The scanner walks the bar left to right and tries a fixed list of
recognizers at each position, in priority order:

1. whitespace (skipped)
2. tuplet marker ``(p[:q[:r]]`` (not emitted, scales the next ``r`` notes)
3. quoted annotation ``"..."`` (zero duration, no notes)
4. inline field ``[K:..]`` (zero duration, no notes)
5. note group: decorations, ``o`` prefix, grace block, then a chord,
   pitch or rest, then a length suffix
6. anything else, as an opaque zero-duration run

Pitch letters are only ever read from the chord or pitch part of a note
group, never from decoration or grace text.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from fractions import Fraction

from abcgrid.duration import DurationModel
from abcgrid.models import Token, TokenKind

logger = logging.getLogger(__name__)

OPEN_PREFIX = "o"
DEFAULT_TUPLET_Q = 2

_TUPLET_RE = re.compile(r"\((\d+)(?::(\d*))?(?::(\d*))?")
_FIELD_RE = re.compile(r"\[[A-Za-z]:[^\]\n]*\]")
_DECORATION_RE = re.compile(r"![^!\n]*!|\+[^+\n]*\+")
_GRACE_RE = re.compile(r"\{[^}\n]*\}")
_CHORD_RE = re.compile(r"\[[^\[\]\n|]*\]")
_QUOTED_RE = re.compile(r'"[^"\n]*"')
_PITCH_RE = re.compile(r"[\^=_]*[A-Ga-g][,']*")
_REST_RE = re.compile(r"[zZxX]")
_SUFFIX_RE = re.compile(r"[\d/]*")


@dataclass
class _NoteGroup:
    end: int
    decorations: str
    open_prefix: str
    grace: str
    core: str
    suffix: str
    kind: TokenKind


@dataclass
class _TupletState:
    remaining: int = 0
    factor: Fraction = Fraction(1)
    p: int | None = None

    def start(self, p: int, q: int, r: int) -> None:
        self.p = p
        self.factor = Fraction(q, p)
        self.remaining = r

    def scale(self, ticks: Fraction) -> tuple[Fraction, int | None]:
        if self.remaining <= 0:
            return ticks, None
        self.remaining -= 1
        return ticks * self.factor, self.p


def extract_pitches(text: str) -> list[str]:
    """Pitch strings in *text*, ignoring decoration, grace and quoted text."""
    cleaned = _QUOTED_RE.sub("", text)
    cleaned = _DECORATION_RE.sub("", cleaned)
    cleaned = _GRACE_RE.sub("", cleaned)
    return _PITCH_RE.findall(cleaned)


def _match_note_group(text: str, pos: int) -> _NoteGroup | None:
    decorations = ""
    while True:
        match = _DECORATION_RE.match(text, pos)
        if not match:
            break
        decorations += match.group(0)
        pos = match.end()

    open_prefix = ""
    if text.startswith(OPEN_PREFIX, pos):
        open_prefix = OPEN_PREFIX
        pos += len(OPEN_PREFIX)

    grace = ""
    match = _GRACE_RE.match(text, pos)
    if match:
        grace = match.group(0)
        pos = match.end()

    core_match = _CHORD_RE.match(text, pos)
    if core_match and _FIELD_RE.match(text, pos) is None and extract_pitches(core_match.group(0)):
        kind = TokenKind.CHORD
    else:
        core_match = _PITCH_RE.match(text, pos)
        kind = TokenKind.NOTE
        if core_match is None:
            core_match = _REST_RE.match(text, pos)
            kind = TokenKind.REST
    if core_match is None:
        return None

    pos = core_match.end()
    suffix_match = _SUFFIX_RE.match(text, pos)
    suffix = suffix_match.group(0) if suffix_match else ""
    return _NoteGroup(
        end=pos + len(suffix),
        decorations=decorations,
        open_prefix=open_prefix,
        grace=grace,
        core=core_match.group(0),
        suffix=suffix,
        kind=kind,
    )


def _starts_token(text: str, pos: int) -> bool:
    char = text[pos]
    if char.isspace() or char == '"':
        return True
    if _TUPLET_RE.match(text, pos) or _FIELD_RE.match(text, pos) or _DECORATION_RE.match(text, pos):
        return True
    return _match_note_group(text, pos) is not None


def tokenize(bar_text: str, durations: DurationModel) -> list[Token]:
    """
    Split *bar_text* into tokens carrying pitches and tick durations.

    Never raises: text that no recognizer accepts becomes an opaque,
    zero-duration token so that the rest of the bar still parses.
    """
    tokens: list[Token] = []
    tuplet = _TupletState()
    pos = 0
    length = len(bar_text)

    while pos < length:
        char = bar_text[pos]

        if char.isspace():
            pos += 1
            continue

        match = _TUPLET_RE.match(bar_text, pos)
        if match:
            p = int(match.group(1))
            if p > 0:
                q = int(match.group(2)) if match.group(2) else DEFAULT_TUPLET_Q
                r = int(match.group(3)) if match.group(3) else p
                tuplet.start(p, q, r)
            pos = match.end()
            continue

        if char == '"':
            close = bar_text.find('"', pos + 1)
            end = length if close == -1 else close + 1
            tokens.append(Token(text=bar_text[pos:end], start=pos, end=end, kind=TokenKind.ANNOTATION))
            pos = end
            continue

        match = _FIELD_RE.match(bar_text, pos)
        if match:
            tokens.append(Token(text=match.group(0), start=pos, end=match.end(), kind=TokenKind.FIELD))
            pos = match.end()
            continue

        group = _match_note_group(bar_text, pos)
        if group is not None:
            ticks, tuplet_p = tuplet.scale(durations.duration_to_ticks(group.suffix))
            notes = [] if group.kind is TokenKind.REST else extract_pitches(group.core)
            tokens.append(
                Token(
                    text=bar_text[pos : group.end],
                    start=pos,
                    end=group.end,
                    notes=notes,
                    duration=ticks,
                    kind=group.kind,
                    decorations=group.decorations,
                    grace=group.grace,
                    open_prefix=group.open_prefix,
                    tuplet=tuplet_p,
                )
            )
            pos = group.end
            continue

        end = _opaque_end(bar_text, pos)
        logger.debug("Opaque segment %r at offset %d", bar_text[pos:end], pos)
        tokens.append(Token(text=bar_text[pos:end], start=pos, end=end, kind=TokenKind.OPAQUE))
        pos = end

    return tokens


def _opaque_end(text: str, pos: int) -> int:
    match = _DECORATION_RE.match(text, pos)
    if match:
        # A decoration with nothing to decorate; keep its letters away from the pitch scanner.
        return match.end()
    end = pos + 1
    while end < len(text) and not _starts_token(text, end):
        end += 1
    return end
