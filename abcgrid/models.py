"""Data models shared by the tokenizer, grid projector and mutation layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction


class TokenKind(str, Enum):
    """What a tokenizer segment represents."""

    NOTE = "note"
    CHORD = "chord"
    REST = "rest"
    ANNOTATION = "annotation"
    FIELD = "field"
    OPAQUE = "opaque"


class NoteState(str, Enum):
    """Logical state of a grouped instrument at one tick (absence is ``None``)."""

    BASE = "base"
    ALT = "alt"
    DECORATION = "decoration"
    FLAM = "flam"


class BeatMode(str, Enum):
    STRAIGHT = "straight"
    TRIPLET = "triplet"


class EditMode(str, Enum):
    """Which code path produced an edit."""

    IN_PLACE = "in_place"
    APPEND = "append"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Token:
    """
    One segment of a bar's text.

    Attributes:
        text:        Raw source text, including prefixes and duration suffix.
        start:       Offset of the first character within the bar.
        end:         Offset one past the last character within the bar.
        notes:       Pitch strings in source order (``[]`` for rests).
        duration:    Length in ticks, already scaled by any active tuplet.
        kind:        Segment category.
        decorations: Concatenated ``!..!`` / ``+..+`` prefixes.
        grace:       The ``{..}`` grace block, if any.
        open_prefix: ``"o"`` when the open marker precedes the note.
        tuplet:      The ``p`` of the tuplet that scaled this token.
    """

    text: str
    start: int
    end: int
    notes: list[str] = field(default_factory=list)
    duration: Fraction = Fraction(0)
    kind: TokenKind = TokenKind.NOTE
    decorations: str = ""
    grace: str = ""
    open_prefix: str = ""
    tuplet: int | None = None

    @property
    def is_timed(self) -> bool:
        return self.kind in (TokenKind.NOTE, TokenKind.CHORD, TokenKind.REST)


@dataclass
class OptimizableToken:
    """A note or rest addressed by absolute tick position, mutated by edits."""

    tick_position: int
    notes: list[str] = field(default_factory=list)
    duration: int = 0
    decorations: str = ""
    grace: str = ""
    open_prefix: str = ""
    annotations: str = ""

    @property
    def is_anchored(self) -> bool:
        """True when the optimizer must keep this onset (it carries content)."""
        return bool(self.notes or self.annotations or self.decorations)

    def clear_prefixes(self) -> None:
        self.decorations = ""
        self.grace = ""
        self.open_prefix = ""


@dataclass(frozen=True)
class BarContext:
    """Character range ``[start, end)`` of the edited bar and its text."""

    start: int
    end: int
    text: str


@dataclass(frozen=True)
class PercMap:
    """One ``%%percmap <char> <midi>`` directive."""

    char: str
    midi: int
    label: str


@dataclass(frozen=True)
class EditResult:
    """New bar text plus the path that produced it."""

    text: str
    mode: EditMode = EditMode.IN_PLACE

    def __str__(self) -> str:
        return self.text
