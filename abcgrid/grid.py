"""Grid projector: lays a bar's tokens out on the tick grid."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Iterator, Protocol, Sequence

from abcgrid.config import GridConfig
from abcgrid.instruments import DrumDecoration, DrumGroupDefinition, GroupedInstrument
from abcgrid.models import BeatMode, NoteState, Token

logger = logging.getLogger(__name__)

TRIPLET_TUPLET = 3


class NoteCarrier(Protocol):
    notes: list[str]
    decorations: str
    grace: str
    open_prefix: str


def to_tick(position: Fraction) -> int:
    """Nearest grid tick for an exact position, halves rounding up."""
    return math.floor(position + Fraction(1, 2))


def onsets(tokens: Sequence[Token]) -> Iterator[tuple[int, Token]]:
    """Yield ``(tick, token)`` for every timed token, in source order."""
    position = Fraction(0)
    for token in tokens:
        if not token.is_timed:
            continue
        yield to_tick(position), token
        position += token.duration


def active_decoration(token: NoteCarrier, definition: DrumGroupDefinition) -> DrumDecoration | None:
    return next((d for d in definition.decorations if d.marker in token.decorations), None)


def token_state(token: NoteCarrier, instrument: GroupedInstrument) -> NoteState | None:
    """
    State of *instrument* on one token, or ``None`` when it is not playing.

    Checked in the order flam, decoration, alt, base; the first match wins.
    """
    has_base = instrument.base_char in token.notes
    has_alt = bool(instrument.alt_char) and instrument.alt_char in token.notes
    if not (has_base or has_alt):
        return None

    definition = instrument.definition
    if token.grace and definition.allow_flam:
        return NoteState.FLAM
    if active_decoration(token, definition):
        return NoteState.DECORATION
    prefix = instrument.alt_prefix
    if has_alt or (prefix and token.open_prefix == prefix):
        return NoteState.ALT
    return NoteState.BASE


def project_flat(tokens: Sequence[Token], config: GridConfig) -> list[set[str]]:
    """Pitches sounding at each tick, recorded at the onset tick only."""
    grid: list[set[str]] = [set() for _ in range(config.ticks_per_bar)]
    for tick, token in onsets(tokens):
        if tick >= config.ticks_per_bar:
            logger.debug("Token %r starts past the bar end at tick %d", token.text, tick)
            break
        grid[tick].update(token.notes)
    return grid


def project_state(
    tokens: Sequence[Token],
    instrument: GroupedInstrument,
    config: GridConfig,
) -> list[NoteState | None]:
    grid: list[NoteState | None] = [None] * config.ticks_per_bar
    for tick, token in onsets(tokens):
        if tick >= config.ticks_per_bar:
            logger.debug("Token %r starts past the bar end at tick %d", token.text, tick)
            break
        state = token_state(token, instrument)
        if state is not None:
            grid[tick] = state
    return grid


def decoration_at_tick(
    tokens: Sequence[Token],
    tick: int,
    definition: DrumGroupDefinition,
) -> DrumDecoration | None:
    """Decoration of *definition* on the token sounding at *tick*, if any."""
    for onset, token in onsets(tokens):
        if onset <= tick < onset + token.duration or onset == tick:
            return active_decoration(token, definition)
    return None


def detect_beat_modes(tokens: Sequence[Token], config: GridConfig) -> list[BeatMode]:
    """A beat holding any ``(3``-scaled token is a triplet beat."""
    modes = [BeatMode.STRAIGHT] * config.beats_per_bar
    for tick, token in onsets(tokens):
        if tick >= config.ticks_per_bar:
            break
        if token.tuplet == TRIPLET_TUPLET:
            modes[config.beat_of(tick)] = BeatMode.TRIPLET
    return modes


@dataclass
class BarFill:
    """How much of the meter a bar's written durations use."""

    capacity: int
    per_beat: list[Fraction] = field(default_factory=list)
    total: Fraction = Fraction(0)

    @property
    def is_complete(self) -> bool:
        return self.total == self.capacity

    @property
    def overflow(self) -> Fraction:
        return max(Fraction(0), self.total - self.capacity)

    @property
    def missing(self) -> Fraction:
        return max(Fraction(0), self.capacity - self.total)


def bar_fill(tokens: Sequence[Token], config: GridConfig) -> BarFill:
    beat_width = config.ticks_per_beat
    fill = BarFill(capacity=config.ticks_per_bar, per_beat=[Fraction(0)] * config.beats_per_bar)

    position = Fraction(0)
    for token in tokens:
        if not token.is_timed:
            continue
        start, end = position, position + token.duration
        for beat in range(config.beats_per_bar):
            overlap = min(end, (beat + 1) * beat_width) - max(start, beat * beat_width)
            if overlap > 0:
                fill.per_beat[beat] += overlap
        position = end

    fill.total = position
    if fill.overflow:
        logger.debug("Bar overflows its meter by %s ticks", fill.overflow)
    return fill
