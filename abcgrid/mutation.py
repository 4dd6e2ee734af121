"""
Mutation and re-serialization of one bar.

Every edit follows the same path: tokens are converted into positioned
:class:`~abcgrid.models.OptimizableToken` objects, the edit is applied at a
tick, the duration optimizer rebuilds a minimal set of notes and rests,
and :func:`serialize` writes the bar back out as ABC text.

Clicking past the end of a bar that is shorter than its meter takes the
append path instead: rests pad the gap and the new note goes at the end.
That path leaves the existing text alone and is reported through
``EditResult.mode``.
"""

from __future__ import annotations

import logging
from fractions import Fraction
from typing import Sequence

from abcgrid.config import TRIPLET_SLOTS, GridConfig
from abcgrid.duration import DurationModel
from abcgrid.grid import active_decoration, detect_beat_modes, to_tick, token_state
from abcgrid.instruments import DrumDecoration, GroupedInstrument
from abcgrid.models import BeatMode, EditMode, EditResult, NoteState, OptimizableToken, Token, TokenKind

logger = logging.getLogger(__name__)

TUPLET_MARKER = "(3"
BEAT_SEPARATOR = " "
REST = "z"
INVISIBLE_REST = "x"
INVISIBLE_RESTS = "xX"


# ── Conversion ────────────────────────────────────────────────────────────────


def to_optimizable(tokens: Sequence[Token]) -> list[OptimizableToken]:
    """
    One positioned token per note, chord or rest.

    Quoted annotations and inline fields ride along on the next timed
    token so they are written back in place. Other untimed text (ties,
    slurs, stray symbols) is dropped.
    """
    result: list[OptimizableToken] = []
    pending = ""
    position = Fraction(0)
    for token in tokens:
        if token.kind in (TokenKind.ANNOTATION, TokenKind.FIELD):
            pending += token.text
            continue
        if not token.is_timed:
            logger.debug("Dropping untimed segment %r", token.text)
            continue
        result.append(
            OptimizableToken(
                tick_position=to_tick(position),
                notes=list(token.notes),
                duration=to_tick(token.duration),
                decorations=token.decorations,
                grace=token.grace,
                open_prefix=token.open_prefix,
                annotations=pending,
            )
        )
        pending = ""
        position += token.duration

    if pending:
        if result:
            result[-1].annotations += pending
        else:
            result.append(OptimizableToken(tick_position=0, annotations=pending))
    return result


# ── Serialization ─────────────────────────────────────────────────────────────


def _render(token: OptimizableToken, suffix: str, rest: str = REST) -> str:
    if len(token.notes) > 1:
        core = "[" + "".join(token.notes) + "]"
    elif token.notes:
        core = token.notes[0]
    else:
        core = rest
    return f"{token.annotations}{token.decorations}{token.open_prefix}{token.grace}{core}{suffix}"


def serialize(
    tokens: Sequence[OptimizableToken],
    beat_modes: Sequence[BeatMode] | None,
    durations: DurationModel,
    rest: str = REST,
) -> str:
    """
    Write optimized tokens as one bar of ABC.

    Tokens are grouped by beat and beats are separated by a single space.
    Rests are written with *rest*, ``z`` or the invisible ``x``.
    A triplet beat is written as ``(3`` followed by its three slots, each
    clamped to one slot width.
    """
    config = durations.config
    modes = list(beat_modes or [])
    slot_width = config.triplet_step_ticks

    beats: dict[int, list[OptimizableToken]] = {}
    for token in sorted(tokens, key=lambda t: t.tick_position):
        beats.setdefault(config.beat_of(token.tick_position), []).append(token)

    parts: list[str] = []
    for beat in sorted(beats):
        members = beats[beat]
        triplet = beat < len(modes) and modes[beat] is BeatMode.TRIPLET
        if triplet:
            # Inside "(3" every written length is stretched by 3/2.
            text = TUPLET_MARKER + "".join(
                _render(t, durations.ticks_to_suffix(Fraction(min(t.duration, slot_width) * 3, 2)), rest)
                for t in members
            )
        else:
            text = "".join(_render(t, durations.ticks_to_suffix(t.duration), rest) for t in members)
        parts.append(text)
    return BEAT_SEPARATOR.join(parts)


# ── Shared edit plumbing ──────────────────────────────────────────────────────


def _check_tick(tick: int, config: GridConfig) -> None:
    if tick < 0 or tick >= config.ticks_per_bar:
        raise ValueError(f"Tick {tick} is outside the bar (0..{config.ticks_per_bar - 1}).")


def _tokenized_end(tokens: Sequence[Token]) -> int:
    return to_tick(sum((t.duration for t in tokens if t.is_timed), Fraction(0)))


def _source_text(tokens: Sequence[Token], bar_text: str | None) -> str:
    if bar_text is not None:
        return bar_text.strip()
    pieces: list[str] = []
    previous_end: int | None = None
    for token in tokens:
        if previous_end is not None and token.start > previous_end:
            pieces.append(" ")
        pieces.append(token.text)
        previous_end = token.end
    return "".join(pieces).strip()


def _slot_at(positioned: list[OptimizableToken], tick: int) -> OptimizableToken | None:
    """
    Token starting exactly at *tick*.

    A token that starts earlier and sustains through *tick* is cut short
    so that the clicked slot reads as empty.
    """
    for token in positioned:
        if token.tick_position == tick:
            return token
        if token.tick_position < tick < token.tick_position + token.duration:
            token.duration = tick - token.tick_position
    return None


def _rest_symbol(tokens: Sequence[Token]) -> str:
    """``x`` when every rest in the bar is invisible, ``z`` otherwise."""
    letters = [t.text.rstrip("0123456789/")[-1:] for t in tokens if t.kind is TokenKind.REST]
    if letters and all(letter in INVISIBLE_RESTS for letter in letters):
        return INVISIBLE_REST
    return REST


def _finish(
    positioned: list[OptimizableToken],
    modes: Sequence[BeatMode],
    durations: DurationModel,
    tokens: Sequence[Token],
) -> EditResult:
    optimized = durations.optimize_bar_durations(positioned, modes)
    return EditResult(text=serialize(optimized, modes, durations, _rest_symbol(tokens)), mode=EditMode.IN_PLACE)


def _append(
    tokens: Sequence[Token],
    tick: int,
    note: OptimizableToken,
    durations: DurationModel,
    modes: Sequence[BeatMode],
    bar_text: str | None,
) -> EditResult:
    """Pad from the written end of the bar to *tick* with rests, then add *note*."""
    config = durations.config
    existing = _source_text(tokens, bar_text)

    if modes[config.beat_of(tick)] is BeatMode.TRIPLET:
        logger.info("Rejected append at tick %d: beat %d is a triplet beat", tick, config.beat_of(tick))
        return EditResult(text=existing, mode=EditMode.REJECTED)

    padding: list[OptimizableToken] = []
    position = _tokenized_end(tokens)
    while position < tick:
        boundary = (config.beat_of(position) + 1) * config.ticks_per_beat
        end = min(boundary, tick)
        padding.append(OptimizableToken(tick_position=position, duration=end - position))
        position = end

    note.tick_position = tick
    note.duration = min(config.step_ticks, config.ticks_per_bar - tick)
    appended = serialize([*padding, note], None, durations, _rest_symbol(tokens))

    separator = BEAT_SEPARATOR if existing else ""
    logger.info("Appending %r after the written end of the bar", appended)
    return EditResult(text=f"{existing}{separator}{appended}", mode=EditMode.APPEND)


def _needs_append(tokens: Sequence[Token], tick: int) -> bool:
    has_timed = any(t.is_timed for t in tokens)
    return has_timed and tick >= _tokenized_end(tokens)


# ── Flat editing ──────────────────────────────────────────────────────────────


def toggle_flat_note(
    tokens: Sequence[Token],
    tick: int,
    pitch: str,
    durations: DurationModel,
    config: GridConfig,
    beat_modes: Sequence[BeatMode] | None = None,
    bar_text: str | None = None,
) -> EditResult:
    """
    Add *pitch* at *tick*, or remove it when it already sounds there.

    Raises:
        ValueError: If *tick* is outside the bar.
    """
    _check_tick(tick, config)
    modes = list(beat_modes) if beat_modes is not None else detect_beat_modes(tokens, config)

    if _needs_append(tokens, tick):
        return _append(tokens, tick, OptimizableToken(tick_position=tick, notes=[pitch]), durations, modes, bar_text)

    positioned = to_optimizable(tokens)
    slot = _slot_at(positioned, tick)
    if slot is None:
        positioned.append(OptimizableToken(tick_position=tick, notes=[pitch], duration=config.step_ticks))
    elif pitch in slot.notes:
        slot.notes.remove(pitch)
        if not slot.notes:
            slot.clear_prefixes()
    else:
        slot.notes.append(pitch)

    return _finish(positioned, modes, durations, tokens)


# ── Grouped editing ───────────────────────────────────────────────────────────


def _strip_instrument(token: OptimizableToken, instrument: GroupedInstrument) -> None:
    """Remove this instrument's characters and markers from a shared token."""
    chars = instrument.chars
    had_instrument = any(c in token.notes for c in chars)
    token.notes = [n for n in token.notes if n not in chars]

    decorations = token.decorations
    for decoration in instrument.definition.decorations:
        decorations = decorations.replace(decoration.marker, "")
    token.decorations = decorations

    if token.grace == "{" + instrument.base_char + "}":
        token.grace = ""
    if had_instrument and instrument.alt_prefix and token.open_prefix == instrument.alt_prefix:
        token.open_prefix = ""
    if not token.notes:
        token.clear_prefixes()


def _write_state(
    token: OptimizableToken,
    instrument: GroupedInstrument,
    state: NoteState,
    decoration: DrumDecoration | None,
) -> None:
    base = instrument.base_char
    if state is NoteState.BASE:
        token.notes.append(base)
    elif state is NoteState.ALT:
        if instrument.alt_char:
            token.notes.append(instrument.alt_char)
        else:
            token.notes.append(base)
            token.open_prefix = instrument.alt_prefix or token.open_prefix
    elif state is NoteState.DECORATION:
        marker = (decoration or instrument.definition.decorations[0]).marker
        token.decorations += marker
        token.notes.append(base)
    elif state is NoteState.FLAM:
        token.grace = "{" + base + "}"
        token.notes.append(base)


def set_grouped_state(
    tokens: Sequence[Token],
    tick: int,
    instrument: GroupedInstrument,
    state: NoteState | None,
    durations: DurationModel,
    config: GridConfig,
    decoration: DrumDecoration | None = None,
    beat_modes: Sequence[BeatMode] | None = None,
    bar_text: str | None = None,
) -> EditResult:
    """
    Put *instrument* into *state* at *tick*; ``None`` clears it.

    Setting the state that is already active clears it instead. For
    decorations that only applies when the same decoration is active, so
    clicking "Ghost" on an accented note swaps the marker.

    Other instruments sharing the chord keep their characters and markers.

    Raises:
        ValueError: If *tick* is outside the bar, or a decoration is asked
            for on an instrument that defines none.
    """
    _check_tick(tick, config)
    definition = instrument.definition
    if state is NoteState.DECORATION:
        if not definition.decorations:
            raise ValueError(f"Instrument '{definition.id}' has no decorations.")
        decoration = decoration or definition.decorations[0]
    modes = list(beat_modes) if beat_modes is not None else detect_beat_modes(tokens, config)

    if _needs_append(tokens, tick):
        if state is None:
            return EditResult(text=_source_text(tokens, bar_text), mode=EditMode.IN_PLACE)
        note = OptimizableToken(tick_position=tick)
        _write_state(note, instrument, state, decoration)
        return _append(tokens, tick, note, durations, modes, bar_text)

    positioned = to_optimizable(tokens)
    slot = _slot_at(positioned, tick)

    current = token_state(slot, instrument) if slot else None
    if state is not None and state is current:
        same_decoration = state is not NoteState.DECORATION or (
            slot is not None and active_decoration(slot, definition) == decoration
        )
        if same_decoration:
            state = None

    if slot is None:
        if state is None:
            return _finish(positioned, modes, durations, tokens)
        slot = OptimizableToken(tick_position=tick, duration=config.step_ticks)
        positioned.append(slot)

    _strip_instrument(slot, instrument)
    if state is not None:
        _write_state(slot, instrument, state, decoration)
    return _finish(positioned, modes, durations, tokens)


# ── Range and beat edits ──────────────────────────────────────────────────────


def clear_range(
    tokens: Sequence[Token],
    start_tick: int,
    end_tick: int,
    durations: DurationModel,
    config: GridConfig,
    beat_modes: Sequence[BeatMode] | None = None,
) -> EditResult:
    """Silence every onset in ``[start_tick, end_tick)``; annotations stay."""
    if start_tick < 0 or end_tick > config.ticks_per_bar or start_tick >= end_tick:
        raise ValueError(f"Invalid tick range [{start_tick}, {end_tick}).")
    modes = list(beat_modes) if beat_modes is not None else detect_beat_modes(tokens, config)

    positioned = to_optimizable(tokens)
    _slot_at(positioned, start_tick)
    for token in positioned:
        if start_tick <= token.tick_position < end_tick:
            token.notes = []
            token.clear_prefixes()
    return _finish(positioned, modes, durations, tokens)


def set_beat_mode(
    tokens: Sequence[Token],
    beat: int,
    mode: BeatMode,
    durations: DurationModel,
    config: GridConfig,
    beat_modes: Sequence[BeatMode] | None = None,
) -> EditResult:
    """
    Switch one beat between straight and triplet subdivision.

    Onsets inside the beat snap to the nearest cell of the new grid;
    onsets that land on the same cell are merged.
    """
    if not 0 <= beat < config.beats_per_bar:
        raise ValueError(f"Beat {beat} is outside the bar (0..{config.beats_per_bar - 1}).")
    modes = list(beat_modes) if beat_modes is not None else detect_beat_modes(tokens, config)
    modes[beat] = mode

    step = config.triplet_step_ticks if mode is BeatMode.TRIPLET else config.step_ticks
    cells = TRIPLET_SLOTS if mode is BeatMode.TRIPLET else config.steps_per_beat
    beat_start = beat * config.ticks_per_beat

    positioned = to_optimizable(tokens)
    for token in positioned:
        if config.beat_of(token.tick_position) != beat:
            continue
        cell = min(cells - 1, to_tick(Fraction(token.tick_position - beat_start, step)))
        token.tick_position = beat_start + cell * step
    return _finish(positioned, modes, durations, tokens)

