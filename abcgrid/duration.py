"""DurationModel: converts between ABC length suffixes and grid ticks."""

from __future__ import annotations

import logging
import re
from fractions import Fraction
from typing import Final, Sequence

from abcgrid.config import TRIPLET_SLOTS, GridConfig
from abcgrid.models import BeatMode, OptimizableToken

logger = logging.getLogger(__name__)

DEFAULT_UNIT_DENOMINATOR: Final[int] = 8

_UNIT_LENGTH_RE = re.compile(r"^L:\s*1(?:\s*/\s*(\d+))?\s*$", re.MULTILINE)
_SUFFIX_RE = re.compile(r"^(\d*)(/*)(\d*)$")


class DurationModel:
    """
    Duration arithmetic for one grid.

    ``ticks_per_l`` is the number of ticks in one unit note length (the
    ``L:`` header). It starts at ``L:1/8`` and is recomputed by
    :meth:`update_unit_length` whenever the document changes.

    Tick counts are exact :class:`~fractions.Fraction` values so that
    tuplet scaling never accumulates rounding error.
    """

    CANDIDATE_DENOMINATORS: Final[tuple[int, ...]] = (2, 3, 4, 6, 8, 12, 16, 24, 32)
    TOLERANCE: Final[float] = 1e-4

    def __init__(self, config: GridConfig | None = None) -> None:
        self.config = config or GridConfig()
        self.ticks_per_l = Fraction(self.config.ticks_per_whole, DEFAULT_UNIT_DENOMINATOR)

    # ------------------------------------------------------------------
    # Header handling
    # ------------------------------------------------------------------

    def update_unit_length(self, document: str) -> Fraction:
        """
        Recompute ``ticks_per_l`` from the first ``L:`` header line.

        ``L:1/n`` gives ``ticks_per_whole / n``; a bare ``L:1`` gives a whole
        note. Documents without an ``L:`` header use ``L:1/8``.
        """
        match = _UNIT_LENGTH_RE.search(document)
        denominator = DEFAULT_UNIT_DENOMINATOR
        if match:
            denominator = int(match.group(1)) if match.group(1) else 1
            if denominator == 0:
                logger.debug("Ignoring L:1/0 header, keeping L:1/%d", DEFAULT_UNIT_DENOMINATOR)
                denominator = DEFAULT_UNIT_DENOMINATOR
        self.ticks_per_l = Fraction(self.config.ticks_per_whole, denominator)
        return self.ticks_per_l

    # ------------------------------------------------------------------
    # Suffix <-> ticks
    # ------------------------------------------------------------------

    def duration_to_ticks(self, suffix: str) -> Fraction:
        """
        Convert an ABC length suffix to ticks.

        ``""`` is one unit, ``"2"`` two units, ``"/2"`` or ``"/"`` half a
        unit, ``"//"`` a quarter, ``"3/2"`` one and a half. Anything that
        does not parse counts as one unit.
        """
        match = _SUFFIX_RE.match(suffix)
        if not match:
            logger.debug("Malformed duration suffix %r, using one unit", suffix)
            return self.ticks_per_l

        numerator_str, slashes, denominator_str = match.groups()
        numerator = int(numerator_str) if numerator_str else 1

        if not slashes:
            if numerator == 0:
                logger.debug("Zero-length suffix %r, using one unit", suffix)
                return self.ticks_per_l
            return numerator * self.ticks_per_l

        if denominator_str:
            if len(slashes) > 1:
                logger.debug("Malformed duration suffix %r, using one unit", suffix)
                return self.ticks_per_l
            denominator = int(denominator_str)
        else:
            denominator = 2 ** len(slashes)

        if numerator == 0 or denominator == 0:
            logger.debug("Zero in duration suffix %r, using one unit", suffix)
            return self.ticks_per_l
        return Fraction(numerator, denominator) * self.ticks_per_l

    def ticks_to_suffix(self, ticks: Fraction | int) -> str:
        """
        Shortest ABC suffix for *ticks* at the current unit length.

        Returns a decimal string when no candidate denominator fits; that
        output is not valid ABC and is logged as a warning.
        """
        ratio = Fraction(ticks) / self.ticks_per_l
        if ratio == 1:
            return ""
        if ratio.denominator == 1:
            return str(ratio.numerator)

        for denominator in self.CANDIDATE_DENOMINATORS:
            numerator = round(ratio * denominator)
            if abs(Fraction(numerator, denominator) - ratio) < self.TOLERANCE:
                reduced = Fraction(numerator, denominator)
                if reduced.numerator == 1:
                    return f"/{reduced.denominator}"
                return f"{reduced.numerator}/{reduced.denominator}"

        fallback = f"{float(ratio):g}"
        logger.warning("No ABC fraction for %s ticks (ratio %s), emitting %r", ticks, ratio, fallback)
        return fallback

    # ------------------------------------------------------------------
    # Optimizer
    # ------------------------------------------------------------------

    def optimize_bar_durations(
        self,
        tokens: Sequence[OptimizableToken],
        beat_modes: Sequence[BeatMode] | None = None,
    ) -> list[OptimizableToken]:
        """
        Rebuild minimal tokens from a sparse set of positioned notes.

        Straight beats
          Each note lasts until the next onset or the beat boundary. Gaps
          become a single rest, and an empty beat is one beat-long rest.

        Triplet beats
          The beat is locked to three slots. A slot holds the note(s) whose
          onset falls inside it, or a rest; nothing extends past its slot.

        The result is ordered by tick and its durations add up to the beat
        width for every beat of the bar.
        """
        config = self.config
        modes = _normalize_modes(beat_modes, config.beats_per_bar)
        beat_width = config.ticks_per_beat

        slot_map: dict[int, OptimizableToken] = {}
        for token in tokens:
            if not token.is_anchored:
                continue
            if not 0 <= token.tick_position < config.ticks_per_bar:
                logger.debug("Dropping token outside the bar at tick %d", token.tick_position)
                continue
            existing = slot_map.get(token.tick_position)
            slot_map[token.tick_position] = _merge(existing, token) if existing else token

        optimized: list[OptimizableToken] = []
        for beat_index, mode in enumerate(modes):
            beat_start = beat_index * beat_width
            beat_end = beat_start + beat_width
            onsets = sorted(pos for pos in slot_map if beat_start <= pos < beat_end)

            if mode is BeatMode.TRIPLET:
                optimized.extend(self._triplet_beat(slot_map, onsets, beat_start))
                continue

            if not onsets:
                optimized.append(OptimizableToken(tick_position=beat_start, duration=beat_width))
                continue

            if onsets[0] > beat_start:
                optimized.append(
                    OptimizableToken(tick_position=beat_start, duration=onsets[0] - beat_start)
                )
            for index, pos in enumerate(onsets):
                next_pos = onsets[index + 1] if index + 1 < len(onsets) else beat_end
                optimized.append(_with_position(slot_map[pos], pos, next_pos - pos))

        return optimized

    def _triplet_beat(
        self,
        slot_map: dict[int, OptimizableToken],
        onsets: list[int],
        beat_start: int,
    ) -> list[OptimizableToken]:
        step = self.config.triplet_step_ticks
        result: list[OptimizableToken] = []
        for slot in range(TRIPLET_SLOTS):
            slot_start = beat_start + slot * step
            in_slot = [pos for pos in onsets if slot_start <= pos < slot_start + step]
            if not in_slot:
                result.append(OptimizableToken(tick_position=slot_start, duration=step))
                continue
            merged = slot_map[in_slot[0]]
            for pos in in_slot[1:]:
                merged = _merge(merged, slot_map[pos])
            result.append(_with_position(merged, slot_start, step))
        return result


def _normalize_modes(beat_modes: Sequence[BeatMode] | None, beats: int) -> list[BeatMode]:
    modes = list(beat_modes or [])
    modes = modes[:beats]
    modes.extend([BeatMode.STRAIGHT] * (beats - len(modes)))
    return modes


def _with_position(token: OptimizableToken, position: int, duration: int) -> OptimizableToken:
    return OptimizableToken(
        tick_position=position,
        notes=list(token.notes),
        duration=duration,
        decorations=token.decorations,
        grace=token.grace,
        open_prefix=token.open_prefix,
        annotations=token.annotations,
    )


def _merge(first: OptimizableToken, second: OptimizableToken) -> OptimizableToken:
    """Combine two onsets that collapse onto the same slot."""
    notes = list(first.notes)
    notes.extend(n for n in second.notes if n not in notes)
    decorations = first.decorations
    if second.decorations and second.decorations not in decorations:
        decorations += second.decorations
    return OptimizableToken(
        tick_position=first.tick_position,
        notes=notes,
        duration=first.duration,
        decorations=decorations,
        grace=first.grace or second.grace,
        open_prefix=first.open_prefix or second.open_prefix,
        annotations=first.annotations + second.annotations,
    )
