"""DrumGridSession: ties the grid pipeline to a host document."""

from __future__ import annotations

import logging
from typing import Callable

from abcgrid.broker import ActivityBroker, Role
from abcgrid.config import GridConfig
from abcgrid.duration import DurationModel
from abcgrid.grid import decoration_at_tick, detect_beat_modes, project_flat, project_state
from abcgrid.instruments import (
    DRUM_DEFS,
    GM_DRUMS,
    DrumDecoration,
    DrumGroupDefinition,
    GroupedInstrument,
    InstrumentRow,
    build_instrument_rows,
    notes_in_text,
    notes_in_tune,
    visible_instruments,
)
from abcgrid.lines import parse_percmaps
from abcgrid.locator import apply_edit, locate_bar, needs_closing_delimiter, previous_bar_text
from abcgrid.models import BarContext, BeatMode, EditMode, EditResult, NoteState, PercMap, Token
from abcgrid.mutation import set_beat_mode, set_grouped_state, toggle_flat_note
from abcgrid.tokenizer import tokenize

logger = logging.getLogger(__name__)

ReplaceRange = Callable[[int, int, str], None]

CLOSING_DELIMITER = " |"


class DrumGridSession:
    """
    One drum grid attached to one document.

    The host calls :meth:`update` with the full text and cursor after every
    change. Edits go out through *replace_range* as a single call each;
    the session then advances its own copy of the document and bar context
    without reading the host back, so a second edit issued before the host
    has persisted the first still lands in the right place.

    Attributes:
        locked:  When true, rows are built from every note in the tune
                 rather than the current (or previous) bar.
        pinned:  MIDI numbers whose rows are always shown when mapped.
    """

    def __init__(
        self,
        replace_range: ReplaceRange,
        config: GridConfig | None = None,
        definitions: tuple[DrumGroupDefinition, ...] = DRUM_DEFS,
        broker: ActivityBroker | None = None,
        instance_id: str = "drum-grid",
    ) -> None:
        self.replace_range = replace_range
        self.definitions = definitions
        self.broker = broker
        self.instance_id = instance_id
        self._fixed_config = config
        self.config = config or GridConfig()
        self.durations = DurationModel(self.config)

        self.document = ""
        self.cursor = 0
        self.context: BarContext | None = None
        self.percmaps: list[PercMap] = []
        self.rows: list[InstrumentRow] = []
        self.locked = False
        self.pinned: list[int] = []
        self.active = broker is None

    # ------------------------------------------------------------------
    # Activity
    # ------------------------------------------------------------------

    def focus(self) -> None:
        if self.broker is None:
            return
        self.broker.acquire(Role.EDITOR, self.instance_id, on_preempt=self._on_preempt)
        self.active = True

    def blur(self) -> None:
        if self.broker is not None:
            self.broker.release(self.instance_id, Role.EDITOR)
            self.active = False

    def _on_preempt(self) -> None:
        logger.debug("Grid %s lost the editor role", self.instance_id)
        self.active = False

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def update(self, document: str, cursor: int) -> bool:
        """
        Re-read *document* around *cursor*.

        Returns ``True`` when the bar under the cursor changed (by text),
        which is when a host needs to redraw the grid.
        """
        previous = self.context.text if self.context else None
        self.document = document
        self.cursor = cursor

        self.config = self._fixed_config or GridConfig.from_document(document)
        if self.durations.config != self.config:
            self.durations = DurationModel(self.config)
        self.durations.update_unit_length(document)

        self.percmaps = parse_percmaps(document, GM_DRUMS)
        self.context = locate_bar(document, cursor)
        self._refresh_rows()

        current = self.context.text if self.context else None
        return current != previous

    def _used_notes(self) -> set[str]:
        if self.locked:
            return notes_in_tune(self.document)
        if self.context is None:
            return set()
        used = notes_in_text(self.context.text)
        if not used:
            used = notes_in_text(previous_bar_text(self.document, self.context))
        return used

    def _refresh_rows(self) -> None:
        visible = visible_instruments(self.percmaps, self._used_notes(), self.pinned, self.definitions)
        self.rows = build_instrument_rows(visible, self.definitions)

    def pin(self, midi: int) -> None:
        if midi not in self.pinned:
            self.pinned.append(midi)
            self._refresh_rows()

    def unpin(self, midi: int) -> None:
        if midi in self.pinned:
            self.pinned.remove(midi)
            self._refresh_rows()

    def set_locked(self, locked: bool) -> None:
        self.locked = locked
        self._refresh_rows()

    @property
    def tokens(self) -> list[Token]:
        if self.context is None:
            return []
        return tokenize(self.context.text, self.durations)

    @property
    def beat_modes(self) -> list[BeatMode]:
        return detect_beat_modes(self.tokens, self.config)

    def flat_grid(self) -> list[set[str]]:
        return project_flat(self.tokens, self.config)

    def state_grid(self, row: GroupedInstrument) -> list[NoteState | None]:
        return project_state(self.tokens, row, self.config)

    def decoration_at(self, tick: int, row: GroupedInstrument) -> DrumDecoration | None:
        return decoration_at_tick(self.tokens, tick, row.definition)

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def toggle(self, tick: int, char: str) -> EditResult | None:
        """Toggle the single-character instrument *char* at *tick*."""
        if self.context is None:
            return None
        result = toggle_flat_note(
            self.tokens, tick, char, self.durations, self.config, bar_text=self.context.text
        )
        return self._commit(result)

    def set_state(
        self,
        tick: int,
        row: GroupedInstrument,
        state: NoteState | None,
        decoration: DrumDecoration | None = None,
    ) -> EditResult | None:
        if self.context is None:
            return None
        result = set_grouped_state(
            self.tokens,
            tick,
            row,
            state,
            self.durations,
            self.config,
            decoration=decoration,
            bar_text=self.context.text,
        )
        return self._commit(result)

    def set_beat_mode(self, beat: int, mode: BeatMode) -> EditResult | None:
        if self.context is None:
            return None
        return self._commit(set_beat_mode(self.tokens, beat, mode, self.durations, self.config))

    def _commit(self, result: EditResult) -> EditResult:
        if result.mode is EditMode.REJECTED:
            return result

        context = self.context
        if context is None:
            return result
        old = context.text
        leading = old[: len(old) - len(old.lstrip())]
        trailing = old[len(old.rstrip()) :] if old.strip() else ""
        bar = f"{leading}{result.text}{trailing}"

        dispatched = bar
        if needs_closing_delimiter(self.document, context.end):
            dispatched += CLOSING_DELIMITER

        self.replace_range(context.start, context.end, dispatched)

        self.document = self.document[: context.start] + dispatched + self.document[context.end :]
        self.context = apply_edit(context, bar)
        self._refresh_rows()
        return result
