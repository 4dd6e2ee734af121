"""Drum instrument catalog and the rows shown by a drum grid."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final, Iterable, Union

from abcgrid.duration import DurationModel
from abcgrid.lines import music_lines
from abcgrid.models import PercMap
from abcgrid.tokenizer import tokenize

# ── General MIDI percussion labels ────────────────────────────────────────────

GM_DRUMS: Final[dict[int, str]] = {
    35: "Kick",
    36: "E-Kick",
    37: "Side Stick",
    38: "Snare",
    39: "Hand Clap",
    40: "E-Snare",
    41: "Floor Tom 2",
    42: "Closed Hi-Hat",
    43: "Floor Tom 1",
    44: "Pedal Hi-Hat",
    45: "Low Tom",
    46: "Open Hi-Hat",
    47: "Low-Mid Tom",
    48: "Hi-Mid Tom",
    49: "Crash 1",
    50: "High Tom",
    51: "Ride",
    52: "China",
    53: "Ride Bell",
    54: "Tambourine",
    55: "Splash",
    56: "Cowbell",
    57: "Crash 2",
    58: "Vibraslap",
    59: "Ride Edge",
    60: "Hi Bongo",
    61: "Low Bongo",
    62: "Mute Hi Conga",
    63: "Open Hi Conga",
    64: "Low Conga",
    65: "High Timbale",
    66: "Low Timbale",
    67: "High Agogo",
    68: "Low Agogo",
    69: "Cabasa",
    70: "Maracas",
    71: "Short Whistle",
    72: "Long Whistle",
    73: "Short Guiro",
    74: "Long Guiro",
    75: "Claves",
    76: "Hi Wood Block",
    77: "Low Wood Block",
    78: "Mute Cuica",
    79: "Open Cuica",
    80: "Mute Triangle",
    81: "Open Triangle",
}


@dataclass(frozen=True)
class DrumDecoration:
    label: str   # "Accent", "Ghost"
    marker: str  # "!>!", "!g!"
    icon: str    # ">", "(•)"


@dataclass(frozen=True)
class DrumAlt:
    midi: int                 # 46 (open hi-hat), 37 (side stick)
    icon: str
    label: str
    abc_prefix: str | None = None  # "o" marks an open hi-hat on the base note


@dataclass(frozen=True)
class DrumGroupDefinition:
    """
    One logical drum voice that several ABC characters can realise.

    Attributes:
        id:          Stable identifier, e.g. ``"hihat"``.
        label:       Display name.
        base_midi:   MIDI number of the main sound.
        base_icon:   Glyph for the base state.
        alts:        Alternative sounds; the first one found in the
                     document's percmaps is the active alt.
        decorations: Markers this voice understands, in menu order.
        allow_flam:  Whether a ``{x}x`` grace note reads as a flam.
    """

    id: str
    label: str
    base_midi: int
    base_icon: str
    alts: tuple[DrumAlt, ...] = ()
    decorations: tuple[DrumDecoration, ...] = ()
    allow_flam: bool = False

    @property
    def midis(self) -> list[int]:
        return [self.base_midi, *(alt.midi for alt in self.alts)]

    def decoration_by_icon(self, icon: str) -> DrumDecoration | None:
        return next((d for d in self.decorations if d.icon == icon), None)


ACCENT = DrumDecoration(label="Accent", marker="!>!", icon=">")
GHOST = DrumDecoration(label="Ghost", marker="!g!", icon="(•)")

DRUM_DEFS: Final[tuple[DrumGroupDefinition, ...]] = (
    DrumGroupDefinition(
        id="hihat",
        label="Hi-Hat",
        base_midi=42,
        base_icon="✕",
        alts=(DrumAlt(midi=46, icon="○", label="Open", abc_prefix="o"),),
        decorations=(ACCENT,),
        allow_flam=False,
    ),
    DrumGroupDefinition(
        id="snare",
        label="Snare",
        base_midi=38,
        base_icon="●",
        alts=(DrumAlt(midi=37, icon="x", label="Side Stick"),),
        decorations=(GHOST, ACCENT),
        allow_flam=True,
    ),
    DrumGroupDefinition(
        id="hi-mid-tom",
        label="Hi-Mid Tom",
        base_midi=48,
        base_icon="●",
        decorations=(GHOST, ACCENT),
        allow_flam=True,
    ),
)


def definition_by_id(group_id: str, definitions: Iterable[DrumGroupDefinition] = DRUM_DEFS) -> DrumGroupDefinition:
    for definition in definitions:
        if definition.id == group_id:
            return definition
    known = ", ".join(d.id for d in definitions)
    raise ValueError(f"Unknown drum group '{group_id}'. Use one of: {known}.")


# ── Instrument rows ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class GroupedInstrument:
    """A drum group resolved against the document's percmap characters."""

    definition: DrumGroupDefinition
    base_char: str
    alt_char: str | None = None
    active_alt: DrumAlt | None = None

    @property
    def label(self) -> str:
        return self.definition.label

    @property
    def alt_prefix(self) -> str | None:
        alt = self.active_alt or (self.definition.alts[0] if self.definition.alts else None)
        return alt.abc_prefix if alt else None

    @property
    def chars(self) -> list[str]:
        return [c for c in (self.base_char, self.alt_char) if c]


@dataclass(frozen=True)
class SingleInstrument:
    char: str
    midi: int
    label: str


InstrumentRow = Union[GroupedInstrument, SingleInstrument]


def notes_in_text(text: str) -> set[str]:
    """Distinct pitch strings written in a bar or line of music."""
    durations = DurationModel()
    return {note for token in tokenize(text, durations) for note in token.notes}


def notes_in_tune(document: str) -> set[str]:
    """Distinct pitch strings across every music line of *document*."""
    found: set[str] = set()
    for line in music_lines(document):
        found |= notes_in_text(line)
    return found


def visible_instruments(
    percmaps: list[PercMap],
    used_notes: set[str],
    pinned_midis: Iterable[int] = (),
    definitions: Iterable[DrumGroupDefinition] = DRUM_DEFS,
) -> list[PercMap]:
    """
    Percmaps to show: those written in *used_notes*, then pinned ones.

    When any member of a drum group is visible, every member the document
    maps is pulled in too, so a hi-hat row always offers its open sound.
    """
    visible = [m for m in percmaps if m.char in used_notes]

    for midi in pinned_midis:
        if not any(m.midi == midi for m in visible):
            match = next((m for m in percmaps if m.midi == midi), None)
            if match:
                visible.append(match)

    for definition in definitions:
        group_midis = definition.midis
        if not any(m.midi in group_midis for m in visible):
            continue
        for midi in group_midis:
            if any(m.midi == midi for m in visible):
                continue
            match = next((m for m in percmaps if m.midi == midi), None)
            if match:
                visible.append(match)

    return visible


def build_instrument_rows(
    visible: list[PercMap],
    definitions: Iterable[DrumGroupDefinition] = DRUM_DEFS,
) -> list[InstrumentRow]:
    """
    Group visible percmaps into grid rows.

    A group row is built when its base sound is mapped together with one
    of its alts, or when the group has no alts at all. Every other visible
    percmap becomes a single row.
    """
    rows: list[InstrumentRow] = []
    processed: set[str] = set()

    for definition in definitions:
        base_map = next((m for m in visible if m.midi == definition.base_midi), None)
        if base_map is None:
            continue

        alt_map: PercMap | None = None
        active_alt: DrumAlt | None = None
        for alt in definition.alts:
            alt_map = next((m for m in visible if m.midi == alt.midi), None)
            if alt_map:
                active_alt = alt
                break

        if alt_map is None and definition.alts:
            continue

        rows.append(
            GroupedInstrument(
                definition=definition,
                base_char=base_map.char,
                alt_char=alt_map.char if alt_map else None,
                active_alt=active_alt,
            )
        )
        processed.add(base_map.char)
        if alt_map:
            processed.add(alt_map.char)

    for percmap in visible:
        if percmap.char not in processed:
            rows.append(SingleInstrument(char=percmap.char, midi=percmap.midi, label=percmap.label))
            processed.add(percmap.char)

    return rows
