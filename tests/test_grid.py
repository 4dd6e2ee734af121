"""Unit tests for the grid projector."""

from abcgrid.config import GridConfig
from abcgrid.duration import DurationModel
from abcgrid.grid import bar_fill, decoration_at_tick, detect_beat_modes, project_flat, project_state
from abcgrid.instruments import GHOST, GroupedInstrument, build_instrument_rows, definition_by_id
from abcgrid.lines import parse_percmaps
from abcgrid.models import BeatMode, NoteState
from abcgrid.tokenizer import tokenize

CONFIG = GridConfig()
HIHAT_DOC = "%%percmap g 42\n%%percmap ^g 46\n"
SNARE_DOC = "%%percmap c 38\n%%percmap d 37\n"


def _tokens(bar: str, unit: str = "L:1/4\n"):
    durations = DurationModel(CONFIG)
    durations.update_unit_length(unit)
    return tokenize(bar, durations)


def _row(document: str, group_id: str) -> GroupedInstrument:
    rows = build_instrument_rows(parse_percmaps(document))
    return next(r for r in rows if isinstance(r, GroupedInstrument) and r.definition.id == group_id)


def test_flat_projection_records_onsets_only() -> None:
    grid = project_flat(_tokens("C2 E2 G2", "L:1/8\n"), CONFIG)
    assert len(grid) == 96
    assert grid[0] == {"C"}
    assert grid[24] == {"E"}
    assert grid[48] == {"G"}
    assert grid[12] == set()
    assert sum(1 for cell in grid if cell) == 3


def test_flat_projection_keeps_chords_together() -> None:
    grid = project_flat(_tokens("[cg] z z z"), CONFIG)
    assert grid[0] == {"c", "g"}


def test_flat_projection_stops_at_bar_end() -> None:
    grid = project_flat(_tokens("C4 D4"), CONFIG)
    assert grid[0] == {"C"}
    assert all(not cell for cell in grid[1:])


def test_hihat_open_prefix_reads_as_alt() -> None:
    grid = project_state(_tokens("g g g og"), _row(HIHAT_DOC, "hihat"), CONFIG)
    assert [grid[t] for t in (0, 24, 48, 72)] == [NoteState.BASE, NoteState.BASE, NoteState.BASE, NoteState.ALT]
    assert grid[1] is None


def test_alt_character_reads_as_alt() -> None:
    grid = project_state(_tokens("^g z z z"), _row(HIHAT_DOC, "hihat"), CONFIG)
    assert grid[0] is NoteState.ALT


def test_snare_states_follow_priority_order() -> None:
    grid = project_state(_tokens("{c}c !g!c d c"), _row(SNARE_DOC, "snare"), CONFIG)
    assert [grid[t] for t in (0, 24, 48, 72)] == [
        NoteState.FLAM,
        NoteState.DECORATION,
        NoteState.ALT,
        NoteState.BASE,
    ]


def test_flam_beats_decoration() -> None:
    grid = project_state(_tokens("!>!{c}c z z z"), _row(SNARE_DOC, "snare"), CONFIG)
    assert grid[0] is NoteState.FLAM


def test_hihat_grace_is_not_a_flam() -> None:
    grid = project_state(_tokens("{g}g z z z"), _row(HIHAT_DOC, "hihat"), CONFIG)
    assert grid[0] is NoteState.BASE


def test_other_instruments_leave_the_row_empty() -> None:
    grid = project_state(_tokens("c c c c"), _row(HIHAT_DOC, "hihat"), CONFIG)
    assert all(state is None for state in grid)


def test_decoration_at_tick_uses_the_covering_token() -> None:
    tokens = _tokens("!g!c z z z")
    snare = definition_by_id("snare")
    assert decoration_at_tick(tokens, 0, snare) == GHOST
    assert decoration_at_tick(tokens, 5, snare) == GHOST
    assert decoration_at_tick(tokens, 30, snare) is None


def test_detect_beat_modes() -> None:
    tokens = _tokens("(3ccc c2 c2 c2", "L:1/8\n")
    assert detect_beat_modes(tokens, CONFIG) == [
        BeatMode.TRIPLET,
        BeatMode.STRAIGHT,
        BeatMode.STRAIGHT,
        BeatMode.STRAIGHT,
    ]


def test_bar_fill_reports_missing_ticks() -> None:
    fill = bar_fill(_tokens("C2 E2 G2", "L:1/8\n"), CONFIG)
    assert fill.capacity == 96
    assert fill.total == 72
    assert fill.per_beat == [24, 24, 24, 0]
    assert fill.missing == 24
    assert not fill.is_complete


def test_bar_fill_splits_long_notes_across_beats() -> None:
    fill = bar_fill(_tokens("C3 D", "L:1/4\n"), CONFIG)
    assert fill.per_beat == [24, 24, 24, 24]
    assert fill.is_complete


def test_bar_fill_reports_overflow() -> None:
    fill = bar_fill(_tokens("C8 D2", "L:1/8\n"), CONFIG)
    assert fill.overflow == 24
