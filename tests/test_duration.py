"""Unit tests for DurationModel: unit length, suffix conversion and the optimizer."""

from fractions import Fraction

import pytest

from abcgrid.config import GridConfig
from abcgrid.duration import DurationModel
from abcgrid.models import BeatMode, OptimizableToken


def _model(document: str = "") -> DurationModel:
    model = DurationModel()
    model.update_unit_length(document)
    return model


# ── Unit length ───────────────────────────────────────────────────────────────


def test_default_unit_length_is_an_eighth() -> None:
    assert DurationModel().ticks_per_l == 12


def test_update_unit_length_quarter() -> None:
    assert _model("X:1\nL:1/4\nK:C\n").ticks_per_l == 24


def test_update_unit_length_whole() -> None:
    assert _model("L:1\n").ticks_per_l == 96


def test_update_unit_length_without_header_resets_to_eighth() -> None:
    model = _model("L:1/16\n")
    assert model.ticks_per_l == 6
    assert model.update_unit_length("X:1\nK:C\n") == 12


def test_update_unit_length_is_idempotent() -> None:
    model = DurationModel()
    first = model.update_unit_length("L:1/4\n")
    second = model.update_unit_length("L:1/4\n")
    assert first == second == 24


# ── Suffix to ticks ───────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "suffix, expected",
    [
        ("", 12),
        ("2", 24),
        ("/2", 6),
        ("/", 6),
        ("//", 3),
        ("3/2", 18),
        ("3/", 18),
        ("/4", 3),
    ],
)
def test_duration_to_ticks(suffix: str, expected: int) -> None:
    assert _model().duration_to_ticks(suffix) == expected


def test_malformed_suffix_falls_back_to_one_unit() -> None:
    model = _model()
    assert model.duration_to_ticks("2x") == 12
    assert model.duration_to_ticks("3//4") == 12


def test_zero_suffix_falls_back_to_one_unit() -> None:
    model = _model()
    assert model.duration_to_ticks("0") == 12
    assert model.duration_to_ticks("/0") == 12


def test_triplet_eighths_stay_exact() -> None:
    assert _model().duration_to_ticks("2/3") == Fraction(8)


# ── Ticks to suffix ───────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "ticks, expected",
    [
        (12, ""),
        (24, "2"),
        (48, "4"),
        (6, "/2"),
        (3, "/4"),
        (18, "3/2"),
        (8, "2/3"),
    ],
)
def test_ticks_to_suffix(ticks: int, expected: str) -> None:
    assert _model().ticks_to_suffix(ticks) == expected


@pytest.mark.parametrize("document", ["L:1/4\n", "L:1/8\n", "L:1/16\n"])
def test_optimizer_durations_round_trip(document: str) -> None:
    model = _model(document)
    # Straight steps, triplet slots and whole beats in 4/4 at 96 ticks per whole note.
    for ticks in (6, 8, 12, 16, 18, 24, 48, 72, 96):
        assert model.duration_to_ticks(model.ticks_to_suffix(ticks)) == ticks


def test_irreducible_ticks_fall_back_to_decimal() -> None:
    # Known limitation: the result is not valid ABC.
    suffix = _model("L:1\n").ticks_to_suffix(1)
    assert "." in suffix


# ── Optimizer ─────────────────────────────────────────────────────────────────


def _durations_by_beat(tokens: list[OptimizableToken], config: GridConfig) -> list[int]:
    totals = [0] * config.beats_per_bar
    for token in tokens:
        totals[config.beat_of(token.tick_position)] += token.duration
    return totals


def test_note_extends_to_beat_boundary() -> None:
    model = _model()
    result = model.optimize_bar_durations([OptimizableToken(tick_position=0, notes=["A"])])
    assert [(t.tick_position, t.notes, t.duration) for t in result] == [
        (0, ["A"], 24),
        (24, [], 24),
        (48, [], 24),
        (72, [], 24),
    ]


def test_note_extends_to_next_onset() -> None:
    model = _model()
    result = model.optimize_bar_durations(
        [OptimizableToken(tick_position=0, notes=["A"]), OptimizableToken(tick_position=12, notes=["B"])]
    )
    assert [(t.tick_position, t.duration) for t in result[:2]] == [(0, 12), (12, 12)]


def test_leading_gap_becomes_one_rest() -> None:
    model = _model()
    result = model.optimize_bar_durations([OptimizableToken(tick_position=18, notes=["A"])])
    assert (result[0].tick_position, result[0].notes, result[0].duration) == (0, [], 18)
    assert (result[1].tick_position, result[1].notes, result[1].duration) == (18, ["A"], 6)


def test_rests_in_input_are_not_anchored() -> None:
    model = _model()
    result = model.optimize_bar_durations(
        [OptimizableToken(tick_position=0, notes=["A"], duration=6), OptimizableToken(tick_position=6, duration=18)]
    )
    assert (result[0].notes, result[0].duration) == (["A"], 24)


def test_annotation_only_token_keeps_its_onset() -> None:
    model = _model()
    result = model.optimize_bar_durations([OptimizableToken(tick_position=24, annotations='"Am"')])
    assert result[1].tick_position == 24
    assert result[1].annotations == '"Am"'


def test_triplet_beat_has_three_fixed_slots() -> None:
    model = _model()
    result = model.optimize_bar_durations(
        [OptimizableToken(tick_position=8, notes=["A"])],
        [BeatMode.TRIPLET],
    )
    assert [(t.tick_position, t.notes, t.duration) for t in result[:3]] == [
        (0, [], 8),
        (8, ["A"], 8),
        (16, [], 8),
    ]


def test_triplet_slot_merges_onsets_that_share_it() -> None:
    model = _model()
    result = model.optimize_bar_durations(
        [OptimizableToken(tick_position=0, notes=["A"]), OptimizableToken(tick_position=4, notes=["B"])],
        [BeatMode.TRIPLET],
    )
    assert result[0].notes == ["A", "B"]
    assert result[0].duration == 8


def test_tokens_past_the_bar_are_dropped() -> None:
    model = _model()
    result = model.optimize_bar_durations([OptimizableToken(tick_position=96, notes=["A"])])
    assert all(not t.notes for t in result)


@pytest.mark.parametrize(
    "onsets, modes",
    [
        ([0, 6, 30, 50], None),
        ([8, 16, 24, 90], [BeatMode.TRIPLET]),
        ([], [BeatMode.STRAIGHT, BeatMode.TRIPLET]),
        ([1, 2, 3, 95], [BeatMode.TRIPLET] * 4),
    ],
)
def test_every_beat_is_filled_exactly(onsets: list[int], modes: list[BeatMode] | None) -> None:
    model = _model()
    tokens = [OptimizableToken(tick_position=pos, notes=["C"]) for pos in onsets]
    result = model.optimize_bar_durations(tokens, modes)
    assert _durations_by_beat(result, model.config) == [24, 24, 24, 24]
    positions = [t.tick_position for t in result]
    assert positions == sorted(positions)
