"""
Transposition and scale-degree helpers for ABC note text.

Quoted strings, ``!..!`` decorations, inline fields such as ``[K:G]`` and
``%`` comments are never rewritten. Pitches are spelled from a chromatic
scale: sharps when moving up, flats when moving down.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Final

NOTE_VALUES: Final[dict[str, int]] = {
    "C": 0, "D": 2, "E": 4, "F": 5, "G": 7, "A": 9, "B": 11,
    "c": 12, "d": 14, "e": 16, "f": 17, "g": 19, "a": 21, "b": 23,
}
ACCIDENTALS: Final[dict[str, int]] = {"^": 1, "^^": 2, "_": -1, "__": -2, "=": 0}

CHROMATIC_SCALE_SHARP: Final[list[str]] = ["C", "^C", "D", "^D", "E", "F", "^F", "G", "^G", "A", "^A", "B"]
CHROMATIC_SCALE_FLAT: Final[list[str]] = ["C", "_D", "D", "_E", "E", "F", "_G", "G", "_A", "A", "_B", "B"]

MAJOR_SCALE_INTERVALS: Final[list[int]] = [0, 2, 4, 5, 7, 9, 11]
MINOR_SCALE_INTERVALS: Final[list[int]] = [0, 2, 3, 5, 7, 8, 10]

MAJOR_ROMANS: Final[list[str]] = ["I", "ii", "iii", "IV", "V", "vi", "vii"]
MINOR_ROMANS: Final[list[str]] = ["i", "ii", "III", "iv", "v", "VI", "VII"]
MAJOR_QUALITIES: Final[list[str]] = ["", "m", "m", "", "", "m", "dim"]
MINOR_QUALITIES: Final[list[str]] = ["m", "dim", "", "m", "m", "", ""]

# Natural-root minor keys written with flats (d, g, c, f minor).
FLAT_MINOR_ROOTS: Final[set[str]] = {"D", "G", "C", "F"}

MIDDLE_C: Final[int] = 60

_NOTE_RE = re.compile(r"[\^=_]*[A-Ga-g][,']*")
_NOTE_PARTS_RE = re.compile(r"^([\^=_]*)([A-Ga-g])([,']*)$")
_TRANSPOSE_PROTECTED_RE = re.compile(r'(".*?")|(!.+?!)|(\[[A-Za-z]:.*?\])|(%.*$)', re.MULTILINE)
_DEGREE_PROTECTED_RE = re.compile(r'(".*?")|(!.+?!)|(\[.*?\])|(%.*$)', re.MULTILINE)
_KEY_ROOT_RE = re.compile(r"^([A-Ga-g][#b]?)(.*)$")
_MINOR_SUFFIX_RE = re.compile(r"^(m|min|minor)(\s|$)")


def _accidental_value(accidental: str) -> int:
    if accidental in ACCIDENTALS:
        return ACCIDENTALS[accidental]
    value = 0
    for char in accidental:
        if char == "^":
            value += 1
        elif char == "_":
            value -= 1
    return value


def _absolute_semitones(note: str) -> int | None:
    match = _NOTE_PARTS_RE.match(note)
    if not match:
        return None
    accidental, base, octave = match.groups()
    return NOTE_VALUES[base] + _accidental_value(accidental) + 12 * (octave.count("'") - octave.count(","))


def _spell(total: int, scale: list[str]) -> str:
    pitch_class = total % 12
    octave_level = total // 12
    name = scale[pitch_class]
    accidental, base = name[:-1], name[-1]

    if octave_level == 0:
        return f"{accidental}{base}"
    if octave_level >= 1:
        return f"{accidental}{base.lower()}" + "'" * (octave_level - 1)
    return f"{accidental}{base}" + "," * (-octave_level)


def transpose_note(note: str, semitones: int) -> str:
    total = _absolute_semitones(note)
    if total is None:
        return note
    scale = CHROMATIC_SCALE_FLAT if semitones < 0 else CHROMATIC_SCALE_SHARP
    return _spell(total + semitones, scale)


def _rewrite_unprotected(text: str, protected: re.Pattern[str], rewrite: Callable[[str], str]) -> str:
    result: list[str] = []
    last = 0
    for match in protected.finditer(text):
        result.append(_NOTE_RE.sub(lambda m: rewrite(m.group(0)), text[last : match.start()]))
        result.append(match.group(0))
        last = match.end()
    result.append(_NOTE_RE.sub(lambda m: rewrite(m.group(0)), text[last:]))
    return "".join(result)


def transpose_abc(text: str, semitones: int) -> str:
    """Transpose every note in *text* by *semitones*."""
    if semitones == 0:
        return text
    return _rewrite_unprotected(text, _TRANSPOSE_PROTECTED_RE, lambda note: transpose_note(note, semitones))


# ── Keys and scale degrees ────────────────────────────────────────────────────


def parse_key(key: str) -> tuple[str, str]:
    """
    Split a ``K:`` value into ``(root, mode)``.

    >>> parse_key("Bb minor")
    ('Bb', 'minor')

    Modes other than minor (``mix``, ``dor``, ...) read as major.
    """
    match = _KEY_ROOT_RE.match(key.strip())
    if not match:
        return "C", "major"
    root = match.group(1)
    root = root[0].upper() + root[1:]
    suffix = match.group(2).strip().lower()
    mode = "minor" if _MINOR_SUFFIX_RE.match(suffix) else "major"
    return root, mode


def _check_degree(degree: int) -> None:
    if not 1 <= degree <= 7:
        raise ValueError(f"Scale degree must be between 1 and 7, got {degree}.")


def _is_flat_key(root: str, mode: str) -> bool:
    if "b" in root:
        return True
    if "#" in root:
        return False
    if mode == "major":
        return root == "F"
    return root in FLAT_MINOR_ROOTS


def scale_note(root: str, mode: str, degree: int) -> str:
    """Pitch class of *degree* (1-7) in the key, e.g. ``"^F"``, uppercase."""
    _check_degree(degree)
    root_value = NOTE_VALUES[root[0].upper()]
    if root[1:] == "#":
        root_value += 1
    elif root[1:] == "b":
        root_value -= 1

    intervals = MAJOR_SCALE_INTERVALS if mode == "major" else MINOR_SCALE_INTERVALS
    target = (root_value + intervals[degree - 1]) % 12
    scale = CHROMATIC_SCALE_FLAT if _is_flat_key(root, mode) else CHROMATIC_SCALE_SHARP
    return scale[target]


def set_note_to_degree(note: str, degree: int, key: str) -> str:
    """Replace *note* with *degree* of *key*, keeping its case and octave marks."""
    match = _NOTE_PARTS_RE.match(note)
    if not match:
        return note
    _, base, octave = match.groups()
    root, mode = parse_key(key)
    target = scale_note(root, mode, degree)
    accidental, target_base = target[:-1], target[-1]
    if base.islower():
        target_base = target_base.lower()
    return f"{accidental}{target_base}{octave}"


def set_selection_to_degree(text: str, degree: int, key: str) -> str:
    """Move every note of *text* to *degree*; bracketed content is left alone."""
    _check_degree(degree)
    return _rewrite_unprotected(text, _DEGREE_PROTECTED_RE, lambda note: set_note_to_degree(note, degree, key))


# ── Chords ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ChordButton:
    """One diatonic triad: roman numeral, quality and the ABC chord to insert."""

    roman: str
    quality: str  # "", "m" or "dim"
    text: str
    root: str

    @property
    def label(self) -> str:
        name = self.root.replace("^", "♯").replace("_", "♭").replace("=", "")
        suffix = {"m": "m", "dim": "°"}.get(self.quality, "")
        return f"{name}{suffix}"


def _pitch_class_value(note: str) -> int:
    return NOTE_VALUES[note[-1]] + _accidental_value(note[:-1])


def _with_octave(note: str, value: int) -> str:
    return note[:-1] + (note[-1].lower() if value >= 12 else note[-1])


def diatonic_triad(key: str, degree: int) -> ChordButton:
    """
    Triad on *degree* of *key*, voiced upward from the root.

    >>> diatonic_triad("C", 5).text
    '[GBd]'
    """
    _check_degree(degree)
    root, mode = parse_key(key)
    index = degree - 1
    chord_root = scale_note(root, mode, degree)
    third = scale_note(root, mode, (index + 2) % 7 + 1)
    fifth = scale_note(root, mode, (index + 4) % 7 + 1)

    root_value = _pitch_class_value(chord_root)
    third_value = _pitch_class_value(third)
    fifth_value = _pitch_class_value(fifth)
    if third_value < root_value:
        third_value += 12
    if fifth_value < third_value:
        fifth_value += 12

    text = "[" + "".join(
        _with_octave(note, value)
        for note, value in ((chord_root, root_value), (third, third_value), (fifth, fifth_value))
    ) + "]"

    if mode == "major":
        roman, quality = MAJOR_ROMANS[index], MAJOR_QUALITIES[index]
    else:
        roman, quality = MINOR_ROMANS[index], MINOR_QUALITIES[index]
    return ChordButton(roman=roman, quality=quality, text=text, root=chord_root)


def note_to_midi(pitch: str) -> int | None:
    """MIDI number of an ABC pitch, with ``C`` as middle C (60)."""
    total = _absolute_semitones(pitch)
    return None if total is None else MIDDLE_C + total
