"""Grid resolution and meter configuration."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final

DEFAULT_TICKS_PER_WHOLE: Final[int] = 96
DEFAULT_STEPS_PER_BEAT: Final[int] = 4
TRIPLET_SLOTS: Final[int] = 3

_METER_RE = re.compile(r"^M:\s*(?:(\d+)\s*/\s*(\d+)|(C\|?))", re.MULTILINE)


@dataclass(frozen=True)
class GridConfig:
    """
    Fixed tick resolution of one grid instance.

    A whole note is ``ticks_per_whole`` ticks; one beat is a
    ``1/beat_unit`` note. The default of 96 ticks per whole note gives 24
    ticks per quarter, which divides evenly into four straight steps (6
    ticks) or three triplet slots (8 ticks).
    """

    ticks_per_whole: int = DEFAULT_TICKS_PER_WHOLE
    beats_per_bar: int = 4
    beat_unit: int = 4
    steps_per_beat: int = DEFAULT_STEPS_PER_BEAT

    def __post_init__(self) -> None:
        for name in ("ticks_per_whole", "beats_per_bar", "beat_unit", "steps_per_beat"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}.")
        if self.ticks_per_whole % self.beat_unit:
            raise ValueError(
                f"ticks_per_whole={self.ticks_per_whole} is not divisible by beat_unit={self.beat_unit}."
            )
        beat = self.ticks_per_whole // self.beat_unit
        if beat % self.steps_per_beat or beat % TRIPLET_SLOTS:
            raise ValueError(
                f"A beat of {beat} ticks cannot be split into {self.steps_per_beat} steps "
                f"and {TRIPLET_SLOTS} triplet slots."
            )

    @property
    def ticks_per_beat(self) -> int:
        return self.ticks_per_whole // self.beat_unit

    @property
    def ticks_per_bar(self) -> int:
        return self.ticks_per_beat * self.beats_per_bar

    @property
    def step_ticks(self) -> int:
        """Width of one straight step-sequencer cell."""
        return self.ticks_per_beat // self.steps_per_beat

    @property
    def triplet_step_ticks(self) -> int:
        return self.ticks_per_beat // TRIPLET_SLOTS

    def beat_of(self, tick: int) -> int:
        return tick // self.ticks_per_beat

    @classmethod
    def from_document(
        cls,
        document: str,
        ticks_per_whole: int = DEFAULT_TICKS_PER_WHOLE,
        steps_per_beat: int = DEFAULT_STEPS_PER_BEAT,
    ) -> "GridConfig":
        """
        Build a config from the first ``M:`` header of *document*.

        ``M:C`` means 4/4 and ``M:C|`` means 2/2. Documents without a
        usable meter fall back to 4/4.
        """
        beats, unit = 4, 4
        match = _METER_RE.search(document)
        if match:
            if match.group(3):
                beats, unit = (2, 2) if match.group(3) == "C|" else (4, 4)
            else:
                beats = max(1, int(match.group(1)))
                unit = max(1, int(match.group(2)))
        try:
            return cls(
                ticks_per_whole=ticks_per_whole,
                beats_per_bar=beats,
                beat_unit=unit,
                steps_per_beat=steps_per_beat,
            )
        except ValueError:
            return cls(ticks_per_whole=ticks_per_whole, steps_per_beat=steps_per_beat)
