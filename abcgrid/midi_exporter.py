"""BarMidiExporter: renders an edited bar to a 2-track MIDI preview."""

from __future__ import annotations

import logging
from typing import Sequence

from midiutil import MIDIFile

from abcgrid.config import GridConfig
from abcgrid.grid import onsets
from abcgrid.models import PercMap, Token
from abcgrid.transposer import note_to_midi

logger = logging.getLogger(__name__)

# In midiutil Format 1 MIDI, track 0 is the conductor/tempo track.
TRACK_CONDUCTOR = 0  # Tempo/time signature only, never receives notes
TRACK_NOTES = 1

# General MIDI channel 10 (index 9) is the percussion channel.
CHANNEL_MELODIC = 0
CHANNEL_DRUMS = 9

# midiutil writes the time-signature denominator as a power of two.
_DENOMINATOR_POWERS = {1: 0, 2: 1, 4: 2, 8: 3, 16: 4, 32: 5}


class BarMidiExporter:
    """
    Writes one bar (optionally repeated) as a Standard MIDI File.

    Track layout (Format 1, 2 internal tracks)
    ------------------------------------------
    Track 0: conductor track (tempo and time signature, no notes)

    Track 1: "Bar"
        Every pitch of every timed token. Characters mapped by a
        ``%%percmap`` directive play their mapped drum on channel 10;
        anything else plays as a pitched note on channel 1.

    Timing
    ------
    Token onsets and durations are grid ticks, converted to beats using:
    beats = ticks / ticks_per_beat.
    """

    DEFAULT_TEMPO = 100     # BPM
    DEFAULT_VELOCITY = 90   # MIDI velocity for plain notes (0-127)
    ACCENT_VELOCITY = 115   # "!>!" accents
    GHOST_VELOCITY = 45     # "!g!" ghost notes

    def __init__(self, tempo: int = DEFAULT_TEMPO, velocity: int = DEFAULT_VELOCITY, repeats: int = 1) -> None:
        """
        Args:
            tempo:    Playback tempo in beats per minute.
            velocity: Note-on velocity for undecorated notes.
            repeats:  How many times the bar is played back to back.
        """
        if repeats < 1:
            raise ValueError(f"repeats must be at least 1, got {repeats}.")
        self.tempo = tempo
        self.velocity = velocity
        self.repeats = repeats

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _ticks_to_beats(self, ticks: float, config: GridConfig) -> float:
        return ticks / config.ticks_per_beat

    def _velocity(self, token: Token) -> int:
        if "!>!" in token.decorations:
            return self.ACCENT_VELOCITY
        if "!g!" in token.decorations:
            return self.GHOST_VELOCITY
        return self.velocity

    @staticmethod
    def _resolve(note: str, drum_map: dict[str, int]) -> tuple[int, int] | None:
        """``(channel, pitch)`` for one note string, or ``None`` if unplayable."""
        if note in drum_map:
            return CHANNEL_DRUMS, drum_map[note]
        pitch = note_to_midi(note)
        if pitch is None or not 0 <= pitch <= 127:
            return None
        return CHANNEL_MELODIC, pitch

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build(self, tokens: Sequence[Token], percmaps: Sequence[PercMap], config: GridConfig) -> MIDIFile:
        midi = MIDIFile(numTracks=2, removeDuplicates=False, deinterleave=False)

        midi.addTempo(TRACK_CONDUCTOR, 0, self.tempo)
        denominator = _DENOMINATOR_POWERS.get(config.beat_unit, 2)
        midi.addTimeSignature(TRACK_CONDUCTOR, 0, config.beats_per_bar, denominator, 24)
        midi.addTrackName(TRACK_NOTES, 0, "Bar")

        drum_map = {m.char: m.midi for m in percmaps}
        bar_beats = self._ticks_to_beats(config.ticks_per_bar, config)

        for repeat in range(self.repeats):
            offset = repeat * bar_beats
            for tick, token in onsets(tokens):
                if tick >= config.ticks_per_bar:
                    break
                for note in token.notes:
                    resolved = self._resolve(note, drum_map)
                    if resolved is None:
                        logger.debug("Skipping unplayable note %r", note)
                        continue
                    channel, pitch = resolved
                    midi.addNote(
                        track=TRACK_NOTES,
                        channel=channel,
                        pitch=pitch,
                        time=offset + self._ticks_to_beats(tick, config),
                        duration=self._ticks_to_beats(float(token.duration), config),
                        volume=self._velocity(token),
                    )
        return midi

    def export(
        self,
        tokens: Sequence[Token],
        percmaps: Sequence[PercMap],
        config: GridConfig,
        output_path: str,
    ) -> None:
        """
        Render *tokens* to a Standard MIDI File.

        Raises:
            OSError: If the output file cannot be opened for writing.
        """
        midi = self.build(tokens, percmaps, config)
        with open(output_path, "wb") as f:
            midi.writeFile(f)
