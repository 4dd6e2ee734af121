"""abcgrid: step-sequencer style grid editing of ABC notation bars."""

__version__ = "0.3.0"
