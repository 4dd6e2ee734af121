"""abcgrid CLI entry point."""

import logging
import sys
from pathlib import Path

import click

from abcgrid import __version__
from abcgrid.config import DEFAULT_STEPS_PER_BEAT, DEFAULT_TICKS_PER_WHOLE, GridConfig
from abcgrid.grid import bar_fill
from abcgrid.instruments import DRUM_DEFS, GroupedInstrument
from abcgrid.lines import LineKind, classify_line, key_at
from abcgrid.midi_exporter import BarMidiExporter
from abcgrid.models import BeatMode, EditMode, NoteState
from abcgrid.session import DrumGridSession
from abcgrid.transposer import diatonic_triad, set_selection_to_degree, transpose_abc

STATE_CHOICES = ["base", "alt", "decoration", "flam", "off"]
EMPTY_CELL = "."
FLAM_CELL = "F"


def _read(path: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        click.echo(f"  ERROR: Could not read '{path}': {exc}", err=True)
        sys.exit(1)


def _write(path: str, text: str) -> None:
    try:
        Path(path).write_text(text, encoding="utf-8")
    except OSError as exc:
        click.echo(f"  ERROR: Could not write '{path}': {exc}", err=True)
        sys.exit(1)


def _open_session(ctx: click.Context, path: str, cursor: int) -> DrumGridSession:
    """Load *path* into a session whose host is the in-memory document."""
    resolution, steps = ctx.obj["resolution"], ctx.obj["steps_per_beat"]
    document = _read(path)
    try:
        config = GridConfig.from_document(document, ticks_per_whole=resolution, steps_per_beat=steps)
    except ValueError as exc:
        click.echo(f"  ERROR: {exc}", err=True)
        sys.exit(1)

    session = DrumGridSession(replace_range=lambda start, end, text: None, config=config)
    session.update(document, cursor)
    if session.context is None:
        click.echo(f"  ERROR: No bar of music at offset {cursor} (header, comment or lyric line).", err=True)
        sys.exit(1)
    return session


def _emit(session: DrumGridSession, path: str, write: bool) -> None:
    if write:
        _write(path, session.document)
        click.echo(f"Wrote '{path}'.")
    else:
        click.echo(session.document, nl=False)


def _visible_ticks(session: DrumGridSession) -> list[int]:
    """Ticks shown as grid cells: straight steps, or triplet slots per beat."""
    config = session.config
    ticks: list[int] = []
    for beat, mode in enumerate(session.beat_modes):
        step = config.triplet_step_ticks if mode is BeatMode.TRIPLET else config.step_ticks
        start = beat * config.ticks_per_beat
        ticks.extend(range(start, start + config.ticks_per_beat, step))
    return ticks


def _state_cell(state: NoteState | None, row: GroupedInstrument, tick: int, session: DrumGridSession) -> str:
    definition = row.definition
    if state is None:
        return EMPTY_CELL
    if state is NoteState.BASE:
        return definition.base_icon
    if state is NoteState.ALT:
        return definition.alts[0].icon if definition.alts else definition.base_icon
    if state is NoteState.DECORATION:
        decoration = session.decoration_at(tick, row)
        return decoration.icon if decoration else "?"
    return FLAM_CELL


# ── CLI group ──────────────────────────────────────────────────────────────────

@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name="abcgrid")
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr.")
@click.option(
    "--resolution",
    type=click.IntRange(min=1),
    default=DEFAULT_TICKS_PER_WHOLE,
    show_default=True,
    help="Grid ticks per whole note.",
)
@click.option(
    "--steps-per-beat",
    type=click.IntRange(min=1),
    default=DEFAULT_STEPS_PER_BEAT,
    show_default=True,
    help="Straight step-sequencer cells per beat.",
)
@click.pass_context
def main(ctx: click.Context, verbose: bool, resolution: int, steps_per_beat: int) -> None:
    """abcgrid: step-sequencer editing for bars of ABC notation."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["resolution"] = resolution
    ctx.obj["steps_per_beat"] = steps_per_beat


def _document_options(func):
    func = click.option(
        "--cursor", "-c", type=click.IntRange(min=0), required=True, help="Character offset inside the bar."
    )(func)
    func = click.argument("abc_file", type=click.Path(exists=True, dir_okay=False))(func)
    return func


# ── bar subcommand ─────────────────────────────────────────────────────────────

@main.command()
@_document_options
@click.pass_context
def bar(ctx: click.Context, abc_file: str, cursor: int) -> None:
    """
    Show the bar around CURSOR and how much of the meter it fills.

    \b
    Examples:
      abcgrid bar tune.abc --cursor 120
    """
    session = _open_session(ctx, abc_file, cursor)
    context = session.context
    fill = bar_fill(session.tokens, session.config)

    click.echo(f"  Range  : {context.start}..{context.end}")
    click.echo(f"  Text   : {context.text!r}")
    click.echo(f"  Fill   : {fill.total}/{fill.capacity} ticks")
    beats = "  ".join(f"{float(t):g}" for t in fill.per_beat)
    click.echo(f"  Beats  : {beats}")
    if fill.overflow:
        click.echo(f"  WARNING: bar is {fill.overflow} ticks too long.", err=True)


# ── grid subcommand ────────────────────────────────────────────────────────────

@main.command()
@_document_options
@click.option("--locked", is_flag=True, help="Show every instrument used anywhere in the tune.")
@click.pass_context
def grid(ctx: click.Context, abc_file: str, cursor: int, locked: bool) -> None:
    """
    Print the drum grid of the bar around CURSOR.

    Rows come from the %%percmap directives of the instruments in the bar.
    """
    session = _open_session(ctx, abc_file, cursor)
    if locked:
        session.set_locked(True)

    ticks = _visible_ticks(session)
    if not session.rows:
        click.echo("  No mapped drums in this bar.")
        return

    flat = session.flat_grid()
    for row in session.rows:
        if isinstance(row, GroupedInstrument):
            states = session.state_grid(row)
            cells = [_state_cell(states[t], row, t, session) for t in ticks]
        else:
            cells = ["x" if row.char in flat[t] else EMPTY_CELL for t in ticks]
        click.echo(f"  {row.label:<14} {' '.join(cells)}")


# ── toggle subcommand ──────────────────────────────────────────────────────────

@main.command()
@_document_options
@click.option("--tick", "-t", type=click.IntRange(min=0), required=True, help="Grid tick to edit.")
@click.option("--note", "-n", required=True, help="ABC pitch to toggle, e.g. 'F' or '^g'.")
@click.option("--write", "-w", is_flag=True, help="Rewrite ABC_FILE instead of printing.")
@click.pass_context
def toggle(ctx: click.Context, abc_file: str, cursor: int, tick: int, note: str, write: bool) -> None:
    """Add NOTE at TICK in the bar around CURSOR, or remove it if present."""
    session = _open_session(ctx, abc_file, cursor)
    try:
        result = session.toggle(tick, note)
    except ValueError as exc:
        click.echo(f"  ERROR: {exc}", err=True)
        sys.exit(1)

    if result is not None and result.mode is EditMode.REJECTED:
        click.echo("  ERROR: Cannot append into a triplet beat.", err=True)
        sys.exit(1)
    _emit(session, abc_file, write)


# ── state subcommand ───────────────────────────────────────────────────────────

@main.command()
@_document_options
@click.option("--tick", "-t", type=click.IntRange(min=0), required=True, help="Grid tick to edit.")
@click.option(
    "--group",
    "-g",
    type=click.Choice([d.id for d in DRUM_DEFS]),
    required=True,
    help="Drum group to edit.",
)
@click.option("--state", "-s", "state_name", type=click.Choice(STATE_CHOICES), required=True)
@click.option("--decoration", "-d", default=None, metavar="LABEL", help="Decoration label, e.g. Ghost.")
@click.option("--write", "-w", is_flag=True, help="Rewrite ABC_FILE instead of printing.")
@click.pass_context
def state(
    ctx: click.Context,
    abc_file: str,
    cursor: int,
    tick: int,
    group: str,
    state_name: str,
    decoration: str | None,
    write: bool,
) -> None:
    """
    Set a drum group's state at TICK; setting the active state clears it.

    \b
    Examples:
      abcgrid state tune.abc -c 40 -t 18 -g hihat -s alt
      abcgrid state tune.abc -c 40 -t 24 -g snare -s decoration -d Ghost -w
    """
    session = _open_session(ctx, abc_file, cursor)
    row = next(
        (r for r in session.rows if isinstance(r, GroupedInstrument) and r.definition.id == group),
        None,
    )
    if row is None:
        session.pin(next(d.base_midi for d in DRUM_DEFS if d.id == group))
        row = next(
            (r for r in session.rows if isinstance(r, GroupedInstrument) and r.definition.id == group),
            None,
        )
    if row is None:
        click.echo(f"  ERROR: The document has no %%percmap lines for '{group}'.", err=True)
        sys.exit(1)

    chosen = None
    if decoration is not None:
        chosen = next((d for d in row.definition.decorations if d.label.lower() == decoration.lower()), None)
        if chosen is None:
            labels = ", ".join(d.label for d in row.definition.decorations) or "none"
            click.echo(f"  ERROR: Unknown decoration '{decoration}' (available: {labels}).", err=True)
            sys.exit(1)

    target = None if state_name == "off" else NoteState(state_name)
    try:
        result = session.set_state(tick, row, target, chosen)
    except ValueError as exc:
        click.echo(f"  ERROR: {exc}", err=True)
        sys.exit(1)

    if result is not None and result.mode is EditMode.REJECTED:
        click.echo("  ERROR: Cannot append into a triplet beat.", err=True)
        sys.exit(1)
    _emit(session, abc_file, write)


# ── text helpers ───────────────────────────────────────────────────────────────

@main.command()
@click.argument("text")
@click.option("--degree", "-d", type=click.IntRange(1, 7), required=True, help="Scale degree (1-7).")
@click.option("--key", "-k", default="C", show_default=True, help="Key signature, e.g. G or Bb minor.")
def degree(text: str, degree: int, key: str) -> None:
    """Move every note of TEXT to a scale degree of KEY."""
    click.echo(set_selection_to_degree(text, degree, key))


@main.command()
@click.argument("abc_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--semitones", "-s", type=int, required=True, help="Semitones to shift (negative = down).")
@click.option("--write", "-w", is_flag=True, help="Rewrite ABC_FILE instead of printing.")
def transpose(abc_file: str, semitones: int, write: bool) -> None:
    """Transpose the music lines of ABC_FILE; headers and comments are kept."""
    document = _read(abc_file)
    lines = [
        transpose_abc(line, semitones) if classify_line(line) is LineKind.MUSIC else line
        for line in document.split("\n")
    ]
    result = "\n".join(lines)
    if write:
        _write(abc_file, result)
        click.echo(f"Wrote '{abc_file}'.")
    else:
        click.echo(result, nl=False)


@main.command()
@click.option("--key", "-k", default=None, help="Key signature. Defaults to the key at --cursor.")
@click.option("--file", "abc_file", type=click.Path(exists=True, dir_okay=False), default=None)
@click.option("--cursor", "-c", type=click.IntRange(min=0), default=0, show_default=True)
def chords(key: str | None, abc_file: str | None, cursor: int) -> None:
    """List the seven diatonic triads of a key as ABC chords."""
    if key is None:
        key = key_at(_read(abc_file), cursor) if abc_file else "C"
    click.echo(f"  Key    : {key}")
    for step in range(1, 8):
        triad = diatonic_triad(key, step)
        click.echo(f"  {triad.roman:<4} {triad.label:<5} {triad.text}")


# ── midi subcommand ────────────────────────────────────────────────────────────

@main.command()
@_document_options
@click.option("--output", "-o", default=None, metavar="PATH", help="Defaults to <abc-file>.mid.")
@click.option("--tempo", type=click.IntRange(20, 300), default=100, show_default=True, help="BPM.")
@click.option("--repeats", type=click.IntRange(1, 64), default=4, show_default=True)
@click.pass_context
def midi(ctx: click.Context, abc_file: str, cursor: int, output: str | None, tempo: int, repeats: int) -> None:
    """Export the bar around CURSOR as a looping MIDI preview."""
    session = _open_session(ctx, abc_file, cursor)
    resolved_output = output if output is not None else str(Path(abc_file).with_suffix(".mid"))

    exporter = BarMidiExporter(tempo=tempo, repeats=repeats)
    try:
        exporter.export(session.tokens, session.percmaps, session.config, resolved_output)
    except OSError as exc:
        click.echo(f"  ERROR: Could not write MIDI file: {exc}", err=True)
        sys.exit(1)
    click.echo(f"Done!  Wrote '{resolved_output}'.")

