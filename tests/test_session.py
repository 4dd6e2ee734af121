"""Unit tests for DrumGridSession against an in-memory host document."""

import pytest

from abcgrid.broker import ActivityBroker, Role
from abcgrid.instruments import GroupedInstrument, SingleInstrument
from abcgrid.models import EditMode, NoteState
from abcgrid.session import DrumGridSession

HIHAT_DOC = "X:1\nL:1/4\nK:perc\n%%percmap g 42\n%%percmap ^g 46\n|g g g og|\n"
OPEN_DOC = "X:1\nL:1/4\nK:perc\n%%percmap g 42\nz z z z\n"
KIT_HEADER = "X:1\nL:1/4\nK:perc\n%%percmap g 42\n"


class _Host:
    """Records every replace_range call and applies it to its own text."""

    def __init__(self, document: str) -> None:
        self.document = document
        self.calls: list[tuple[int, int, str]] = []

    def replace_range(self, start: int, end: int, text: str) -> None:
        self.calls.append((start, end, text))
        self.document = self.document[:start] + text + self.document[end:]


def _session(document: str, cursor: int, **kwargs) -> tuple[DrumGridSession, _Host]:
    host = _Host(document)
    session = DrumGridSession(replace_range=host.replace_range, **kwargs)
    session.update(document, cursor)
    return session, host


def test_update_reports_bar_changes() -> None:
    session, _ = _session(HIHAT_DOC, HIHAT_DOC.index("og"))
    assert session.context is not None
    assert session.context.text == "g g g og"
    assert session.update(HIHAT_DOC, HIHAT_DOC.index("og")) is False
    assert session.update(HIHAT_DOC, 0) is True
    assert session.context is None


def test_rows_group_the_hihat() -> None:
    session, _ = _session(HIHAT_DOC, HIHAT_DOC.index("og"))
    (row,) = session.rows
    assert isinstance(row, GroupedInstrument)
    assert (row.base_char, row.alt_char) == ("g", "^g")


def test_state_grid_reads_open_hihat() -> None:
    session, _ = _session(HIHAT_DOC, HIHAT_DOC.index("og"))
    grid = session.state_grid(session.rows[0])
    assert grid[0] is NoteState.BASE
    assert grid[72] is NoteState.ALT


def test_set_active_alt_dispatches_one_replacement() -> None:
    session, host = _session(HIHAT_DOC, HIHAT_DOC.index("og"))
    start = HIHAT_DOC.index("g g")
    end = HIHAT_DOC.index("og") + 2

    result = session.set_state(72, session.rows[0], NoteState.ALT)

    assert result is not None
    assert result.mode is EditMode.IN_PLACE
    assert host.calls == [(start, end, "g g g z")]
    assert host.document == "X:1\nL:1/4\nK:perc\n%%percmap g 42\n%%percmap ^g 46\n|g g g z|\n"
    assert session.document == host.document


def test_unterminated_bar_gets_a_closing_delimiter() -> None:
    session, host = _session(OPEN_DOC, OPEN_DOC.index("z"))
    start = OPEN_DOC.index("z")

    session.toggle(0, "g")

    assert host.calls == [(start, start + 7, "g z z z |")]
    assert session.context is not None
    assert session.context.text == "g z z z"


def test_back_to_back_edits_land_without_a_host_update() -> None:
    session, host = _session(OPEN_DOC, OPEN_DOC.index("z"))
    start = OPEN_DOC.index("z")

    session.toggle(0, "g")
    session.toggle(24, "g")

    assert host.calls[1] == (start, start + 7, "g g z z")
    assert host.document.endswith("\ng g z z |\n")
    assert session.document == host.document


def test_surrounding_whitespace_is_kept() -> None:
    document = "X:1\nL:1/4\nK:perc\n%%percmap g 42\n| g z z z |\n"
    session, host = _session(document, document.index("g z"))
    session.toggle(24, "g")
    assert host.calls[0][2] == " g g z z "
    assert host.document.endswith("| g g z z |\n")


def test_empty_bar_falls_back_to_previous_bar_instruments() -> None:
    document = "X:1\nK:perc\n%%percmap c 38\n|c c c c|z z z z|\n"
    session, _ = _session(document, document.index("z"))
    assert session.rows == [SingleInstrument(char="c", midi=38, label="Snare")]


def test_empty_bar_after_double_colon_uses_previous_bar_instruments() -> None:
    document = "X:1\nK:perc\n%%percmap c 38\nc c c c::z z z z|\n"
    session, _ = _session(document, document.index("z"))
    assert session.rows == [SingleInstrument(char="c", midi=38, label="Snare")]


@pytest.mark.parametrize(
    "line, marker, shift, edited",
    [
        ("|: z z z z :|", "|:", 1, "|: g z z z :|"),
        ("|: z z z z :|", "|:", 2, "|: g z z z :|"),
        ("|: z z z z :|", ":|", 0, "|: g z z z :|"),
        ("|: z z z z :|", ":|", 1, "|: g z z z :|"),
        ("z z z z::z z z z|", "::", 0, "g z z z::z z z z|"),
        ("z z z z::z z z z|", "::", 1, "z z z z::g z z z|"),
        ("|: z z z z :|: z z z z :|", ":|:", 2, "|: z z z z :|: g z z z :|"),
        ("z z z z|]", "|]", 0, "g z z z|]"),
        ("z z z z|]", "|]", 1, "g z z z|]"),
    ],
)
def test_toggle_next_to_a_bar_line_keeps_its_marks(line: str, marker: str, shift: int, edited: str) -> None:
    document = f"{KIT_HEADER}{line}\n"
    session, host = _session(document, document.index(marker) + shift)

    session.toggle(0, "g")

    assert len(host.calls) == 1
    assert host.document == f"{KIT_HEADER}{edited}\n"


def test_locked_mode_shows_every_instrument_in_the_tune() -> None:
    document = "X:1\nL:1/4\nK:perc\n%%percmap g 42\n%%percmap F 35\n|g g g g|F z F z|\n"
    session, _ = _session(document, document.index("|g") + 1)
    assert [r.label for r in session.rows] == ["Closed Hi-Hat"]
    session.set_locked(True)
    assert sorted(r.label for r in session.rows) == ["Closed Hi-Hat", "Kick"]


def test_pinned_instrument_is_shown() -> None:
    document = "X:1\nL:1/4\nK:perc\n%%percmap g 42\n%%percmap F 35\n|g g g g|\n"
    session, _ = _session(document, document.index("g g"))
    session.pin(35)
    assert "Kick" in [r.label for r in session.rows]
    session.unpin(35)
    assert "Kick" not in [r.label for r in session.rows]


def test_edits_without_a_bar_do_nothing() -> None:
    session, host = _session(HIHAT_DOC, 0)
    assert session.toggle(0, "g") is None
    assert host.calls == []


def test_focus_moves_the_editor_role() -> None:
    broker = ActivityBroker()
    first, _ = _session(HIHAT_DOC, HIHAT_DOC.index("og"), broker=broker, instance_id="first")
    second, _ = _session(HIHAT_DOC, HIHAT_DOC.index("og"), broker=broker, instance_id="second")
    assert not first.active

    first.focus()
    assert first.active
    second.focus()
    assert not first.active
    assert broker.holder(Role.EDITOR) == "second"

    second.blur()
    assert broker.holder(Role.EDITOR) is None
