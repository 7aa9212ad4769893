"""Line correlation tests."""

import traceback

from runpad.engine.lines import (
    SCRIPT_FILENAME,
    error_position,
    last_statement_line,
    locate,
    resolve_line,
)
from runpad.models import SourcePosition

SAMPLE_TRACE = f'''Traceback (most recent call last):
  File "/srv/runpad/engine/executor.py", line 161, in _drive
    outcome = eval(code, sandbox_globals)
  File "{SCRIPT_FILENAME}", line 7, in <module>
  File "{SCRIPT_FILENAME}", line 3, in helper
  File "/site-packages/lib/core.py", line 12, in parse
    raise ValueError("bad")
ValueError: bad
'''


def test_resolve_line_picks_innermost_script_frame():
    assert resolve_line(SAMPLE_TRACE) == 3


def test_resolve_line_without_script_frames():
    trace = 'Traceback (most recent call last):\n  File "/x.py", line 1, in <module>\nKeyError: 1\n'
    assert resolve_line(trace) is None
    assert resolve_line("") is None


def test_last_statement_line_skips_trailing_blank_lines():
    assert last_statement_line("a = 1\nb = 2\n\n   \n") == 2
    assert last_statement_line("1 + 1") == 1


def test_last_statement_line_blank_source():
    assert last_statement_line("") is None
    assert last_statement_line("\n  \n") is None


def test_error_position_for_syntax_error():
    try:
        compile("x = 1\ny = (\n", SCRIPT_FILENAME, "exec")
    except SyntaxError as e:
        position = error_position(e)
    assert position is not None
    assert position.line == 2


def test_error_position_from_traceback():
    code = compile("a = 1\nb = a / 0\n", SCRIPT_FILENAME, "exec")
    try:
        exec(code, {})
    except ZeroDivisionError as e:
        position = error_position(e)
    assert position.line == 2
    assert position.column == 5


def test_error_position_ignores_host_only_errors():
    try:
        {}["missing"]
    except KeyError as e:
        assert error_position(e) is None


def test_locate_over_frame_summaries():
    frames = [
        traceback.FrameSummary("/host.py", 10, "run", lookup_line=False),
        traceback.FrameSummary(SCRIPT_FILENAME, 4, "<module>", lookup_line=False),
        traceback.FrameSummary("/lib.py", 2, "inner", lookup_line=False),
    ]
    assert locate(frames) == SourcePosition(4, None)
    assert locate(frames[:1]) is None
