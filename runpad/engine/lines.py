"""Runpad - Line Correlation

Maps a call or an exception back to the line of the submitted script that
produced it. Scripts are compiled under a fixed synthetic filename, so any
frame whose code object carries that filename belongs to user code.

Two mechanisms are offered:
- structured: walks live frames / traceback.FrameSummary objects and
  returns a SourcePosition (line + column). Used by the engine.
- textual: resolve_line() parses a formatted traceback. Kept for callers
  that only have the rendered trace text.
"""

import itertools
import re
import sys
import traceback
from typing import Iterable, Optional

from runpad.models import SourcePosition

SCRIPT_FILENAME = "<runpad-script>"

_FRAME_LINE_PATTERN = re.compile(re.escape(f'File "{SCRIPT_FILENAME}", line ') + r'(\d+)')


def resolve_line(stack_trace: str) -> Optional[int]:
    """Extract the script line from a formatted traceback.

    Python prints the innermost frame last, so frames are scanned from the
    bottom up and the first one referencing the script wins.
    """
    if not stack_trace:
        return None
    for frame_text in reversed(stack_trace.splitlines()):
        if SCRIPT_FILENAME not in frame_text:
            continue
        match = _FRAME_LINE_PATTERN.search(frame_text)
        if match:
            return int(match.group(1))
    return None


def _column(colno: Optional[int]) -> Optional[int]:
    return colno + 1 if colno is not None else None


def locate(frames: Iterable[traceback.FrameSummary]) -> Optional[SourcePosition]:
    """Innermost script frame of an extracted stack, as a SourcePosition"""
    for frame in reversed(list(frames)):
        if frame.filename == SCRIPT_FILENAME and frame.lineno:
            return SourcePosition(frame.lineno, _column(getattr(frame, 'colno', None)))
    return None


def _frame_position(frame) -> SourcePosition:
    column = None
    try:
        positions = frame.f_code.co_positions()
        _, _, col, _ = next(itertools.islice(positions, frame.f_lasti // 2, None))
        column = _column(col)
    except (AttributeError, StopIteration, ValueError):
        pass
    return SourcePosition(frame.f_lineno, column)


def current_position() -> Optional[SourcePosition]:
    """Position of the innermost script frame on the live call stack"""
    frame = sys._getframe(1)
    while frame is not None:
        if frame.f_code.co_filename == SCRIPT_FILENAME:
            return _frame_position(frame)
        frame = frame.f_back
    return None


def error_position(exc: BaseException) -> Optional[SourcePosition]:
    """Position of the script line that raised (or failed to compile)"""
    if isinstance(exc, SyntaxError) and exc.filename == SCRIPT_FILENAME and exc.lineno:
        return SourcePosition(exc.lineno, exc.offset)
    if exc.__traceback__ is not None:
        position = locate(traceback.extract_tb(exc.__traceback__))
        if position is not None:
            return position
    # Errors re-raised from a timer callback keep the original as __cause__
    if exc.__cause__ is not None and exc.__cause__ is not exc:
        return error_position(exc.__cause__)
    return None


def last_statement_line(source: str) -> Optional[int]:
    """1-based index of the last non-blank line of the source.

    A textual approximation of "the line of the last statement", used to
    place the returned value next to the code.
    """
    lines = source.split('\n')
    index = len(lines) - 1
    while index >= 0 and not lines[index].strip():
        index -= 1
    return index + 1 if index >= 0 else None
