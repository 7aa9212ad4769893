"""Runpad - Console Interceptor

The ``console`` object injected into every script. Each call is turned into
an OutputEvent, tagged with the script line that made the call, and handed
to the run's emit capability synchronously, before control returns to the
script.

The position is captured at call time, not when output is flushed: timer
callbacks can run long after later lines of the script executed, and the
event must still point at the line that actually logged.
"""

import logging
from typing import Any, Callable, Optional

from runpad.engine.lines import current_position
from runpad.models import OutputEvent, OutputKind

logger = logging.getLogger(__name__)

Emitter = Callable[[OutputEvent], None]


class ConsoleInterceptor:
    """Replacement for the ambient logging facility inside the sandbox"""

    def __init__(self, emit: Emitter):
        self._emit = emit

    def _capture(self, kind: OutputKind, args: tuple) -> None:
        line: Optional[int] = None
        column: Optional[int] = None
        try:
            position = current_position()
            if position is not None:
                line, column = position.line, position.column
        except Exception as e:
            logger.debug(f"Could not resolve console call position: {e}")

        event = OutputEvent(kind=kind, args=tuple(args), line=line, column=column)
        try:
            self._emit(event)
        except Exception as e:
            # Output is fire-and-forget for the script
            logger.error(f"Console event dispatch failed: {e}", exc_info=True)

    def log(self, *args: Any) -> None:
        self._capture(OutputKind.LOG, args)

    def info(self, *args: Any) -> None:
        self._capture(OutputKind.INFO, args)

    def warn(self, *args: Any) -> None:
        self._capture(OutputKind.WARN, args)

    def error(self, *args: Any) -> None:
        self._capture(OutputKind.ERROR, args)

    def make_print(self):
        """A print() that routes its positional arguments to console.log"""
        console = self

        def _print(*args, sep=' ', end='\n', file=None, flush=False):
            console._capture(OutputKind.LOG, args)

        return _print

    def __repr__(self):
        return "<console>"
