"""Runpad - Data Models

Value objects shared by the execution engine and the session transport:
- OutputEvent (one captured console call)
- ExecutionResult (terminal outcome of one run)
- SourcePosition (line/column inside the submitted script)

Events and results are frozen. An event is encoded for the wire at the
moment it is emitted, so nothing the run does afterwards can change what
subscribers already received.
"""

import enum
import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from runpad.config import settings


class OutputKind(str, enum.Enum):
    LOG = "log"
    WARN = "warn"
    ERROR = "error"
    INFO = "info"


@dataclass(frozen=True)
class SourcePosition:
    """1-based line and column inside the submitted script"""
    line: int
    column: Optional[int] = None


def now_ms() -> int:
    return int(time.time() * 1000)


def serialize_value(value: Any) -> Any:
    """Return a JSON-safe representation of a script value.

    JSON-native values pass through unchanged; anything else is
    rendered with str() and truncated to MAX_OUTPUT_SIZE.
    """
    if value is None:
        return None
    try:
        json.dumps(value, allow_nan=False)
        return value
    except (TypeError, ValueError, RecursionError):
        try:
            text = str(value)
        except Exception as e:
            text = f"<unprintable {type(value).__name__}: {e}>"
        return text[:settings.MAX_OUTPUT_SIZE]


@dataclass(frozen=True)
class OutputEvent:
    kind: OutputKind
    args: Tuple[Any, ...]
    line: Optional[int] = None
    column: Optional[int] = None
    timestamp: int = field(default_factory=now_ms)

    def to_wire(self, run_id: Optional[str] = None) -> Dict[str, Any]:
        """consoleOutput payload pushed to subscribers"""
        payload = {
            'method': self.kind.value,
            'data': [serialize_value(arg) for arg in self.args],
            'timestamp': self.timestamp,
            'run_id': run_id,
        }
        if self.line is not None:
            payload['line'] = self.line
        if self.column is not None:
            payload['column'] = self.column
        return payload


@dataclass(frozen=True)
class ExecutionResult:
    """Terminal outcome of one run. Produced exactly once per request."""
    success: bool
    return_value: Any = None
    has_value: bool = False
    error_message: Optional[str] = None
    error_type: Optional[str] = None
    error_traceback: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    execution_time_ms: int = 0
    run_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'result': serialize_value(self.return_value) if self.has_value else None,
            'has_value': self.has_value,
            'error_message': self.error_message,
            'error_type': self.error_type,
            'error_traceback': self.error_traceback,
            'line': self.line,
            'column': self.column,
            'execution_time_ms': self.execution_time_ms,
            'run_id': self.run_id,
        }
