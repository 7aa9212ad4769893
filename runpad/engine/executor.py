"""Runpad - Sandboxed Script Executor

Runs a submitted Python script in a fresh, isolated globals dict with an
explicit capability set and nothing else:
- safe builtins (blocked: eval/exec/compile/open/input/...)
- a module loader pinned to the dependency store (plus allowed stdlib)
- console (log/info/warn/error) and print routed to console.log
- timers (setTimeout/setInterval/clearTimeout/clearInterval, sleep)
- read-only process metadata

Design: the script runs on the caller's event loop as a task. Top-level
``await`` is allowed. The run settles when the script body has finished AND
every timer / callback coroutine it scheduled has completed. If the last
statement is an expression, its value becomes the run's return value.

The source is compiled under a synthetic filename so that frames belonging
to user code can be told apart from host frames (see lines.py).

In-process isolation is a convenience boundary, not a security boundary.
"""

import ast
import asyncio
import builtins as builtins_module
import inspect
import logging
import os
import platform
import sys
import time
import traceback
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple

from runpad import __version__
from runpad.config import settings
from runpad.engine.console import ConsoleInterceptor
from runpad.engine.errors import script_failure
from runpad.engine.lines import SCRIPT_FILENAME, error_position
from runpad.engine.loader import ScopedImporter
from runpad.engine.package_manager import DependencyStore
from runpad.engine.policy import guarded_delattr, guarded_getattr, guarded_setattr, validate_tree
from runpad.engine.timers import TimerRegistry
from runpad.models import ExecutionResult, OutputEvent

logger = logging.getLogger(__name__)

RESULT_NAME = "__runpad_result__"


@dataclass(frozen=True)
class ProcessInfo:
    """Read-only host metadata exposed to scripts as ``process``"""
    pid: int
    platform: str
    arch: str
    version: str
    implementation: str
    versions: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def current(cls) -> "ProcessInfo":
        return cls(
            pid=os.getpid(),
            platform=sys.platform,
            arch=platform.machine(),
            version=platform.python_version(),
            implementation=platform.python_implementation(),
            versions=MappingProxyType({
                'python': platform.python_version(),
                'runpad': __version__,
            }),
        )


class RunHandle(Protocol):
    """What the executor needs from the caller for one run"""

    run_id: Optional[str]

    def emit(self, event: OutputEvent) -> None: ...

    def attach(self, task: asyncio.Task, timers: TimerRegistry) -> None: ...

    @property
    def cancelled(self) -> bool: ...


class SandboxExecutor:
    """Executes Python scripts in a sandboxed context, one fresh context per run"""

    def __init__(self, store: DependencyStore = None, timeout: int = None):
        self.store = store or DependencyStore()
        self.timeout = timeout or settings.MAX_EXECUTION_TIME
        self.process_info = ProcessInfo.current()
        logger.info(f"SandboxExecutor initialized: store={self.store.root}")

    # ================================================================
    # Context construction
    # ================================================================

    def _get_safe_builtins(self) -> Dict[str, Any]:
        """Public builtins minus the blocked set"""
        blocked = set(settings.BLOCKED_BUILTINS)
        safe = {}
        for name in dir(builtins_module):
            if name.startswith('_') or name in blocked:
                continue
            safe[name] = getattr(builtins_module, name)
        safe['__build_class__'] = builtins_module.__build_class__
        safe['getattr'] = guarded_getattr
        safe['setattr'] = guarded_setattr
        safe['delattr'] = guarded_delattr
        return safe

    def _build_globals(self, console: ConsoleInterceptor, timers: TimerRegistry) -> Dict[str, Any]:
        safe_builtins = self._get_safe_builtins()
        safe_builtins['__import__'] = ScopedImporter(self.store.site_dir, settings.ALLOWED_MODULES)
        safe_builtins['print'] = console.make_print()

        return {
            '__builtins__': safe_builtins,
            '__name__': '__main__',
            'console': console,
            'setTimeout': timers.set_timeout,
            'setInterval': timers.set_interval,
            'clearTimeout': timers.clear_timeout,
            'clearInterval': timers.clear_interval,
            'sleep': timers.sleep,
            'process': self.process_info,
        }

    @staticmethod
    def compile_source(source: str) -> Tuple[Any, bool]:
        """Compile the script; returns (code object, has final expression).

        A trailing expression statement is rewritten into an assignment to
        RESULT_NAME so its value survives exec(). Raises SandboxViolation, a
        SyntaxError, for constructs the access policy rejects.
        """
        tree = ast.parse(source, filename=SCRIPT_FILENAME, mode='exec')
        validate_tree(tree, source)
        has_value = bool(tree.body) and isinstance(tree.body[-1], ast.Expr)
        if has_value:
            last = tree.body[-1]
            assign = ast.Assign(
                targets=[ast.Name(id=RESULT_NAME, ctx=ast.Store())],
                value=last.value,
            )
            tree.body[-1] = ast.copy_location(assign, last)
            ast.fix_missing_locations(tree)
        code = compile(
            tree, SCRIPT_FILENAME, 'exec',
            flags=ast.PyCF_ALLOW_TOP_LEVEL_AWAIT,
            dont_inherit=True,
        )
        return code, has_value

    # ================================================================
    # Main Execution
    # ================================================================

    async def _drive(self, code, sandbox_globals: Dict, timers: TimerRegistry) -> Any:
        """Run the body, await it if it is a coroutine, then wait for timers"""
        try:
            outcome = eval(code, sandbox_globals)
            if code.co_flags & inspect.CO_COROUTINE:
                await outcome
        except (Exception, asyncio.CancelledError):
            raise
        except BaseException as e:
            # KeyboardInterrupt or SystemExit escaping the task would stop the event loop
            raise script_failure(e) from e

        await timers.wait_idle()
        if timers.failure is not None:
            raise timers.failure
        return sandbox_globals.get(RESULT_NAME)

    async def execute(self, source: str, run: RunHandle) -> ExecutionResult:
        """Execute a script and return its ExecutionResult.

        Console output is emitted through ``run`` while the script runs.
        Never raises for faults in the script itself.
        """
        start_time = time.monotonic()
        run_id = run.run_id
        logger.info(f"Executing script: run={run_id}, {len(source)} chars")

        def _elapsed() -> int:
            return int((time.monotonic() - start_time) * 1000)

        try:
            code, has_value = self.compile_source(source)
        except SyntaxError as e:
            logger.info(f"Run {run_id}: syntax error at line {e.lineno}: {e.msg}")
            return self._failure(e, run_id, _elapsed())

        timers = TimerRegistry()
        console = ConsoleInterceptor(run.emit)
        sandbox_globals = self._build_globals(console, timers)

        task = asyncio.ensure_future(self._drive(code, sandbox_globals, timers))
        run.attach(task, timers)

        try:
            done, _ = await asyncio.wait({task}, timeout=self.timeout)
        except asyncio.CancelledError:
            task.cancel()
            timers.close()
            raise

        if not done:
            task.cancel()
            timers.close()
            logger.warning(f"Run {run_id} timed out after {self.timeout}s")
            return ExecutionResult(
                success=False,
                error_message=f"Execution timed out after {self.timeout} seconds",
                error_type="TimeoutError",
                execution_time_ms=_elapsed(),
                run_id=run_id,
            )

        timers.close()

        if task.cancelled() or run.cancelled:
            logger.info(f"Run {run_id} cancelled")
            return ExecutionResult(
                success=False,
                error_message="Execution cancelled",
                error_type="CancelledError",
                execution_time_ms=_elapsed(),
                run_id=run_id,
            )

        exc = task.exception()
        if exc is not None:
            logger.info(f"Run {run_id} failed: {type(exc).__name__}: {exc}")
            return self._failure(exc, run_id, _elapsed())

        value = task.result()
        logger.info(f"Run {run_id} succeeded in {_elapsed()}ms (has_value={has_value})")
        return ExecutionResult(
            success=True,
            return_value=value if has_value else None,
            has_value=has_value,
            execution_time_ms=_elapsed(),
            run_id=run_id,
        )

    @staticmethod
    def _failure(exc: BaseException, run_id: Optional[str], elapsed_ms: int) -> ExecutionResult:
        position = error_position(exc)
        message = str(exc) or type(exc).__name__
        if isinstance(exc, SyntaxError):
            message = exc.msg or message
        return ExecutionResult(
            success=False,
            error_message=message,
            error_type=type(exc).__name__,
            error_traceback=''.join(traceback.format_exception(exc)),
            line=position.line if position else None,
            column=position.column if position else None,
            execution_time_ms=elapsed_ms,
            run_id=run_id,
        )
