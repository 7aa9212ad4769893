"""Runpad - Session

The boundary the presentation shell talks to. A Session owns:
- the output push channel (fan-out to every subscriber)
- the executor and the package installer
- the currently active run

Every operation returns a plain result dict; faults are converted, never
raised to the caller.

Each run gets a run_id, stamped on every pushed output event and on its
result. When SUPERSEDE_RUNS is on, starting a run supersedes the previous
one: its pending timers are cancelled and any output it still produces is
dropped instead of being interleaved with the new run's output.
"""

import asyncio
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from runpad.config import settings
from runpad.engine.errors import ManifestError, PackageError
from runpad.engine.executor import SandboxExecutor
from runpad.engine.lines import last_statement_line
from runpad.engine.package_manager import DependencyStore, PackageInstaller, PipInstaller
from runpad.engine.timers import TimerRegistry
from runpad.models import OutputEvent, serialize_value

logger = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Any]], None]


class OutputChannel:
    """One-way push channel for consoleOutput payloads"""

    def __init__(self):
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it"""
        self._listeners.append(listener)

        def _unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def publish(self, payload: Dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(payload)
            except Exception as e:
                logger.error(f"Output listener failed: {e}", exc_info=True)

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)


class RunContext:
    """Identity and cancellation handle for one run"""

    def __init__(self, channel: OutputChannel, run_id: str = None):
        self.run_id = run_id or uuid.uuid4().hex
        self.channel = channel
        self.superseded = False
        self._cancelled = False
        self._task: Optional[asyncio.Task] = None
        self._timers: Optional[TimerRegistry] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def attach(self, task: asyncio.Task, timers: TimerRegistry) -> None:
        self._task = task
        self._timers = timers
        if self._cancelled:
            self._abort()

    def emit(self, event: OutputEvent) -> None:
        if self._cancelled:
            return
        self.channel.publish(event.to_wire(self.run_id))

    def cancel(self, superseded: bool = False) -> None:
        self._cancelled = True
        self.superseded = self.superseded or superseded
        self._abort()

    def _abort(self):
        if self._timers is not None:
            self._timers.close()
        if self._task is not None and not self._task.done():
            self._task.cancel()


class Session:
    """Explicit session object shared by the HTTP, WebSocket and MCP surfaces"""

    def __init__(
        self,
        executor: SandboxExecutor,
        installer: PackageInstaller,
        channel: OutputChannel = None,
        supersede: bool = None,
    ):
        self.executor = executor
        self.installer = installer
        self.channel = channel or OutputChannel()
        self.supersede = settings.SUPERSEDE_RUNS if supersede is None else supersede
        self._active: Dict[str, RunContext] = {}

    # ================================================================
    # Execution
    # ================================================================

    async def run(self, source: str) -> Dict[str, Any]:
        """Run a script; returns {success, result?, error?, line?, column?, run_id}"""
        run = RunContext(self.channel)
        if self.supersede:
            for previous in list(self._active.values()):
                logger.info(f"Run {previous.run_id} superseded by {run.run_id}")
                previous.cancel(superseded=True)
        self._active[run.run_id] = run

        try:
            result = await self.executor.execute(source, run)
        except Exception as e:
            logger.error(f"Run {run.run_id} crashed in the host: {e}", exc_info=True)
            return {'success': False, 'error': f"Execution failed: {e}", 'run_id': run.run_id}
        finally:
            self._active.pop(run.run_id, None)

        response: Dict[str, Any] = {
            'success': result.success,
            'run_id': result.run_id,
            'execution_time_ms': result.execution_time_ms,
        }
        if result.success:
            if result.has_value:
                response['result'] = serialize_value(result.return_value)
                response['line'] = last_statement_line(source)
        else:
            response['error'] = result.error_message
            response['error_type'] = result.error_type
            if result.line is not None:
                response['line'] = result.line
            if result.column is not None:
                response['column'] = result.column
        if run.superseded:
            response['superseded'] = True
        return response

    def cancel(self, run_id: str = None) -> bool:
        """Cancel the named run, or every active run when run_id is None"""
        if run_id is not None:
            targets = [self._active[run_id]] if run_id in self._active else []
        else:
            targets = list(self._active.values())
        for run in targets:
            logger.info(f"Cancelling run {run.run_id}")
            run.cancel()
        return bool(targets)

    @property
    def active_runs(self) -> List[str]:
        return list(self._active)

    # ================================================================
    # Packages
    # ================================================================

    async def install_package(self, name: str) -> Dict[str, Any]:
        try:
            await self.installer.install(name)
            return {'success': True}
        except (PackageError, ManifestError) as e:
            return {'success': False, 'error': str(e)}
        except Exception as e:
            logger.error(f"install_package({name!r}) failed: {e}", exc_info=True)
            return {'success': False, 'error': f"Install failed: {e}"}

    async def uninstall_package(self, name: str) -> Dict[str, Any]:
        try:
            await self.installer.uninstall(name)
            return {'success': True}
        except (PackageError, ManifestError) as e:
            return {'success': False, 'error': str(e)}
        except Exception as e:
            logger.error(f"uninstall_package({name!r}) failed: {e}", exc_info=True)
            return {'success': False, 'error': f"Uninstall failed: {e}"}

    async def get_packages(self) -> Dict[str, Any]:
        try:
            packages = await self.installer.list()
            return {'success': True, 'packages': packages}
        except ManifestError as e:
            logger.warning(f"Manifest unreadable: {e}")
            return {'success': False, 'error': str(e)}
        except Exception as e:
            logger.error(f"get_packages failed: {e}", exc_info=True)
            return {'success': False, 'error': f"Could not read packages: {e}"}


_session: Optional[Session] = None


def get_session() -> Session:
    """Process-wide session built from settings on first use"""
    global _session
    if _session is None:
        store = DependencyStore(settings.STORE_DIR)
        _session = Session(
            executor=SandboxExecutor(store),
            installer=PipInstaller(store),
        )
    return _session
