"""Shared fixtures.

RUNPAD_* variables are set before runpad is imported so the module-level
settings never point at the user's real dependency store.
"""

import os
import tempfile

os.environ.setdefault("RUNPAD_STORE_DIR", tempfile.mkdtemp(prefix="runpad-test-store-"))
os.environ["RUNPAD_API_KEY"] = ""

from typing import Dict, List  # noqa: E402

import pytest  # noqa: E402

from runpad.engine.errors import PackageError  # noqa: E402
from runpad.engine.executor import SandboxExecutor  # noqa: E402
from runpad.engine.package_manager import DependencyStore, PackageInstaller  # noqa: E402
from runpad.models import OutputEvent  # noqa: E402
from runpad.session import OutputChannel, Session  # noqa: E402


class RecordingRun:
    """Minimal run handle that keeps emitted events in memory"""

    def __init__(self, run_id: str = "test-run"):
        self.run_id = run_id
        self.events: List[OutputEvent] = []
        self.task = None
        self.timers = None

    @property
    def cancelled(self) -> bool:
        return False

    def emit(self, event: OutputEvent) -> None:
        self.events.append(event)

    def attach(self, task, timers) -> None:
        self.task = task
        self.timers = timers


class FakeInstaller(PackageInstaller):
    """In-memory installer; any name starting with 'broken' fails"""

    def __init__(self):
        self.packages: Dict[str, str] = {}

    async def install(self, name: str) -> None:
        if name.startswith("broken"):
            raise PackageError(f"ERROR: No matching distribution found for {name}")
        self.packages[name] = "==1.0.0"

    async def uninstall(self, name: str) -> None:
        if name not in self.packages:
            raise PackageError(f"Package '{name}' is not installed")
        del self.packages[name]

    async def list(self) -> Dict[str, str]:
        return dict(self.packages)


@pytest.fixture
def store(tmp_path):
    return DependencyStore(tmp_path / "store")


@pytest.fixture
def executor(store):
    return SandboxExecutor(store, timeout=5)


@pytest.fixture
def run():
    return RecordingRun()


@pytest.fixture
def installer():
    return FakeInstaller()


@pytest.fixture
def session(executor, installer):
    return Session(executor=executor, installer=installer, channel=OutputChannel(), supersede=True)


@pytest.fixture
def published(session):
    """Payloads pushed on the session's output channel"""
    payloads = []
    session.channel.subscribe(payloads.append)
    return payloads
