"""Runpad - Engine Exceptions"""


class RunpadError(Exception):
    """Base class for engine errors"""


class PackageError(RunpadError):
    """Install/uninstall failed. The message carries the diagnostic text."""

    def __init__(self, message: str, name: str = None, exit_code: int = None):
        super().__init__(message)
        self.name = name
        self.exit_code = exit_code


class ManifestError(RunpadError):
    """The dependency manifest exists but cannot be parsed"""


class ScriptExit(RunpadError):
    """A script raised SystemExit. Converted so it cannot stop the host."""

    def __init__(self, code=None):
        super().__init__(f"Script exited with code {code}")
        self.code = code


class ScriptInterrupt(RunpadError):
    """A script raised KeyboardInterrupt or another non-Exception BaseException"""

    def __init__(self, exc_type: str, detail: str = ""):
        super().__init__(f"{exc_type}: {detail}" if detail else exc_type)
        self.exc_type = exc_type


class SandboxViolation(SyntaxError):
    """The script uses a construct the sandbox does not allow. Raised at compile time."""


def script_failure(exc: BaseException) -> RunpadError:
    """Wrap a BaseException raised by script code so it cannot stop the event loop"""
    if isinstance(exc, SystemExit):
        error = ScriptExit(exc.code)
    else:
        error = ScriptInterrupt(type(exc).__name__, str(exc))
    error.__cause__ = exc
    return error
