"""Runpad - Configuration

All settings come from environment variables prefixed with RUNPAD_
(or a local .env file). Access them through the module-level ``settings``.
"""

import sys
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_BLOCKED_BUILTINS = [
    'eval', 'exec', 'compile', '__import__', 'globals', 'locals',
    'exit', 'quit', 'breakpoint', 'input', 'open', 'help',
    'copyright', 'credits', 'license', 'memoryview', 'vars',
]

# Standard-library modules a script may import. Everything else in the
# standard library is unavailable; third-party code comes from the store.
# None of these touch the filesystem, environment, network or processes.
DEFAULT_ALLOWED_MODULES = [
    'abc', 'array', 'base64', 'binascii', 'bisect', 'calendar', 'cmath',
    'collections', 'colorsys', 'copy', 'datetime', 'decimal', 'difflib',
    'enum', 'fractions', 'functools', 'graphlib', 'hashlib', 'heapq',
    'hmac', 'html', 'itertools', 'json', 'keyword', 'math', 'numbers',
    'pprint', 'random', 're', 'secrets', 'statistics', 'struct',
    'textwrap', 'unicodedata', 'zlib',
]


class Settings(BaseSettings):
    """Runpad configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="RUNPAD_",
        case_sensitive=False,
        extra="ignore",
    )

    # Dependency store
    STORE_DIR: Path = Field(default_factory=lambda: Path.home() / ".runpad" / "store")
    PYTHON_EXECUTABLE: str = sys.executable
    PIP_INDEX_URL: Optional[str] = None
    INSTALL_TIMEOUT: int = 300

    # Execution
    MAX_EXECUTION_TIME: int = 30
    MAX_OUTPUT_SIZE: int = 100_000
    SUPERSEDE_RUNS: bool = True
    BLOCKED_BUILTINS: List[str] = Field(default_factory=lambda: list(DEFAULT_BLOCKED_BUILTINS))
    ALLOWED_MODULES: List[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_MODULES))

    # Server
    API_KEY: str = ""
    HOST: str = "127.0.0.1"
    PORT: int = 8765
    LOG_LEVEL: str = "INFO"

    @field_validator("LOG_LEVEL")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    @field_validator("STORE_DIR")
    @classmethod
    def _expand_store_dir(cls, value: Path) -> Path:
        return value.expanduser()

    def ensure_directories(self):
        """Create the dependency store root if it does not exist yet"""
        self.STORE_DIR.mkdir(parents=True, exist_ok=True)


settings = Settings()
