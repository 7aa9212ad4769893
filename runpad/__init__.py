"""Runpad - live Python scratchpad engine.

Runs user scripts in a sandboxed context, streams their console output
tagged with the originating source line, and manages an isolated store of
installable third-party distributions the scripts may import.
"""

__version__ = "0.3.0"
