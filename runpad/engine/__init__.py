"""Runpad Engine

Core execution engine components:
- executor: Sandboxed script execution
- console: Console interception with source lines
- lines: Source line correlation
- timers: setTimeout/setInterval primitives
- loader: Module loader pinned to the dependency store
- package_manager: Dependency store and package installer
"""
