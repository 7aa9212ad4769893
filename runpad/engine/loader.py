"""Runpad - Scoped Module Loader

Replaces ``__import__`` inside the sandbox:
- standard-library modules are importable only when listed in
  settings.ALLOWED_MODULES
- every other module must come from the dependency store's site-packages,
  never from the host interpreter's own paths
- scripts receive a ModuleView, never the module object itself

Store packages are loaded straight from site-packages; sys.path is left
alone. Their own imports of sibling distributions resolve through a
StoreFinder placed at the end of sys.meta_path, so it only answers for
names the host cannot find itself and never shadows a host module.
"""

import builtins
import importlib
import importlib.abc
import importlib.util
import logging
import sys
from importlib.machinery import PathFinder
from pathlib import Path
from typing import Dict, Iterable

from runpad.engine.policy import ModuleView

logger = logging.getLogger(__name__)


def module_within(module, root: Path) -> bool:
    location = getattr(module, '__file__', None)
    if location is None:
        # Namespace packages only expose __path__
        paths = list(getattr(module, '__path__', []) or [])
        location = paths[0] if paths else None
    if location is None:
        return False
    try:
        Path(location).resolve().relative_to(root.resolve())
        return True
    except (ValueError, OSError):
        return False


class StoreFinder(importlib.abc.MetaPathFinder):
    """Resolves top-level names from one site-packages directory"""

    def __init__(self, site_dir: Path):
        self.site_dir = Path(site_dir)

    def find_spec(self, fullname, path=None, target=None):
        # Submodules resolve through their parent package's __path__
        if path is not None or '.' in fullname or not self.site_dir.is_dir():
            return None
        return PathFinder.find_spec(fullname, [str(self.site_dir)])

    def __repr__(self):
        return f"<StoreFinder {self.site_dir}>"


_FINDERS: Dict[str, StoreFinder] = {}


def install_store_finder(site_dir: Path) -> StoreFinder:
    """Append the finder for site_dir to sys.meta_path once"""
    key = str(Path(site_dir).resolve())
    finder = _FINDERS.get(key)
    if finder is None:
        finder = _FINDERS[key] = StoreFinder(site_dir)
    if finder not in sys.meta_path:
        sys.meta_path.append(finder)
        logger.info(f"Dependency store finder installed: {site_dir}")
    return finder


class ScopedImporter:
    """__import__ replacement pinned to the dependency store"""

    def __init__(self, site_dir: Path, allowed: Iterable[str]):
        self.site_dir = Path(site_dir)
        self.allowed = frozenset(allowed)

    def admits(self, module) -> bool:
        """Whether a script may hold a view of ``module``"""
        top = (getattr(module, '__name__', None) or '').partition('.')[0]
        if top in self.allowed:
            return True
        root = sys.modules.get(top)
        return root is not None and module_within(root, self.site_dir)

    def _not_in_store(self, top: str) -> ModuleNotFoundError:
        return ModuleNotFoundError(f"No module named '{top}' in the dependency store", name=top)

    def _load_from_store(self, top: str):
        existing = sys.modules.get(top)
        if existing is not None:
            if not module_within(existing, self.site_dir):
                raise ImportError(
                    f"Module '{top}' is already loaded from outside the dependency store",
                    name=top,
                )
            return
        if not self.site_dir.is_dir():
            raise self._not_in_store(top)

        importlib.invalidate_caches()
        spec = PathFinder.find_spec(top, [str(self.site_dir)])
        if spec is None or spec.loader is None:
            raise self._not_in_store(top)

        install_store_finder(self.site_dir)
        module = importlib.util.module_from_spec(spec)
        sys.modules[top] = module
        try:
            spec.loader.exec_module(module)
        except BaseException:
            sys.modules.pop(top, None)
            raise
        logger.debug(f"Loaded '{top}' from dependency store")

    def __call__(self, name, globals=None, locals=None, fromlist=(), level=0):
        if level:
            raise ImportError("Relative imports are not supported in scripts")
        top = name.partition('.')[0]
        if not top or top.startswith('_'):
            raise ImportError(f"Module '{top}' is not available in the sandbox", name=top)

        if top not in self.allowed:
            if top in sys.stdlib_module_names:
                raise ImportError(f"Module '{top}' is not available in the sandbox", name=top)
            self._load_from_store(top)

        module = builtins.__import__(name, None, None, fromlist or (), 0)
        return ModuleView(module, self.admits)
