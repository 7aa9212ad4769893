"""Runpad - Dependency Store & Package Installer

The dependency store is a directory that holds:
- manifest.json   {"dependencies": {<name>: <version specifier>}}
- site-packages/  distributions installed with ``pip install --target``

Scripts can import only what lives in site-packages (see loader.py).

PackageInstaller is the abstract capability used by the session;
PipInstaller is the concrete backend that shells out to pip. install and
uninstall on the same store root are serialized by a per-root lock, since
two pip processes writing the same target directory would corrupt it.
"""

import asyncio
import json
import logging
import os
import re
import shutil
import sys
import uuid
from abc import ABC, abstractmethod
from importlib import metadata
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import aiofiles
import aiofiles.os

from runpad.config import settings
from runpad.engine.errors import ManifestError, PackageError
from runpad.engine.loader import module_within

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
SITE_DIR_NAME = "site-packages"

# name[extras] [op version]
_REQUIREMENT_PATTERN = re.compile(
    r'^(?P<name>[A-Za-z0-9](?:[A-Za-z0-9._-]*[A-Za-z0-9])?)'
    r'(?P<extras>\[[A-Za-z0-9._,\s-]+\])?'
    r'\s*(?P<spec>(?:===|==|>=|<=|~=|!=|>|<)\s*[A-Za-z0-9.*+!_-]+)?$'
)

# Diagnostic text returned to callers is the tail of pip's output
MAX_DIAGNOSTIC_CHARS = 4000


def canonicalize_name(name: str) -> str:
    """PEP 503 normalized project name"""
    return re.sub(r"[-_.]+", "-", name).lower()


def parse_requirement(requirement: str) -> Tuple[str, str]:
    """Validate a requirement string and return (canonical name, requirement).

    Raises PackageError for anything pip could misread, including
    option-looking input such as "--index-url=...".
    """
    text = (requirement or "").strip()
    match = _REQUIREMENT_PATTERN.match(text)
    if not match:
        raise PackageError(f"Invalid package name: {requirement!r}", name=requirement)
    return canonicalize_name(match.group('name')), text


# ============================================================
# Dependency Store
# ============================================================

class DependencyStore:
    """Filesystem root with the manifest and installed distributions"""

    def __init__(self, root: Path = None):
        self.root = Path(root or settings.STORE_DIR).expanduser()
        self.site_dir = self.root / SITE_DIR_NAME
        self.manifest_path = self.root / MANIFEST_NAME

    def ensure(self) -> None:
        """Create the store layout and an empty manifest. Idempotent."""
        self.site_dir.mkdir(parents=True, exist_ok=True)
        if not self.manifest_path.exists():
            self.manifest_path.write_text(
                json.dumps({"dependencies": {}}, indent=2) + "\n", encoding="utf-8"
            )
            logger.info(f"Dependency store initialized: {self.root}")

    async def read_manifest(self) -> Dict[str, str]:
        """Return the dependency mapping. A missing manifest is empty."""
        try:
            async with aiofiles.open(self.manifest_path, 'r', encoding='utf-8') as f:
                raw = await f.read()
        except FileNotFoundError:
            return {}

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ManifestError(f"Manifest is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ManifestError("Manifest must be a JSON object")
        dependencies = data.get("dependencies", {})
        if not isinstance(dependencies, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in dependencies.items()
        ):
            raise ManifestError("Manifest 'dependencies' must map names to version strings")
        return dict(dependencies)

    async def write_manifest(self, dependencies: Dict[str, str]) -> None:
        """Atomically replace the manifest"""
        payload = json.dumps(
            {"dependencies": dict(sorted(dependencies.items()))}, indent=2
        ) + "\n"
        tmp_path = self.root / f".{MANIFEST_NAME}.{uuid.uuid4().hex}.tmp"
        try:
            async with aiofiles.open(tmp_path, 'w', encoding='utf-8') as f:
                await f.write(payload)
            await aiofiles.os.replace(tmp_path, self.manifest_path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    def find_distribution(self, name: str) -> Optional[metadata.Distribution]:
        """Installed distribution in site-packages matching a canonical name"""
        if not self.site_dir.is_dir():
            return None
        for dist in metadata.distributions(path=[str(self.site_dir)]):
            dist_name = dist.metadata.get('Name') if dist.metadata else None
            if dist_name and canonicalize_name(dist_name) == name:
                return dist
        return None


_STORE_LOCKS: Dict[str, asyncio.Lock] = {}


def store_lock(store: DependencyStore) -> asyncio.Lock:
    """One lock per resolved store root, shared across installers"""
    key = str(store.root.resolve())
    lock = _STORE_LOCKS.get(key)
    if lock is None:
        lock = _STORE_LOCKS[key] = asyncio.Lock()
    return lock


# ============================================================
# Installer capability
# ============================================================

class PackageInstaller(ABC):
    """Adds, removes and lists distributions available to scripts"""

    @abstractmethod
    async def install(self, name: str) -> None:
        ...

    @abstractmethod
    async def uninstall(self, name: str) -> None:
        ...

    @abstractmethod
    async def list(self) -> Dict[str, str]:
        ...


class PipInstaller(PackageInstaller):
    """PackageInstaller backed by ``pip install --target <store>``"""

    def __init__(
        self,
        store: DependencyStore,
        python: str = None,
        timeout: int = None,
        index_url: str = None,
    ):
        self.store = store
        self.python = python or settings.PYTHON_EXECUTABLE
        self.timeout = timeout or settings.INSTALL_TIMEOUT
        self.index_url = index_url if index_url is not None else settings.PIP_INDEX_URL

    def _install_command(self, requirement: str) -> List[str]:
        command = [
            self.python, "-m", "pip", "install",
            "--no-input",
            "--disable-pip-version-check",
            "--upgrade",
            "--target", str(self.store.site_dir),
        ]
        if self.index_url:
            command.extend(["--index-url", self.index_url])
        command.append(requirement)
        return command

    async def _run_pip(self, command: List[str]) -> Tuple[int, str]:
        """Spawn pip in the store root; returns (exit code, combined output)"""
        env = os.environ.copy()
        env["PIP_NO_INPUT"] = "1"
        env["PYTHONUNBUFFERED"] = "1"
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=str(self.store.root),
            env=env,
        )
        try:
            output, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise PackageError(f"pip timed out after {self.timeout} seconds")
        return process.returncode, output.decode("utf-8", errors="replace")

    async def install(self, name: str) -> None:
        canonical, requirement = parse_requirement(name)

        async with store_lock(self.store):
            await asyncio.to_thread(self.store.ensure)
            command = self._install_command(requirement)
            logger.info(f"Installing {requirement} into {self.store.site_dir}")

            exit_code, output = await self._run_pip(command)
            if exit_code != 0:
                diagnostic = output.strip()[-MAX_DIAGNOSTIC_CHARS:] or f"pip exited with code {exit_code}"
                logger.warning(f"Install of {requirement} failed (exit {exit_code})")
                raise PackageError(diagnostic, name=canonical, exit_code=exit_code)

            dist = await asyncio.to_thread(self.store.find_distribution, canonical)
            if dist is None:
                raise PackageError(
                    f"pip reported success but {canonical} was not found in the store",
                    name=canonical,
                )

            dependencies = await self.store.read_manifest()
            dependencies[canonical] = f"=={dist.version}"
            await self.store.write_manifest(dependencies)
            logger.info(f"Installed {canonical}=={dist.version}")

    async def uninstall(self, name: str) -> None:
        canonical, _ = parse_requirement(name)

        async with store_lock(self.store):
            dependencies = await self.store.read_manifest()
            if canonical not in dependencies:
                raise PackageError(f"Package '{canonical}' is not installed", name=canonical)

            await asyncio.to_thread(self._remove_distribution, canonical)

            del dependencies[canonical]
            await self.store.write_manifest(dependencies)
            logger.info(f"Uninstalled {canonical}")

    async def list(self) -> Dict[str, str]:
        return await self.store.read_manifest()

    # ================================================================
    # Removal (pip cannot uninstall from a --target directory)
    # ================================================================

    def _remove_distribution(self, canonical: str) -> None:
        dist = self.store.find_distribution(canonical)
        if dist is None:
            logger.warning(f"{canonical} is in the manifest but not in site-packages")
            return
        if dist.files is None:
            raise PackageError(f"Cannot uninstall {canonical}: no RECORD in its metadata", name=canonical)

        site_dir = self.store.site_dir.resolve()
        top_level = set()
        for package_path in dist.files:
            path = Path(dist.locate_file(package_path)).resolve()
            try:
                relative = path.relative_to(site_dir)
            except ValueError:
                continue
            top_level.add(site_dir / relative.parts[0])
            if path.is_file() or path.is_symlink():
                path.unlink()

        self._evict_modules(top_level)
        for entry in top_level:
            if entry.is_dir():
                if entry.name.endswith(('.dist-info', '.egg-info')):
                    shutil.rmtree(entry, ignore_errors=True)
                else:
                    self._prune(entry)
        logger.debug(f"Removed {canonical}: {sorted(p.name for p in top_level)}")

    @staticmethod
    def _prune(directory: Path) -> None:
        """Remove bytecode caches and empty directories left behind"""
        for current, dirnames, filenames in os.walk(directory, topdown=False):
            current_path = Path(current)
            if current_path.name == "__pycache__":
                shutil.rmtree(current_path, ignore_errors=True)
                continue
            try:
                current_path.rmdir()
            except OSError:
                pass

    @staticmethod
    def _evict_modules(roots) -> None:
        for module_name, module in list(sys.modules.items()):
            if module is None:
                continue
            if any(module_within(module, root) for root in roots):
                sys.modules.pop(module_name, None)
