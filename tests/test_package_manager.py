"""Dependency store and pip installer tests.

pip itself is never spawned: FakePip overrides _run_pip and lays out a
distribution in site-packages the way ``pip install --target`` would.
"""

import asyncio
import json

import pytest

from runpad.engine.errors import ManifestError, PackageError
from runpad.engine.package_manager import (
    DependencyStore,
    PipInstaller,
    canonicalize_name,
    parse_requirement,
)


def write_distribution(site_dir, name, version):
    module = name.replace("-", "_").lower()
    package_dir = site_dir / module
    package_dir.mkdir(parents=True, exist_ok=True)
    (package_dir / "__init__.py").write_text(f"VERSION = {version!r}\n")

    dist_info = site_dir / f"{module}-{version}.dist-info"
    dist_info.mkdir(exist_ok=True)
    (dist_info / "METADATA").write_text(
        f"Metadata-Version: 2.1\nName: {name}\nVersion: {version}\n"
    )
    (dist_info / "RECORD").write_text(
        f"{module}/__init__.py,,\n"
        f"{dist_info.name}/METADATA,,\n"
        f"{dist_info.name}/RECORD,,\n"
    )


class FakePip(PipInstaller):

    def __init__(self, store, version="1.3.0", exit_code=0, output=""):
        super().__init__(store, python="python3", timeout=5, index_url="")
        self.version = version
        self.exit_code = exit_code
        self.output = output
        self.calls = []
        self.active = 0
        self.max_active = 0

    async def _run_pip(self, command):
        self.calls.append(command)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0.01)
        finally:
            self.active -= 1
        if self.exit_code:
            return self.exit_code, self.output
        write_distribution(self.store.site_dir, command[-1], self.version)
        return 0, f"Successfully installed {command[-1]}-{self.version}\n"


# ============================================================
# Requirement parsing
# ============================================================

def test_canonical_names():
    assert canonicalize_name("Left_Pad") == "left-pad"
    assert canonicalize_name("zope.interface") == "zope-interface"


@pytest.mark.parametrize("requirement, expected", [
    ("six", ("six", "six")),
    ("  Attrs>=23.1 ", ("attrs", "Attrs>=23.1")),
    ("requests[socks]==2.31.0", ("requests", "requests[socks]==2.31.0")),
])
def test_parse_requirement(requirement, expected):
    assert parse_requirement(requirement) == expected


@pytest.mark.parametrize("requirement", [
    "", "--index-url=http://evil.example", "six; rm -rf /", "-e .", "../local",
])
def test_parse_requirement_rejects(requirement):
    with pytest.raises(PackageError, match="Invalid package name"):
        parse_requirement(requirement)


def test_install_command_targets_the_store(store):
    installer = PipInstaller(store, python="python3", index_url="https://mirror.example/simple")
    command = installer._install_command("six")

    assert command[:4] == ["python3", "-m", "pip", "install"]
    assert command[command.index("--target") + 1] == str(store.site_dir)
    assert command[command.index("--index-url") + 1] == "https://mirror.example/simple"
    assert command[-1] == "six"


# ============================================================
# Manifest
# ============================================================

@pytest.mark.asyncio
async def test_missing_store_lists_nothing(tmp_path):
    store = DependencyStore(tmp_path / "nowhere")
    assert await PipInstaller(store).list() == {}
    assert not store.root.exists()


@pytest.mark.asyncio
async def test_malformed_manifest_is_an_error(store):
    store.root.mkdir(parents=True)
    store.manifest_path.write_text("{not json")

    with pytest.raises(ManifestError):
        await store.read_manifest()


@pytest.mark.asyncio
async def test_manifest_with_wrong_shape_is_an_error(store):
    store.root.mkdir(parents=True)
    store.manifest_path.write_text('{"dependencies": ["six"]}')

    with pytest.raises(ManifestError):
        await store.read_manifest()


@pytest.mark.asyncio
async def test_manifest_write_is_sorted_and_leaves_no_temp_files(store):
    store.ensure()
    await store.write_manifest({"zeta": "==1", "alpha": "==2"})

    data = json.loads(store.manifest_path.read_text())
    assert list(data["dependencies"]) == ["alpha", "zeta"]
    assert sorted(p.name for p in store.root.iterdir()) == ["manifest.json", "site-packages"]


# ============================================================
# Install / uninstall
# ============================================================

@pytest.mark.asyncio
async def test_install_records_pinned_version(store):
    installer = FakePip(store)
    await installer.install("Left_Pad")

    assert await installer.list() == {"left-pad": "==1.3.0"}
    assert (store.site_dir / "left_pad" / "__init__.py").is_file()
    assert installer.calls[0][-1] == "Left_Pad"


@pytest.mark.asyncio
async def test_uninstall_removes_files_and_entry(store):
    installer = FakePip(store)
    await installer.install("left-pad")
    await installer.uninstall("left-pad")

    assert await installer.list() == {}
    assert not (store.site_dir / "left_pad").exists()
    assert not (store.site_dir / "left_pad-1.3.0.dist-info").exists()


@pytest.mark.asyncio
async def test_failed_install_keeps_manifest(store):
    installer = FakePip(
        store, exit_code=1,
        output="ERROR: Could not find a version that satisfies the requirement nope\n",
    )

    with pytest.raises(PackageError) as excinfo:
        await installer.install("nope")

    assert "Could not find a version" in str(excinfo.value)
    assert excinfo.value.exit_code == 1
    assert await installer.list() == {}


@pytest.mark.asyncio
async def test_invalid_name_never_reaches_pip(store):
    installer = FakePip(store)
    with pytest.raises(PackageError):
        await installer.install("--index-url=http://evil.example")
    assert installer.calls == []


@pytest.mark.asyncio
async def test_uninstall_unknown_package(store):
    installer = FakePip(store)
    with pytest.raises(PackageError, match="not installed"):
        await installer.uninstall("six")


@pytest.mark.asyncio
async def test_installs_on_one_store_are_serialized(store):
    installer = FakePip(store)

    await asyncio.gather(installer.install("alpha"), installer.install("beta"))

    assert installer.max_active == 1
    assert len(installer.calls) == 2
    assert await installer.list() == {"alpha": "==1.3.0", "beta": "==1.3.0"}
