"""Shared test fixtures for forge tests."""

import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest

from forge_library.models.catalog import Category
from forge_library.models.catalog import Module
from forge_library.models.catalog import Preset
from forge_library.models.catalog import Version
from forge_library.registry import ModuleRegistry
from forge_library.registry import load_registry


@pytest.fixture
def temp_storage_dir() -> Generator[Path, None, None]:
    """Create temporary storage directory for tests.

    Automatically cleaned up after test completes.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def mock_storage_env(temp_storage_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point FORGED_HOME at the temporary directory and clear overrides."""
    monkeypatch.setenv("FORGED_HOME", str(temp_storage_dir))
    for name in ("FORGED_CONFIG_DIR", "FORGED_STATE_DIR", "FORGED_LOG_DIR"):
        monkeypatch.delenv(name, raising=False)
    return temp_storage_dir


@pytest.fixture(scope="session")
def registry() -> ModuleRegistry:
    """The packaged nginx catalog."""
    return load_registry()


def make_module(module_id: str, **kwargs) -> Module:
    """Build a catalog module with sensible defaults for small test catalogs."""
    kwargs.setdefault("name", module_id.upper())
    kwargs.setdefault("category", "core")
    kwargs.setdefault("flag", f"--with-{module_id}")
    return Module(id=module_id, **kwargs)


@pytest.fixture
def small_registry() -> ModuleRegistry:
    """A five-module catalog with a requires chain and one conflicting pair.

    a requires b, b requires c; d conflicts with e (declared on both sides).
    """
    return ModuleRegistry(
        modules=[
            make_module("a", requires=("b",)),
            make_module("b", requires=("c",)),
            make_module("c"),
            make_module("d", conflicts=("e",)),
            make_module("e", conflicts=("d",)),
        ],
        versions=[Version(version="1.0.0", channel="stable", recommended=True)],
        presets=[Preset(id="chain", name="Chain", modules=("a", "b", "c"))],
        categories=[Category(id="core", name="Core")],
    )
