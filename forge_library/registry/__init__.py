"""Module registry.

Public Interface:
    - ModuleRegistry: Read-only catalog accessors
    - load_registry: Load and check a catalog file
    - CatalogError: Malformed or inconsistent catalog
    - UnknownModuleError: Module id not in catalog
    - UnknownPresetError: Preset id not in catalog
"""

from .registry import DEFAULT_CATALOG_PATH
from .registry import CatalogError
from .registry import ModuleRegistry
from .registry import UnknownModuleError
from .registry import UnknownPresetError
from .registry import load_registry

__all__ = [
    "DEFAULT_CATALOG_PATH",
    "CatalogError",
    "ModuleRegistry",
    "UnknownModuleError",
    "UnknownPresetError",
    "load_registry",
]
