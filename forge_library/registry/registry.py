"""Module registry: the static catalog of buildable modules, versions and presets.

Contract:
- Inputs: catalog.yaml (packaged) or a caller-supplied catalog document
- Outputs: Read-only accessors over immutable catalog models
- Side Effects: Reads the catalog file once at load time

The registry checks the catalog when it is loaded and refuses to start on a
broken one: duplicated ids, dangling `requires`/`conflicts` edges, unknown
preset members, cyclic `requires` chains and presets that do not validate all
raise CatalogError.
"""

import logging
import math
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ..models.catalog import Category
from ..models.catalog import CompileTier
from ..models.catalog import Module
from ..models.catalog import Preset
from ..models.catalog import Version

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).parent / "catalog.yaml"

BASE_COMPILE_MINUTES = 3.0
TIER_MINUTES = {
    CompileTier.FAST: 0.2,
    CompileTier.MEDIUM: 1.0,
    CompileTier.SLOW: 5.0,
}


class CatalogError(ValueError):
    """Raised when the catalog is malformed or internally inconsistent."""

    pass


class UnknownModuleError(ValueError):
    """Raised when a module id is not in the catalog."""

    pass


class UnknownPresetError(ValueError):
    """Raised when a preset id is not in the catalog."""

    pass


class ModuleRegistry:
    """Read-only catalog of modules, versions and presets.

    Built once at startup and shared by the validator, the script generator
    and the executor. All accessors return immutable models.

    Example:
        >>> registry = load_registry()
        >>> registry.get_module("http_v2_module").requires
        ('http_ssl_module',)
        >>> registry.dependency_closure("stream_lua_nginx_module")
        ['stream', 'lua_nginx_module', 'ngx_devel_kit']
    """

    def __init__(
        self: "ModuleRegistry",
        modules: list[Module],
        versions: list[Version],
        presets: list[Preset],
        categories: list[Category] | None = None,
        base_dependencies: list[str] | None = None,
        software: str = "nginx",
    ) -> None:
        """Build and check a registry.

        Args:
            modules: Catalog modules, in display order
            versions: Distributable source versions
            presets: Named module selections
            categories: Module categories, in display order (derived from modules if omitted)
            base_dependencies: System packages every build needs
            software: Software identifier the catalog describes

        Raises:
            CatalogError: If the catalog is inconsistent
        """
        self.software = software
        self.base_dependencies: tuple[str, ...] = tuple(base_dependencies or ())
        self._versions = tuple(versions)
        self._presets: dict[str, Preset] = {}
        self._modules: dict[str, Module] = {}

        for module in modules:
            if module.id in self._modules:
                raise CatalogError(f"Duplicate module id: {module.id}")
            self._modules[module.id] = module

        for preset in presets:
            if preset.id in self._presets:
                raise CatalogError(f"Duplicate preset id: {preset.id}")
            self._presets[preset.id] = preset

        if categories is None:
            seen = dict.fromkeys(m.category for m in modules)
            categories = [Category(id=c, name=c) for c in seen]
        self._categories = tuple(categories)

        self._check_integrity()

    @classmethod
    def from_dict(cls: type["ModuleRegistry"], data: dict[str, Any]) -> "ModuleRegistry":
        """Build a registry from a parsed catalog document.

        Args:
            data: Mapping with modules, versions, presets, categories and base_dependencies

        Returns:
            Checked registry

        Raises:
            CatalogError: If the document does not match the catalog schema or is inconsistent
        """
        if not isinstance(data, dict):
            raise CatalogError("Catalog document must be a mapping")

        try:
            modules = [Module.model_validate(m) for m in data.get("modules") or []]
            versions = [Version.model_validate(v) for v in data.get("versions") or []]
            presets = [Preset.model_validate(p) for p in data.get("presets") or []]
            categories = None
            if data.get("categories") is not None:
                categories = [Category.model_validate(c) for c in data["categories"]]
        except ValidationError as e:
            raise CatalogError(f"Invalid catalog entry: {e}") from e

        return cls(
            modules=modules,
            versions=versions,
            presets=presets,
            categories=categories,
            base_dependencies=list(data.get("base_dependencies") or []),
            software=data.get("software", "nginx"),
        )

    # ------------------------------------------------------------------ checks

    def _check_integrity(self: "ModuleRegistry") -> None:
        known_categories = {c.id for c in self._categories}
        for module in self._modules.values():
            if module.category not in known_categories:
                raise CatalogError(f"Module '{module.id}' has unknown category '{module.category}'")
            for dep in module.requires:
                if dep not in self._modules:
                    raise CatalogError(f"Module '{module.id}' requires unknown module '{dep}'")
            for other in module.conflicts:
                if other not in self._modules:
                    raise CatalogError(f"Module '{module.id}' conflicts with unknown module '{other}'")
                if other == module.id:
                    raise CatalogError(f"Module '{module.id}' conflicts with itself")

        cycle = self._find_requires_cycle()
        if cycle:
            raise CatalogError(f"Cyclic requires chain: {' -> '.join(cycle)}")

        # Deferred: the validator module depends on this one
        from ..compiler.validator import validate_selection

        for preset in self._presets.values():
            unknown = [m for m in preset.modules if m not in self._modules]
            if unknown:
                raise CatalogError(f"Preset '{preset.id}' references unknown modules: {', '.join(unknown)}")
            result = validate_selection(preset.modules, self)
            if not result.valid:
                raise CatalogError(f"Preset '{preset.id}' is not a valid selection: {'; '.join(result.errors)}")

    def _find_requires_cycle(self: "ModuleRegistry") -> list[str] | None:
        """Find a cycle in the requires graph.

        Returns:
            Module ids along the cycle, first id repeated at the end, or None
        """
        white, grey, black = 0, 1, 2
        color = dict.fromkeys(self._modules, white)

        for root in self._modules:
            if color[root] != white:
                continue
            path = [root]
            stack = [iter(self._modules[root].requires)]
            color[root] = grey
            while stack:
                child = next(stack[-1], None)
                if child is None:
                    color[path.pop()] = black
                    stack.pop()
                    continue
                if color[child] == grey:
                    return path[path.index(child) :] + [child]
                if color[child] == white:
                    color[child] = grey
                    path.append(child)
                    stack.append(iter(self._modules[child].requires))
        return None

    # --------------------------------------------------------------- accessors

    def __contains__(self: "ModuleRegistry", module_id: object) -> bool:
        return module_id in self._modules

    def __len__(self: "ModuleRegistry") -> int:
        return len(self._modules)

    def has_module(self: "ModuleRegistry", module_id: str) -> bool:
        return module_id in self._modules

    def get_module(self: "ModuleRegistry", module_id: str) -> Module:
        """Get a module by id.

        Raises:
            UnknownModuleError: If the id is not in the catalog
        """
        module = self._modules.get(module_id)
        if module is None:
            raise UnknownModuleError(f"Unknown module: {module_id}")
        return module

    def list_modules(self: "ModuleRegistry", category: str | None = None) -> list[Module]:
        """List modules in catalog order, optionally limited to one category."""
        modules = list(self._modules.values())
        if category is not None:
            modules = [m for m in modules if m.category == category]
        return modules

    def modules_by_category(self: "ModuleRegistry") -> dict[str, list[Module]]:
        """Group modules by category, in category display order.

        Categories without modules are omitted.
        """
        grouped: dict[str, list[Module]] = {c.id: [] for c in self._categories}
        for module in self._modules.values():
            grouped[module.category].append(module)
        return {category: modules for category, modules in grouped.items() if modules}

    def list_categories(self: "ModuleRegistry") -> list[Category]:
        return list(self._categories)

    def list_versions(self: "ModuleRegistry") -> list[Version]:
        return list(self._versions)

    def recommended_version(self: "ModuleRegistry") -> Version | None:
        """Return the recommended version, falling back to the first listed."""
        for version in self._versions:
            if version.recommended:
                return version
        return self._versions[0] if self._versions else None

    def list_presets(self: "ModuleRegistry") -> list[Preset]:
        return list(self._presets.values())

    def get_preset(self: "ModuleRegistry", preset_id: str) -> Preset:
        """Get a preset by id.

        Raises:
            UnknownPresetError: If the id is not in the catalog
        """
        preset = self._presets.get(preset_id)
        if preset is None:
            raise UnknownPresetError(f"Unknown preset: {preset_id}")
        return preset

    def default_selection(self: "ModuleRegistry") -> list[str]:
        """Ids of modules flagged as selected by default, in catalog order."""
        return [m.id for m in self._modules.values() if m.default]

    def resolve(self: "ModuleRegistry", module_ids: list[str] | tuple[str, ...] | set[str]) -> list[Module]:
        """Turn a selection into modules, in catalog order.

        Catalog order keeps generated scripts byte-identical for the same
        selection regardless of how the caller ordered it.

        Raises:
            UnknownModuleError: If any id is not in the catalog
        """
        wanted = set(module_ids)
        unknown = sorted(wanted - self._modules.keys())
        if unknown:
            raise UnknownModuleError(f"Unknown module: {', '.join(unknown)}")
        return [m for m in self._modules.values() if m.id in wanted]

    def dependency_closure(self: "ModuleRegistry", module_id: str) -> list[str]:
        """Every module reachable from module_id through requires edges.

        Each id appears once, in discovery order (depth first). The starting
        module is not part of its own closure. A visited set makes the walk
        terminate even on a cyclic graph.

        Args:
            module_id: Module whose dependencies to collect

        Returns:
            Transitive requires, deduplicated

        Raises:
            UnknownModuleError: If module_id is not in the catalog
        """
        start = self.get_module(module_id)
        closure: list[str] = []
        visited = {module_id}
        stack = list(reversed(start.requires))

        while stack:
            current = stack.pop()
            if current in visited:
                continue
            visited.add(current)
            closure.append(current)
            module = self._modules.get(current)
            if module is not None:
                stack.extend(reversed(module.requires))

        return closure

    def estimate_compile_time(self: "ModuleRegistry", module_ids: list[str] | tuple[str, ...] | set[str]) -> int:
        """Rough build duration in whole minutes.

        Three minutes for the core build plus a per-module cost by tier
        (fast 0.2, medium 1, slow 5), rounded up. Unknown ids add nothing.
        """
        total = BASE_COMPILE_MINUTES
        for module_id in set(module_ids):
            module = self._modules.get(module_id)
            if module is not None:
                total += TIER_MINUTES[module.compile_time]
        return math.ceil(round(total, 6))


def load_registry(path: Path | None = None) -> ModuleRegistry:
    """Load and check a catalog file.

    Args:
        path: Catalog YAML (default: the packaged catalog.yaml)

    Returns:
        Checked registry

    Raises:
        CatalogError: If the file cannot be read or the catalog is inconsistent
    """
    catalog_path = path or DEFAULT_CATALOG_PATH

    try:
        with open(catalog_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise CatalogError(f"Failed to read catalog {catalog_path}: {e}") from e

    registry = ModuleRegistry.from_dict(data)
    logger.info(
        f"Loaded {registry.software} catalog from {catalog_path}: "
        f"{len(registry)} modules, {len(registry.list_versions())} versions, "
        f"{len(registry.list_presets())} presets"
    )
    return registry
