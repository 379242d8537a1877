"""Catalog models: buildable modules, source versions and presets.

Entries are immutable once loaded. The `requires`/`conflicts` lists form a
directed graph over module ids that the registry checks at load time.
"""

from enum import Enum

from pydantic import Field
from pydantic import computed_field

from .base import FrozenCamelCaseModel


class CompileTier(str, Enum):
    """Relative compile cost of a module."""

    FAST = "fast"
    MEDIUM = "medium"
    SLOW = "slow"


class ReleaseChannel(str, Enum):
    """Upstream release channel of a source version."""

    STABLE = "stable"
    MAINLINE = "mainline"
    LEGACY = "legacy"


class Module(FrozenCamelCaseModel):
    """A unit of optional build functionality.

    Official modules are enabled with a compile flag against the main source
    tree. Third-party modules carry a source repository that is fetched
    separately and linked with a path-based `--add-module=` flag.
    """

    id: str = Field(description="Unique module identifier")
    name: str = Field(description="Human-readable module name")
    description: str = Field(default="", description="What the module provides")
    category: str = Field(description="Category id the module is listed under")
    flag: str = Field(description="configure flag enabling the module")
    repo: str | None = Field(default=None, description="Source repository URL (third-party modules only)")
    branch: str | None = Field(default=None, description="Branch or tag to fetch")
    submodules: bool = Field(default=False, description="Fetch git submodules recursively")
    dependencies: tuple[str, ...] = Field(default=(), description="System packages needed to build")
    requires: tuple[str, ...] = Field(default=(), description="Module ids that must also be selected")
    conflicts: tuple[str, ...] = Field(default=(), description="Module ids that must not be selected")
    default: bool = Field(default=False, description="Selected by default")
    warning: str | None = Field(default=None, description="Caveat shown to the operator")
    compile_time: CompileTier = Field(default=CompileTier.FAST, description="Relative compile cost")

    @computed_field  # type: ignore[misc]
    @property
    def third_party(self) -> bool:
        """Whether the module is fetched from its own repository."""
        return self.repo is not None

    @property
    def checkout_dir(self) -> str:
        """Directory name the repository is cloned into.

        Derived from the repository URL: the last path segment without a
        trailing ``.git``. Falls back to the module id.

        Example:
            https://github.com/openresty/headers-more-nginx-module.git
            -> headers-more-nginx-module
        """
        if not self.repo:
            return self.id
        tail = self.repo.rstrip("/").rsplit("/", 1)[-1]
        if tail.endswith(".git"):
            tail = tail[: -len(".git")]
        return tail or self.id


class Version(FrozenCamelCaseModel):
    """A distributable source version."""

    version: str = Field(description="Version string, e.g. 1.26.3")
    channel: ReleaseChannel = Field(description="Release channel")
    release_date: str | None = Field(default=None, description="Release month (YYYY-MM)")
    recommended: bool = Field(default=False, description="Recommended for new builds")


class Preset(FrozenCamelCaseModel):
    """A named, curated module selection."""

    id: str = Field(description="Preset identifier")
    name: str = Field(description="Display name")
    description: str = Field(default="", description="What the preset is for")
    modules: tuple[str, ...] = Field(description="Ordered module ids")


class Category(FrozenCamelCaseModel):
    """Module category."""

    id: str
    name: str
