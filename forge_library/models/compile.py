"""Build options supplied by the caller for validation, preview and submission."""

import re
from typing import Literal

from pydantic import Field
from pydantic import field_validator

from .base import CamelCaseModel

VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")
INSTALL_PATH_PATTERN = re.compile(r"^/[A-Za-z0-9._/+-]*$")

OptimizationLevel = Literal["O0", "O1", "O2", "O3", "Os"]


class CompileOptions(CamelCaseModel):
    """Options for a single source build.

    Defaults match what an operator gets without touching the advanced
    settings: install under /www/server/nginx, -O2, no debug logging, and
    as many make jobs as the host has cores.
    """

    version: str = Field(description="Source version to build, e.g. 1.26.3")
    modules: list[str] = Field(default_factory=list, description="Selected catalog module ids")
    custom_modules: list[str] = Field(
        default_factory=list, description="Extra module source repositories (git URLs), addressed by position"
    )
    install_path: str = Field(default="/www/server/nginx", description="Installation prefix")
    optimization_level: OptimizationLevel = Field(default="O2", description="Compiler optimization level")
    with_debug: bool = Field(default=False, description="Build with debug logging support")
    parallel_jobs: int = Field(default=0, ge=0, le=1024, description="make -j value (0 = all cores)")

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Require a dotted X.Y.Z version string."""
        if not VERSION_PATTERN.match(v):
            raise ValueError(f"Invalid version '{v}': expected MAJOR.MINOR.PATCH")
        return v

    @field_validator("modules")
    @classmethod
    def dedupe_modules(cls, v: list[str]) -> list[str]:
        """Collapse duplicate module ids, keeping the first occurrence."""
        return list(dict.fromkeys(v))

    @field_validator("custom_modules")
    @classmethod
    def strip_custom_modules(cls, v: list[str]) -> list[str]:
        """Drop surrounding whitespace and empty entries."""
        return [url.strip() for url in v if url.strip()]

    @field_validator("install_path")
    @classmethod
    def validate_install_path(cls, v: str) -> str:
        """Require an absolute path made of shell-safe characters.

        Raises:
            ValueError: If path is relative, contains parent references or unsafe characters
        """
        if not INSTALL_PATH_PATTERN.match(v):
            raise ValueError(f"Invalid install path '{v}': must be absolute and contain only [A-Za-z0-9._/+-]")
        if ".." in v.split("/"):
            raise ValueError(f"Invalid install path '{v}': parent directory references are not allowed")
        return v.rstrip("/") or "/"
