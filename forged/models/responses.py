"""Response bodies for the compile API."""

from pydantic import Field

from forge_library.models.base import CamelCaseModel
from forge_library.models.catalog import Category
from forge_library.models.catalog import Module
from forge_library.models.catalog import Preset
from forge_library.models.catalog import Version
from forge_library.models.tasks import TaskStatus


class CatalogResponse(CamelCaseModel):
    """Everything a build form needs to render."""

    software: str
    categories: list[Category]
    modules: list[Module]
    versions: list[Version]
    presets: list[Preset]
    base_dependencies: list[str]


class ModuleGroup(CamelCaseModel):
    """Modules listed under one category."""

    category: Category
    modules: list[Module]


class DependencyClosureResponse(CamelCaseModel):
    """Transitive requirements of a module."""

    module_id: str
    dependencies: list[str]


class ValidateResponse(CamelCaseModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)
    estimated_time: int = Field(description="Estimated build time in minutes")


class PreviewResponse(CamelCaseModel):
    script: str
    estimated_time: int = Field(description="Estimated build time in minutes")


class SubmitResponse(CamelCaseModel):
    task_id: str
    estimated_time: int = Field(description="Estimated build time in minutes")


class CancelResponse(CamelCaseModel):
    """Acknowledgement of a cancel request."""

    task_id: str
    status: TaskStatus
    error: str | None = None
    message: str


class StatusResponse(CamelCaseModel):
    """Daemon status."""

    status: str
    version: str
    uptime_seconds: float
    software: str
    active_builds: int
    tracked_tasks: int
    max_concurrent_builds: int
