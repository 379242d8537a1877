"""Request bodies for the compile API."""

from pydantic import Field

from forge_library.models.base import CamelCaseModel
from forge_library.models.compile import CompileOptions


class ValidateRequest(CamelCaseModel):
    """Module selection to check."""

    modules: list[str] = Field(default_factory=list, description="Selected module ids")


class CompileRequest(CamelCaseModel):
    """Preview or submit a build."""

    software: str = Field(default="nginx", description="Software identifier")
    options: CompileOptions = Field(description="Build options")
