"""Catalog, validation and preview endpoints.

Read-only operations: nothing here creates a task.
"""

import logging
from typing import Annotated

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException
from fastapi import Query

from forge_library.compiler import ValidationFailedError
from forge_library.compiler import validate_selection
from forge_library.models.catalog import Module
from forge_library.registry import ModuleRegistry
from forge_library.registry import UnknownModuleError
from forge_library.tasks import CompileExecutor

from ..dependencies import get_compile_executor
from ..dependencies import get_registry
from ..models import CatalogResponse
from ..models import CompileRequest
from ..models import DependencyClosureResponse
from ..models import ModuleGroup
from ..models import PreviewResponse
from ..models import ValidateRequest
from ..models import ValidateResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/compile", tags=["compile"])


def _check_software(software: str, registry: ModuleRegistry) -> None:
    if software != registry.software:
        raise HTTPException(
            status_code=400,
            detail={"error": f"Unsupported software: {software}", "details": [f"Unsupported software: {software}"]},
        )


@router.get("/catalog", response_model=CatalogResponse)
async def get_catalog(
    registry: Annotated[ModuleRegistry, Depends(get_registry)],
    software: str = "nginx",
) -> CatalogResponse:
    """Get the full build catalog.

    Args:
        software: Software identifier (only nginx is available)

    Returns:
        Categories, modules, versions, presets and base dependencies

    Raises:
        HTTPException: 400 if software is not supported
    """
    _check_software(software, registry)
    return CatalogResponse(
        software=registry.software,
        categories=registry.list_categories(),
        modules=registry.list_modules(),
        versions=registry.list_versions(),
        presets=registry.list_presets(),
        base_dependencies=list(registry.base_dependencies),
    )


@router.get("/modules", response_model=list[Module] | list[ModuleGroup])
async def list_modules(
    registry: Annotated[ModuleRegistry, Depends(get_registry)],
    grouped: bool = False,
    category: Annotated[str | None, Query(description="Only modules in this category")] = None,
) -> list[Module] | list[ModuleGroup]:
    """List catalog modules.

    Args:
        grouped: Group modules by category
        category: Only list modules in this category

    Returns:
        Modules in catalog order, or one group per non-empty category
    """
    if not grouped:
        return registry.list_modules(category=category)

    categories = {c.id: c for c in registry.list_categories()}
    groups = [
        ModuleGroup(category=categories[category_id], modules=modules)
        for category_id, modules in registry.modules_by_category().items()
        if category is None or category_id == category
    ]
    return groups


@router.get("/modules/{module_id}/dependencies", response_model=DependencyClosureResponse)
async def get_module_dependencies(
    module_id: str,
    registry: Annotated[ModuleRegistry, Depends(get_registry)],
) -> DependencyClosureResponse:
    """Get every module a module requires, directly or transitively.

    Raises:
        HTTPException: 404 if the module is unknown
    """
    try:
        dependencies = registry.dependency_closure(module_id)
    except UnknownModuleError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return DependencyClosureResponse(module_id=module_id, dependencies=dependencies)


@router.post("/validate", response_model=ValidateResponse)
async def validate_modules(
    request: ValidateRequest,
    registry: Annotated[ModuleRegistry, Depends(get_registry)],
) -> ValidateResponse:
    """Check a module selection.

    Always 200: problems are reported in the body, not as an error status.
    """
    result = validate_selection(request.modules, registry)
    return ValidateResponse(
        valid=result.valid,
        errors=result.errors,
        estimated_time=registry.estimate_compile_time(request.modules),
    )


@router.post("/preview", response_model=PreviewResponse)
async def preview_script(
    request: CompileRequest,
    registry: Annotated[ModuleRegistry, Depends(get_registry)],
    executor: Annotated[CompileExecutor, Depends(get_compile_executor)],
) -> PreviewResponse:
    """Generate the build script for a selection without starting a build.

    Raises:
        HTTPException: 400 with every validation error if the options are invalid
    """
    try:
        script = executor.preview(request.options, software=request.software)
    except ValidationFailedError as exc:
        raise HTTPException(status_code=400, detail={"error": "Validation failed", "details": exc.errors}) from exc

    return PreviewResponse(
        script=script,
        estimated_time=registry.estimate_compile_time(request.options.modules),
    )
