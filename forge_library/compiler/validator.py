"""Dependency validation for module selections.

Contract:
- Inputs: A module selection (or full CompileOptions) and a ModuleRegistry
- Outputs: ValidationResult listing every problem found
- Side Effects: None (pure)

All errors are collected; nothing short-circuits, so a caller sees every
problem with a selection at once. The executor re-runs validation right
before creating a task, whatever the caller says it already checked.
"""

from collections.abc import Iterable
from typing import TYPE_CHECKING

from pydantic import Field

from ..models.base import CamelCaseModel
from ..models.compile import CompileOptions
from .sources import check_source_url

if TYPE_CHECKING:
    from ..registry.registry import ModuleRegistry


class ValidationResult(CamelCaseModel):
    """Result of validating a selection."""

    valid: bool = Field(description="True iff errors is empty")
    errors: list[str] = Field(default_factory=list, description="Every problem found, in selection order")


class ValidationFailedError(ValueError):
    """Raised when a selection fails validation and no task may be created."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Validation failed")


def validate_selection(selection: Iterable[str], registry: "ModuleRegistry") -> ValidationResult:
    """Check a module selection against requires and conflicts edges.

    For every id in the selection, in order:
    1. unknown ids are reported and skipped,
    2. every required id missing from the selection is reported,
    3. every conflicting id present in the selection is reported.

    A conflicting pair is reported from both sides when both modules
    declare it.

    Args:
        selection: Module ids (duplicates are checked once)
        registry: Catalog to check against

    Returns:
        ValidationResult, valid iff no errors

    Example:
        >>> validate_selection(["http_v2_module"], registry).errors
        ['Module "HTTP/2" requires "SSL/HTTPS"']
    """
    ids = list(dict.fromkeys(selection))
    selected = set(ids)
    errors: list[str] = []

    for module_id in ids:
        if not registry.has_module(module_id):
            errors.append(f"Unknown module: {module_id}")
            continue

        module = registry.get_module(module_id)

        for required_id in module.requires:
            if required_id not in selected:
                errors.append(f'Module "{module.name}" requires "{_display_name(required_id, registry)}"')

        for conflict_id in module.conflicts:
            if conflict_id in selected:
                errors.append(f'Module "{module.name}" conflicts with "{_display_name(conflict_id, registry)}"')

    return ValidationResult(valid=not errors, errors=errors)


def validate_options(
    options: CompileOptions,
    registry: "ModuleRegistry",
    allowed_source_hosts: list[str] | tuple[str, ...] = (),
) -> ValidationResult:
    """Validate full build options: the module selection plus custom sources.

    Args:
        options: Build options as supplied by the caller
        registry: Catalog to check against
        allowed_source_hosts: Hosts custom sources may come from (empty means any)

    Returns:
        ValidationResult covering the selection and every custom source URL
    """
    result = validate_selection(options.modules, registry)
    errors = list(result.errors)

    for index, url in enumerate(options.custom_modules, start=1):
        check = check_source_url(url, allowed_source_hosts)
        if not check.ok:
            errors.append(f"Custom module #{index} ({url}): {check.reason}")

    return ValidationResult(valid=not errors, errors=errors)


def _display_name(module_id: str, registry: "ModuleRegistry") -> str:
    if registry.has_module(module_id):
        return registry.get_module(module_id).name
    return module_id
