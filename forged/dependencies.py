"""Shared dependency factories for FastAPI endpoints.

The registry, settings and executor are created once in the application
lifespan and kept on app.state; these factories hand them to endpoints and
give tests a single place to override them.
"""

from fastapi import Request

from forge_library.config import ForgeSettings
from forge_library.registry import ModuleRegistry
from forge_library.tasks import CompileExecutor


def get_settings(request: Request) -> ForgeSettings:
    """Get daemon settings.

    Returns:
        ForgeSettings loaded at startup
    """
    return request.app.state.settings


def get_registry(request: Request) -> ModuleRegistry:
    """Get module registry.

    Returns:
        ModuleRegistry loaded at startup
    """
    return request.app.state.registry


def get_compile_executor(request: Request) -> CompileExecutor:
    """Get compile task executor.

    Returns:
        CompileExecutor owning every build task of this daemon
    """
    return request.app.state.executor
