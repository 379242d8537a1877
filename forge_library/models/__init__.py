"""Data models shared by the library and the daemon."""

from .base import CamelCaseModel
from .base import FrozenCamelCaseModel
from .catalog import Category
from .catalog import CompileTier
from .catalog import Module
from .catalog import Preset
from .catalog import ReleaseChannel
from .catalog import Version
from .compile import CompileOptions
from .tasks import CompileTask
from .tasks import TaskStatus

__all__ = [
    "CamelCaseModel",
    "FrozenCamelCaseModel",
    "Category",
    "CompileTier",
    "Module",
    "Preset",
    "ReleaseChannel",
    "Version",
    "CompileOptions",
    "CompileTask",
    "TaskStatus",
]
