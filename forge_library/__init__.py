"""forge library layer.

Business logic for compiling nginx from source: the module catalog,
selection validation, build script generation and supervised build tasks.
The forged daemon is a thin transport over this package.

Public Interface:
    Modules:
    - registry: Module catalog (modules, versions, presets)
    - compiler: Validation and script generation
    - tasks: Task store and executor
    - config: Configuration loading
    - models: Shared data structures
    - storage: On-disk locations
"""

from .models import CompileOptions
from .models import CompileTask
from .models import TaskStatus

__all__ = [
    "CompileOptions",
    "CompileTask",
    "TaskStatus",
]
