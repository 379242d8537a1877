"""Storage module for forge_library.

Resolves on-disk locations for configuration, generated scripts and build logs.

Public Interface:
    - get_home_dir: Get FORGED_HOME
    - get_config_dir: Get config directory
    - get_state_dir: Get state directory
    - get_log_dir: Get log directory
    - get_scripts_dir: Get generated script directory
    - get_compile_log_dir: Get per-task build log directory
"""

from .paths import get_compile_log_dir
from .paths import get_config_dir
from .paths import get_home_dir
from .paths import get_log_dir
from .paths import get_scripts_dir
from .paths import get_state_dir

__all__ = [
    "get_home_dir",
    "get_config_dir",
    "get_state_dir",
    "get_log_dir",
    "get_scripts_dir",
    "get_compile_log_dir",
]
