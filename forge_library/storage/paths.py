"""Where forged keeps its files.

Everything lives under FORGED_HOME (default: ./.forged):

    config/           daemon.yaml
    state/scripts/    generated build scripts, removed when a build ends
    logs/compile/     full build output, kept only for failed builds

config, state and logs can each be moved with FORGED_CONFIG_DIR,
FORGED_STATE_DIR and FORGED_LOG_DIR. Every getter creates its directory.
"""

import os
from pathlib import Path


def _ensure(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def _home_subdir(name: str, override_var: str) -> Path:
    override = os.environ.get(override_var)
    if override is not None:
        return _ensure(Path(override).resolve())
    return _ensure(get_home_dir() / name)


def get_home_dir() -> Path:
    """Root of all forged storage, from FORGED_HOME."""
    return Path(os.environ.get("FORGED_HOME", ".forged")).resolve()


def get_config_dir() -> Path:
    """Directory holding daemon.yaml ($FORGED_HOME/config)."""
    return _home_subdir("config", "FORGED_CONFIG_DIR")


def get_state_dir() -> Path:
    """Directory for runtime state ($FORGED_HOME/state)."""
    return _home_subdir("state", "FORGED_STATE_DIR")


def get_log_dir() -> Path:
    """Directory for log files ($FORGED_HOME/logs)."""
    return _home_subdir("logs", "FORGED_LOG_DIR")


def get_scripts_dir() -> Path:
    """Directory for generated build scripts.

    Scripts are written with mode 0755 and deleted once their task reaches
    a final state, so this directory is normally empty.
    """
    return _ensure(get_state_dir() / "scripts")


def get_compile_log_dir() -> Path:
    """Directory for per-task build output (<software>_<task_id>.log)."""
    return _ensure(get_log_dir() / "compile")
