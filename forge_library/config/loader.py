"""daemon.yaml handling for the forged daemon.

Contract:
- Inputs: daemon.yaml (optional), FORGED_* environment variables
- Outputs: ForgeSettings
- Side Effects: Writes a default daemon.yaml to the config dir on first load
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from ..storage.paths import get_config_dir
from .settings import ENV_PREFIX
from .settings import ForgeSettings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = """# forged daemon configuration
# Environment variables (FORGED_<KEY>) take precedence over this file

# Server settings
host: "127.0.0.1"
port: 8430
log_level: "info"

# Compile tasks
# Lines of build output kept in memory per task
log_buffer_lines: 100
# Builds allowed to run at the same time; extra tasks wait in "pending"
max_concurrent_builds: 2
# Terminate builds that run longer than this many seconds (unset = no limit)
# build_timeout_seconds: 7200
# Seconds to wait for a cancelled build before force killing it
cancel_grace_seconds: 10
shell: "bash"

# Hosts that custom module sources may be cloned from (empty list = any host)
allowed_source_hosts:
  - github.com
  - gitlab.com
  - bitbucket.org
  - codeberg.org
"""


def get_config_path() -> Path:
    """Location of daemon.yaml inside the config directory."""
    return get_config_dir() / "daemon.yaml"


def create_default_config() -> None:
    """Write the commented default daemon.yaml unless one is already there."""
    config_path = get_config_path()

    if config_path.exists():
        logger.debug(f"Config file already exists: {config_path}")
        return

    config_path.write_text(DEFAULT_CONFIG, encoding="utf-8")
    logger.info(f"Created default config: {config_path}")


def _read_yaml(config_path: Path) -> dict[str, Any]:
    """Read a config file, falling back to an empty mapping when it is unusable."""
    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load config from {config_path}: {e}")
        logger.info("Using default settings and environment variables")
        return {}

    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Failed to load config from {config_path}: expected a mapping, got {type(data).__name__}")
        return {}

    logger.debug(f"Loaded config from {config_path}")
    return data


def _without_env_overrides(values: dict[str, Any]) -> dict[str, Any]:
    """Drop file keys whose FORGED_<KEY> variable is set, so the environment wins."""
    return {key: value for key, value in values.items() if f"{ENV_PREFIX}{str(key).upper()}" not in os.environ}


def load_config(config_path: Path | None = None) -> ForgeSettings:
    """Load daemon configuration from YAML and environment.

    Precedence, lowest first: field defaults, daemon.yaml, FORGED_* variables.
    A missing daemon.yaml in the config directory is created with defaults;
    an explicit config_path is only read.

    Args:
        config_path: Optional config file path (default: daemon.yaml in config dir)

    Returns:
        Validated daemon settings

    Raises:
        pydantic.ValidationError: If a setting has an invalid value
    """
    if config_path is None:
        config_path = get_config_path()
        create_default_config()

    file_settings = _read_yaml(config_path) if config_path.exists() else {}
    settings = ForgeSettings(**_without_env_overrides(file_settings))

    logger.info(
        f"Daemon configuration loaded: host={settings.host}, port={settings.port}, "
        f"max_concurrent_builds={settings.max_concurrent_builds}"
    )

    return settings
