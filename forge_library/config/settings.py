"""Settings models for forged daemon.

This module defines the configuration structure for the daemon and the
compile task executor it hosts.

Contract:
- Inputs: Environment variables, YAML files
- Outputs: Validated settings objects
- Side Effects: None (read-only)
"""

from pydantic import Field
from pydantic import field_validator
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict

ENV_PREFIX = "FORGED_"

DEFAULT_ALLOWED_SOURCE_HOSTS = [
    "github.com",
    "gitlab.com",
    "bitbucket.org",
    "codeberg.org",
]


class ForgeSettings(BaseSettings):
    """Configuration for forged daemon.

    Attributes:
        host: Listen address (default: 127.0.0.1)
        port: Listen port (default: 8430)
        log_level: Logging level (default: info)
        cors_origins: Allowed CORS origins
        log_buffer_lines: In-memory log lines kept per task (default: 100)
        max_concurrent_builds: Builds allowed to run at once (default: 2)
        build_timeout_seconds: Kill builds running longer than this (default: no limit)
        cancel_grace_seconds: Wait before SIGKILL when cancelling with wait (default: 10)
        shell: Interpreter used to run generated scripts (default: bash)
        allowed_source_hosts: Hosts custom module sources may be cloned from
        events_poll_seconds: Poll interval of the task event stream

    Example:
        >>> settings = ForgeSettings()
        >>> assert settings.host == "127.0.0.1"
        >>> assert settings.log_buffer_lines == 100
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    host: str = "127.0.0.1"
    port: int = Field(default=8430, ge=1, le=65535)
    log_level: str = "info"
    cors_origins: list[str] = Field(
        default=[
            "http://localhost:5173",  # Vite dev server
            "http://localhost:3000",
        ]
    )

    # Compile task executor
    log_buffer_lines: int = Field(default=100, ge=1)
    max_concurrent_builds: int = Field(default=2, ge=1)
    build_timeout_seconds: int | None = Field(default=None, ge=1)
    cancel_grace_seconds: float = Field(default=10.0, gt=0)
    shell: str = "bash"
    allowed_source_hosts: list[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_SOURCE_HOSTS))
    events_poll_seconds: float = Field(default=1.0, gt=0)

    @field_validator("allowed_source_hosts")
    @classmethod
    def normalize_hosts(cls, v: list[str]) -> list[str]:
        """Lower-case host names and drop blanks.

        Args:
            v: Host names as configured

        Returns:
            Normalized host names
        """
        return [host.strip().lower() for host in v if host.strip()]
