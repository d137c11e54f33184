"""Host configuration for termbridge.

Loads settings from a YAML configuration file with ``TERMBRIDGE_``
environment variable overrides and ``.env`` support. The Automation API's
own config lives separately under ``<data_dir>/automation``.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/termbridge.yaml")


class ShellConfig(BaseModel):
    shell_command: str = Field(default="/bin/bash")
    rows: int = Field(default=24, gt=0)
    cols: int = Field(default=80, gt=0)
    command_delay: float = Field(default=0.2, ge=0)


class ClientConfig(BaseModel):
    client_name: str = Field(default="termbridge-cli", min_length=1, max_length=128)
    timeout: float = Field(default=130.0, gt=0)


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for the termbridge host.

    YAML values arrive as init kwargs; environment variables and .env
    entries take precedence over them.
    """

    model_config = SettingsConfigDict(
        env_prefix="TERMBRIDGE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    data_dir: Path = Field(default_factory=lambda: Path.home() / ".termbridge")
    shell: ShellConfig = Field(default_factory=ShellConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("data_dir")
    @classmethod
    def _expand_data_dir(cls, value: Path) -> Path:
        return value.expanduser()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: env vars > .env file > YAML file > defaults
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    yaml_data = {}
    if path.exists():
        with open(path) as f:
            yaml_data = yaml.safe_load(f) or {}
        logger.info("Loaded configuration from %s", path)
    else:
        logger.warning("Config file %s not found, using defaults + env vars", path)

    return Settings(**yaml_data)
