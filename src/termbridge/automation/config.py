"""On-disk automation config: schema, validation and persistence.

The config file is JSON with camelCase keys::

    {
      "version": 1,
      "enabled": false,
      "allowedRoots": ["/home/me/work"],
      "maxCommands": 25,
      "maxCommandLength": 4096,
      "maxRequestBytes": 262144,
      "requestTimeoutMs": 20000,
      "rateLimitPerMinute": 60
    }

A missing file is replaced by the default above (with no roots). Any
other problem is an :class:`AutomationConfigError`; there is no degraded
mode.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from termbridge.automation.errors import (
    AutomationConfigError,
    NotARegularFileError,
    describe_validation_error,
)
from termbridge.automation.fs_guard import (
    ensure_not_symlink,
    ensure_private_dir,
    read_private_file,
    write_private_file,
)

logger = logging.getLogger(__name__)

CONFIG_VERSION = 1
CONFIG_FILENAME = "config.json"

# Inclusive upper bounds; every bounded field starts at 1.
FIELD_MAXIMA: dict[str, int] = {
    "maxCommands": 200,
    "maxCommandLength": 16_384,
    "maxRequestBytes": 2 * 1024 * 1024,
    "requestTimeoutMs": 120_000,
    "rateLimitPerMinute": 1000,
}


class AutomationConfig(BaseModel):
    """Validated, immutable automation config."""

    model_config = ConfigDict(frozen=True, extra="forbid", alias_generator=to_camel)

    version: int
    enabled: bool = False
    allowed_roots: tuple[str, ...] = ()
    max_commands: int = 25
    max_command_length: int = 4096
    max_request_bytes: int = 256 * 1024
    request_timeout_ms: int = 20_000
    rate_limit_per_minute: int = 60

    @field_validator("version", mode="before")
    @classmethod
    def _check_version(cls, value: Any) -> int:
        if isinstance(value, bool) or value != CONFIG_VERSION:
            raise ValueError(f"version must be {CONFIG_VERSION}")
        return CONFIG_VERSION

    @field_validator("enabled", mode="before")
    @classmethod
    def _check_enabled(cls, value: Any) -> bool:
        if not isinstance(value, bool):
            raise ValueError("enabled must be a boolean")
        return value

    @field_validator("allowed_roots", mode="before")
    @classmethod
    def _check_allowed_roots(cls, value: Any) -> tuple[str, ...]:
        if not isinstance(value, (list, tuple)):
            raise ValueError("allowedRoots must be an array")
        for root in value:
            if not isinstance(root, str) or not root:
                raise ValueError("allowedRoots entries must be non-empty strings")
            if not os.path.isabs(root):
                raise ValueError(f"allowedRoots entry {root!r} must be an absolute path")
        return tuple(dict.fromkeys(value))

    @field_validator(
        "max_commands",
        "max_command_length",
        "max_request_bytes",
        "request_timeout_ms",
        "rate_limit_per_minute",
        mode="before",
    )
    @classmethod
    def _check_bounds(cls, value: Any, info: ValidationInfo) -> int:
        name = to_camel(info.field_name)
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{name} must be an integer")
        maximum = FIELD_MAXIMA[name]
        if not 1 <= value <= maximum:
            raise ValueError(f"{name} must be between 1 and {maximum}")
        return value

    @model_validator(mode="after")
    def _check_enabled_has_roots(self) -> AutomationConfig:
        if self.enabled and not self.allowed_roots:
            raise ValueError("allowedRoots must contain at least one path when enabled")
        return self

    @classmethod
    def default(cls) -> AutomationConfig:
        return cls(version=CONFIG_VERSION)

    @classmethod
    def from_data(cls, data: Any) -> AutomationConfig:
        """Validate parsed JSON, raising :class:`AutomationConfigError`."""
        if not isinstance(data, dict):
            raise AutomationConfigError("Invalid automation config: must be a JSON object")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise AutomationConfigError(
                f"Invalid automation config: {describe_validation_error(e)}"
            ) from e

    def to_data(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ConfigStore:
    """Owns the automation directory's ``config.json``."""

    def __init__(self, automation_dir: Path) -> None:
        self._dir = Path(automation_dir)
        self._path = self._dir / CONFIG_FILENAME

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> AutomationConfig:
        """Read and validate the config, writing the default when absent."""
        ensure_not_symlink(self._dir, self._path)
        ensure_private_dir(self._dir)
        try:
            raw = read_private_file(self._path)
        except NotARegularFileError as e:
            raise AutomationConfigError(
                f"Failed to read automation config {self._path}: not a regular file"
            ) from e
        except UnicodeDecodeError as e:
            raise AutomationConfigError(
                f"Failed to parse automation config {self._path}: {e}"
            ) from e
        if raw is None:
            config = AutomationConfig.default()
            self.save(config)
            logger.info("Wrote default automation config to %s", self._path)
            return config
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise AutomationConfigError(
                f"Failed to parse automation config {self._path}: {e}"
            ) from e
        return AutomationConfig.from_data(data)

    def save(self, config: AutomationConfig) -> None:
        write_private_file(self._path, json.dumps(config.to_data(), indent=2) + "\n")

    def update(self, **changes: Any) -> AutomationConfig:
        """Load, apply ``changes`` (field names), re-validate and persist."""
        current = self.load()
        data = current.model_dump()
        data.update(changes)
        try:
            updated = AutomationConfig.model_validate(
                {to_camel(key): value for key, value in data.items()}
            )
        except ValidationError as e:
            raise AutomationConfigError(
                f"Invalid automation config: {describe_validation_error(e)}"
            ) from e
        self.save(updated)
        return updated
