"""Value types exchanged by the Automation API service.

Credentials live for as long as the listener does; bootstrap requests and
results are transient and never persisted.
"""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

LOOPBACK_HOST = "127.0.0.1"


class AutomationCredentials(BaseModel):
    """Ephemeral listen address and bearer token of a running service."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(default=LOOPBACK_HOST)
    port: int = Field(gt=0, le=65535)
    token: str = Field(min_length=1, repr=False)


class AutomationStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool


class BootstrapRequest(BaseModel):
    """A validated ``{cwd, commands}`` payload.

    Limits come from the live config and are supplied through the
    validation context as ``max_commands`` and ``max_command_length``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    cwd: str
    commands: tuple[str, ...]

    @field_validator("cwd", mode="before")
    @classmethod
    def _check_cwd(cls, value: Any) -> str:
        if not isinstance(value, str) or not value:
            raise ValueError("cwd must be a non-empty string")
        if not os.path.isabs(value):
            raise ValueError("cwd must be an absolute path")
        return value

    @field_validator("commands", mode="before")
    @classmethod
    def _check_commands(cls, value: Any, info: ValidationInfo) -> tuple[str, ...]:
        if not isinstance(value, (list, tuple)):
            raise ValueError("commands must be an array")
        if not value:
            raise ValueError("commands must contain at least one command")
        limits = info.context or {}
        max_commands = limits.get("max_commands")
        max_length = limits.get("max_command_length")
        if max_commands is not None and len(value) > max_commands:
            raise ValueError(f"commands must contain at most {max_commands} entries")
        for index, command in enumerate(value):
            if not isinstance(command, str) or not command:
                raise ValueError(f"commands[{index}] must be a non-empty string")
            if max_length is not None and len(command) > max_length:
                raise ValueError(
                    f"commands[{index}] exceeds the maximum length of {max_length}"
                )
        return tuple(value)

    def to_payload(self) -> dict[str, Any]:
        return {"cwd": self.cwd, "commands": list(self.commands)}


class BootstrapResult(BaseModel):
    """What the session collaborator hands back for a new session."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1)
