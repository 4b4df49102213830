"""Configuration models for the restore agent using Pydantic."""

import socket

from pydantic import BaseModel, Field, field_validator

from restore_agent.core.locks import RESTORE_ID_PATTERN

DEFAULT_DESTINATION = "/data/persistence/backup"


def _default_hostname() -> str:
    # Pod hostnames carry the StatefulSet ordinal
    return socket.gethostname()


class RestoreOverrides(BaseModel):
    """CLI flag and environment variable overrides for configuration."""

    bucket: str = ""
    destination: str = ""
    hostname: str = ""
    secret_name: str = ""
    restore_id: str = ""
    timeout_seconds: float | None = None


class RestoreConfig(BaseModel):
    """Main configuration for the restore agent."""

    model_config = {"populate_by_name": True, "validate_assignment": True}

    bucket: str = Field("", alias="bucket-uri")
    destination: str = DEFAULT_DESTINATION
    hostname: str = Field(default_factory=_default_hostname)
    secret_name: str = Field("", alias="secret-name")
    restore_id: str = Field("", alias="restore-id")
    timeout_seconds: float | None = Field(None, alias="timeout-seconds", gt=0)

    # Runtime fields
    verbose: bool = False
    trace: bool = False

    @field_validator("restore_id")
    @classmethod
    def _check_restore_id(cls, value: str) -> str:
        if not RESTORE_ID_PATTERN.fullmatch(value):
            raise ValueError("restore id may only contain letters, digits, '-' and '_'")
        return value
