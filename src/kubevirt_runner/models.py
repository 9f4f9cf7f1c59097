"""
Pydantic models for the run configuration.

The run configuration (shell, execution method, SSH credentials) is
decided in ``prepare`` and written onto the instance as an annotation.
``run`` reads it back from there rather than from its own arguments,
so every script of a job runs exactly the way the machine was set up.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from . import LABEL_PREFIX
from .errors import InvalidRunConfig

RUN_CONFIG_ANNOTATION = f"{LABEL_PREFIX}/runconfig"


class ShellKind(str, Enum):
    """Shells a job script can be written for."""

    BASH = "bash"
    SH = "sh"
    PWSH = "pwsh"
    POWERSHELL = "powershell"


class ExecMethod(str, Enum):
    """How scripts reach the machine."""

    SSH = "ssh"


class SSHConfig(BaseModel):
    """SSH connection parameters. Password and private key are exclusive."""

    model_config = ConfigDict(populate_by_name=True)

    port: int = Field(default=22, ge=1, le=65535)
    user: str = ""
    password: Optional[str] = None
    private_key_path: Optional[str] = Field(default=None, alias="privateKeyPath")

    @field_validator("password", "private_key_path")
    @classmethod
    def empty_is_unset(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @model_validator(mode="after")
    def one_credential(self) -> "SSHConfig":
        if self.password and self.private_key_path:
            raise ValueError("ssh password and private key are mutually exclusive")
        return self


class RunConfig(BaseModel):
    """How the job's scripts are executed on its machine."""

    shell: ShellKind
    method: ExecMethod = ExecMethod.SSH
    ssh: SSHConfig = Field(default_factory=SSHConfig)

    def to_annotation(self) -> str:
        """Serialize for the instance annotation."""
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_annotation(cls, raw: Optional[str]) -> "RunConfig":
        """Parse the instance annotation written by ``to_annotation``.

        Raises:
            InvalidRunConfig: If the annotation is absent or malformed.
        """
        if not raw:
            raise InvalidRunConfig(
                f"Virtual Machine instance has no {RUN_CONFIG_ANNOTATION} annotation"
            )
        try:
            return cls.model_validate_json(raw)
        except ValidationError as exc:
            raise InvalidRunConfig(f"malformed {RUN_CONFIG_ANNOTATION} annotation: {exc}") from exc
