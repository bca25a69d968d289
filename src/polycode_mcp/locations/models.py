"""Location models: where threads, commands and git workspaces execute."""

from __future__ import annotations

import shlex
from typing import Literal, Sequence

from pydantic import BaseModel, Field, field_validator, model_validator

from ..keys import validate_identifier

ConnectionType = Literal["local", "ssh", "wsl"]

SSH_CONNECT_TIMEOUT = 10


class SshConfig(BaseModel):
    """Connection details for a remote host reached over SSH."""

    host: str = Field(..., description="Hostname or address of the remote machine.")
    user: str | None = Field(default=None, description="Remote login name.")
    port: int = Field(default=22, ge=1, le=65535)
    key_path: str | None = Field(default=None, description="Identity file passed to ssh -i.")

    @field_validator("host")
    @classmethod
    def _require_host(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("SSH host must not be empty")
        return normalized

    @property
    def destination(self) -> str:
        return f"{self.user}@{self.host}" if self.user else self.host


class WslConfig(BaseModel):
    distro: str = Field(..., description="WSL distribution name passed to wsl -d.")


class Location(BaseModel):
    """An execution target a project's threads and commands can run on."""

    id: str = Field(..., description="Unique identifier, used in command instance keys.")
    project_id: str | None = Field(default=None, description="Owning project, if scoped.")
    label: str = Field(default="", description="Display name.")
    connection_type: ConnectionType = "local"
    path: str = Field(..., description="Working directory on the target.")
    ssh: SshConfig | None = None
    wsl: WslConfig | None = None

    @field_validator("id")
    @classmethod
    def _validate_id(cls, value: str) -> str:
        return validate_identifier(value.strip(), kind="location id")

    @field_validator("path")
    @classmethod
    def _require_path(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Location path must not be empty")
        return value

    @model_validator(mode="after")
    def _check_connection(self) -> "Location":
        if self.connection_type == "ssh" and self.ssh is None:
            raise ValueError(f"Location '{self.id}' uses ssh but has no ssh settings")
        if self.connection_type == "wsl" and self.wsl is None:
            raise ValueError(f"Location '{self.id}' uses wsl but has no wsl settings")
        return self

    @property
    def is_local(self) -> bool:
        return self.connection_type == "local"

    def wrap_command(self, argv: Sequence[str]) -> list[str]:
        """Return the argv that runs ``argv`` on this location."""

        if self.connection_type == "wsl":
            assert self.wsl is not None
            return ["wsl", "-d", self.wsl.distro, "--", *argv]

        if self.connection_type == "ssh":
            assert self.ssh is not None
            command = ["ssh", "-T", "-o", f"ConnectTimeout={SSH_CONNECT_TIMEOUT}"]
            command += ["-o", "StrictHostKeyChecking=accept-new"]
            if self.ssh.port != 22:
                command += ["-p", str(self.ssh.port)]
            if self.ssh.key_path:
                command += ["-i", self.ssh.key_path]
            remote = shlex.join(argv)
            command += [self.ssh.destination, f"bash -lc {shlex.quote(remote)}"]
            return command

        return list(argv)

    def git_command(self, executable: str, *args: str) -> list[str]:
        return self.wrap_command([executable, "-C", self.path, *args])


def local_location(path: str) -> Location:
    """Ad-hoc local location for a workspace path with no configured location."""

    return Location(id="local", label="Local", path=path)


__all__ = ["ConnectionType", "Location", "SshConfig", "WslConfig", "local_location"]
