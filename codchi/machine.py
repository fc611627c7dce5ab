"""Machine status values and the environment file written into a machine."""

from __future__ import annotations

import enum
import os
from pathlib import Path
from typing import Mapping, Union

StrPath = Union[str, "os.PathLike[str]"]


class PlatformStatus(enum.Enum):
    """Whether the container backing a machine exists and runs."""

    NOT_INSTALLED = "NotInstalled"
    STOPPED = "Stopped"
    RUNNING = "Running"


class ConfigStatus(enum.Enum):
    """The status of a machine's NixOS configuration."""

    NOT_INSTALLED = "NotInstalled"
    """Machine was added / configured, but not built and installed."""

    MODIFIED = "Modified"
    """Machine was built and installed, but flake.nix has changed."""

    UPDATES_AVAILABLE = "UpdatesAvailable"
    """Machine was built and installed, but flake.lock has changed."""

    UP_TO_DATE = "UpToDate"
    """Machine is built, installed and up to date."""

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, text: str) -> "ConfigStatus":
        """Parse the textual name of a status, raising ``ValueError`` if unknown."""
        for status in cls:
            if status.value == text:
                return status
        raise ValueError(f"Unknown config status: {text!r}")


def render_env_file(
    secrets: Mapping[str, str], machine_name: str, debug: bool
) -> str:
    """Return the shell snippet exporting a machine's secrets and settings."""
    env = dict(secrets)
    env["DEBUG"] = "1" if debug else ""
    env["MACHINE_NAME"] = machine_name
    return "".join(f'export CODCHI_{key}="{value}"\n' for key, value in env.items())


def write_env_file(
    target: StrPath, secrets: Mapping[str, str], machine_name: str, debug: bool
) -> Path:
    """Write the environment file to ``target``, replacing any previous content."""
    path = Path(target)
    content = render_env_file(secrets, machine_name, debug)
    with open(path, "w", encoding="utf-8") as env_file:
        env_file.write(content)
        env_file.flush()
        os.fsync(env_file.fileno())
    return path