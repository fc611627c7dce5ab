"""Commands that run inside a Linux container through a platform driver."""

from __future__ import annotations

import dataclasses
import enum
import logging
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, Optional

from codchi.commands import CommandError, CommandRunner, HostCommand, OutputType
from codchi.util import LinuxPath

log = logging.getLogger(__name__)


class LinuxUser(enum.Enum):
    ROOT = "root"
    DEFAULT = "default"


class ProgramKind(enum.Enum):
    RUN = "run"
    RAW = "raw"
    SCRIPT = "script"


@dataclass(frozen=True)
class Program:
    """What to run: a program via the init wrapper, a raw program, or a script."""

    kind: ProgramKind
    program: str = ""
    args: tuple[str, ...] = ()
    script: str = ""


class LinuxCommandTarget(ABC):
    """A container that commands can be run in."""

    @abstractmethod
    def build(
        self,
        user: Optional[LinuxUser],
        cwd: Optional[LinuxPath],
        env: dict[str, str],
    ) -> HostCommand:
        """Return the host command prefix that enters the container."""

    @abstractmethod
    def quote_shell_arg(self, arg: str) -> str:
        """Quote an argument as needed by this target."""

    def run(self, program: str, args: Iterable[str] = ()) -> "LinuxCommandBuilder":
        return LinuxCommandBuilder(
            self, Program(ProgramKind.RUN, program=program, args=tuple(args))
        )

    def raw(self, program: str, args: Iterable[str] = ()) -> "LinuxCommandBuilder":
        return LinuxCommandBuilder(
            self, Program(ProgramKind.RAW, program=program, args=tuple(args))
        )

    def script(self, script: str) -> "LinuxCommandBuilder":
        return LinuxCommandBuilder(self, Program(ProgramKind.SCRIPT, script=script))

    def realpath(self, path: LinuxPath) -> LinuxPath:
        resolved = self.run("realpath", [path.path]).output_utf8_ok().strip()
        log.debug("Resolved real path: '%s' -> '%s'", path, resolved)
        return LinuxPath(resolved)


@dataclass(repr=False)
class LinuxCommandBuilder(CommandRunner):
    """A command for a Linux target with optional user, working dir and env."""

    driver: LinuxCommandTarget
    program: Program
    user: Optional[LinuxUser] = None
    cwd: Optional[LinuxPath] = None
    env: dict[str, str] = field(default_factory=dict)

    def with_user(self, user: LinuxUser) -> "LinuxCommandBuilder":
        return dataclasses.replace(self, user=user)

    def with_cwd(self, cwd: LinuxPath) -> "LinuxCommandBuilder":
        return dataclasses.replace(self, cwd=cwd)

    def with_env(self, env: dict[str, str]) -> "LinuxCommandBuilder":
        return dataclasses.replace(self, env=dict(env))

    def to_command(self) -> HostCommand:
        cmd = self.driver.build(self.user, self.cwd, self.env)
        kind = self.program.kind
        if kind is ProgramKind.RUN:
            cmd.args(["run", self.program.program, *self.program.args])
        elif kind is ProgramKind.SCRIPT:
            cmd.arg("runin")
            cmd.pipe_stdin = True
        else:
            cmd.args([self.program.program, *self.program.args])
        return cmd

    def spawn(self, output: OutputType) -> subprocess.Popen:
        process = self.to_command().spawn(output)
        if self.program.kind is ProgramKind.SCRIPT and process.stdin is not None:
            stdin, process.stdin = process.stdin, None
            try:
                stdin.write(self.program.script.encode("utf-8"))
                stdin.close()
            except OSError as err:
                raise CommandError("Failed to call command.") from err
        return process

    def __repr__(self) -> str:
        return (
            f"LinuxCommandBuilder(driver={self.driver!r}, program={self.program!r}, "
            f"user={self.user!r}, cwd={self.cwd!r}, cmd={self.to_command()!r})"
        )