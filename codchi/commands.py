"""Running external commands with collected, inherited or streamed output."""

from __future__ import annotations

import enum
import json
import logging
import os
import queue
import shlex
import subprocess
import sys
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import IO, Any, Callable, Iterator, Optional, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")


class CommandError(Exception):
    """A command could not be run or its output could not be used."""


class CommandFailed(CommandError):
    """A command exited with a non-zero status."""

    def __init__(self, cmd: str, exit_status: int, stderr: str) -> None:
        self.cmd = cmd
        self.exit_status = exit_status
        self.stderr = stderr
        super().__init__(
            f"{cmd} failed with exit status {exit_status}. Stderr:\n{stderr}"
        )


class OutputParseError(CommandError):
    """The output of a command could not be parsed."""


class OutputType(enum.Enum):
    INHERIT = "inherit"
    COLLECT = "collect"
    DISCARD = "discard"

    @property
    def stdio(self) -> Optional[int]:
        """The value to pass as stdout/stderr to ``subprocess.Popen``."""
        if self is OutputType.COLLECT:
            return subprocess.PIPE
        if self is OutputType.DISCARD:
            return subprocess.DEVNULL
        return None


_CLOSED = object()


def _pump(stream: IO[bytes], is_stderr: bool, sink: "queue.Queue[Any]") -> None:
    try:
        for raw in stream:
            line = raw.decode("utf-8", errors="replace")
            line = line.removesuffix("\n").removesuffix("\r")
            sink.put((is_stderr, line))
    finally:
        stream.close()
        sink.put(_CLOSED)


@dataclass
class StreamingChild:
    """A running process whose stdout and stderr lines arrive in one queue."""

    process: subprocess.Popen
    threads: list[threading.Thread]
    _queue: "queue.Queue[Any]" = field(default_factory=queue.Queue)
    _open: int = 2

    def _next_line(self, timeout: Optional[float]) -> Optional[tuple[bool, str]]:
        """Return the next ``(is_stderr, line)``, ``None`` once both streams closed.

        Raises ``queue.Empty`` when nothing arrives within ``timeout``.
        """
        while self._open:
            item = self._queue.get(timeout=timeout)
            if item is _CLOSED:
                self._open -= 1
                continue
            return item
        return None

    def __iter__(self) -> Iterator[tuple[bool, str]]:
        while (item := self._next_line(None)) is not None:
            yield item


class CommandRunner(ABC):
    """Shared ways of running a command once it knows how to spawn itself."""

    @abstractmethod
    def spawn(self, output: OutputType) -> subprocess.Popen:
        """Start the process with stdout and stderr set up for ``output``."""

    def output_ok(self) -> bytes:
        log.debug("Running command: %r", self)
        process = self.spawn(OutputType.COLLECT)
        stdout, stderr = process.communicate()
        stdout = stdout or b""
        if process.returncode != 0:
            err_text = (stderr or b"").decode("utf-8", errors="replace")
            log.debug(
                "Got error when running %r:\nStdout:\n%s\nStderr:\n%s",
                self,
                stdout.decode("utf-8", errors="replace"),
                err_text,
            )
            raise CommandFailed(repr(self), process.returncode, err_text)
        log.debug("Got output:\n%s", stdout.decode("utf-8", errors="replace"))
        return stdout

    def output_utf8_ok(self) -> str:
        return self.output_ok().decode("utf-8", errors="replace")

    def output_json(self) -> Any:
        output = self.output_ok()
        try:
            return json.loads(output)
        except ValueError as err:
            raise OutputParseError("Failed parsing JSON output.") from err

    def output_from_str(self, parse: Callable[[str], T]) -> T:
        output = self.output_ok()
        try:
            return parse(output.decode("utf-8"))
        except (ValueError, KeyError) as err:
            raise OutputParseError(f"Failed parsing output string: {err}") from err

    def wait_ok(self) -> None:
        self.output_ok()

    def retry_until_ok(self, interval: float = 0.5) -> None:
        while True:
            try:
                self.wait_ok()
                return
            except CommandError:
                time.sleep(interval)

    def spawn_streaming(self) -> StreamingChild:
        """Spawn the process and stream both stdout and stderr line by line."""
        log.debug("Running command: %r", self)
        process = self.spawn(OutputType.COLLECT)
        child = StreamingChild(process=process, threads=[])
        for stream, is_stderr in ((process.stdout, False), (process.stderr, True)):
            thread = threading.Thread(
                target=_pump, args=(stream, is_stderr, child._queue), daemon=True
            )
            thread.start()
            child.threads.append(thread)
        return child

    def output_ok_streaming(
        self,
        cancel: Optional[threading.Event] = None,
        streamer: Optional[Callable[[str], None]] = None,
    ) -> str:
        """Wait for the process while passing every line to ``streamer``.

        Returns the collected stdout, without lines starting with ``@nix``.
        Setting ``cancel`` kills the process; a cancelled run does not fail.
        """
        child = self.spawn_streaming()
        stdout: list[str] = []
        stderr: list[str] = []
        was_canceled = False
        while True:
            try:
                item = child._next_line(0.1)
            except queue.Empty:
                if cancel is not None and cancel.is_set() and not was_canceled:
                    was_canceled = True
                    child.process.kill()
                continue
            if item is None:
                break
            is_stderr, line = item
            if not line.startswith("@nix"):
                (stderr if is_stderr else stdout).append(line + "\n")
            if streamer is not None:
                streamer(line)

        for thread in child.threads:
            thread.join()
        status = child.process.wait()
        out = "".join(stdout)
        if was_canceled or status == 0:
            log.debug("Got output:\n%s", out)
            return out
        err_text = "".join(stderr)
        log.debug("Got error when running %r:\n%s", self, err_text)
        raise CommandFailed(repr(self), status, err_text)

    def exec(self) -> None:
        """Run with inherited stdio and exit with the child's exit code."""
        log.debug("Execing command: %r", self)
        code = self.spawn(OutputType.INHERIT).wait()
        sys.exit(code if code >= 0 else 1)

    def wait_inherit(self) -> None:
        log.debug("Executing command with inherited stdio: %r", self)
        code = self.spawn(OutputType.INHERIT).wait()
        if code != 0:
            raise CommandFailed(repr(self), code, "")


@dataclass(repr=False)
class HostCommand(CommandRunner):
    """A program to run directly on the host."""

    program: str
    arguments: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    cwd: Optional[str] = None
    pipe_stdin: bool = False

    def arg(self, value: "str | os.PathLike[str]") -> "HostCommand":
        self.arguments.append(os.fspath(value))
        return self

    def args(self, values) -> "HostCommand":
        self.arguments.extend(os.fspath(value) for value in values)
        return self

    def spawn(self, output: OutputType) -> subprocess.Popen:
        env = {**os.environ, **self.env} if self.env else None
        try:
            return subprocess.Popen(
                [self.program, *self.arguments],
                stdin=subprocess.PIPE if self.pipe_stdin else None,
                stdout=output.stdio,
                stderr=output.stdio,
                env=env,
                cwd=self.cwd,
            )
        except OSError as err:
            raise CommandError("Failed to call command.") from err

    def __repr__(self) -> str:
        return shlex.join([self.program, *self.arguments])