"""Supervise nix and restart it when it appears to be deadlocked.

Nix is considered inactive when CPU usage, network traffic and output all stay
quiet. After the inactivity limit, nix is killed, its store locks are removed
and it is started again; nix continues the build where it left off.
"""

from __future__ import annotations

import enum
import os
import subprocess
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import IO, Callable, Iterable, Optional, Sequence

import psutil


class LogLevel(enum.IntEnum):
    """Nix log levels used for the messages this supervisor emits."""

    ERR = 0
    DEBUG = 3
    TRACE = 4


def format_log(level: LogLevel, msg: str) -> str:
    """Render a message as a nix structured log line."""
    return f'@nix {{ "action": "msg", "level": {int(level)}, "msg": "ndd> {msg}" }}'


def _log(level: LogLevel, msg: str) -> None:
    print(format_log(level, msg), file=sys.stderr, flush=True)


class ActivityClock:
    """Thread-safe record of the last moment something happened."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last = time.monotonic()

    def touch(self) -> None:
        with self._lock:
            self._last = time.monotonic()

    def idle_for(self) -> float:
        """Seconds since the last ``touch``."""
        with self._lock:
            last = self._last
        return time.monotonic() - last


def is_active(
    cpu_usage: float, network_kbs: int, stdout_inactivity: float, max_inactive: float
) -> bool:
    """Whether the measured usage counts as nix doing something."""
    return cpu_usage > 2.0 or network_kbs > 1 or stdout_inactivity <= max_inactive


def forward_lines(clock: ActivityClock, source: Iterable[str], sink: IO[str]) -> None:
    """Copy lines from ``source`` to ``sink``, touching ``clock`` for each one."""
    for line in source:
        clock.touch()
        sink.write(line.removesuffix("\n").removesuffix("\r") + "\n")
        sink.flush()


class _PsutilSampler:
    """Global CPU usage and received kilobytes since the previous sample."""

    def __init__(self) -> None:
        psutil.cpu_percent(interval=None)
        self._received = psutil.net_io_counters().bytes_recv

    def __call__(self) -> tuple[float, int]:
        cpu = psutil.cpu_percent(interval=None)
        received = psutil.net_io_counters().bytes_recv
        delta = max(received - self._received, 0)
        self._received = received
        return cpu, delta // 1000


@dataclass
class NixSupervisor:
    """Runs a nix command and restarts it whenever it looks deadlocked."""

    args: Sequence[str]
    program: str = "nix"
    check_interval: float = 1.0
    max_inactive: float = 15.0
    debug: bool = False
    sampler: Optional[Callable[[], tuple[float, int]]] = None
    cleanup_command: Sequence[str] = ("bash", "-c", "rm -f /nix/store/*.lock")
    stdout: Optional[IO[str]] = None
    stderr: Optional[IO[str]] = None
    clock: ActivityClock = field(default_factory=ActivityClock)
    process: Optional[subprocess.Popen] = None
    _threads: list[threading.Thread] = field(default_factory=list)

    def start(self) -> subprocess.Popen:
        """Start the child and forward its output."""
        process = subprocess.Popen(
            [self.program, *self.args],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
        sinks = (
            (process.stdout, self.stdout or sys.stdout),
            (process.stderr, self.stderr or sys.stderr),
        )
        self._threads = []
        for source, sink in sinks:
            thread = threading.Thread(
                target=forward_lines, args=(self.clock, source, sink), daemon=True
            )
            thread.start()
            self._threads.append(thread)
        self.process = process
        return process

    def restart(self) -> subprocess.Popen:
        """Kill the child, remove nix store locks and start it again."""
        if self.process is not None:
            self.process.kill()
            self.process.wait()
        subprocess.Popen(list(self.cleanup_command)).wait()
        return self.start()

    def run(self) -> int:
        """Supervise until the child exits and return its exit code."""
        sampler = self.sampler or _PsutilSampler()
        if self.process is None:
            self.start()
        last_activity = time.monotonic()
        while True:
            cpu_usage, network_kbs = sampler()
            code = self.process.poll()
            if code is not None:
                for thread in self._threads:
                    thread.join(timeout=5)
                _log(LogLevel.TRACE, f"Nix terminated with exit code {code}")
                return code if code >= 0 else 1

            stdout_inactivity = self.clock.idle_for()
            inactivity = time.monotonic() - last_activity
            if self.debug:
                _log(
                    LogLevel.TRACE,
                    f"Nix considered inactive for {inactivity:.3f}s. CPU: {cpu_usage}, "
                    f"Network: {network_kbs}, Stdout/err: {stdout_inactivity:.3f}s",
                )

            if is_active(cpu_usage, network_kbs, stdout_inactivity, self.max_inactive):
                last_activity = time.monotonic()
            elif inactivity > self.max_inactive:
                _log(
                    LogLevel.ERR,
                    "Detected deadlock. Deleting locks and restarting nix...",
                )
                self.restart()
                last_activity = time.monotonic()
            time.sleep(self.check_interval)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    debug = "CODCHI_DEBUG" in os.environ
    return NixSupervisor(args=args, debug=debug).run()


if __name__ == "__main__":
    sys.exit(main())