"""Small filesystem, timing and retry helpers."""

from __future__ import annotations

import contextlib
import logging
import os
import random
import shutil
import stat
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Optional, TypeVar, Union

log = logging.getLogger(__name__)

T = TypeVar("T")
StrPath = Union[str, "os.PathLike[str]"]


@dataclass(frozen=True)
class LinuxPath:
    """A path inside a Linux container, kept as plain text."""

    path: str

    def __str__(self) -> str:
        return self.path

    def join_str(self, part: str) -> "LinuxPath":
        """Append a path component with a single separator."""
        if not part:
            return self
        return LinuxPath(f"{self.path.rstrip('/')}/{part.lstrip('/')}")


def try_n_times(interval: float, n: int, f: Callable[[], bool]) -> bool:
    """Call ``f`` up to ``n`` times, sleeping ``interval`` seconds after each miss."""
    for _ in range(n):
        if f():
            return True
        time.sleep(interval)
    return False


def make_writeable_if_exists(path: StrPath) -> None:
    """Clear the read-only state of ``path`` if it exists."""
    try:
        mode = os.stat(path).st_mode
    except OSError:
        return
    os.chmod(path, stat.S_IMODE(mode) | 0o222)


def none_if_empty(value: Optional[str]) -> Optional[str]:
    """Return ``None`` for an empty string, the value otherwise."""
    return None if value == "" else value


def dbg_duration(title: str, f: Callable[[], T]) -> T:
    """Run ``f`` and log how long it took."""
    start = time.perf_counter()
    result = f()
    elapsed = time.perf_counter() - start
    log.debug("Time elapsed in %s: %.6fs", title, elapsed)
    return result


@contextlib.contextmanager
def tmp_file(name: str) -> Iterator[Path]:
    """Yield a fresh path in the temp directory and delete the file afterwards."""
    nonce = random.getrandbits(32)
    path = get_or_create(tempfile.gettempdir()) / f"{name}-{nonce}"
    if path.exists():
        raise FileExistsError(f"Tmpfile {path} already exists!")
    try:
        yield path
    finally:
        try:
            path.unlink()
        except OSError as err:
            log.debug("Failed deleting tmpfile %s: %s", path, err)


def store_path_base(path: str) -> str:
    """Return the name part of a nix store path, without hash and ``.drv`` suffix."""
    last = path.split("/")[-1]
    _, sep, base = last.partition("-")
    if not sep:
        return ""
    while base.endswith(".drv"):
        base = base[: -len(".drv")]
    return base


def get_or_create(path: StrPath) -> Path:
    """Create the directory recursively if it doesn't exist and return its path."""
    target = Path(path)
    # Directory creation may not be visible immediately on some file systems.
    for _ in range(5):
        if target.exists():
            return target
        os.makedirs(target, exist_ok=True)
        time.sleep(0.01)
    raise OSError(
        f"Failed to create directory '{target}' recursively after five tries..."
    )


def cleanup_and_get(path: StrPath) -> Path:
    """Remove the directory with its contents if present and create it empty."""
    target = Path(path)
    if target.exists():
        shutil.rmtree(target)
    return get_or_create(target)


def remove_path(path: StrPath) -> None:
    """Remove a file or directory tree, logging a warning on failure."""
    target = Path(path)
    if not target.exists():
        log.debug("Not removing non existent path '%s'", target)
        return
    try:
        if target.is_dir():
            shutil.rmtree(target)
        else:
            target.unlink()
    except OSError as err:
        log.warning("Could not remove '%s'. Reason: %s", target, err)


def assert_exists(path: StrPath) -> None:
    """Raise ``FileNotFoundError`` if ``path`` does not exist."""
    os.stat(path)


def list_dir(path: StrPath) -> list[str]:
    """Return the names of the entries of a directory."""
    target = Path(path)
    if not target.exists():
        raise FileNotFoundError(f"Couldn't find path '{target}'")
    if not target.is_dir():
        raise NotADirectoryError(f"Path '{target}' is not a directory")
    with os.scandir(target) as entries:
        return [entry.name for entry in entries]