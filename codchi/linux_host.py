"""Start menu shortcuts and terminals on a Linux desktop host."""

from __future__ import annotations

import os
import shutil
import sys
from pathlib import Path
from typing import Iterable, Optional, Sequence, Union

from codchi.commands import HostCommand
from codchi.desktop import DesktopEntry
from codchi.util import cleanup_and_get, get_or_create, remove_path

StrPath = Union[str, "os.PathLike[str]"]

_FROM_ENV = object()

_TERMINALS = (
    "x-terminal-emulator",
    "mate-terminal",
    "gnome-terminal",
    "terminator",
    "xfce4-terminal",
    "urxvt",
    "rxvt",
    "termit",
    "Eterm",
    "aterm",
    "uxterm",
    "xterm",
    "roxterm",
    "termite",
    "lxterminal",
    "terminology",
    "st",
    "qterminal",
    "lilyterm",
    "tilix",
    "terminix",
    "konsole",
    "kitty",
    "guake",
    "tilda",
    "alacritty",
    "hyper",
    "wezterm",
    "rio",
)


def _data_dir(data_dir: Optional[StrPath]) -> Path:
    if data_dir is not None:
        return Path(data_dir)
    return Path(os.environ.get("XDG_DATA_HOME") or Path.home() / ".local" / "share")


def _config_dir(config_dir: Optional[StrPath]) -> Path:
    if config_dir is not None:
        return Path(config_dir)
    return Path(os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config")


def _shortcut_dir(machine_name: str, data_dir: Path) -> Path:
    return data_dir / "applications" / "codchi" / machine_name


def _menu_file(machine_name: str, config_dir: Path) -> Path:
    return config_dir / "menus" / "applications-merged" / f"codchi-{machine_name}.menu"


def desktop_file_content(
    machine_name: str, entry: DesktopEntry, codchi_exe: StrPath
) -> str:
    """Return the desktop file that starts ``entry`` inside the machine."""
    icon = f"Icon={entry.icon}" if entry.icon is not None else ""
    exec_line = f"{os.fspath(codchi_exe)} exec {machine_name} {entry.exec}"
    terminal = "true" if entry.is_terminal else "false"
    return (
        "[Desktop Entry]\n"
        "Version=1.0\n"
        "Type=Application\n"
        f"Name={entry.name}\n"
        f"Exec={exec_line}\n"
        f"Terminal={terminal}\n"
        f"Categories=X-codchi-{machine_name}\n"
        f"{icon}\n"
    )


def menu_file_content(machine_name: str) -> str:
    """Return the menu file that groups a machine's shortcuts."""
    return (
        '<!DOCTYPE Menu PUBLIC "-//freedesktop//DTD Menu 1.0//EN"\n'
        '"http://www.freedesktop.org/standards/menu-spec/menu-1.0.dtd">\n'
        "<Menu>\n"
        "  <Name>Applications</Name>\n"
        "  <Menu>\n"
        "    <Name>Codchi</Name>\n"
        "    <Directory>codchi.directory</Directory>\n"
        "    <Menu>\n"
        f"      <Name>{machine_name}</Name>\n"
        "      <Include>\n"
        f"        <Category>X-codchi-{machine_name}</Category>\n"
        "      </Include>\n"
        "    <Menu>\n"
        "  </Menu>\n"
        "</Menu>\n"
    )


def write_shortcuts(
    machine_name: str,
    apps: Iterable[DesktopEntry],
    data_dir: Optional[StrPath] = None,
    config_dir: Optional[StrPath] = None,
    codchi_exe: Optional[StrPath] = None,
) -> Path:
    """Replace the shortcuts of a machine and write its menu file.

    Returns the directory holding the desktop files.
    """
    folder = cleanup_and_get(_shortcut_dir(machine_name, _data_dir(data_dir)))
    exe = codchi_exe if codchi_exe is not None else os.path.abspath(sys.argv[0])

    for entry in apps:
        (folder / f"{entry.app_name}.desktop").write_text(
            desktop_file_content(machine_name, entry, exe), encoding="utf-8"
        )

    menu = _menu_file(machine_name, _config_dir(config_dir))
    get_or_create(menu.parent)
    menu.write_text(menu_file_content(machine_name), encoding="utf-8")
    return folder


def delete_shortcuts(
    machine_name: str,
    data_dir: Optional[StrPath] = None,
    config_dir: Optional[StrPath] = None,
) -> None:
    """Remove the shortcuts and the menu file of a machine."""
    remove_path(_shortcut_dir(machine_name, _data_dir(data_dir)))
    remove_path(_menu_file(machine_name, _config_dir(config_dir)))


def terminal_candidates(terminal_env=_FROM_ENV) -> list[tuple[str, list[str]]]:
    """Terminals to try in order, ``$TERMINAL`` (with its arguments) first.

    ``terminal_env`` defaults to the ``TERMINAL`` environment variable; ``None``
    means it is not set.
    """
    if terminal_env is _FROM_ENV:
        terminal_env = os.environ.get("TERMINAL")
    terms = [(term, []) for term in _TERMINALS]
    if terminal_env is not None:
        cmd, *args = terminal_env.split(" ")
        terms.insert(0, (cmd, args))
    return terms


def open_terminal(cmd: Sequence[str], terminal_env=_FROM_ENV) -> None:
    """Run ``cmd`` in the first terminal emulator that is installed."""
    for term, args in terminal_candidates(terminal_env):
        path = shutil.which(term) if term else None
        if path:
            HostCommand(path, [*args, "-e", *cmd]).wait_ok()
            return
    raise FileNotFoundError("Could not find a terminal.")