"""Reading the desktop entries and icons a machine exports to the host."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

StrPath = Union[str, "os.PathLike[str]"]

_SECTION = "Desktop Entry"


@dataclass(frozen=True)
class DesktopEntry:
    """An application of a machine that gets a shortcut on the host."""

    app_name: str
    name: str
    exec: str
    icon: Optional[Path] = None
    is_terminal: bool = False


def strip_field_codes(exec_line: str) -> str:
    """Drop XDG field codes such as ``%U`` and normalise whitespace."""
    return " ".join(
        arg
        for arg in exec_line.split()
        if not (len(arg) == 2 and arg.startswith("%"))
    )


def parse_desktop_file(path: StrPath) -> dict[str, dict[str, str]]:
    """Parse a desktop file into ``{section: {key: value}}``.

    Raises ``ValueError`` if the file is not a valid desktop file.
    """
    file = Path(path)
    sections: dict[str, dict[str, str]] = {}
    current: Optional[dict[str, str]] = None
    text = file.read_text(encoding="utf-8")
    for number, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("[") and line.endswith("]"):
            current = sections.setdefault(line[1:-1], {})
            continue
        key, sep, value = line.partition("=")
        if not sep or current is None or not key.strip():
            raise ValueError(
                f"Failed to parse desktop file {file}: invalid line {number}: {raw!r}"
            )
        current[key.strip()] = value.strip()
    return sections


def read_icons(icons_dir: StrPath) -> dict[str, Path]:
    """Map each icon's file stem to its path."""
    with os.scandir(icons_dir) as entries:
        return {Path(entry.path).stem or entry.name: Path(entry.path) for entry in entries}


def _entry_value(section: dict[str, str], name: str, file: Path) -> str:
    try:
        return section[name]
    except KeyError:
        raise ValueError(
            f"Missing entry '{name}' in desktop entry from '{file}'."
        ) from None


def read_desktop_entries(machine_name: str, rc_path: StrPath) -> list[DesktopEntry]:
    """Read the applications and icons that a machine exports under ``rc_path``."""
    root = Path(rc_path)
    icons = read_icons(root / "icons")

    entries = []
    for file in sorted((root / "applications").iterdir()):
        if file.suffix != ".desktop":
            continue
        section = parse_desktop_file(file).get(_SECTION, {})
        name = _entry_value(section, "Name", file)
        if "Exec" in section:
            exec_line = section["Exec"]
        else:
            exec_line = _entry_value(section, "TryExec", file)
        app_name = file.stem or file.name
        entries.append(
            DesktopEntry(
                app_name=app_name,
                name=f"codchi-{machine_name} {name}",
                exec=strip_field_codes(exec_line),
                icon=icons.get(app_name),
                is_terminal=section.get("Terminal") == "true",
            )
        )
    return entries