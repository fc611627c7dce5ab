"""Managing LXD or Incus images and containers through their command line."""

from __future__ import annotations

import contextlib
import functools
import grp
import logging
import os
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Optional, TypeVar, Union

from codchi.commands import CommandError, HostCommand, OutputParseError
from codchi.machine import PlatformStatus
from codchi.util import LinuxPath, get_or_create

log = logging.getLogger(__name__)

T = TypeVar("T")
StrPath = Union[str, "os.PathLike[str]"]


@functools.lru_cache(maxsize=None)
def _runtime() -> str:
    if shutil.which("lxd"):
        log.debug("Using LXD as container runtime.")
        return "lxc"
    if shutil.which("incus"):
        log.debug("Using Incus as container runtime.")
        return "incus"
    raise RuntimeError("Either LXD or Incus is required to run Codchi.")


def lxc_command(args: Iterable[str]) -> HostCommand:
    """Return a quiet command of the available container runtime."""
    return HostCommand(_runtime(), ["-q", *args])


@contextlib.contextmanager
def _context(message: str) -> Iterator[None]:
    try:
        yield
    except CommandError as err:
        raise CommandError(message) from err


def _parse_list(data: Any, build: Callable[[Any], T]) -> list[T]:
    try:
        return [build(item) for item in data]
    except (KeyError, TypeError) as err:
        raise OutputParseError("Failed parsing JSON output.") from err


@dataclass(frozen=True)
class ImageAlias:
    name: str
    description: str


@dataclass(frozen=True)
class ImageInfo:
    """LXD image information."""

    filename: str
    fingerprint: str
    aliases: tuple[ImageAlias, ...]

    @classmethod
    def from_json(cls, data: Any) -> "ImageInfo":
        return cls(
            filename=data["filename"],
            fingerprint=data["fingerprint"],
            aliases=tuple(
                ImageAlias(alias["name"], alias["description"])
                for alias in data["aliases"]
            ),
        )


@dataclass(frozen=True)
class ContainerInfo:
    """LXD container information."""

    name: str
    status: str

    @classmethod
    def from_json(cls, data: Any) -> "ContainerInfo":
        return cls(name=data["name"], status=data["status"])


@dataclass(frozen=True)
class DiskDevice:
    source: Path
    path: str


@dataclass(frozen=True)
class InstanceProxyDevice:
    name: str
    listen: str
    connect: str


@dataclass(frozen=True)
class GpuDevice:
    pass


Device = Union[DiskDevice, InstanceProxyDevice, GpuDevice]


def list_images() -> list[ImageInfo]:
    data = lxc_command(["image", "list", "--format", "json"]).output_json()
    return _parse_list(data, ImageInfo.from_json)


def import_image(path: StrPath, alias: str) -> None:
    lxc_command(["image", "import", os.fspath(path), "--alias", alias]).wait_ok()


def delete_image(name: str) -> None:
    lxc_command(["image", "delete", name]).wait_ok()


def init_container(image_name: str, container_name: str) -> None:
    lxc_command(["init", image_name, container_name]).wait_ok()


def start(name: str) -> None:
    lxc_command(["start", name]).wait_ok()


def stop(name: str, force: bool = False) -> None:
    cmd = lxc_command(["stop", name])
    if force:
        cmd.arg("--force")
    cmd.wait_ok()


def export(name: str, target_path: str) -> None:
    lxc_command(
        ["export", "--instance-only", "--compression", "none", name, target_path]
    ).wait_ok()


def get_info(name: str) -> Optional[ContainerInfo]:
    data = lxc_command(["list", "--format", "json"]).output_json()
    infos = _parse_list(data, ContainerInfo.from_json)
    return next((info for info in infos if info.name == name), None)


def get_platform_status(name: str) -> PlatformStatus:
    info = get_info(name)
    if info is None:
        return PlatformStatus.NOT_INSTALLED
    if info.status == "Running":
        return PlatformStatus.RUNNING
    return PlatformStatus.STOPPED


def delete(name: str, force: bool = False) -> None:
    cmd = lxc_command(["delete", name])
    if force:
        cmd.arg("--force")
    cmd.wait_ok()


def config_set(name: str, cfg: str) -> None:
    lxc_command(["config", "set", name, cfg]).wait_ok()


def config_umount_all(container_name: str) -> None:
    """Remove every device of a container."""
    devices = lxc_command(["config", "device", "list", container_name]).output_utf8_ok()
    for dev in devices.splitlines():
        lxc_command(["config", "device", "remove", container_name, dev]).wait_ok()


def device_args(container_name: str, device: Device) -> list[str]:
    """Return the runtime arguments that add ``device`` to a container."""
    base = ["config", "device", "add", container_name]
    if isinstance(device, DiskDevice):
        return [
            *base,
            device.path.removeprefix("/"),
            "disk",
            f"source={device.source}",
            f"path={device.path}",
        ]
    if isinstance(device, InstanceProxyDevice):
        return [
            *base,
            device.name,
            "proxy",
            "bind=instance",
            f"connect={device.connect}",
            f"listen={device.listen}",
            f"security.uid={os.getuid()}",
            f"security.gid={os.getgid()}",
        ]
    if isinstance(device, GpuDevice):
        try:
            video = grp.getgrnam("video")
        except KeyError as err:
            raise LookupError(
                "Group 'video' (which is needed for GPU access) not found."
            ) from err
        return [*base, "gpu", "gpu", f"gid={video.gr_gid}"]
    raise TypeError(f"Unknown LXD device: {device!r}")


def config_mount(container_name: str, device: Device) -> None:
    """Add ``device`` to a container."""
    if isinstance(device, DiskDevice):
        device = DiskDevice(get_or_create(device.source), device.path)
        message = (
            f"Failed to mount LXD device '{device.source}' at path '{device.path}' "
            f"to container {container_name}."
        )
    elif isinstance(device, InstanceProxyDevice):
        message = (
            f"Failed to create LXD proxy '{device.name}' from '{device.listen}' "
            f"to '{device.connect}' in container {container_name}."
        )
    else:
        message = f"Failed to create LXD GPU device in container {container_name}."
    args = device_args(container_name, device)
    with _context(message):
        lxc_command(args).wait_ok()


def _has_image(name: str) -> bool:
    return any(
        alias.name == name for image in list_images() for alias in image.aliases
    )


def install(
    name: str,
    rootfs: StrPath,
    mounts: Iterable[Device],
    guest_uid: str = "0",
    guest_gid: str = "0",
) -> None:
    """Create a container from a root file system and configure it.

    The host user is mapped to ``guest_uid``/``guest_gid`` inside the container.
    On failure, leftovers of the image and container are removed.
    """
    rootfs_text = os.fspath(rootfs)
    try:
        if _has_image(name):
            delete_image(name)

        with _context(f"Failed to import LXD image {name} from {rootfs_text}."):
            import_image(rootfs, name)

        while not _has_image(name):
            log.debug("Waiting for LXD to import image '%s'", name)
            time.sleep(0.25)

        with _context(f"Failed to create LXD container {name} from {rootfs_text}."):
            init_container(name, name)

        delete_image(name)
        config_set(name, "security.nesting=true")

        # Map the host user to root in the container so its files stay accessible.
        idmap = (
            f"uid {os.getuid()} {guest_uid}\n"
            f"gid {os.getgid()} {guest_gid}"
        )
        config_set(name, f"raw.idmap={idmap}")

        for mount in mounts:
            config_mount(name, mount)
    except Exception:
        log.error("Removing leftovers of LXD container %s...", name)
        with contextlib.suppress(CommandError):
            delete_image(name)
        with contextlib.suppress(CommandError):
            delete(name, True)
        raise


def file_push(
    name: str,
    path: StrPath,
    target: LinuxPath,
    owner: Optional[tuple[str, str]] = None,
) -> None:
    """Copy a host file into a container, optionally owned by ``(uid, gid)``."""
    args = ["file", "push", os.fspath(path), f"{name}/{target}"]
    if owner is not None:
        uid, gid = owner
        args += ["--uid", uid, "--gid", gid]
    with _context(
        f"Failed to copy file '{os.fspath(path)}' from host into LXD container "
        f"{name} to {target.path}"
    ):
        lxc_command(args).wait_ok()


def file_delete(name: str, target: LinuxPath) -> None:
    with _context(f"Failed to delete file '{target.path}' in LXD container {name}"):
        lxc_command(["file", "delete", f"{name}/{target}"]).wait_ok()