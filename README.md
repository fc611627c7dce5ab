# codchi

Building blocks for running NixOS "code machines" inside LXD or Incus
containers, and `ndd`, a supervisor that restarts `nix` when it deadlocks.

## Modules

- `codchi.commands` – running host commands (`HostCommand`) and collecting,
  parsing or streaming their output. `output_ok`, `output_utf8_ok`,
  `output_json` and `output_from_str` return the output; `wait_ok`,
  `retry_until_ok`, `wait_inherit` and `exec` run for effect;
  `output_ok_streaming` passes every line to a callback and can be cancelled
  with a `threading.Event`. A non-zero exit raises `CommandFailed`
  (a `CommandError`), unparsable output raises `OutputParseError`.
- `codchi.linux_command` – commands meant to run inside a container:
  `LinuxCommandTarget.run`, `raw` and `script` return a
  `LinuxCommandBuilder`, which takes a `LinuxUser`, a working directory and
  an environment. `LinuxCommandTarget` is abstract: a subclass supplies
  `build` (the host command that enters the container) and
  `quote_shell_arg`.
- `codchi.lxd` – LXD/Incus images, containers and devices (`DiskDevice`,
  `InstanceProxyDevice`, `GpuDevice`): listing, importing, starting,
  stopping, exporting, deleting, setting config, mounting devices, pushing
  and deleting files, and `install`, which creates and configures a
  container from a root file system and cleans up on failure.
  `lxc_command` uses `lxc` when `lxd` is on the `PATH`, `incus` otherwise,
  and raises `RuntimeError` when neither is found.
- `codchi.machine` – `PlatformStatus`, `ConfigStatus` (with
  `ConfigStatus.parse`) and the machine environment file
  (`render_env_file`, `write_env_file`), which exports every secret and
  `DEBUG`/`MACHINE_NAME` as `CODCHI_<KEY>="<value>"`.
- `codchi.desktop` – reading a machine's `applications/*.desktop` files and
  `icons/` into `DesktopEntry` values, with XDG field codes stripped.
- `codchi.linux_host` – writing and deleting start-menu shortcuts and menu
  files for a machine under the XDG data and config directories, and
  opening a command in the first installed terminal emulator (`$TERMINAL`
  first).
- `codchi.util` – `LinuxPath` and small filesystem, retry and timing
  helpers (`get_or_create`, `cleanup_and_get`, `remove_path`, `list_dir`,
  `tmp_file`, `store_path_base`, ...).
- `codchi.ndd` – the `ndd` supervisor (`NixSupervisor`).

## Installation

```
pip install .
```

Running the tests:

```
pip install ".[test]"
pytest
```

## The `ndd` command

`ndd` runs `nix` with the given arguments and watches it for deadlocks:

```
ndd build .#default
```

The output of `nix` is passed through line by line. Once a second `ndd`
checks CPU usage, received network traffic and how long ago `nix` last
wrote a line. When all three have stayed quiet for more than 15 seconds,
`ndd` kills `nix`, removes `/nix/store/*.lock` and starts it again; nix
carries on with the build where it left off. `ndd` exits with the exit code
of `nix`. Set `CODCHI_DEBUG` to see the measurements on every check.

## Examples

```python
from codchi.util import store_path_base
from codchi.desktop import strip_field_codes
from codchi.machine import ConfigStatus

store_path_base("/nix/store/abc123-hello-2.12.drv")  # "hello-2.12"
strip_field_codes("firefox %u --new-window")          # "firefox --new-window"
ConfigStatus.parse("UpToDate")                         # ConfigStatus.UP_TO_DATE
```

Running a command on the host and reading its output:

```python
from codchi.commands import HostCommand, CommandFailed

try:
    text = HostCommand("uname").arg("-r").output_utf8_ok()
except CommandFailed as err:
    print(err)
```

## What this package does not do

- There is no command for creating, building, starting or deleting code
  machines; the only command is `ndd`. The modules above are the pieces
  such a tool is built from.
- No `LinuxCommandTarget` for LXD containers is included: to run commands
  inside a container, subclass it and implement `build` and
  `quote_shell_arg`.
- There are no helpers for evaluating flakes, listing their NixOS modules
  or pinging the nix store.