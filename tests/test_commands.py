import subprocess
import sys
import threading

import pytest

from codchi.commands import (
    CommandError,
    CommandFailed,
    HostCommand,
    OutputParseError,
    OutputType,
)


def py(code):
    return HostCommand(sys.executable).args(["-c", code])


def test_output_utf8_ok():
    assert py("print('hi')").output_utf8_ok() == "hi\n"


def test_output_ok_returns_bytes():
    assert py("import sys; sys.stdout.write('abc')").output_ok() == b"abc"


def test_failure_raises_command_failed():
    cmd = py("import sys; sys.stderr.write('boom'); sys.exit(3)")
    with pytest.raises(CommandFailed) as info:
        cmd.output_ok()
    assert info.value.exit_status == 3
    assert info.value.stderr == "boom"
    assert repr(cmd) in str(info.value)


def test_output_json():
    assert py("print('[1, 2]')").output_json() == [1, 2]
    with pytest.raises(OutputParseError):
        py("print('not json')").output_json()


def test_output_from_str():
    assert py("print(7)").output_from_str(lambda s: int(s.strip())) == 7
    with pytest.raises(OutputParseError):
        py("print('x')").output_from_str(int)


def test_missing_program_raises_command_error():
    cmd = HostCommand("definitely-not-a-real-program-xyz")
    with pytest.raises(CommandError):
        cmd.wait_ok()


def test_wait_inherit_failure_has_empty_stderr():
    with pytest.raises(CommandFailed) as info:
        py("import sys; sys.exit(2)").wait_inherit()
    assert info.value.exit_status == 2
    assert info.value.stderr == ""


def test_exec_exits_with_child_code():
    with pytest.raises(SystemExit) as info:
        py("import sys; sys.exit(4)").exec()
    assert info.value.code == 4


def test_retry_until_ok(tmp_path):
    counter = tmp_path / "count"
    counter.write_text("0")
    code = (
        "import pathlib, sys\n"
        f"p = pathlib.Path({str(counter)!r})\n"
        "n = int(p.read_text()) + 1\n"
        "p.write_text(str(n))\n"
        "sys.exit(0 if n >= 3 else 1)\n"
    )
    assert py(code).retry_until_ok(0.01) is None
    reader = py(
        f"import pathlib; print(pathlib.Path({str(counter)!r}).read_text())"
    )
    assert reader.output_utf8_ok().strip() == "3"


def test_output_ok_streaming_filters_nix_lines():
    code = (
        "import sys\n"
        "print('a')\n"
        "print('@nix {}')\n"
        "sys.stdout.flush()\n"
        "print('b', file=sys.stderr)\n"
    )
    seen = []
    result = py(code).output_ok_streaming(None, seen.append)
    assert result == "a\n"
    assert sorted(seen) == sorted(["a", "@nix {}", "b"])


def test_output_ok_streaming_failure():
    code = "import sys; print('b', file=sys.stderr); sys.exit(5)"
    with pytest.raises(CommandFailed) as info:
        py(code).output_ok_streaming(None, lambda line: None)
    assert info.value.exit_status == 5
    assert info.value.stderr == "b\n"


def test_output_ok_streaming_cancel():
    cancel = threading.Event()
    cancel.set()
    result = py("import time; time.sleep(30)").output_ok_streaming(cancel, None)
    assert result == ""


def test_spawn_streaming_yields_all_lines():
    code = "import sys; print('x'); sys.stdout.flush(); print('y', file=sys.stderr)"
    child = py(code).spawn_streaming()
    lines = list(child)
    assert child.process.wait() == 0
    assert sorted(lines) == [(False, "x"), (True, "y")]


def test_output_type_stdio():
    assert OutputType.COLLECT.stdio == subprocess.PIPE
    assert OutputType.DISCARD.stdio == subprocess.DEVNULL
    assert OutputType.INHERIT.stdio is None
    proc = py("print('discarded')").spawn(OutputType.DISCARD)
    assert proc.stdout is None
    assert proc.wait() == 0


def test_host_command_builder_and_env(tmp_path):
    cmd = HostCommand(sys.executable).arg("-c").arg(
        "import os; print(os.environ['CODCHI_X'] + ':' + os.getcwd())"
    )
    cmd.env["CODCHI_X"] = "val"
    cmd.cwd = str(tmp_path)
    out = cmd.output_utf8_ok().strip()
    name, _, cwd = out.partition(":")
    assert name == "val"
    assert cwd.endswith(tmp_path.name)
    assert repr(cmd).startswith(sys.executable) or sys.executable in repr(cmd)