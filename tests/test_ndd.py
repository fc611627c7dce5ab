import io
import sys
import time

from codchi.ndd import (
    ActivityClock,
    LogLevel,
    NixSupervisor,
    forward_lines,
    format_log,
    is_active,
)


def quiet_sampler():
    return 0.0, 0


def test_format_log_matches_nix_format():
    assert (
        format_log(LogLevel.ERR, "x")
        == '@nix { "action": "msg", "level": 0, "msg": "ndd> x" }'
    )


def test_format_log_trace_level():
    assert '"level": 4' in format_log(LogLevel.TRACE, "hello")
    assert format_log(LogLevel.TRACE, "hello").endswith('"ndd> hello" }')


def test_is_active_cpu():
    assert is_active(2.5, 0, 100.0, 15.0) is True
    assert is_active(2.0, 0, 100.0, 15.0) is False


def test_is_active_network():
    assert is_active(0.0, 2, 100.0, 15.0) is True
    assert is_active(0.0, 1, 100.0, 15.0) is False


def test_is_active_output_boundary():
    assert is_active(0.0, 0, 15.0, 15.0) is True
    assert is_active(0.0, 0, 15.1, 15.0) is False


def test_activity_clock_touch_resets():
    clock = ActivityClock()
    time.sleep(0.05)
    assert clock.idle_for() >= 0.05
    clock.touch()
    assert clock.idle_for() < 0.05


def test_forward_lines_copies_and_touches():
    clock = ActivityClock()
    time.sleep(0.05)
    sink = io.StringIO()
    forward_lines(clock, io.StringIO("a\r\nb\nc"), sink)
    assert sink.getvalue() == "a\nb\nc\n"
    assert clock.idle_for() < 0.05


def test_run_returns_child_exit_code():
    out, err = io.StringIO(), io.StringIO()
    supervisor = NixSupervisor(
        args=["-c", "import sys; print('hello'); sys.exit(3)"],
        program=sys.executable,
        check_interval=0.01,
        sampler=quiet_sampler,
        stdout=out,
        stderr=err,
    )
    assert supervisor.run() == 3
    assert out.getvalue() == "hello\n"


def test_run_logs_termination(capsys):
    supervisor = NixSupervisor(
        args=["-c", "pass"],
        program=sys.executable,
        check_interval=0.01,
        sampler=quiet_sampler,
        stdout=io.StringIO(),
        stderr=io.StringIO(),
    )
    assert supervisor.run() == 0
    assert "ndd> Nix terminated with exit code 0" in capsys.readouterr().err


def test_restart_replaces_process():
    supervisor = NixSupervisor(
        args=["-c", "import time; time.sleep(30)"],
        program=sys.executable,
        cleanup_command=(sys.executable, "-c", "pass"),
        stdout=io.StringIO(),
        stderr=io.StringIO(),
    )
    first = supervisor.start()
    second = supervisor.restart()
    try:
        assert first.returncode is not None
        assert supervisor.process is second
        assert second is not first
        assert second.poll() is None
    finally:
        second.kill()
        second.wait()


def test_run_restarts_deadlocked_child(tmp_path, capsys):
    marker = tmp_path / "started"
    code = (
        "import os, sys, time\n"
        f"p = {str(marker)!r}\n"
        "if os.path.exists(p):\n"
        "    sys.exit(7)\n"
        "open(p, 'w').close()\n"
        "time.sleep(30)\n"
    )
    supervisor = NixSupervisor(
        args=["-c", code],
        program=sys.executable,
        check_interval=0.01,
        max_inactive=0.1,
        sampler=quiet_sampler,
        cleanup_command=(sys.executable, "-c", "pass"),
        stdout=io.StringIO(),
        stderr=io.StringIO(),
    )
    assert supervisor.run() == 7
    assert "Detected deadlock" in capsys.readouterr().err