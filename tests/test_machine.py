import pytest

from codchi.machine import (
    ConfigStatus,
    render_env_file,
    write_env_file,
)


@pytest.mark.parametrize("status", list(ConfigStatus))
def test_config_status_round_trip(status):
    assert ConfigStatus.parse(str(status)) is status


def test_config_status_parse_names_from_script():
    assert ConfigStatus.parse("UpdatesAvailable") is ConfigStatus.UPDATES_AVAILABLE
    assert ConfigStatus.parse("UpToDate") is ConfigStatus.UP_TO_DATE


@pytest.mark.parametrize("text", ["", "uptodate", "UpToDate\n", "Running"])
def test_config_status_parse_rejects_unknown(text):
    with pytest.raises(ValueError):
        ConfigStatus.parse(text)


def test_config_status_parse_remaining_names():
    assert ConfigStatus.parse("Modified") is ConfigStatus.MODIFIED
    assert ConfigStatus.parse("NotInstalled") is ConfigStatus.NOT_INSTALLED


def test_render_env_file_contains_machine_name_and_debug():
    text = render_env_file({}, "dev", True)
    lines = text.splitlines()
    assert 'export CODCHI_MACHINE_NAME="dev"' in lines
    assert 'export CODCHI_DEBUG="1"' in lines
    assert len(lines) == 2
    assert text.endswith("\n")


def test_render_env_file_without_debug_has_empty_value():
    lines = render_env_file({}, "dev", False).splitlines()
    assert 'export CODCHI_DEBUG=""' in lines


def test_render_env_file_includes_secrets():
    lines = render_env_file({"GIT_TOKEN": "token"}, "m", False).splitlines()
    assert 'export CODCHI_GIT_TOKEN="token"' in lines
    assert all(line.startswith("export CODCHI_") for line in lines)


def test_render_env_file_settings_override_secrets():
    lines = render_env_file({"MACHINE_NAME": "other"}, "real", False).splitlines()
    assert 'export CODCHI_MACHINE_NAME="real"' in lines
    assert 'export CODCHI_MACHINE_NAME="other"' not in lines


def test_render_env_file_does_not_mutate_secrets():
    secrets = {"A": "secret"}
    render_env_file(secrets, "m", True)
    assert secrets == {"A": "secret"}


def test_write_env_file_writes_rendered_content(tmp_path):
    target = tmp_path / "codchi-env"
    result = write_env_file(target, {"KEY": "secret"}, "box", True)
    assert result == target
    assert target.read_text(encoding="utf-8") == render_env_file(
        {"KEY": "secret"}, "box", True
    )


def test_write_env_file_truncates_existing(tmp_path):
    target = tmp_path / "env"
    target.write_text("x" * 1000, encoding="utf-8")
    write_env_file(target, {}, "box", False)
    assert target.read_text(encoding="utf-8") == render_env_file({}, "box", False)


def test_write_env_file_missing_directory_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        write_env_file(tmp_path / "missing" / "env", {}, "box", False)