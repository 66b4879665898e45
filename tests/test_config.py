from __future__ import annotations

from pathlib import Path

import allure
import pytest

from muxclaw.config import AppConfig, PathSettings, Settings, TelegramSettings
from muxclaw.models import ConfigError, FailureTier

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Settings & Config Document"),
]

_VALID = {
    "channels": {"telegram": {"token": "123:abc"}},
    "allowedUsers": [{"userId": "7"}, {"userId": 8}],
}


def _clear_env(monkeypatch) -> None:
    for name in (
        "XDG_CONFIG_HOME",
        "XDG_DATA_HOME",
        "XDG_STATE_HOME",
        "NQDIR",
        "MUXCLAW_CONFIG",
        "MUXCLAW_SELF_COMMAND",
        "MUXCLAW_QUEUE_BINARY",
        "MUXCLAW_LOG_LEVEL",
        "MUXCLAW_TELEGRAM_POLL_TIMEOUT_SECONDS",
        "MUXCLAW_TELEGRAM_REQUEST_TIMEOUT_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)


def test_paths_default_to_home_locations(tmp_path: Path, monkeypatch) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("HOME", str(tmp_path))

    paths = PathSettings.from_env()

    assert paths.config_dir == tmp_path / ".config" / "muxclaw"
    assert paths.data_dir == tmp_path / ".local" / "share" / "muxclaw"
    assert paths.queue_dir == tmp_path / ".local" / "state" / "muxclaw" / "queue"
    assert paths.completed_dir == paths.queue_dir / "completed"
    assert paths.failed_dir == paths.queue_dir / "failed"
    assert paths.messages_dir == paths.data_dir / "messages"
    assert paths.config_file == paths.config_dir / "config.json"


def test_paths_honor_xdg_and_nqdir(tmp_path: Path, monkeypatch) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "share"))
    monkeypatch.setenv("NQDIR", str(tmp_path / "nq"))

    paths = PathSettings.from_env()
    paths.ensure()

    assert paths.config_dir == tmp_path / "cfg" / "muxclaw"
    assert paths.data_dir == tmp_path / "share" / "muxclaw"
    assert paths.queue_dir == tmp_path / "nq"
    assert (tmp_path / "nq" / "completed").is_dir()
    assert (tmp_path / "nq" / "failed").is_dir()


def test_settings_from_env_parses_self_command(tmp_path: Path, monkeypatch) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("MUXCLAW_SELF_COMMAND", "/opt/bin/muxclaw --quiet")
    monkeypatch.setenv("MUXCLAW_LOG_LEVEL", "debug")

    settings = Settings.from_env()

    assert settings.queue.self_command == ("/opt/bin/muxclaw", "--quiet")
    assert settings.queue.binary == "nq"
    assert settings.log_level == "DEBUG"


def test_settings_reject_request_timeout_not_above_poll_timeout(tmp_path: Path) -> None:
    settings = Settings(
        paths=PathSettings(tmp_path, tmp_path, tmp_path, tmp_path, tmp_path / "c.json"),
        telegram=TelegramSettings(poll_timeout_seconds=30, request_timeout_seconds=30),
    )

    with pytest.raises(ConfigError, match="exceed the poll timeout"):
        settings.validate()


def test_app_config_load_accepts_string_and_numeric_user_ids(tmp_path: Path, write_config) -> None:
    path = write_config(tmp_path / "config.json", _VALID)

    config = AppConfig.load(path)

    assert config.telegram_token == "123:abc"
    assert config.allowed_user_ids == frozenset({"7", "8"})
    assert config.agent_name == "claude"
    assert config.workspace is None


def test_app_config_load_missing_file_is_fatal(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Config file not found") as excinfo:
        AppConfig.load(tmp_path / "missing.json")

    assert excinfo.value.tier is FailureTier.FATAL


def test_app_config_load_rejects_invalid_json(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{not json", "utf-8")

    with pytest.raises(ConfigError, match="Failed to parse"):
        AppConfig.load(path)


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ({"allowedUsers": []}, "channels must be an object"),
        ({"channels": {"telegram": {"token": 1}}, "allowedUsers": []}, "token must be a string"),
        ({"channels": {"telegram": {"token": "t"}}}, "allowedUsers must be a list"),
        (
            {"channels": {"telegram": {"token": "t"}}, "allowedUsers": [{"userId": True}]},
            r"allowedUsers\[0\]\.userId",
        ),
        (
            {
                "channels": {"telegram": {"token": "t"}},
                "allowedUsers": [],
                "agent": {"name": "codex"},
            },
            "agent.name must be one of claude",
        ),
    ],
)
def test_app_config_schema_violations(payload, message) -> None:
    with pytest.raises(ConfigError, match=message):
        AppConfig.from_dict(payload)


def test_require_token_rejects_empty_token() -> None:
    config = AppConfig(telegram_token="")

    with pytest.raises(ConfigError, match="token is not set"):
        config.require_token()


def test_workspace_dir_expands_home_prefix(tmp_path: Path) -> None:
    config = AppConfig(telegram_token="t", workspace="~/projects/app")

    assert config.workspace_dir(home=tmp_path) == tmp_path / "projects" / "app"


def test_workspace_dir_defaults_to_cwd(tmp_path: Path) -> None:
    assert AppConfig(telegram_token="t").workspace_dir(cwd=tmp_path) == tmp_path


def test_validate_workspace_rejects_missing_directory_and_file(tmp_path: Path) -> None:
    missing = AppConfig(telegram_token="t", workspace=str(tmp_path / "nope"))
    with pytest.raises(ConfigError, match="does not exist"):
        missing.validate_workspace()

    file_path = tmp_path / "file.txt"
    file_path.write_text("x", "utf-8")
    a_file = AppConfig(telegram_token="t", workspace=str(file_path))
    with pytest.raises(ConfigError, match="is a file"):
        a_file.validate_workspace()

    assert AppConfig(telegram_token="t", workspace=str(tmp_path)).validate_workspace() == tmp_path


def test_settings_reject_unknown_log_level(tmp_path: Path, monkeypatch) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("MUXCLAW_LOG_LEVEL", "chatty")

    with pytest.raises(ConfigError, match="MUXCLAW_LOG_LEVEL"):
        Settings.from_env()
