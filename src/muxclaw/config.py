"""Runtime settings (environment) and application config (JSON document)."""

from __future__ import annotations

import json
import os
import shlex
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from muxclaw.models import ConfigError

APP_NAME = "muxclaw"
SUPPORTED_AGENTS: tuple[str, ...] = ("claude",)
DEFAULT_AGENT = "claude"
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


@dataclass(slots=True)
class PathSettings:
    """Directory layout shared by ingress, egress and dispatch."""

    config_dir: Path
    data_dir: Path
    state_dir: Path
    queue_dir: Path
    config_file: Path

    @property
    def messages_dir(self) -> Path:
        return self.data_dir / "messages"

    @property
    def completed_dir(self) -> Path:
        return self.queue_dir / "completed"

    @property
    def failed_dir(self) -> Path:
        return self.queue_dir / "failed"

    @classmethod
    def from_env(cls) -> PathSettings:
        """Resolve XDG base directories, falling back to the usual home locations."""

        home = _user_home()
        config_dir = Path(os.getenv("XDG_CONFIG_HOME") or home / ".config") / APP_NAME
        data_dir = Path(os.getenv("XDG_DATA_HOME") or home / ".local" / "share") / APP_NAME
        state_dir = Path(os.getenv("XDG_STATE_HOME") or home / ".local" / "state") / APP_NAME
        queue_dir = Path(os.getenv("NQDIR") or state_dir / "queue")
        config_file = Path(os.getenv("MUXCLAW_CONFIG") or config_dir / "config.json")
        return cls(
            config_dir=config_dir,
            data_dir=data_dir,
            state_dir=state_dir,
            queue_dir=queue_dir,
            config_file=config_file,
        )

    def ensure(self) -> None:
        for path in (self.config_dir, self.data_dir, self.completed_dir, self.failed_dir):
            path.mkdir(parents=True, exist_ok=True)


@dataclass(slots=True)
class QueueSettings:
    """External job queue invocation."""

    binary: str = "nq"
    self_command: tuple[str, ...] = (sys.executable, "-m", APP_NAME)


@dataclass(slots=True)
class TelegramSettings:
    """Telegram Bot API client settings."""

    api_base_url: str = "https://api.telegram.org"
    poll_timeout_seconds: int = 30
    request_timeout_seconds: float = 60.0
    max_retries: int = 3
    max_message_length: int = 4096


@dataclass(slots=True)
class Settings:
    """Process-wide settings, built once at startup and passed to components."""

    paths: PathSettings
    queue: QueueSettings = field(default_factory=QueueSettings)
    telegram: TelegramSettings = field(default_factory=TelegramSettings)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults for a single-user install."""

        self_command_raw = os.getenv("MUXCLAW_SELF_COMMAND", "").strip()
        settings = cls(
            paths=PathSettings.from_env(),
            queue=QueueSettings(
                binary=os.getenv("MUXCLAW_QUEUE_BINARY", "nq"),
                self_command=(
                    tuple(shlex.split(self_command_raw))
                    if self_command_raw
                    else (sys.executable, "-m", APP_NAME)
                ),
            ),
            telegram=TelegramSettings(
                api_base_url=os.getenv(
                    "MUXCLAW_TELEGRAM_API_BASE_URL",
                    "https://api.telegram.org",
                ).rstrip("/"),
                poll_timeout_seconds=int(os.getenv("MUXCLAW_TELEGRAM_POLL_TIMEOUT_SECONDS", "30")),
                request_timeout_seconds=float(
                    os.getenv("MUXCLAW_TELEGRAM_REQUEST_TIMEOUT_SECONDS", "60"),
                ),
                max_retries=int(os.getenv("MUXCLAW_TELEGRAM_MAX_RETRIES", "3")),
            ),
            log_level=os.getenv("MUXCLAW_LOG_LEVEL", "INFO").upper(),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise configuration error on unusable values."""

        if not self.queue.binary.strip():
            raise ConfigError("MUXCLAW_QUEUE_BINARY must not be empty.")
        if not self.queue.self_command:
            raise ConfigError("MUXCLAW_SELF_COMMAND must not be empty.")
        if self.telegram.poll_timeout_seconds < 0:
            raise ConfigError("MUXCLAW_TELEGRAM_POLL_TIMEOUT_SECONDS must be >= 0.")
        if self.telegram.request_timeout_seconds <= self.telegram.poll_timeout_seconds:
            raise ConfigError(
                "MUXCLAW_TELEGRAM_REQUEST_TIMEOUT_SECONDS must exceed the poll timeout.",
            )
        if self.telegram.max_retries < 0:
            raise ConfigError("MUXCLAW_TELEGRAM_MAX_RETRIES must be >= 0.")
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"MUXCLAW_LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}.")


@dataclass(slots=True)
class AppConfig:
    """User config document: channel credential, allow-list, workspace, agent."""

    telegram_token: str
    allowed_user_ids: frozenset[str] = frozenset()
    workspace: str | None = None
    agent_name: str = DEFAULT_AGENT

    @classmethod
    def load(cls, path: Path) -> AppConfig:
        try:
            text = path.read_text("utf-8")
        except FileNotFoundError as error:
            raise ConfigError(f"Config file not found: {path}") from error
        except OSError as error:
            raise ConfigError(f"Failed to read {path}: {error}") from error
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as error:
            raise ConfigError(f"Failed to parse {path}: {error}") from error
        try:
            return cls.from_dict(payload)
        except ConfigError as error:
            raise ConfigError(f"Invalid config {path}: {error}") from error

    @classmethod
    def from_dict(cls, payload: Any) -> AppConfig:
        if not isinstance(payload, dict):
            raise ConfigError("expected a JSON object")

        telegram = _require_dict(_require_dict(payload, "channels"), "telegram")
        token = telegram.get("token")
        if not isinstance(token, str):
            raise ConfigError("channels.telegram.token must be a string")

        allowed_raw = payload.get("allowedUsers")
        if not isinstance(allowed_raw, list):
            raise ConfigError("allowedUsers must be a list")
        allowed: set[str] = set()
        for index, entry in enumerate(allowed_raw):
            user_id = entry.get("userId") if isinstance(entry, dict) else None
            if isinstance(user_id, bool) or not isinstance(user_id, str | int):
                raise ConfigError(f"allowedUsers[{index}].userId must be a string")
            allowed.add(str(user_id))

        workspace = payload.get("workspace")
        if workspace is not None and not isinstance(workspace, str):
            raise ConfigError("workspace must be a string")

        agent = payload.get("agent") or {}
        if not isinstance(agent, dict):
            raise ConfigError("agent must be an object")
        agent_name = agent.get("name", DEFAULT_AGENT)
        if agent_name not in SUPPORTED_AGENTS:
            raise ConfigError(
                f"agent.name must be one of {', '.join(SUPPORTED_AGENTS)}, got {agent_name!r}",
            )

        return cls(
            telegram_token=token,
            allowed_user_ids=frozenset(allowed),
            workspace=workspace or None,
            agent_name=agent_name,
        )

    def require_token(self) -> str:
        if not self.telegram_token:
            raise ConfigError("channels.telegram.token is not set in config.")
        return self.telegram_token

    def workspace_dir(self, *, home: Path | None = None, cwd: Path | None = None) -> Path:
        """Agent working directory; ``~/`` expands against the user's home."""

        if not self.workspace:
            return cwd or Path.cwd()
        if self.workspace.startswith("~/"):
            return (home or _user_home()) / self.workspace[2:]
        return Path(self.workspace)

    def validate_workspace(self) -> Path:
        workspace = self.workspace_dir()
        try:
            if not workspace.is_dir():
                if workspace.exists():
                    raise ConfigError(f"Workspace path is a file, not a directory: {workspace}")
                raise ConfigError(f"Workspace directory does not exist: {workspace}")
        except OSError as error:
            raise ConfigError(f"Failed to access workspace {workspace}: {error}") from error
        return workspace


def _require_dict(payload: dict[str, Any], key: str) -> dict[str, Any]:
    value = payload.get(key)
    if not isinstance(value, dict):
        raise ConfigError(f"{key} must be an object")
    return value


def _user_home() -> Path:
    return Path(os.getenv("HOME") or os.getenv("USERPROFILE") or "/tmp")  # noqa: S108
