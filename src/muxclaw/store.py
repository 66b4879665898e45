"""Message Store and Job Link Table.

Layout under the data directory::

    messages/<channel>/<source_id>/prompt.txt
    messages/<channel>/<source_id>/meta.json
    messages/<channel>/<source_id>/attachments/*
    messages/<channel>/<source_id>/<job file>      (after retirement)
    <job file>.d -> messages/<channel>/<source_id>  (job link)

``meta.json`` is the commit marker: it is written last by ingress, and egress
ignores any job whose linked directory lacks it.
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

CHANNEL_TELEGRAM = "telegram"
PROMPT_FILE = "prompt.txt"
META_FILE = "meta.json"
ATTACHMENTS_DIR = "attachments"
JOB_LINK_SUFFIX = ".d"
MESSAGE_DIR_MODE = 0o700


@dataclass(slots=True)
class JobMeta:
    """Routing metadata persisted as ``meta.json``."""

    chat_id: int
    message_id: int
    user_id: int | None = None
    channel: str = CHANNEL_TELEGRAM

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "channel": self.channel,
            "chatId": self.chat_id,
            "messageId": self.message_id,
        }
        if self.user_id is not None:
            payload["userId"] = self.user_id
        return payload

    @classmethod
    def from_dict(cls, payload: Any) -> JobMeta:
        if not isinstance(payload, dict):
            raise ValueError("meta.json must contain a JSON object")
        if payload.get("channel") != CHANNEL_TELEGRAM:
            raise ValueError(f"Unsupported channel in meta.json: {payload.get('channel')!r}")
        user_id = payload.get("userId")
        return cls(
            channel=CHANNEL_TELEGRAM,
            chat_id=_require_number(payload, "chatId"),
            message_id=_require_number(payload, "messageId"),
            user_id=None if user_id is None else _require_number(payload, "userId"),
        )


def source_id_for(chat_id: int, message_id: int) -> str:
    """Natural key of a chat message, unique per channel."""

    return f"{chat_id}_{message_id}"


def parse_message_id(full_id: str) -> tuple[str, str]:
    """Split ``<channel>:<id>`` into its parts."""

    channel, _, source_id = full_id.partition(":")
    if not channel or not source_id or ":" in source_id:
        raise ValueError(f"Message id must look like <channel>:<id>, got {full_id!r}")
    if any(part in {".", ".."} or "/" in part for part in (channel, source_id)):
        raise ValueError(f"Message id must not contain path segments: {full_id!r}")
    return channel, source_id


class MessageStore:
    """Directory-per-message store plus job-id symlinks into it."""

    def __init__(self, *, messages_dir: Path, data_dir: Path) -> None:
        self.messages_dir = messages_dir
        self.data_dir = data_dir

    def message_dir(self, channel: str, source_id: str) -> Path:
        return self.messages_dir / channel / source_id

    def create_message_dir(self, channel: str, source_id: str) -> Path:
        path = self.message_dir(channel, source_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.mkdir(mode=MESSAGE_DIR_MODE, exist_ok=True)
        return path

    def create_attachments_dir(self, message_dir: Path) -> Path:
        path = message_dir / ATTACHMENTS_DIR
        path.mkdir(mode=MESSAGE_DIR_MODE, exist_ok=True)
        return path

    def remove_message_dir(self, message_dir: Path) -> None:
        shutil.rmtree(message_dir)

    def write_prompt(self, message_dir: Path, prompt: str) -> Path:
        path = message_dir / PROMPT_FILE
        _write_text_atomic(path, prompt)
        return path

    def read_prompt(self, channel: str, source_id: str) -> str:
        return (self.message_dir(channel, source_id) / PROMPT_FILE).read_text("utf-8").strip()

    def write_meta(self, message_dir: Path, meta: JobMeta) -> Path:
        path = message_dir / META_FILE
        _write_text_atomic(path, json.dumps(meta.to_dict(), indent=2))
        return path

    def job_link_path(self, job_name: str) -> Path:
        return self.data_dir / f"{job_name}{JOB_LINK_SUFFIX}"

    def job_meta_path(self, job_name: str) -> Path:
        return self.job_link_path(job_name) / META_FILE

    def link_job(self, job_name: str, message_dir: Path) -> Path:
        link = self.job_link_path(job_name)
        link.symlink_to(message_dir, target_is_directory=True)
        return link

    def read_job_meta(self, job_name: str) -> JobMeta:
        payload = json.loads(self.job_meta_path(job_name).read_text("utf-8"))
        return JobMeta.from_dict(payload)

    def retire_job(self, job_path: Path) -> Path:
        """Move a terminal job file into its message directory (marks it processed)."""

        target = self.job_link_path(job_path.name) / job_path.name
        job_path.rename(target)
        return target

    def unlink_job(self, job_name: str) -> bool:
        """Remove the job link if it is a symlink; legacy ``.d`` directories stay."""

        link = self.job_link_path(job_name)
        if not link.is_symlink():
            return False
        link.unlink()
        return True


def _require_number(payload: dict[str, Any], key: str) -> int:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"meta.json field {key} must be an integer, got {value!r}")
    return value


def _write_text_atomic(path: Path, text: str) -> None:
    handle, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(handle, "w", encoding="utf-8") as stream:
            stream.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
