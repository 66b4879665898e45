"""Shared test fixtures."""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

from muxclaw.queue import QueueSubmitError
from muxclaw.store import MessageStore
from muxclaw.telegram import TelegramApiError


class FakeTelegramClient:
    """Records Bot API calls; ``fail_methods`` makes the named methods raise."""

    def __init__(
        self,
        *,
        files: dict[str, bytes] | None = None,
        updates: Sequence[list[dict[str, Any]]] = (),
        fail_methods: Sequence[str] = (),
    ) -> None:
        self.files = dict(files or {})
        self.update_batches = list(updates)
        self.fail_methods = set(fail_methods)
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.sent: list[dict[str, Any]] = []

    def _record(self, method: str, **payload: Any) -> None:
        self.calls.append((method, payload))
        if method in self.fail_methods:
            raise TelegramApiError(method, "boom")

    def get_me(self) -> dict[str, Any]:
        self._record("getMe")
        return {"id": 1, "username": "muxclaw_bot"}

    def get_updates(self, *, offset: int, timeout: int) -> list[dict[str, Any]]:
        self._record("getUpdates", offset=offset, timeout=timeout)
        return self.update_batches.pop(0) if self.update_batches else []

    def get_file(self, file_id: str) -> dict[str, Any]:
        self._record("getFile", file_id=file_id)
        if file_id not in self.files:
            raise TelegramApiError("getFile", "file not found")
        return {"file_id": file_id, "file_path": f"files/{file_id}"}

    def download_file(self, file_path: str, dest: Path) -> Path:
        self._record("download", file_path=file_path)
        dest.write_bytes(self.files[file_path.removeprefix("files/")])
        return dest

    def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        reply_to_message_id: int | None = None,
        parse_mode: str | None = None,
    ) -> dict[str, Any]:
        self._record(
            "sendMessage",
            chat_id=chat_id,
            text=text,
            reply_to_message_id=reply_to_message_id,
            parse_mode=parse_mode,
        )
        self.sent.append(
            {"chat_id": chat_id, "text": text, "reply_to_message_id": reply_to_message_id},
        )
        return {"message_id": len(self.sent)}

    def send_chat_action(self, chat_id: int, action: str = "typing") -> None:
        self._record("sendChatAction", chat_id=chat_id, action=action)

    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]


class FakeQueue:
    """Hands out sequential job names instead of running ``nq``."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.submitted: list[list[str]] = []

    def submit(self, argv: Sequence[str]) -> str:
        self.submitted.append(list(argv))
        if self.fail:
            raise QueueSubmitError("nq exited with 1: queue is broken")
        return f",19a2b3c4d5e.{len(self.submitted)}"


@pytest.fixture()
def store(tmp_path: Path) -> MessageStore:
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    return MessageStore(messages_dir=data_dir / "messages", data_dir=data_dir)


@pytest.fixture()
def fake_client() -> FakeTelegramClient:
    return FakeTelegramClient()


@pytest.fixture()
def fake_queue() -> FakeQueue:
    return FakeQueue()


@pytest.fixture()
def failing_queue() -> FakeQueue:
    return FakeQueue(fail=True)


@pytest.fixture()
def make_client():
    """Factory for fake clients with preloaded files, updates or failing methods."""

    return FakeTelegramClient


@pytest.fixture()
def write_config():
    def _write(path: Path, payload: dict[str, Any]) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload), "utf-8")
        return path

    return _write


@pytest.fixture()
def telegram_message():
    """Builder for a Bot API ``Message`` from an allowed user in a private chat."""

    def _build(**overrides: Any) -> dict[str, Any]:
        message: dict[str, Any] = {
            "message_id": 42,
            "chat": {"id": 1001, "type": "private"},
            "from": {"id": 7, "username": "alice"},
            "text": "fix the build",
        }
        message.update(overrides)
        return message

    return _build
