"""Telegram Bot API client and inbound message model."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import httpx

from muxclaw.config import TelegramSettings

PARSE_MODE_MARKDOWN_V2 = "MarkdownV2"

_MIME_EXTENSIONS: dict[str, str] = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "audio/ogg": ".ogg",
    "audio/mpeg": ".mp3",
    "audio/mp4": ".m4a",
    "application/pdf": ".pdf",
    "text/plain": ".txt",
}


class TelegramApiError(RuntimeError):
    """Bot API call failed (transport error, HTTP error or ``ok: false``)."""

    def __init__(self, method: str, message: str, *, error_code: int | None = None) -> None:
        super().__init__(f"Telegram {method} failed: {message}")
        self.method = method
        self.error_code = error_code


class TelegramClient:
    """Minimal Bot API client for polling, file download and replies."""

    def __init__(
        self,
        token: str,
        *,
        settings: TelegramSettings | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        settings = settings or TelegramSettings()
        self._api_url = f"{settings.api_base_url}/bot{token}/"
        self._file_url = f"{settings.api_base_url}/file/bot{token}/"
        self._client = httpx.Client(
            timeout=httpx.Timeout(settings.request_timeout_seconds, connect=10.0),
            transport=transport or httpx.HTTPTransport(retries=settings.max_retries),
            follow_redirects=True,
        )

    def get_me(self) -> dict[str, Any]:
        return self._call("getMe")

    def get_updates(self, *, offset: int, timeout: int) -> list[dict[str, Any]]:
        return self._call(
            "getUpdates",
            {"offset": offset, "timeout": timeout, "allowed_updates": ["message"]},
        )

    def get_file(self, file_id: str) -> dict[str, Any]:
        return self._call("getFile", {"file_id": file_id})

    def download_file(self, file_path: str, dest: Path) -> Path:
        """Stream a file (``getFile`` path) to ``dest``."""

        url = self._file_url + file_path.lstrip("/")
        try:
            with self._client.stream("GET", url) as response:
                if not response.is_success:
                    raise TelegramApiError(
                        "download",
                        f"HTTP {response.status_code} {response.reason_phrase}",
                        error_code=response.status_code,
                    )
                with dest.open("wb") as handle:
                    for chunk in response.iter_bytes():
                        handle.write(chunk)
        except httpx.HTTPError as error:
            raise TelegramApiError("download", str(error)) from error
        return dest

    def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        reply_to_message_id: int | None = None,
        parse_mode: str | None = PARSE_MODE_MARKDOWN_V2,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if reply_to_message_id is not None:
            payload["reply_parameters"] = {"message_id": reply_to_message_id}
        if parse_mode:
            payload["parse_mode"] = parse_mode
        return self._call("sendMessage", payload)

    def send_chat_action(self, chat_id: int, action: str = "typing") -> None:
        self._call("sendChatAction", {"chat_id": chat_id, "action": action})

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> TelegramClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _call(self, method: str, payload: dict[str, Any] | None = None) -> Any:
        try:
            response = self._client.post(self._api_url + method, json=payload or {})
        except httpx.HTTPError as error:
            raise TelegramApiError(method, str(error)) from error
        try:
            body = response.json()
        except ValueError as error:
            raise TelegramApiError(
                method,
                f"HTTP {response.status_code} with non-JSON body",
                error_code=response.status_code,
            ) from error
        if not isinstance(body, dict) or not body.get("ok"):
            description = body.get("description") if isinstance(body, dict) else None
            error_code = body.get("error_code") if isinstance(body, dict) else None
            raise TelegramApiError(
                method,
                description or f"HTTP {response.status_code}",
                error_code=error_code if isinstance(error_code, int) else response.status_code,
            )
        return body.get("result")


class MessageKind(str, Enum):
    """Inbound message shapes; each yields at most one attachment."""

    TEXT = "text"
    PHOTO = "photo"
    DOCUMENT = "document"
    AUDIO = "audio"
    VOICE = "voice"
    OTHER = "other"


@dataclass(slots=True, frozen=True)
class AttachmentRef:
    """Channel file reference plus the deterministic local file name."""

    file_id: str
    file_name: str


@dataclass(slots=True)
class InboundMessage:
    """Channel-neutral view of one inbound chat message."""

    chat_id: int | None
    message_id: int | None
    user_id: int | None
    chat_type: str = "private"
    username: str | None = None
    text: str = ""
    quote: str = ""
    kind: MessageKind = MessageKind.OTHER
    attachments: list[AttachmentRef] = field(default_factory=list)
    has_mention: bool = False

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> InboundMessage:
        """Build from a Bot API ``Message`` object."""

        chat = message.get("chat") or {}
        sender = message.get("from") or {}
        reply = message.get("reply_to_message") or {}
        kind, attachments = classify_message(message)
        entities = list(message.get("entities") or []) + list(
            message.get("caption_entities") or [],
        )
        return cls(
            chat_id=chat.get("id"),
            message_id=message.get("message_id"),
            user_id=sender.get("id"),
            chat_type=chat.get("type", "private"),
            username=sender.get("username"),
            text=message.get("text") or message.get("caption") or "",
            quote=reply.get("text") or reply.get("caption") or "",
            kind=kind,
            attachments=attachments,
            has_mention=any(entity.get("type") == "mention" for entity in entities),
        )


def classify_message(message: dict[str, Any]) -> tuple[MessageKind, list[AttachmentRef]]:
    """Resolve the message kind and its attachment descriptor, once."""

    if message.get("photo"):
        largest = message["photo"][-1]
        return MessageKind.PHOTO, [AttachmentRef(largest["file_id"], "photo.jpg")]

    document = message.get("document")
    if document:
        name = _safe_file_name(document.get("file_name"))
        name = name or f"document{mime_to_ext(document.get('mime_type'), '')}"
        return MessageKind.DOCUMENT, [AttachmentRef(document["file_id"], name)]

    audio = message.get("audio")
    if audio:
        name = _safe_file_name(audio.get("file_name"))
        name = name or f"audio{mime_to_ext(audio.get('mime_type'), '.mp3')}"
        return MessageKind.AUDIO, [AttachmentRef(audio["file_id"], name)]

    voice = message.get("voice")
    if voice:
        name = f"voice{mime_to_ext(voice.get('mime_type'), '.ogg')}"
        return MessageKind.VOICE, [AttachmentRef(voice["file_id"], name)]

    if message.get("text"):
        return MessageKind.TEXT, []
    return MessageKind.OTHER, []


def mime_to_ext(mime: str | None, fallback: str) -> str:
    if not mime:
        return fallback
    return _MIME_EXTENSIONS.get(mime, fallback)


def is_addressed_to_bot(message: InboundMessage) -> bool:
    """Private chats are always handled; groups only when the bot is mentioned."""

    if message.chat_type == "private":
        return True
    if message.chat_type in {"group", "supergroup"}:
        return message.has_mention
    return False


def _safe_file_name(name: str | None) -> str:
    if not name:
        return ""
    base = Path(name).name
    return "" if base in {".", ".."} else base
