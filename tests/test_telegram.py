from __future__ import annotations

import json
from pathlib import Path

import allure
import httpx
import pytest

from muxclaw.config import TelegramSettings
from muxclaw.telegram import (
    InboundMessage,
    MessageKind,
    TelegramApiError,
    TelegramClient,
    classify_message,
    is_addressed_to_bot,
    mime_to_ext,
)

pytestmark = [
    allure.epic("Chat Channel"),
    allure.feature("Telegram Bot API"),
]


def _client(handler) -> TelegramClient:
    return TelegramClient(
        "123:abc",
        settings=TelegramSettings(api_base_url="https://tg.test"),
        transport=httpx.MockTransport(handler),
    )


def test_send_message_posts_markdown_reply() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 9}})

    with _client(handler) as client:
        result = client.send_message(1001, "hi\\!", reply_to_message_id=42)

    assert result == {"message_id": 9}
    assert str(requests[0].url) == "https://tg.test/bot123:abc/sendMessage"
    assert json.loads(requests[0].content) == {
        "chat_id": 1001,
        "text": "hi\\!",
        "reply_parameters": {"message_id": 42},
        "parse_mode": "MarkdownV2",
    }


def test_get_updates_requests_messages_only() -> None:
    payloads: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        payloads.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True, "result": [{"update_id": 5}]})

    with _client(handler) as client:
        updates = client.get_updates(offset=5, timeout=30)

    assert updates == [{"update_id": 5}]
    assert payloads == [{"offset": 5, "timeout": 30, "allowed_updates": ["message"]}]


def test_api_error_raises_with_description() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={"ok": False, "error_code": 400, "description": "Bad Request: can't parse"},
        )

    with _client(handler) as client, pytest.raises(TelegramApiError, match="can't parse") as excinfo:
        client.send_chat_action(1001)

    assert excinfo.value.method == "sendChatAction"
    assert excinfo.value.error_code == 400


def test_transport_error_raises_api_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with _client(handler) as client, pytest.raises(TelegramApiError, match="getMe"):
        client.get_me()


def test_download_file_streams_to_destination(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url) == "https://tg.test/file/bot123:abc/photos/file_1.jpg"
        return httpx.Response(200, content=b"image-bytes")

    dest = tmp_path / "photo.jpg"
    with _client(handler) as client:
        client.download_file("photos/file_1.jpg", dest)

    assert dest.read_bytes() == b"image-bytes"


def test_download_file_http_error(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    with _client(handler) as client, pytest.raises(TelegramApiError, match="HTTP 404"):
        client.download_file("missing", tmp_path / "x")


@pytest.mark.parametrize(
    ("overrides", "kind", "file_id", "file_name"),
    [
        ({"photo": [{"file_id": "s"}, {"file_id": "l"}]}, MessageKind.PHOTO, "l", "photo.jpg"),
        (
            {"document": {"file_id": "d", "file_name": "../../etc/report.pdf"}},
            MessageKind.DOCUMENT,
            "d",
            "report.pdf",
        ),
        (
            {"document": {"file_id": "d", "mime_type": "application/pdf"}},
            MessageKind.DOCUMENT,
            "d",
            "document.pdf",
        ),
        ({"audio": {"file_id": "a"}}, MessageKind.AUDIO, "a", "audio.mp3"),
        ({"audio": {"file_id": "a", "mime_type": "audio/mp4"}}, MessageKind.AUDIO, "a", "audio.m4a"),
        ({"voice": {"file_id": "v"}}, MessageKind.VOICE, "v", "voice.ogg"),
    ],
)
def test_classify_message_attachments(telegram_message, overrides, kind, file_id, file_name) -> None:
    payload = telegram_message(text=None, **overrides)

    resolved_kind, attachments = classify_message(payload)

    assert resolved_kind is kind
    assert [(ref.file_id, ref.file_name) for ref in attachments] == [(file_id, file_name)]


def test_classify_message_text_and_other(telegram_message) -> None:
    assert classify_message(telegram_message()) == (MessageKind.TEXT, [])
    assert classify_message(telegram_message(text=None)) == (MessageKind.OTHER, [])


def test_mime_to_ext_fallback() -> None:
    assert mime_to_ext("image/png", ".bin") == ".png"
    assert mime_to_ext("application/x-unknown", ".bin") == ".bin"
    assert mime_to_ext(None, "") == ""


def test_inbound_message_reads_caption_quote_and_mentions(telegram_message) -> None:
    message = InboundMessage.from_message(
        telegram_message(
            text=None,
            caption="@muxclaw_bot look",
            caption_entities=[{"type": "mention", "offset": 0, "length": 12}],
            chat={"id": -100, "type": "group"},
            reply_to_message={"message_id": 1, "caption": "older"},
        ),
    )

    assert message.text == "@muxclaw_bot look"
    assert message.quote == "older"
    assert message.chat_id == -100
    assert message.user_id == 7
    assert message.username == "alice"
    assert message.has_mention
    assert is_addressed_to_bot(message)


def test_private_chats_are_always_addressed(telegram_message) -> None:
    assert is_addressed_to_bot(InboundMessage.from_message(telegram_message()))
