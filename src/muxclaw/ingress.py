"""Ingress: persist inbound chat messages and enqueue agent work for them."""

from __future__ import annotations

import logging
import shutil
from collections.abc import Collection, Sequence
from pathlib import Path

from muxclaw.models import FailureTier, SubmitResult, SubmitStatus
from muxclaw.queue import NqQueue, QueueSubmitError, dispatch_argv
from muxclaw.signals import StopFlag
from muxclaw.store import CHANNEL_TELEGRAM, JobMeta, MessageStore, source_id_for
from muxclaw.telegram import (
    AttachmentRef,
    InboundMessage,
    TelegramApiError,
    TelegramClient,
    is_addressed_to_bot,
)

logger = logging.getLogger(__name__)

REJECT_MISSING_ID = "missing_id"
REJECT_NOT_ALLOWED = "not_allowed"
REJECT_EMPTY = "empty"


def admit(message: InboundMessage, allowed_user_ids: Collection[str]) -> str | None:
    """Return why a message must be ignored, or ``None`` when it is admissible."""

    if message.chat_id is None or message.message_id is None:
        return REJECT_MISSING_ID
    if message.user_id is None or str(message.user_id) not in allowed_user_ids:
        return REJECT_NOT_ALLOWED
    if not message.text and not message.attachments:
        return REJECT_EMPTY
    return None


def build_prompt(*, text: str, quote: str = "", attachment_paths: Sequence[Path] = ()) -> str:
    """Assemble the agent prompt: quoted reply, attachment manifest, then text."""

    blocks: list[str] = []
    if quote:
        blocks.append(f"Quote: {quote}")
    if attachment_paths:
        listing = "\n".join(f"{index}. @{path}" for index, path in enumerate(attachment_paths, 1))
        blocks.append(f"Attachments:\n{listing}")
    if text:
        blocks.append(text)
    return "\n\n".join(blocks).strip()


class IngressEnqueuer:
    """Validates, persists and enqueues one inbound message at a time."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: MessageStore,
        queue: NqQueue,
        client: TelegramClient,
        allowed_user_ids: Collection[str],
        self_command: Sequence[str],
        channel: str = CHANNEL_TELEGRAM,
    ) -> None:
        self.store = store
        self.queue = queue
        self.client = client
        self.allowed_user_ids = allowed_user_ids
        self.self_command = tuple(self_command)
        self.channel = channel

    def submit(self, message: InboundMessage) -> SubmitResult:
        """Handle one message; failures are logged and reported, never raised."""

        logger.info(
            "Message from %s (%s): type=%s text=%r quote=%r attachments=%d",
            message.username or "(unknown)",
            message.user_id,
            message.kind.value,
            message.text,
            message.quote,
            len(message.attachments),
        )
        reason = admit(message, self.allowed_user_ids)
        if reason is not None:
            logger.info("Skipping message (%s)", reason)
            return SubmitResult(
                status=SubmitStatus.REJECTED,
                tier=FailureTier.ITEM_SKIPPED,
                reason=reason,
            )

        try:
            return self._persist_and_enqueue(message)
        except Exception as error:  # noqa: BLE001
            logger.exception("Failed to enqueue message %s", message.message_id)
            return SubmitResult(
                status=SubmitStatus.FAILED,
                tier=FailureTier.ITEM_SKIPPED,
                reason=f"unexpected_error: {error}",
            )

    def _persist_and_enqueue(self, message: InboundMessage) -> SubmitResult:
        # admit() guarantees the ids are present.
        chat_id = int(message.chat_id)  # type: ignore[arg-type]
        message_id = int(message.message_id)  # type: ignore[arg-type]
        source_id = source_id_for(chat_id, message_id)

        self._send_typing(chat_id)

        try:
            message_dir = self.store.create_message_dir(self.channel, source_id)
        except OSError as error:
            logger.error("Failed to create message directory for %s: %s", source_id, error)
            return SubmitResult(
                status=SubmitStatus.FAILED,
                tier=FailureTier.ITEM_SKIPPED,
                reason="message_dir_failed",
            )

        attachment_paths: list[Path] = []
        if message.attachments:
            attachment_paths = self._stage_attachments(message_dir, message.attachments)
            if not attachment_paths and not message.text:
                logger.warning("All attachments failed for %s and no text, rolling back", source_id)
                self.store.remove_message_dir(message_dir)
                return SubmitResult(
                    status=SubmitStatus.ROLLED_BACK,
                    tier=FailureTier.ROLLBACK,
                    reason="attachments_failed",
                )

        prompt = build_prompt(
            text=message.text,
            quote=message.quote,
            attachment_paths=attachment_paths,
        )
        self._send_typing(chat_id)
        self.store.write_prompt(message_dir, prompt)

        try:
            job_id = self.queue.submit(dispatch_argv(self.self_command, self.channel, source_id))
        except QueueSubmitError as error:
            logger.error("Queue submission failed for %s: %s", source_id, error)
            return SubmitResult(
                status=SubmitStatus.FAILED,
                tier=FailureTier.ITEM_SKIPPED,
                reason="queue_failed",
                message_dir=message_dir,
            )

        try:
            self.store.link_job(job_id, message_dir)
        except OSError as error:
            logger.error("Failed to link job %s to %s: %s", job_id, message_dir, error)

        self.store.write_meta(
            message_dir,
            JobMeta(
                channel=self.channel,
                chat_id=chat_id,
                message_id=message_id,
                user_id=message.user_id,
            ),
        )
        logger.info("Queued %s from user %s", job_id, message.user_id)
        return SubmitResult(
            status=SubmitStatus.QUEUED,
            job_id=job_id,
            message_dir=message_dir,
        )

    def _send_typing(self, chat_id: int) -> None:
        try:
            self.client.send_chat_action(chat_id, "typing")
        except TelegramApiError as error:
            logger.warning("Typing indicator failed for chat %s: %s", chat_id, error)

    def _stage_attachments(
        self,
        message_dir: Path,
        attachments: Sequence[AttachmentRef],
    ) -> list[Path]:
        attachments_dir = self.store.create_attachments_dir(message_dir)
        staged: list[Path] = []
        for attachment in attachments:
            dest = attachments_dir / attachment.file_name
            try:
                self._download(attachment, dest)
            except (TelegramApiError, OSError) as error:
                logger.warning("Failed to download attachment %s: %s", attachment.file_name, error)
                dest.unlink(missing_ok=True)
                continue
            logger.info("Downloaded attachment %s", dest)
            staged.append(dest)

        if not staged:
            shutil.rmtree(attachments_dir, ignore_errors=True)
        return staged

    def _download(self, attachment: AttachmentRef, dest: Path) -> None:
        file_info = self.client.get_file(attachment.file_id)
        file_path = (file_info or {}).get("file_path")
        if not file_path:
            raise TelegramApiError(
                "getFile",
                f"No file_path returned for file_id: {attachment.file_id}",
            )
        self.client.download_file(file_path, dest)


class IngressListener:
    """Long-polls the channel and feeds addressed messages to the enqueuer."""

    def __init__(
        self,
        *,
        client: TelegramClient,
        enqueuer: IngressEnqueuer,
        poll_timeout_seconds: int = 30,
        retry_delay_seconds: float = 5.0,
        stop: StopFlag | None = None,
    ) -> None:
        self.client = client
        self.enqueuer = enqueuer
        self.poll_timeout_seconds = poll_timeout_seconds
        self.retry_delay_seconds = retry_delay_seconds
        self.stop = stop or StopFlag()
        self._offset = 0

    def run(self, *, max_polls: int | None = None) -> int:
        """Poll until stopped (or ``max_polls`` reached); return handled updates."""

        handled = 0
        polls = 0
        with self.stop.handlers():
            while not self.stop.requested:
                if max_polls is not None and polls >= max_polls:
                    break
                handled += self.poll_once()
                polls += 1
        return handled

    def poll_once(self) -> int:
        try:
            updates = self.client.get_updates(
                offset=self._offset,
                timeout=self.poll_timeout_seconds,
            )
        except TelegramApiError as error:
            logger.warning("Polling failed: %s", error)
            self.stop.sleep(self.retry_delay_seconds)
            return 0

        for update in updates:
            self._offset = max(self._offset, int(update["update_id"]) + 1)
            payload = update.get("message")
            if not payload:
                continue
            message = InboundMessage.from_message(payload)
            if not is_addressed_to_bot(message):
                logger.debug("Ignoring %s message without mention", message.chat_type)
                continue
            self.enqueuer.submit(message)
        return len(updates)
