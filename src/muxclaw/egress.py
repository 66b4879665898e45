"""Egress: deliver finished queue jobs back to the chat they came from.

A terminal job file moves through ``discovered -> validated -> delivered ->
retired``. Retirement renames the file into its message directory, so a job
that is no longer in the terminal directory has been processed.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from queue import Empty, Queue

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from muxclaw.models import FailureTier, JobResult, JobStatus
from muxclaw.rendering import (
    TELEGRAM_MAX_MESSAGE_LENGTH,
    escape_markdown_v2,
    extract_output,
    split_message,
)
from muxclaw.signals import StopFlag
from muxclaw.store import JobMeta, MessageStore
from muxclaw.telegram import PARSE_MODE_MARKDOWN_V2, TelegramClient

logger = logging.getLogger(__name__)

JOB_FILE_PREFIX = ","
_WATCHED_EVENT_TYPES = frozenset({"created", "modified", "moved", "closed"})


class _JobEventHandler(FileSystemEventHandler):
    """Forwards job file paths from observer threads to the reconciler thread."""

    def __init__(self, paths: Queue[str]) -> None:
        super().__init__()
        self._paths = paths

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in _WATCHED_EVENT_TYPES:
            return
        for path in (event.src_path, getattr(event, "dest_path", "")):
            if path:
                self._paths.put(os.fsdecode(path))


class EgressReconciler:
    """Finds terminal job files, replies with their output and retires them."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: MessageStore,
        client: TelegramClient,
        completed_dir: Path,
        failed_dir: Path,
        max_message_length: int = TELEGRAM_MAX_MESSAGE_LENGTH,
        event_poll_seconds: float = 0.5,
        stop: StopFlag | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.completed_dir = completed_dir
        self.failed_dir = failed_dir
        self.max_message_length = max_message_length
        self.event_poll_seconds = event_poll_seconds
        self.stop = stop or StopFlag()
        self._processing: set[str] = set()

    def run(self) -> None:
        """Catch up on jobs finished while offline, then follow live events."""

        paths: Queue[str] = Queue()
        observer = Observer()
        handler = _JobEventHandler(paths)
        for directory in (self.completed_dir, self.failed_dir):
            observer.schedule(handler, str(directory), recursive=False)

        with self.stop.handlers():
            # Watch before scanning so nothing finishing during the scan is missed.
            observer.start()
            try:
                self.reconcile()
                logger.info("Watching for completed/failed jobs")
                while not self.stop.requested:
                    try:
                        path = paths.get(timeout=self.event_poll_seconds)
                    except Empty:
                        continue
                    self.handle(Path(path))
            finally:
                observer.stop()
                observer.join()

    def reconcile(self) -> list[JobResult]:
        results = self.scan(self.completed_dir)
        results.extend(self.scan(self.failed_dir))
        return results

    def scan(self, directory: Path) -> list[JobResult]:
        """Handle every job file in ``directory``, oldest (lowest name) first."""

        try:
            names = sorted(
                entry.name
                for entry in os.scandir(directory)
                if entry.is_file() and entry.name.startswith(JOB_FILE_PREFIX)
            )
        except OSError as error:
            logger.error("Scan error in %s: %s", directory, error)
            return []

        results: list[JobResult] = []
        for name in names:
            result = self.handle(directory / name)
            if result is not None:
                results.append(result)
        return results

    def handle(self, path: Path) -> JobResult | None:
        """Process one job path; ``None`` for non-job paths and in-flight duplicates."""

        job_name = path.name
        if not job_name.startswith(JOB_FILE_PREFIX) or job_name in self._processing:
            return None
        if not _stats(path) or not _stats(self.store.job_meta_path(job_name)):
            logger.debug("Ignoring %s: job file or job meta not present", job_name)
            return JobResult(
                job_name=job_name,
                status=JobStatus.SKIPPED,
                tier=FailureTier.ITEM_SKIPPED,
                reason="not_ready",
            )

        self._processing.add(job_name)
        try:
            return self.process_job(path.parent, job_name)
        except Exception as error:  # noqa: BLE001
            logger.exception("Error processing %s", job_name)
            return JobResult(
                job_name=job_name,
                status=JobStatus.FAILED,
                tier=FailureTier.ITEM_SKIPPED,
                reason=str(error),
            )
        finally:
            self._processing.discard(job_name)

    def process_job(self, directory: Path, job_name: str) -> JobResult:
        """Deliver one job's output and retire it. Delivery errors propagate."""

        job_path = directory / job_name
        if not job_path.exists():
            return JobResult(
                job_name=job_name,
                status=JobStatus.SKIPPED,
                tier=FailureTier.ITEM_SKIPPED,
                reason="already_retired",
            )
        try:
            meta = self.store.read_job_meta(job_name)
        except (OSError, ValueError) as error:
            logger.warning("Invalid job meta for %s: %s", job_name, error)
            return JobResult(
                job_name=job_name,
                status=JobStatus.SKIPPED,
                tier=FailureTier.ITEM_SKIPPED,
                reason="invalid_meta",
            )

        output = extract_output(job_path.read_text("utf-8", errors="replace"))
        if not output:
            logger.info("Empty output for %s, skipping", job_name)
            return JobResult(job_name=job_name, status=JobStatus.EMPTY)

        self.client.send_chat_action(meta.chat_id, "typing")
        sent = self._deliver(meta, output)

        self.store.retire_job(job_path)
        self.store.unlink_job(job_name)
        logger.info("Sent response for %s to chat %s (%d chunks)", job_name, meta.chat_id, sent)
        return JobResult(job_name=job_name, status=JobStatus.DELIVERED, chunks_sent=sent)

    def _deliver(self, meta: JobMeta, output: str) -> int:
        chunks = split_message(escape_markdown_v2(output), self.max_message_length)
        for chunk in chunks:
            self.client.send_message(
                meta.chat_id,
                chunk,
                reply_to_message_id=meta.message_id,
                parse_mode=PARSE_MODE_MARKDOWN_V2,
            )
        return len(chunks)


def _stats(path: Path) -> bool:
    try:
        path.stat()
    except OSError:
        return False
    return True
