"""Controllers for muxclaw CLI commands."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TextIO

from muxclaw.config import AppConfig, Settings
from muxclaw.dispatch import agent_command, resolve_prompt, run_agent
from muxclaw.egress import EgressReconciler
from muxclaw.ingress import IngressEnqueuer, IngressListener
from muxclaw.queue import NqQueue
from muxclaw.store import MessageStore
from muxclaw.telegram import TelegramClient

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(slots=True)
class DispatchCommand:
    """CLI input for one agent dispatch."""

    words: tuple[str, ...]
    use_stdin: bool
    message_id: str | None


class MuxclawCliController:
    """Builds settings and config once, then runs the requested component."""

    def prepare(self) -> tuple[Settings, AppConfig]:
        """Fail fast on configuration problems before any loop starts."""

        settings = Settings.from_env()
        configure_logging(settings.log_level)
        settings.paths.ensure()
        config = AppConfig.load(settings.paths.config_file)
        config.validate_workspace()
        return settings, config

    def ingress(self) -> None:
        settings, config = self.prepare()
        token = config.require_token()
        if not config.allowed_user_ids:
            logger.warning("No allowed users configured. All messages will be ignored.")
            logger.warning("Add users to %s", settings.paths.config_file)
        _log_startup("ingress", settings)
        logger.info("Allowed users: %s", ", ".join(sorted(config.allowed_user_ids)) or "(none)")

        with TelegramClient(token, settings=settings.telegram) as client:
            bot = client.get_me()
            logger.info("[ingress] bot=@%s", bot.get("username", "?"))
            enqueuer = IngressEnqueuer(
                store=_message_store(settings),
                queue=NqQueue(
                    binary=settings.queue.binary,
                    queue_dir=settings.paths.queue_dir,
                    completed_dir=settings.paths.completed_dir,
                    failed_dir=settings.paths.failed_dir,
                ),
                client=client,
                allowed_user_ids=config.allowed_user_ids,
                self_command=settings.queue.self_command,
            )
            listener = IngressListener(
                client=client,
                enqueuer=enqueuer,
                poll_timeout_seconds=settings.telegram.poll_timeout_seconds,
            )
            logger.info("Waiting for Telegram messages... (Ctrl-C to stop)")
            listener.run()

    def egress(self) -> None:
        settings, config = self.prepare()
        token = config.require_token()
        _log_startup("egress", settings)

        with TelegramClient(token, settings=settings.telegram) as client:
            reconciler = EgressReconciler(
                store=_message_store(settings),
                client=client,
                completed_dir=settings.paths.completed_dir,
                failed_dir=settings.paths.failed_dir,
                max_message_length=settings.telegram.max_message_length,
            )
            reconciler.run()

    def dispatch(self, command: DispatchCommand, *, stdin: TextIO) -> int:
        settings, config = self.prepare()
        prompt = resolve_prompt(
            words=command.words,
            use_stdin=command.use_stdin,
            message_id=command.message_id,
            store=_message_store(settings),
            stdin=stdin,
        )
        return run_agent(
            agent_command(config.agent_name, prompt),
            workspace=config.workspace_dir(),
        )


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)


def _message_store(settings: Settings) -> MessageStore:
    return MessageStore(
        messages_dir=settings.paths.messages_dir,
        data_dir=settings.paths.data_dir,
    )


def _log_startup(component: str, settings: Settings) -> None:
    logger.info("[%s] config=%s", component, settings.paths.config_dir)
    logger.info("[%s] data=%s", component, settings.paths.data_dir)
    logger.info("[%s] queue=%s", component, settings.paths.queue_dir)
