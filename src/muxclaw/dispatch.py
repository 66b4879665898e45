"""Dispatch entry point: resolve a prompt and run the configured agent on it."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from muxclaw.config import SUPPORTED_AGENTS
from muxclaw.store import MessageStore, parse_message_id

logger = logging.getLogger(__name__)


class DispatchError(RuntimeError):
    """Prompt could not be resolved or the agent could not be started."""


@dataclass(slots=True)
class AgentCommand:
    """Resolved agent invocation."""

    argv: list[str]


def resolve_prompt(
    *,
    words: Sequence[str],
    use_stdin: bool,
    message_id: str | None,
    store: MessageStore,
    stdin: TextIO,
) -> str:
    """Pick the prompt source: ``--stdin``, then ``--id``, then literal words."""

    if use_stdin:
        return stdin.read().strip()

    if message_id is not None:
        try:
            channel, source_id = parse_message_id(message_id)
        except ValueError as error:
            raise DispatchError("--id format must be <channel>:<id>.") from error
        try:
            return store.read_prompt(channel, source_id)
        except OSError as error:
            path = store.message_dir(channel, source_id) / "prompt.txt"
            raise DispatchError(f"message not found: {path}") from error

    prompt = " ".join(words)
    if not prompt:
        raise DispatchError(
            "no message provided.\n"
            "Usage: muxclaw dispatch <message> | --stdin | --id <channel>:<id>",
        )
    return prompt


def agent_command(agent_name: str, prompt: str) -> AgentCommand:
    if agent_name not in SUPPORTED_AGENTS:
        raise DispatchError(f"Unsupported agent: {agent_name}")
    return AgentCommand(argv=["claude", "-p", prompt])


def run_agent(command: AgentCommand, *, workspace: Path) -> int:
    """Run the agent synchronously with inherited output; return its exit code."""

    logger.debug("Running %s in %s", command.argv[0], workspace)
    try:
        completed = subprocess.run(  # noqa: S603
            command.argv,
            cwd=workspace,
            stdin=subprocess.DEVNULL,
            check=False,
        )
    except FileNotFoundError as error:
        raise DispatchError(f"Agent command not found: {command.argv[0]}") from error
    except OSError as error:
        raise DispatchError(f"Agent failed to start: {error}") from error
    return completed.returncode
