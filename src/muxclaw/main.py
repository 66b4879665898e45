"""CLI entrypoint for muxclaw."""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

import rich_click as click

from muxclaw import __version__
from muxclaw.controllers import DispatchCommand, MuxclawCliController
from muxclaw.dispatch import DispatchError
from muxclaw.models import ConfigError
from muxclaw.telegram import TelegramApiError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = MuxclawCliController()

_T = TypeVar("_T")


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="muxclaw")
@click.pass_context
def muxclaw(ctx: click.Context) -> None:
    """muxclaw: channel-to-coding-agent bridge."""

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@muxclaw.command("help")
@click.pass_context
def help_command(ctx: click.Context) -> None:
    """Show this help."""

    click.echo(ctx.parent.get_help() if ctx.parent else ctx.get_help())


@muxclaw.command("ingress")
def ingress() -> None:
    """Start ingress (channel -> queue)."""

    _run(CONTROLLER.ingress)


@muxclaw.command("egress")
def egress() -> None:
    """Start egress reactor (queue -> channel, watches continuously)."""

    _run(CONTROLLER.egress)


@muxclaw.command("dispatch")
@click.argument("message", nargs=-1)
@click.option("--stdin", "use_stdin", is_flag=True, help="Read message from stdin.")
@click.option(
    "--id",
    "message_id",
    default=None,
    metavar="<channel>:<id>",
    help="Read message from the natural key store.",
)
@click.pass_context
def dispatch(
    ctx: click.Context,
    message: tuple[str, ...],
    use_stdin: bool,
    message_id: str | None,
) -> None:
    """Dispatch a message to the configured agent."""

    exit_code = _run(
        lambda: CONTROLLER.dispatch(
            DispatchCommand(words=message, use_stdin=use_stdin, message_id=message_id),
            stdin=click.get_text_stream("stdin"),
        ),
    )
    if exit_code:
        ctx.exit(exit_code)


def _run(action: Callable[[], _T]) -> _T:
    try:
        return action()
    except (ConfigError, DispatchError, TelegramApiError) as error:
        raise click.ClickException(str(error)) from error


if __name__ == "__main__":  # pragma: no cover
    muxclaw()
