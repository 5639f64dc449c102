"""
chatline CLI — `chatline` command.

Commands:
  chatline serve                  Run the Socket.IO chat server
  chatline history <a> <b>        Recent messages between two users
  chatline calls <user>           Recent call logs for a user
"""

import asyncio
import logging

try:
    import click
    from rich.console import Console
    from rich.logging import RichHandler
except ImportError:
    raise SystemExit("CLI requires extras: pip install chatline[cli]")

from chatline.config import Settings, load_settings
from chatline.errors import ChatlineError

console = Console()


def _load_settings(**overrides) -> Settings:
    try:
        return load_settings(**overrides)
    except ChatlineError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _run(coro):
    return asyncio.run(coro)


@click.group()
@click.version_option("0.1.0")
def main():
    """chatline — real-time presence, messaging and call signaling."""


# Register subcommands from separate modules
from chatline.cli.history import calls_cmd, history_cmd
from chatline.cli.serve import serve

main.add_command(serve)
main.add_command(history_cmd)
main.add_command(calls_cmd)


if __name__ == "__main__":
    main()
