"""CLI: chatline serve"""

from typing import Optional

import click
import uvicorn


def _load_settings(**overrides):
    from chatline.cli.main import _load_settings
    return _load_settings(**overrides)


def _setup_logging(level: str) -> None:
    from chatline.cli.main import _setup_logging
    _setup_logging(level)


@click.command("serve")
@click.option("--host", default=None, help="Interface to bind (CHATLINE_HOST)")
@click.option("--port", default=None, type=int, help="Port to listen on (CHATLINE_PORT)")
@click.option("--db-path", default=None, help="SQLite database file (CHATLINE_DB_PATH)")
@click.option("--ring-timeout", default=None, type=float, help="Seconds before an unanswered call fails")
@click.option("--log-level", default=None, help="DEBUG, INFO, WARNING, ...")
def serve(
    host: Optional[str],
    port: Optional[int],
    db_path: Optional[str],
    ring_timeout: Optional[float],
    log_level: Optional[str],
):
    """Run the chat server."""
    from chatline.cli.main import console
    from chatline.errors import ChatlineError
    from chatline.transport.socketio import create_app

    settings = _load_settings(host=host, port=port, db_path=db_path, ring_timeout=ring_timeout, log_level=log_level)
    _setup_logging(settings.log_level)
    try:
        app = create_app(settings)
    except ChatlineError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)

    console.print(f"[green]chatline listening on http://{settings.host}:{settings.port}/{settings.socketio_path}/[/green]")
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower(), log_config=None)
