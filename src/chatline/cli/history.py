"""CLI: chatline history, chatline calls"""

import json
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from chatline.models.payloads import isoformat_z
from chatline.persistence import SQLiteStore

console = Console()


def _load_settings(**overrides):
    from chatline.cli.main import _load_settings
    return _load_settings(**overrides)


def _run(coro):
    from chatline.cli.main import _run
    return _run(coro)


async def _open_store(db_path: Optional[str]) -> SQLiteStore:
    settings = _load_settings(db_path=db_path)
    store = SQLiteStore(settings.db_path)
    await store.init()
    return store


@click.command("history")
@click.argument("user_a")
@click.argument("user_b")
@click.option("--limit", default=50, type=int)
@click.option("--db-path", default=None)
@click.option("--json-output", "--json", is_flag=True)
def history_cmd(user_a: str, user_b: str, limit: int, db_path: Optional[str], json_output: bool):
    """Show recent messages between two users."""

    async def _history():
        store = await _open_store(db_path)
        messages = await store.get_messages(user_a, user_b, limit=limit)
        if json_output:
            click.echo(json.dumps([
                {
                    "id": m.id,
                    "senderId": m.sender_id,
                    "receiverId": m.receiver_id,
                    "message": m.body,
                    "messageType": m.kind,
                    "fileUrl": m.file_ref,
                    "timestamp": isoformat_z(m.created_at),
                }
                for m in messages
            ], indent=2))
            return
        table = Table(title=f"Messages between {user_a} and {user_b} ({len(messages)})")
        table.add_column("ID", style="bold")
        table.add_column("From")
        table.add_column("To")
        table.add_column("Message")
        table.add_column("Sent")
        for m in messages:
            body = m.body if m.kind == "text" else f"[file] {m.body} ({m.file_ref})"
            table.add_row(str(m.id), m.sender_id, m.receiver_id, body, isoformat_z(m.created_at))
        console.print(table)

    _run(_history())


@click.command("calls")
@click.argument("user_id")
@click.option("--limit", default=20, type=int)
@click.option("--db-path", default=None)
@click.option("--json-output", "--json", is_flag=True)
def calls_cmd(user_id: str, limit: int, db_path: Optional[str], json_output: bool):
    """Show recent calls made or received by a user."""

    async def _calls():
        store = await _open_store(db_path)
        logs = await store.get_call_history(user_id, limit=limit)
        if json_output:
            click.echo(json.dumps([
                {
                    "id": c.id,
                    "callerId": c.caller_id,
                    "receiverId": c.receiver_id,
                    "callType": c.call_type,
                    "status": c.status,
                    "duration": c.duration,
                    "startedAt": isoformat_z(c.started_at),
                }
                for c in logs
            ], indent=2))
            return
        table = Table(title=f"Calls for {user_id} ({len(logs)})")
        table.add_column("ID", style="bold")
        table.add_column("Caller")
        table.add_column("Receiver")
        table.add_column("Status")
        table.add_column("Duration")
        table.add_column("Started")
        for c in logs:
            table.add_row(str(c.id), c.caller_id, c.receiver_id, c.status, f"{c.duration}s", isoformat_z(c.started_at))
        console.print(table)

    _run(_calls())
