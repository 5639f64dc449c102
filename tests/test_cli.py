import asyncio
import json

from click.testing import CliRunner

from chatline.cli.main import main
from chatline.persistence import SQLiteStore


def _seed(db_path: str) -> None:
    async def _fill():
        store = SQLiteStore(db_path)
        await store.init()
        await store.save_message("1", "2", "hello")
        await store.save_message("2", "1", "hey")
        await store.save_call_log("1", "2", "audio", "answered", 12)

    asyncio.run(_fill())


def test_version():
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_history_json(tmp_path):
    db_path = str(tmp_path / "chat.db")
    _seed(db_path)

    result = CliRunner().invoke(main, ["history", "1", "2", "--db-path", db_path, "--json"])
    assert result.exit_code == 0, result.output
    messages = json.loads(result.output)
    assert [m["message"] for m in messages] == ["hello", "hey"]
    assert messages[0]["senderId"] == "1"


def test_calls_json(tmp_path):
    db_path = str(tmp_path / "chat.db")
    _seed(db_path)

    result = CliRunner().invoke(main, ["calls", "2", "--db-path", db_path, "--json"])
    assert result.exit_code == 0, result.output
    logs = json.loads(result.output)
    assert logs[0]["status"] == "answered"
    assert logs[0]["duration"] == 12


def test_serve_without_credentials_config_fails(monkeypatch):
    monkeypatch.delenv("CHATLINE_JWT_SECRET", raising=False)
    monkeypatch.delenv("CHATLINE_AUTH_URL", raising=False)
    result = CliRunner().invoke(main, ["serve"])
    assert result.exit_code == 1
