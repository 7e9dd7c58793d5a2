from __future__ import annotations

from pathlib import Path

from scripts.create_user import main
from userservice.database import Database


def test_create_user_script_inserts_user(tmp_path: Path, capsys) -> None:
    url = f"sqlite:///{tmp_path / 'script.sqlite3'}"

    assert main(["Ada", "ada@example.com", "--db", url]) == 0
    assert "Created user #1: Ada <ada@example.com>" in capsys.readouterr().out

    database = Database(url)
    try:
        assert [user.email for user in database.list_users()] == ["ada@example.com"]
    finally:
        database.dispose()


def test_create_user_script_rejects_duplicates(tmp_path: Path, capsys) -> None:
    url = f"sqlite:///{tmp_path / 'script.sqlite3'}"

    assert main(["Ada", "ada@example.com", "--db", url]) == 0
    assert main(["Ada Again", "ada@example.com", "--db", url]) == 1
    assert "already exists" in capsys.readouterr().err
